"""Prometheus counters exported at /metrics."""
from __future__ import annotations

from prometheus_client import Counter

JOBS_TOTAL = Counter(
    "pulse_jobs_total",
    "Pipeline jobs by kind and outcome",
    ["kind", "outcome"],
)

SENTIMENT_RESULTS_TOTAL = Counter(
    "pulse_sentiment_results_total",
    "Sentiment results by the scorer that produced them",
    ["scorer"],
)

BURNOUT_WARNINGS_TOTAL = Counter(
    "pulse_burnout_warnings_total",
    "Burnout warnings raised by severity",
    ["severity"],
)

SLACK_CALLS_TOTAL = Counter(
    "pulse_slack_calls_total",
    "Slack Web API calls by method and outcome",
    ["method", "outcome"],
)
