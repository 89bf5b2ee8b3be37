"""
Team Pulse Core Settings.

Every credential the pipeline talks to (Slack, OpenAI, PostgreSQL, Redis) is
supplied through the environment with the ``PULSE_`` prefix. Missing
credentials are reported by ``Settings.require`` rather than silently
defaulted.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

from pulse.core.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8",
        env_prefix="PULSE_", case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "Team Pulse"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api/v1"
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:5174"]

    # ── PostgreSQL ───────────────────────────────────────────────────────
    db_host: str = ""
    db_port: int = 5432
    db_user: str = ""
    db_password: str = ""
    db_name: str = "engagement_db"
    db_pool_size: int = 10
    db_echo: bool = False

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Redis / Celery ───────────────────────────────────────────────────
    celery_broker_url: str = ""
    celery_result_backend: str = ""
    # Completed job results are pruned after this many seconds
    celery_result_expires: int = 24 * 3600

    # ── Slack ────────────────────────────────────────────────────────────
    slack_bot_token: str = ""
    # Events API request signing; webhooks are rejected while unset
    slack_signing_secret: str = ""
    slack_signature_tolerance_seconds: int = 300
    slack_api_url: str = "https://slack.com/api/"
    # Workspace new channels are attached to; oldest registered when empty
    slack_default_team_id: str = ""
    slack_timeout_seconds: float = 10.0
    history_window_days: int = 7
    history_max_messages: int = 200
    history_page_size: int = 100

    # ── OpenAI ───────────────────────────────────────────────────────────
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.1
    openai_max_tokens: int = 300
    openai_timeout_seconds: float = 20.0

    # ── Sentiment Classifier ─────────────────────────────────────────────
    classifier_batch_size: int = 10
    classifier_batch_delay: float = 0.1
    # Celery rate limit for analyze_sentiment tasks, per worker (e.g. "60/m")
    classifier_rate_limit: str = "60/m"

    # ── Analytics ────────────────────────────────────────────────────────
    burnout_window_days: int = 7
    burnout_min_messages: int = 10       # strictly more than this many analyzed
    burnout_high_threshold: float = -0.5
    burnout_medium_threshold: float = -0.2
    trend_delta_threshold: float = 0.1
    dashboard_bucket_minutes: int = 24 * 60

    # ── Job Pipeline ─────────────────────────────────────────────────────
    job_max_attempts: int = 3
    job_backoff_base_seconds: float = 2.0
    failed_job_retention: int = 500
    failed_job_alert_threshold: int = 50

    def require(self, *fields: str) -> None:
        """Raise ConfigurationError listing every empty field in ``fields``."""
        missing = [name for name in fields if not getattr(self, name)]
        if missing:
            env_names = ", ".join(f"PULSE_{name.upper()}" for name in missing)
            raise ConfigurationError(f"Missing required configuration: {env_names}")

    def require_runtime(self) -> None:
        """Credentials the API and worker cannot run without."""
        self.require(
            "slack_bot_token",
            "slack_signing_secret",
            "openai_api_key",
            "db_host",
            "db_user",
            "db_password",
            "celery_broker_url",
            "celery_result_backend",
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
