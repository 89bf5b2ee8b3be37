"""
Team Pulse Sentiment Classifier

Scores workplace chat messages:
  1. Language-model classification (structured JSON output)
  2. Lexicon fallback when the model call fails or returns garbage
  3. Neutral default when everything else fails

``analyze`` never raises. Labels are always derived from the score with the
fixed ±0.1 thresholds, whatever the model claims.
"""
from __future__ import annotations

import asyncio
import json
import logging
import string
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ValidationError, field_validator

from pulse.core.metrics import SENTIMENT_RESULTS_TOTAL
from pulse.models.models import SentimentLabel
from pulse.schemas.schemas import EmojiReaction, EmojiSentiment, SentimentResult
from pulse.services.llm.llm_client import LLMClient

logger = logging.getLogger(__name__)

POSITIVE_THRESHOLD = 0.1
NEGATIVE_THRESHOLD = -0.1

SYSTEM_PROMPT = """You are a sentiment analysis expert. Analyze the sentiment of workplace messages.
Return a JSON object with:
- score: number between -1.0 (very negative) and 1.0 (very positive)
- label: "positive", "negative", or "neutral"
- confidence: confidence level 0.0 to 1.0
- emotions: object with emotion names and scores (joy, anger, fear, sadness, etc.)
- reasoning: brief explanation

Focus on workplace context and consider team dynamics, stress indicators, and collaboration tone."""

POSITIVE_WORDS = frozenset({
    "good", "great", "awesome", "excellent", "love", "amazing", "perfect", "thanks", "happy",
})
NEGATIVE_WORDS = frozenset({
    "bad", "terrible", "awful", "hate", "frustrated", "angry", "stress", "problem", "issue",
})
LEXICON_WORD_WEIGHT = 0.5

# Unicode emoji plus the Slack short names reactions arrive as
EMOJI_SENTIMENT = {
    "😀": 0.8, "😃": 0.8, "😄": 0.9, "😁": 0.7, "😊": 0.8, "😍": 0.9,
    "🥰": 0.9, "😘": 0.7, "🤗": 0.6, "🤩": 0.8, "😎": 0.6, "🥳": 0.9,
    "👍": 0.6, "👏": 0.7, "🎉": 0.8, "✅": 0.5, "💪": 0.6, "🔥": 0.7,
    "😔": -0.6, "😞": -0.7, "😟": -0.5, "😢": -0.8, "😭": -0.9, "😤": -0.4,
    "😠": -0.7, "😡": -0.8, "🤬": -0.9, "😰": -0.6, "😨": -0.7, "😱": -0.8,
    "🤔": 0.1, "😐": 0.0, "😑": -0.1, "🙄": -0.3, "😒": -0.4, "😮‍💨": -0.2,
    "grinning": 0.8, "smiley": 0.8, "smile": 0.9, "grin": 0.7, "blush": 0.8,
    "heart_eyes": 0.9, "hugging_face": 0.6, "star-struck": 0.8, "sunglasses": 0.6,
    "partying_face": 0.9, "+1": 0.6, "thumbsup": 0.6, "clap": 0.7, "tada": 0.8,
    "white_check_mark": 0.5, "muscle": 0.6, "fire": 0.7, "heart": 0.8,
    "pensive": -0.6, "disappointed": -0.7, "worried": -0.5, "cry": -0.8, "sob": -0.9,
    "triumph": -0.4, "angry": -0.7, "rage": -0.8, "face_with_symbols_on_mouth": -0.9,
    "cold_sweat": -0.6, "fearful": -0.7, "scream": -0.8, "thinking_face": 0.1,
    "neutral_face": 0.0, "expressionless": -0.1, "face_with_rolling_eyes": -0.3,
    "unamused": -0.4, "face_exhaling": -0.2, "-1": -0.6, "thumbsdown": -0.6,
}


def label_for_score(score: float) -> SentimentLabel:
    if score > POSITIVE_THRESHOLD:
        return SentimentLabel.POSITIVE
    if score < NEGATIVE_THRESHOLD:
        return SentimentLabel.NEGATIVE
    return SentimentLabel.NEUTRAL


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def default_sentiment() -> SentimentResult:
    return SentimentResult(
        score=0.0,
        label=SentimentLabel.NEUTRAL,
        confidence=0.1,
        emotions={"neutral": 1.0},
        reasoning="Default sentiment due to analysis failure (fallback-default)",
        processed_by="default",
    )


class _ModelOutput(BaseModel):
    """What we accept back from the language model."""
    score: float
    confidence: float = 0.5
    emotions: Dict[str, float] = {}
    reasoning: Optional[str] = None

    @field_validator("emotions", mode="before")
    @classmethod
    def _drop_non_numeric(cls, value):
        if not isinstance(value, dict):
            return {}
        return {
            str(k): float(v) for k, v in value.items()
            if isinstance(v, (int, float)) and not isinstance(v, bool)
        }


def lexicon_sentiment(text: str) -> SentimentResult:
    """Rule-based scorer over a fixed positive/negative word list."""
    words = [w.strip(string.punctuation) for w in text.lower().split()]
    total_words = len(words)
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)

    raw = (positive - negative) * LEXICON_WORD_WEIGHT
    score = _clamp(raw / max(1, total_words * 0.1), -1.0, 1.0)
    confidence = min(0.8, (positive + negative) / max(1, total_words) * 2)

    return SentimentResult(
        score=score,
        label=label_for_score(score),
        confidence=confidence,
        emotions={
            "joy": 0.6 if positive > 0 else 0.1,
            "anger": 0.6 if negative > 0 else 0.1,
            "neutral": 0.8 if abs(score) < 0.1 else 0.2,
        },
        reasoning=f"Lexicon analysis: {positive} positive, {negative} negative words",
        processed_by="lexicon",
    )


class SentimentClassifier:
    """Language model first, lexicon second, neutral default last."""

    def __init__(
        self,
        llm: Optional[LLMClient],
        batch_size: int = 10,
        batch_delay: float = 0.1,
    ):
        self._llm = llm
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay

    # ── Single message ───────────────────────────────────────────────────

    async def analyze(self, text: str) -> SentimentResult:
        try:
            result = await self._analyze_with_model(text)
            if result is None:
                result = lexicon_sentiment(text)
        except Exception as e:
            logger.error(f"Sentiment analysis failed: {e}")
            result = default_sentiment()
        SENTIMENT_RESULTS_TOTAL.labels(scorer=result.processed_by.split(":")[0]).inc()
        return result

    async def _analyze_with_model(self, text: str) -> Optional[SentimentResult]:
        """Soft-fails to None on any call or parse problem."""
        if self._llm is None or not text.strip():
            return None
        try:
            content = await self._llm.complete_json(SYSTEM_PROMPT, text)
        except Exception as e:
            logger.warning(f"LLM sentiment call failed: {e}")
            return None
        if not content:
            return None

        try:
            parsed = _ModelOutput.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(f"Unparsable LLM sentiment output: {e}")
            return None

        score = _clamp(parsed.score, -1.0, 1.0)
        return SentimentResult(
            score=score,
            label=label_for_score(score),
            confidence=_clamp(parsed.confidence, 0.0, 1.0),
            emotions=parsed.emotions,
            reasoning=parsed.reasoning,
            processed_by=f"openai:{self._llm.model}",
        )

    # ── Emoji reactions ──────────────────────────────────────────────────

    def analyze_emoji(self, reactions: Sequence[EmojiReaction]) -> EmojiSentiment:
        breakdown: Dict[str, float] = {}
        total_score = 0.0
        total_count = 0
        for reaction in reactions:
            weight = EMOJI_SENTIMENT.get(reaction.name.strip(":"), 0.0)
            breakdown[reaction.name] = weight
            total_score += weight * reaction.count
            total_count += reaction.count
        return EmojiSentiment(
            overall_score=total_score / total_count if total_count > 0 else 0.0,
            breakdown=breakdown,
        )

    # ── Batches ──────────────────────────────────────────────────────────

    async def batch_analyze(self, texts: Sequence[str]) -> List[SentimentResult]:
        """
        Score texts in fixed-size concurrent batches with a pause between
        batches. A failing item degrades to the default result on its own.
        """
        results: List[SentimentResult] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            outcomes = await asyncio.gather(
                *(self.analyze(text) for text in batch), return_exceptions=True,
            )
            for i, outcome in enumerate(outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning(f"Batch item {start + i} failed: {outcome}")
                    results.append(default_sentiment())
                else:
                    results.append(outcome)

            if start + self.batch_size < len(texts):
                await asyncio.sleep(self.batch_delay)
        return results
