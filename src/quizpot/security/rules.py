"""Quiz security rules.

Defaults come from ``Settings``; admin changes are stored as overrides in
Redis and win over the environment. The service re-reads the effective rules
on every check, so an update applies to every instance immediately.
"""

from __future__ import annotations

import json
import logging
from datetime import timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from quizpot.config import Settings, get_settings

logger = logging.getLogger(__name__)

RULES_KEY = "quizsec:rules"


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


class SecurityRules(BaseModel):
    """Thresholds for quiz rate limiting and fraud heuristics."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    max_daily_quizzes: int = Field(10, ge=1)
    max_hourly_quizzes: int = Field(3, ge=1)
    min_time_between_quizzes_ms: int = Field(30_000, ge=0)
    suspicious_score_threshold: float = Field(95, ge=0, le=100)
    max_consecutive_high_scores: int = Field(5, ge=1)
    time_per_question_min_ms: int = Field(5_000, ge=0)
    time_per_question_max_ms: int = Field(300_000, gt=0)
    perfect_score_max_avg_ms: int = Field(10_000, ge=0)
    min_timing_variance: float = Field(1_000.0, ge=0)
    timing_variance_min_answers: int = Field(4, ge=2)
    suspicion_flag_threshold: int = Field(2, ge=1)
    enable_rate_limiting: bool = True
    enable_fraud_detection: bool = True
    day_timezone: str = "UTC"

    @field_validator("day_timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            resolve_timezone(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            msg = f"Unknown timezone: {value}"
            raise ValueError(msg) from e
        return value

    @model_validator(mode="after")
    def check_time_bounds(self) -> SecurityRules:
        if self.time_per_question_min_ms >= self.time_per_question_max_ms:
            msg = "time_per_question_min_ms must be below time_per_question_max_ms"
            raise ValueError(msg)
        return self

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.day_timezone)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SecurityRules:
        settings = settings or get_settings()
        return cls(
            max_daily_quizzes=settings.quiz_max_daily,
            max_hourly_quizzes=settings.quiz_max_hourly,
            min_time_between_quizzes_ms=settings.quiz_min_time_between_ms,
            suspicious_score_threshold=settings.quiz_suspicious_score_threshold,
            max_consecutive_high_scores=settings.quiz_max_consecutive_high_scores,
            time_per_question_min_ms=settings.quiz_time_per_question_min_ms,
            time_per_question_max_ms=settings.quiz_time_per_question_max_ms,
            perfect_score_max_avg_ms=settings.quiz_perfect_score_max_avg_ms,
            min_timing_variance=settings.quiz_min_timing_variance,
            timing_variance_min_answers=settings.quiz_timing_variance_min_answers,
            suspicion_flag_threshold=settings.quiz_suspicion_flag_threshold,
            enable_rate_limiting=settings.quiz_enable_rate_limiting,
            enable_fraud_detection=settings.quiz_enable_fraud_detection,
            day_timezone=settings.quiz_day_timezone,
        )


async def load_rules(redis: Any, settings: Settings | None = None) -> SecurityRules:  # noqa: ANN401
    """Effective rules: Redis overrides applied on top of environment defaults."""
    defaults = SecurityRules.from_settings(settings)
    raw = await redis.get(RULES_KEY)
    if not raw:
        return defaults
    overrides = json.loads(raw)
    return SecurityRules.model_validate({**defaults.model_dump(), **overrides})


async def update_rules(
    redis: Any,  # noqa: ANN401
    changes: dict[str, Any],
    settings: Settings | None = None,
) -> SecurityRules:
    """Merge ``changes`` into the stored overrides and return the new rules.

    Raises:
        pydantic.ValidationError: If the merged rules are invalid; nothing is stored.
    """
    defaults = SecurityRules.from_settings(settings)
    raw = await redis.get(RULES_KEY)
    overrides: dict[str, Any] = json.loads(raw) if raw else {}
    overrides.update({k: v for k, v in changes.items() if k in SecurityRules.model_fields})

    rules = SecurityRules.model_validate({**defaults.model_dump(), **overrides})
    await redis.set(RULES_KEY, json.dumps(overrides))
    logger.info("Security rules updated: %s", overrides)
    return rules


async def reset_rules(redis: Any, settings: Settings | None = None) -> SecurityRules:  # noqa: ANN401
    """Drop all overrides and fall back to environment defaults."""
    await redis.delete(RULES_KEY)
    logger.info("Security rules reset to defaults")
    return SecurityRules.from_settings(settings)
