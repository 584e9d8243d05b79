"""Pydantic models for quiz security endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EligibilityResponse(BaseModel):
    allowed: bool
    reason: str | None = None
    message: str
    reset_time: datetime | None = None


class QuizStatsResponse(BaseModel):
    daily_attempts: int
    hourly_attempts: int
    last_attempt: datetime | None = None
    consecutive_high_scores: int
    is_suspicious: bool
    remaining_daily: int
    remaining_hourly: int


class SecurityStatsResponse(BaseModel):
    total_active_users: int
    suspicious_users: int
    suspicious_percentage: float
    security_rules: dict[str, Any]


class SuspiciousUsersResponse(BaseModel):
    user_ids: list[int]
    total: int


class RulesUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their current value."""

    max_daily_quizzes: int | None = Field(None, ge=1)
    max_hourly_quizzes: int | None = Field(None, ge=1)
    min_time_between_quizzes_ms: int | None = Field(None, ge=0)
    suspicious_score_threshold: float | None = Field(None, ge=0, le=100)
    max_consecutive_high_scores: int | None = Field(None, ge=1)
    time_per_question_min_ms: int | None = Field(None, ge=0)
    time_per_question_max_ms: int | None = Field(None, gt=0)
    perfect_score_max_avg_ms: int | None = Field(None, ge=0)
    min_timing_variance: float | None = Field(None, ge=0)
    timing_variance_min_answers: int | None = Field(None, ge=2)
    suspicion_flag_threshold: int | None = Field(None, ge=1)
    enable_rate_limiting: bool | None = None
    enable_fraud_detection: bool | None = None
    day_timezone: str | None = None
