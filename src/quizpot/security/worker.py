"""Hourly quiz-security cleanup arq task."""

from __future__ import annotations

from quizpot.security.service import QuizSecurityService


async def security_cleanup(ctx: dict) -> int:  # type: ignore[type-arg]
    """Drop expired attempt timestamps and empty records. Runs hourly."""
    return await QuizSecurityService(ctx["redis"]).cleanup()
