"""Question selection and per-answer statistics."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quizpot.db.models import Question
from quizpot.errors import InvalidQuestions

MIN_QUALITY = 60.0


def accuracy(question: Question) -> float:
    total = question.correct_count + question.incorrect_count
    return (question.correct_count / total) * 100 if total else 0.0


def usage_rate(question: Question, now: datetime | None = None) -> float:
    """Uses per whole day since creation; 0 during the first day."""
    now = now or datetime.now(timezone.utc)
    days = (now - question.created_at).days
    return question.times_used / days if days > 0 else 0.0


def update_quality_score(question: Question, now: datetime | None = None) -> float:
    score = 50 + accuracy(question) / 100 * 30 + min(usage_rate(question, now) * 2, 20)
    question.quality_score = max(0.0, min(100.0, score))
    return question.quality_score


def record_answer(question: Question, is_correct: bool, time_spent_ms: int, now: datetime | None = None) -> None:
    """Fold one answer into the question's running statistics."""
    question.times_used += 1
    if is_correct:
        question.correct_count += 1
    else:
        question.incorrect_count += 1
    question.average_time = (question.average_time * (question.times_used - 1) + time_spent_ms) / question.times_used
    update_quality_score(question, now)


async def select_questions(
    db: AsyncSession,
    difficulty: str | None = None,
    category: str | None = None,
    limit: int = 10,
    min_quality: float = MIN_QUALITY,
) -> list[Question]:
    """Active questions, best quality first, least used first on ties."""
    stmt = select(Question).where(Question.is_active.is_(True), Question.quality_score >= min_quality)
    if difficulty:
        stmt = stmt.where(Question.difficulty == difficulty)
    if category:
        stmt = stmt.where(Question.category == category)
    stmt = stmt.order_by(Question.quality_score.desc(), Question.times_used.asc(), Question.id.asc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def load_active_questions(db: AsyncSession, question_ids: Iterable[int]) -> dict[int, Question]:
    """Load questions by id; every id must exist and be active."""
    ids = set(question_ids)
    result = await db.execute(select(Question).where(Question.id.in_(ids), Question.is_active.is_(True)))
    questions = {q.id: q for q in result.scalars().all()}
    if len(questions) != len(ids):
        raise InvalidQuestions()
    return questions
