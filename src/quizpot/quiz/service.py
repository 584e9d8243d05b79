"""Quiz submission flow.

The security gate checks the limits and reserves the attempt slot in one
step, so concurrent submissions for a user and difficulty cannot both pass.
The attempt is finalized after it has been scored and committed; a
submission that fails before that gives its slot back. Rewards go
through the ledger in the same unit of work as the progression updates.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from quizpot.config import Settings, get_settings
from quizpot.database import unit_of_work
from quizpot.db.models import Question, User
from quizpot.errors import InvalidQuestions
from quizpot.ledger.entries import QuizReward
from quizpot.ledger.primitives import credit, lock_user, to_money
from quizpot.quiz.questions import load_active_questions, record_answer, select_questions
from quizpot.security.service import AnsweredQuestion, QuizSecurityService
from quizpot.users.service import add_xp
from quizpot.ws.publisher import push_balance_update

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuizAnswer:
    question_id: int
    selected_answer: int
    time_spent_ms: int


@dataclass(frozen=True)
class AnswerResult:
    question_id: int
    is_correct: bool
    correct_answer: int
    points: int
    explanation: str | None = None


@dataclass
class QuizResult:
    score: float
    correct_answers: int
    total_questions: int
    points_earned: int
    reward: Decimal
    xp_earned: int
    leveled_up: bool
    level: int
    time_spent_ms: int
    results: list[AnswerResult] = field(default_factory=list)


async def get_questions(
    db: AsyncSession,
    difficulty: str,
    category: str | None = None,
    limit: int = 10,
) -> list[Question]:
    """Good questions first; lower quality ones only fill a short set."""
    picked = await select_questions(db, difficulty=difficulty, category=category, limit=limit)
    if len(picked) < limit:
        seen = {q.id for q in picked}
        extra = await select_questions(db, difficulty=difficulty, category=category, limit=limit * 2, min_quality=0)
        picked += [q for q in extra if q.id not in seen][: limit - len(picked)]
    return picked


async def submit_quiz(
    db: AsyncSession,
    redis: object | None,
    security: QuizSecurityService,
    user_id: int,
    difficulty: str,
    answers: Sequence[QuizAnswer],
    settings: Settings | None = None,
) -> QuizResult:
    """Score a quiz attempt for ``user_id``.

    Raises RateLimited / SuspiciousAccount / SystemError when the gate
    denies the attempt, InvalidQuestions when the answers do not reference a
    distinct set of active questions of the requested difficulty.
    """
    settings = settings or get_settings()
    reservation = await security.reserve_attempt(user_id, difficulty)
    try:
        user, result = await _score_and_reward(db, user_id, difficulty, answers, settings)
    except Exception:
        try:
            await security.release_attempt(reservation)
        except RedisError:
            logger.exception("Failed to release quiz reservation for user %s", user_id)
        raise

    logger.info(
        "Quiz submitted: user=%s difficulty=%s score=%.1f correct=%d/%d reward=%s",
        user_id, difficulty, result.score, result.correct_answers, result.total_questions, result.reward,
    )

    try:
        await security.record_attempt(
            user_id,
            difficulty,
            result.score,
            result.time_spent_ms,
            [AnsweredQuestion(r.is_correct, a.time_spent_ms) for r, a in zip(result.results, answers)],
            reservation=reservation,
        )
    except RedisError:
        # Reward is already committed at this point.
        logger.exception("Failed to record quiz attempt for user %s", user_id)

    if result.reward > 0:
        await push_balance_update(redis, user)
    return result


async def _score_and_reward(
    db: AsyncSession,
    user_id: int,
    difficulty: str,
    answers: Sequence[QuizAnswer],
    settings: Settings,
) -> tuple[User, QuizResult]:
    """Score the answers, update progression and pay the reward in one commit."""
    ids = [a.question_id for a in answers]
    if not ids or len(set(ids)) != len(ids):
        raise InvalidQuestions("Each question can be answered once per quiz")

    now = datetime.now(timezone.utc)
    async with unit_of_work(db):
        questions = await load_active_questions(db, ids)
        if any(q.difficulty != difficulty for q in questions.values()):
            raise InvalidQuestions(f"All questions must be {difficulty}")
        user = await lock_user(db, user_id)

        results: list[AnswerResult] = []
        points = 0
        for answer in answers:
            question = questions[answer.question_id]
            is_correct = answer.selected_answer == question.correct_answer
            record_answer(question, is_correct, answer.time_spent_ms, now)
            if is_correct:
                points += question.points
            results.append(AnswerResult(
                question_id=question.id,
                is_correct=is_correct,
                correct_answer=question.correct_answer,
                points=question.points if is_correct else 0,
                explanation=question.explanation,
            ))

        correct = sum(1 for r in results if r.is_correct)
        total = len(results)

        user.questions_answered += total
        user.correct_answers += correct
        user.average_score = user.correct_answers / user.questions_answered * 100
        user.last_activity = now
        xp = correct * settings.quiz_xp_per_correct
        leveled_up = add_xp(user, xp)

        reward = to_money(points * settings.quiz_reward_rate)
        if reward > 0:
            await credit(
                db,
                user,
                reward,
                QuizReward(
                    description=f"Quiz reward: {correct}/{total} correct ({difficulty})",
                    correct_answers=correct,
                    total_questions=total,
                ),
            )

    return user, QuizResult(
        score=correct / total * 100,
        correct_answers=correct,
        total_questions=total,
        points_earned=points,
        reward=reward,
        xp_earned=xp,
        leveled_up=leveled_up,
        level=user.level,
        time_spent_ms=sum(a.time_spent_ms for a in answers),
        results=results,
    )
