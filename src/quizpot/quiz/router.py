"""Quiz API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from quizpot.auth.dependencies import get_current_user
from quizpot.db.models import User
from quizpot.dependencies import get_db, get_redis_dep, get_security_service
from quizpot.quiz import service
from quizpot.quiz.schemas import QuestionResponse, QuizResultResponse, SubmitQuizRequest
from quizpot.security.schemas import EligibilityResponse, QuizStatsResponse
from quizpot.security.service import QuizSecurityService

router = APIRouter(prefix="/api/v1/quiz", tags=["Quiz"])

_DIFFICULTY = "^(easy|medium|hard)$"


@router.get("/status", response_model=EligibilityResponse)
async def quiz_status(
    difficulty: str = Query("easy", pattern=_DIFFICULTY),
    user: User = Depends(get_current_user),
    security: QuizSecurityService = Depends(get_security_service),
):
    """Whether the user may start a quiz right now, and when a block clears."""
    eligibility = await security.can_take_quiz(user.id, difficulty)
    return EligibilityResponse(
        allowed=eligibility.allowed,
        reason=eligibility.reason,
        message=eligibility.message,
        reset_time=eligibility.reset_time,
    )


@router.get("/stats", response_model=QuizStatsResponse)
async def quiz_stats(
    difficulty: str = Query("easy", pattern=_DIFFICULTY),
    user: User = Depends(get_current_user),
    security: QuizSecurityService = Depends(get_security_service),
):
    return QuizStatsResponse(**await security.get_user_quiz_stats(user.id, difficulty))


@router.get("/questions", response_model=list[QuestionResponse])
async def get_questions(
    difficulty: str = Query("easy", pattern=_DIFFICULTY),
    category: str | None = Query(None),
    limit: int = Query(10, ge=1, le=50),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    security: QuizSecurityService = Depends(get_security_service),
):
    await security.ensure_can_take_quiz(user.id, difficulty)
    questions = await service.get_questions(db, difficulty, category=category, limit=limit)
    return [QuestionResponse.model_validate(q) for q in questions]


@router.post("/submit", response_model=QuizResultResponse)
async def submit_quiz(
    body: SubmitQuizRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
    security: QuizSecurityService = Depends(get_security_service),
):
    result = await service.submit_quiz(
        db,
        redis,
        security,
        user.id,
        body.difficulty,
        [service.QuizAnswer(a.question_id, a.selected_answer, a.time_spent) for a in body.answers],
    )
    return QuizResultResponse.model_validate(result)
