"""Admin endpoints for the quiz security gate."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from quizpot.auth.dependencies import get_current_admin
from quizpot.db.models import User
from quizpot.dependencies import get_redis_dep, get_security_service
from quizpot.security.rules import SecurityRules, reset_rules, update_rules
from quizpot.security.schemas import (
    QuizStatsResponse,
    RulesUpdateRequest,
    SecurityStatsResponse,
    SuspiciousUsersResponse,
)
from quizpot.security.service import QuizSecurityService

router = APIRouter(prefix="/api/v1/admin/security", tags=["Security"])


@router.get("/stats", response_model=SecurityStatsResponse)
async def security_stats(
    admin: User = Depends(get_current_admin),
    security: QuizSecurityService = Depends(get_security_service),
):
    return SecurityStatsResponse(**await security.get_system_stats())


@router.get("/rules")
async def get_rules(
    admin: User = Depends(get_current_admin),
    security: QuizSecurityService = Depends(get_security_service),
) -> SecurityRules:
    return await security.get_rules()


@router.put("/rules")
async def put_rules(
    body: RulesUpdateRequest,
    admin: User = Depends(get_current_admin),
    redis: object = Depends(get_redis_dep),
) -> SecurityRules:
    """Persist rule overrides; every instance picks them up on the next check."""
    try:
        return await update_rules(redis, body.model_dump(exclude_none=True))
    except ValidationError as e:
        errors = e.errors(include_url=False, include_context=False, include_input=False)
        raise HTTPException(status_code=422, detail=errors) from e


@router.delete("/rules")
async def delete_rules(
    admin: User = Depends(get_current_admin),
    redis: object = Depends(get_redis_dep),
) -> SecurityRules:
    return await reset_rules(redis)


@router.get("/suspicious", response_model=SuspiciousUsersResponse)
async def suspicious_users(
    admin: User = Depends(get_current_admin),
    security: QuizSecurityService = Depends(get_security_service),
):
    user_ids = await security.list_suspicious_users()
    return SuspiciousUsersResponse(user_ids=user_ids, total=len(user_ids))


@router.delete("/suspicious/{user_id}")
async def clear_suspicious(
    user_id: int,
    admin: User = Depends(get_current_admin),
    security: QuizSecurityService = Depends(get_security_service),
):
    """Lift the suspicious-activity block for a user."""
    removed = await security.clear_suspicious_flag(user_id)
    return {"user_id": user_id, "cleared": removed}


@router.get("/users/{user_id}/stats", response_model=QuizStatsResponse)
async def user_quiz_stats(
    user_id: int,
    difficulty: str = Query("easy", pattern="^(easy|medium|hard)$"),
    admin: User = Depends(get_current_admin),
    security: QuizSecurityService = Depends(get_security_service),
):
    return QuizStatsResponse(**await security.get_user_quiz_stats(user_id, difficulty))


@router.post("/users/{user_id}/reset")
async def reset_user_attempts(
    user_id: int,
    difficulty: str = Query("easy", pattern="^(easy|medium|hard)$"),
    admin: User = Depends(get_current_admin),
    security: QuizSecurityService = Depends(get_security_service),
):
    await security.reset_user_attempts(user_id, difficulty)
    return {"user_id": user_id, "difficulty": difficulty, "reset": True}
