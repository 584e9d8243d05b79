"""Tournament API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from quizpot.auth.dependencies import get_current_admin, get_current_user
from quizpot.db.models import Tournament, User
from quizpot.dependencies import get_db, get_redis_dep
from quizpot.tournaments import service
from quizpot.tournaments.schemas import (
    CancelTournamentRequest,
    CreateTournamentRequest,
    JoinTournamentRequest,
    LeaderboardEntry,
    LeaderboardResponse,
    ParticipantResponse,
    SubmitAnswersRequest,
    SubmitAnswersResponse,
    TournamentDetailResponse,
    TournamentListResponse,
    TournamentQuestionResponse,
    TournamentResponse,
    UpdateTournamentRequest,
)

router = APIRouter(prefix="/api/v1/tournaments", tags=["Tournaments"])


def _detail(tournament: Tournament, user: User) -> TournamentDetailResponse:
    detail = TournamentDetailResponse.model_validate(tournament)
    can_manage = user.is_admin or tournament.created_by_id == user.id
    return detail.model_copy(update={
        "invite_code": tournament.invite_code if can_manage else None,
        "is_participant": service.find_participant(tournament, user.id) is not None,
    })


# ── Browse ──


@router.get("", response_model=TournamentListResponse)
async def list_tournaments(
    status: str | None = Query(None, pattern="^(upcoming|active|completed|cancelled)$"),
    category: str | None = Query(None),
    difficulty: str | None = Query(None, pattern="^(easy|medium|hard)$"),
    sort_by: str = Query("start_time", pattern="^(start_time|entry_fee|prize_pool|participants|created_at)$"),
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Public tournaments only; private ones are reachable by invite code."""
    items, total = await service.list_tournaments(
        db,
        status=status,
        category=category,
        difficulty=difficulty,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return TournamentListResponse(
        tournaments=[TournamentResponse.model_validate(t) for t in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/my", response_model=list[TournamentResponse])
async def my_tournaments(
    status: str | None = Query(None, pattern="^(upcoming|active|completed|cancelled)$"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    items = await service.get_user_tournaments(
        db, user.id, status=status, limit=per_page, offset=(page - 1) * per_page,
    )
    return [TournamentResponse.model_validate(t) for t in items]


@router.get("/invite/{invite_code}", response_model=TournamentDetailResponse)
async def get_by_invite(
    invite_code: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament = await service.get_tournament_by_invite(db, invite_code)
    return _detail(tournament, user)


@router.get("/{tournament_id}", response_model=TournamentDetailResponse)
async def get_tournament(
    tournament_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament = await service.get_tournament(db, tournament_id)
    return _detail(tournament, user)


@router.get("/{tournament_id}/participants", response_model=list[ParticipantResponse])
async def list_participants(tournament_id: int, db: AsyncSession = Depends(get_db)):
    tournament = await service.get_tournament(db, tournament_id)
    ordered = sorted(tournament.participants, key=lambda p: (p.joined_at, p.user_id))
    return [ParticipantResponse.model_validate(p) for p in ordered]


@router.get("/{tournament_id}/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(tournament_id: int, db: AsyncSession = Depends(get_db)):
    tournament = await service.get_tournament(db, tournament_id)
    entries = await service.get_leaderboard(db, tournament_id)
    return LeaderboardResponse(
        tournament_id=tournament.id,
        status=tournament.status,
        entries=[
            LeaderboardEntry(
                position=idx + 1,
                user_id=p.user_id,
                score=p.score,
                time_spent=p.time_spent,
                rank=p.rank,
                prize=p.prize,
            )
            for idx, p in enumerate(entries)
        ],
    )


# ── Manage ──


@router.post("", response_model=TournamentDetailResponse, status_code=201)
async def create_tournament(
    body: CreateTournamentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Create a tournament. The creator pays the entry fee and joins."""
    tournament = await service.create_tournament(
        db,
        redis,
        user.id,
        title=body.title,
        description=body.description,
        category=body.category,
        difficulty=body.difficulty,
        entry_fee=body.entry_fee,
        prize_pool=body.prize_pool,
        max_participants=body.max_participants,
        min_participants=body.min_participants,
        registration_start=body.registration_start,
        registration_end=body.registration_end,
        start_time=body.start_time,
        end_time=body.end_time,
        question_count=body.question_count,
        time_per_question=body.time_per_question,
        is_private=body.is_private,
        prize_split=(
            [e.model_dump() for e in body.prize_distribution] if body.prize_distribution is not None else None
        ),
        question_ids=body.question_ids,
        options=body.settings.model_dump(),
    )
    return _detail(tournament, user)


@router.put("/{tournament_id}", response_model=TournamentDetailResponse)
async def update_tournament(
    tournament_id: int,
    body: UpdateTournamentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament = await service.update_tournament(
        db,
        tournament_id,
        user,
        title=body.title,
        description=body.description,
        options=body.settings.model_dump() if body.settings else None,
    )
    return _detail(tournament, user)


@router.delete("/{tournament_id}", status_code=204)
async def delete_tournament(
    tournament_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await service.delete_tournament(db, tournament_id, user)
    return Response(status_code=204)


@router.post("/{tournament_id}/cancel", response_model=TournamentResponse)
async def cancel_tournament(
    tournament_id: int,
    body: CancelTournamentRequest | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    tournament = await service.cancel_tournament(
        db, redis, tournament_id, actor=user, reason=body.reason if body else None,
    )
    return TournamentResponse.model_validate(tournament)


@router.post("/{tournament_id}/start", response_model=TournamentResponse)
async def start_tournament(
    tournament_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    tournament = await service.start_tournament(db, redis, tournament_id)
    return TournamentResponse.model_validate(tournament)


@router.post("/{tournament_id}/complete", response_model=TournamentResponse)
async def complete_tournament(
    tournament_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    tournament = await service.complete_tournament(db, redis, tournament_id)
    return TournamentResponse.model_validate(tournament)


# ── Play ──


@router.post("/{tournament_id}/join", response_model=ParticipantResponse)
async def join_tournament(
    tournament_id: int,
    body: JoinTournamentRequest | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    participant = await service.join_tournament(
        db, redis, tournament_id, user.id, invite_code=body.invite_code if body else None,
    )
    return ParticipantResponse.model_validate(participant)


@router.post("/{tournament_id}/leave")
async def leave_tournament(
    tournament_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    tournament = await service.leave_tournament(db, redis, tournament_id, user.id)
    return {"tournament_id": tournament.id, "refunded": str(tournament.entry_fee)}


@router.get("/{tournament_id}/questions", response_model=list[TournamentQuestionResponse])
async def get_questions(
    tournament_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Questions without their answers."""
    items = await service.get_tournament_questions(db, tournament_id, user.id)
    return [
        TournamentQuestionResponse(
            id=tq.question.id,
            position=tq.position,
            question=tq.question.question,
            options=tq.question.options,
            points=tq.question.points,
            time_limit=tq.question.time_limit,
        )
        for tq in items
    ]


@router.post("/{tournament_id}/answers", response_model=SubmitAnswersResponse)
async def submit_answers(
    tournament_id: int,
    body: SubmitAnswersRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    participant = await service.submit_answers(
        db,
        redis,
        tournament_id,
        user.id,
        [service.TournamentAnswer(a.question_id, a.selected_answer, a.time_spent) for a in body.answers],
    )
    return SubmitAnswersResponse(
        score=participant.score,
        time_spent=participant.time_spent,
        answered=len(participant.answers),
    )
