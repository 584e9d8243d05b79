"""Tournament lifecycle engine.

Every operation runs as one unit of work: lock the tournament row, then the
affected users in ascending id order, validate, write, commit once. Status
changes are additionally claimed with a compare-and-set UPDATE, so a
duplicate or concurrent transition fails with InvalidTransition instead of
repeating its side effects (a second ``complete`` never pays twice).

Money moves only through the ledger primitives. Events are published after
commit and never affect the outcome of the operation.
"""

from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from quizpot.config import Settings, get_settings
from quizpot.database import unit_of_work
from quizpot.db.base import utcnow
from quizpot.db.models import Tournament, TournamentParticipant, TournamentQuestion, User
from quizpot.errors import (
    AccessDenied,
    AlreadyParticipant,
    AmountOutOfRange,
    InvalidDates,
    InvalidQuestions,
    InvalidTournamentSettings,
    InvalidTransition,
    NotAParticipant,
    NotEnoughParticipants,
    PrivateTournament,
    RegistrationClosed,
    TournamentFull,
    TournamentHasParticipants,
    TournamentNotFound,
    TournamentStarted,
)
from quizpot.ledger.entries import TournamentEntryFee, TournamentPrize, TournamentRefund
from quizpot.ledger.primitives import credit, debit, lock_user, lock_users, to_money
from quizpot.quiz.questions import load_active_questions, record_answer, select_questions
from quizpot.tournaments import events
from quizpot.tournaments.ranking import (
    build_prize_distribution,
    default_split,
    prize_for_rank,
    rank_participants,
    ranking_key,
)
from quizpot.tournaments.state import ACTIVE, CANCELLED, COMPLETED, UPCOMING, phase_for, validate_transition
from quizpot.ws.publisher import push_balance_update

logger = logging.getLogger(__name__)

INVITE_CODE_LENGTH = 8
_CODE_ALPHABET = string.ascii_uppercase + string.digits

DEFAULT_OPTIONS: dict[str, Any] = {
    "auto_start": True,
    "show_leaderboard": True,
    "show_answers": True,
}

SORT_FIELDS = ("start_time", "entry_fee", "prize_pool", "participants", "created_at")


@dataclass(frozen=True)
class TournamentAnswer:
    question_id: int
    selected_answer: int
    time_spent_ms: int


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def registration_open(tournament: Tournament, now: datetime | None = None) -> bool:
    now = _now(now)
    return (
        tournament.status == UPCOMING
        and tournament.registration_start <= now <= tournament.registration_end
    )


def find_participant(tournament: Tournament, user_id: int) -> TournamentParticipant | None:
    return next((p for p in tournament.participants if p.user_id == user_id), None)


def _check_manager(tournament: Tournament, actor: User | None) -> None:
    """Only the creator or an admin may manage a tournament. ``None`` is the system."""
    if actor is not None and not actor.is_admin and actor.id != tournament.created_by_id:
        raise AccessDenied("Only the tournament creator or an admin can do this")


async def _unique_invite_code(db: AsyncSession) -> str:
    while True:
        code = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))
        taken = await db.execute(select(Tournament.id).where(Tournament.invite_code == code))
        if taken.first() is None:
            return code


async def _lock_tournament(db: AsyncSession, tournament_id: int) -> Tournament:
    """Load a tournament with roster and questions, holding its row lock."""
    result = await db.execute(
        select(Tournament)
        .where(Tournament.id == tournament_id)
        .options(selectinload(Tournament.participants), selectinload(Tournament.questions))
        .with_for_update(of=Tournament)
        .execution_options(populate_existing=True)
    )
    tournament = result.scalar_one_or_none()
    if tournament is None:
        raise TournamentNotFound()
    return tournament


async def _claim_transition(
    db: AsyncSession,
    tournament: Tournament,
    target: str,
    **values: Any,  # noqa: ANN401
) -> None:
    """Move to ``target`` only if the row still holds the status we validated."""
    expected = tournament.status
    validate_transition(expected, target)
    result = await db.execute(
        update(Tournament)
        .where(Tournament.id == tournament.id, Tournament.status == expected)
        .values(status=target, phase=phase_for(target), updated_at=utcnow(), **values)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        raise InvalidTransition(f"Tournament {tournament.id} is no longer {expected}")


async def _enroll(db: AsyncSession, tournament: Tournament, user: User, now: datetime) -> TournamentParticipant:
    if tournament.entry_fee > 0:
        await debit(
            db,
            user,
            tournament.entry_fee,
            TournamentEntryFee(description=f"Tournament entry: {tournament.title}", tournament_id=tournament.id),
        )
    participant = TournamentParticipant(user_id=user.id, joined_at=now, score=0, time_spent=0, answers=[])
    tournament.participants.append(participant)
    await db.flush()
    return participant


async def _refund(db: AsyncSession, tournament: Tournament, user: User, reason: str) -> None:
    if tournament.entry_fee > 0:
        await credit(
            db,
            user,
            tournament.entry_fee,
            TournamentRefund(description=f"{reason}: {tournament.title}", tournament_id=tournament.id),
        )


def _validate_dates(
    registration_start: datetime,
    registration_end: datetime,
    start_time: datetime,
    end_time: datetime,
    now: datetime,
) -> None:
    if not registration_start < registration_end < start_time < end_time:
        raise InvalidDates("Dates must satisfy registration start < registration end < start < end")
    if start_time <= now:
        raise InvalidDates("Start time must be in the future")


def _validate_capacity(min_participants: int, max_participants: int, settings: Settings) -> None:
    if not settings.tournament_min_participants <= max_participants <= settings.tournament_max_participants:
        raise InvalidTournamentSettings(
            f"Max participants must be between {settings.tournament_min_participants} "
            f"and {settings.tournament_max_participants}"
        )
    if min_participants < 2:
        raise InvalidTournamentSettings("Min participants cannot be below 2")
    if min_participants > max_participants:
        raise InvalidTournamentSettings("Min participants cannot exceed max participants")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def create_tournament(
    db: AsyncSession,
    redis: object | None,
    creator_id: int,
    *,
    title: str,
    category: str,
    entry_fee: Decimal,
    prize_pool: Decimal,
    max_participants: int,
    registration_start: datetime,
    registration_end: datetime,
    start_time: datetime,
    end_time: datetime,
    description: str | None = None,
    difficulty: str = "medium",
    min_participants: int = 2,
    question_count: int = 10,
    time_per_question: int = 30,
    is_private: bool = False,
    prize_split: Sequence[dict[str, Any]] | None = None,
    question_ids: Sequence[int] | None = None,
    options: dict[str, Any] | None = None,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> Tournament:
    """Create a tournament; the creator pays the entry fee and is enrolled first."""
    settings = settings or get_settings()
    now = _now(now)
    _validate_dates(registration_start, registration_end, start_time, end_time, now)
    _validate_capacity(min_participants, max_participants, settings)

    entry_fee = to_money(entry_fee)
    prize_pool = to_money(prize_pool)
    if entry_fee < 0 or prize_pool < 0:
        raise AmountOutOfRange("Entry fee and prize pool must be non-negative")

    split = prize_split if prize_split is not None else default_split(settings.tournament_default_prize_split)
    distribution = build_prize_distribution(prize_pool, split)

    async with unit_of_work(db):
        creator = await lock_user(db, creator_id)
        if question_ids:
            if len(set(question_ids)) != len(question_ids):
                raise InvalidQuestions("Duplicate questions in tournament")
            await load_active_questions(db, question_ids)

        tournament = Tournament(
            title=title,
            description=description,
            category=category,
            difficulty=difficulty,
            entry_fee=entry_fee,
            prize_pool=prize_pool,
            app_fee=to_money(entry_fee * settings.tournament_app_fee_rate),
            max_participants=max_participants,
            min_participants=min_participants,
            status=UPCOMING,
            phase=phase_for(UPCOMING),
            registration_start=registration_start,
            registration_end=registration_end,
            start_time=start_time,
            end_time=end_time,
            question_count=len(question_ids) if question_ids else question_count,
            time_per_question=time_per_question,
            is_private=is_private,
            invite_code=await _unique_invite_code(db) if is_private else None,
            settings={**DEFAULT_OPTIONS, **(options or {})},
            prize_distribution=distribution,
            total_prizes=Decimal("0.00"),
            created_by_id=creator.id,
            created_at=now,
            updated_at=now,
        )
        tournament.participants = []
        tournament.questions = [
            TournamentQuestion(question_id=qid, position=idx) for idx, qid in enumerate(question_ids or [])
        ]
        db.add(tournament)
        await db.flush()
        await _enroll(db, tournament, creator, now)

    logger.info(
        "Tournament created: id=%s title=%r creator=%s entry_fee=%s prize_pool=%s",
        tournament.id, title, creator_id, entry_fee, prize_pool,
    )
    await events.publish_tournament_event(redis, events.TOURNAMENT_CREATED, tournament, user_id=creator_id)
    if entry_fee > 0:
        await push_balance_update(redis, creator)
    return tournament


async def join_tournament(
    db: AsyncSession,
    redis: object | None,
    tournament_id: int,
    user_id: int,
    invite_code: str | None = None,
    now: datetime | None = None,
) -> TournamentParticipant:
    """Debit the entry fee and add the user to the roster."""
    now = _now(now)
    async with unit_of_work(db):
        tournament = await _lock_tournament(db, tournament_id)
        if (
            tournament.is_private
            and tournament.created_by_id != user_id
            and (invite_code or "").strip().upper() != tournament.invite_code
        ):
            raise PrivateTournament()
        if find_participant(tournament, user_id) is not None:
            raise AlreadyParticipant()
        if tournament.participant_count >= tournament.max_participants:
            raise TournamentFull(max_participants=tournament.max_participants)
        if not registration_open(tournament, now):
            raise RegistrationClosed()

        user = await lock_user(db, user_id)
        participant = await _enroll(db, tournament, user, now)

    logger.info(
        "Tournament joined: id=%s user=%s participants=%s/%s",
        tournament_id, user_id, tournament.participant_count, tournament.max_participants,
    )
    await events.publish_tournament_event(redis, events.PARTICIPANT_JOINED, tournament, user_id=user_id)
    if tournament.entry_fee > 0:
        await push_balance_update(redis, user)
    return participant


async def leave_tournament(
    db: AsyncSession,
    redis: object | None,
    tournament_id: int,
    user_id: int,
) -> Tournament:
    """Remove the user from an upcoming tournament and refund the entry fee."""
    async with unit_of_work(db):
        tournament = await _lock_tournament(db, tournament_id)
        participant = find_participant(tournament, user_id)
        if participant is None:
            raise NotAParticipant()
        if tournament.status in (ACTIVE, COMPLETED):
            raise TournamentStarted("Cannot leave a tournament after it has started")
        if tournament.status == CANCELLED:
            raise InvalidTransition("Tournament has been cancelled")

        user = await lock_user(db, user_id)
        tournament.participants.remove(participant)
        await _refund(db, tournament, user, "Tournament refund")
        await db.flush()

    logger.info("Tournament left: id=%s user=%s refund=%s", tournament_id, user_id, tournament.entry_fee)
    await events.publish_tournament_event(redis, events.PARTICIPANT_LEFT, tournament, user_id=user_id)
    if tournament.entry_fee > 0:
        await push_balance_update(redis, user)
    return tournament


async def _assign_questions(db: AsyncSession, tournament: Tournament) -> None:
    """Fix the question set: category matches first, then same difficulty."""
    picked = await select_questions(
        db, difficulty=tournament.difficulty, category=tournament.category,
        limit=tournament.question_count, min_quality=0,
    )
    if len(picked) < tournament.question_count:
        extra = await select_questions(
            db, difficulty=tournament.difficulty, limit=tournament.question_count * 2, min_quality=0,
        )
        seen = {q.id for q in picked}
        picked += [q for q in extra if q.id not in seen][: tournament.question_count - len(picked)]
    if not picked:
        logger.warning("Tournament %s starts without questions", tournament.id)
    tournament.questions = [TournamentQuestion(question=q, position=idx) for idx, q in enumerate(picked)]


async def start_tournament(
    db: AsyncSession,
    redis: object | None,
    tournament_id: int,
    now: datetime | None = None,
) -> Tournament:
    """upcoming -> active. Freezes the roster."""
    now = _now(now)
    async with unit_of_work(db):
        tournament = await _lock_tournament(db, tournament_id)
        validate_transition(tournament.status, ACTIVE)
        if tournament.participant_count < tournament.min_participants:
            raise NotEnoughParticipants(
                participants=tournament.participant_count,
                min_participants=tournament.min_participants,
            )
        if not tournament.questions:
            await _assign_questions(db, tournament)
        await _claim_transition(db, tournament, ACTIVE, actual_start_time=now)

    logger.info("Tournament started: id=%s participants=%s", tournament_id, tournament.participant_count)
    await events.publish_tournament_event(redis, events.TOURNAMENT_STARTED, tournament)
    return tournament


async def submit_answers(
    db: AsyncSession,
    redis: object | None,
    tournament_id: int,
    user_id: int,
    answers: Sequence[TournamentAnswer],
    now: datetime | None = None,
) -> TournamentParticipant:
    """Score answers against the tournament's question set.

    A question counts once per participant; resubmissions are ignored, so a
    score can only grow while the tournament is active.
    """
    now = _now(now)
    async with unit_of_work(db):
        tournament = await _lock_tournament(db, tournament_id)
        participant = find_participant(tournament, user_id)
        if participant is None:
            raise NotAParticipant()
        if tournament.status != ACTIVE:
            raise InvalidTransition("Tournament is not active")

        questions = {tq.question_id: tq.question for tq in tournament.questions}
        if any(a.question_id not in questions for a in answers):
            raise InvalidQuestions("Some questions are not part of this tournament")

        answered = {entry["question_id"] for entry in participant.answers}
        recorded: list[dict[str, Any]] = []
        for answer in answers:
            if answer.question_id in answered:
                continue
            answered.add(answer.question_id)
            question = questions[answer.question_id]
            is_correct = answer.selected_answer == question.correct_answer
            participant.score += question.points if is_correct else 0
            participant.time_spent += answer.time_spent_ms
            record_answer(question, is_correct, answer.time_spent_ms, now)
            recorded.append({
                "question_id": answer.question_id,
                "selected_answer": answer.selected_answer,
                "is_correct": is_correct,
                "time_spent": answer.time_spent_ms,
            })
        participant.answers = [*participant.answers, *recorded]

    if recorded:
        await events.publish_tournament_event(
            redis, events.SCORE_UPDATED, tournament, user_id=user_id, score=participant.score,
        )
    return participant


async def complete_tournament(
    db: AsyncSession,
    redis: object | None,
    tournament_id: int,
    now: datetime | None = None,
) -> Tournament:
    """active -> completed. Ranks the roster and pays prizes exactly once."""
    now = _now(now)
    async with unit_of_work(db):
        tournament = await _lock_tournament(db, tournament_id)
        validate_transition(tournament.status, COMPLETED)
        users = await lock_users(db, [p.user_id for p in tournament.participants])
        ranked = rank_participants(tournament.participants)
        await _claim_transition(
            db,
            tournament,
            COMPLETED,
            actual_end_time=now,
            winner_id=ranked[0].user_id if ranked else None,
        )

        total = Decimal("0.00")
        for participant in ranked:
            prize = prize_for_rank(tournament.prize_distribution, participant.rank)
            participant.prize = prize
            if prize > 0:
                await credit(
                    db,
                    users[participant.user_id],
                    prize,
                    TournamentPrize(
                        description=f"Tournament prize: {tournament.title} (Rank {participant.rank})",
                        tournament_id=tournament.id,
                        rank=participant.rank,
                    ),
                )
                total += prize
        tournament.total_prizes = total

    logger.info(
        "Tournament completed: id=%s winner=%s total_prizes=%s",
        tournament_id, tournament.winner_id, tournament.total_prizes,
    )
    await events.publish_tournament_event(
        redis, events.TOURNAMENT_COMPLETED, tournament, user_id=tournament.winner_id,
    )
    for participant in ranked:
        if participant.prize > 0:
            await push_balance_update(redis, users[participant.user_id])
    return tournament


async def cancel_tournament(
    db: AsyncSession,
    redis: object | None,
    tournament_id: int,
    actor: User | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> Tournament:
    """upcoming -> cancelled. Refunds every participant; the roster stays as a record."""
    now = _now(now)
    async with unit_of_work(db):
        tournament = await _lock_tournament(db, tournament_id)
        _check_manager(tournament, actor)
        validate_transition(tournament.status, CANCELLED)
        users = await lock_users(db, [p.user_id for p in tournament.participants])
        await _claim_transition(db, tournament, CANCELLED, actual_end_time=now)
        for participant in tournament.participants:
            await _refund(db, tournament, users[participant.user_id], "Tournament cancelled")
        if reason:
            tournament.settings = {**tournament.settings, "cancel_reason": reason}

    logger.info("Tournament cancelled: id=%s reason=%s refunds=%s", tournament_id, reason, len(users))
    await events.publish_tournament_event(redis, events.TOURNAMENT_CANCELLED, tournament, reason=reason)
    if tournament.entry_fee > 0:
        for user in users.values():
            await push_balance_update(redis, user)
    return tournament


async def update_tournament(
    db: AsyncSession,
    tournament_id: int,
    actor: User,
    title: str | None = None,
    description: str | None = None,
    options: dict[str, Any] | None = None,
) -> Tournament:
    """Edit descriptive fields while the tournament is still upcoming."""
    async with unit_of_work(db):
        tournament = await _lock_tournament(db, tournament_id)
        _check_manager(tournament, actor)
        if tournament.status != UPCOMING:
            raise TournamentStarted("Cannot update tournament after it has started")
        if title is not None:
            tournament.title = title
        if description is not None:
            tournament.description = description
        if options:
            tournament.settings = {**tournament.settings, **options}

    logger.info("Tournament updated: id=%s by=%s", tournament_id, actor.id)
    return tournament


async def delete_tournament(db: AsyncSession, tournament_id: int, actor: User) -> None:
    """Delete an empty tournament."""
    async with unit_of_work(db):
        tournament = await _lock_tournament(db, tournament_id)
        _check_manager(tournament, actor)
        if tournament.participants:
            raise TournamentHasParticipants()
        await db.delete(tournament)

    logger.info("Tournament deleted: id=%s by=%s", tournament_id, actor.id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_tournament(db: AsyncSession, tournament_id: int) -> Tournament:
    result = await db.execute(
        select(Tournament)
        .where(Tournament.id == tournament_id)
        .options(selectinload(Tournament.participants), selectinload(Tournament.questions))
    )
    tournament = result.scalar_one_or_none()
    if tournament is None:
        raise TournamentNotFound()
    return tournament


async def list_tournaments(
    db: AsyncSession,
    status: str | None = None,
    category: str | None = None,
    difficulty: str | None = None,
    sort_by: str = "start_time",
    sort_order: str = "asc",
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Tournament], int]:
    """Public tournaments with filters. Returns (items, total)."""
    filters: list[Any] = [Tournament.is_private.is_(False)]
    if status:
        filters.append(Tournament.status == status)
    if category:
        filters.append(Tournament.category == category)
    if difficulty:
        filters.append(Tournament.difficulty == difficulty)

    if sort_by == "participants":
        sort_col: Any = (
            select(func.count(TournamentParticipant.id))
            .where(TournamentParticipant.tournament_id == Tournament.id)
            .correlate(Tournament)
            .scalar_subquery()
        )
    elif sort_by in SORT_FIELDS:
        sort_col = getattr(Tournament, sort_by)
    else:
        sort_col = Tournament.start_time
    order = sort_col.desc() if sort_order == "desc" else sort_col.asc()

    total = (await db.execute(select(func.count()).select_from(Tournament).where(*filters))).scalar() or 0
    result = await db.execute(
        select(Tournament)
        .where(*filters)
        .options(selectinload(Tournament.participants))
        .order_by(order, Tournament.id.asc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def get_leaderboard(db: AsyncSession, tournament_id: int) -> list[TournamentParticipant]:
    """Final ranking once completed, live standing order otherwise."""
    tournament = await get_tournament(db, tournament_id)
    if tournament.status == COMPLETED:
        return sorted(tournament.participants, key=lambda p: p.rank)
    return sorted(tournament.participants, key=ranking_key)


async def get_user_tournaments(
    db: AsyncSession,
    user_id: int,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Tournament]:
    stmt = (
        select(Tournament)
        .join(TournamentParticipant, TournamentParticipant.tournament_id == Tournament.id)
        .where(TournamentParticipant.user_id == user_id)
        .options(selectinload(Tournament.participants))
        .order_by(Tournament.start_time.desc(), Tournament.id.desc())
        .limit(limit)
        .offset(offset)
    )
    if status:
        stmt = stmt.where(Tournament.status == status)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_tournament_by_invite(db: AsyncSession, invite_code: str) -> Tournament:
    result = await db.execute(
        select(Tournament)
        .where(Tournament.invite_code == invite_code.strip().upper())
        .options(selectinload(Tournament.participants))
    )
    tournament = result.scalar_one_or_none()
    if tournament is None:
        raise TournamentNotFound()
    return tournament


async def get_tournament_questions(
    db: AsyncSession,
    tournament_id: int,
    user_id: int,
) -> list[TournamentQuestion]:
    """The question set in position order, for participants once started."""
    tournament = await get_tournament(db, tournament_id)
    if find_participant(tournament, user_id) is None:
        raise NotAParticipant()
    if tournament.status not in (ACTIVE, COMPLETED):
        raise InvalidTransition("Tournament has not started yet")
    return sorted(tournament.questions, key=lambda tq: tq.position)
