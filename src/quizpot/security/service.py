"""Quiz attempt rate limiting and fraud heuristics.

State lives in Redis so limits hold across restarts and instances:

- ``quizsec:attempts:{user}:{difficulty}``: sorted set of attempt
  timestamps (ms). Serves the daily and hourly windows.
- ``quizsec:state:{user}:{difficulty}``: hash with ``last_attempt`` and
  ``consecutive_high_scores``.
- ``quizsec:records``: index of ``{user}:{difficulty}`` pairs with state.
- ``quizsec:suspicious``: flagged users. Sticky until an admin clears it.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from redis.exceptions import RedisError, WatchError

from quizpot.config import Settings, get_settings
from quizpot.errors import RateLimited, SuspiciousAccount, SystemError
from quizpot.security.rules import SecurityRules, load_rules

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

SUSPICIOUS_KEY = "quizsec:suspicious"
RECORDS_KEY = "quizsec:records"

DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
HOURLY_LIMIT_EXCEEDED = "HOURLY_LIMIT_EXCEEDED"
COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
SYSTEM_ERROR = "SYSTEM_ERROR"

FLAG_HIGH_SCORE_STREAK = "Too many consecutive high scores"
FLAG_TOO_FAST = "Unrealistically fast answers"
FLAG_TOO_SLOW = "Unrealistically slow answers"
FLAG_PERFECT_AND_FAST = "Perfect score with unrealistic timing"
FLAG_UNIFORM_TIMING = "Consistent timing suggests automation"


def attempts_key(user_id: int, difficulty: str) -> str:
    return f"quizsec:attempts:{user_id}:{difficulty}"


def state_key(user_id: int, difficulty: str) -> str:
    return f"quizsec:state:{user_id}:{difficulty}"


@dataclass(frozen=True)
class AnsweredQuestion:
    is_correct: bool
    time_spent_ms: int


@dataclass(frozen=True)
class QuizEligibility:
    allowed: bool
    reason: str | None = None
    message: str = "Quiz allowed"
    reset_time: datetime | None = None

    def raise_for_denial(self) -> None:
        """Turn a denial into the matching domain error."""
        if self.allowed:
            return
        if self.reason == SUSPICIOUS_ACTIVITY:
            raise SuspiciousAccount(self.message)
        if self.reason == SYSTEM_ERROR:
            raise SystemError(self.message)
        raise RateLimited(self.reason or "", self.message, reset_time=self.reset_time)


@dataclass(frozen=True)
class AttemptReservation:
    """A provisional attempt written by the gate, finalized by ``record_attempt``."""

    user_id: int
    difficulty: str
    member: str
    reserved_at: int
    previous_last_attempt: str | None = None


@dataclass
class SuspicionAssessment:
    consecutive_high_scores: int
    avg_time_per_question_ms: float
    flags: list[str] = field(default_factory=list)
    suspicious: bool = False


def calculate_variance(values: Sequence[float]) -> float:
    """Population variance; 0 for an empty sequence."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def detect_suspicious_activity(
    rules: SecurityRules,
    score: float,
    time_spent_ms: int,
    answers: Sequence[AnsweredQuestion],
    previous_high_scores: int = 0,
) -> SuspicionAssessment:
    """Score one completed attempt against the heuristics.

    Each heuristic contributes at most one flag; the attempt is suspicious
    when the flag count reaches ``rules.suspicion_flag_threshold``.
    """
    streak = previous_high_scores + 1 if score >= rules.suspicious_score_threshold else 0
    avg = time_spent_ms / (len(answers) or 1)
    result = SuspicionAssessment(consecutive_high_scores=streak, avg_time_per_question_ms=avg)

    if streak >= rules.max_consecutive_high_scores:
        result.flags.append(FLAG_HIGH_SCORE_STREAK)
    if avg < rules.time_per_question_min_ms:
        result.flags.append(FLAG_TOO_FAST)
    if avg > rules.time_per_question_max_ms:
        result.flags.append(FLAG_TOO_SLOW)
    if answers and all(a.is_correct for a in answers) and avg < rules.perfect_score_max_avg_ms:
        result.flags.append(FLAG_PERFECT_AND_FAST)
    if len(answers) >= rules.timing_variance_min_answers:
        variance = calculate_variance([a.time_spent_ms for a in answers])
        if variance < rules.min_timing_variance:
            result.flags.append(FLAG_UNIFORM_TIMING)

    result.suspicious = len(result.flags) >= rules.suspicion_flag_threshold
    return result


class QuizSecurityService:
    """Redis-backed quiz gate.

    ``rules`` pins the thresholds (tests, isolated callers); when omitted the
    effective rules are loaded from Redis on every call. ``clock`` returns
    epoch seconds.
    """

    def __init__(
        self,
        redis: Any,  # noqa: ANN401
        rules: SecurityRules | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = redis
        self._rules = rules
        self._settings = settings or get_settings()
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def get_rules(self) -> SecurityRules:
        if self._rules is not None:
            return self._rules
        return await load_rules(self.redis, self._settings)

    @staticmethod
    def day_bounds_ms(now_ms: int, rules: SecurityRules) -> tuple[int, int]:
        """Start of the current local day and of the next one, in epoch ms."""
        local = datetime.fromtimestamp(now_ms / 1000, tz=rules.tz)
        start = local.replace(hour=0, minute=0, second=0, microsecond=0)
        end = (start + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return int(start.timestamp() * 1000), int(end.timestamp() * 1000)

    # ── Gate ──

    async def can_take_quiz(self, user_id: int, difficulty: str = "easy") -> QuizEligibility:
        """Check, in order: daily cap, hourly cap, cooldown, suspicious flag."""
        now = self._now_ms()
        try:
            rules = await self.get_rules()
            if rules.enable_rate_limiting:
                denial = await self._check_limits(user_id, difficulty, now, rules)
                if denial is not None:
                    return denial

            if await self.redis.sismember(SUSPICIOUS_KEY, str(user_id)):
                return QuizEligibility(
                    allowed=False,
                    reason=SUSPICIOUS_ACTIVITY,
                    message="Your account is under review for suspicious activity",
                )
        except (RedisError, OSError, ValueError):
            logger.exception("Error checking quiz eligibility for user %s", user_id)
            return QuizEligibility(allowed=False, reason=SYSTEM_ERROR, message="System error occurred")

        return QuizEligibility(allowed=True)

    async def _check_limits(
        self, user_id: int, difficulty: str, now: int, rules: SecurityRules,
    ) -> QuizEligibility | None:
        day_start, _ = self.day_bounds_ms(now, rules)
        pipe = self.redis.pipeline(transaction=False)
        pipe.zcount(attempts_key(user_id, difficulty), day_start, "+inf")
        pipe.zrangebyscore(attempts_key(user_id, difficulty), f"({now - HOUR_MS}", "+inf", withscores=True)
        pipe.hget(state_key(user_id, difficulty), "last_attempt")
        daily_count, hourly, last_attempt = await pipe.execute()
        return self._limit_denial(daily_count, hourly, last_attempt, now, rules)

    def _limit_denial(
        self,
        daily_count: int,
        hourly: Sequence[tuple[str, float]],
        last_attempt: str | None,
        now: int,
        rules: SecurityRules,
    ) -> QuizEligibility | None:
        _, day_end = self.day_bounds_ms(now, rules)
        if daily_count >= rules.max_daily_quizzes:
            return QuizEligibility(
                allowed=False,
                reason=DAILY_LIMIT_EXCEEDED,
                message=f"You can only take {rules.max_daily_quizzes} quizzes per day",
                reset_time=_to_datetime(day_end),
            )

        if len(hourly) >= rules.max_hourly_quizzes:
            # The window reopens when the oldest attempt in it ages out
            oldest = int(hourly[0][1])
            return QuizEligibility(
                allowed=False,
                reason=HOURLY_LIMIT_EXCEEDED,
                message=f"You can only take {rules.max_hourly_quizzes} quizzes per hour",
                reset_time=_to_datetime(oldest + HOUR_MS),
            )

        if last_attempt:
            elapsed = now - int(last_attempt)
            if elapsed < rules.min_time_between_quizzes_ms:
                remaining = rules.min_time_between_quizzes_ms - elapsed
                return QuizEligibility(
                    allowed=False,
                    reason=COOLDOWN_ACTIVE,
                    message=f"Please wait {-(-remaining // 1000)} seconds before taking another quiz",
                    reset_time=_to_datetime(now + remaining),
                )
        return None

    async def ensure_can_take_quiz(self, user_id: int, difficulty: str = "easy") -> None:
        """Raise RateLimited / SuspiciousAccount / SystemError when denied."""
        eligibility = await self.can_take_quiz(user_id, difficulty)
        eligibility.raise_for_denial()

    async def reserve_attempt(self, user_id: int, difficulty: str = "easy") -> AttemptReservation:
        """Check the gate and claim an attempt slot in one optimistic transaction.

        The limits are re-read under WATCH and the provisional attempt plus
        ``last_attempt`` are written in the same MULTI, so concurrent
        submissions for one (user, difficulty) cannot both pass. Raises like
        ``ensure_can_take_quiz``; hand the reservation to ``record_attempt``
        or ``release_attempt``.
        """
        now = self._now_ms()
        a_key = attempts_key(user_id, difficulty)
        s_key = state_key(user_id, difficulty)
        member = f"{now}:{uuid.uuid4().hex[:8]}"
        try:
            rules = await self.get_rules()
            day_start, _ = self.day_bounds_ms(now, rules)
            async with self.redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(a_key, s_key, SUSPICIOUS_KEY)
                        previous = await pipe.hget(s_key, "last_attempt")
                        denial = None
                        if rules.enable_rate_limiting:
                            denial = self._limit_denial(
                                await pipe.zcount(a_key, day_start, "+inf"),
                                await pipe.zrangebyscore(a_key, f"({now - HOUR_MS}", "+inf", withscores=True),
                                previous,
                                now,
                                rules,
                            )
                        if denial is None and await pipe.sismember(SUSPICIOUS_KEY, str(user_id)):
                            denial = QuizEligibility(
                                allowed=False,
                                reason=SUSPICIOUS_ACTIVITY,
                                message="Your account is under review for suspicious activity",
                            )
                        if denial is not None:
                            denial.raise_for_denial()

                        pipe.multi()
                        pipe.zadd(a_key, {member: now})
                        pipe.hset(s_key, "last_attempt", now)
                        pipe.sadd(RECORDS_KEY, f"{user_id}:{difficulty}")
                        await pipe.execute()
                        break
                    except WatchError:
                        continue
        except (RedisError, OSError, ValueError) as exc:
            logger.exception("Error reserving quiz attempt for user %s", user_id)
            raise SystemError("System error occurred") from exc

        return AttemptReservation(
            user_id=user_id,
            difficulty=difficulty,
            member=member,
            reserved_at=now,
            previous_last_attempt=previous,
        )

    async def release_attempt(self, reservation: AttemptReservation) -> None:
        """Undo a reservation whose submission never completed."""
        a_key = attempts_key(reservation.user_id, reservation.difficulty)
        s_key = state_key(reservation.user_id, reservation.difficulty)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(s_key)
                    current = await pipe.hget(s_key, "last_attempt")
                    pipe.multi()
                    pipe.zrem(a_key, reservation.member)
                    # Only roll back last_attempt if no later attempt replaced it
                    if current is not None and int(current) == reservation.reserved_at:
                        if reservation.previous_last_attempt is None:
                            pipe.hdel(s_key, "last_attempt")
                        else:
                            pipe.hset(s_key, "last_attempt", reservation.previous_last_attempt)
                    await pipe.execute()
                    break
                except WatchError:
                    continue
        logger.info("Quiz attempt reservation released for user %s", reservation.user_id)

    # ── Recording ──

    async def record_attempt(
        self,
        user_id: int,
        difficulty: str,
        score: float,
        time_spent_ms: int,
        answers: Sequence[AnsweredQuestion],
        reservation: AttemptReservation | None = None,
    ) -> SuspicionAssessment:
        """Append the attempt, update the streak, and flag the user if suspicious.

        The read of the streak and the writes are one optimistic transaction
        per (user, difficulty); a concurrent writer forces a retry. With a
        ``reservation`` the attempt was already counted by the gate and only
        the streak and flag are written.
        """
        rules = await self.get_rules()
        now = self._now_ms()
        retention_ms = self._settings.quiz_retention_days * DAY_MS
        a_key = attempts_key(user_id, difficulty)
        s_key = state_key(user_id, difficulty)

        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(s_key, a_key)
                    previous = int(await pipe.hget(s_key, "consecutive_high_scores") or 0)
                    assessment = detect_suspicious_activity(rules, score, time_spent_ms, answers, previous)
                    flagged = rules.enable_fraud_detection and assessment.suspicious

                    state: dict[str, int] = {"consecutive_high_scores": assessment.consecutive_high_scores}

                    pipe.multi()
                    if reservation is None:
                        pipe.zadd(a_key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
                        state["last_attempt"] = now
                    pipe.zremrangebyscore(a_key, "-inf", f"({now - retention_ms}")
                    pipe.hset(s_key, mapping=state)
                    pipe.sadd(RECORDS_KEY, f"{user_id}:{difficulty}")
                    if flagged:
                        pipe.sadd(SUSPICIOUS_KEY, str(user_id))
                    await pipe.execute()
                    break
                except WatchError:
                    continue

        if not rules.enable_fraud_detection:
            assessment.suspicious = False
        if assessment.suspicious:
            logger.warning(
                "Suspicious activity detected for user %s: score=%s time=%sms avg=%.0fms flags=%s",
                user_id, score, time_spent_ms, assessment.avg_time_per_question_ms, assessment.flags,
            )
        return assessment

    # ── Accessors ──

    async def get_user_quiz_stats(self, user_id: int, difficulty: str = "easy") -> dict[str, Any]:
        rules = await self.get_rules()
        now = self._now_ms()
        day_start, _ = self.day_bounds_ms(now, rules)
        pipe = self.redis.pipeline(transaction=False)
        pipe.zcount(attempts_key(user_id, difficulty), day_start, "+inf")
        pipe.zcount(attempts_key(user_id, difficulty), f"({now - HOUR_MS}", "+inf")
        pipe.hgetall(state_key(user_id, difficulty))
        pipe.sismember(SUSPICIOUS_KEY, str(user_id))
        daily, hourly, state, suspicious = await pipe.execute()

        last_attempt = state.get("last_attempt") if state else None
        return {
            "daily_attempts": daily,
            "hourly_attempts": hourly,
            "last_attempt": _to_datetime(int(last_attempt)) if last_attempt else None,
            "consecutive_high_scores": int(state.get("consecutive_high_scores", 0)) if state else 0,
            "is_suspicious": bool(suspicious),
            "remaining_daily": max(0, rules.max_daily_quizzes - daily),
            "remaining_hourly": max(0, rules.max_hourly_quizzes - hourly),
        }

    async def is_suspicious(self, user_id: int) -> bool:
        return bool(await self.redis.sismember(SUSPICIOUS_KEY, str(user_id)))

    async def list_suspicious_users(self) -> list[int]:
        members = await self.redis.smembers(SUSPICIOUS_KEY)
        return sorted(int(m) for m in members)

    async def clear_suspicious_flag(self, user_id: int) -> bool:
        removed = await self.redis.srem(SUSPICIOUS_KEY, str(user_id))
        logger.info("Suspicious flag cleared for user %s", user_id)
        return bool(removed)

    async def reset_user_attempts(self, user_id: int, difficulty: str = "easy") -> None:
        pipe = self.redis.pipeline(transaction=True)
        pipe.delete(attempts_key(user_id, difficulty), state_key(user_id, difficulty))
        pipe.srem(RECORDS_KEY, f"{user_id}:{difficulty}")
        await pipe.execute()
        logger.info("Quiz attempts reset for user %s, difficulty %s", user_id, difficulty)

    async def get_system_stats(self) -> dict[str, Any]:
        rules = await self.get_rules()
        active = await self.redis.scard(RECORDS_KEY)
        suspicious = await self.redis.scard(SUSPICIOUS_KEY)
        return {
            "total_active_users": active,
            "suspicious_users": suspicious,
            "suspicious_percentage": (suspicious / active) * 100 if active else 0.0,
            "security_rules": rules.model_dump(),
        }

    async def cleanup(self) -> int:
        """Drop attempts older than the retention window and empty records.

        Returns the number of records removed.
        """
        cutoff = self._now_ms() - self._settings.quiz_retention_days * DAY_MS
        removed = 0
        for record in await self.redis.smembers(RECORDS_KEY):
            name = record.decode() if isinstance(record, bytes) else record
            user_id, difficulty = name.rsplit(":", 1)
            a_key = attempts_key(int(user_id), difficulty)
            await self.redis.zremrangebyscore(a_key, "-inf", f"({cutoff}")
            if await self.redis.zcard(a_key) == 0:
                pipe = self.redis.pipeline(transaction=True)
                pipe.delete(a_key, state_key(int(user_id), difficulty))
                pipe.srem(RECORDS_KEY, record)
                await pipe.execute()
                removed += 1
        logger.info("Security service cleanup completed: %d records removed", removed)
        return removed


def _to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
