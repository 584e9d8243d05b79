"""Deterministic tournament ranking and prize math.

Participants are ranked by score DESC, then time spent ASC (faster wins),
then join time ASC, then user id ASC, so every roster has one total order.

Prizes are floored to the cent; whatever the flooring leaves over from the
distributed amount goes to rank 1.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_DOWN, Decimal
from typing import Any

from quizpot.db.models import TournamentParticipant
from quizpot.errors import InvalidPrizeDistribution

CENT = Decimal("0.01")


def ranking_key(p: TournamentParticipant) -> tuple[int, int, Any, int]:
    return (-p.score, p.time_spent, p.joined_at, p.user_id)


def rank_participants(participants: Sequence[TournamentParticipant]) -> list[TournamentParticipant]:
    """Sort participants and assign ranks 1..N with no gaps."""
    ranked = sorted(participants, key=ranking_key)
    for idx, p in enumerate(ranked):
        p.rank = idx + 1
    return ranked


def validate_split(split: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    """Check a ``[{rank, percentage}]`` override.

    Ranks must be unique positive integers, percentages positive and summing
    to at most 100. Returns the entries sorted by rank.
    """
    entries = sorted(split, key=lambda e: int(e["rank"]))
    ranks = [int(e["rank"]) for e in entries]
    if len(set(ranks)) != len(ranks) or any(r < 1 for r in ranks):
        raise InvalidPrizeDistribution("Prize ranks must be unique positive integers")
    percentages = [Decimal(str(e["percentage"])) for e in entries]
    if any(p <= 0 for p in percentages):
        raise InvalidPrizeDistribution("Prize percentages must be positive")
    if sum(percentages) > 100:
        raise InvalidPrizeDistribution("Prize percentages cannot exceed 100")
    return [{"rank": r, "percentage": p} for r, p in zip(ranks, percentages)]


def build_prize_distribution(
    prize_pool: Decimal,
    split: Sequence[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Compute ``[{rank, percentage, prize}]`` for a pool.

    Each prize is ``floor(pool * pct / 100)`` to the cent; the cents lost to
    flooring across all entries are added to rank 1's prize.
    """
    entries = validate_split(split)
    if not entries:
        return []

    exact_total = Decimal(0)
    distribution: list[dict[str, Any]] = []
    for entry in entries:
        exact = prize_pool * entry["percentage"] / 100
        exact_total += exact
        distribution.append({
            "rank": entry["rank"],
            "percentage": float(entry["percentage"]),
            "prize": exact.quantize(CENT, rounding=ROUND_DOWN),
        })

    target_total = exact_total.quantize(CENT, rounding=ROUND_DOWN)
    remainder = target_total - sum((d["prize"] for d in distribution), Decimal(0))
    first = next((d for d in distribution if d["rank"] == 1), None)
    if first is not None and remainder > 0:
        first["prize"] += remainder

    for d in distribution:
        d["prize"] = str(d["prize"])
    return distribution


def default_split(percentages: Sequence[int]) -> list[dict[str, Any]]:
    """Turn ``[50, 30, 20]`` into ranked split entries."""
    return [{"rank": i + 1, "percentage": pct} for i, pct in enumerate(percentages)]


def prize_for_rank(distribution: Sequence[dict[str, Any]], rank: int) -> Decimal:
    """Prize for a rank; ranks outside the distribution win nothing."""
    for entry in distribution:
        if int(entry["rank"]) == rank:
            return Decimal(str(entry["prize"]))
    return Decimal("0.00")
