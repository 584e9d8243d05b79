"""Tournament state machine.

State progression: upcoming -> active -> completed, or upcoming -> cancelled.
Transitions are forward-only; completed and cancelled are terminal.
"""

from __future__ import annotations

from quizpot.errors import InvalidTransition

UPCOMING = "upcoming"
ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"

VALID_TRANSITIONS: dict[str, list[str]] = {
    UPCOMING: [ACTIVE, CANCELLED],
    ACTIVE: [COMPLETED],
    COMPLETED: [],
    CANCELLED: [],
}

# Finer-grained view of each status
PHASES: dict[str, str] = {
    UPCOMING: "registration",
    ACTIVE: "quiz",
    COMPLETED: "results",
    CANCELLED: "registration",
}


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a state transition. Raises InvalidTransition if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise InvalidTransition(
            f"Invalid transition: {current_status} -> {target_status}",
            current_status=current_status,
            target_status=target_status,
        )


def phase_for(status: str) -> str:
    return PHASES[status]
