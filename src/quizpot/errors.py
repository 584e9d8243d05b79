"""Domain error taxonomy.

Every rejected operation raises a ``QuizPotError`` subclass carrying a stable
machine code and a human-readable message. The global exception handler turns
them into JSON responses; internal exception detail is never surfaced.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any


class QuizPotError(Exception):
    """Base class for caller-facing domain errors."""

    code: str = "ERROR"
    status_code: int = 400
    default_message: str = "Request could not be completed"

    def __init__(self, message: str | None = None, **details: Any) -> None:  # noqa: ANN401
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "code": self.code}
        for key, value in self.details.items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Decimal):
                value = str(value)
            payload[key] = value
        return payload


# --- Ledger ---


class InsufficientFunds(QuizPotError):
    code = "INSUFFICIENT_BALANCE"
    default_message = "Insufficient balance"


class UserNotFound(QuizPotError):
    code = "USER_NOT_FOUND"
    status_code = 404
    default_message = "User not found"


class TransactionNotFound(QuizPotError):
    code = "TRANSACTION_NOT_FOUND"
    status_code = 404
    default_message = "Transaction not found"


class TransactionAlreadyProcessed(QuizPotError):
    code = "TRANSACTION_ALREADY_PROCESSED"
    status_code = 409
    default_message = "Transaction has already been processed"


class InvalidTransactionType(QuizPotError):
    code = "INVALID_TRANSACTION_TYPE"
    default_message = "Transaction type does not match the requested operation"


class AmountOutOfRange(QuizPotError):
    code = "AMOUNT_OUT_OF_RANGE"
    default_message = "Amount is outside the allowed range"


class WithdrawalNotAllowed(QuizPotError):
    code = "WITHDRAWAL_NOT_ALLOWED"
    status_code = 403
    default_message = "Withdrawal is not allowed. Please complete verification and make a deposit first."


# --- Tournaments ---


class TournamentNotFound(QuizPotError):
    code = "TOURNAMENT_NOT_FOUND"
    status_code = 404
    default_message = "Tournament not found"


class InvalidDates(QuizPotError):
    code = "INVALID_DATES"
    default_message = "Tournament dates are invalid"


class InvalidPrizeDistribution(QuizPotError):
    code = "INVALID_PRIZE_DISTRIBUTION"
    default_message = "Prize distribution is invalid"


class AlreadyParticipant(QuizPotError):
    code = "ALREADY_PARTICIPANT"
    status_code = 409
    default_message = "User is already a participant"


class TournamentFull(QuizPotError):
    code = "TOURNAMENT_FULL"
    status_code = 409
    default_message = "Tournament is full"


class RegistrationClosed(QuizPotError):
    code = "REGISTRATION_CLOSED"
    status_code = 409
    default_message = "Registration is closed"


class PrivateTournament(QuizPotError):
    code = "PRIVATE_TOURNAMENT"
    status_code = 403
    default_message = "A valid invite code is required for this tournament"


class TournamentStarted(QuizPotError):
    code = "TOURNAMENT_STARTED"
    status_code = 409
    default_message = "Tournament has already started"


class TournamentHasParticipants(QuizPotError):
    code = "TOURNAMENT_HAS_PARTICIPANTS"
    status_code = 409
    default_message = "Cannot delete tournament with participants"


class InvalidTournamentSettings(QuizPotError):
    code = "INVALID_TOURNAMENT_SETTINGS"
    default_message = "Tournament settings are invalid"


class NotEnoughParticipants(QuizPotError):
    code = "NOT_ENOUGH_PARTICIPANTS"
    status_code = 409
    default_message = "Not enough participants to start tournament"


class NotAParticipant(QuizPotError):
    code = "NOT_PARTICIPANT"
    status_code = 403
    default_message = "User is not a participant in this tournament"


class InvalidTransition(QuizPotError):
    code = "INVALID_STATE_TRANSITION"
    status_code = 409
    default_message = "Tournament is not in a state that allows this operation"


class InvalidQuestions(QuizPotError):
    code = "INVALID_QUESTIONS"
    default_message = "Some questions are invalid or inactive"


class AccessDenied(QuizPotError):
    code = "ACCESS_DENIED"
    status_code = 403
    default_message = "Access denied"


# --- Quiz security ---


class RateLimited(QuizPotError):
    code = "RATE_LIMITED"
    status_code = 429
    default_message = "Too many quiz attempts"

    def __init__(self, reason: str, message: str | None = None, reset_time: datetime | None = None) -> None:
        super().__init__(message, reason=reason, reset_time=reset_time)
        self.reason = reason
        self.reset_time = reset_time


class SuspiciousAccount(QuizPotError):
    code = "SUSPICIOUS_ACTIVITY"
    status_code = 403
    default_message = "Your account is under review for suspicious activity"


class SystemError(QuizPotError):  # noqa: A001
    code = "SYSTEM_ERROR"
    status_code = 503
    default_message = "System error occurred"
