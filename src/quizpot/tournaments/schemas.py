"""Pydantic models for tournament endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Difficulty = Literal["easy", "medium", "hard"]


# ── Requests ──


class PrizeSplitEntry(BaseModel):
    rank: int = Field(ge=1)
    percentage: Decimal = Field(gt=0, le=100)


class TournamentOptions(BaseModel):
    auto_start: bool = True
    show_leaderboard: bool = True
    show_answers: bool = True


class CreateTournamentRequest(BaseModel):
    title: str = Field(min_length=3, max_length=100)
    description: str | None = Field(None, max_length=500)
    category: str = Field(min_length=1, max_length=50)
    difficulty: Difficulty = "medium"
    entry_fee: Decimal = Field(ge=0)
    prize_pool: Decimal = Field(ge=0)
    max_participants: int = Field(ge=2, le=100)
    min_participants: int = Field(2, ge=2)
    registration_start: datetime
    registration_end: datetime
    start_time: datetime
    end_time: datetime
    question_count: int = Field(10, ge=5, le=50)
    time_per_question: int = Field(30, ge=10, le=300)
    is_private: bool = False
    prize_distribution: list[PrizeSplitEntry] | None = None
    question_ids: list[int] | None = None
    settings: TournamentOptions = Field(default_factory=TournamentOptions)

    @model_validator(mode="after")
    def check_participants(self) -> CreateTournamentRequest:
        if self.min_participants > self.max_participants:
            raise ValueError("min_participants cannot exceed max_participants")
        return self


class UpdateTournamentRequest(BaseModel):
    title: str | None = Field(None, min_length=3, max_length=100)
    description: str | None = Field(None, max_length=500)
    settings: TournamentOptions | None = None


class JoinTournamentRequest(BaseModel):
    invite_code: str | None = Field(None, max_length=8)


class CancelTournamentRequest(BaseModel):
    reason: str | None = Field(None, max_length=200)


class AnswerItem(BaseModel):
    question_id: int
    selected_answer: int = Field(ge=0)
    time_spent: int = Field(ge=0, description="Milliseconds")


class SubmitAnswersRequest(BaseModel):
    answers: list[AnswerItem] = Field(min_length=1)


# ── Responses ──


class PrizeEntryResponse(BaseModel):
    rank: int
    percentage: float
    prize: Decimal


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None = None
    category: str
    difficulty: str
    entry_fee: Decimal
    prize_pool: Decimal
    app_fee: Decimal
    max_participants: int
    min_participants: int
    participant_count: int
    status: str
    phase: str
    registration_start: datetime
    registration_end: datetime
    start_time: datetime
    end_time: datetime
    actual_start_time: datetime | None = None
    actual_end_time: datetime | None = None
    question_count: int
    time_per_question: int
    is_private: bool
    settings: dict[str, Any] = Field(default_factory=dict)
    prize_distribution: list[PrizeEntryResponse] = Field(default_factory=list)
    total_prizes: Decimal
    created_by_id: int
    winner_id: int | None = None
    created_at: datetime


class TournamentDetailResponse(TournamentResponse):
    invite_code: str | None = None
    is_participant: bool = False


class TournamentListResponse(BaseModel):
    tournaments: list[TournamentResponse]
    total: int
    page: int
    per_page: int


class ParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    joined_at: datetime
    score: int
    time_spent: int
    rank: int
    prize: Decimal


class LeaderboardEntry(BaseModel):
    position: int
    user_id: int
    score: int
    time_spent: int
    rank: int
    prize: Decimal


class LeaderboardResponse(BaseModel):
    tournament_id: int
    status: str
    entries: list[LeaderboardEntry]


class TournamentQuestionResponse(BaseModel):
    id: int
    position: int
    question: str
    options: list[str]
    points: int
    time_limit: int


class SubmitAnswersResponse(BaseModel):
    score: int
    time_spent: int
    answered: int
