"""Pydantic models for quiz endpoints."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Difficulty = Literal["easy", "medium", "hard"]


class QuestionResponse(BaseModel):
    """A question as shown to players; the answer index is never included."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    question: str
    options: list[str]
    difficulty: str
    category: str
    points: int
    time_limit: int


class QuizAnswerItem(BaseModel):
    question_id: int
    selected_answer: int = Field(ge=0)
    time_spent: int = Field(ge=0, description="Milliseconds")


class SubmitQuizRequest(BaseModel):
    difficulty: Difficulty
    answers: list[QuizAnswerItem] = Field(min_length=1, max_length=50)


class AnswerResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_id: int
    is_correct: bool
    correct_answer: int
    points: int
    explanation: str | None = None


class QuizResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    score: float
    correct_answers: int
    total_questions: int
    points_earned: int
    reward: Decimal
    xp_earned: int
    leveled_up: bool
    level: int
    time_spent_ms: int
    results: list[AnswerResultResponse]
