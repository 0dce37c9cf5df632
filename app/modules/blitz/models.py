"""Pydantic models for the Derive-A-Blitz round.

Questions are frozen value objects shared by every copy in a bank; session
state itself lives on the engine and is published as `SessionSnapshot`.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


CHOICES_PER_QUESTION = 4


class Question(BaseModel):
    """A single four-choice question."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    choices: tuple[str, ...]
    correct_index: int

    @model_validator(mode="after")
    def _check_shape(self) -> "Question":
        if len(self.choices) != CHOICES_PER_QUESTION:
            raise ValueError(
                f"expected {CHOICES_PER_QUESTION} choices, got {len(self.choices)}"
            )
        if not 0 <= self.correct_index < len(self.choices):
            raise ValueError(f"correct_index {self.correct_index} out of range")
        return self

    @property
    def correct_choice(self) -> str:
        return self.choices[self.correct_index]


class QuestionView(BaseModel):
    """What the player sees: no correct index."""

    prompt: str
    choices: list[str] = Field(default_factory=list)


class Phase(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    AWAITING_NEXT = "awaiting_next"
    GAME_OVER = "game_over"


class LastAnswer(BaseModel):
    chosen_index: int
    was_correct: bool


class SessionSnapshot(BaseModel):
    """Published state of one session, sent to observers after every change."""

    phase: Phase
    current_index: int = 0
    score: int = 0
    time_remaining_seconds: int
    last_answer: Optional[LastAnswer] = None
    bank_size: int = 0
    question: Optional[QuestionView] = None
    rounds_played: int = 0
    best_score: int = 0
    achievements_unlocked: list[int] = Field(default_factory=list)
    unlocked_styles: int = 1


class LeaderboardEntry(BaseModel):
    name: str
    score: int


class RankSummary(BaseModel):
    score: int
    rank: int
    top_tier: bool
    top_threshold: int
    world_record_score: int
