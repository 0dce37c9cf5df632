from __future__ import annotations

from pydantic import BaseModel, Field

from app.modules.blitz.models import LeaderboardEntry, RankSummary, SessionSnapshot


class CreateSessionResponse(BaseModel):
    session_id: str
    ws_url: str
    state: SessionSnapshot


class SessionStateResponse(BaseModel):
    session_id: str
    state: SessionSnapshot


class AnswerRequest(BaseModel):
    choice_index: int = Field(..., description="0-based index into the shown choices")


class AnswerResponse(BaseModel):
    accepted: bool
    state: SessionSnapshot


class ResultResponse(BaseModel):
    summary: RankSummary
    leaderboard: list[LeaderboardEntry] = Field(default_factory=list)


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry] = Field(default_factory=list)
