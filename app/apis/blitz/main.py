from __future__ import annotations

import json
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from app.apis.blitz.schemas import (
    AnswerRequest,
    AnswerResponse,
    CreateSessionResponse,
    LeaderboardResponse,
    ResultResponse,
    SessionStateResponse,
)
from app.core.config import settings
from app.modules.blitz.models import Phase, RankSummary
from app.modules.blitz.ranking import place_player, summarize_rank
from app.modules.blitz.state import SessionEngine, SessionManager, session_manager


router = APIRouter()

PREFIX = f"/{settings.app.version}/blitz"


def get_session_manager() -> SessionManager:
    return session_manager


Manager = Annotated[SessionManager, Depends(get_session_manager)]


def _require_session(manager: SessionManager, session_id: str) -> SessionEngine:
    engine = manager.get_session(session_id)
    if not engine:
        raise HTTPException(status_code=404, detail="Session not found")
    return engine


def _summary(manager: SessionManager, score: int) -> RankSummary:
    return summarize_rank(
        score,
        top_threshold=manager.game.top_threshold,
        world_record_score=manager.game.world_record_score,
    )


@router.post(f"{PREFIX}/sessions", response_model=CreateSessionResponse, tags=["blitz"])
async def create_session(manager: Manager) -> CreateSessionResponse:
    engine = manager.create_session()
    return CreateSessionResponse(
        session_id=engine.id,
        ws_url=f"{PREFIX}/sessions/{engine.id}/ws",
        state=engine.snapshot(),
    )


@router.get(
    f"{PREFIX}/sessions/{{session_id}}",
    response_model=SessionStateResponse,
    tags=["blitz"],
)
async def get_session_state(session_id: str, manager: Manager) -> SessionStateResponse:
    engine = _require_session(manager, session_id)
    return SessionStateResponse(session_id=engine.id, state=engine.snapshot())


@router.post(
    f"{PREFIX}/sessions/{{session_id}}/start",
    response_model=SessionStateResponse,
    tags=["blitz"],
)
async def start_session(session_id: str, manager: Manager) -> SessionStateResponse:
    engine = _require_session(manager, session_id)
    state = engine.start()
    return SessionStateResponse(session_id=engine.id, state=state)


@router.post(
    f"{PREFIX}/sessions/{{session_id}}/answer",
    response_model=AnswerResponse,
    tags=["blitz"],
)
async def submit_answer(
    session_id: str, req: AnswerRequest, manager: Manager
) -> AnswerResponse:
    engine = _require_session(manager, session_id)
    accepted = engine.submit_answer(req.choice_index)
    return AnswerResponse(accepted=accepted, state=engine.snapshot())


@router.get(
    f"{PREFIX}/sessions/{{session_id}}/result",
    response_model=ResultResponse,
    tags=["blitz"],
)
async def get_result(session_id: str, manager: Manager) -> ResultResponse:
    engine = _require_session(manager, session_id)
    if engine.phase != Phase.GAME_OVER:
        raise HTTPException(status_code=409, detail="Round is not over yet")
    summary = _summary(manager, engine.score)
    leaderboard = place_player(manager.top100(), engine.score) if summary.top_tier else []
    return ResultResponse(summary=summary, leaderboard=leaderboard)


@router.delete(f"{PREFIX}/sessions/{{session_id}}", tags=["blitz"])
async def delete_session(session_id: str, manager: Manager) -> dict:
    if not manager.drop_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"ok": True}


@router.get(f"{PREFIX}/rank", response_model=RankSummary, tags=["blitz"])
async def rank_for_score(
    manager: Manager, score: int = Query(..., ge=0)
) -> RankSummary:
    return _summary(manager, score)


@router.get(
    f"{PREFIX}/leaderboard/top100", response_model=LeaderboardResponse, tags=["blitz"]
)
async def top100(manager: Manager) -> LeaderboardResponse:
    return LeaderboardResponse(entries=manager.top100())


@router.get(
    f"{PREFIX}/leaderboard/top25", response_model=LeaderboardResponse, tags=["blitz"]
)
async def top25(manager: Manager) -> LeaderboardResponse:
    return LeaderboardResponse(entries=manager.top25())


@router.websocket(f"{PREFIX}/sessions/{{session_id}}/ws")
async def ws_session(websocket: WebSocket, session_id: str, manager: Manager) -> None:
    engine = manager.get_session(session_id)
    if not engine:
        await websocket.close(code=4404)
        return

    try:
        await manager.conns.join(session_id, websocket, engine.snapshot())
    except Exception:
        return

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except ValueError:
                engine.log.debug("Ignoring non-JSON message")
                continue
            if not isinstance(msg, dict):
                continue
            mtype = msg.get("type")
            if mtype == "start":
                engine.start()
            elif mtype == "answer":
                ans = msg.get("choice_index")
                if ans is None:
                    continue
                try:
                    engine.submit_answer(int(ans))
                except (TypeError, ValueError):
                    engine.log.debug("Malformed answer %r", ans)
            # unknown types are ignored
    except WebSocketDisconnect:
        manager.conns.leave(session_id, websocket)
    except Exception:
        engine.log.warning("WS session loop failed", exc_info=True)
        manager.conns.leave(session_id, websocket)
