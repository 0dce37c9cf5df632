"""In-memory Derive-A-Blitz sessions with a timed single-player loop.

A session runs two cancellable asyncio tasks on the loop it was started on:
a countdown that ticks every `tick_interval` seconds until the clock reaches
zero, and a one-shot advance that moves past an answered question after
`reveal_delay` seconds. Every `start()` bumps an epoch so a callback armed by
an earlier round can never touch the new one.

Engines are not thread-safe; keep each one on a single event loop.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence
from uuid import uuid4

from fastapi import WebSocket

from app.core.config import GameSettings, settings
from app.core.logging import get_logger
from app.modules.blitz.bank import build_question_bank, load_templates
from app.modules.blitz.models import (
    LastAnswer,
    LeaderboardEntry,
    Phase,
    Question,
    QuestionView,
    SessionSnapshot,
)
from app.modules.blitz.ranking import (
    build_top100_leaderboard,
    build_top25_leaderboard,
    load_leaderboard_names,
)


logger = get_logger(__name__)

Listener = Callable[[SessionSnapshot], None]

# Achievement slot -> (minimum round score, minimum rounds played)
SCORE_10_ACHIEVEMENT = 1
FIVE_ROUNDS_ACHIEVEMENT = 3
ACHIEVEMENT_RULES = {
    SCORE_10_ACHIEVEMENT: (10, 0),
    FIVE_ROUNDS_ACHIEVEMENT: (0, 5),
}

# Background style i unlocks once i rounds have been played.
BACKGROUND_STYLES = 13


def unlocked_style_count(rounds_played: int) -> int:
    return min(rounds_played + 1, BACKGROUND_STYLES)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _short_id() -> str:
    # 6-char slice from uuid4
    return uuid4().hex[:6]


def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    try:
        current = asyncio.current_task()
    except RuntimeError:
        current = None
    if task is not current:
        task.cancel()


@dataclass
class SessionState:
    phase: Phase = Phase.IDLE
    current_index: int = 0
    score: int = 0
    time_remaining_seconds: int = 60
    last_answer: Optional[LastAnswer] = None
    rounds_played: int = 0
    best_score: int = 0
    achievements_unlocked: set[int] = field(default_factory=set)


class SessionEngine:
    """Owns one player's bank, clock and score.

    State changes only through `start()`, `submit_answer()` and the two
    internal timers. Observers get a `SessionSnapshot` after each change.
    """

    def __init__(
        self,
        bank: Sequence[Question],
        *,
        duration_seconds: int = 60,
        tick_interval: float = 1.0,
        reveal_delay: float = 0.8,
        session_id: Optional[str] = None,
    ) -> None:
        self.id = session_id or _short_id()
        self.bank: tuple[Question, ...] = tuple(bank)
        self.duration_seconds = int(duration_seconds)
        self.tick_interval = float(tick_interval)
        self.reveal_delay = float(reveal_delay)
        self.created_at = _now_utc()
        self.last_activity = self.created_at
        self.ended_at: Optional[datetime] = None
        self.log = get_logger(__name__, session_id=self.id)

        self._state = SessionState(time_remaining_seconds=self.duration_seconds)
        self._epoch = 0
        self._countdown_task: Optional[asyncio.Task] = None
        self._advance_task: Optional[asyncio.Task] = None
        self._listeners: list[Listener] = []

    # Read-only view -----------------------------------------------------
    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def score(self) -> int:
        return self._state.score

    @property
    def current_index(self) -> int:
        return self._state.current_index

    @property
    def time_remaining_seconds(self) -> int:
        return self._state.time_remaining_seconds

    @property
    def last_answer(self) -> Optional[LastAnswer]:
        return self._state.last_answer

    @property
    def current_question(self) -> Optional[Question]:
        idx = self._state.current_index
        if idx >= len(self.bank):
            return None
        return self.bank[idx]

    def snapshot(self) -> SessionSnapshot:
        s = self._state
        q = self.current_question
        view = None
        if q is not None and s.phase in (Phase.ACTIVE, Phase.AWAITING_NEXT):
            view = QuestionView(prompt=q.prompt, choices=list(q.choices))
        return SessionSnapshot(
            phase=s.phase,
            current_index=s.current_index,
            score=s.score,
            time_remaining_seconds=s.time_remaining_seconds,
            last_answer=s.last_answer,
            bank_size=len(self.bank),
            question=view,
            rounds_played=s.rounds_played,
            best_score=s.best_score,
            achievements_unlocked=sorted(s.achievements_unlocked),
            unlocked_styles=unlocked_style_count(s.rounds_played),
        )

    # Observers ----------------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        self.last_activity = _now_utc()
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                self.log.warning("Session listener failed", exc_info=True)

    # Lifecycle ----------------------------------------------------------
    def start(self) -> SessionSnapshot:
        """Reset and begin a round. Must be called with a running event loop."""
        loop = asyncio.get_running_loop()
        self._cancel_timers()
        self._epoch += 1

        s = self._state
        s.phase = Phase.ACTIVE
        s.score = 0
        s.current_index = 0
        s.time_remaining_seconds = self.duration_seconds
        s.last_answer = None
        self.ended_at = None
        self.log.debug("Round started")

        if not self.bank or self.duration_seconds <= 0:
            self._end_game()
            return self.snapshot()

        self._countdown_task = loop.create_task(self._run_countdown(self._epoch))
        self._publish()
        return self.snapshot()

    def submit_answer(self, choice_index: int) -> bool:
        """Answer the current question. Returns False when the call is ignored."""
        s = self._state
        if s.phase is not Phase.ACTIVE:
            return False
        q = self.current_question
        if q is None:
            return False
        if not 0 <= choice_index < len(q.choices):
            return False

        correct = choice_index == q.correct_index
        s.last_answer = LastAnswer(chosen_index=choice_index, was_correct=correct)
        if correct:
            s.score += 1
        s.phase = Phase.AWAITING_NEXT
        self._advance_task = asyncio.get_running_loop().create_task(
            self._advance_after_reveal(self._epoch)
        )
        self.log.debug(
            "Answer %d on question %d (%s)",
            choice_index,
            s.current_index,
            "correct" if correct else "wrong",
        )
        self._publish()
        return True

    def close(self) -> None:
        self._epoch += 1
        self._cancel_timers()
        self._listeners.clear()

    # Timers -------------------------------------------------------------
    def _cancel_timers(self) -> None:
        _cancel(self._countdown_task)
        _cancel(self._advance_task)
        self._countdown_task = None
        self._advance_task = None

    def _live(self, epoch: int) -> bool:
        return epoch == self._epoch and self._state.phase in (
            Phase.ACTIVE,
            Phase.AWAITING_NEXT,
        )

    async def _run_countdown(self, epoch: int) -> None:
        try:
            while True:
                await asyncio.sleep(self.tick_interval)
                if not self._live(epoch):
                    return
                s = self._state
                s.time_remaining_seconds = max(s.time_remaining_seconds - 1, 0)
                if s.time_remaining_seconds == 0:
                    self._end_game()
                    return
                self._publish()
        except asyncio.CancelledError:
            return

    async def _advance_after_reveal(self, epoch: int) -> None:
        try:
            await asyncio.sleep(self.reveal_delay)
        except asyncio.CancelledError:
            return
        if not self._live(epoch) or self._state.phase is not Phase.AWAITING_NEXT:
            return
        self._advance_task = None
        s = self._state
        s.last_answer = None
        s.current_index += 1
        if s.current_index >= len(self.bank):
            self._end_game()
            return
        s.phase = Phase.ACTIVE
        self._publish()

    def _end_game(self) -> None:
        self._cancel_timers()
        s = self._state
        s.phase = Phase.GAME_OVER
        s.rounds_played += 1
        s.best_score = max(s.best_score, s.score)
        for slot, (min_score, min_rounds) in ACHIEVEMENT_RULES.items():
            if s.score >= min_score and s.rounds_played >= min_rounds:
                if slot not in s.achievements_unlocked:
                    s.achievements_unlocked.add(slot)
                    self.log.info("Achievement %d unlocked", slot)
        self.ended_at = _now_utc()
        self.log.info(
            "Game over: score=%d questions=%d time_left=%d",
            s.score,
            s.current_index,
            s.time_remaining_seconds,
        )
        self._publish()


def state_message(snap: SessionSnapshot) -> dict:
    return {"type": "state", "data": snap.model_dump(mode="json")}


class Connections:
    """WebSocket subscribers of each session."""

    def __init__(self) -> None:
        self._sockets: dict[str, list[WebSocket]] = {}

    async def join(self, session_id: str, ws: WebSocket, snap: SessionSnapshot) -> None:
        """Accept the socket and send it the current state before any push."""
        await ws.accept()
        self._sockets.setdefault(session_id, []).append(ws)
        try:
            await ws.send_json(state_message(snap))
        except Exception:
            self.leave(session_id, ws)
            raise

    def leave(self, session_id: str, ws: WebSocket) -> None:
        sockets = self._sockets.get(session_id, [])
        if ws in sockets:
            sockets.remove(ws)
        if not sockets:
            self._sockets.pop(session_id, None)

    async def push_state(self, session_id: str, snap: SessionSnapshot) -> None:
        sockets = list(self._sockets.get(session_id, []))
        message = state_message(snap)
        results = await asyncio.gather(
            *(ws.send_json(message) for ws in sockets), return_exceptions=True
        )
        for ws, result in zip(sockets, results):
            if isinstance(result, Exception):
                self.leave(session_id, ws)

    def count(self, session_id: str) -> int:
        return len(self._sockets.get(session_id, []))


class SessionManager:
    def __init__(self, game: Optional[GameSettings] = None) -> None:
        self.game = game or settings.game
        self.sessions: dict[str, SessionEngine] = {}
        self.conns = Connections()
        self._templates: Optional[list[Question]] = None
        self._names: Optional[dict[str, list[str]]] = None
        self._top25: Optional[list[LeaderboardEntry]] = None
        self._pending: set[asyncio.Task] = set()
        self._cleanup_task: Optional[asyncio.Task] = None
        self._idle_seconds: int = self.game.idle_seconds
        self._sweep_interval: int = self.game.sweep_interval

    def _rng(self) -> random.Random:
        if self.game.seed is None:
            return random.Random()
        return random.Random(self.game.seed)

    # Static data --------------------------------------------------------
    def templates(self) -> list[Question]:
        if self._templates is None:
            self._templates = load_templates(self.game.templates_path)
        return self._templates

    def _leaderboard_names(self) -> dict[str, list[str]]:
        if self._names is None:
            self._names = load_leaderboard_names(self.game.leaderboard_path)
        return self._names

    def top100(self) -> list[LeaderboardEntry]:
        return build_top100_leaderboard(
            self._leaderboard_names()["top100"], self.game.top_threshold
        )

    def top25(self) -> list[LeaderboardEntry]:
        if self._top25 is None:
            self._top25 = build_top25_leaderboard(
                self._leaderboard_names()["top25"], self._rng()
            )
        return self._top25

    # Session lifecycle --------------------------------------------------
    def create_session(self) -> SessionEngine:
        bank = build_question_bank(
            self.templates(), repeat_factor=self.game.repeat_factor, rng=self._rng()
        )
        engine = SessionEngine(
            bank,
            duration_seconds=self.game.duration_seconds,
            tick_interval=self.game.tick_interval,
            reveal_delay=self.game.reveal_delay,
            session_id=_short_id(),
        )
        engine.subscribe(lambda snap: self._on_change(engine.id, snap))
        self.sessions[engine.id] = engine
        engine.log.info("Session created with %d questions", len(bank))
        return engine

    def get_session(self, session_id: str) -> Optional[SessionEngine]:
        return self.sessions.get(session_id)

    def drop_session(self, session_id: str) -> bool:
        engine = self.sessions.pop(session_id, None)
        if engine is None:
            return False
        engine.close()
        return True

    def _on_change(self, session_id: str, snap: SessionSnapshot) -> None:
        if not self.conns.count(session_id):
            return
        task = asyncio.get_running_loop().create_task(
            self.conns.push_state(session_id, snap)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # Cleanup loop -------------------------------------------------------
    def start(
        self,
        *,
        idle_seconds: Optional[int] = None,
        sweep_interval: Optional[int] = None,
    ) -> None:
        if idle_seconds is not None:
            self._idle_seconds = max(60, int(idle_seconds))
        if sweep_interval is not None:
            self._sweep_interval = max(5, int(sweep_interval))
        if self._cleanup_task and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self._cleanup_task = None
        for session_id in list(self.sessions):
            self.drop_session(session_id)

    def sweep(self, now: Optional[datetime] = None) -> list[str]:
        """Drop finished or abandoned sessions; returns the dropped ids."""
        now = now or _now_utc()
        to_delete: list[str] = []
        for session_id, engine in list(self.sessions.items()):
            idle = (now - engine.last_activity).total_seconds()
            connections = self.conns.count(session_id)
            should_delete = False
            if engine.phase == Phase.GAME_OVER and engine.ended_at:
                if (now - engine.ended_at).total_seconds() > self._idle_seconds:
                    should_delete = True
            elif idle > self._idle_seconds and connections == 0:
                should_delete = True
            if should_delete:
                to_delete.append(session_id)
        for sid in to_delete:
            self.drop_session(sid)
        if to_delete:
            logger.info("Swept %d idle sessions", len(to_delete))
        return to_delete

    async def _cleanup_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._sweep_interval)
                self.sweep()
        except asyncio.CancelledError:
            return


# Singleton manager used by API/WS layer
session_manager = SessionManager()
