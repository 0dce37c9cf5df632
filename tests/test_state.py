import asyncio

import pytest

from app.modules.blitz.bank import build_question_bank
from app.modules.blitz.models import Phase
from app.modules.blitz.state import (
    BACKGROUND_STYLES,
    FIVE_ROUNDS_ACHIEVEMENT,
    SCORE_10_ACHIEVEMENT,
    SessionEngine,
    unlocked_style_count,
)

TICK = 0.02
REVEAL = 0.05


@pytest.fixture
def bank(templates, rng):
    return build_question_bank(templates, repeat_factor=10, rng=rng)


def make_engine(bank, **kw):
    params = {"duration_seconds": 60, "tick_interval": TICK, "reveal_delay": REVEAL}
    params.update(kw)
    return SessionEngine(bank, **params)


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def wrong_index(engine):
    return (engine.current_question.correct_index + 1) % 4


async def test_engine_starts_idle(bank):
    engine = make_engine(bank)
    snap = engine.snapshot()
    assert snap.phase == Phase.IDLE
    assert snap.time_remaining_seconds == 60
    assert snap.question is None
    assert engine.submit_answer(0) is False


async def test_start_resets_state(bank):
    engine = make_engine(bank)
    snap = engine.start()
    assert snap.phase == Phase.ACTIVE
    assert snap.score == 0
    assert snap.current_index == 0
    assert snap.time_remaining_seconds == 60
    assert snap.last_answer is None
    assert snap.question.prompt == bank[0].prompt
    engine.close()


async def test_clock_runs_out_without_answers(bank):
    engine = make_engine(bank, duration_seconds=5)
    engine.start()
    await wait_for(lambda: engine.phase == Phase.GAME_OVER)
    assert engine.score == 0
    assert engine.time_remaining_seconds == 0
    await asyncio.sleep(TICK * 3)
    assert engine.time_remaining_seconds == 0
    assert engine.phase == Phase.GAME_OVER


async def test_correct_answer_then_advance(bank):
    engine = make_engine(bank)
    engine.start()
    assert engine.submit_answer(engine.current_question.correct_index) is True
    assert engine.score == 1
    assert engine.phase == Phase.AWAITING_NEXT
    assert engine.last_answer.was_correct is True

    await wait_for(lambda: engine.phase == Phase.ACTIVE)
    assert engine.current_index == 1
    assert engine.last_answer is None
    engine.close()


async def test_advance_waits_for_the_full_reveal_delay(bank):
    engine = make_engine(bank, tick_interval=10, reveal_delay=0.2)
    loop = asyncio.get_running_loop()
    engine.start()
    answered_at = loop.time()
    engine.submit_answer(engine.current_question.correct_index)

    await asyncio.sleep(0.1)
    assert engine.phase == Phase.AWAITING_NEXT
    assert engine.current_index == 0
    assert engine.last_answer is not None

    await wait_for(lambda: engine.phase == Phase.ACTIVE)
    assert loop.time() - answered_at >= 0.19
    assert engine.current_index == 1
    engine.close()


async def test_wrong_answer_keeps_score(bank):
    engine = make_engine(bank)
    engine.start()
    choice = wrong_index(engine)
    assert engine.submit_answer(choice) is True
    assert engine.score == 0
    assert engine.last_answer.chosen_index == choice
    assert engine.last_answer.was_correct is False
    engine.close()


async def test_second_answer_during_reveal_is_ignored(bank):
    engine = make_engine(bank)
    engine.start()
    engine.submit_answer(engine.current_question.correct_index)
    before = engine.snapshot()
    assert engine.submit_answer(engine.current_question.correct_index) is False
    after = engine.snapshot()
    assert after.score == before.score == 1
    assert after.phase == Phase.AWAITING_NEXT
    engine.close()


@pytest.mark.parametrize("choice", [-1, 4, 99])
async def test_out_of_range_choice_is_ignored(bank, choice):
    engine = make_engine(bank)
    engine.start()
    assert engine.submit_answer(choice) is False
    assert engine.phase == Phase.ACTIVE
    assert engine.last_answer is None
    engine.close()


async def test_bank_exhaustion_ends_the_game(templates, rng):
    bank = build_question_bank(templates[:1], repeat_factor=2, rng=rng)
    engine = make_engine(bank)
    engine.start()
    for _ in range(2):
        await wait_for(lambda: engine.phase == Phase.ACTIVE)
        engine.submit_answer(engine.current_question.correct_index)
    await wait_for(lambda: engine.phase == Phase.GAME_OVER)
    assert engine.score == 2
    assert engine.current_index == 2
    assert engine.submit_answer(0) is False


async def test_restart_cancels_pending_advance(bank):
    engine = make_engine(bank)
    engine.start()
    engine.submit_answer(engine.current_question.correct_index)
    engine.start()
    assert engine.phase == Phase.ACTIVE
    assert engine.score == 0
    await asyncio.sleep(REVEAL * 3)
    assert engine.current_index == 0
    assert engine.phase == Phase.ACTIVE
    engine.close()


async def test_restart_runs_a_single_countdown(bank):
    engine = make_engine(bank, tick_interval=0.05)
    engine.start()
    engine.start()
    await asyncio.sleep(0.05 * 3.5)
    used = 60 - engine.time_remaining_seconds
    assert 2 <= used <= 4
    engine.close()


async def test_game_over_is_terminal_until_start(bank):
    engine = make_engine(bank, duration_seconds=2)
    engine.start()
    await wait_for(lambda: engine.phase == Phase.GAME_OVER)
    await asyncio.sleep(TICK * 3)
    assert engine.phase == Phase.GAME_OVER
    engine.start()
    assert engine.phase == Phase.ACTIVE
    assert engine.time_remaining_seconds == 2
    engine.close()


async def test_rounds_and_best_score_carry_over(bank):
    engine = make_engine(bank, duration_seconds=3)
    engine.start()
    engine.submit_answer(engine.current_question.correct_index)
    await wait_for(lambda: engine.phase == Phase.GAME_OVER)
    engine.start()
    await wait_for(lambda: engine.phase == Phase.GAME_OVER)
    snap = engine.snapshot()
    assert snap.rounds_played == 2
    assert snap.best_score == 1
    assert snap.score == 0


async def test_listeners_see_every_change_and_failures_are_contained(bank):
    engine = make_engine(bank)
    seen = []

    def boom(snap):
        raise RuntimeError("ui exploded")

    engine.subscribe(boom)
    unsubscribe = engine.subscribe(seen.append)
    engine.start()
    engine.submit_answer(engine.current_question.correct_index)
    assert [s.phase for s in seen[:2]] == [Phase.ACTIVE, Phase.AWAITING_NEXT]
    assert engine.score == 1

    unsubscribe()
    count = len(seen)
    await asyncio.sleep(REVEAL * 2)
    assert len(seen) == count
    engine.close()


async def test_close_stops_all_timers(bank):
    engine = make_engine(bank)
    engine.start()
    engine.submit_answer(engine.current_question.correct_index)
    engine.close()
    await asyncio.sleep(REVEAL * 2)
    assert engine.phase == Phase.AWAITING_NEXT
    assert engine.time_remaining_seconds == 60


def test_manager_sweeps_idle_sessions(manager):
    from datetime import timedelta

    engine = manager.create_session()
    fresh = manager.create_session()
    assert len(engine.bank) == len(manager.templates()) * 2

    later = engine.last_activity + timedelta(seconds=manager.game.idle_seconds + 1)
    fresh.last_activity = later
    assert manager.sweep(now=later) == [engine.id]
    assert manager.get_session(engine.id) is None
    assert manager.get_session(fresh.id) is fresh


def test_seeded_manager_builds_identical_banks(manager):
    assert manager.create_session().bank == manager.create_session().bank


async def play_round(engine, correct):
    """Answer every question in the bank, getting the first `correct` right."""
    engine.start()
    for i in range(len(engine.bank)):
        await wait_for(lambda: engine.phase == Phase.ACTIVE)
        q = engine.current_question
        engine.submit_answer(q.correct_index if i < correct else (q.correct_index + 1) % 4)
    await wait_for(lambda: engine.phase == Phase.GAME_OVER)
    return engine.snapshot()


async def test_achievements_and_styles_unlock_at_round_end(templates, rng):
    bank = build_question_bank(templates[:1], repeat_factor=10, rng=rng)
    engine = make_engine(bank, reveal_delay=0.005)
    assert engine.snapshot().unlocked_styles == 1

    for rounds in range(1, 5):
        snap = await play_round(engine, correct=9)
        assert snap.score == 9
        assert snap.rounds_played == rounds
        assert snap.achievements_unlocked == []
        assert snap.unlocked_styles == rounds + 1

    snap = await play_round(engine, correct=10)
    assert snap.achievements_unlocked == [SCORE_10_ACHIEVEMENT, FIVE_ROUNDS_ACHIEVEMENT]
    assert snap.unlocked_styles == 6

    # unlocks survive a weaker round and the next start()
    snap = await play_round(engine, correct=0)
    assert snap.achievements_unlocked == [SCORE_10_ACHIEVEMENT, FIVE_ROUNDS_ACHIEVEMENT]
    engine.start()
    assert engine.snapshot().achievements_unlocked == [
        SCORE_10_ACHIEVEMENT,
        FIVE_ROUNDS_ACHIEVEMENT,
    ]
    engine.close()


def test_style_count_is_capped():
    assert unlocked_style_count(0) == 1
    assert unlocked_style_count(12) == BACKGROUND_STYLES
    assert unlocked_style_count(500) == BACKGROUND_STYLES
