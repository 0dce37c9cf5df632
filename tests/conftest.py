import random

import pytest
from fastapi.testclient import TestClient

from app.apis.blitz.main import get_session_manager
from app.core.config import GameSettings
from app.modules.blitz.models import Question
from app.modules.blitz.state import SessionManager
from main import app


TEMPLATES = [
    Question(
        prompt="∫ x³ dx",
        choices=("x⁴/4 + C", "x³/3 + C", "3x² + C", "x⁴ + C"),
        correct_index=0,
    ),
    Question(
        prompt="d/dx [x⁻¹]",
        choices=("-x⁻²", "x⁻²", "1/x²", "-1/x²"),
        correct_index=3,
    ),
    Question(
        prompt="∫ (3x² + 2x + 1) dx",
        choices=(
            "x³ + x² + x + C",
            "x³ + x² + C",
            "3x³/3 + 2x²/2 + x + C",
            "3x² + 2x + x + C",
        ),
        correct_index=2,
    ),
]


@pytest.fixture
def templates():
    return list(TEMPLATES)


@pytest.fixture
def rng():
    return random.Random(1234)


def fast_game(**overrides) -> GameSettings:
    values = {
        "BLITZ_DURATION_SECONDS": 60,
        "BLITZ_TICK_INTERVAL": 0.02,
        "BLITZ_REVEAL_DELAY": 0.05,
        "BLITZ_REPEAT_FACTOR": 2,
        "BLITZ_SEED": 7,
    }
    values.update(overrides)
    return GameSettings(**values)


@pytest.fixture
def manager():
    return SessionManager(fast_game())


@pytest.fixture
def client(manager):
    app.dependency_overrides[get_session_manager] = lambda: manager
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_session_manager, None)
