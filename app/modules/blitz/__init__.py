"""Derive-A-Blitz module exports."""

from .bank import TemplateError, build_question_bank, load_templates, validate_templates
from .models import LastAnswer, LeaderboardEntry, Phase, Question, SessionSnapshot
from .ranking import estimate_global_rank, is_top_tier
from .state import SessionEngine, SessionManager

__all__ = [
    "TemplateError",
    "build_question_bank",
    "load_templates",
    "validate_templates",
    "LastAnswer",
    "LeaderboardEntry",
    "Phase",
    "Question",
    "SessionSnapshot",
    "estimate_global_rank",
    "is_top_tier",
    "SessionEngine",
    "SessionManager",
]
