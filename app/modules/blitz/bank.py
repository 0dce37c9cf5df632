"""Question bank construction.

Provides:
- load_templates(path) -> list[Question]
- validate_templates(templates): fail fast on ambiguous template data
- build_question_bank(templates, repeat_factor, rng) -> tuple[Question, ...]

The bank is the template set repeated `repeat_factor` times, shuffled as a
whole, with each question's choices shuffled independently afterwards. The
correct index is re-derived from the correct text, so choice texts must be
pairwise distinct within a template.
"""

from __future__ import annotations

import json
import random
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from app.core.logging import get_logger
from app.modules.blitz.models import Question


logger = get_logger(__name__)

DEFAULT_REPEAT_FACTOR = 100


class TemplateError(ValueError):
    """Raised when the template set cannot produce an unambiguous bank."""


def load_templates(path: Path) -> list[Question]:
    """Read a JSON array of {prompt, choices, correct_index} records."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise TemplateError(f"{path}: expected a JSON array of templates")
    templates: list[Question] = []
    for pos, item in enumerate(raw):
        try:
            templates.append(Question.model_validate(item))
        except ValidationError as e:
            raise TemplateError(f"{path}: template #{pos} is invalid: {e}") from e
    logger.debug("Loaded %d templates from %s", len(templates), path)
    return templates


def validate_templates(templates: Sequence[Question]) -> None:
    if not templates:
        raise TemplateError("template set is empty")
    for pos, q in enumerate(templates):
        if len(set(q.choices)) != len(q.choices):
            raise TemplateError(
                f"template #{pos} ({q.prompt!r}) has duplicate choice text"
            )


def _shuffle_choices(q: Question, rng: random.Random) -> Question:
    choices = list(q.choices)
    correct = q.correct_choice
    rng.shuffle(choices)
    return Question(
        prompt=q.prompt, choices=tuple(choices), correct_index=choices.index(correct)
    )


def build_question_bank(
    templates: Sequence[Question],
    *,
    repeat_factor: int = DEFAULT_REPEAT_FACTOR,
    rng: Optional[random.Random] = None,
) -> tuple[Question, ...]:
    """Expand templates into a shuffled bank of len(templates) * repeat_factor."""
    validate_templates(templates)
    if repeat_factor < 1:
        raise TemplateError(f"repeat_factor must be >= 1, got {repeat_factor}")
    rng = rng or random.Random()

    pool = list(templates) * repeat_factor
    rng.shuffle(pool)
    bank = tuple(_shuffle_choices(q, rng) for q in pool)
    logger.debug(
        "Built bank of %d questions (%d templates x %d)",
        len(bank),
        len(templates),
        repeat_factor,
    )
    return bank
