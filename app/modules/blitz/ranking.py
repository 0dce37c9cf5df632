"""Global rank estimation and the static leaderboards.

The rank is not looked up anywhere: it is a piecewise-linear penalty on how
far the score falls below `top_threshold`. Each tier costs more positions
per missing point than the one before it.
"""

from __future__ import annotations

import json
import random
from pathlib import Path
from typing import Optional, Sequence

from app.modules.blitz.models import LeaderboardEntry, RankSummary


DEFAULT_TOP_THRESHOLD = 47
TOP_TIER_MAX_RANK = 100
YOU = "(you)"

# (upper bound of diff for this tier, positions per point)
_NEAR_TIER = (7, 150)
_MID_TIER = (47, 2000)
_FAR_STEP = 4000


def estimate_global_rank(score: int, top_threshold: int = DEFAULT_TOP_THRESHOLD) -> int:
    diff = top_threshold - score
    near_end, near_step = _NEAR_TIER
    mid_end, mid_step = _MID_TIER
    if diff <= 0:
        return 1
    if diff <= near_end:
        return 1 + diff * near_step
    near_total = near_end * near_step
    if diff <= mid_end:
        return 1 + near_total + (diff - near_end) * mid_step
    mid_total = (mid_end - near_end) * mid_step
    return 1 + near_total + mid_total + (diff - mid_end) * _FAR_STEP


def is_top_tier(score: int, top_threshold: int = DEFAULT_TOP_THRESHOLD) -> bool:
    return estimate_global_rank(score, top_threshold) <= TOP_TIER_MAX_RANK


def load_leaderboard_names(path: Path) -> dict[str, list[str]]:
    """Read {"top100": [...], "top25": [...]} name lists."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return {
        "top100": [str(n) for n in data.get("top100", [])],
        "top25": [str(n) for n in data.get("top25", [])],
    }


def build_top100_leaderboard(
    names: Sequence[str], top_threshold: int = DEFAULT_TOP_THRESHOLD
) -> list[LeaderboardEntry]:
    """Score at 0-based rank i is max(top_threshold - i, 0)."""
    return [
        LeaderboardEntry(name=name, score=max(top_threshold - i, 0))
        for i, name in enumerate(names[:TOP_TIER_MAX_RANK])
    ]


def build_top25_leaderboard(
    names: Sequence[str],
    rng: Optional[random.Random] = None,
    *,
    low: int = 43,
    high: int = 47,
) -> list[LeaderboardEntry]:
    rng = rng or random.Random()
    entries = [
        LeaderboardEntry(name=name, score=rng.randint(low, high)) for name in names[:25]
    ]
    entries.sort(key=lambda e: e.score, reverse=True)
    return entries


def place_player(
    entries: Sequence[LeaderboardEntry], score: int, name: str = YOU
) -> list[LeaderboardEntry]:
    """Insert the player below everyone scoring at least as much, keeping the length."""
    out = list(entries)
    pos = next((i for i, e in enumerate(out) if e.score < score), len(out))
    if pos >= len(out):
        return out
    out.insert(pos, LeaderboardEntry(name=name, score=score))
    return out[: len(entries)]


def summarize_rank(
    score: int,
    top_threshold: int = DEFAULT_TOP_THRESHOLD,
    world_record_score: int = 0,
) -> RankSummary:
    rank = estimate_global_rank(score, top_threshold)
    return RankSummary(
        score=score,
        rank=rank,
        top_tier=rank <= TOP_TIER_MAX_RANK,
        top_threshold=top_threshold,
        world_record_score=world_record_score,
    )
