from __future__ import annotations

import argparse
import asyncio
import json
import random
from typing import Optional

from app.core.config import GameSettings, settings
from app.core.logging import setup_logging
from app.modules.blitz.bank import TemplateError, build_question_bank, load_templates
from app.modules.blitz.models import Phase, Question
from app.modules.blitz.ranking import summarize_rank
from app.modules.blitz.state import SessionEngine


def _build_bank(
    game: GameSettings, seed: Optional[int], repeat_factor: Optional[int] = None
) -> tuple[Question, ...]:
    seed = game.seed if seed is None else seed
    rng = random.Random(seed) if seed is not None else random.Random()
    return build_question_bank(
        load_templates(game.templates_path),
        repeat_factor=game.repeat_factor if repeat_factor is None else repeat_factor,
        rng=rng,
    )


async def _play(game: GameSettings, seed: Optional[int]) -> int:
    engine = SessionEngine(
        _build_bank(game, seed),
        duration_seconds=game.duration_seconds,
        tick_interval=game.tick_interval,
        reveal_delay=game.reveal_delay,
    )
    over = asyncio.Event()
    engine.subscribe(lambda snap: over.set() if snap.phase == Phase.GAME_OVER else None)
    loop = asyncio.get_running_loop()

    engine.start()
    while not over.is_set():
        snap = engine.snapshot()
        if snap.phase != Phase.ACTIVE or snap.question is None:
            await asyncio.sleep(0.05)
            continue
        print(f"\n[{snap.time_remaining_seconds:>2}s] score {snap.score}  {snap.question.prompt}")
        for i, choice in enumerate(snap.question.choices, 1):
            print(f"  {i}) {choice}")

        reader = loop.run_in_executor(None, input, "> ")
        waiter = asyncio.ensure_future(over.wait())
        finished, _ = await asyncio.wait(
            {reader, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        if waiter in finished:
            print("\nTime's up! Press Enter to see your result.")
            await reader
            break
        waiter.cancel()
        raw = reader.result().strip()
        if not raw.isdigit():
            continue
        if engine.submit_answer(int(raw) - 1):
            print("Correct!" if engine.last_answer and engine.last_answer.was_correct else "Wrong.")

    engine.close()
    summary = summarize_rank(
        engine.score,
        top_threshold=game.top_threshold,
        world_record_score=game.world_record_score,
    )
    print(f"\nYour score: {summary.score}")
    if summary.top_tier:
        print("Congratulations! You're in the Top 100!")
    else:
        print(f"Global ranking: {summary.rank}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="blitz", description="Derive-A-Blitz CLI")
    sub = parser.add_subparsers(dest="cmd", required=True)

    b = sub.add_parser("bank", help="Build a question bank and print it as JSON")
    b.add_argument("--seed", type=int, default=None, help="Seed for the shuffles")
    b.add_argument("--repeat-factor", type=int, default=None)
    b.add_argument("--limit", type=int, default=10, help="Questions to print (0 = all)")

    r = sub.add_parser("rank", help="Estimate the global rank for a score")
    r.add_argument("--score", type=int, required=True)

    p = sub.add_parser("play", help="Play a round in the terminal")
    p.add_argument("--seed", type=int, default=None, help="Seed for the shuffles")

    args = parser.parse_args(argv)
    game = settings.game
    if args.cmd == "bank":
        try:
            bank = _build_bank(game, args.seed, args.repeat_factor)
        except TemplateError as e:
            parser.error(str(e))
        shown = bank if args.limit == 0 else bank[: args.limit]
        print(
            json.dumps(
                {"size": len(bank), "questions": [q.model_dump(mode="json") for q in shown]},
                indent=2,
                ensure_ascii=False,
            )
        )
        return 0
    if args.cmd == "rank":
        summary = summarize_rank(
            args.score,
            top_threshold=game.top_threshold,
            world_record_score=game.world_record_score,
        )
        print(json.dumps(summary.model_dump(), indent=2))
        return 0
    if args.cmd == "play":
        setup_logging(level="WARNING")
        return asyncio.run(_play(game, args.seed))

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
