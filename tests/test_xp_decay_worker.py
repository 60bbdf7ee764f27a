# tests/test_xp_decay_worker.py
from __future__ import annotations

import pytest

from app.models.xp import AwardOptions
from app.workers.xp_decay_worker import build_parser, run_decay_worker
from services.xp_decay_service import XpDecaySweeper

from fixtures import make_engine


def test_parser_defaults_and_overrides():
    parser = build_parser()

    defaults = parser.parse_args([])
    assert defaults.batch_size is None
    assert defaults.max_batches == 10

    args = parser.parse_args(["--batch-size", "5", "--max-batches", "3"])
    assert args.batch_size == 5
    assert args.max_batches == 3


@pytest.mark.asyncio
async def test_worker_drains_matured_transactions():
    engine = make_engine(milestones=())
    engine.profiles.add("user-1")
    for amount in (5, 10, 15):
        await engine.service.award_xp(
            "user-1", amount, "Bookmark", "bookmark",
            options=AwardOptions(bypass_daily_cap=True),
        )
    engine.clock.advance(days=91)
    sweeper = XpDecaySweeper(engine.ledger, batch_size=100, clock=engine.clock)

    result = await run_decay_worker(sweeper, batch_size=2, max_batches=5)

    # The override applies to this run only
    assert sweeper.batch_size == 100
    assert result.processed == 3
    assert result.xp_removed == 30
    assert engine.profiles.total("user-1") == 0


@pytest.mark.asyncio
async def test_worker_respects_max_batches():
    engine = make_engine(milestones=())
    engine.profiles.add("user-1")
    for _ in range(5):
        await engine.service.award_xp(
            "user-1", 1, "Bookmark", "bookmark",
            options=AwardOptions(bypass_daily_cap=True),
        )
    engine.clock.advance(days=91)
    sweeper = XpDecaySweeper(engine.ledger, clock=engine.clock)

    result = await run_decay_worker(sweeper, batch_size=2, max_batches=1)

    assert result.processed == 2
    assert engine.profiles.total("user-1") == 3
