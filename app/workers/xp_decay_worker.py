# app/workers/xp_decay_worker.py
"""
XP Decay Worker

Reverses XP whose decay date has passed.
Runs daily via an external scheduler (cron).
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
import sys
from typing import List, Optional

# Path setup
THIS_FILE = Path(__file__).resolve()
APP_DIR = THIS_FILE.parent.parent
PROJECT_DIR = APP_DIR.parent

if str(PROJECT_DIR) not in sys.path:
    sys.path.insert(0, str(PROJECT_DIR))

from app.core.logging import configure_logging, get_logger
from app.core.run_context import with_run_id
from app.models.xp import DecayRunResult
from services.db_service import close_db_pool, init_db_pool
from services.xp_decay_service import XpDecaySweeper, get_decay_sweeper

logger = get_logger()


async def run_decay_worker(
    sweeper: Optional[XpDecaySweeper] = None,
    *,
    batch_size: Optional[int] = None,
    max_batches: int = 10,
) -> DecayRunResult:
    """
    Main worker function: drain matured transactions in bounded batches.
    """
    sweeper = sweeper or get_decay_sweeper()
    result = await sweeper.drain_decay(max_batches=max_batches, batch_size=batch_size)
    logger.info(
        "xp_decay_worker_completed",
        worker="xp_decay",
        processed=result.processed,
        skipped=result.skipped,
        failed=result.failed,
        xp_removed=result.xp_removed,
    )
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="XP Decay Worker")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Transactions per batch (default: XP_DECAY_BATCH_SIZE)",
    )
    parser.add_argument(
        "--max-batches",
        type=int,
        default=10,
        help="Upper bound on batches per run",
    )
    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point for the XP decay worker.
    """
    configure_logging(service_name="worker")
    args = build_parser().parse_args(argv)

    with with_run_id(worker="xp_decay"):
        await init_db_pool()
        try:
            result = await run_decay_worker(
                batch_size=args.batch_size,
                max_batches=args.max_batches,
            )
        except Exception as exc:
            logger.error(
                "xp_decay_worker_failed",
                worker="xp_decay",
                error=str(exc),
                exc_info=True,
            )
            return 1
        finally:
            await close_db_pool()

    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
