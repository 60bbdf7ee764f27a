# services/xp_decay_service.py
"""
XP decay sweeper.

Reverses matured decayable transactions in bounded batches. Closing the
original (amount → 0) is what keeps a transaction from decaying twice, so the
sweep can be re-run or run concurrently.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional, Sequence
from uuid import UUID

from app.config import settings
from app.core.logging import get_logger
from app.models.xp import DecayRunResult
from services.xp_stores import LedgerStore

logger = get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class XpDecaySweeper:

    def __init__(
        self,
        ledger: LedgerStore,
        *,
        batch_size: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ledger = ledger
        self.batch_size = batch_size or settings.XP_DECAY_BATCH_SIZE
        self.clock = clock

    async def process_decay(
        self,
        now: Optional[datetime] = None,
        batch_size: Optional[int] = None,
        exclude_ids: Sequence[UUID] = (),
    ) -> DecayRunResult:
        """
        Decay one batch of matured transactions.

        A failure on one transaction is logged and the batch continues; its id
        is reported in ``failed_ids`` so a follow-up batch can skip it.
        """
        now = now or self.clock()
        size = batch_size or self.batch_size
        result = DecayRunResult()

        candidates = await self.ledger.find_decay_candidates(now, size, exclude_ids)

        for transaction in candidates:
            try:
                removed = await self.ledger.reverse_transaction(transaction, now)
            except Exception as e:
                result.failed += 1
                result.failed_ids.append(transaction.id)
                logger.error(
                    "xp_decay_transaction_failed",
                    transaction_id=str(transaction.id),
                    user_id=transaction.user_id,
                    error=str(e),
                )
                continue

            if removed is None:
                # Closed by a concurrent or earlier sweep
                result.skipped += 1
                continue

            result.processed += 1
            result.xp_removed += removed
            logger.debug(
                "xp_transaction_decayed",
                transaction_id=str(transaction.id),
                user_id=transaction.user_id,
                amount=removed,
            )

        logger.info(
            "xp_decay_completed",
            candidates=len(candidates),
            processed=result.processed,
            skipped=result.skipped,
            failed=result.failed,
            xp_removed=result.xp_removed,
        )
        return result

    async def drain_decay(
        self,
        max_batches: int = 10,
        batch_size: Optional[int] = None,
    ) -> DecayRunResult:
        """
        Run batches until nothing is left to decay or ``max_batches`` is hit.

        Rows that fail are excluded from later batches of the same run, so a
        block of broken rows at the head of the queue cannot starve the rest.
        """
        size = batch_size or self.batch_size
        now = self.clock()
        total = DecayRunResult()
        for _ in range(max(1, max_batches)):
            batch = await self.process_decay(now, size, total.failed_ids)
            total.processed += batch.processed
            total.skipped += batch.skipped
            total.failed += batch.failed
            total.xp_removed += batch.xp_removed
            total.failed_ids.extend(batch.failed_ids)
            if batch.processed + batch.skipped + batch.failed < size:
                break

        if total.failed_ids:
            logger.warning(
                "xp_decay_rows_left_open",
                failed=len(total.failed_ids),
                transaction_ids=[str(i) for i in total.failed_ids[:20]],
            )
        return total


_decay_sweeper: Optional[XpDecaySweeper] = None


def get_decay_sweeper() -> XpDecaySweeper:
    """Get or create the XpDecaySweeper singleton backed by Postgres."""
    global _decay_sweeper
    if _decay_sweeper is None:
        from services.xp_ledger_service import PostgresXpLedger

        _decay_sweeper = XpDecaySweeper(PostgresXpLedger())
    return _decay_sweeper
