# services/xp_ledger_service.py
"""
Postgres XP ledger.

``xp_transactions`` is append-only; the only in-place update is the decay
sweeper closing a transaction (amount → 0) exactly once.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

import asyncpg

from app.core.xp_config import DECAY_REASON, XpSource
from app.models.xp import AwardReceipt, XpTransaction, XpTransactionCreate
from services.db_service import (
    execute_with_conn,
    fetch,
    fetchrow,
    fetchrow_with_conn,
    fetchval,
    run_in_transaction,
)
from services.profile_service import PostgresProfileStore
from services.xp_stores import LedgerStore, ProfileStore

_COLUMNS = """
    id, user_id, amount, reason, source, source_id, created_at,
    is_decayable, decay_date, reverses_transaction_id,
    total_before, total_after, metadata
"""

_INSERT_SQL = """
    INSERT INTO xp_transactions (
        user_id, amount, reason, source, source_id,
        is_decayable, decay_date, reverses_transaction_id,
        total_before, total_after, metadata
    ) VALUES (
        $1::uuid, $2, $3, $4, $5,
        $6, $7, $8,
        $9, $10, CAST($11 AS JSONB)
    )
    RETURNING id
"""


def _row_to_transaction(row: Any) -> XpTransaction:
    data = dict(row)
    metadata = data.get("metadata")
    if isinstance(metadata, str):
        metadata = json.loads(metadata)
    data["metadata"] = metadata or {}
    data["user_id"] = str(data["user_id"])
    if data.get("source_id") is not None:
        data["source_id"] = str(data["source_id"])
    return XpTransaction(**data)


def _insert_args(
    record: XpTransactionCreate,
    total_before: Optional[int] = None,
    total_after: Optional[int] = None,
) -> tuple:
    return (
        record.user_id,
        record.amount,
        record.reason,
        record.source.value,
        record.source_id,
        record.is_decayable,
        record.decay_date,
        record.reverses_transaction_id,
        total_before,
        total_after,
        json.dumps(record.metadata, ensure_ascii=False, default=str),
    )


class PostgresXpLedger(LedgerStore):

    def __init__(self, profiles: Optional[ProfileStore] = None):
        self.profiles = profiles or PostgresProfileStore()

    async def append_transaction(
        self,
        record: XpTransactionCreate,
        conn: Optional[asyncpg.Connection] = None,
        *,
        total_before: Optional[int] = None,
        total_after: Optional[int] = None,
    ) -> UUID:
        args = _insert_args(record, total_before, total_after)
        if conn is not None:
            row = await fetchrow_with_conn(conn, _INSERT_SQL, *args)
        else:
            row = await fetchrow(_INSERT_SQL, *args)
        return row["id"]

    async def list_recent(
        self, user_id: str, limit: int, offset: int = 0
    ) -> List[XpTransaction]:
        sql = f"""
            SELECT {_COLUMNS}
            FROM xp_transactions
            WHERE user_id = $1::uuid
            ORDER BY created_at DESC, id DESC
            LIMIT $2 OFFSET $3
        """
        rows = await fetch(sql, user_id, int(limit), int(offset))
        return [_row_to_transaction(r) for r in rows]

    async def count_transactions(self, user_id: str) -> int:
        sql = "SELECT COUNT(*) FROM xp_transactions WHERE user_id = $1::uuid"
        return int(await fetchval(sql, user_id) or 0)

    async def update_transaction_amount(
        self,
        transaction_id: UUID,
        new_amount: int,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[int]:
        # Row lock + amount > 0 guard: concurrent sweepers cannot both win
        sql = """
            UPDATE xp_transactions t
            SET amount = $2
            FROM (
                SELECT id, amount
                FROM xp_transactions
                WHERE id = $1 AND amount > 0
                FOR UPDATE
            ) AS previous
            WHERE t.id = previous.id
            RETURNING previous.amount AS previous_amount
        """
        if conn is not None:
            row = await fetchrow_with_conn(conn, sql, transaction_id, int(new_amount))
        else:
            row = await fetchrow(sql, transaction_id, int(new_amount))
        if row is None:
            return None
        return int(row["previous_amount"])

    async def find_decay_candidates(
        self,
        now: datetime,
        batch_size: int,
        exclude_ids: Sequence[UUID] = (),
    ) -> List[XpTransaction]:
        sql = f"""
            SELECT {_COLUMNS}
            FROM xp_transactions
            WHERE is_decayable = true
              AND decay_date < $1
              AND amount > 0
              AND NOT (id = ANY($3::uuid[]))
            ORDER BY decay_date ASC, created_at ASC
            LIMIT $2
        """
        rows = await fetch(sql, now, int(batch_size), list(exclude_ids))
        return [_row_to_transaction(r) for r in rows]

    async def record_award(
        self, profile_id: str, record: XpTransactionCreate
    ) -> AwardReceipt:
        async with run_in_transaction() as conn:
            total_after = await self.profiles.increment_total_xp(profile_id, record.amount, conn)
            total_before = total_after - record.amount
            transaction_id = await self.append_transaction(
                record,
                conn,
                total_before=total_before,
                total_after=total_after,
            )
        return AwardReceipt(
            transaction_id=transaction_id,
            total_before=total_before,
            total_after=total_after,
        )

    async def reverse_transaction(
        self, transaction: XpTransaction, now: datetime
    ) -> Optional[int]:
        decrement_sql = """
            UPDATE profiles
            SET total_xp = GREATEST(0, total_xp - $2),
                updated_at = now()
            WHERE user_id = $1::uuid
        """
        async with run_in_transaction() as conn:
            removed = await self.update_transaction_amount(transaction.id, 0, conn)
            if removed is None:
                return None
            reversal = build_reversal(transaction, removed, now)
            await self.append_transaction(reversal, conn)
            await execute_with_conn(conn, decrement_sql, transaction.user_id, removed)
        return removed

    async def sum_open_amounts(self, user_id: str) -> int:
        sql = """
            SELECT COALESCE(SUM(amount), 0)
            FROM xp_transactions
            WHERE user_id = $1::uuid
              AND reverses_transaction_id IS NULL
        """
        return int(await fetchval(sql, user_id) or 0)


def build_reversal(
    transaction: XpTransaction, amount: int, now: datetime
) -> XpTransactionCreate:
    """Negative, non-decayable counterpart of a matured transaction."""
    metadata: Dict[str, Any] = {
        "originalTransaction": str(transaction.id),
        "originalAmount": amount,
        "originalReason": transaction.reason,
        "decayDate": now.isoformat(),
    }
    return XpTransactionCreate(
        user_id=transaction.user_id,
        amount=-amount,
        reason=DECAY_REASON,
        source=XpSource.SYSTEM,
        source_id=str(transaction.id),
        is_decayable=False,
        decay_date=None,
        reverses_transaction_id=transaction.id,
        metadata=metadata,
    )
