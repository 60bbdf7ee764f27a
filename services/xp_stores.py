# services/xp_stores.py
"""
Collaborator contracts consumed by the XP engine.

Postgres-backed implementations live in ``xp_ledger_service``,
``profile_service`` and ``xp_limits_service``; the Redis-backed counter store
lives in ``xp_counter_store``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from app.models.xp import (
    AwardReceipt,
    DailyActivityCounter,
    XpProfile,
    XpTransaction,
    XpTransactionCreate,
)


class CounterStoreUnavailable(RuntimeError):
    """The fast counter store could not be reached or answered with an error."""


class ProfileStore(ABC):

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[XpProfile]:
        pass

    @abstractmethod
    async def increment_total_xp(
        self, profile_id: str, delta: int, conn: Optional[Any] = None
    ) -> int:
        """
        Atomically add ``delta`` to the running total and return the new total.

        Negative deltas never push the total below 0. ``conn`` joins an
        open transaction when the store supports one.
        """
        pass

    @abstractmethod
    async def claim_milestone(self, profile_id: str, threshold: int) -> bool:
        """
        Advance ``last_xp_milestone`` to ``threshold`` if it is still below it.

        Returns True only for the caller that performed the update.
        """
        pass

    @abstractmethod
    async def set_total_xp(self, profile_id: str, total: int) -> None:
        pass


class LedgerStore(ABC):

    @abstractmethod
    async def append_transaction(self, record: XpTransactionCreate) -> UUID:
        pass

    @abstractmethod
    async def list_recent(
        self, user_id: str, limit: int, offset: int = 0
    ) -> List[XpTransaction]:
        """Transactions for a user, newest first."""
        pass

    @abstractmethod
    async def count_transactions(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def update_transaction_amount(
        self, transaction_id: UUID, new_amount: int
    ) -> Optional[int]:
        """
        Set the amount of a still-open (amount > 0) transaction.

        Returns the previous amount, or None when the row was already closed.
        """
        pass

    @abstractmethod
    async def find_decay_candidates(
        self,
        now: datetime,
        batch_size: int,
        exclude_ids: Sequence[UUID] = (),
    ) -> List[XpTransaction]:
        """
        Decayable, matured, still-open transactions, oldest first.

        ``exclude_ids`` skips rows that already failed earlier in the same run.
        """
        pass

    @abstractmethod
    async def record_award(
        self, profile_id: str, record: XpTransactionCreate
    ) -> AwardReceipt:
        """
        Increment the running total and append the transaction as one unit.

        The transaction stores the totals observed by the increment.
        """
        pass

    @abstractmethod
    async def reverse_transaction(
        self, transaction: XpTransaction, now: datetime
    ) -> Optional[int]:
        """
        Close ``transaction`` and write its negative counterpart as one unit.

        Returns the amount removed, or None when the transaction was already
        closed.
        """
        pass

    @abstractmethod
    async def sum_open_amounts(self, user_id: str) -> int:
        """Sum of amounts over non-reversal transactions."""
        pass


class CounterStore(ABC):

    @abstractmethod
    async def atomic_increment_with_cap(
        self, key: str, amount: int, cap: int, ttl_seconds: int
    ) -> Tuple[int, int]:
        """
        Grant ``min(amount, cap - current)`` (0 when at cap) in one atomic step.

        Returns (granted, current_after).

        Raises:
            CounterStoreUnavailable: On any store failure
        """
        pass

    @abstractmethod
    async def push_bounded(
        self, key: str, value: str, max_len: int, ttl_seconds: int
    ) -> int:
        """
        Push ``value`` onto the head of a list trimmed to ``max_len``.

        Returns the list length after the push.

        Raises:
            CounterStoreUnavailable: On any store failure
        """
        pass

    @abstractmethod
    async def release(self, key: str, amount: int) -> None:
        """Give back cap budget consumed by an award that was not recorded."""
        pass


class LimitsMirror(ABC):

    @abstractmethod
    async def upsert_daily_counter(self, counter: DailyActivityCounter) -> None:
        pass

    @abstractmethod
    async def record_diminishing(self, counter: DailyActivityCounter) -> None:
        pass


class NotificationSink(ABC):

    @abstractmethod
    async def notify(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass
