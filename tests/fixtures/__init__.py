# tests/fixtures/__init__.py
"""
Test fixtures for the XP engine.

In-memory stand-ins for the Postgres/Redis collaborators plus factory helpers:
- make_engine()
- make_transaction()

The fakes yield to the event loop before every store call (like a network
round trip) but perform each store-side atomic operation without awaiting in
the middle, matching the guarantees of the real stores.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
from uuid import UUID, uuid4

from app.core.xp_config import XP_MILESTONES, XpSource
from app.models.xp import (
    AwardReceipt,
    DailyActivityCounter,
    XpProfile,
    XpTransaction,
    XpTransactionCreate,
)
from services.xp_ledger_service import build_reversal
from services.xp_policy_service import XpCapPolicy, compute_grant
from services.xp_service import XpService
from services.xp_stores import (
    CounterStore,
    CounterStoreUnavailable,
    LedgerStore,
    LimitsMirror,
    NotificationSink,
    ProfileStore,
)

DEFAULT_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = DEFAULT_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryProfileStore(ProfileStore):

    def __init__(self) -> None:
        self.by_user: Dict[str, XpProfile] = {}
        self.fail_lookups = False

    def add(self, user_id: str, total_xp: int = 0, last_xp_milestone: int = 0) -> XpProfile:
        profile = XpProfile(
            id=str(uuid4()),
            user_id=user_id,
            total_xp=total_xp,
            last_xp_milestone=last_xp_milestone,
        )
        self.by_user[user_id] = profile
        return profile

    def total(self, user_id: str) -> int:
        return self.by_user[user_id].total_xp

    def _by_id(self, profile_id: str) -> XpProfile:
        for profile in self.by_user.values():
            if profile.id == profile_id:
                return profile
        raise LookupError(f"profile {profile_id} not found")

    def increment_now(self, profile_id: str, delta: int) -> int:
        profile = self._by_id(profile_id)
        profile.total_xp = max(0, profile.total_xp + delta)
        return profile.total_xp

    async def get_profile(self, user_id: str) -> Optional[XpProfile]:
        await asyncio.sleep(0)
        if self.fail_lookups:
            raise ConnectionError("profile store down")
        profile = self.by_user.get(user_id)
        return profile.model_copy() if profile else None

    async def increment_total_xp(self, profile_id: str, delta: int, conn: Any = None) -> int:
        await asyncio.sleep(0)
        return self.increment_now(profile_id, delta)

    async def claim_milestone(self, profile_id: str, threshold: int) -> bool:
        await asyncio.sleep(0)
        profile = self._by_id(profile_id)
        if profile.last_xp_milestone >= threshold:
            return False
        profile.last_xp_milestone = threshold
        return True

    async def set_total_xp(self, profile_id: str, total: int) -> None:
        await asyncio.sleep(0)
        self._by_id(profile_id).total_xp = max(0, total)


class InMemoryLedger(LedgerStore):

    def __init__(self, profiles: InMemoryProfileStore, clock: FakeClock) -> None:
        self.profiles = profiles
        self.clock = clock
        self.transactions: List[XpTransaction] = []
        self.fail_awards = False
        self.fail_reversals: Set[UUID] = set()

    def _append_now(
        self,
        record: XpTransactionCreate,
        total_before: Optional[int] = None,
        total_after: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> XpTransaction:
        transaction = XpTransaction(
            id=uuid4(),
            created_at=created_at or self.clock(),
            total_before=total_before,
            total_after=total_after,
            **record.model_dump(),
        )
        self.transactions.append(transaction)
        return transaction

    def get(self, transaction_id: UUID) -> XpTransaction:
        for transaction in self.transactions:
            if transaction.id == transaction_id:
                return transaction
        raise LookupError(str(transaction_id))

    def for_user(self, user_id: str) -> List[XpTransaction]:
        return [t for t in self.transactions if t.user_id == user_id]

    def open_sum(self, user_id: str) -> int:
        return sum(
            t.amount for t in self.for_user(user_id) if t.reverses_transaction_id is None
        )

    async def append_transaction(self, record: XpTransactionCreate) -> UUID:
        await asyncio.sleep(0)
        return self._append_now(record).id

    async def list_recent(self, user_id: str, limit: int, offset: int = 0) -> List[XpTransaction]:
        await asyncio.sleep(0)
        newest_first = list(reversed(self.for_user(user_id)))
        return [t.model_copy() for t in newest_first[offset:offset + limit]]

    async def count_transactions(self, user_id: str) -> int:
        await asyncio.sleep(0)
        return len(self.for_user(user_id))

    async def update_transaction_amount(self, transaction_id: UUID, new_amount: int) -> Optional[int]:
        await asyncio.sleep(0)
        return self._update_now(transaction_id, new_amount)

    def _update_now(self, transaction_id: UUID, new_amount: int) -> Optional[int]:
        stored = self.get(transaction_id)
        if stored.amount <= 0:
            return None
        previous = stored.amount
        stored.amount = new_amount
        return previous

    async def find_decay_candidates(
        self, now: datetime, batch_size: int, exclude_ids: Sequence[UUID] = ()
    ) -> List[XpTransaction]:
        await asyncio.sleep(0)
        excluded = set(exclude_ids)
        due = [
            t for t in self.transactions
            if t.is_decayable and t.decay_date is not None and t.decay_date < now and t.amount > 0
            and t.id not in excluded
        ]
        due.sort(key=lambda t: t.decay_date)
        return [t.model_copy() for t in due[:batch_size]]

    async def record_award(self, profile_id: str, record: XpTransactionCreate) -> AwardReceipt:
        await asyncio.sleep(0)
        if self.fail_awards:
            raise ConnectionError("ledger down")
        total_after = self.profiles.increment_now(profile_id, record.amount)
        total_before = total_after - record.amount
        transaction = self._append_now(record, total_before, total_after)
        return AwardReceipt(
            transaction_id=transaction.id,
            total_before=total_before,
            total_after=total_after,
        )

    async def reverse_transaction(self, transaction: XpTransaction, now: datetime) -> Optional[int]:
        await asyncio.sleep(0)
        if transaction.id in self.fail_reversals:
            raise ConnectionError("ledger down")
        removed = self._update_now(transaction.id, 0)
        if removed is None:
            return None
        self._append_now(build_reversal(transaction, removed, now), created_at=now)
        profile = self.profiles.by_user.get(transaction.user_id)
        if profile is not None:
            profile.total_xp = max(0, profile.total_xp - removed)
        return removed

    async def sum_open_amounts(self, user_id: str) -> int:
        await asyncio.sleep(0)
        return self.open_sum(user_id)


class InMemoryCounterStore(CounterStore):

    def __init__(self) -> None:
        self.values: Dict[str, int] = {}
        self.lists: Dict[str, List[str]] = {}
        self.ttls: Dict[str, int] = {}
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise CounterStoreUnavailable("Connection refused")

    async def atomic_increment_with_cap(
        self, key: str, amount: int, cap: int, ttl_seconds: int
    ) -> Tuple[int, int]:
        await asyncio.sleep(0)
        self._check()
        current = self.values.get(key, 0)
        granted = compute_grant(amount, current, cap)
        if granted > 0:
            self.values[key] = current + granted
            self.ttls[key] = ttl_seconds
        return granted, self.values.get(key, current)

    async def push_bounded(self, key: str, value: str, max_len: int, ttl_seconds: int) -> int:
        await asyncio.sleep(0)
        self._check()
        items = self.lists.setdefault(key, [])
        items.insert(0, value)
        del items[max_len:]
        self.ttls[key] = ttl_seconds
        return len(items)

    async def release(self, key: str, amount: int) -> None:
        await asyncio.sleep(0)
        self._check()
        if key in self.values:
            self.values[key] = max(0, self.values[key] - amount)


class RecordingMirror(LimitsMirror):

    def __init__(self) -> None:
        self.counters: List[DailyActivityCounter] = []
        self.diminishing: List[DailyActivityCounter] = []
        self.fail = False

    async def upsert_daily_counter(self, counter: DailyActivityCounter) -> None:
        if self.fail:
            raise ConnectionError("mirror down")
        self.counters.append(counter)

    async def record_diminishing(self, counter: DailyActivityCounter) -> None:
        if self.fail:
            raise ConnectionError("mirror down")
        self.diminishing.append(counter)


class RecordingNotifier(NotificationSink):

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail = False

    async def notify(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await asyncio.sleep(0)
        if self.fail:
            raise ConnectionError("notifications down")
        self.sent.append(
            {
                "user_id": user_id,
                "type": notification_type,
                "title": title,
                "content": content,
                "metadata": metadata or {},
            }
        )


def make_engine(
    *,
    milestones: Sequence[int] = XP_MILESTONES,
    now: datetime = DEFAULT_NOW,
) -> SimpleNamespace:
    clock = FakeClock(now)
    profiles = InMemoryProfileStore()
    ledger = InMemoryLedger(profiles, clock)
    counters = InMemoryCounterStore()
    mirror = RecordingMirror()
    notifier = RecordingNotifier()
    policy = XpCapPolicy(counters, mirror, tz=timezone.utc, clock=clock)
    service = XpService(
        profiles,
        ledger,
        policy,
        notifier,
        milestones=milestones,
        default_decay_days=90,
        clock=clock,
    )
    return SimpleNamespace(
        clock=clock,
        profiles=profiles,
        ledger=ledger,
        counters=counters,
        mirror=mirror,
        notifier=notifier,
        policy=policy,
        service=service,
    )


def make_transaction(**overrides: Any) -> XpTransaction:
    base: Dict[str, Any] = {
        "id": uuid4(),
        "user_id": "user-1",
        "amount": 10,
        "reason": "Create Post",
        "source": XpSource.POST,
        "source_id": None,
        "created_at": DEFAULT_NOW,
        "is_decayable": True,
        "decay_date": DEFAULT_NOW + timedelta(days=90),
        "metadata": {},
    }
    base.update(overrides)
    return XpTransaction(**base)
