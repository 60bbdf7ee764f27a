# services/xp_service.py
"""
XP (Experience Points) awarding service.

Ties together profile lookup, the daily cap policy, the ledger write with its
running-total increment, and milestone detection.
"""

from __future__ import annotations

import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence, Set, Union

from app.config import settings
from app.core.logging import get_logger
from app.core.xp_config import (
    MILESTONE_BONUS_PERCENT,
    MILESTONE_BONUS_REASON,
    MILESTONE_NOTIFICATION_TYPE,
    XP_MILESTONES,
    XpSource,
    activity_for_source,
    get_xp_value,
    resolve_source,
)
from app.models.xp import AwardOptions, XpHistoryPage, XpTransactionCreate
from services.xp_policy_service import XpCapPolicy
from services.xp_stores import LedgerStore, NotificationSink, ProfileStore

logger = get_logger()


def first_crossed_milestone(
    total_before: int,
    total_after: int,
    milestones: Sequence[int] = XP_MILESTONES,
) -> Optional[int]:
    """
    Lowest threshold with ``total_before < threshold <= total_after``.

    Only one milestone is celebrated per award even if a large award crosses
    several.
    """
    for milestone in sorted(milestones):
        if total_before < milestone <= total_after:
            return milestone
    return None


def milestone_bonus(milestone: int) -> int:
    return milestone * MILESTONE_BONUS_PERCENT // 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class XpService:
    """
    Entry point for granting XP.
    """

    def __init__(
        self,
        profiles: ProfileStore,
        ledger: LedgerStore,
        policy: XpCapPolicy,
        notifier: NotificationSink,
        *,
        milestones: Sequence[int] = XP_MILESTONES,
        default_decay_days: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.profiles = profiles
        self.ledger = ledger
        self.policy = policy
        self.notifier = notifier
        self.milestones = tuple(sorted(milestones))
        self.default_decay_days = default_decay_days or settings.XP_DEFAULT_DECAY_DAYS
        self.clock = clock
        self._background: Set[asyncio.Task] = set()

    async def award_xp(
        self,
        user_id: str,
        amount: int,
        reason: str,
        source: Union[XpSource, str],
        source_id: Optional[str] = None,
        options: Optional[AwardOptions] = None,
    ) -> int:
        """
        Award XP to a user.

        Args:
            user_id: User UUID
            amount: Requested XP amount
            reason: Human-readable reason stored on the transaction
            source: Activity source ('post', 'comment', 'bookmark_received', ...)
            source_id: Optional ID of the originating entity
            options: Decay / cap bypass / metadata options

        Returns:
            XP actually granted; 0 when capped, when the user has no profile
            or when the ledger write failed

        Raises:
            ValueError: Unknown source or empty reason (nothing is written)
        """
        xp_source = resolve_source(source)
        if not reason or not reason.strip():
            raise ValueError("reason cannot be empty")
        options = options or AwardOptions()

        if amount <= 0:
            logger.debug("xp_award_skipped_non_positive", user_id=user_id, source=xp_source.value)
            return 0

        try:
            profile = await self.profiles.get_profile(user_id)
        except Exception as e:
            logger.error("xp_profile_lookup_failed", user_id=user_id, error=str(e))
            return 0

        if profile is None:
            logger.warning("xp_award_skipped_no_profile", user_id=user_id, source=xp_source.value)
            return 0

        actual_amount = amount
        if not options.bypass_daily_cap:
            actual_amount = await self.policy.apply_caps(user_id, amount, xp_source)

        if actual_amount <= 0:
            return 0

        now = self.clock()
        decay_date = None
        if options.is_decayable:
            decay_date = now + timedelta(days=options.decay_days or self.default_decay_days)

        record = XpTransactionCreate(
            user_id=user_id,
            amount=actual_amount,
            reason=reason,
            source=xp_source,
            source_id=str(source_id) if source_id is not None else None,
            is_decayable=options.is_decayable,
            decay_date=decay_date,
            metadata=options.metadata,
        )

        try:
            receipt = await self.ledger.record_award(profile.id, record)
        except Exception as e:
            logger.error(
                "xp_award_error",
                user_id=user_id,
                source=xp_source.value,
                amount=actual_amount,
                error=str(e),
            )
            if not options.bypass_daily_cap:
                await self.policy.release(user_id, xp_source, actual_amount)
            return 0

        logger.info(
            "xp_awarded",
            user_id=user_id,
            source=xp_source.value,
            source_id=record.source_id,
            requested=amount,
            amount=actual_amount,
            total_xp=receipt.total_after,
        )

        await self._check_milestone(user_id, profile.id, receipt.total_before, receipt.total_after)
        return actual_amount

    async def award_activity_xp(
        self,
        user_id: str,
        action: str,
        source_id: Optional[str] = None,
    ) -> int:
        """
        Award the configured XP for ``action`` ('create_post', 'bookmark_received', ...).

        Diminishing returns are applied to the base amount before the daily cap.
        """
        base_amount, source, reason = get_xp_value(action)
        adjusted = await self.policy.apply_diminishing_returns(
            user_id, activity_for_source(source), base_amount
        )
        return await self.award_xp(
            user_id,
            adjusted,
            reason,
            source,
            source_id,
            AwardOptions(metadata={"action": action, "base_amount": base_amount}),
        )

    def schedule_award_xp(
        self,
        user_id: str,
        amount: int,
        reason: str,
        source: Union[XpSource, str],
        source_id: Optional[str] = None,
        options: Optional[AwardOptions] = None,
    ) -> asyncio.Task:
        """
        Fire-and-forget award for request handlers: the primary action never
        waits on, or fails because of, XP.
        """
        task = asyncio.create_task(
            self._award_in_background(user_id, amount, reason, source, source_id, options)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for scheduled awards (shutdown hooks, tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def get_user_xp_history(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> XpHistoryPage:
        page = max(1, int(page))
        limit = max(1, int(limit))
        offset = (page - 1) * limit

        try:
            transactions = await self.ledger.list_recent(user_id, limit, offset)
            total = await self.ledger.count_transactions(user_id)
        except Exception as e:
            logger.error("xp_history_error", user_id=user_id, error=str(e))
            return XpHistoryPage(transactions=[], total=0, page=page, limit=limit, total_pages=0)

        return XpHistoryPage(
            transactions=transactions,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )

    async def reconcile_total_xp(self, user_id: str) -> Optional[int]:
        """
        Recompute the running total from the ledger and repair drift.

        Meant for maintenance runs; returns the corrected total or None when
        the user has no profile.
        """
        profile = await self.profiles.get_profile(user_id)
        if profile is None:
            return None

        expected = max(0, await self.ledger.sum_open_amounts(user_id))
        if expected != profile.total_xp:
            logger.warning(
                "xp_total_drift_repaired",
                user_id=user_id,
                cached_total=profile.total_xp,
                ledger_total=expected,
            )
            await self.profiles.set_total_xp(profile.id, expected)
        return expected

    async def _award_in_background(
        self,
        user_id: str,
        amount: int,
        reason: str,
        source: Union[XpSource, str],
        source_id: Optional[str],
        options: Optional[AwardOptions],
    ) -> int:
        try:
            return await self.award_xp(user_id, amount, reason, source, source_id, options)
        except Exception as e:
            logger.error(
                "xp_background_award_failed",
                user_id=user_id,
                source=str(getattr(source, "value", source)),
                error=str(e),
            )
            return 0

    async def _check_milestone(
        self,
        user_id: str,
        profile_id: str,
        total_before: int,
        total_after: int,
    ) -> None:
        try:
            milestone = first_crossed_milestone(total_before, total_after, self.milestones)
            if milestone is None:
                return
            # Claims only move up: an equal or higher milestone already recorded wins
            if not await self.profiles.claim_milestone(profile_id, milestone):
                logger.info(
                    "xp_milestone_claim_lost",
                    user_id=user_id,
                    milestone=milestone,
                    total_before=total_before,
                    total_after=total_after,
                )
                return
        except Exception as e:
            logger.warning("xp_milestone_check_failed", user_id=user_id, error=str(e))
            return

        logger.info("xp_milestone_reached", user_id=user_id, milestone=milestone, total_xp=total_after)

        try:
            await self.notifier.notify(
                user_id,
                MILESTONE_NOTIFICATION_TYPE,
                "XP Milestone Reached!",
                f"Congratulations! You've reached {milestone} XP.",
                {"milestone": milestone, "totalXp": total_after},
            )
        except Exception as e:
            logger.warning("xp_milestone_notification_failed", user_id=user_id, milestone=milestone, error=str(e))

        try:
            await self.award_xp(
                user_id,
                milestone_bonus(milestone),
                MILESTONE_BONUS_REASON,
                XpSource.SYSTEM,
                options=AwardOptions(
                    bypass_daily_cap=True,
                    is_decayable=False,
                    metadata={"milestone": milestone},
                ),
            )
        except Exception as e:
            logger.warning("xp_milestone_bonus_failed", user_id=user_id, milestone=milestone, error=str(e))


_xp_service: Optional[XpService] = None


def get_xp_service() -> XpService:
    """Get or create the XpService singleton wired to Postgres and Redis."""
    global _xp_service
    if _xp_service is None:
        from services.notification_service import NotificationService
        from services.profile_service import PostgresProfileStore
        from services.xp_counter_store import RedisCounterStore
        from services.xp_ledger_service import PostgresXpLedger
        from services.xp_limits_service import PostgresLimitsMirror

        profiles = PostgresProfileStore()
        _xp_service = XpService(
            profiles=profiles,
            ledger=PostgresXpLedger(profiles),
            policy=XpCapPolicy(RedisCounterStore(), PostgresLimitsMirror()),
            notifier=NotificationService(),
        )
    return _xp_service


async def award_xp(
    user_id: str,
    amount: int,
    reason: str,
    source: Union[XpSource, str],
    source_id: Optional[str] = None,
    options: Optional[AwardOptions] = None,
) -> int:
    """Module-level shortcut used by request handlers."""
    return await get_xp_service().award_xp(user_id, amount, reason, source, source_id, options)
