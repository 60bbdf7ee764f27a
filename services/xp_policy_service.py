# services/xp_policy_service.py
"""
Daily cap and diminishing-returns policy.

Callers apply diminishing returns first and the capped award second; both
reductions compose and the cap is the final ceiling.
"""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Callable, Optional, Union

from app.config import get_xp_timezone
from app.core.logging import get_logger
from app.core.xp_config import (
    ActivityType,
    DIMINISHING_FLOOR_PERCENT,
    DIMINISHING_STEP_PERCENT,
    RECENT_ACTIVITY_LIMIT,
    XpSource,
    activity_for_source,
    get_daily_cap,
)
from app.models.xp import DailyActivityCounter
from app.utils.day_window import local_day_key, next_local_midnight, seconds_until_midnight
from services.xp_counter_store import activity_log_key, daily_counter_key
from services.xp_stores import CounterStore, CounterStoreUnavailable, LimitsMirror

logger = get_logger()


def compute_grant(requested: int, current: int, cap: int) -> int:
    """
    Amount grantable against a daily counter: 0 at or over the cap, otherwise
    the request truncated to the remaining budget.
    """
    if requested <= 0 or current >= cap:
        return 0
    return min(requested, cap - current)


def diminishing_factor(prior_activities: int) -> int:
    """Percentage kept after ``prior_activities`` same-bucket actions today."""
    return max(
        DIMINISHING_FLOOR_PERCENT,
        100 - DIMINISHING_STEP_PERCENT * max(0, prior_activities),
    )


def apply_factor(base_amount: int, factor: int) -> int:
    return (base_amount * factor) // 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class XpCapPolicy:

    def __init__(
        self,
        counters: CounterStore,
        mirror: Optional[LimitsMirror] = None,
        *,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.counters = counters
        self.mirror = mirror
        self.tz = tz or get_xp_timezone()
        self.clock = clock

    async def apply_caps(
        self,
        user_id: str,
        requested_amount: int,
        source: Union[XpSource, str],
    ) -> int:
        """
        Charge ``requested_amount`` against today's counter for the source's
        activity bucket and return what may actually be granted.

        Fails open: when the counter store is down the full amount is granted.
        """
        activity_type = activity_for_source(source)
        daily_cap = get_daily_cap(activity_type)
        now = self.clock()
        key = daily_counter_key(user_id, activity_type, local_day_key(self.tz, now))

        try:
            granted, current = await self.counters.atomic_increment_with_cap(
                key,
                requested_amount,
                daily_cap,
                seconds_until_midnight(self.tz, now),
            )
        except CounterStoreUnavailable as e:
            logger.warning(
                "xp_counter_store_unavailable",
                user_id=user_id,
                activity_type=activity_type.value,
                requested=requested_amount,
                error=str(e),
            )
            return requested_amount

        if granted <= 0:
            logger.debug(
                "xp_cap_reached",
                user_id=user_id,
                activity_type=activity_type.value,
                current_daily=current,
                daily_cap=daily_cap,
            )
            return 0

        if granted < requested_amount:
            logger.info(
                "xp_award_truncated_by_cap",
                user_id=user_id,
                activity_type=activity_type.value,
                requested=requested_amount,
                granted=granted,
                daily_cap=daily_cap,
            )

        await self._mirror_counter(
            DailyActivityCounter(
                user_id=user_id,
                activity_type=activity_type,
                current_daily=current,
                daily_cap=daily_cap,
                reset_at=next_local_midnight(self.tz, now),
            )
        )
        return granted

    async def apply_diminishing_returns(
        self,
        user_id: str,
        activity_type: ActivityType,
        base_amount: int,
    ) -> int:
        """
        Record this activity and scale ``base_amount`` by today's factor.

        The first activity of the day keeps 100%; each earlier one in the same
        bucket costs 5 points, never dropping below 20%.
        """
        now = self.clock()
        key = activity_log_key(user_id, activity_type, local_day_key(self.tz, now))
        stamp = int(now.timestamp() * 1000)

        try:
            length = await self.counters.push_bounded(
                key,
                str(stamp),
                RECENT_ACTIVITY_LIMIT,
                seconds_until_midnight(self.tz, now),
            )
        except CounterStoreUnavailable as e:
            logger.warning(
                "xp_counter_store_unavailable",
                user_id=user_id,
                activity_type=activity_type.value,
                operation="diminishing_returns",
                error=str(e),
            )
            return base_amount

        factor = diminishing_factor(length - 1)
        await self._mirror_diminishing(
            DailyActivityCounter(
                user_id=user_id,
                activity_type=activity_type,
                daily_cap=get_daily_cap(activity_type),
                reset_at=next_local_midnight(self.tz, now),
                recent_activities=[stamp],
                diminishing_factor=factor,
            )
        )
        return apply_factor(base_amount, factor)

    async def release(
        self,
        user_id: str,
        source: Union[XpSource, str],
        amount: int,
    ) -> None:
        """Return budget taken by ``apply_caps`` for an award that was not recorded."""
        activity_type = activity_for_source(source)
        key = daily_counter_key(user_id, activity_type, local_day_key(self.tz, self.clock()))
        try:
            await self.counters.release(key, amount)
        except CounterStoreUnavailable as e:
            logger.warning(
                "xp_cap_release_failed",
                user_id=user_id,
                activity_type=activity_type.value,
                amount=amount,
                error=str(e),
            )

    async def _mirror_counter(self, counter: DailyActivityCounter) -> None:
        if self.mirror is None:
            return
        try:
            await self.mirror.upsert_daily_counter(counter)
        except Exception as e:
            logger.warning(
                "xp_limits_mirror_failed",
                user_id=counter.user_id,
                activity_type=counter.activity_type.value,
                error=str(e),
            )

    async def _mirror_diminishing(self, counter: DailyActivityCounter) -> None:
        if self.mirror is None:
            return
        try:
            await self.mirror.record_diminishing(counter)
        except Exception as e:
            logger.warning(
                "xp_limits_mirror_failed",
                user_id=counter.user_id,
                activity_type=counter.activity_type.value,
                operation="diminishing_returns",
                error=str(e),
            )
