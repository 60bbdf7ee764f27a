from __future__ import annotations

import math
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Optional


def _aware(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def local_day_key(tz: tzinfo, now: Optional[datetime] = None) -> str:
    """YYYY-MM-DD of the local calendar day containing ``now``."""
    return _aware(now).astimezone(tz).date().isoformat()


def next_local_midnight(tz: tzinfo, now: Optional[datetime] = None) -> datetime:
    local_now = _aware(now).astimezone(tz)
    tomorrow = local_now.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=tz)


def seconds_until_midnight(tz: tzinfo, now: Optional[datetime] = None) -> int:
    """
    Whole seconds until the next local midnight, at least 1.

    Both ends are compared in UTC so DST transitions count real seconds.
    """
    current = _aware(now).astimezone(timezone.utc)
    midnight = next_local_midnight(tz, current).astimezone(timezone.utc)
    return max(1, math.ceil((midnight - current).total_seconds()))
