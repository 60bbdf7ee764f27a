# services/xp_limits_service.py
"""
Durable mirror of the daily XP counters (``xp_limits``).

Redis decides; this table is for audit and recovery, so writes here are
best-effort and never move a counter backwards.
"""

from __future__ import annotations

import json

from app.core.xp_config import RECENT_ACTIVITY_LIMIT
from app.models.xp import DailyActivityCounter
from services.db_service import execute
from services.xp_stores import LimitsMirror


class PostgresLimitsMirror(LimitsMirror):

    async def upsert_daily_counter(self, counter: DailyActivityCounter) -> None:
        sql = """
            INSERT INTO xp_limits (
                user_id, activity_type, daily_cap, current_daily, reset_at, updated_at
            ) VALUES ($1::uuid, $2, $3, $4, $5, now())
            ON CONFLICT (user_id, activity_type, reset_at)
            DO UPDATE SET
                current_daily = GREATEST(xp_limits.current_daily, EXCLUDED.current_daily),
                daily_cap = EXCLUDED.daily_cap,
                updated_at = now()
        """
        await execute(
            sql,
            counter.user_id,
            counter.activity_type.value,
            counter.daily_cap,
            counter.current_daily,
            counter.reset_at,
        )

    async def record_diminishing(self, counter: DailyActivityCounter) -> None:
        # Newest timestamps first, trimmed to the same bound as the Redis list
        sql = f"""
            INSERT INTO xp_limits (
                user_id, activity_type, daily_cap, current_daily, reset_at,
                recent_activities, diminishing_factor, updated_at
            ) VALUES ($1::uuid, $2, $3, 0, $4, CAST($5 AS JSONB), $6, now())
            ON CONFLICT (user_id, activity_type, reset_at)
            DO UPDATE SET
                recent_activities = jsonb_path_query_array(
                    CAST($5 AS JSONB) || COALESCE(xp_limits.recent_activities, '[]'::jsonb),
                    '$[0 to {RECENT_ACTIVITY_LIMIT - 1}]'
                ),
                diminishing_factor = EXCLUDED.diminishing_factor,
                updated_at = now()
        """
        await execute(
            sql,
            counter.user_id,
            counter.activity_type.value,
            counter.daily_cap,
            counter.reset_at,
            json.dumps(counter.recent_activities),
            counter.diminishing_factor,
        )
