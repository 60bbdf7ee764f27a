# services/profile_service.py
"""
XP fields on user profiles.

``total_xp`` is only ever changed with store-side arithmetic so concurrent
awards and decay sweeps never overwrite each other.
"""

from __future__ import annotations

from typing import Optional

import asyncpg

from app.models.xp import XpProfile
from services.db_service import execute, fetchrow, fetchrow_with_conn
from services.xp_stores import ProfileStore


class PostgresProfileStore(ProfileStore):

    async def get_profile(self, user_id: str) -> Optional[XpProfile]:
        sql = """
            SELECT id, user_id, COALESCE(total_xp, 0) AS total_xp,
                   COALESCE(last_xp_milestone, 0) AS last_xp_milestone
            FROM profiles
            WHERE user_id = $1::uuid
            LIMIT 1
        """
        row = await fetchrow(sql, user_id)
        if row is None:
            return None
        data = dict(row)
        return XpProfile(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            total_xp=int(data["total_xp"]),
            last_xp_milestone=int(data["last_xp_milestone"]),
        )

    async def increment_total_xp(
        self,
        profile_id: str,
        delta: int,
        conn: Optional[asyncpg.Connection] = None,
    ) -> int:
        sql = """
            UPDATE profiles
            SET total_xp = GREATEST(0, total_xp + $2),
                updated_at = now()
            WHERE id = $1::uuid
            RETURNING total_xp
        """
        if conn is not None:
            row = await fetchrow_with_conn(conn, sql, profile_id, int(delta))
        else:
            row = await fetchrow(sql, profile_id, int(delta))
        if row is None:
            raise LookupError(f"profile {profile_id} not found")
        return int(row["total_xp"])

    async def claim_milestone(self, profile_id: str, threshold: int) -> bool:
        sql = """
            UPDATE profiles
            SET last_xp_milestone = $2,
                updated_at = now()
            WHERE id = $1::uuid
              AND COALESCE(last_xp_milestone, 0) < $2
            RETURNING id
        """
        row = await fetchrow(sql, profile_id, int(threshold))
        return row is not None

    async def set_total_xp(self, profile_id: str, total: int) -> None:
        sql = """
            UPDATE profiles
            SET total_xp = $2,
                updated_at = now()
            WHERE id = $1::uuid
        """
        await execute(sql, profile_id, max(0, int(total)))
