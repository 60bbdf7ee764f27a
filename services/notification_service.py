# services/notification_service.py
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from services.db_service import execute
from services.xp_stores import NotificationSink
from app.core.logging import get_logger

logger = get_logger()


class NotificationService(NotificationSink):
    """
    In-app notifications (``notifications`` table).

    Fire-and-forget: a failed insert is logged and never raised to the caller.
    """

    async def notify(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        sql = """
            INSERT INTO notifications (user_id, type, title, content, metadata, created_at)
            VALUES ($1::uuid, $2, $3, $4, CAST($5 AS JSONB), now())
        """
        try:
            await execute(
                sql,
                user_id,
                notification_type,
                title,
                content,
                json.dumps(metadata or {}, ensure_ascii=False, default=str),
            )
        except Exception as e:
            logger.warning(
                "notification_insert_failed",
                user_id=user_id,
                notification_type=notification_type,
                error=str(e),
            )
            return

        logger.info(
            "notification_created",
            user_id=user_id,
            notification_type=notification_type,
        )
