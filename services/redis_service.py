# services/redis_service.py
from __future__ import annotations

import asyncio
from typing import Optional

import redis.asyncio as redis

from app.config import settings
from app.core.logging import get_logger

logger = get_logger()

_client: Optional[redis.Redis] = None
_client_lock = asyncio.Lock()


async def get_redis() -> redis.Redis:
    """
    Shared Redis client for the fast counter store (lazy, one per process).
    """
    global _client
    if _client is not None:
        return _client

    async with _client_lock:
        if _client is None:
            _client = redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_timeout=2,
                socket_connect_timeout=2,
                health_check_interval=30,
            )
            logger.info("redis_client_initialized")
        return _client
