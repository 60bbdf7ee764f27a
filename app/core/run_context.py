# app/core/run_context.py
"""
Log context for worker and script runs.

Values bound here land on every structlog event emitted inside the block,
including events from tasks spawned inside it.
"""
from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from structlog.contextvars import bound_contextvars, get_contextvars


def get_run_id() -> Optional[str]:
    return get_contextvars().get("run_id")


@contextmanager
def with_run_id(run_id: Optional[str] = None, **context: Any) -> Iterator[str]:
    """
    Bind a run id (and any extra keys) for the duration of a run:

        with with_run_id(worker="xp_decay") as run_id:
            await sweeper.drain_decay()
    """
    rid = run_id or uuid.uuid4().hex
    with bound_contextvars(run_id=rid, **context):
        yield rid
