"""
Per-path long-poll bookkeeping: modify index, cancellation flag, task handles.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

from loguru import logger


class PollState(str, Enum):
    """Lifecycle of one watched path."""

    IDLE = "idle"
    POLLING = "polling"  # request outstanding at the KV store
    SUCCESS = "success"
    ERROR = "error"
    SCHEDULED = "scheduled"  # next poll waiting on its delay
    CANCELLED = "cancelled"  # terminal


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class LongPollSession:
    """Cancellable handle for one watched path.

    Owned by ``LongPollEngine``: only the engine advances the index and swaps
    task handles. Callers only read state and call ``cancel()``.

    Attributes:
        path: KV key or prefix being watched
        kind: Short label for logs/metrics ("reference", "data", ...)
        last_seen_index: Highest modify index delivered so far (never decreases)
    """

    def __init__(self, path: str, kind: str = "data") -> None:
        self.path = path
        self.kind = kind
        self.last_seen_index = 0
        self.state = PollState.IDLE
        self.deliveries = 0

        self._cancelled = False
        self._succeeded_once = False
        self._scheduled: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def has_pending(self) -> bool:
        """True while a scheduled (not yet started) poll exists."""
        return self._scheduled is not None and not self._scheduled.done()

    def cancel(self) -> None:
        """Stop the poll loop. Idempotent.

        A scheduled poll is dropped; an outstanding KV request is aborted and
        its response never reaches the callback. A delivery already running
        (the callback itself) is allowed to finish.
        """
        if self._cancelled:
            return
        polling = self.state is PollState.POLLING
        self._cancelled = True
        self.state = PollState.CANCELLED

        current = _current_task()
        scheduled, in_flight = self._scheduled, self._in_flight
        self._scheduled = None

        if scheduled is not None and scheduled is not current and not scheduled.done():
            scheduled.cancel()
        if polling and in_flight is not None and in_flight is not current and not in_flight.done():
            in_flight.cancel()

        logger.debug(f"Long-poll session cancelled: kind={self.kind} path='{self.path}'")

    # ---------- engine-side helpers

    def advance(self, index: int) -> bool:
        """Move ``last_seen_index`` forward; returns True only if it increased."""
        if index > self.last_seen_index:
            self.last_seen_index = index
            return True
        return False

    def __repr__(self) -> str:
        return (
            f"LongPollSession(kind={self.kind!r}, path={self.path!r}, "
            f"index={self.last_seen_index}, state={self.state.value})"
        )
