"""
Long-poll engine for blocking-query KV stores.

Keeps exactly one outstanding request per watched path and reschedules it
until the session is cancelled:

    IDLE → POLLING → (SUCCESS | ERROR) → SCHEDULED → POLLING → … → CANCELLED

Successful responses are re-polled immediately with the (possibly advanced)
index; a store-side wait timeout with no change therefore never stalls the
loop. Errors are always retried, after a fixed delay or a backoff-derived one.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, Union

from loguru import logger

from consul_kv import Snapshot

from ..metrics import KV_POLL_TOTAL, KV_SNAPSHOT_DELIVERED_TOTAL
from .backoff import BackoffPolicy
from .session import LongPollSession, PollState

SnapshotCallback = Callable[[Snapshot], Union[None, Awaitable[None]]]


class KvClient(Protocol):
    """Blocking-query reader (``consul_kv.ConsulKvClient`` satisfies it)."""

    async def await_changes(self, path: str, since_index: int, wait_sec: float) -> Snapshot:
        ...


@dataclass(frozen=True)
class LongPollConfig:
    """Knobs for one watch.

    Attributes:
        wait_sec: Blocking-query wait passed to the store
        retry_delay_ms: Fixed delay after an error (used when ``backoff`` is None)
        initial_delay_ms: Delay before the very first request
        fire_on_first_success: Deliver the first successful response regardless of index
        backoff: When set, error delays grow via ``BackoffPolicy`` and reset on success
    """

    wait_sec: float = 540.0
    retry_delay_ms: int = 20_000
    initial_delay_ms: int = 0
    fire_on_first_success: bool = True
    backoff: Optional[BackoffPolicy] = None

    def __post_init__(self) -> None:
        if self.wait_sec <= 0:
            raise ValueError("wait_sec must be > 0")
        if self.retry_delay_ms < 0 or self.initial_delay_ms < 0:
            raise ValueError("delays must be >= 0")


class LongPollEngine:
    """Drives poll/retry/reschedule loops against a ``KvClient``.

    Example:
        engine = LongPollEngine(ConsulKvClient(url))
        session = engine.watch("composite/bs/", on_snapshot)
        ...
        session.cancel()
    """

    def __init__(self, client: KvClient, config: Optional[LongPollConfig] = None) -> None:
        self._client = client
        self._config = config or LongPollConfig()
        self._sessions: set[LongPollSession] = set()

    @property
    def config(self) -> LongPollConfig:
        return self._config

    @property
    def active_sessions(self) -> int:
        return sum(1 for s in self._sessions if not s.cancelled)

    def watch(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        *,
        kind: str = "data",
        config: Optional[LongPollConfig] = None,
    ) -> LongPollSession:
        """Start watching ``path``; must be called with a running event loop."""
        cfg = config or self._config
        session = LongPollSession(path, kind=kind)
        self._sessions = {s for s in self._sessions if not s.cancelled}
        self._sessions.add(session)
        logger.info(f"Long-poll watch started: kind={kind} path='{path}' wait={cfg.wait_sec}s")
        self._schedule(session, on_snapshot, cfg, cfg.initial_delay_ms, 0)
        return session

    def close(self) -> None:
        """Cancel every session started by this engine."""
        for session in list(self._sessions):
            session.cancel()
        self._sessions.clear()

    # ---------- loop internals

    def _schedule(
        self,
        session: LongPollSession,
        callback: SnapshotCallback,
        cfg: LongPollConfig,
        delay_ms: int,
        error_delay_ms: int,
    ) -> None:
        if session.cancelled:
            return
        # Single pending task per session: a newer schedule replaces an older one
        previous = session._scheduled
        if previous is not None and not previous.done() and previous is not asyncio.current_task():
            previous.cancel()
        session.state = PollState.SCHEDULED
        session._scheduled = asyncio.create_task(
            self._poll_after(session, callback, cfg, delay_ms, error_delay_ms),
            name=f"kv-poll-{session.kind}",
        )

    async def _poll_after(
        self,
        session: LongPollSession,
        callback: SnapshotCallback,
        cfg: LongPollConfig,
        delay_ms: int,
        error_delay_ms: int,
    ) -> None:
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000.0)
        if session.cancelled:
            return

        task = asyncio.current_task()
        if session._scheduled is task:
            session._scheduled = None
        session._in_flight = task
        try:
            await self._poll_once(session, callback, cfg, error_delay_ms)
        except asyncio.CancelledError:
            logger.debug(f"Long-poll request aborted: kind={session.kind} path='{session.path}'")
            raise
        finally:
            if session._in_flight is task:
                session._in_flight = None

    async def _poll_once(
        self,
        session: LongPollSession,
        callback: SnapshotCallback,
        cfg: LongPollConfig,
        error_delay_ms: int,
    ) -> None:
        since = session.last_seen_index
        session.state = PollState.POLLING

        try:
            snapshot = await self._client.await_changes(session.path, since, cfg.wait_sec)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if session.cancelled:
                KV_POLL_TOTAL.labels(session.kind, "discarded").inc()
                return
            KV_POLL_TOTAL.labels(session.kind, "error").inc()
            session.state = PollState.ERROR
            if cfg.backoff is not None:
                next_delay = cfg.backoff.next(error_delay_ms)
            else:
                next_delay = cfg.retry_delay_ms
            logger.warning(
                f"Long-poll error: kind={session.kind} path='{session.path}' "
                f"retry in {next_delay}ms, cause={type(exc).__name__}: {exc}"
            )
            # index is kept as is
            self._schedule(session, callback, cfg, next_delay, next_delay)
            return

        if session.cancelled:
            KV_POLL_TOTAL.labels(session.kind, "discarded").inc()
            logger.debug(f"Discarding response after cancel: path='{session.path}'")
            return

        KV_POLL_TOTAL.labels(session.kind, "success").inc()
        session.state = PollState.SUCCESS

        first = cfg.fire_on_first_success and not session._succeeded_once
        session._succeeded_once = True
        changed = session.advance(snapshot.index)

        if changed or first:
            logger.debug(
                f"Long-poll update: kind={session.kind} path='{session.path}' "
                f"index={snapshot.index} keys={len(snapshot)}"
            )
            await self._deliver(session, callback, snapshot)

        # Next long-poll right away; a timed-out wait with no change must not stall
        self._schedule(session, callback, cfg, 0, 0)

    async def _deliver(
        self, session: LongPollSession, callback: SnapshotCallback, snapshot: Snapshot
    ) -> None:
        session.deliveries += 1
        KV_SNAPSHOT_DELIVERED_TOTAL.labels(session.kind).inc()
        try:
            result = callback(snapshot)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            # A broken consumer must not stop polling
            logger.exception(
                f"Snapshot callback failed: kind={session.kind} path='{session.path}' "
                f"index={snapshot.index}"
            )
