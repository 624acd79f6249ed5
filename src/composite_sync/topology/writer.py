"""
Retrying, coalescing destination writer.

``request_update`` replaces any queued-but-not-started write with the newest
payload and schedules it immediately. Failed attempts are retried with
exponential backoff (3s → 6s → 12s → 24s → 30s cap by default) up to
``max_attempts``; after that the write is reported and dropped until the
next ``request_update``.

Writes are applied one at a time, in request order. A write that was
already superseded by a newer request when its turn comes is skipped, so the
destination never regresses to an older payload.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Awaitable, Callable, Mapping, Optional, Protocol

from loguru import logger

from ..errors import WriteFailedError
from ..kv.backoff import BackoffPolicy
from ..metrics import WRITER_ATTEMPT_LATENCY_MS, WRITER_ATTEMPTS_TOTAL

MAX_RETRY_ATTEMPTS = 5
INITIAL_RETRY_DELAY_MS = 3_000
MAX_RETRY_DELAY_MS = 30_000

FailureCallback = Callable[[WriteFailedError], Awaitable[None]]


class ResourceWriteClient(Protocol):
    """Destination store; ``apply`` must be an idempotent upsert."""

    async def apply(self, target_id: str, namespace: str, payload: Mapping[str, str]) -> None:
        ...


@dataclass
class _Attempt:
    generation: int
    target_id: str
    payload: Mapping[str, str]
    number: int
    delay_ms: int
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    started: bool = False


class RetryingWriter:
    """Single-writer pipeline in front of a ``ResourceWriteClient``.

    Example:
        writer = RetryingWriter(client, namespace="core")
        writer.request_update("composite-structure", {"data": payload_json})
        ...
        await writer.stop()
    """

    def __init__(
        self,
        client: ResourceWriteClient,
        namespace: str,
        *,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        initial_delay_ms: int = INITIAL_RETRY_DELAY_MS,
        max_delay_ms: int = MAX_RETRY_DELAY_MS,
        on_failure: Optional[FailureCallback] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._client = client
        self._namespace = namespace
        self._max_attempts = max_attempts
        self._backoff = BackoffPolicy(min_ms=initial_delay_ms, max_ms=max_delay_ms)
        self._on_failure = on_failure

        self._generation = 0
        self._pending: Optional[_Attempt] = None
        self._running: set[asyncio.Task] = set()
        self._apply_lock = asyncio.Lock()
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

        self.last_failure: Optional[WriteFailedError] = None

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def idle(self) -> bool:
        return self._idle.is_set()

    # ---------- public API

    def request_update(self, target_id: str, payload: Mapping[str, str]) -> None:
        """Queue ``payload`` for ``target_id``, discarding any older queued write."""
        if self._closed:
            logger.debug(f"Writer is shut down, skipping update for '{target_id}'")
            return

        snapshot = MappingProxyType(dict(payload))
        self._generation += 1
        self._cancel_pending()
        self._idle.clear()
        self._schedule(_Attempt(self._generation, target_id, snapshot, number=1, delay_ms=0))

    async def wait_idle(self) -> None:
        """Wait until the newest request succeeded or gave up."""
        await self._idle.wait()

    async def stop(self) -> None:
        """Drop scheduled attempts; let an attempt already applying finish."""
        self._closed = True
        self._cancel_pending()
        running = [t for t in self._running if not t.done()]
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        self._idle.set()
        logger.info("Retrying writer stopped")

    # ---------- internals

    def _cancel_pending(self) -> None:
        pending, self._pending = self._pending, None
        if pending is not None and not pending.started and pending.task is not None:
            pending.task.cancel()
            WRITER_ATTEMPTS_TOTAL.labels("superseded").inc()

    def _schedule(self, attempt: _Attempt) -> None:
        attempt.task = asyncio.create_task(self._run(attempt), name=f"write-{attempt.target_id}")
        self._pending = attempt
        self._running.add(attempt.task)
        attempt.task.add_done_callback(self._running.discard)

    async def _run(self, attempt: _Attempt) -> None:
        if attempt.delay_ms > 0:
            await asyncio.sleep(attempt.delay_ms / 1000.0)

        attempt.started = True
        if self._pending is attempt:
            self._pending = None

        async with self._apply_lock:
            if attempt.generation != self._generation:
                logger.debug(f"Skipping superseded write for '{attempt.target_id}'")
                WRITER_ATTEMPTS_TOTAL.labels("superseded").inc()
                return

            t0 = time.perf_counter()
            try:
                await self._client.apply(attempt.target_id, self._namespace, attempt.payload)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                WRITER_ATTEMPT_LATENCY_MS.observe((time.perf_counter() - t0) * 1000)
                await self._on_attempt_failed(attempt, exc)
                return

        WRITER_ATTEMPT_LATENCY_MS.observe((time.perf_counter() - t0) * 1000)
        WRITER_ATTEMPTS_TOTAL.labels("success").inc()
        if attempt.number > 1:
            logger.info(f"Updated '{attempt.target_id}' after {attempt.number} attempts")
        else:
            logger.debug(f"Updated '{attempt.target_id}'")
        if attempt.generation == self._generation:
            self._idle.set()

    async def _on_attempt_failed(self, attempt: _Attempt, exc: Exception) -> None:
        if attempt.generation != self._generation or self._closed:
            # a newer request owns the destination now
            logger.debug(f"Dropping retry of superseded write for '{attempt.target_id}': {exc}")
            return

        if attempt.number >= self._max_attempts:
            WRITER_ATTEMPTS_TOTAL.labels("gave_up").inc()
            failure = WriteFailedError(attempt.target_id, attempt.number, exc)
            self.last_failure = failure
            logger.error(
                f"Failed to update '{attempt.target_id}' after {attempt.number} attempts: "
                f"{type(exc).__name__}: {exc}"
            )
            self._idle.set()
            if self._on_failure is not None:
                try:
                    await self._on_failure(failure)
                except Exception:
                    logger.exception("Writer failure callback raised")
            return

        WRITER_ATTEMPTS_TOTAL.labels("retry").inc()
        delay = self._backoff.next(attempt.delay_ms)
        logger.warning(
            f"Failed to update '{attempt.target_id}' on attempt "
            f"{attempt.number}/{self._max_attempts}; retrying in {delay}ms: {exc}"
        )
        self._schedule(
            _Attempt(
                attempt.generation,
                attempt.target_id,
                attempt.payload,
                number=attempt.number + 1,
                delay_ms=delay,
            )
        )


class LocalFileWriteClient:
    """Writes each target as JSON to ``<root>/<namespace>/<target_id>.json``.

    Files are replaced atomically so readers never see a partial write.
    """

    def __init__(self, root: Path | str, *, mkdirs: bool = True) -> None:
        self.root = Path(root)
        if mkdirs:
            self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, target_id: str, namespace: str) -> Path:
        return self.root / namespace / f"{target_id}.json"

    async def apply(self, target_id: str, namespace: str, payload: Mapping[str, str]) -> None:
        path = self.path_for(target_id, namespace)
        body = json.dumps(dict(payload), sort_keys=True, indent=2)
        await asyncio.to_thread(self._write_atomic, path, body)

    @staticmethod
    def _write_atomic(path: Path, body: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(body)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
