"""
Reconcile scheduler: serializes passes per resource identity and re-invokes them.

- BACKING_OFF → again after a backoff delay that grows per identity
- UPDATED → again after ``interval_sec`` (keeps state fresh)
- INVALID_CONFIGURATION → not rescheduled; a new ``submit`` (spec change) restarts it
"""

from __future__ import annotations

import asyncio
from typing import Dict, Set

from loguru import logger

from ..kv.backoff import BackoffPolicy
from .machine import PassResult, ReconciliationStepMachine
from .resource import Phase, ReconciliationResource

RECONCILE_INTERVAL_SEC = 300.0
RECONCILE_BACKOFF_MIN_MS = 1_000
RECONCILE_BACKOFF_MAX_MS = 60_000


class ReconcileScheduler:
    """Runs ``ReconciliationStepMachine`` passes, at most one per identity at a time.

    Example:
        scheduler = ReconcileScheduler(machine)
        scheduler.submit(resource)      # on every create/update event
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        machine: ReconciliationStepMachine,
        *,
        interval_sec: float = RECONCILE_INTERVAL_SEC,
        backoff_min_ms: int = RECONCILE_BACKOFF_MIN_MS,
        backoff_max_ms: int = RECONCILE_BACKOFF_MAX_MS,
    ) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0")
        self._machine = machine
        self._interval_sec = interval_sec
        self._backoff = BackoffPolicy(min_ms=backoff_min_ms, max_ms=backoff_max_ms)

        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiting: Dict[str, asyncio.Task] = {}  # submitted, pass not started yet
        self._tasks: Set[asyncio.Task] = set()
        self._delays: Dict[str, int] = {}
        self._resources: Dict[str, ReconciliationResource] = {}
        self._closed = False

    def pending(self, identity: str) -> bool:
        """True while a submitted pass for ``identity`` has not started yet."""
        task = self._waiting.get(identity)
        return task is not None and not task.done()

    def retry_delay_ms(self, identity: str) -> int:
        """Last backoff delay used for ``identity`` (0 when not backing off)."""
        return self._delays.get(identity, 0)

    def submit(self, resource: ReconciliationResource, delay_ms: int = 0) -> None:
        """Queue a pass; replaces a not-yet-started pass of the same identity.

        A pass already running is never interrupted; the new one waits for it.
        """
        if self._closed:
            logger.debug(f"Scheduler is stopped, ignoring {resource.identity}")
            return
        identity = resource.identity
        self._resources[identity] = resource

        waiting = self._waiting.get(identity)
        if waiting is not None and not waiting.done() and waiting is not asyncio.current_task():
            waiting.cancel()
        task = asyncio.create_task(self._run_later(identity, delay_ms), name=f"reconcile-{identity}")
        self._waiting[identity] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_pass(self, resource: ReconciliationResource) -> PassResult:
        """Run one pass now, waiting for any pass of the same identity to finish."""
        lock = self._locks.setdefault(resource.identity, asyncio.Lock())
        async with lock:
            return await self._machine.reconcile(resource)

    async def stop(self) -> None:
        """Cancel waiting and running passes."""
        self._closed = True
        tasks = [t for t in self._tasks if not t.done()]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._waiting.clear()
        logger.info("Reconcile scheduler stopped")

    # ---------- internals

    async def _run_later(self, identity: str, delay_ms: int) -> None:
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000.0)
        if self._waiting.get(identity) is asyncio.current_task():
            del self._waiting[identity]

        result = await self.run_pass(self._resources[identity])
        self._reschedule(identity, result)

    def _reschedule(self, identity: str, result: PassResult) -> None:
        if self._closed:
            return
        if self.pending(identity):
            # a newer submission arrived during the pass and takes over
            return

        resource = self._resources[identity]
        if result.phase is Phase.BACKING_OFF:
            delay = self._backoff.next(self._delays.get(identity, 0))
            self._delays[identity] = delay
            logger.info(f"Retrying {identity} in {delay}ms (failed step: {result.failed_step})")
            self.submit(resource, delay)
            return

        self._delays.pop(identity, None)
        if result.phase is Phase.UPDATED:
            self.submit(resource, int(self._interval_sec * 1000))
        else:
            logger.info(f"{identity} is {result.phase.value}, waiting for a spec change")
