"""
Management supervisor: run the topology watch only while this process manages
the destination artifact.

Another operator may take over the artifact; a periodic check starts or
stops the coordinator accordingly. A failing check changes nothing and is
retried on the next tick.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger

from .coordinator import TopologyWatchCoordinator

ManagementCheck = Callable[[], Awaitable[bool]]

MANAGEMENT_CHECK_INTERVAL_SEC = 300.0


class ManagementSupervisor:
    def __init__(
        self,
        coordinator: TopologyWatchCoordinator,
        check: ManagementCheck,
        *,
        interval_sec: float = MANAGEMENT_CHECK_INTERVAL_SEC,
    ) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0")
        self._coordinator = coordinator
        self._check = check
        self._interval = interval_sec
        self._task: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_active:
            return
        self._task = asyncio.create_task(self._loop(), name="management-supervisor")
        logger.info(f"Management supervisor started (interval={self._interval}s)")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._coordinator.stop()
        logger.info("Management supervisor stopped")

    async def check_once(self) -> None:
        """Run one management check and align the coordinator with it."""
        try:
            managed = await self._check()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(f"Failed to verify management state, retrying on next tick: {exc}")
            return

        if managed:
            if not self._coordinator.running:
                logger.info("Destination is managed by this process, starting topology watch")
            self._coordinator.start()
        elif self._coordinator.running:
            logger.info("Destination is not managed by this process, stopping topology watch")
            self._coordinator.stop()

    async def _loop(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self._interval)
