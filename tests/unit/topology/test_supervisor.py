"""
Unit tests for the management supervisor.
"""

import asyncio

import pytest

from composite_sync.topology import ManagementSupervisor


class FakeCoordinator:
    def __init__(self):
        self.running = False
        self.starts = 0
        self.stops = 0

    def start(self):
        self.starts += 1
        self.running = True

    def stop(self):
        self.stops += 1
        self.running = False


def check_returning(*answers):
    it = iter(answers)

    async def check():
        answer = next(it)
        if isinstance(answer, Exception):
            raise answer
        return answer

    return check


@pytest.mark.asyncio
async def test_managed_starts_coordinator():
    """A positive check starts the watch."""
    coord = FakeCoordinator()
    sup = ManagementSupervisor(coord, check_returning(True))
    await sup.check_once()
    assert coord.running


@pytest.mark.asyncio
async def test_unmanaged_stops_running_coordinator():
    """A negative check stops a running watch; repeated negatives do nothing."""
    coord = FakeCoordinator()
    sup = ManagementSupervisor(coord, check_returning(True, False, False))
    await sup.check_once()
    await sup.check_once()
    await sup.check_once()
    assert not coord.running
    assert coord.stops == 1


@pytest.mark.asyncio
async def test_failing_check_keeps_state():
    """A check error changes nothing."""
    coord = FakeCoordinator()
    sup = ManagementSupervisor(coord, check_returning(True, RuntimeError("api down")))
    await sup.check_once()
    await sup.check_once()
    assert coord.running
    assert coord.stops == 0


@pytest.mark.asyncio
async def test_loop_checks_periodically_and_stop_stops_coordinator():
    """start() runs checks on a timer; stop() ends the loop and the watch."""
    coord = FakeCoordinator()
    calls = []

    async def check():
        calls.append(1)
        return True

    sup = ManagementSupervisor(coord, check, interval_sec=0.01)
    sup.start()
    assert sup.is_active
    await asyncio.sleep(0.05)
    await sup.stop()

    assert len(calls) >= 2
    assert not sup.is_active
    assert not coord.running


def test_interval_must_be_positive():
    """A zero interval is rejected."""
    with pytest.raises(ValueError):
        ManagementSupervisor(FakeCoordinator(), check_returning(), interval_sec=0)
