"""
Unit tests for the long-poll engine and session lifecycle.

Uses a scripted in-memory KV client: each ``await_changes`` call blocks until
the test pushes a snapshot (or an exception) for that path.
"""

import asyncio
from collections import defaultdict

import pytest

from consul_kv import Snapshot
from composite_sync.kv import BackoffPolicy, LongPollConfig, LongPollEngine, PollState


class ScriptedKv:
    def __init__(self):
        self.calls = []
        self._queues = defaultdict(asyncio.Queue)

    def push(self, path, item):
        self._queues[path].put_nowait(item)

    async def await_changes(self, path, since_index, wait_sec):
        self.calls.append((path, since_index))
        item = await self._queues[path].get()
        if isinstance(item, Exception):
            raise item
        return item


async def wait_until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


FAST = LongPollConfig(wait_sec=1, retry_delay_ms=10)


def snap(index, **entries):
    return Snapshot(entries or {"k": str(index)}, index)


@pytest.mark.asyncio
async def test_first_success_delivered_then_only_index_increases():
    """First response fires; equal index is skipped; a higher index fires."""
    kv = ScriptedKv()
    engine = LongPollEngine(kv, FAST)
    seen = []
    try:
        session = engine.watch("p/", lambda s: seen.append(s.index))

        kv.push("p/", snap(5))
        await wait_until(lambda: len(kv.calls) == 2)
        kv.push("p/", snap(5))
        await wait_until(lambda: len(kv.calls) == 3)
        kv.push("p/", snap(7))
        await wait_until(lambda: len(kv.calls) == 4)

        assert seen == [5, 7]
        assert [c[1] for c in kv.calls] == [0, 5, 5, 7]
        assert session.last_seen_index == 7
        assert session.deliveries == 2
    finally:
        engine.close()


@pytest.mark.asyncio
async def test_first_success_not_forced_when_disabled():
    """Without fire_on_first_success an index-0 response is not delivered."""
    kv = ScriptedKv()
    engine = LongPollEngine(kv, LongPollConfig(wait_sec=1, fire_on_first_success=False))
    seen = []
    try:
        engine.watch("p/", lambda s: seen.append(s.index))
        kv.push("p/", Snapshot.empty(0))
        await wait_until(lambda: len(kv.calls) == 2)
        assert seen == []

        kv.push("p/", snap(3))
        await wait_until(lambda: len(kv.calls) == 3)
        assert seen == [3]
    finally:
        engine.close()


@pytest.mark.asyncio
async def test_lower_index_is_not_delivered():
    """Delivered indices never decrease; last_seen_index never goes back."""
    kv = ScriptedKv()
    engine = LongPollEngine(kv, FAST)
    seen = []
    try:
        session = engine.watch("p/", lambda s: seen.append(s.index))
        kv.push("p/", snap(10))
        kv.push("p/", snap(4))
        kv.push("p/", snap(11))
        await wait_until(lambda: len(kv.calls) == 4)
        assert seen == [10, 11]
        assert session.last_seen_index == 11
    finally:
        engine.close()


@pytest.mark.asyncio
async def test_error_is_retried_with_same_index():
    """A failed poll is retried after the fixed delay, keeping the index."""
    kv = ScriptedKv()
    engine = LongPollEngine(kv, FAST)
    seen = []
    try:
        engine.watch("p/", lambda s: seen.append(s.index))
        kv.push("p/", snap(2))
        await wait_until(lambda: len(kv.calls) == 2)
        kv.push("p/", ConnectionError("consul down"))
        await wait_until(lambda: len(kv.calls) == 3)
        kv.push("p/", snap(3))
        await wait_until(lambda: seen == [2, 3])

        assert [c[1] for c in kv.calls][:3] == [0, 2, 2]
    finally:
        engine.close()


@pytest.mark.asyncio
async def test_error_backoff_policy_is_used_when_configured():
    """Errors with a backoff policy keep polling and recover on success."""
    kv = ScriptedKv()
    cfg = LongPollConfig(wait_sec=1, backoff=BackoffPolicy(min_ms=1, max_ms=5, jitter=False))
    engine = LongPollEngine(kv, cfg)
    seen = []
    try:
        session = engine.watch("p/", lambda s: seen.append(s.index))
        for _ in range(3):
            kv.push("p/", RuntimeError("boom"))
        kv.push("p/", snap(1))
        await wait_until(lambda: seen == [1])
        assert len(kv.calls) >= 4
        assert session.state in (PollState.POLLING, PollState.SCHEDULED, PollState.SUCCESS)
    finally:
        engine.close()


@pytest.mark.asyncio
async def test_cancel_while_polling_discards_response():
    """Cancelling an in-flight poll aborts it; nothing is delivered afterwards."""
    kv = ScriptedKv()
    engine = LongPollEngine(kv, FAST)
    seen = []
    session = engine.watch("p/", lambda s: seen.append(s.index))
    await wait_until(lambda: len(kv.calls) == 1)
    assert session.state is PollState.POLLING

    session.cancel()
    kv.push("p/", snap(9))
    await asyncio.sleep(0.05)

    assert seen == []
    assert session.cancelled
    assert session.state is PollState.CANCELLED
    assert len(kv.calls) == 1


@pytest.mark.asyncio
async def test_cancel_from_inside_callback_stops_polling():
    """A callback may cancel its own session; no further poll is issued."""
    kv = ScriptedKv()
    engine = LongPollEngine(kv, FAST)
    seen = []
    holder = {}

    def on_snapshot(s):
        seen.append(s.index)
        holder["session"].cancel()

    holder["session"] = engine.watch("p/", on_snapshot)
    kv.push("p/", snap(1))
    await wait_until(lambda: seen == [1])
    await asyncio.sleep(0.05)

    assert len(kv.calls) == 1
    assert holder["session"].state is PollState.CANCELLED


@pytest.mark.asyncio
async def test_callback_errors_do_not_stop_polling():
    """An exception from the callback is logged, polling continues."""
    kv = ScriptedKv()
    engine = LongPollEngine(kv, FAST)
    seen = []

    def on_snapshot(s):
        seen.append(s.index)
        raise ValueError("consumer bug")

    try:
        engine.watch("p/", on_snapshot)
        kv.push("p/", snap(1))
        kv.push("p/", snap(2))
        await wait_until(lambda: seen == [1, 2])
    finally:
        engine.close()


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited():
    """Coroutine callbacks complete before the next poll is issued."""
    kv = ScriptedKv()
    engine = LongPollEngine(kv, FAST)
    seen = []

    async def on_snapshot(s):
        await asyncio.sleep(0.01)
        seen.append(s.index)

    try:
        engine.watch("p/", on_snapshot)
        kv.push("p/", snap(4))
        await wait_until(lambda: len(kv.calls) == 2)
        assert seen == [4]
    finally:
        engine.close()


@pytest.mark.asyncio
async def test_paths_are_independent_and_close_cancels_all():
    """Two watched paths poll independently; close() cancels both."""
    kv = ScriptedKv()
    engine = LongPollEngine(kv, FAST)
    seen = defaultdict(list)
    a = engine.watch("a/", lambda s: seen["a"].append(s.index), kind="reference")
    b = engine.watch("b/", lambda s: seen["b"].append(s.index))
    assert engine.active_sessions == 2

    kv.push("b/", snap(8))
    await wait_until(lambda: seen["b"] == [8])
    assert seen["a"] == []

    engine.close()
    assert a.cancelled and b.cancelled
    assert engine.active_sessions == 0


@pytest.mark.asyncio
async def test_initial_delay_postpones_first_poll():
    """initial_delay_ms delays the first request; cancel drops it."""
    kv = ScriptedKv()
    engine = LongPollEngine(kv, LongPollConfig(wait_sec=1, initial_delay_ms=200))
    session = engine.watch("p/", lambda s: None)
    await asyncio.sleep(0.02)
    assert kv.calls == []
    assert session.has_pending

    session.cancel()
    assert not session.has_pending
    await asyncio.sleep(0.01)
    assert kv.calls == []


def test_config_rejects_bad_values():
    """Non-positive wait and negative delays are rejected."""
    with pytest.raises(ValueError):
        LongPollConfig(wait_sec=0)
    with pytest.raises(ValueError):
        LongPollConfig(retry_delay_ms=-1)
