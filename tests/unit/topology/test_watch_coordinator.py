"""
Unit tests for the two-level topology watch (pointer key → structure prefix).
"""

from consul_kv import Snapshot
from composite_sync.kv import LongPollSession
from composite_sync.topology import TopologyWatchCoordinator, resolve_prefix, structure_ref_key

REF_KEY = "config/core/application/composite/structureRef"


class FakeEngine:
    """Records watches instead of polling."""

    def __init__(self):
        self.watches = []

    def watch(self, path, on_snapshot, *, kind="data", config=None):
        session = LongPollSession(path, kind=kind)
        self.watches.append((path, kind, on_snapshot, session))
        return session

    def paths(self, kind):
        return [w[0] for w in self.watches if w[1] == kind]


def make(on_structure=None):
    engine = FakeEngine()
    structures = []
    coordinator = TopologyWatchCoordinator.for_namespace(
        engine, "core", on_structure or structures.append
    )
    return engine, coordinator, structures


def ref(value, index=1):
    return Snapshot({REF_KEY: value} if value is not None else {}, index)


def push_ref(engine, value, index=1):
    callback = engine.watches[0][2]
    callback(ref(value, index))


def test_structure_ref_key_template():
    """Pointer key is derived from the namespace."""
    assert structure_ref_key("core") == REF_KEY


def test_resolve_prefix_strips_and_treats_blank_as_none():
    """Prefix is trimmed; blank or missing pointer resolves to None."""
    assert resolve_prefix(ref(" composite/bs/ "), REF_KEY) == "composite/bs/"
    assert resolve_prefix(ref("   "), REF_KEY) is None
    assert resolve_prefix(ref(None), REF_KEY) is None


def test_start_watches_reference_key_once():
    """start() opens the reference watch; a second start() is a no-op."""
    engine, coordinator, _ = make()
    coordinator.start()
    coordinator.start()
    assert engine.paths("reference") == [REF_KEY]
    assert coordinator.running


def test_reference_snapshot_opens_data_watch():
    """A pointer value starts a data watch on that prefix."""
    engine, coordinator, structures = make()
    coordinator.start()
    push_ref(engine, "composite/bs/")

    assert engine.paths("data") == ["composite/bs/"]
    assert coordinator.active_prefix == "composite/bs/"

    # data callback is the structure pipeline
    data_callback = engine.watches[1][2]
    data_callback(Snapshot({"k": "v"}, 3))
    assert [s.index for s in structures] == [3]


def test_unchanged_prefix_is_a_noop():
    """Same prefix again keeps the existing data watch."""
    engine, coordinator, _ = make()
    coordinator.start()
    push_ref(engine, "composite/bs/", 1)
    first = coordinator.data_watch
    push_ref(engine, "composite/bs/", 2)

    assert engine.paths("data") == ["composite/bs/"]
    assert coordinator.data_watch is first
    assert not first.cancelled


def test_prefix_change_switches_data_watch():
    """A new prefix cancels the old data watch and opens a new one."""
    engine, coordinator, _ = make()
    coordinator.start()
    push_ref(engine, "composite/bs/", 1)
    old = coordinator.data_watch
    push_ref(engine, "composite/bs2/", 2)

    assert old.cancelled
    assert engine.paths("data") == ["composite/bs/", "composite/bs2/"]
    assert coordinator.data_watch.path == "composite/bs2/"


def test_blank_pointer_pauses_data_watching():
    """Blank pointer cancels the data watch without opening another."""
    engine, coordinator, _ = make()
    coordinator.start()
    push_ref(engine, "composite/bs/", 1)
    old = coordinator.data_watch
    push_ref(engine, "", 2)

    assert old.cancelled
    assert coordinator.data_watch is None
    assert coordinator.active_prefix is None
    assert engine.paths("data") == ["composite/bs/"]

    # and resumes when the pointer is set again
    push_ref(engine, "composite/bs/", 3)
    assert engine.paths("data") == ["composite/bs/", "composite/bs/"]


def test_stop_cancels_both_watches_and_ignores_late_snapshots():
    """stop() cancels everything; reference snapshots after stop do nothing."""
    engine, coordinator, _ = make()
    coordinator.start()
    ref_session = engine.watches[0][3]
    push_ref(engine, "composite/bs/")
    data_session = coordinator.data_watch

    coordinator.stop()
    assert ref_session.cancelled and data_session.cancelled
    assert not coordinator.running
    assert coordinator.active_prefix is None

    push_ref(engine, "composite/other/")
    assert engine.paths("data") == ["composite/bs/"]


def test_restart_after_stop_opens_fresh_reference_watch():
    """start() after stop() begins watching again."""
    engine, coordinator, _ = make()
    coordinator.start()
    coordinator.stop()
    coordinator.start()
    assert engine.paths("reference") == [REF_KEY, REF_KEY]
    assert not engine.watches[1][3].cancelled
