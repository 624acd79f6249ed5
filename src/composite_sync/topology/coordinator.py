"""
Two-level topology watch: a pointer key naming the structure prefix, and the
prefix itself.

    config/<namespace>/application/composite/structureRef  →  "composite/<id>/"
                                                                    │
                                           data watch on that prefix ┘

When the pointer changes the data watch is switched; a blank or missing
pointer pauses data watching. All state changes (start, stop, switch) happen
in synchronous methods on the event loop, so they never interleave.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from consul_kv import Snapshot

from ..kv.engine import LongPollConfig, LongPollEngine, SnapshotCallback
from ..kv.session import LongPollSession
from ..metrics import TOPOLOGY_PREFIX_SWITCH_TOTAL

STRUCTURE_REF_KEY_TEMPLATE = "config/{namespace}/application/composite/structureRef"


def structure_ref_key(namespace: str) -> str:
    return STRUCTURE_REF_KEY_TEMPLATE.format(namespace=namespace)


def resolve_prefix(snapshot: Snapshot, ref_key: str) -> Optional[str]:
    """Pointer value from a reference snapshot; None when absent or blank."""
    value = snapshot.get(ref_key)
    if value is None or not value.strip():
        return None
    return value.strip()


class TopologyWatchCoordinator:
    """Owns the reference watch and the data watch it points to.

    Args:
        engine: Long-poll engine running both watches
        ref_key: Pointer key (see ``structure_ref_key``)
        on_structure: Called with each data snapshot (the transform → write pipeline)
        data_config: Optional config for data watches (e.g. error backoff)
    """

    def __init__(
        self,
        engine: LongPollEngine,
        ref_key: str,
        on_structure: SnapshotCallback,
        *,
        ref_config: Optional[LongPollConfig] = None,
        data_config: Optional[LongPollConfig] = None,
    ) -> None:
        self._engine = engine
        self._ref_key = ref_key
        self._on_structure = on_structure
        self._ref_config = ref_config
        self._data_config = data_config

        self._running = False
        self._ref_watch: Optional[LongPollSession] = None
        self._data_watch: Optional[LongPollSession] = None
        self._active_prefix: Optional[str] = None

    @classmethod
    def for_namespace(
        cls, engine: LongPollEngine, namespace: str, on_structure: SnapshotCallback, **kwargs
    ) -> "TopologyWatchCoordinator":
        return cls(engine, structure_ref_key(namespace), on_structure, **kwargs)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def active_prefix(self) -> Optional[str]:
        return self._active_prefix

    @property
    def ref_key(self) -> str:
        return self._ref_key

    @property
    def data_watch(self) -> Optional[LongPollSession]:
        return self._data_watch

    def start(self) -> None:
        """Begin watching the pointer key. No-op while already running."""
        if self._running:
            logger.debug("Topology watch already started, skipping")
            return
        self._running = True
        logger.info(f"Topology watch start: structure ref key = '{self._ref_key}'")
        self._ref_watch = self._engine.watch(
            self._ref_key, self._on_reference_snapshot, kind="reference", config=self._ref_config
        )

    def stop(self) -> None:
        """Cancel both watches and forget the active prefix."""
        self._running = False
        if self._ref_watch is not None:
            self._ref_watch.cancel()
            self._ref_watch = None
        if self._data_watch is not None:
            self._data_watch.cancel()
            self._data_watch = None
        self._active_prefix = None
        logger.info("Topology watch stopped")

    def _on_reference_snapshot(self, snapshot: Snapshot) -> None:
        if not self._running:
            logger.debug("Reference snapshot received while stopped, ignoring")
            return
        prefix = resolve_prefix(snapshot, self._ref_key)
        logger.info(f"Current composite structure prefix = '{prefix}'")
        self._switch(prefix)

    def _switch(self, prefix: Optional[str]) -> None:
        if prefix == self._active_prefix:
            logger.debug(f"Composite structure prefix unchanged: '{prefix}'")
            return

        if self._data_watch is not None:
            self._data_watch.cancel()
            self._data_watch = None
        self._active_prefix = prefix

        if prefix is None:
            logger.warning("structureRef is empty, structure watching paused")
            return

        TOPOLOGY_PREFIX_SWITCH_TOTAL.inc()
        logger.info(f"Switching composite structure watch to prefix = '{prefix}'")
        self._data_watch = self._engine.watch(
            prefix, self._on_structure, kind="data", config=self._data_config
        )
