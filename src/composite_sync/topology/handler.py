"""
Data-snapshot handler: transform the structure and hand it to the writer.

The writer schedules its own attempts, so ``handle`` returns as soon as the
payload is queued and the poll loop is never held up by the destination.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from consul_kv import Snapshot

from ..errors import StructureParseError
from .models import CompositeStructurePayload
from .transformer import StructureTransformer
from .writer import RetryingWriter

DEFAULT_TARGET_NAME = "composite-structure"
DEFAULT_DATA_KEY = "data"


class StructureSnapshotHandler:
    """Callable used as the coordinator's ``on_structure`` callback."""

    def __init__(
        self,
        transformer: StructureTransformer,
        writer: RetryingWriter,
        *,
        target_name: str = DEFAULT_TARGET_NAME,
        data_key: str = DEFAULT_DATA_KEY,
    ) -> None:
        self._transformer = transformer
        self._writer = writer
        self.target_name = target_name
        self.data_key = data_key
        self.last_payload: Optional[CompositeStructurePayload] = None

    def __call__(self, snapshot: Snapshot) -> None:
        self.handle(snapshot)

    def handle(self, snapshot: Snapshot) -> None:
        try:
            payload = self._transformer.to_payload(snapshot)
        except StructureParseError as e:
            # leave the destination as is until the KV data is fixed
            logger.error(f"Cannot parse composite structure at index {snapshot.index}: {e}")
            return

        self.last_payload = payload
        logger.info(
            f"Store composite structure to '{self.target_name}' "
            f"(index={snapshot.index}, namespaces={len(payload.composite.namespaces())})"
        )
        self._writer.request_update(self.target_name, {self.data_key: payload.to_json()})
