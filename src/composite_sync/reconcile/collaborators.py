"""
Interfaces consumed by the step machine, plus small stock implementations.
"""

from __future__ import annotations

from typing import Dict, Protocol, Set

from loguru import logger

from ..errors import IntegrationDisabledError
from .resource import ReconciliationResource
from .spec import CompositeSpec


class ResourceUpdater(Protocol):
    """Registers composite specs in the KV store and answers membership queries.

    Raises ``IntegrationDisabledError`` when the KV integration is off.
    """

    async def register_or_update(self, spec: CompositeSpec) -> None:
        ...

    async def members_of(self, composite_id: str) -> Set[str]:
        ...


class DownstreamNotifier(Protocol):
    """One downstream integration told about composite membership."""

    @property
    def name(self) -> str:
        ...

    async def notify(self, composite_id: str, member_namespaces: Set[str]) -> None:
        ...


class StatusWriter(Protocol):
    """Persists ``resource.status`` (e.g. the status subresource)."""

    async def update_status(self, resource: ReconciliationResource) -> None:
        ...


class DisabledResourceUpdater:
    """Updater used when the KV integration is switched off."""

    async def register_or_update(self, spec: CompositeSpec) -> None:
        raise IntegrationDisabledError()

    async def members_of(self, composite_id: str) -> Set[str]:
        raise IntegrationDisabledError()


class InMemoryStatusWriter:
    """Keeps deep copies of the last written status per resource identity."""

    def __init__(self) -> None:
        self.statuses: Dict[str, ReconciliationResource] = {}
        self.writes = 0

    async def update_status(self, resource: ReconciliationResource) -> None:
        self.writes += 1
        self.statuses[resource.identity] = resource.model_copy(deep=True)
        logger.debug(f"Status stored for {resource.identity}: phase={resource.status.phase.value}")
