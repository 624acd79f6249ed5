"""Composite topology: transformer, watch coordinator and destination writer."""

from .coordinator import TopologyWatchCoordinator, resolve_prefix, structure_ref_key
from .handler import StructureSnapshotHandler
from .models import CompositeStructure, CompositeStructurePayload, NamespaceRoles
from .supervisor import ManagementSupervisor
from .transformer import BlueGreenRole, CompositeRole, StructureTransformer
from .writer import (
    MAX_RETRY_ATTEMPTS,
    LocalFileWriteClient,
    ResourceWriteClient,
    RetryingWriter,
)

__all__ = [
    "TopologyWatchCoordinator",
    "resolve_prefix",
    "structure_ref_key",
    "StructureSnapshotHandler",
    "CompositeStructure",
    "CompositeStructurePayload",
    "NamespaceRoles",
    "ManagementSupervisor",
    "BlueGreenRole",
    "CompositeRole",
    "StructureTransformer",
    "MAX_RETRY_ATTEMPTS",
    "LocalFileWriteClient",
    "ResourceWriteClient",
    "RetryingWriter",
]
