"""Composite Structure Sync

Keeps a derived view of a composite topology (a blue-green baseline and its
satellites) synchronized from Consul KV into a destination artifact, and
reconciles declared composite resources through resumable steps.

Components:
- kv: BackoffPolicy, LongPollSession, LongPollEngine
- topology: StructureTransformer, TopologyWatchCoordinator, RetryingWriter
- reconcile: ReconciliationStepMachine, ReconcileScheduler
"""

from .errors import (
    CompositeSyncError,
    IntegrationDisabledError,
    InvalidBoundsError,
    SpecValidationError,
    StructureParseError,
    WriteFailedError,
)

__version__ = "1.0.0"
__all__ = [
    "CompositeSyncError",
    "IntegrationDisabledError",
    "InvalidBoundsError",
    "SpecValidationError",
    "StructureParseError",
    "WriteFailedError",
]
