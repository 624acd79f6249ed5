"""Resumable, step-based reconciliation of composite resources."""

from .collaborators import (
    DisabledResourceUpdater,
    DownstreamNotifier,
    InMemoryStatusWriter,
    ResourceUpdater,
    StatusWriter,
)
from .machine import (
    STRUCTURE_UPDATED_STEP,
    VALIDATED_STEP,
    PassResult,
    ReconciliationStepMachine,
    notifier_step_name,
)
from .resource import Condition, ConditionStatus, Phase, ReconciliationResource, ResourceStatus
from .scheduler import ReconcileScheduler
from .spec import CompositeSpec, CompositeSpecBaseline
from .state import CurrentResourceAccessor, ObservedResource

__all__ = [
    "DisabledResourceUpdater",
    "DownstreamNotifier",
    "InMemoryStatusWriter",
    "ResourceUpdater",
    "StatusWriter",
    "STRUCTURE_UPDATED_STEP",
    "VALIDATED_STEP",
    "PassResult",
    "ReconciliationStepMachine",
    "notifier_step_name",
    "Condition",
    "ConditionStatus",
    "Phase",
    "ReconciliationResource",
    "ResourceStatus",
    "ReconcileScheduler",
    "CompositeSpec",
    "CompositeSpecBaseline",
    "CurrentResourceAccessor",
    "ObservedResource",
]
