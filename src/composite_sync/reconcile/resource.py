"""
Reconciliation resource: the externally owned record a pass reads and updates.

Step progress is kept in ``status.conditions`` keyed by step name so a pass
interrupted at any point resumes at the first step not yet completed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Phase(str, Enum):
    PENDING = "Pending"
    INVALID_CONFIGURATION = "InvalidConfiguration"
    BACKING_OFF = "BackingOff"
    UPDATED = "Updated"


class ConditionStatus(str, Enum):
    COMPLETED = "Completed"
    FAILED = "Failed"


class Condition(BaseModel):
    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""


class ResourceStatus(BaseModel):
    phase: Phase = Phase.PENDING
    conditions: Dict[str, Condition] = Field(default_factory=dict)
    observed_generation: int = 0


class ReconciliationResource(BaseModel):
    name: str
    namespace: str
    generation: int = 1
    spec: Dict[str, Any] = Field(default_factory=dict)
    status: ResourceStatus = Field(default_factory=ResourceStatus)

    @property
    def identity(self) -> str:
        return f"{self.namespace}/{self.name}"

    def condition(self, step: str) -> Optional[Condition]:
        return self.status.conditions.get(step)

    def is_completed(self, step: str) -> bool:
        cond = self.status.conditions.get(step)
        return cond is not None and cond.status is ConditionStatus.COMPLETED

    def set_condition(
        self, step: str, status: ConditionStatus, reason: str = "", message: str = ""
    ) -> None:
        self.status.conditions[step] = Condition(
            type=step, status=status, reason=reason, message=message
        )
