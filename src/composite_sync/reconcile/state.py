"""
Explicit accessor for the most recently reconciled resource.

Injected into whoever needs it instead of a process-wide holder. Readers get
the observation time along with the resource so they can judge staleness:
the value is as fresh as the last finished reconciliation pass.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from .resource import ReconciliationResource


@dataclass(frozen=True)
class ObservedResource:
    resource: ReconciliationResource
    observed_at: float  # time.monotonic()

    @property
    def age_sec(self) -> float:
        return time.monotonic() - self.observed_at


class CurrentResourceAccessor:
    def __init__(self) -> None:
        self._current: Optional[ObservedResource] = None

    def publish(self, resource: ReconciliationResource) -> None:
        self._current = ObservedResource(resource.model_copy(deep=True), time.monotonic())

    def get(self) -> Optional[ObservedResource]:
        return self._current

    def clear(self) -> None:
        self._current = None
