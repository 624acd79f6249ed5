"""
Exponential backoff with jitter.

Shared by the long-poll sub-watches, the destination writer and the
reconcile scheduler.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from ..errors import InvalidBoundsError

JITTER = 0.15


def next_backoff_ms(current_ms: int, min_ms: int, max_ms: int, *, jitter: bool = True) -> int:
    """Next retry delay in milliseconds.

    ``current_ms == 0`` starts at ``min_ms``; otherwise the delay doubles,
    capped at ``max_ms``. The result gets ±15% uniform jitter and is floored
    at 1 ms.

    Raises:
        InvalidBoundsError: if a bound is negative or ``min_ms > max_ms``
    """
    if min_ms < 0 or max_ms < 0 or min_ms > max_ms:
        raise InvalidBoundsError(f"Invalid backoff bounds: min={min_ms}ms max={max_ms}ms")

    base = min_ms if current_ms <= 0 else min(current_ms * 2, max_ms)

    if jitter:
        base = base * (1.0 + random.uniform(-JITTER, JITTER))

    return max(1, round(base))


@dataclass(frozen=True)
class BackoffPolicy:
    """Bounds for ``next_backoff_ms``; stateless and safe to share."""

    min_ms: int = 1_000
    max_ms: int = 30_000
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.min_ms < 0 or self.max_ms < 0 or self.min_ms > self.max_ms:
            raise InvalidBoundsError(
                f"Invalid backoff bounds: min={self.min_ms}ms max={self.max_ms}ms"
            )

    def next(self, current_ms: int) -> int:
        return next_backoff_ms(current_ms, self.min_ms, self.max_ms, jitter=self.jitter)
