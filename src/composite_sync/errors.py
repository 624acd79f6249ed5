"""
Exception hierarchy for composite structure synchronization.

Permanent configuration problems (bad spec, bad structure data) are kept apart
from the deliberate "integration disabled" signal so callers can classify them.
"""


class CompositeSyncError(Exception):
    """Base error for composite_sync."""

    pass


class InvalidBoundsError(CompositeSyncError, ValueError):
    """Backoff bounds are negative or min > max."""

    pass


class StructureParseError(CompositeSyncError):
    """A structure attribute carries a value outside its enumeration."""

    def __init__(self, field: str, value: str):
        super().__init__(f"Invalid {field}: {value!r}")
        self.field = field
        self.value = value


class SpecValidationError(CompositeSyncError, ValueError):
    """Declared CompositeSpec violates its invariants."""

    pass


class IntegrationDisabledError(CompositeSyncError):
    """KV integration is turned off; nothing more can be done for the resource."""

    def __init__(self, message: str = "KV integration is disabled"):
        super().__init__(message)


class WriteFailedError(CompositeSyncError):
    """Destination write gave up after exhausting its attempts."""

    def __init__(self, target_id: str, attempts: int, cause: BaseException):
        super().__init__(f"Write to '{target_id}' failed after {attempts} attempts: {cause}")
        self.target_id = target_id
        self.attempts = attempts
        self.cause = cause
