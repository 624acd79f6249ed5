"""
Custom exceptions for the Consul KV client.

Separates retryable transport failures from request/decoding problems so the
poll loop can log them meaningfully. The poll loop retries all of them.
"""

import httpx


class ConsulError(Exception):
    """Base error for Consul KV operations."""

    pass


class ConsulUnavailable(ConsulError):
    """Consul unreachable, timed out or answered 5xx; retry with delay."""

    pass


class ConsulRequestError(ConsulError):
    """Non-2xx answer other than 404/5xx (bad token, bad path, ...)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConsulDecodeError(ConsulError):
    """Response body could not be decoded into KV entries."""

    pass


def map_http_error(e: Exception) -> ConsulError:
    if isinstance(e, ConsulError):
        return e
    if isinstance(e, (httpx.TransportError, httpx.TimeoutException)):
        return ConsulUnavailable(f"{type(e).__name__}: {e}")
    if isinstance(e, httpx.HTTPStatusError):
        code = e.response.status_code
        if code >= 500:
            return ConsulUnavailable(f"Consul answered {code}")
        return ConsulRequestError(f"Consul answered {code}", status_code=code)
    if isinstance(e, (ValueError, KeyError, TypeError)):
        return ConsulDecodeError(str(e))
    return ConsulError(str(e))
