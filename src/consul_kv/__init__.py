"""
Consul KV Client Library

Thin async client for Consul blocking queries (long-poll reads of a key or prefix).

Usage:
    from consul_kv import ConsulKvClient, Snapshot

    async with ConsulKvClient("http://consul:8500", token="...") as kv:
        snap = await kv.await_changes("composite/bs/", since_index=0, wait_sec=540)
        print(snap.index, snap.get("composite/bs/structure/bs/compositeRole"))
"""

from .client import ConsulKvClient, format_wait
from .errors import (
    ConsulError,
    ConsulUnavailable,
    ConsulRequestError,
    ConsulDecodeError,
    map_http_error,
)
from .models import Snapshot

__version__ = "1.0.0"
__all__ = [
    "ConsulKvClient",
    "format_wait",
    "Snapshot",
    "ConsulError",
    "ConsulUnavailable",
    "ConsulRequestError",
    "ConsulDecodeError",
    "map_http_error",
]
