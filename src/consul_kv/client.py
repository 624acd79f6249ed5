from __future__ import annotations

import base64
import math
from typing import Any, Optional, TypedDict

import httpx
from loguru import logger

from .errors import ConsulDecodeError, map_http_error
from .models import Snapshot


class ConsulKvConfig(TypedDict, total=False):
    base_url: str
    token: str
    connect_timeout_sec: float
    read_margin_sec: float


DEFAULTS: ConsulKvConfig = {
    "base_url": "http://localhost:8500",
    "connect_timeout_sec": 10.0,
    # Consul adds up to wait/16 of jitter to blocking queries
    "read_margin_sec": 60.0,
}


def format_wait(wait_sec: float) -> str:
    """Render a blocking-query wait as whole seconds, rounded up, at least 1s."""
    seconds = max(1, math.ceil(wait_sec))
    return f"{seconds}s"


def _decode_value(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    return base64.b64decode(raw).decode("utf-8")


def parse_kv_response(body: Any) -> dict[str, Optional[str]]:
    """Decode a /v1/kv JSON body (list of {Key, Value(base64), ...})."""
    if not isinstance(body, list):
        raise ConsulDecodeError(f"expected a JSON list, got {type(body).__name__}")
    out: dict[str, Optional[str]] = {}
    for item in body:
        try:
            out[item["Key"]] = _decode_value(item.get("Value"))
        except (KeyError, TypeError, ValueError) as e:
            raise ConsulDecodeError(f"malformed KV entry: {e}") from e
    return out


def _response_index(response: httpx.Response, body: Any) -> int:
    header = response.headers.get("X-Consul-Index")
    if header:
        try:
            return max(0, int(header))
        except ValueError:
            pass
    if isinstance(body, list):
        indexes = [int(item.get("ModifyIndex", 0)) for item in body if isinstance(item, dict)]
        if indexes:
            return max(indexes)
    return 0


class ConsulKvClient:
    """Async Consul KV reader with blocking-query semantics.

    Each call to ``await_changes`` may be held open by Consul for up to
    ``wait_sec`` and returns early when the data under ``path`` changes.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        cfg: ConsulKvConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.cfg: ConsulKvConfig = {**DEFAULTS, **(cfg or {})}
        if base_url:
            self.cfg["base_url"] = base_url
        if token:
            self.cfg["token"] = token

        headers = {}
        if self.cfg.get("token"):
            headers["X-Consul-Token"] = self.cfg["token"]

        self._http = httpx.AsyncClient(
            base_url=self.cfg["base_url"].rstrip("/"),
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ConsulKvClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    # ---------- reads ----------

    async def await_changes(self, path: str, since_index: int, wait_sec: float) -> Snapshot:
        """Blocking query on ``path`` (recursive); returns the current snapshot.

        Raises:
            ConsulError subclasses (see ``map_http_error``)
        """
        params = {"recurse": "true", "index": str(since_index), "wait": format_wait(wait_sec)}
        timeout = httpx.Timeout(
            self.cfg["connect_timeout_sec"],
            read=wait_sec + self.cfg["read_margin_sec"],
        )
        logger.debug(f"Await values from consul: path='{path}' index={since_index} wait={wait_sec}s")
        try:
            response = await self._http.get(f"/v1/kv/{path}", params=params, timeout=timeout)
            if response.status_code == 404:
                return Snapshot.empty(_response_index(response, None))
            response.raise_for_status()
            body = response.json()
            entries = parse_kv_response(body)
            index = _response_index(response, body)
        except Exception as e:
            raise map_http_error(e) from e

        return Snapshot(entries, index)

    async def read(self, path: str) -> Snapshot:
        """Non-blocking read of ``path`` (index 0 returns immediately)."""
        return await self.await_changes(path, since_index=0, wait_sec=1)
