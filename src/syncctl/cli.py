from __future__ import annotations

import asyncio
import base64
import json
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from loguru import logger
from prometheus_client import start_http_server

from consul_kv import ConsulError, ConsulKvClient
from composite_sync.errors import StructureParseError
from composite_sync.kv import BackoffPolicy, LongPollConfig, LongPollEngine
from composite_sync.reconcile import CompositeSpec
from composite_sync.topology import (
    LocalFileWriteClient,
    ManagementSupervisor,
    RetryingWriter,
    StructureSnapshotHandler,
    StructureTransformer,
    TopologyWatchCoordinator,
)
from composite_sync.topology.transformer import (
    DEFAULT_CLOUD_OIDC_PROXY_URL,
    DEFAULT_CLOUD_PROVIDER,
)
from syncctl.config import Settings, get_settings

app = typer.Typer(help="Composite structure sync CLI (watch, transform, validate)")


def _stderr_sink(message) -> None:
    sys.stderr.write(message)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logger.remove()
    logger.add(_stderr_sink, level="DEBUG" if verbose else "INFO")


# ---------------------------
# Helpers
# ---------------------------


def load_kv_export(path: Path) -> dict[str, Optional[str]]:
    """Read KV entries from ``consul kv export`` output or a plain JSON object.

    Export format: ``[{"key": ..., "flags": 0, "value": <base64>}, ...]``.
    """
    raw: Any = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        return {str(k): (None if v is None else str(v)) for k, v in raw.items()}
    if isinstance(raw, list):
        entries: dict[str, Optional[str]] = {}
        for item in raw:
            if not isinstance(item, dict) or "key" not in item:
                raise ValueError(f"not a KV export entry: {item!r}")
            value = item.get("value")
            entries[item["key"]] = base64.b64decode(value).decode("utf-8") if value else None
        return entries
    raise ValueError(f"expected a JSON object or list, got {type(raw).__name__}")


def _fail(message: str) -> None:
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def marker_check(path: Path):
    """Management check: this process owns the destination while ``path`` exists."""

    async def check() -> bool:
        return await asyncio.to_thread(path.exists)

    return check


# ---------------------------
# Commands
# ---------------------------


@app.command("transform")
def transform(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="KV export JSON file"),
    cloud_provider: str = typer.Option(DEFAULT_CLOUD_PROVIDER, "--cloud-provider"),
    cloud_oidc_proxy_url: str = typer.Option(DEFAULT_CLOUD_OIDC_PROXY_URL, "--cloud-oidc-proxy-url"),
):
    """Print the composite structure payload derived from a KV export."""
    try:
        entries = load_kv_export(file)
    except ValueError as e:
        _fail(f"Cannot read KV export {file}: {e}")

    transformer = StructureTransformer(cloud_provider, cloud_oidc_proxy_url)
    try:
        payload = transformer.to_payload(entries)
    except StructureParseError as e:
        _fail(f"Cannot parse composite structure: {e}")
    typer.echo(payload.to_json())


@app.command("validate-spec")
def validate_spec(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="CompositeSpec JSON file"),
):
    """Validate a CompositeSpec document and print its composite id."""
    try:
        raw = json.loads(file.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError("CompositeSpec must be a JSON object")
        spec = CompositeSpec.from_mapping(raw)
        spec.ensure_valid()
        composite_id = spec.composite_id
    except ValueError as e:
        _fail(f"Invalid composite spec: {e}")
    typer.echo(composite_id)


@app.command("kv-snapshot")
def kv_snapshot(path: str = typer.Argument(..., help="KV key or prefix")):
    """Read ``path`` from Consul once and print it as JSON."""
    settings = get_settings()

    async def _read():
        async with ConsulKvClient(settings.CONSUL_URL, settings.CONSUL_TOKEN) as kv:
            return await kv.read(path)

    try:
        snapshot = asyncio.run(_read())
    except ConsulError as e:
        _fail(f"Consul read failed: {e}")
    typer.echo(json.dumps({"index": snapshot.index, "entries": json.loads(snapshot.to_json())}, indent=2))


@app.command("watch")
def watch(
    output_dir: Path = typer.Option(Path("./out"), "--output-dir", help="Destination root for written artifacts"),
    namespace: Optional[str] = typer.Option(None, "--namespace", help="Overrides NAMESPACE"),
    managed_marker: Optional[Path] = typer.Option(
        None, "--managed-marker", help="Only watch while this file exists (checked periodically)"
    ),
):
    """Watch the structure pointer and keep the destination artifact in sync."""
    settings = get_settings()
    ns = namespace or settings.NAMESPACE
    if not ns:
        _fail("NAMESPACE is not set (use --namespace or the NAMESPACE env var)")

    if settings.metrics_enabled:
        start_http_server(settings.METRICS_PORT)
        logger.info(f"Prometheus metrics on :{settings.METRICS_PORT}")

    try:
        asyncio.run(_watch(settings, ns, output_dir, managed_marker))
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")


async def _watch(
    settings: Settings, namespace: str, output_dir: Path, managed_marker: Optional[Path] = None
) -> None:
    async with ConsulKvClient(settings.CONSUL_URL, settings.CONSUL_TOKEN) as kv:
        engine = LongPollEngine(
            kv,
            LongPollConfig(
                wait_sec=settings.LONG_POLL_WAIT_SEC,
                retry_delay_ms=settings.LONG_POLL_RETRY_MS,
            ),
        )
        data_config = LongPollConfig(
            wait_sec=settings.LONG_POLL_WAIT_SEC,
            retry_delay_ms=settings.LONG_POLL_RETRY_MS,
            backoff=BackoffPolicy(
                min_ms=settings.LONG_POLL_BACKOFF_MIN_MS,
                max_ms=settings.LONG_POLL_BACKOFF_MAX_MS,
            ),
        )
        writer = RetryingWriter(
            LocalFileWriteClient(output_dir),
            namespace,
            max_attempts=settings.WRITER_MAX_ATTEMPTS,
            initial_delay_ms=settings.WRITER_INITIAL_DELAY_MS,
            max_delay_ms=settings.WRITER_MAX_DELAY_MS,
        )
        handler = StructureSnapshotHandler(
            StructureTransformer(settings.CLOUD_PROVIDER, settings.CLOUD_OIDC_PROXY_URL),
            writer,
            target_name=settings.TARGET_NAME,
            data_key=settings.TARGET_DATA_KEY,
        )
        coordinator = TopologyWatchCoordinator.for_namespace(
            engine, namespace, handler, data_config=data_config
        )

        supervisor = None
        if managed_marker is not None:
            supervisor = ManagementSupervisor(
                coordinator,
                marker_check(managed_marker),
                interval_sec=settings.MANAGEMENT_CHECK_INTERVAL_SEC,
            )
            supervisor.start()
        else:
            coordinator.start()
        try:
            await asyncio.Event().wait()
        finally:
            if supervisor is not None:
                await supervisor.stop()
            coordinator.stop()
            engine.close()
            await writer.stop()


if __name__ == "__main__":
    app()
