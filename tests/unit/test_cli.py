"""
Unit tests for the syncctl CLI (typer CliRunner, no network).
"""

import base64
import json

import pytest
from typer.testing import CliRunner

from consul_kv import ConsulUnavailable, Snapshot
from syncctl import cli
from syncctl.config import get_settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    for var in ("NAMESPACE", "CONSUL_URL", "CONSUL_TOKEN", "METRICS_PORT"):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def write_json(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(json.dumps(data))
    return path


def test_transform_plain_object(tmp_path):
    """A {key: value} file is transformed into the payload JSON."""
    path = write_json(tmp_path, "kv.json", {"composite/bs/structure/bs/compositeRole": "baseline"})
    result = runner.invoke(cli.app, ["transform", str(path)])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout.strip().splitlines()[-1]) == {
        "cloudProvider": "OnPrem",
        "cloudOIDCProxyUrl": "http://super-proxy.namespace:8080",
        "composite": {"baseline": {"origin": "bs"}},
    }


def test_transform_consul_export(tmp_path):
    """A `consul kv export` list with base64 values is accepted."""
    export = [
        {"key": "composite/bs/", "flags": 0, "value": ""},
        {
            "key": "composite/bs/structure/bs/compositeRole",
            "flags": 0,
            "value": base64.b64encode(b"baseline").decode(),
        },
        {
            "key": "composite/bs/structure/st-1/compositeRole",
            "flags": 0,
            "value": base64.b64encode(b"satellite").decode(),
        },
    ]
    path = write_json(tmp_path, "export.json", export)
    result = runner.invoke(cli.app, ["transform", str(path), "--cloud-provider", "AWS"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout.strip().splitlines()[-1])
    assert payload["cloudProvider"] == "AWS"
    assert payload["composite"] == {"baseline": {"origin": "bs"}, "satellites": [{"origin": "st-1"}]}


def test_transform_parse_error_exits_1(tmp_path):
    """An unknown role value fails the command."""
    path = write_json(tmp_path, "kv.json", {"composite/bs/structure/bs/compositeRole": "moon"})
    result = runner.invoke(cli.app, ["transform", str(path)])
    assert result.exit_code == 1


def test_transform_rejects_non_kv_json(tmp_path):
    """A JSON scalar is not a KV export."""
    path = write_json(tmp_path, "kv.json", 42)
    result = runner.invoke(cli.app, ["transform", str(path)])
    assert result.exit_code == 1


def test_validate_spec_prints_composite_id(tmp_path):
    """A valid satellite spec prints its baseline origin."""
    path = write_json(
        tmp_path,
        "spec.json",
        {"originNamespace": "st-1", "baseline": {"originNamespace": "bs"}},
    )
    result = runner.invoke(cli.app, ["validate-spec", str(path)])
    assert result.exit_code == 0, result.output
    assert result.stdout.strip().splitlines()[-1] == "bs"


def test_validate_spec_failure_exits_1(tmp_path):
    """An incomplete blue-green domain is rejected."""
    path = write_json(tmp_path, "spec.json", {"originNamespace": "o", "controllerNamespace": "c"})
    result = runner.invoke(cli.app, ["validate-spec", str(path)])
    assert result.exit_code == 1


def test_kv_snapshot_prints_entries(monkeypatch):
    """kv-snapshot reads once and prints index and entries."""
    seen = {}

    class FakeClient:
        def __init__(self, base_url, token=None):
            seen["base_url"] = base_url

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return None

        async def read(self, path):
            seen["path"] = path
            return Snapshot({f"{path}a": "1"}, 12)

    monkeypatch.setattr(cli, "ConsulKvClient", FakeClient)
    monkeypatch.setenv("CONSUL_URL", "http://consul.test:8500")
    result = runner.invoke(cli.app, ["kv-snapshot", "composite/bs/"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {"index": 12, "entries": {"composite/bs/a": "1"}}
    assert seen == {"base_url": "http://consul.test:8500", "path": "composite/bs/"}


def test_kv_snapshot_consul_error_exits_1(monkeypatch):
    """Consul failures are reported with exit code 1."""

    class DownClient:
        def __init__(self, base_url, token=None):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return None

        async def read(self, path):
            raise ConsulUnavailable("connection refused")

    monkeypatch.setattr(cli, "ConsulKvClient", DownClient)
    result = runner.invoke(cli.app, ["kv-snapshot", "composite/bs/"])
    assert result.exit_code == 1


def test_watch_requires_namespace(tmp_path, monkeypatch):
    """watch refuses to start without a namespace."""
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(cli.app, ["watch", "--output-dir", str(tmp_path / "out")])
    assert result.exit_code == 1


@pytest.mark.asyncio
async def test_marker_check_follows_file_presence(tmp_path):
    """The management check is true exactly while the marker file exists."""
    marker = tmp_path / "managed"
    check = cli.marker_check(marker)
    assert await check() is False

    marker.write_text("")
    assert await check() is True


def test_management_interval_is_read_from_env(monkeypatch):
    """MANAGEMENT_CHECK_INTERVAL_SEC comes from the environment."""
    monkeypatch.setenv("MANAGEMENT_CHECK_INTERVAL_SEC", "12.5")
    get_settings.cache_clear()
    assert get_settings().MANAGEMENT_CHECK_INTERVAL_SEC == 12.5
