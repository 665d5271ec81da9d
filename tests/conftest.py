"""Pytest configuration and fixtures for confsync.

FakeConfigServer is an in-memory stand-in for the configuration server that
speaks the same paths and wire formats as the real one. Long polls answer
immediately, so a poll cycle can be driven step by step with run_cycle().
"""

import asyncio
from pathlib import Path
from typing import Callable
from urllib.parse import quote

import pytest

from confsync.common.config import ClientConfig
from confsync.common.content import fingerprint
from confsync.common.exceptions import NetworkFailure
from confsync.common.models import DEFAULT_GROUP
from confsync.services.config.service import ConfigService
from confsync.services.transport.base import LISTENER_PATH, HttpResult

SERVER_NAME = "fixed-127.0.0.1_8848"


class FakeConfigServer:
    """In-memory configuration server implementing the Transport port."""

    def __init__(self, name: str = SERVER_NAME):
        self._name = name
        self.configs: dict[tuple[str, str, str], str] = {}
        self.requests: list[tuple[str, str, dict, dict]] = []
        # Raise NetworkFailure for every request while True
        self.down = False
        # (method, path) -> status code answered instead of the normal one
        self.forced: dict[tuple[str, str], int] = {}
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    def put(self, data_id: str, content: str, group: str = DEFAULT_GROUP, tenant: str = "") -> None:
        self.configs[(data_id, group, tenant)] = content

    def drop(self, data_id: str, group: str = DEFAULT_GROUP, tenant: str = "") -> None:
        self.configs.pop((data_id, group, tenant), None)

    def requests_to(self, method: str, path: str) -> list[tuple[str, str, dict, dict]]:
        return [r for r in self.requests if r[0] == method and r[1] == path]

    async def get(self, path, headers=None, params=None, encoding="utf-8", timeout=3.0) -> HttpResult:
        return self._handle("GET", path, headers, params)

    async def post(self, path, headers=None, params=None, encoding="utf-8", timeout=3.0) -> HttpResult:
        return self._handle("POST", path, headers, params)

    async def delete(self, path, headers=None, params=None, encoding="utf-8", timeout=3.0) -> HttpResult:
        return self._handle("DELETE", path, headers, params)

    async def close(self) -> None:
        self.closed = True

    def _handle(self, method: str, path: str, headers: dict | None, params: dict | None) -> HttpResult:
        params = dict(params or {})
        self.requests.append((method, path, dict(headers or {}), params))

        if self.down:
            raise NetworkFailure("connection refused", server=self._name)

        forced = self.forced.get((method, path))
        if forced is not None:
            return HttpResult(code=forced, content=f"forced {forced}")

        if path == LISTENER_PATH:
            return HttpResult(code=200, content=self._changed(params.get("Listening-Configs", "")))

        key = (params.get("dataId"), params.get("group"), params.get("tenant", ""))
        if method == "GET":
            if key in self.configs:
                return HttpResult(code=200, content=self.configs[key])
            return HttpResult(code=404, content="config data not exist")
        if method == "POST":
            self.configs[key] = params["content"]
            return HttpResult(code=200, content="true")
        if method == "DELETE":
            self.configs.pop(key, None)
            return HttpResult(code=200, content="true")

        return HttpResult(code=400, content="bad request")

    def _changed(self, probe: str) -> str:
        lines = []
        for line in probe.split("\x01"):
            if not line:
                continue
            fields = line.split("\x02")
            data_id, group, md5 = fields[0], fields[1], fields[2]
            tenant = fields[3] if len(fields) > 3 else ""
            current = fingerprint(self.configs.get((data_id, group, tenant)))
            if current != md5:
                parts = [data_id, group] + ([tenant] if tenant else [])
                lines.append("\x02".join(parts) + "\x01")
        return quote("".join(lines))


def make_config(cache_dir: Path, **overrides) -> ClientConfig:
    options = dict(
        server_addr="127.0.0.1:8848",
        cache_dir=cache_dir,
        min_cycle_interval_s=0.01,
        retry_base_s=0.01,
        retry_max_s=0.05,
        poll_fetch_timeout_ms=1000,
    )
    options.update(overrides)
    return ClientConfig(**options)


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Wait until predicate() is true or fail"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class Recorder:
    """Sync listener callback that records every content it is given"""

    def __init__(self):
        self.received: list[str] = []

    def __call__(self, content: str) -> None:
        self.received.append(content)


@pytest.fixture
def server() -> FakeConfigServer:
    return FakeConfigServer()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def config(cache_dir: Path) -> ClientConfig:
    return make_config(cache_dir)


@pytest.fixture
async def service(config: ClientConfig, server: FakeConfigServer, monkeypatch: pytest.MonkeyPatch):
    """ConfigService whose poll loop does not run; tests drive run_cycle() themselves."""
    svc = ConfigService(config, transport=server)

    async def no_loop() -> None:
        return None

    monkeypatch.setattr(svc.sync, "start", no_loop)
    yield svc
    await svc.shutdown()


@pytest.fixture
async def live_service(config: ClientConfig, server: FakeConfigServer):
    """ConfigService with its poll loop running."""
    svc = ConfigService(config, transport=server)
    yield svc
    await svc.shutdown()


@pytest.fixture
def failover_root(cache_dir: Path) -> Path:
    return cache_dir / f"{SERVER_NAME}_nacos" / "data" / "config-data"


@pytest.fixture
def snapshot_root(cache_dir: Path) -> Path:
    return cache_dir / f"{SERVER_NAME}_nacos" / "snapshot"
