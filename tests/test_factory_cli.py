"""Tests for the service factory and the command-line interface."""

import json
import logging
from pathlib import Path

import pytest

from conftest import FakeConfigServer
from confsync import cli
from confsync.common.config import ClientConfig
from confsync.common.exceptions import ConfigError
from confsync.common.logging_setup import JsonFormatter
from confsync.factory import ConfigServiceAPI, create_config_service
from confsync.services.config.filters import ConfigFilter
from confsync.services.config.service import ConfigService


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, cache_dir: Path):
    for name in (
        "CONFSYNC_SERVER_ADDR",
        "CONFSYNC_NAMESPACE",
        "CONFSYNC_USERNAME",
        "CONFSYNC_PASSWORD",
        "CONFSYNC_LOG_LEVEL",
        "CONFSYNC_LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CONFSYNC_CACHE_DIR", str(cache_dir))
    yield
    root = logging.getLogger("confsync")
    root.handlers.clear()
    root.propagate = True
    root.setLevel(logging.NOTSET)


class TestFactory:
    def test_from_client_config(self, cache_dir: Path) -> None:
        config = ClientConfig(server_addr="127.0.0.1:8848", cache_dir=cache_dir)
        service = create_config_service(config, transport=FakeConfigServer())
        assert service.config is config
        assert isinstance(service, ConfigServiceAPI)

    def test_from_mapping_with_aliases(self, cache_dir: Path) -> None:
        service = create_config_service(
            {"serverAddr": "127.0.0.1:8848", "namespace": "dev", "cache_dir": str(cache_dir)},
            transport=FakeConfigServer(),
        )
        assert service.namespace == "dev"
        assert service.config.cache_dir == cache_dir

    def test_from_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "client.yaml"
        path.write_text("confsync:\n  serverAddr: 10.0.0.1:8848\n  namespace: prod\n", encoding="utf-8")

        service = create_config_service(path, transport=FakeConfigServer())
        assert service.config.server_addr == "10.0.0.1:8848"
        assert service.namespace == "prod"

    def test_filters_passed_through(self, cache_dir: Path) -> None:
        service = create_config_service(
            ClientConfig(server_addr="127.0.0.1", cache_dir=cache_dir),
            transport=FakeConfigServer(),
            filters=[ConfigFilter()],
        )
        assert len(service.filters) == 1

    def test_missing_server_addr(self) -> None:
        with pytest.raises(ConfigError):
            create_config_service({"namespace": "dev"})


@pytest.fixture
def cli_server(monkeypatch: pytest.MonkeyPatch) -> FakeConfigServer:
    """Route every CLI-built service to an in-memory server"""
    server = FakeConfigServer()
    built: list[ClientConfig] = []

    def build(config: ClientConfig) -> ConfigService:
        built.append(config)
        return ConfigService(config, transport=server)

    monkeypatch.setattr(cli, "ConfigService", build)
    server.built = built
    return server


def last_json(capsys: pytest.CaptureFixture) -> dict:
    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    return json.loads(lines[-1])


class TestParser:
    def test_data_id_required(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["get", "--server-addr", "a:1"])

    def test_publish_needs_one_source(self) -> None:
        parser = cli.build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["publish", "--data-id", "app"])
        with pytest.raises(SystemExit):
            parser.parse_args(["publish", "--data-id", "app", "--content", "a", "--file", "f"])

    def test_defaults(self) -> None:
        args = cli.build_parser().parse_args(["get", "--data-id", "app"])
        assert args.group is None
        assert args.timeout == 3.0
        assert args.log_level is None

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture) -> None:
        assert cli.main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()


class TestCommands:
    def test_get(self, cli_server: FakeConfigServer, capsys: pytest.CaptureFixture) -> None:
        cli_server.put("app", "a=1")

        code = cli.main(["get", "--server-addr", "127.0.0.1:8848", "--data-id", "app"])

        result = last_json(capsys)
        assert code == 0
        assert result["content"] == "a=1"
        assert result["server_status"] == "UP"

    def test_publish_content(self, cli_server: FakeConfigServer, capsys: pytest.CaptureFixture) -> None:
        code = cli.main(
            ["publish", "--server-addr", "127.0.0.1:8848", "--data-id", "app", "--content", "a=2", "--type", "properties"]
        )

        assert code == 0
        assert last_json(capsys)["success"] is True
        assert cli_server.configs[("app", "DEFAULT_GROUP", "")] == "a=2"
        assert cli_server.requests[-1][3]["type"] == "properties"

    def test_publish_file(self, cli_server: FakeConfigServer, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        source = tmp_path / "app.yaml"
        source.write_text("a: 1\n", encoding="utf-8")

        code = cli.main(
            ["publish", "--server-addr", "127.0.0.1:8848", "--data-id", "app.yaml", "--group", "G", "--file", str(source)]
        )

        assert code == 0
        assert cli_server.configs[("app.yaml", "G", "")] == "a: 1\n"

    def test_remove(self, cli_server: FakeConfigServer, capsys: pytest.CaptureFixture) -> None:
        cli_server.put("app", "a=1")

        assert cli.main(["remove", "--server-addr", "127.0.0.1:8848", "--data-id", "app"]) == 0
        assert ("app", "DEFAULT_GROUP", "") not in cli_server.configs

    def test_failed_write_exits_nonzero(self, cli_server: FakeConfigServer, capsys: pytest.CaptureFixture) -> None:
        cli_server.down = True

        assert cli.main(["remove", "--server-addr", "127.0.0.1:8848", "--data-id", "app"]) == 1
        assert last_json(capsys)["success"] is False

    def test_invalid_key_reports_error(self, cli_server: FakeConfigServer, capsys: pytest.CaptureFixture) -> None:
        code = cli.main(["get", "--server-addr", "127.0.0.1:8848", "--data-id", "bad id"])

        result = last_json(capsys)
        assert code == 1
        assert result["success"] is False
        assert "code" in result
        assert cli_server.requests == []

    def test_watch_prints_changes(self, cli_server: FakeConfigServer, capsys: pytest.CaptureFixture) -> None:
        cli_server.put("app", "v1")

        code = cli.main(["watch", "--server-addr", "127.0.0.1:8848", "--data-id", "app", "--duration", "0.3"])

        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
        assert code == 0
        assert {"data_id": "app", "group": None, "content": "v1"} in lines
        assert lines[-1]["changes"] == 1

    def test_config_file_with_flag_override(
        self, cli_server: FakeConfigServer, tmp_path: Path, capsys: pytest.CaptureFixture
    ) -> None:
        path = tmp_path / "client.yaml"
        path.write_text("serverAddr: 10.0.0.1:8848\nnamespace: prod\n", encoding="utf-8")

        cli.main(["get", "--config", str(path), "--namespace", "dev", "--data-id", "app"])

        config = cli_server.built[-1]
        assert config.server_addr == "10.0.0.1:8848"
        assert config.namespace == "dev"


class TestLogging:
    ARGS = ["get", "--server-addr", "127.0.0.1:8848", "--data-id", "app"]

    def test_defaults_to_warning(self, cli_server: FakeConfigServer, capsys: pytest.CaptureFixture) -> None:
        cli.main(self.ARGS)
        assert logging.getLogger("confsync").level == logging.WARNING

    def test_environment_used_without_flag(
        self, cli_server: FakeConfigServer, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
    ) -> None:
        monkeypatch.setenv("CONFSYNC_LOG_LEVEL", "ERROR")
        monkeypatch.setenv("CONFSYNC_LOG_FORMAT", "text")

        cli.main(self.ARGS)

        root = logging.getLogger("confsync")
        assert root.level == logging.ERROR
        assert not isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_flag_beats_environment(
        self, cli_server: FakeConfigServer, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
    ) -> None:
        monkeypatch.setenv("CONFSYNC_LOG_LEVEL", "ERROR")

        cli.main(["--log-level", "DEBUG"] + self.ARGS)

        assert logging.getLogger("confsync").level == logging.DEBUG
