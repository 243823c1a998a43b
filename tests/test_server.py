"""Tests for the process entry point."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from whatsbot import server
from whatsbot.config import BotConfig
from whatsbot.server import GatewayServer, build_server, main


@pytest.fixture
def no_env_files(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(server, "load_env_files", lambda: None)


class TestBuildServer:
    def test_binds_configured_address(self, bot_config: BotConfig) -> None:
        built = build_server(bot_config, MagicMock())

        assert isinstance(built, GatewayServer)
        assert built.config.host == bot_config.host
        assert built.config.port == bot_config.port

    def test_leaves_signals_alone(self, bot_config: BotConfig) -> None:
        built = build_server(bot_config, MagicMock())
        with built.capture_signals():
            pass
        built.install_signal_handlers()


class TestMain:
    def test_invalid_config_exits_2(
        self, monkeypatch: pytest.MonkeyPatch, no_env_files: None
    ) -> None:
        monkeypatch.setenv("MAX_RETRIES", "many")

        with pytest.raises(SystemExit) as excinfo:
            main([])

        assert excinfo.value.code == 2

    def test_cli_overrides_bind_address(
        self, monkeypatch: pytest.MonkeyPatch, no_env_files: None
    ) -> None:
        for name in ("MAX_RETRIES", "HOST", "PORT"):
            monkeypatch.delenv(name, raising=False)
        serve = MagicMock()
        run = MagicMock()
        monkeypatch.setattr(server, "serve", serve)
        monkeypatch.setattr(server.asyncio, "run", run)

        main(["--host", "127.0.0.1", "--port", "8081"])

        config = serve.call_args.args[0]
        assert config.host == "127.0.0.1"
        assert config.port == 8081
        run.assert_called_once_with(serve.return_value)
