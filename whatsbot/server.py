"""Process entry point: lifecycle manager, shutdown coordinator and HTTP API.

Usage:
    whatsbot [--host HOST] [--port PORT]
    python -m whatsbot.server
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
import logging
import os
from collections.abc import Iterator

import uvicorn

from whatsbot.api.routes import create_app
from whatsbot.config import BotConfig, ConfigError, load_env_files
from whatsbot.lifecycle.manager import LifecycleManager
from whatsbot.lifecycle.shutdown import ShutdownCoordinator
from whatsbot.session.factory import SessionFactory

logger = logging.getLogger(__name__)


class GatewayServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the shutdown coordinator."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        pass


def build_server(config: BotConfig, manager: LifecycleManager) -> GatewayServer:
    app = create_app(manager, config)
    return GatewayServer(
        uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            log_config=None,
            log_level=config.log_level.lower(),
            access_log=False,
        )
    )


async def serve(config: BotConfig) -> None:
    """Run the bot until a shutdown trigger exits the process."""
    loop = asyncio.get_running_loop()

    manager = LifecycleManager(config, SessionFactory(config))
    coordinator = ShutdownCoordinator(manager, destroy_timeout=config.destroy_timeout)
    coordinator.install_signal_handlers(loop)
    loop.set_exception_handler(coordinator.handle_loop_exception)
    manager.task_watcher = coordinator.watch

    server = build_server(config, manager)

    logger.info("Server running at http://%s:%d", config.host, config.port)
    logger.info("Waiting for WhatsApp authentication...")
    manager.start()

    await server.serve()
    # serve() only returns if uvicorn stopped on its own
    await coordinator.initiate("HTTP server stopped", exit_code=1)


# ── CLI Entry Point ─────────────────────────────────────────────────


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="WhatsApp bot with auto-replies and an HTTP send API"
    )
    parser.add_argument("--host", help="Bind address (overrides HOST)")
    parser.add_argument("--port", type=int, help="Bind port (overrides PORT)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the bot."""
    load_env_files()
    args = _parse_args(argv)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    try:
        config = BotConfig.from_env()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        raise SystemExit(2) from exc

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if overrides:
        config = dataclasses.replace(config, **overrides)

    logger.info(
        "Starting whatsbot (max retries: %d, auth dir: %s, headless: %s)",
        config.max_retries,
        config.auth_dir,
        config.headless,
    )
    asyncio.run(serve(config))


if __name__ == "__main__":
    main()
