"""Single, idempotent shutdown sequence for the bot process."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from typing import Any

from whatsbot.lifecycle.deadline import TimedOut, run_with_deadline
from whatsbot.lifecycle.manager import LifecycleManager

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownCoordinator:
    """Tears down the current session once, then exits the process.

    Triggered by termination signals (exit status 0) and by crashes of
    watched tasks (exit status 1). Later triggers are logged and ignored.
    """

    def __init__(
        self,
        manager: LifecycleManager,
        destroy_timeout: float = 5.0,
        exit_process: Callable[[int], None] = sys.exit,
    ):
        self.manager = manager
        self.destroy_timeout = destroy_timeout
        self.logger = logging.getLogger(self.__class__.__name__)
        self._exit_process = exit_process
        # Strong references so pending shutdown tasks are not garbage collected
        self._pending: set[asyncio.Task[None]] = set()

    async def initiate(self, reason: str, exit_code: int = 0) -> None:
        if not self.manager.begin_shutdown():
            self.logger.info("Shutdown already in progress, ignoring %s", reason)
            return

        self.logger.info("Received %s, shutting down...", reason)
        handle = self.manager.current_handle
        if handle is None:
            self.logger.info("No WhatsApp session to close")
        else:
            try:
                outcome = await run_with_deadline(handle.destroy(), self.destroy_timeout)
            except Exception:
                self.logger.exception("Failed to close WhatsApp session")
            else:
                if isinstance(outcome, TimedOut):
                    self.logger.warning(
                        "WhatsApp session did not close within %.0fs", outcome.timeout
                    )
                else:
                    self.logger.info("WhatsApp session closed")

        self.logger.info("Exiting with status %d", exit_code)
        self._exit_process(exit_code)

    def request(self, reason: str, exit_code: int = 0) -> asyncio.Task[None]:
        """Schedule ``initiate`` from a synchronous callback."""
        task = asyncio.get_running_loop().create_task(
            self.initiate(reason, exit_code), name="shutdown"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    # ── Triggers ────────────────────────────────────────────────────

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request, sig.name)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                self.logger.debug("Signal handler for %s not supported", sig.name)

    def handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        """Event loop exception handler.

        Orphaned futures from a closing page or browser are routine and are
        reported by the default handler without stopping the bot. While the
        session is being torn down they are dropped.
        """
        if self.manager.is_shutting_down:
            self.logger.debug("Ignoring error during shutdown: %s", context.get("message"))
            return
        loop.default_exception_handler(context)

    def watch(self, task: asyncio.Task[Any]) -> None:
        """Treat an exception escaping ``task`` as a fatal error."""

        def _done(finished: asyncio.Task[Any]) -> None:
            if finished.cancelled():
                return
            exc = finished.exception()
            # SystemExit from an exit path is already a shutdown
            if isinstance(exc, Exception):
                self.logger.error("Task %s crashed", finished.get_name(), exc_info=exc)
                self.request(f"fatal error ({exc})", exit_code=1)

        task.add_done_callback(_done)
