"""Connection lifecycle for the WhatsApp session.

The manager owns the single current session handle and drives it through
connection attempts with exponential backoff, reacts to the session's
events, answers inbound messages through the reply rules, and tells the
HTTP API whether outbound sends are currently possible.

State machine::

    IDLE -> CONNECTING            start
    CONNECTING -> READY           session reports ready
    CONNECTING -> CONNECTING      attempt failed, retries left (after backoff)
    CONNECTING -> FAILED          attempt failed, no retries left (process exits 1)
    READY -> DISCONNECTED         session reports a disconnect
    DISCONNECTED -> CONNECTING    after the reconnect delay
    any -> SHUTTING_DOWN          shutdown started

The attempt counter is reset when the session becomes ready, never on
disconnect, so a burst of failed reconnects still ends in FAILED.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import sys
from collections.abc import Awaitable, Callable, Coroutine
from enum import Enum
from pathlib import Path

from whatsbot.config import BotConfig
from whatsbot.lifecycle.deadline import TimedOut, run_with_deadline
from whatsbot.lifecycle.lock_janitor import clean_locks
from whatsbot.rules.replies import ReplyRuleSet
from whatsbot.session.base_session import BaseSession
from whatsbot.session.events import (
    Authenticated,
    AuthFailure,
    Disconnected,
    InboundMessage,
    MessageAck,
    MessageReceived,
    QrReceived,
    Ready,
    SessionEvent,
)
from whatsbot.utils.logging_utils import log_error, log_traffic
from whatsbot.utils.qr_terminal import render_qr
from whatsbot.utils.timestamps import local_timestamp


class LifecycleState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTED = "disconnected"
    SHUTTING_DOWN = "shutting_down"
    FAILED = "failed"


class ConnectionAttemptError(RuntimeError):
    """Raised when a single connection attempt does not complete."""


class NotReadyError(RuntimeError):
    """Raised when a send is requested while the session is not ready."""


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based).

    Examples:
        >>> [backoff_delay(n, 5.0) for n in (1, 2, 3)]
        [5.0, 10.0, 20.0]
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return base_delay * 2 ** (attempt - 1)


class LifecycleManager:
    """Owns the current session and its connection state."""

    def __init__(
        self,
        config: BotConfig,
        session_factory: Callable[[], BaseSession],
        rules: ReplyRuleSet | None = None,
        lock_cleaner: Callable[[Path], object] = clean_locks,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        exit_process: Callable[[int], None] = sys.exit,
    ):
        self.config = config
        self.rules = rules or ReplyRuleSet()
        self.logger = logging.getLogger(self.__class__.__name__)
        self._session_factory = session_factory
        self._lock_cleaner = lock_cleaner
        self._sleep = sleep
        self._exit_process = exit_process
        self._state = LifecycleState.IDLE
        self._handle: BaseSession | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._attempts = 0
        self._shutting_down = False
        self._connect_task: asyncio.Task[None] | None = None
        self.total_attempts = 0
        # Called with every connect and reconnect task, e.g. to treat crashes as fatal
        self.task_watcher: Callable[[asyncio.Task[None]], None] | None = None

    # ── State ───────────────────────────────────────────────────────

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is LifecycleState.READY

    @property
    def attempts(self) -> int:
        """Connection attempts since the session was last ready."""
        return self._attempts

    @property
    def current_handle(self) -> BaseSession | None:
        return self._handle

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def connect_task(self) -> asyncio.Task[None] | None:
        """The running connect or reconnect loop, if any."""
        return self._connect_task

    def _transition(self, new_state: LifecycleState) -> None:
        if new_state is self._state:
            return
        self.logger.debug("State %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    def begin_shutdown(self) -> bool:
        """Enter SHUTTING_DOWN. Returns False if shutdown had already begun."""
        if self._shutting_down:
            return False
        self._shutting_down = True
        self._transition(LifecycleState.SHUTTING_DOWN)
        return True

    # ── Connecting ──────────────────────────────────────────────────

    def _spawn(self, coro: Coroutine[object, object, None], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._connect_task = task
        if self.task_watcher is not None:
            self.task_watcher(task)
        return task

    def start(self) -> asyncio.Task[None]:
        """Start the connect loop in the background and return its task."""
        if self._connect_task is None or self._connect_task.done():
            return self._spawn(self._connect_loop(), "whatsapp-connect")
        return self._connect_task

    async def _connect_loop(self) -> None:
        max_retries = self.config.max_retries
        while True:
            if self._shutting_down:
                self.logger.info("Shutdown in progress, no new connection attempt")
                return

            self._attempts += 1
            self.total_attempts += 1
            attempt = self._attempts
            self._transition(LifecycleState.CONNECTING)
            self.logger.info("Connecting to WhatsApp (attempt %d/%d)...", attempt, max_retries)

            try:
                await self._attempt()
            except Exception as exc:
                reason = str(exc) or type(exc).__name__
                self.logger.error(
                    "Connection attempt %d/%d failed: %s", attempt, max_retries, reason
                )
                await asyncio.to_thread(
                    log_error,
                    self.config.logs_path,
                    "whatsapp_session",
                    "connection_attempt_failed",
                    {"attempt": attempt, "max_retries": max_retries, "reason": reason},
                )
                if self._shutting_down:
                    return
                if attempt < max_retries:
                    delay = backoff_delay(attempt, self.config.base_retry_delay)
                    self.logger.info("Retrying in %.1fs", delay)
                    await self._sleep(delay)
                    continue
                self._fail(f"{attempt} consecutive connection attempts failed")
                return

            if self._state is LifecycleState.DISCONNECTED and not self._shutting_down:
                # Lost the session before initialize returned
                await self._sleep(self.config.reconnect_delay)
                continue
            return

    async def _attempt(self) -> None:
        for directory in (self.config.auth_dir, self.config.cache_dir):
            await asyncio.to_thread(self._lock_cleaner, directory)

        await self._discard_handle()
        await self._sleep(self.config.settle_delay)

        handle = self._session_factory()
        self._handle = handle
        self._unsubscribe = handle.subscribe(functools.partial(self._dispatch, handle))

        outcome = await run_with_deadline(handle.initialize(), self.config.init_timeout)
        if isinstance(outcome, TimedOut):
            raise ConnectionAttemptError(f"initialize timed out after {outcome.timeout:.0f}s")

    async def _discard_handle(self) -> None:
        """Destroy the current handle, if any. Failures are logged only."""
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        try:
            outcome = await run_with_deadline(handle.destroy(), self.config.destroy_timeout)
        except Exception:
            self.logger.warning("Failed to destroy previous session", exc_info=True)
            return
        if isinstance(outcome, TimedOut):
            self.logger.warning(
                "Previous session did not close within %.0fs, discarding it", outcome.timeout
            )

    def _fail(self, reason: str) -> None:
        self._transition(LifecycleState.FAILED)
        self.logger.critical(
            "FATAL: %s. Check the WhatsApp credentials and the session directory %s",
            reason,
            self.config.auth_dir,
        )
        log_error(self.config.logs_path, "whatsapp_session", "retries_exhausted", {"reason": reason})
        self._exit_process(1)

    # ── Session Events ──────────────────────────────────────────────

    async def _dispatch(self, handle: BaseSession, event: SessionEvent) -> None:
        if handle is not self._handle:
            self.logger.debug("Ignoring %s from a replaced session", type(event).__name__)
            return

        if isinstance(event, QrReceived):
            self.logger.info(
                "QR RECEIVED - scan it from WhatsApp > Linked devices\n%s", render_qr(event.code)
            )
            self.logger.debug("QR payload: %s", event.code)
        elif isinstance(event, Authenticated):
            self.logger.info("AUTHENTICATED")
        elif isinstance(event, AuthFailure):
            self.logger.error("AUTHENTICATION FAILURE: %s", event.reason)
        elif isinstance(event, Ready):
            self._on_ready()
        elif isinstance(event, Disconnected):
            self._on_disconnected(event.reason)
        elif isinstance(event, MessageReceived):
            await self.handle_message(handle, event.message)
        elif isinstance(event, MessageAck):
            self.logger.debug("Message %s ack %d", event.message_id, event.ack)

    def _on_ready(self) -> None:
        if self._shutting_down:
            return
        self._transition(LifecycleState.READY)
        self._attempts = 0
        self.logger.info("WhatsApp client is ready!")

    def _on_disconnected(self, reason: str) -> None:
        if self._state is not LifecycleState.READY:
            self.logger.debug("Ignoring disconnect (%s) while %s", reason, self._state.value)
            return

        self._transition(LifecycleState.DISCONNECTED)
        self.logger.warning("WhatsApp client disconnected: %s", reason)
        log_error(self.config.logs_path, "whatsapp_session", "disconnected", {"reason": reason})

        if self._connect_task is not None and not self._connect_task.done():
            return
        self._spawn(self._reconnect(), "whatsapp-reconnect")

    async def _reconnect(self) -> None:
        self.logger.info("Reconnecting in %.1fs...", self.config.reconnect_delay)
        await self._sleep(self.config.reconnect_delay)
        await self._connect_loop()

    # ── Messages ────────────────────────────────────────────────────

    async def _resolve_display_name(self, handle: BaseSession, message: InboundMessage) -> str:
        try:
            contact = await handle.get_contact(message.sender_id)
        except Exception:
            self.logger.debug("Could not resolve contact %s", message.sender_id, exc_info=True)
            return message.sender_id
        return contact.display_name

    def _log_line(self, direction: str, name: str, chat_id: str, text: str) -> None:
        self.logger.info(
            "[%s] [%s] %s (%s): %s",
            local_timestamp(self.config.timezone),
            direction,
            name,
            chat_id,
            text,
        )

    async def _record(
        self,
        direction: str,
        name: str,
        chat_id: str,
        text: str,
        parameters: dict[str, object],
    ) -> None:
        """Console line plus traffic log entry. Never raises."""
        action_type = "message_sent" if direction == "ENVIADO" else "message_received"
        try:
            self._log_line(direction, name, chat_id, text)
            # The daily file is rewritten on every entry
            await asyncio.to_thread(
                log_traffic, self.config.logs_path, action_type, chat_id, text, parameters
            )
        except Exception:
            self.logger.exception("Failed to log %s message in %s", direction, chat_id)

    async def handle_message(self, handle: BaseSession, message: InboundMessage) -> None:
        """Log an inbound message and send the matching rule's reply."""
        name = await self._resolve_display_name(handle, message)
        await self._record(
            "ENVIADO" if message.from_me else "RECIBIDO",
            name,
            message.chat_id,
            message.body,
            {
                "sender": name,
                "sender_id": message.sender_id,
                "message_id": message.id,
                "has_media": message.has_media,
            },
        )

        if message.from_me:
            return
        if not message.body.strip() and not message.has_media:
            self.logger.debug("Skipping empty message %s", message.id)
            return

        reply = self.rules.evaluate(message.body)
        if reply is None:
            return
        if not self.is_ready:
            self.logger.warning("Not replying to %s: client not ready", message.id)
            return

        try:
            reply_id = await handle.reply(message, reply)
        except Exception:
            self.logger.exception("Failed to reply to %s", message.id)
            return
        await self._log_outbound(message.chat_id, reply, reply_id)

    # ── Outbound ────────────────────────────────────────────────────

    def _require_ready(self) -> BaseSession:
        if not self.is_ready or self._handle is None:
            raise NotReadyError("WhatsApp client not ready")
        return self._handle

    async def _log_outbound(self, chat_id: str, text: str, message_id: str) -> None:
        await self._record("ENVIADO", "whatsbot", chat_id, text, {"message_id": message_id})

    async def send_message(self, chat_id: str, text: str) -> str:
        """Send a text message through the current session.

        Raises:
            NotReadyError: If the session is not ready.
        """
        handle = self._require_ready()
        message_id = await handle.send_message(chat_id, text)
        await self._log_outbound(chat_id, text, message_id)
        return message_id

    async def send_media(self, chat_id: str, path: Path, caption: str | None = None) -> str:
        """Send a file through the current session.

        Raises:
            NotReadyError: If the session is not ready.
        """
        handle = self._require_ready()
        message_id = await handle.send_media(chat_id, path, caption)
        await self._log_outbound(chat_id, caption or Path(path).name, message_id)
        return message_id
