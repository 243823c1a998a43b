"""Shared fixtures: a scripted in-memory session and a fast lifecycle config."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from whatsbot.config import BotConfig
from whatsbot.lifecycle.manager import LifecycleManager
from whatsbot.session.base_session import BaseSession, SendError
from whatsbot.session.events import Contact, Disconnected, InboundMessage, MessageReceived, Ready
from whatsbot.utils.timestamps import today_iso


class FakeSession(BaseSession):
    """Session whose initialize outcome is scripted: "ok", "fail" or "hang"."""

    def __init__(self, behavior: str, factory: FakeSessionFactory):
        super().__init__()
        self.behavior = behavior
        self.factory = factory
        self.initialized = False
        self.destroyed = False
        self.destroy_calls = 0
        self.destroy_behavior = "ok"
        self.fail_sends = False
        self.sent: list[tuple[str, str]] = []
        self.media: list[tuple[str, Path, str | None]] = []
        self.contacts: dict[str, Contact] = {}

    async def initialize(self) -> None:
        if self.behavior == "fail":
            raise RuntimeError("browser crashed")
        if self.behavior == "hang":
            await asyncio.Event().wait()
        self.initialized = True
        await self._emit(Ready())

    async def destroy(self) -> None:
        self.destroy_calls += 1
        if self.destroy_behavior == "hang":
            await asyncio.Event().wait()
        if self.destroy_behavior == "fail":
            raise RuntimeError("browser already gone")
        self.destroyed = True

    async def send_message(self, chat_id: str, text: str) -> str:
        if self.fail_sends:
            raise SendError("compose box not found")
        self.sent.append((chat_id, text))
        return f"true_{chat_id}_{len(self.sent)}"

    async def send_media(self, chat_id: str, path: Path, caption: str | None = None) -> str:
        self.media.append((chat_id, path, caption))
        return f"true_{chat_id}_media"

    async def get_contact(self, contact_id: str) -> Contact:
        if contact_id not in self.contacts:
            raise LookupError(contact_id)
        return self.contacts[contact_id]

    # Test helpers

    async def receive(self, message: InboundMessage) -> None:
        await self._emit(MessageReceived(message))

    async def disconnect(self, reason: str = "NAVIGATION") -> None:
        await self._emit(Disconnected(reason))


class FakeSessionFactory:
    """Hands out FakeSessions following a script; "fail" once it runs out."""

    def __init__(self, script: tuple[str, ...] = ("ok",)):
        self.script = list(script)
        self.sessions: list[FakeSession] = []
        self.overlaps = 0

    def __call__(self) -> FakeSession:
        # A session created while an earlier one is still undestroyed
        if any(not s.destroyed for s in self.sessions):
            self.overlaps += 1
        behavior = self.script.pop(0) if self.script else "fail"
        session = FakeSession(behavior, self)
        self.sessions.append(session)
        return session

    @property
    def current(self) -> FakeSession:
        return self.sessions[-1]


def read_entries(log_dir: Path) -> list[dict[str, Any]]:
    """Entries of today's audit log file in `log_dir`, oldest first."""
    log_file = Path(log_dir) / f"{today_iso()}.json"
    if not log_file.exists():
        return []
    return json.loads(log_file.read_text(encoding="utf-8"))["entries"]


def make_message(body: str, sender: str = "5215512345678@c.us", **kwargs) -> InboundMessage:
    kwargs.setdefault("id", f"false_{sender}_ABC123")
    kwargs.setdefault("chat_id", sender)
    return InboundMessage(sender_id=sender, body=body, **kwargs)


@pytest.fixture
def bot_config(tmp_path: Path) -> BotConfig:
    """Config with short delays and directories under tmp_path."""
    return BotConfig(
        max_retries=3,
        base_retry_delay=1.0,
        reconnect_delay=0.5,
        settle_delay=0.1,
        init_timeout=0.05,
        destroy_timeout=0.05,
        auth_dir=tmp_path / "auth",
        cache_dir=tmp_path / "cache",
        logs_path=tmp_path / "logs",
        pdf_path=tmp_path / "document.pdf",
        timezone="UTC",
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def exit_codes() -> list[int]:
    return []


@pytest.fixture
def cleaned_dirs() -> list[Path]:
    return []


@pytest.fixture
def factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def manager(
    bot_config: BotConfig,
    factory: FakeSessionFactory,
    sleeps: list[float],
    exit_codes: list[int],
    cleaned_dirs: list[Path],
) -> LifecycleManager:
    """Manager wired to the fake factory, recording sleeps and exits."""

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return LifecycleManager(
        bot_config,
        factory,
        lock_cleaner=cleaned_dirs.append,
        sleep=fake_sleep,
        exit_process=exit_codes.append,
    )
