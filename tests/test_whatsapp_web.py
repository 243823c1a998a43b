"""Tests for the Playwright-driven WhatsApp Web session and its factory."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from whatsbot.config import BotConfig
from whatsbot.session import whatsapp_web
from whatsbot.session.base_session import SendError, SessionError
from whatsbot.session.events import (
    Authenticated,
    Disconnected,
    InboundMessage,
    MessageReceived,
    QrReceived,
    Ready,
)
from whatsbot.session.factory import LAUNCH_ARGS, SessionFactory
from whatsbot.session.whatsapp_web import (
    CHAT_LOADED_SELECTOR,
    SEEN_IDS_LIMIT,
    WhatsAppWebSession,
    parse_message_data_id,
)

# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def session(tmp_path: Path) -> WhatsAppWebSession:
    return WhatsAppWebSession(
        auth_dir=tmp_path / "auth",
        cache_dir=tmp_path / "cache",
        poll_interval=0,
    )


@pytest.fixture
def events(session: WhatsAppWebSession) -> list[Any]:
    received: list[Any] = []

    async def listener(event: Any) -> None:
        received.append(event)

    session.subscribe(listener)
    return received


def _page_with(*present: str) -> AsyncMock:
    """Mock page where query_selector finds selectors containing any marker."""
    page = AsyncMock()
    page.is_closed = MagicMock(return_value=False)

    async def query_selector(selector: str) -> Any:
        if any(marker in selector for marker in present):
            return MagicMock()
        return None

    page.query_selector = query_selector
    return page


# ── Unit Tests: parse_message_data_id ───────────────────────────────


class TestParseMessageDataId:
    def test_direct_chat(self) -> None:
        assert parse_message_data_id("false_5215512345678@c.us_3EB0C7F1") == (
            False,
            "5215512345678@c.us",
            "",
        )

    def test_group_with_participant(self) -> None:
        parsed = parse_message_data_id("false_120363025246125486@g.us_3EB0C7F1_5215512345678@c.us")
        assert parsed == (False, "120363025246125486@g.us", "5215512345678@c.us")

    def test_outgoing(self) -> None:
        parsed = parse_message_data_id("true_5215512345678@c.us_3EB0C7F1")
        assert parsed is not None
        assert parsed[0] is True

    @pytest.mark.parametrize("data_id", ["", "garbage", "maybe_5215512345678@c.us_X", "false_nochat_X"])
    def test_unparseable(self, data_id: str) -> None:
        assert parse_message_data_id(data_id) is None


# ── Unit Tests: Session State Detection ─────────────────────────────


class TestSessionState:
    async def test_ready_via_chat_list(self, session: WhatsAppWebSession) -> None:
        session._page = _page_with("chat-list")
        assert await session._check_session_state() == "ready"

    async def test_ready_via_pane_side(self, session: WhatsAppWebSession) -> None:
        session._page = _page_with("pane-side")
        assert await session._check_session_state() == "ready"

    async def test_qr_code(self, session: WhatsAppWebSession) -> None:
        session._page = _page_with("Scan this QR code")
        assert await session._check_session_state() == "qr_code"

    async def test_qr_code_fallback(self, session: WhatsAppWebSession) -> None:
        session._page = _page_with('data-testid="qrcode"')
        assert await session._check_session_state() == "qr_code"

    async def test_phone_disconnected(self, session: WhatsAppWebSession) -> None:
        session._page = _page_with("pane-side", "alert-phone")
        assert await session._check_session_state() == "phone_disconnected"

    async def test_loading(self, session: WhatsAppWebSession) -> None:
        session._page = _page_with("startup")
        assert await session._check_session_state() == "loading"

    async def test_unknown(self, session: WhatsAppWebSession) -> None:
        session._page = _page_with()
        assert await session._check_session_state() == "unknown"

    def test_chat_loaded_selector_contains_all_variants(self) -> None:
        assert 'div[data-testid="chat-list"]' in CHAT_LOADED_SELECTOR
        assert 'div[aria-label="Chat list"]' in CHAT_LOADED_SELECTOR
        assert "#pane-side" in CHAT_LOADED_SELECTOR
        assert 'div[role="listitem"]' in CHAT_LOADED_SELECTOR


# ── Lifecycle ───────────────────────────────────────────────────────


class TestInitialize:
    async def test_emits_qr_once_per_code_then_ready(
        self,
        session: WhatsAppWebSession,
        events: list[Any],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(whatsapp_web, "LOGIN_POLL_SECONDS", 0)
        session.poll_interval = 60
        session._page = MagicMock()

        with (
            patch.object(session, "_launch_browser", AsyncMock()),
            patch.object(session, "_navigate_to_whatsapp", AsyncMock()),
            patch.object(
                session,
                "_check_session_state",
                AsyncMock(side_effect=["loading", "qr_code", "qr_code", "qr_code", "ready"]),
            ),
            patch.object(session, "_read_qr_code", AsyncMock(side_effect=["ref-1", "ref-1", "ref-2"])),
            patch.object(session, "_save_screenshot", AsyncMock(return_value=None)),
            patch.object(session, "_scan_unread_messages", AsyncMock(return_value=[])) as scan,
        ):
            await session.initialize()
            await session.destroy()

        assert events == [QrReceived("ref-1"), QrReceived("ref-2"), Authenticated(), Ready()]
        scan.assert_awaited_once()

    async def test_destroyed_session_cannot_be_reused(self, session: WhatsAppWebSession) -> None:
        await session.destroy()
        with pytest.raises(SessionError):
            await session.initialize()

    async def test_destroy_is_repeatable(self, session: WhatsAppWebSession) -> None:
        context = AsyncMock()
        playwright = AsyncMock()
        session._context = context
        session._playwright = playwright

        await session.destroy()
        await session.destroy()

        context.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()


class TestWatch:
    async def test_qr_page_reports_logout(
        self, session: WhatsAppWebSession, events: list[Any]
    ) -> None:
        session._page = _page_with("Scan this QR code")
        session._ready = True

        await session._watch()

        assert events == [Disconnected("LOGOUT")]
        assert session._ready is False

    async def test_closed_page_reports_navigation(
        self, session: WhatsAppWebSession, events: list[Any]
    ) -> None:
        page = _page_with()
        page.is_closed = MagicMock(return_value=True)
        session._page = page

        await session._watch()

        assert events == [Disconnected("NAVIGATION")]

    async def test_repeated_errors_report_watch_failed(
        self, session: WhatsAppWebSession, events: list[Any]
    ) -> None:
        session._page = _page_with()
        with patch.object(
            session, "_check_session_state", AsyncMock(side_effect=RuntimeError("page crashed"))
        ) as check:
            await session._watch()

        assert check.await_count == whatsapp_web.MAX_WATCH_ERRORS
        assert events == [Disconnected("WATCH_FAILED")]

    async def test_new_messages_are_emitted(self, session: WhatsAppWebSession) -> None:
        message = InboundMessage(
            id="false_5215512345678@c.us_1", chat_id="5215512345678@c.us",
            sender_id="5215512345678@c.us", body="!ping",
        )
        received: list[Any] = []

        async def listener(event: Any) -> None:
            received.append(event)
            session._destroyed = True

        session.subscribe(listener)
        session._page = _page_with("pane-side")
        with patch.object(session, "_scan_unread_messages", AsyncMock(return_value=[message])):
            await session._watch()

        assert received == [MessageReceived(message)]

    async def test_disconnect_reported_once(
        self, session: WhatsAppWebSession, events: list[Any]
    ) -> None:
        await session._report_disconnect("LOGOUT")
        await session._report_disconnect("NAVIGATION")
        assert events == [Disconnected("LOGOUT")]


# ── Messages and Contacts ───────────────────────────────────────────


class TestMessages:
    def test_remember_deduplicates(self, session: WhatsAppWebSession) -> None:
        assert session._remember("a") is True
        assert session._remember("a") is False

    def test_remember_is_bounded(self, session: WhatsAppWebSession) -> None:
        for i in range(SEEN_IDS_LIMIT + 10):
            session._remember(f"id-{i}")
        assert len(session._seen_ids) == SEEN_IDS_LIMIT
        assert "id-0" not in session._seen_ids

    async def test_get_contact_uses_seen_names(self, session: WhatsAppWebSession) -> None:
        session._contact_names["5215512345678@c.us"] = "Ana"
        contact = await session.get_contact("5215512345678@c.us")
        assert contact.display_name == "Ana"

    async def test_get_contact_unknown(self, session: WhatsAppWebSession) -> None:
        with pytest.raises(LookupError):
            await session.get_contact("5215500000000@c.us")

    async def test_send_requires_ready(self, session: WhatsAppWebSession) -> None:
        with pytest.raises(SessionError):
            await session.send_message("5215512345678@c.us", "hola")

    async def test_send_to_unseen_group_fails(self, session: WhatsAppWebSession) -> None:
        session._page = _page_with()
        session._ready = True
        with pytest.raises(SendError):
            await session.send_message("120363025246125486@g.us", "hola")

    async def test_send_media_missing_file(self, session: WhatsAppWebSession, tmp_path: Path) -> None:
        session._page = _page_with()
        session._ready = True
        with pytest.raises(SendError, match="File not found"):
            await session.send_media("5215512345678@c.us", tmp_path / "missing.pdf")


# ── SessionFactory ──────────────────────────────────────────────────


class TestSessionFactory:
    def test_creates_configured_session(self, bot_config: BotConfig) -> None:
        session = SessionFactory(bot_config).create()

        assert isinstance(session, WhatsAppWebSession)
        assert session.auth_dir == bot_config.auth_dir
        assert session.cache_dir == bot_config.cache_dir
        assert session.user_data_dir == bot_config.auth_dir / "session"
        assert session.launch_args == list(LAUNCH_ARGS)

    def test_each_call_builds_a_new_session(self, bot_config: BotConfig) -> None:
        factory = SessionFactory(bot_config)
        assert factory() is not factory()

    def test_launch_args_disable_sandbox_and_throttling(self) -> None:
        assert "--no-sandbox" in LAUNCH_ARGS
        assert "--disable-setuid-sandbox" in LAUNCH_ARGS
        assert "--disable-background-timer-throttling" in LAUNCH_ARGS
        assert "--disable-renderer-backgrounding" in LAUNCH_ARGS
