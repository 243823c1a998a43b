"""WhatsApp Web session driven through Playwright.

The session keeps a persistent Chromium profile in the auth directory so a
paired device survives restarts. After WhatsApp Web reports the chat list,
a watch task polls the page: unread chats are opened and new messages are
published as ``MessageReceived`` events, and a logged-out page or closed
browser is published as ``Disconnected``.

WhatsApp Web changes its DOM frequently, so every lookup tries a list of
selectors in order.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import OrderedDict
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from whatsbot.session.base_session import BaseSession, SendError, SessionError
from whatsbot.session.events import (
    CONTACT_SUFFIX,
    Authenticated,
    Contact,
    Disconnected,
    InboundMessage,
    MessageReceived,
    QrReceived,
    Ready,
)
from whatsbot.utils.uuid_utils import short_id

WHATSAPP_WEB_URL = "https://web.whatsapp.com"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)

# How many of the latest bubbles to read when a chat is opened
RECENT_MESSAGE_COUNT = 5

# Message ids remembered to avoid emitting a message twice
SEEN_IDS_LIMIT = 1000

# Consecutive failed watch cycles before the session reports a disconnect
MAX_WATCH_ERRORS = 5

# Seconds between page state checks while waiting for login
LOGIN_POLL_SECONDS = 1.0

SEND_SETTLE_SECONDS = 1.5

SELECTORS = {
    "qr_code": 'canvas[aria-label*="Scan this QR code"]',
    "qr_code_fallback": 'div[data-testid="qrcode"], div[role="img"][aria-label*="QR"]',
    "qr_data_ref": "div[data-ref]",
    "phone_disconnected": 'div[data-testid="alert-phone"], div[data-testid="alert-banner"]',
    "loading": 'div[data-testid="startup"]',
    "message_row": "div[data-id]",
    "outgoing_message": 'div[data-id^="true_"]',
    "msg_author": 'span[data-testid="msg-author"]',
    "media": 'img[src^="blob:"], div[data-testid="media-url-provider"], span[data-icon="audio-play"]',
    "back_button": 'button[data-testid="back"]',
    "search_box": 'div[contenteditable="true"][data-tab="3"]',
    "compose_box": 'footer div[contenteditable="true"]',
    "invalid_number_popup": 'div[data-testid="popup-controls-ok"]',
    "file_input": 'input[type="file"]',
}

# Any of these means the chat list rendered, i.e. the session is logged in
CHAT_LOADED_SELECTOR = ", ".join([
    'div[data-testid="chat-list"]',
    'div[aria-label="Chat list"]',
    "#pane-side",
    'div[role="listitem"]',
])

UNREAD_STRATEGIES = [
    ("row + aria unread", 'div[role="row"]:has(span[aria-label*="unread"])'),
    ("row + icon-unread-count", 'div[role="row"]:has(span[data-testid="icon-unread-count"])'),
    (
        "cell-frame + icon-unread-count",
        'div[data-testid="cell-frame-container"]:has(span[data-testid="icon-unread-count"])',
    ),
    ("listitem + aria unread", 'div[role="listitem"]:has(span[aria-label*="unread"])'),
]

TEXT_SELECTORS = [
    'span[data-testid="msg-text"] span',
    "span.selectable-text span",
    "span.selectable-text",
]

COMPOSE_SELECTORS = [
    'footer div[contenteditable="true"]',
    'div[data-testid="conversation-compose-box-input"]',
    'div[contenteditable="true"][data-tab="10"]',
    '#main footer div[role="textbox"]',
]

ATTACH_SELECTORS = [
    '[data-testid="attach-menu-plus"]',
    '[data-icon="attach-menu-plus"]',
    '[data-icon="plus"]',
    '[data-testid="clip"]',
    'button[aria-label="Attach"]',
]

CAPTION_SELECTORS = [
    '[data-testid="media-caption-input-container"] [contenteditable="true"]',
    'div[data-testid="media-caption-text-input"]',
    '[aria-label="Add a caption"]',
]

SEND_BUTTON_SELECTORS = [
    '[data-testid="send"]',
    '[data-icon="send"]',
    'button[aria-label="Send"]',
    'div[role="button"][aria-label="Send"]',
]


def parse_message_data_id(data_id: str) -> tuple[bool, str, str] | None:
    """Split a WhatsApp Web message ``data-id`` attribute.

    Ids look like ``false_5215512345678@c.us_3EB0C7...`` for direct chats and
    ``false_1203630252@g.us_3EB0C7..._5215512345678@c.us`` for groups, where
    the trailing part is the participant who wrote the message.

    Returns:
        Tuple of (from_me, chat_id, participant_id) or None if unparseable.
    """
    parts = data_id.split("_")
    if len(parts) < 3 or parts[0] not in ("true", "false") or "@" not in parts[1]:
        return None
    participant = parts[3] if len(parts) > 3 else ""
    return parts[0] == "true", parts[1], participant


class WhatsAppWebSession(BaseSession):
    """One WhatsApp Web browser session."""

    def __init__(
        self,
        auth_dir: Path,
        cache_dir: Path,
        launch_args: Sequence[str] = (),
        headless: bool = True,
        startup_timeout: float = 60.0,
        poll_interval: float = 5.0,
        screenshots_path: Path | None = None,
    ):
        super().__init__()
        self.auth_dir = Path(auth_dir)
        self.cache_dir = Path(cache_dir)
        self.launch_args = list(launch_args)
        self.headless = headless
        self.startup_timeout = startup_timeout
        self.poll_interval = poll_interval
        self.screenshots_path = screenshots_path
        self._playwright: Any = None
        self._context: Any = None
        self._page: Any = None
        self._page_lock = asyncio.Lock()
        self._watch_task: asyncio.Task[None] | None = None
        self._seen_ids: OrderedDict[str, None] = OrderedDict()
        self._chat_names: dict[str, str] = {}
        self._contact_names: dict[str, str] = {}
        self._ready = False
        self._destroyed = False
        self._disconnect_reported = False
        self._watch_errors = 0

    @property
    def user_data_dir(self) -> Path:
        return self.auth_dir / "session"

    # ── Browser Management ──────────────────────────────────────────

    async def _launch_browser(self) -> None:
        """Launch Chromium with a persistent context for the paired device."""
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self.user_data_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=str(self.user_data_dir),
            headless=self.headless,
            user_agent=USER_AGENT,
            args=[*self.launch_args, f"--disk-cache-dir={self.cache_dir}"],
            timeout=self.startup_timeout * 1000,
        )
        self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()
        await self._page.set_viewport_size({"width": 1280, "height": 720})

    async def _close_browser(self) -> None:
        if self._context:
            await self._context.close()
            self._context = None
            self._page = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def _navigate_to_whatsapp(self) -> None:
        assert self._page is not None
        self.logger.debug("Navigating to %s ...", WHATSAPP_WEB_URL)
        await self._page.goto(WHATSAPP_WEB_URL, wait_until="domcontentloaded", timeout=60000)
        try:
            await self._page.wait_for_load_state("networkidle", timeout=15000)
        except Exception:
            self.logger.debug("Network idle not reached within 15s, continuing")

    async def _save_screenshot(self, label: str) -> Path | None:
        """Save a screenshot next to the logs (QR codes, failed sends)."""
        if self._page is None or self.screenshots_path is None:
            return None
        try:
            path = self.screenshots_path / f"whatsapp_{label}.png"
            path.parent.mkdir(parents=True, exist_ok=True)
            await self._page.screenshot(path=str(path), full_page=False)
            return path
        except Exception:
            self.logger.debug("Could not save screenshot", exc_info=True)
            return None

    # ── Session State ───────────────────────────────────────────────

    async def _is_chat_loaded(self) -> bool:
        assert self._page is not None
        return await self._page.query_selector(CHAT_LOADED_SELECTOR) is not None

    async def _check_session_state(self) -> str:
        """Check current WhatsApp Web page state.

        Returns:
            One of: "ready", "qr_code", "phone_disconnected", "loading", "unknown"
        """
        assert self._page is not None

        if await self._is_chat_loaded():
            if await self._page.query_selector(SELECTORS["phone_disconnected"]):
                return "phone_disconnected"
            return "ready"

        if await self._page.query_selector(SELECTORS["qr_code"]):
            return "qr_code"
        if await self._page.query_selector(SELECTORS["qr_code_fallback"]):
            return "qr_code"
        if await self._page.query_selector(SELECTORS["loading"]):
            return "loading"

        return "unknown"

    async def _read_qr_code(self) -> str | None:
        """Return the pairing payload behind the QR canvas, if rendered."""
        assert self._page is not None
        holder = await self._page.query_selector(SELECTORS["qr_data_ref"])
        if holder is None:
            return None
        return await holder.get_attribute("data-ref")

    def _require_ready(self) -> None:
        if not self._ready or self._page is None:
            raise SessionError("WhatsApp Web session is not ready")

    # ── Lifecycle ───────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Open WhatsApp Web and wait until the chat list is visible.

        While the page shows a QR code, each new code is published as a
        ``QrReceived`` event. There is no internal time limit; callers bound
        this call with their own deadline.
        """
        if self._destroyed:
            raise SessionError("Session was destroyed and cannot be reused")

        await self._launch_browser()
        await self._navigate_to_whatsapp()

        last_qr: str | None = None
        while True:
            state = await self._check_session_state()
            if state == "ready":
                break
            if state == "qr_code":
                code = await self._read_qr_code()
                if code and code != last_qr:
                    last_qr = code
                    screenshot = await self._save_screenshot("qr_code")
                    if screenshot:
                        self.logger.info("QR code screenshot saved to %s", screenshot)
                    await self._emit(QrReceived(code))
            else:
                self.logger.debug("Waiting for WhatsApp Web (state: %s)", state)
            await asyncio.sleep(LOGIN_POLL_SECONDS)

        await self._emit(Authenticated())

        # Unread messages present before startup are not answered
        async with self._page_lock:
            await self._scan_unread_messages()

        self._ready = True
        self._watch_task = asyncio.create_task(self._watch(), name="whatsapp-web-watch")
        await self._emit(Ready())

    async def destroy(self) -> None:
        """Stop watching and close the browser."""
        self._destroyed = True
        self._ready = False
        self._listeners.clear()

        task = self._watch_task
        self._watch_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._close_browser()

    async def _report_disconnect(self, reason: str) -> None:
        if self._destroyed or self._disconnect_reported:
            return
        self._disconnect_reported = True
        self._ready = False
        self.logger.warning("WhatsApp Web disconnected: %s", reason)
        await self._emit(Disconnected(reason))

    async def _watch(self) -> None:
        """Poll the page for new messages until it logs out or closes."""
        while not self._destroyed:
            await asyncio.sleep(self.poll_interval)
            try:
                if self._page is None or self._page.is_closed():
                    await self._report_disconnect("NAVIGATION")
                    return

                async with self._page_lock:
                    state = await self._check_session_state()
                    if state == "qr_code":
                        await self._report_disconnect("LOGOUT")
                        return
                    if state != "ready":
                        self.logger.debug("Skipping scan (state: %s)", state)
                        continue
                    messages = await self._scan_unread_messages()

                self._watch_errors = 0
                for message in messages:
                    await self._emit(MessageReceived(message))
            except asyncio.CancelledError:
                raise
            except Exception:
                self._watch_errors += 1
                self.logger.exception(
                    "Error scanning WhatsApp Web (consecutive errors: %d)", self._watch_errors
                )
                if self._watch_errors >= MAX_WATCH_ERRORS:
                    await self._report_disconnect("WATCH_FAILED")
                    return

    # ── Message Extraction ──────────────────────────────────────────

    def _remember(self, message_id: str) -> bool:
        """Mark a message id as seen. Returns False if it already was."""
        if message_id in self._seen_ids:
            return False
        self._seen_ids[message_id] = None
        while len(self._seen_ids) > SEEN_IDS_LIMIT:
            self._seen_ids.popitem(last=False)
        return True

    async def _scan_unread_messages(self) -> list[InboundMessage]:
        """Open every unread chat and collect messages not seen before."""
        unread_chats = await self._get_unread_chats()
        if not unread_chats:
            return []

        self.logger.debug("Found %d unread chats", len(unread_chats))
        collected: list[InboundMessage] = []

        for chat_info in unread_chats:
            chat_name = chat_info["chat_name"]
            try:
                if not await self._open_chat(chat_info["element"], chat_name):
                    continue
                for message in await self._extract_messages_from_chat(chat_name):
                    self._chat_names[message.chat_id] = chat_name
                    self._contact_names[message.sender_id] = message.author or chat_name
                    if self._remember(message.id) and not message.from_me:
                        collected.append(message)
                await self._go_back_to_chat_list()
            except Exception:
                self.logger.debug("Error processing chat %s", chat_name, exc_info=True)
                try:
                    await self._go_back_to_chat_list()
                except Exception:
                    self.logger.debug("Could not return to chat list", exc_info=True)

        return collected

    async def _get_unread_chats(self) -> list[dict[str, Any]]:
        """Find chats with an unread badge, trying each selector strategy."""
        assert self._page is not None

        rows: list[Any] = []
        for strategy_name, selector in UNREAD_STRATEGIES:
            try:
                rows = await self._page.query_selector_all(selector)
            except Exception:
                self.logger.debug("Unread strategy '%s' failed", strategy_name, exc_info=True)
                continue
            if rows:
                self.logger.debug("Unread strategy '%s': %d rows", strategy_name, len(rows))
                break

        unread_chats = []
        for row in rows:
            chat_name = await self._extract_chat_name_from_row(row)
            if chat_name:
                unread_chats.append({"element": row, "chat_name": chat_name})
        return unread_chats

    async def _extract_chat_name_from_row(self, row: Any) -> str:
        for sel in ('span[dir="auto"][title]', "span[title]", 'span[dir="auto"]'):
            try:
                el = await row.query_selector(sel)
                if el:
                    title = await el.get_attribute("title")
                    if title and title.strip():
                        return title.strip()
                    text = await el.inner_text()
                    if text and text.strip() and len(text.strip()) < 100:
                        return text.strip()
            except Exception:
                continue
        return ""

    async def _extract_messages_from_chat(self, chat_name: str) -> list[InboundMessage]:
        """Read the latest message bubbles of the open chat."""
        assert self._page is not None

        containers = await self._page.query_selector_all(SELECTORS["message_row"])
        messages = []
        for container in containers[-RECENT_MESSAGE_COUNT:]:
            try:
                data_id = await container.get_attribute("data-id") or ""
                parsed = parse_message_data_id(data_id)
                if parsed is None:
                    continue
                from_me, chat_id, participant = parsed

                text = ""
                for sel in TEXT_SELECTORS:
                    text_el = await container.query_selector(sel)
                    if text_el:
                        text = (await text_el.inner_text()).strip()
                        if text:
                            break

                author_el = await container.query_selector(SELECTORS["msg_author"])
                author = (await author_el.inner_text()).strip() if author_el else ""
                has_media = await container.query_selector(SELECTORS["media"]) is not None

                messages.append(InboundMessage(
                    id=data_id,
                    chat_id=chat_id,
                    sender_id=participant or chat_id,
                    body=text,
                    from_me=from_me,
                    has_media=has_media,
                    chat_name=chat_name,
                    author=author,
                ))
            except Exception:
                self.logger.debug("Failed to extract message from container", exc_info=True)

        self.logger.debug("Chat '%s': extracted %d messages", chat_name, len(messages))
        return messages

    async def _open_chat(self, chat_element: Any, chat_name: str = "") -> bool:
        assert self._page is not None
        try:
            await chat_element.click()
            await self._page.wait_for_selector(SELECTORS["compose_box"], timeout=5000)
            return True
        except Exception:
            self.logger.debug("Failed to open chat '%s'", chat_name, exc_info=True)
            return False

    async def _go_back_to_chat_list(self) -> None:
        assert self._page is not None
        back_btn = await self._page.query_selector(SELECTORS["back_button"])
        if back_btn:
            await back_btn.click()
            await asyncio.sleep(0.5)

    # ── Sending ─────────────────────────────────────────────────────

    async def _first_match(self, selectors: Sequence[str]) -> Any:
        assert self._page is not None
        for sel in selectors:
            try:
                el = await self._page.query_selector(sel)
            except Exception:
                self.logger.debug("Selector '%s' failed", sel, exc_info=True)
                continue
            if el:
                return el
        return None

    async def _open_chat_by_id(self, chat_id: str) -> None:
        """Bring a chat into view, by name when known, else by phone link."""
        assert self._page is not None

        chat_name = self._chat_names.get(chat_id)
        if chat_name:
            search = await self._page.query_selector(SELECTORS["search_box"])
            if search is None:
                raise SendError("Chat search box not found")
            await search.click()
            await search.fill(chat_name)
            await asyncio.sleep(1)
            await search.press("Enter")
        elif chat_id.endswith(CONTACT_SUFFIX):
            phone = chat_id.split("@", 1)[0]
            await self._page.goto(
                f"{WHATSAPP_WEB_URL}/send?phone={phone}",
                wait_until="domcontentloaded",
                timeout=60000,
            )
        else:
            raise SendError(f"Chat {chat_id} has not been seen by this session yet")

        try:
            await self._page.wait_for_selector(
                f'{SELECTORS["compose_box"]}, {SELECTORS["invalid_number_popup"]}',
                timeout=30000,
            )
        except Exception as exc:
            await self._save_screenshot("chat_not_opened")
            raise SendError(f"Chat {chat_id} did not open") from exc

        popup = await self._page.query_selector(SELECTORS["invalid_number_popup"])
        if popup:
            await popup.click()
            raise SendError(f"Invalid phone number: {chat_id}")

    async def _last_outgoing_id(self, chat_id: str) -> str:
        assert self._page is not None
        bubbles = await self._page.query_selector_all(SELECTORS["outgoing_message"])
        message_id = None
        if bubbles:
            message_id = await bubbles[-1].get_attribute("data-id")
        message_id = message_id or f"true_{chat_id}_{short_id()}"
        self._remember(message_id)
        return message_id

    async def send_message(self, chat_id: str, text: str) -> str:
        self._require_ready()
        async with self._page_lock:
            await self._open_chat_by_id(chat_id)
            compose = await self._first_match(COMPOSE_SELECTORS)
            if compose is None:
                raise SendError("Message input not found")
            await compose.click()
            await compose.fill(text)
            await compose.press("Enter")
            await asyncio.sleep(SEND_SETTLE_SECONDS)
            return await self._last_outgoing_id(chat_id)

    async def send_media(self, chat_id: str, path: Path, caption: str | None = None) -> str:
        self._require_ready()
        if not Path(path).is_file():
            raise SendError(f"File not found: {path}")

        async with self._page_lock:
            await self._open_chat_by_id(chat_id)

            attach = await self._first_match(ATTACH_SELECTORS)
            if attach is None:
                raise SendError("Attach button not found")
            await attach.click()
            await asyncio.sleep(1)

            file_input = await self._page.query_selector(SELECTORS["file_input"])
            if file_input is None:
                raise SendError("File input not found")
            await file_input.set_input_files(str(path))
            await asyncio.sleep(3)

            if caption:
                caption_box = await self._first_match(CAPTION_SELECTORS)
                if caption_box:
                    await caption_box.fill(caption)
                else:
                    self.logger.warning("Caption input not found, sending without caption")

            send_button = await self._first_match(SEND_BUTTON_SELECTORS)
            if send_button is None:
                await self._save_screenshot("media_send_failed")
                raise SendError("Send button not found after attaching file")
            await send_button.click()
            await asyncio.sleep(SEND_SETTLE_SECONDS)
            return await self._last_outgoing_id(chat_id)

    async def get_contact(self, contact_id: str) -> Contact:
        name = self._contact_names.get(contact_id) or self._chat_names.get(contact_id)
        if not name:
            raise LookupError(f"Unknown contact: {contact_id}")
        return Contact(id=contact_id, name=name)
