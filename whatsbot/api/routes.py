"""HTTP API for outbound sends and health checks.

Every error is a JSON envelope ``{"error": ..., "details": ...}``. Sends are
refused with 503 unless the lifecycle manager reports the session ready.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from whatsbot.config import BotConfig
from whatsbot.lifecycle.manager import LifecycleManager, NotReadyError
from whatsbot.session.events import CONTACT_SUFFIX, GROUP_SUFFIX

logger = logging.getLogger(__name__)

# Longest phone number E.164 allows; longer numeric ids are groups
MAX_PHONE_DIGITS = 15
NON_DIGITS = re.compile(r"\D")

NOT_READY_MESSAGE = "WhatsApp client not ready. Please scan QR code first."

ENDPOINTS = {
    "GET /health": "Check server and WhatsApp status",
    "POST /send": "Send WhatsApp message (body: { target, message })",
    "POST /send-group": "Send message to a group (body: { groupId, message })",
    "POST /send-pdf": "Send the configured PDF (body: { target, caption? })",
}


class ApiError(Exception):
    def __init__(self, status_code: int, error: str, details: str | None = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details


def format_chat_id(target: str) -> str:
    """Resolve a send target to a chat id.

    Raises:
        ApiError: 400 if the target holds no digits.

    Examples:
        >>> format_chat_id("+52 1 55 1234 5678")
        '5215512345678@c.us'
        >>> format_chat_id("120363025246125486")
        '120363025246125486@g.us'
    """
    target = target.strip()
    if "@" in target:
        return target
    if target.isdigit() and len(target) > MAX_PHONE_DIGITS:
        return f"{target}{GROUP_SUFFIX}"
    digits = NON_DIGITS.sub("", target)
    if not digits:
        raise ApiError(400, "Invalid target", f"No phone number in {target!r}")
    return f"{digits}{CONTACT_SUFFIX}"


def format_group_id(group_id: str) -> str:
    group_id = group_id.strip()
    if "@" in group_id:
        return group_id
    return f"{group_id}{GROUP_SUFFIX}"


def _error_response(status_code: int, error: str, details: str | None = None, **extra: Any) -> JSONResponse:
    body: dict[str, Any] = {"error": error}
    if details is not None:
        body["details"] = details
    body.update(extra)
    return JSONResponse(body, status_code=status_code)


async def _read_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ApiError(400, "Invalid JSON body", str(exc)) from exc
    if not isinstance(body, dict):
        raise ApiError(400, "Request body must be a JSON object")
    return body


def _require_fields(body: dict[str, Any], *names: str) -> list[str]:
    values = [body.get(name) for name in names]
    if not all(isinstance(value, str) and value.strip() for value in values):
        raise ApiError(400, f"Missing required fields: {' and '.join(names)}")
    return values


def create_app(manager: LifecycleManager, config: BotConfig) -> FastAPI:
    """Create the API app bound to ``manager``."""
    app = FastAPI(title="whatsbot", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.manager = manager
    app.state.config = config

    # ── Error envelopes ─────────────────────────────────────────────

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
        return _error_response(exc.status_code, exc.error, exc.details)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Unknown routes and wrong methods both list what exists
        if exc.status_code in (404, 405):
            return _error_response(404, "Not found", endpoints=ENDPOINTS)
        return _error_response(exc.status_code, str(exc.detail))

    def ensure_ready() -> None:
        if not manager.is_ready:
            raise ApiError(503, NOT_READY_MESSAGE)

    async def send_text(chat_id: str, message: str, failure: str) -> str:
        try:
            return await manager.send_message(chat_id, message)
        except NotReadyError as exc:
            raise ApiError(503, NOT_READY_MESSAGE) from exc
        except Exception as exc:
            logger.exception("Error sending message to %s", chat_id)
            raise ApiError(500, failure, str(exc)) from exc

    # ── Endpoints ───────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "whatsapp": "connected" if manager.is_ready else "disconnected",
        }

    @app.post("/send")
    async def send(request: Request):
        target, message = _require_fields(await _read_body(request), "target", "message")
        chat_id = format_chat_id(target)
        ensure_ready()
        message_id = await send_text(chat_id, message, "Failed to send message")
        return {"success": True, "messageId": message_id, "to": target, "message": message}

    @app.post("/send-group")
    async def send_group(request: Request):
        group_id, message = _require_fields(await _read_body(request), "groupId", "message")
        ensure_ready()
        message_id = await send_text(
            format_group_id(group_id), message, "Failed to send group message"
        )
        return {"success": True, "messageId": message_id, "to": group_id, "message": message}

    @app.post("/send-pdf")
    async def send_pdf(request: Request):
        body = await _read_body(request)
        (target,) = _require_fields(body, "target")
        chat_id = format_chat_id(target)
        caption = body.get("caption")
        if caption is not None and not isinstance(caption, str):
            raise ApiError(400, "caption must be a string")
        ensure_ready()

        pdf_path = Path(config.pdf_path)
        if not pdf_path.is_file():
            logger.error("PDF not found at %s", pdf_path)
            raise ApiError(500, "PDF file not found", str(pdf_path))

        try:
            message_id = await manager.send_media(chat_id, pdf_path, caption or None)
        except NotReadyError as exc:
            raise ApiError(503, NOT_READY_MESSAGE) from exc
        except Exception as exc:
            logger.exception("Error sending PDF to %s", chat_id)
            raise ApiError(500, "Failed to send PDF", str(exc)) from exc
        return {
            "success": True,
            "messageId": message_id,
            "to": target,
            "file": pdf_path.name,
            "caption": caption,
        }

    return app
