"""HTTP API gateway."""

from whatsbot.api.routes import create_app, format_chat_id, format_group_id

__all__ = ["create_app", "format_chat_id", "format_group_id"]
