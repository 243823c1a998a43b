"""Automation sessions: the capability the lifecycle core drives."""

from whatsbot.session.base_session import BaseSession, SendError, SessionError
from whatsbot.session.factory import SessionFactory
from whatsbot.session.whatsapp_web import WhatsAppWebSession

__all__ = ["BaseSession", "SessionError", "SendError", "SessionFactory", "WhatsAppWebSession"]
