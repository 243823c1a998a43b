"""Abstract base class for automation sessions."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from pathlib import Path

from whatsbot.session.events import Contact, InboundMessage, SessionEvent

EventListener = Callable[[SessionEvent], Awaitable[None]]


class SessionError(RuntimeError):
    """Raised when a session operation cannot be carried out."""


class SendError(SessionError):
    """Raised when a message could not be delivered to a chat."""


class BaseSession(ABC):
    """Base class for sessions that talk to a messaging platform.

    A session is created uninitialized, initialized once, and destroyed once.
    Lifecycle changes and inbound messages are published to subscribed
    listeners as ``SessionEvent`` values.

    Subclasses must implement:
        - initialize() -> returns once the session is ready
        - destroy() -> releases every resource held by the session
        - send_message(chat_id, text) -> id of the sent message
        - send_media(chat_id, path, caption) -> id of the sent message
        - get_contact(contact_id) -> Contact
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                self.logger.exception("Listener failed on %s", type(event).__name__)

    @abstractmethod
    async def initialize(self) -> None:
        """Start the session. Returns once the platform reports ready."""

    @abstractmethod
    async def destroy(self) -> None:
        """Tear the session down. Safe to call more than once."""

    @abstractmethod
    async def send_message(self, chat_id: str, text: str) -> str:
        """Send a text message and return its id."""

    @abstractmethod
    async def send_media(self, chat_id: str, path: Path, caption: str | None = None) -> str:
        """Send a local file as an attachment and return the message id."""

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Contact:
        """Resolve a contact. Raises LookupError when it is unknown."""

    async def reply(self, message: InboundMessage, text: str) -> str:
        """Answer a message in the chat it came from."""
        return await self.send_message(message.chat_id, text)
