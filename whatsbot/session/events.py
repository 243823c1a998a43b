"""Events and value types emitted by an automation session."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

# Chat id suffixes used by WhatsApp
CONTACT_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"


@dataclass(frozen=True)
class InboundMessage:
    """A message observed in a chat."""

    id: str
    chat_id: str
    sender_id: str
    body: str
    from_me: bool = False
    has_media: bool = False
    chat_name: str = ""
    author: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class Contact:
    id: str
    name: str = ""
    pushname: str = ""

    @property
    def display_name(self) -> str:
        return self.pushname or self.name or "Sin nombre"


@dataclass(frozen=True)
class QrReceived:
    code: str


@dataclass(frozen=True)
class Authenticated:
    pass


@dataclass(frozen=True)
class AuthFailure:
    reason: str


@dataclass(frozen=True)
class Ready:
    pass


@dataclass(frozen=True)
class Disconnected:
    reason: str


@dataclass(frozen=True)
class MessageReceived:
    message: InboundMessage


@dataclass(frozen=True)
class MessageAck:
    message_id: str
    ack: int


SessionEvent = (
    QrReceived
    | Authenticated
    | AuthFailure
    | Ready
    | Disconnected
    | MessageReceived
    | MessageAck
)
