"""Chat channel adapter contract.

The dispatcher only needs two things from a chat transport:

- ``send(recipient_id, text)`` for outbound delivery, raising ``SendError``
  on failure;
- a stream of ``InboundMessage`` events, fed into the dispatcher's inbound
  queue by the transport's webhook/poller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from trip_dispatcher.errors import SendError


@dataclass(frozen=True)
class InboundMessage:
    """A text message received from a chat sender.

    Attributes
    ----------
    sender_id:
        The channel's identifier for the sender (bound onto trips).
    body:
        Raw message text as received.
    sender_phone:
        Phone number carried by the sender identifier, or ``None`` when the
        identifier is opaque and cannot be matched against stored phones.
    """

    sender_id: str
    body: str
    sender_phone: str | None = None

    @property
    def text(self) -> str:
        """Trimmed, lower-cased text used for option and code matching."""
        return self.body.strip().lower()


@runtime_checkable
class ChatChannel(Protocol):
    async def send(self, recipient_id: str, text: str) -> None:
        """Deliver *text* to *recipient_id*; raise ``SendError`` on failure."""
        ...


@dataclass
class SentMessage:
    recipient_id: str
    text: str


@dataclass
class RecordingChannel:
    """In-memory channel that records every send.

    Used by tests and by ``--dry-run`` style invocations.  Recipients listed
    in ``failing_recipients`` raise ``SendError`` instead of being recorded.
    """

    sent: list[SentMessage] = field(default_factory=list)
    failing_recipients: set[str] = field(default_factory=set)

    async def send(self, recipient_id: str, text: str) -> None:
        if recipient_id in self.failing_recipients:
            raise SendError(f"delivery to {recipient_id} failed", recipient_id=recipient_id)
        self.sent.append(SentMessage(recipient_id=recipient_id, text=text))

    def texts_to(self, recipient_id: str) -> list[str]:
        return [m.text for m in self.sent if m.recipient_id == recipient_id]
