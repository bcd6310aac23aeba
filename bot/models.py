"""Inbound message model and the outbound platform capability.

The router never sees platform-specific payloads: adapters (or tests) build
an :class:`InboundMessage`, and replies leave through :class:`Platform`.
"""

from __future__ import annotations

from typing import Literal, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from core.identity import get_identity


@runtime_checkable
class Platform(Protocol):
    """Outbound message transport."""

    async def send(self, chat_id: str, text: str) -> None: ...


class InboundMessage(BaseModel):
    """One message received from any chat platform.

    ``route_as`` selects the personal assistant flow or the business
    (customer-facing) flow.  ``attachment`` carries the raw bytes of an
    uploaded document, named by ``attachment_name``.
    """

    chat_id: str
    sender_id: str
    text: str = ""
    sender_name: Optional[str] = None
    route_as: Literal["personal", "business"] = "personal"
    attachment: Optional[bytes] = Field(default=None, repr=False)
    attachment_name: Optional[str] = None

    @classmethod
    def from_update(cls, update: dict) -> Optional["InboundMessage"]:
        """Build a message from a raw update dict, or ``None`` without identity."""
        identity = get_identity(update)
        if identity is None:
            return None
        sender_id, chat_id = identity

        inner = update.get("message") or update.get("edited_message") or update.get("channel_post") or {}
        sender = inner.get("sender_chat") or inner.get("from") or {}
        text = update.get("text")
        if text is None:
            text = inner.get("text") or inner.get("caption") or ""
        name = update.get("sender_name") or sender.get("username") or sender.get("first_name") or sender.get("title")

        return cls(
            chat_id=chat_id,
            sender_id=sender_id,
            text=text,
            sender_name=name,
            route_as=update.get("route_as", "personal"),
            attachment=update.get("attachment"),
            attachment_name=update.get("attachment_name"),
        )
