"""Chat application layer — message routing, command handlers, business flow.

This package may import from ``core/``, ``indexer/``, ``llm/``, ``skills/``
and ``config`` only.  It knows nothing about any particular chat platform:
inbound traffic arrives as :class:`~bot.models.InboundMessage` and replies
leave through a :class:`~bot.models.Platform`.
"""

from bot.business import handle_business
from bot.context import HandlerContext
from bot.handlers import (
    handle_ask,
    handle_exec,
    handle_help,
    handle_index,
    handle_read,
    handle_search,
    handle_skills,
    handle_start,
    handle_status,
    handle_unpair,
)
from bot.models import InboundMessage, Platform
from bot.registry import Command, registry
from bot.router import MessageRouter

__all__ = [
    # Router
    "MessageRouter",
    "HandlerContext",
    "InboundMessage",
    "Platform",
    "Command",
    "registry",
    # Command handlers
    "handle_start",
    "handle_status",
    "handle_unpair",
    "handle_exec",
    "handle_read",
    "handle_index",
    "handle_skills",
    "handle_help",
    "handle_ask",
    "handle_search",
    # Business flow
    "handle_business",
]
