"""Command registry — single source of truth for command → handler mapping.

Design:
- ``Command`` is the closed set of slash-commands the bot understands.
  Anything else is an unknown command, never a dynamic lookup.
- ``CommandRegistry`` is a singleton that stores ``CommandEntry`` metadata
  and exposes lookup / iteration helpers.
- ``@register`` is a decorator applied in ``handlers.py`` to bind a
  function to a command, its owner-only flag and a human-readable
  description, all in **one** place, once, at import time.
- Every handler has the same asynchronous shape: it returns the reply text
  or raises a :class:`core.errors.MultisError`.
"""

from __future__ import annotations

import dataclasses
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from bot.context import HandlerContext
    from bot.models import InboundMessage


class Command(str, Enum):
    START = "start"
    STATUS = "status"
    UNPAIR = "unpair"
    EXEC = "exec"
    READ = "read"
    INDEX = "index"
    SKILLS = "skills"
    HELP = "help"
    ASK = "ask"
    SEARCH = "search"

    @classmethod
    def lookup(cls, name: str) -> Optional["Command"]:
        try:
            return cls(name.lower())
        except ValueError:
            return None


# ── Handler protocol ─────────────────────────────────────────────────────────

@runtime_checkable
class CommandHandler(Protocol):
    """Async handler: context + message + argument string → reply text."""
    async def __call__(self, ctx: HandlerContext, message: InboundMessage, args: str) -> Optional[str]: ...  # noqa: E704


# ── Registry entry ───────────────────────────────────────────────────────────

@dataclasses.dataclass(frozen=True, slots=True)
class CommandEntry:
    """Metadata for a single registered slash-command."""
    command: Command          # e.g. Command.EXEC
    description: str          # shown in /help
    usage: str                # e.g. "/exec <cmd>"
    handler: CommandHandler   # the async callable
    owner_only: bool = False  # non-owners get "Owner only"


def parse_command(text: str) -> tuple[Optional[str], str]:
    """Split ``"/name@bot args"`` into ``("name", "args")``.

    Returns ``(None, text)`` for text that is not a slash-command.
    """
    text = (text or "").strip()
    if not text.startswith("/") or len(text) < 2:
        return None, text
    head, _, rest = text.partition(" ")
    name = head[1:].split("@")[0].lower()
    return name, rest.strip()


# ── Registry ─────────────────────────────────────────────────────────────────

class CommandRegistry:
    """Singleton command registry.

    Usage::

        @registry.register(Command.STATUS, description="Bot info")
        async def handle_status(ctx, message, args): ...

        # In the router:
        entry = registry.get(Command.STATUS)
        reply = await entry.handler(ctx, message, args)
    """

    _instance: CommandRegistry | None = None
    _entries: dict[Command, CommandEntry]

    def __new__(cls) -> CommandRegistry:
        if cls._instance is None:
            inst = super().__new__(cls)
            inst._entries = {}
            cls._instance = inst
        return cls._instance

    # ── decorator ────────────────────────────────────────────────────────

    def register(
        self,
        command: Command,
        *,
        description: str,
        usage: str | None = None,
        owner_only: bool = False,
    ) -> Callable[[CommandHandler], CommandHandler]:
        """Decorator that registers *handler* for *command*.

        Example::

            @registry.register(Command.EXEC, description="Run a shell command",
                               usage="/exec <cmd>", owner_only=True)
            async def handle_exec(ctx, message, args): ...
        """
        def decorator(func: CommandHandler) -> CommandHandler:
            self._entries[command] = CommandEntry(
                command=command,
                description=description,
                usage=usage or f"/{command.value}",
                handler=func,
                owner_only=owner_only,
            )
            return func
        return decorator

    # ── lookup helpers ───────────────────────────────────────────────────

    def get(self, command: Command) -> CommandEntry | None:
        """Return the entry for *command*, or ``None``."""
        return self._entries.get(command)

    def entries(self) -> dict[Command, CommandEntry]:
        """Return a *read-only* view of all registered commands, in enum order."""
        return {c: self._entries[c] for c in Command if c in self._entries}

    def missing(self) -> list[Command]:
        """Commands of the closed set that have no handler bound."""
        return [c for c in Command if c not in self._entries]


# Module-level singleton, import this everywhere.
registry = CommandRegistry()
