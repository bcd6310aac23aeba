"""Message router — the single entry point for every inbound message.

Evaluation order for one message (all under that chat's lock, so replies in
a chat keep the order messages arrived while other chats run concurrently):

1. ``/start`` is always reachable.
2. Business traffic (non-command text) goes to :mod:`bot.business`.
3. Strangers are rejected.
4. Bare numeric text answers a pending PIN challenge; while locked it gets
   the lockout reply.
5. Attachments are indexed; other plain text is treated as ``/ask``.
6. Commands pass the owner-only gate, then the PIN gate, then run.

Handler errors (:class:`core.errors.MultisError`) become reply text; any
other exception is logged and answered generically, without touching other
chats.
"""

import time
from typing import Optional

import config
from core.access import Role
from core.audit import audit
from core.errors import AuthError, MultisError, PinError, ProviderError, StoreError
from core.logger import MultisLogger
from core.pin import PendingChallenge, PinOutcome
from core.state import BotState
from indexer.indexer import DocumentIndexer
from llm.client import LLMClient
from bot.business import handle_business
from bot.context import HandlerContext
from bot.handlers import handle_attachment
from bot.models import InboundMessage, Platform
from bot.registry import Command, parse_command, registry

logger = MultisLogger.get_logger()

GENERIC_ERROR = "Something went wrong, please try again."
NOT_PAIRED = "You are not paired. Send /start <pairing_code> to pair."
OWNER_ONLY = "Owner only. This command is restricted to the bot owner."


class MessageRouter:
    """Resolves role, applies the gates and dispatches to a handler."""

    def __init__(
        self,
        state: BotState,
        platform: Platform,
        indexer: DocumentIndexer,
        llm: Optional[LLMClient] = None,
        skills_dir: str | None = None,
    ) -> None:
        missing = registry.missing()
        if missing:
            raise RuntimeError(f"Commands without a handler: {', '.join(c.value for c in missing)}")
        self.state = state
        self.platform = platform
        self.indexer = indexer
        self.llm = llm
        self.skills_dir = skills_dir or config.SKILLS_DIR

    def _context(self, role: Role) -> HandlerContext:
        return HandlerContext(
            state=self.state,
            platform=self.platform,
            indexer=self.indexer,
            llm=self.llm,
            skills_dir=self.skills_dir,
            role=role,
        )

    async def handle(self, message: InboundMessage) -> Optional[str]:
        """Process *message* and send the reply (if any) to its chat."""
        async with self.state.chat_locks(message.chat_id):
            started = time.monotonic()
            try:
                reply = await self._route(message)
            except MultisError as exc:
                reply = exc.user_message
                if isinstance(exc, (ProviderError, StoreError)):
                    audit("error", kind=type(exc).__name__, user_id=message.sender_id, chat_id=message.chat_id, detail=exc.detail)
            except Exception:
                logger.exception("Unhandled error while handling message", extra={"chat_id": message.chat_id, "user_id": message.sender_id})
                reply = GENERIC_ERROR

            if reply:
                await self.platform.send(message.chat_id, reply)
            logger.debug(
                "Message handled",
                extra={"chat_id": message.chat_id, "user_id": message.sender_id, "elapsed_ms": round((time.monotonic() - started) * 1000, 1)},
            )
            return reply

    async def _route(self, message: InboundMessage) -> Optional[str]:
        text = (message.text or "").strip()
        sender = message.sender_id
        role = self.state.access.resolve_role(sender)
        ctx = self._context(role)
        name, args = parse_command(text)

        if name == Command.START.value:
            return await registry.get(Command.START).handler(ctx, message, args)

        if message.route_as == "business" and name is None and message.attachment is None:
            if not text:
                return None
            return await handle_business(ctx, message)

        if role is Role.STRANGER:
            audit("message", user_id=sender, chat_id=message.chat_id, status="unpaired")
            raise AuthError(NOT_PAIRED)

        if name is None and text.isdigit():
            pins = self.state.pins
            if pins.enabled and pins.is_locked(sender):
                # Digits typed during lockout are PIN attempts, never questions.
                audit("pin", user_id=sender, outcome=PinOutcome.LOCKED.value)
                raise PinError(self._locked_message(sender))
            if pins.has_pending(sender):
                return await self._answer_pin(ctx, message, text)

        if message.attachment is not None:
            return await handle_attachment(ctx, message)

        if name is None:
            if not text:
                return None
            return await self._dispatch(ctx, message, Command.ASK, text)

        command = Command.lookup(name)
        if command is None:
            return f"Unknown command: /{name}. Send /help for the list."
        return await self._dispatch(ctx, message, command, args)

    async def _dispatch(self, ctx: HandlerContext, message: InboundMessage, command: Command, args: str) -> Optional[str]:
        entry = registry.get(command)
        sender = message.sender_id

        if entry.owner_only and not ctx.is_owner:
            audit("denied", user_id=sender, chat_id=message.chat_id, command=command.value, reason="owner_only")
            raise AuthError(OWNER_ONLY)

        pins = self.state.pins
        if pins.is_protected(command.value):
            if pins.is_locked(sender):
                audit("pin", user_id=sender, command=command.value, outcome="locked")
                raise PinError(self._locked_message(sender))
            if not pins.is_verified(sender):
                challenge = PendingChallenge(
                    command_text=f"/{command.value} {args}".strip(),
                    chat_id=message.chat_id,
                    created_at=self.state.clock(),
                )
                replaced = await pins.begin_challenge(sender, challenge)
                audit(
                    "pin_challenge",
                    user_id=sender,
                    command=command.value,
                    replaced=replaced.command_text if replaced else None,
                )
                return f"Enter your PIN to run /{command.value}."

        logger.info("Dispatching command", extra={"user_id": sender, "chat_id": message.chat_id, "command": command.value})
        return await entry.handler(ctx, message, args)

    async def _answer_pin(self, ctx: HandlerContext, message: InboundMessage, pin: str) -> Optional[str]:
        sender = message.sender_id
        result = await self.state.pins.verify(sender, pin)
        audit("pin", user_id=sender, outcome=result.outcome.value, remaining=result.remaining_attempts)

        if result.outcome is PinOutcome.ACCEPTED:
            await self.platform.send(message.chat_id, "PIN accepted.")
            name, args = parse_command(result.challenge.command_text)
            command = Command.lookup(name or "")
            if command is None:
                return None
            return await self._dispatch(ctx, message, command, args)
        if result.outcome is PinOutcome.WRONG:
            raise PinError(f"Wrong PIN. {result.remaining_attempts} attempts remaining.")
        if result.outcome is PinOutcome.LOCKED:
            raise PinError(self._locked_message(sender))
        # No challenge after all: treat the digits as an ordinary question.
        return await self._dispatch(ctx, message, Command.ASK, pin)

    def _locked_message(self, user_id: str) -> str:
        remaining = max(self.state.pins.locked_until(user_id) - self.state.clock(), 0)
        minutes = max(int(remaining // 60) + (1 if remaining % 60 else 0), 1)
        return f"Account locked after too many wrong PINs. Try again in {minutes} min."
