"""Exception hierarchy for the multis core.

Every error carries a ``user_message``, the text the router replies with,
so a failing handler never has to format its own reply.
"""

from typing import Optional


class MultisError(Exception):
    """Base exception for every failure that ends up as a chat reply.

    Attributes:
        user_message: Human-readable reply text for the sender.
    """

    def __init__(self, user_message: str) -> None:
        self.user_message = user_message
        super().__init__(user_message)


class AuthError(MultisError):
    """Sender is unpaired, not the owner, or otherwise not authorised."""


class GovernanceDenied(MultisError):
    """A command or path was rejected by the governance policy.

    Attributes:
        reason: Policy reason, e.g. ``"Command 'rm' is explicitly denied"``.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Denied: {reason}")


class ConfirmationRequired(MultisError):
    """Soft block: the command is allowed but needs an explicit confirmation."""

    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(
            f'Command "{command}" requires confirmation.\n'
            "This feature is coming in a future update."
        )


class PinError(MultisError):
    """Wrong PIN or locked account."""


class ProviderError(MultisError):
    """LLM provider unavailable, timed out, or misconfigured."""

    def __init__(self, detail: str, user_message: Optional[str] = None) -> None:
        self.detail = detail
        super().__init__(user_message or f"LLM error: {detail}")


class StoreError(MultisError):
    """Persistence I/O failure in the chunk store or config store."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__("Storage error, please try again later.")
