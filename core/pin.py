"""Step-up PIN authentication.

Per-user state machine::

    Unverified ──protected cmd──▶ PendingChallenge ──correct PIN──▶ Verified
        ▲                               │                              │
        └──────── session expires ──────┼──────────────────────────────┘
                                        └──max wrong PINs──▶ Locked ──lockout elapses──▶ Unverified

While locked, every attempt is rejected, correct or not.  A new protected
command arriving while a challenge is pending replaces the pending command.
"""

import hashlib
import hmac
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from core.config_store import SecurityConfig
from core.locks import KeyedLocks
from core.logger import MultisLogger

logger = MultisLogger.get_logger()


def hash_pin(pin: str) -> str:
    """One-way hash used for the stored PIN (SHA-256 hex digest)."""
    return hashlib.sha256(pin.strip().encode("utf-8")).hexdigest()


@dataclass
class PinState:
    verified_until: float = 0.0
    fail_count: int = 0
    locked_until: float = 0.0


@dataclass(frozen=True, slots=True)
class PendingChallenge:
    """The protected command waiting on a PIN."""
    command_text: str
    chat_id: str
    created_at: float = field(default_factory=time.time)


class PinOutcome(str, Enum):
    ACCEPTED = "accepted"
    WRONG = "wrong"
    LOCKED = "locked"
    NO_CHALLENGE = "no_challenge"


@dataclass(frozen=True, slots=True)
class PinVerification:
    outcome: PinOutcome
    remaining_attempts: int = 0
    locked_until: float = 0.0
    challenge: PendingChallenge | None = None


class PinManager:
    """Holds PIN sessions, failure counters, lockouts and pending challenges.

    Every mutation for a given user runs under that user's lock, so two
    concurrent wrong attempts can never both read a stale ``fail_count``.
    """

    def __init__(self, config: SecurityConfig, clock: Callable[[], float] = time.time) -> None:
        self.config = config
        self._clock = clock
        self._states: dict[str, PinState] = {}
        self._pending: dict[str, PendingChallenge] = {}
        self._locks = KeyedLocks()

    # ── queries ──────────────────────────────────────────────────────────

    @property
    def enabled(self) -> bool:
        return bool(self.config.pin_hash)

    def is_protected(self, command: str) -> bool:
        return self.enabled and command.lstrip("/") in self.config.pin_protected_commands

    def state(self, user_id: str) -> PinState:
        return self._states.setdefault(str(user_id), PinState())

    def is_locked(self, user_id: str) -> bool:
        state = self._states.get(str(user_id))
        if state is None or state.locked_until <= 0:
            return False
        if self._clock() >= state.locked_until:
            # Lockout elapsed: back to Unverified with a fresh counter.
            state.locked_until = 0.0
            state.fail_count = 0
            logger.info("PIN lockout expired", extra={"user_id": user_id})
            return False
        return True

    def locked_until(self, user_id: str) -> float:
        state = self._states.get(str(user_id))
        return state.locked_until if state else 0.0

    def is_verified(self, user_id: str) -> bool:
        state = self._states.get(str(user_id))
        return state is not None and not self.is_locked(user_id) and self._clock() < state.verified_until

    def has_pending(self, user_id: str) -> bool:
        return str(user_id) in self._pending

    def pending(self, user_id: str) -> PendingChallenge | None:
        return self._pending.get(str(user_id))

    # ── transitions ──────────────────────────────────────────────────────

    async def begin_challenge(self, user_id: str, challenge: PendingChallenge) -> PendingChallenge | None:
        """Record *challenge* for *user_id*; returns the challenge it replaced."""
        user_id = str(user_id)
        async with self._locks(user_id):
            replaced = self._pending.get(user_id)
            self._pending[user_id] = challenge
            logger.info(
                "PIN challenge issued",
                extra={"user_id": user_id, "chat_id": challenge.chat_id, "replaced": replaced is not None},
            )
            return replaced

    async def cancel(self, user_id: str) -> None:
        async with self._locks(str(user_id)):
            self._pending.pop(str(user_id), None)

    async def verify(self, user_id: str, pin: str) -> PinVerification:
        """Check *pin* against the stored hash and advance the state machine."""
        user_id = str(user_id)
        async with self._locks(user_id):
            challenge = self._pending.get(user_id)
            if challenge is None:
                return PinVerification(PinOutcome.NO_CHALLENGE)

            state = self.state(user_id)
            if self.is_locked(user_id):
                logger.warning("PIN attempt while locked", extra={"user_id": user_id})
                return PinVerification(PinOutcome.LOCKED, locked_until=state.locked_until)

            if hmac.compare_digest(hash_pin(pin), self.config.pin_hash or ""):
                now = self._clock()
                state.fail_count = 0
                state.verified_until = now + self.config.pin_timeout_hours * 3600
                del self._pending[user_id]
                logger.info("PIN accepted", extra={"user_id": user_id, "verified_until": state.verified_until})
                return PinVerification(PinOutcome.ACCEPTED, challenge=challenge)

            state.fail_count += 1
            remaining = max(self.config.pin_max_attempts - state.fail_count, 0)
            if remaining == 0:
                state.locked_until = self._clock() + self.config.pin_lockout_minutes * 60
                state.verified_until = 0.0
                del self._pending[user_id]
                logger.warning(
                    "PIN lockout engaged",
                    extra={"user_id": user_id, "fail_count": state.fail_count, "locked_until": state.locked_until},
                )
                return PinVerification(PinOutcome.LOCKED, locked_until=state.locked_until)

            logger.warning("Wrong PIN", extra={"user_id": user_id, "fail_count": state.fail_count, "remaining": remaining})
            return PinVerification(PinOutcome.WRONG, remaining_attempts=remaining)
