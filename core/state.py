"""Process-wide mutable state, owned by one explicitly constructed object.

Handlers never reach for module globals: the router hands them the
:class:`BotState` it was built with.
"""

import time
from typing import Callable

from core.access import AccessControl
from core.config_store import AppConfig, ConfigStore
from core.escalation import EscalationTracker
from core.governance import GovernancePolicy
from core.locks import KeyedLocks
from core.logger import MultisLogger
from core.pin import PinManager, hash_pin

logger = MultisLogger.get_logger()


class BotState:
    """Owner of the config store, access control, PIN sessions, escalation
    counters, governance policy and per-chat ordering locks.
    """

    def __init__(self, store: ConfigStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.clock = clock
        self.access = AccessControl(store)
        self.pins = PinManager(store.config.security, clock=clock)
        self.escalation = EscalationTracker(store.config.business.escalation)
        self.governance = GovernancePolicy(store.config.governance)
        self.chat_locks = KeyedLocks()

    @classmethod
    def load(cls, config_path: str, clock: Callable[[], float] = time.time) -> "BotState":
        """Build state from the JSON config at *config_path*."""
        return cls(ConfigStore.load(config_path), clock=clock)

    @property
    def config(self) -> AppConfig:
        return self.store.config

    def reload_policies(self) -> None:
        """Rebind policy holders after a settings change through the store."""
        self.pins.config = self.config.security
        self.escalation.config = self.config.business.escalation
        self.governance.config = self.config.governance
        logger.info("Policies reloaded from config")

    def set_pin(self, pin: str) -> None:
        """Store the hash of a new owner PIN (plain PIN is never persisted)."""
        security = self.config.security.model_copy(update={"pin_hash": hash_pin(pin)})
        self.store.set("security", security)
        self.reload_policies()
