"""Core access-control engine — roles, PIN step-up, governance, escalation, logging.

This package is platform-agnostic. It must NEVER import from ``bot/``.
"""

from core.access import AccessControl, Role
from core.config_store import AppConfig, ConfigStore
from core.governance import GovernancePolicy, is_command_allowed, is_path_allowed
from core.identity import get_identity
from core.logger import MultisLogger
from core.pin import PinManager, hash_pin
from core.state import BotState

__all__ = [
    "AccessControl",
    "Role",
    "AppConfig",
    "ConfigStore",
    "GovernancePolicy",
    "is_command_allowed",
    "is_path_allowed",
    "get_identity",
    "MultisLogger",
    "PinManager",
    "hash_pin",
    "BotState",
]
