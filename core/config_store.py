"""Runtime settings — pydantic models plus a JSON-backed key/value store.

:class:`ConfigStore` exposes synchronous ``get``/``set`` over the top-level
fields of :class:`AppConfig`.  Every ``set`` validates the new value and, when
the store is file-backed, persists the whole document atomically.
"""

import json
import os
import secrets
import string
import tempfile
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from core.errors import StoreError
from core.logger import MultisLogger

logger = MultisLogger.get_logger()


# ── Settings models ──────────────────────────────────────────────────────────


class CommandPolicy(BaseModel):
    allowlist: list[str] = Field(default_factory=lambda: ["ls", "pwd", "cat", "head", "tail", "grep", "find", "wc", "git", "df", "du", "mv"])
    denylist: list[str] = Field(default_factory=lambda: ["rm", "sudo", "su", "dd", "mkfs", "shutdown", "reboot", "chmod", "chown"])
    require_confirmation: list[str] = Field(default_factory=lambda: ["mv", "git push"])


class PathPolicy(BaseModel):
    allowed: list[str] = Field(default_factory=lambda: ["~/Documents", "~/Projects"])
    denied: list[str] = Field(default_factory=lambda: ["/etc", "/var", "/usr", "/bin", "/sbin", "~/.ssh", "~/.multis"])


class GovernanceConfig(BaseModel):
    enabled: bool = True
    commands: CommandPolicy = Field(default_factory=CommandPolicy)
    paths: PathPolicy = Field(default_factory=PathPolicy)


class SecurityConfig(BaseModel):
    """Step-up auth and prompt-injection settings.

    ``pin_max_attempts`` and ``pin_lockout_minutes`` are tunable policy, the
    defaults (3 attempts, 15 minutes) are only a starting point.
    """

    pin_hash: Optional[str] = None
    pin_timeout_hours: float = 24.0
    pin_max_attempts: int = Field(default=3, ge=1)
    pin_lockout_minutes: float = Field(default=15.0, gt=0)
    pin_protected_commands: list[str] = Field(default_factory=lambda: ["exec", "read", "index"])
    prompt_injection_detection: bool = True


class EscalationConfig(BaseModel):
    escalate_keywords: list[str] = Field(default_factory=lambda: ["refund", "complaint", "lawyer", "speak to a human"])
    max_retries_before_escalate: int = Field(default=2, ge=1)


class BusinessConfig(BaseModel):
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    admin_chat: Optional[str] = None
    deflection_reply: str = "Thanks for your patience, I'm checking with the team and will get back to you shortly."
    rephrase_reply: str = "I couldn't find anything on that. Could you rephrase your question or add more detail?"


class LLMConfig(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_context_chunks: int = Field(default=5, ge=1)


class RetrievalConfig(BaseModel):
    """Chunking and ranking knobs.

    ``activation_decay`` is the ACT-R decay exponent ``d``; ``activation_weight``
    scales activation against text relevance.  Both are tunable.
    """

    chunk_size: int = Field(default=1000, ge=100)
    activation_decay: float = Field(default=0.5, gt=0)
    activation_weight: float = Field(default=0.1, ge=0)
    search_limit: int = Field(default=5, ge=1)


class AppConfig(BaseModel):
    pairing_code: str = Field(default_factory=lambda: generate_pairing_code())
    allowed_users: list[str] = Field(default_factory=list)
    owner_id: Optional[str] = None
    llm: LLMConfig = Field(default_factory=LLMConfig)
    governance: GovernanceConfig = Field(default_factory=GovernanceConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    business: BusinessConfig = Field(default_factory=BusinessConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)


def generate_pairing_code(length: int = 6) -> str:
    """Return a random upper-case alphanumeric pairing code."""
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


# ── Store ────────────────────────────────────────────────────────────────────


class ConfigStore:
    """Synchronous get/set over :class:`AppConfig`, optionally file-backed.

    ``ConfigStore()`` keeps everything in memory; ``ConfigStore.load(path)``
    reads (or initialises) a JSON document and writes back on every ``set``.
    """

    def __init__(self, config: Optional[AppConfig] = None, path: Optional[str] = None) -> None:
        self._config = config or AppConfig()
        self.path = path

    @classmethod
    def load(cls, path: str) -> "ConfigStore":
        """Load *path*, creating it with defaults when missing."""
        logger.info("Loading config", extra={"config_path": path})
        if not os.path.exists(path):
            store = cls(AppConfig(), path)
            store.save()
            logger.info("Created default config", extra={"config_path": path})
            return store
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as exc:
            logger.critical("Invalid JSON in config file", extra={"config_path": path, "error": str(exc)})
            raise ValueError(f"Invalid JSON in config file '{path}': {exc}")
        except OSError as exc:
            raise StoreError(f"cannot read config '{path}': {exc}") from exc
        try:
            config = AppConfig.model_validate(raw)
        except ValidationError as exc:
            logger.critical("Config failed validation", extra={"config_path": path, "error": str(exc)})
            raise ValueError(f"Invalid config in '{path}': {exc}")
        logger.info("Config loaded", extra={"config_path": path, "user_count": len(config.allowed_users)})
        return cls(config, path)

    @property
    def config(self) -> AppConfig:
        return self._config

    def get(self, key: str) -> Any:
        """Return the top-level setting *key* (raises ``KeyError`` if unknown)."""
        if key not in AppConfig.model_fields:
            raise KeyError(key)
        return getattr(self._config, key)

    def set(self, key: str, value: Any) -> None:
        """Validate and assign the top-level setting *key*, then persist."""
        self.update({key: value})

    def update(self, values: dict[str, Any]) -> None:
        """Assign several top-level settings with one validation and one write.

        If the write fails the in-memory config is left as it was.
        """
        unknown = [key for key in values if key not in AppConfig.model_fields]
        if unknown:
            raise KeyError(unknown[0])
        data = self._config.model_dump()
        for key, value in values.items():
            data[key] = value.model_dump() if isinstance(value, BaseModel) else value
        previous = self._config
        self._config = AppConfig.model_validate(data)
        try:
            self.save()
        except StoreError:
            self._config = previous
            raise
        logger.debug("Config updated", extra={"config_keys": sorted(values)})

    def save(self) -> None:
        """Write the config to disk atomically (no-op for in-memory stores)."""
        if not self.path:
            return
        dir_name = os.path.dirname(self.path) or "."
        try:
            os.makedirs(dir_name, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=dir_name, delete=False, suffix=".tmp", encoding="utf-8"
            ) as tmp:
                json.dump(self._config.model_dump(mode="json"), tmp, indent=2)
                tmp_path = tmp.name
            os.replace(tmp_path, self.path)
            logger.debug("Persisted config to disk", extra={"config_path": self.path})
        except OSError as exc:
            logger.error("Failed to persist config", extra={"config_path": self.path, "error": str(exc)})
            raise StoreError(f"cannot write config '{self.path}': {exc}") from exc
