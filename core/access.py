import asyncio
from dataclasses import dataclass
from enum import Enum

from core.config_store import ConfigStore
from core.logger import MultisLogger

logger = MultisLogger.get_logger()


class Role(str, Enum):
    OWNER = "owner"
    PAIRED = "paired"
    STRANGER = "stranger"


class PairStatus(str, Enum):
    OWNER = "owner"
    PAIRED = "paired"
    ALREADY_PAIRED = "already_paired"
    INVALID_CODE = "invalid_code"


@dataclass(frozen=True, slots=True)
class PairResult:
    status: PairStatus
    role: Role


class AccessControl:
    """Pairing and role resolution backed by the :class:`ConfigStore`.

    The allowed-users list and owner id are the only state touched here; every
    mutation happens under one :class:`asyncio.Lock` so two concurrent
    ``/start`` messages cannot both become owner.
    """

    def __init__(self, store: ConfigStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()
        logger.info(
            "Initialising access control",
            extra={"user_count": len(store.config.allowed_users), "has_owner": store.config.owner_id is not None},
        )

    @property
    def owner_id(self) -> str | None:
        return self._store.get("owner_id")

    @property
    def allowed_users(self) -> list[str]:
        return list(self._store.get("allowed_users"))

    def is_paired(self, user_id: str) -> bool:
        return str(user_id) in self._store.get("allowed_users")

    def resolve_role(self, user_id: str) -> Role:
        """Return the role for *user_id*: owner, paired user, or stranger."""
        user_id = str(user_id)
        if not self.is_paired(user_id):
            return Role.STRANGER
        if self.owner_id is not None and self.owner_id == user_id:
            return Role.OWNER
        return Role.PAIRED

    async def pair(self, user_id: str, code: str) -> PairResult:
        """Pair *user_id* when *code* matches the configured pairing code.

        The comparison is case-insensitive.  The first successful pairing while
        no owner is set makes that user the owner.
        """
        user_id = str(user_id)
        async with self._lock:
            if self.is_paired(user_id):
                return PairResult(PairStatus.ALREADY_PAIRED, self.resolve_role(user_id))

            expected = self._store.get("pairing_code") or ""
            if not code or code.strip().upper() != expected.strip().upper():
                logger.warning("Invalid pairing code", extra={"user_id": user_id})
                return PairResult(PairStatus.INVALID_CODE, Role.STRANGER)

            changes: dict = {"allowed_users": self.allowed_users + [user_id]}
            if self.owner_id is None:
                changes["owner_id"] = user_id
            self._store.update(changes)
            if "owner_id" in changes:
                logger.info("User paired as owner", extra={"user_id": user_id})
                return PairResult(PairStatus.OWNER, Role.OWNER)

            logger.info("User paired", extra={"user_id": user_id})
            return PairResult(PairStatus.PAIRED, Role.PAIRED)

    async def unpair(self, user_id: str) -> bool:
        """Remove *user_id* from the allowed users.  Returns ``False`` if absent.

        When the owner unpairs the owner slot is released, so the next
        successful pairing claims it.
        """
        user_id = str(user_id)
        async with self._lock:
            if not self.is_paired(user_id):
                return False
            changes: dict = {"allowed_users": [u for u in self.allowed_users if u != user_id]}
            was_owner = self.owner_id == user_id
            if was_owner:
                changes["owner_id"] = None
            self._store.update(changes)
            if was_owner:
                logger.info("Owner unpaired, owner slot released", extra={"user_id": user_id})
            else:
                logger.info("User unpaired", extra={"user_id": user_id})
            return True
