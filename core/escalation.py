from core.config_store import EscalationConfig
from core.locks import KeyedLocks
from core.logger import MultisLogger

logger = MultisLogger.get_logger()


class EscalationTracker:
    """Per-chat retry counters and keyword-triggered human handoff.

    A chat has an entry only while retries are outstanding; a successful
    answer or an escalation removes it.
    """

    def __init__(self, config: EscalationConfig) -> None:
        self.config = config
        self.retries: dict[str, int] = {}
        self._locks = KeyedLocks()

    def match_keyword(self, text: str) -> str | None:
        """Return the first escalate keyword found in *text* (case-insensitive)."""
        lowered = (text or "").lower()
        for keyword in self.config.escalate_keywords:
            if keyword and keyword.lower() in lowered:
                return keyword
        return None

    def count(self, chat_id: str) -> int:
        return self.retries.get(str(chat_id), 0)

    async def record_miss(self, chat_id: str) -> bool:
        """Count a zero-result query; return True when the chat must escalate.

        Reaching ``max_retries_before_escalate`` clears the counter.
        """
        chat_id = str(chat_id)
        async with self._locks(chat_id):
            count = self.retries.get(chat_id, 0) + 1
            if count >= self.config.max_retries_before_escalate:
                self.retries.pop(chat_id, None)
                logger.info("Retry limit reached", extra={"chat_id": chat_id, "retry_count": count})
                return True
            self.retries[chat_id] = count
            logger.debug("Retry recorded", extra={"chat_id": chat_id, "retry_count": count})
            return False

    async def clear(self, chat_id: str) -> None:
        chat_id = str(chat_id)
        async with self._locks(chat_id):
            self.retries.pop(chat_id, None)
