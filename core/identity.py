from core.logger import MultisLogger

logger = MultisLogger.get_logger()


def get_identity(update: dict) -> tuple[str, str] | None:
    """Extract ``(sender_id, chat_id)`` from a raw platform update dict.

    Understands both the flat shape (``sender_id``/``chat_id``) and the
    Telegram-style nested shape (``message.from.id``/``message.chat.id``,
    with ``sender_chat`` taking priority for anonymous admins and channels).
    Ids are normalised to strings.
    """
    if "sender_id" in update and "chat_id" in update:
        return str(update["sender_id"]), str(update["chat_id"])

    message = (
        update.get("message")
        or update.get("edited_message")
        or update.get("channel_post")
        or update.get("edited_channel_post")
    )
    if not message:
        logger.debug("No message object found in update", extra={"update_id": update.get("update_id")})
        return None

    chat_id = (message.get("chat") or {}).get("id")
    sender = message.get("sender_chat") or message.get("from")
    if not sender or sender.get("id") is None or chat_id is None:
        logger.warning("Could not resolve identity from update", extra={"update_id": update.get("update_id")})
        return None

    logger.debug("Resolved identity", extra={"sender_id": sender["id"], "chat_id": chat_id})
    return str(sender["id"]), str(chat_id)
