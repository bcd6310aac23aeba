"""Business (customer-facing) flow with human escalation.

Order of evaluation for one customer message:

1. escalate-keyword match → immediate escalation (reason ``keyword``)
2. scoped retrieval; zero hits → count a miss, ask to rephrase, and escalate
   (reason ``no results``) once the retry limit is reached
3. hits → LLM answer, retry counter cleared
"""

from core.audit import audit
from core.logger import MultisLogger
from bot.context import HandlerContext, flag_injection, generate_answer, search
from bot.models import InboundMessage

logger = MultisLogger.get_logger()


def admin_chat(ctx: HandlerContext) -> str | None:
    """Escalation target: ``business.admin_chat``, else the owner's chat."""
    return ctx.state.config.business.admin_chat or ctx.state.access.owner_id


async def escalate(ctx: HandlerContext, message: InboundMessage, reason: str, detail: str | None = None) -> str:
    """Notify the admin chat and return the deflection reply for the customer."""
    tracker = ctx.state.escalation
    await tracker.clear(message.chat_id)

    notice = [
        "[Escalation]",
        f"Reason: {reason}" + (f" ({detail})" if detail else ""),
        f"Chat: {message.chat_id}",
        f"From: {message.sender_name or message.sender_id}",
        f"Message: {message.text}",
    ]
    target = admin_chat(ctx)
    if target is None:
        logger.warning("No admin chat configured for escalation", extra={"chat_id": message.chat_id, "reason": reason})
    else:
        await ctx.platform.send(target, "\n".join(notice))

    audit("escalation", chat_id=message.chat_id, user_id=message.sender_id, reason=reason, detail=detail, admin_chat=target)
    return ctx.state.config.business.deflection_reply


async def handle_business(ctx: HandlerContext, message: InboundMessage) -> str:
    text = message.text.strip()
    business = ctx.state.config.business
    tracker = ctx.state.escalation

    flag_injection(ctx, message, text)

    keyword = tracker.match_keyword(text)
    if keyword is not None:
        return await escalate(ctx, message, "keyword", keyword)

    results = await search(ctx, message, text)
    if not results:
        if await tracker.record_miss(message.chat_id):
            return await escalate(ctx, message, "no results")
        logger.info("No results, asking to rephrase", extra={"chat_id": message.chat_id, "retry_count": tracker.count(message.chat_id)})
        return business.rephrase_reply

    answer = await generate_answer(ctx, text, results)
    await tracker.clear(message.chat_id)
    return answer
