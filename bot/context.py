"""Per-message handler context and the shared retrieval → LLM pipeline."""

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence

from core.access import Role
from core.audit import audit
from core.errors import ProviderError
from core.injection import detect_injection
from core.logger import MultisLogger
from core.state import BotState
from indexer.chunk import KB_SCOPE, SearchResult, user_scope
from indexer.indexer import DocumentIndexer
from llm.client import LLMClient, format_context
from bot.models import InboundMessage, Platform

logger = MultisLogger.get_logger()


@dataclass
class HandlerContext:
    """Everything a handler may touch while answering one message."""
    state: BotState
    platform: Platform
    indexer: DocumentIndexer
    llm: Optional[LLMClient]
    skills_dir: str
    role: Role

    @property
    def is_owner(self) -> bool:
        return self.role is Role.OWNER


def search_scopes(ctx: HandlerContext, message: InboundMessage) -> Optional[list[str]]:
    """Scope set for a search: unrestricted for the owner, else ``kb`` + own chat."""
    if ctx.is_owner:
        return None
    return [KB_SCOPE, user_scope(message.chat_id)]


def flag_injection(ctx: HandlerContext, message: InboundMessage, text: str) -> bool:
    """Run the injection heuristic for non-owner senders and audit a hit.

    Never blocks: the message is answered either way.
    """
    if ctx.is_owner or not ctx.state.config.security.prompt_injection_detection:
        return False
    result = detect_injection(text)
    if result.flagged:
        audit(
            "injection_flagged",
            user_id=message.sender_id,
            chat_id=message.chat_id,
            patterns=result.patterns,
            text=text[:200],
        )
    return result.flagged


async def search(ctx: HandlerContext, message: InboundMessage, query: str) -> list[SearchResult]:
    scopes = search_scopes(ctx, message)
    limit = ctx.state.config.retrieval.search_limit
    results = await ctx.indexer.search(query, limit, scopes)
    logger.info(
        "Scoped search",
        extra={"chat_id": message.chat_id, "scopes": scopes, "result_count": len(results)},
    )
    return results


def require_llm(ctx: HandlerContext) -> LLMClient:
    if ctx.llm is None:
        raise ProviderError("not configured", user_message="LLM not configured. Set llm.provider in the config.")
    return ctx.llm


async def generate_answer(ctx: HandlerContext, question: str, results: Sequence[SearchResult]) -> str:
    """Ask the LLM with *results* as context, bounded by ``llm.timeout_seconds``.

    Chunks that fed a successful answer get an access event each.
    """
    llm = require_llm(ctx)
    timeout = ctx.state.config.llm.timeout_seconds
    results = list(results)[: ctx.state.config.llm.max_context_chunks]
    try:
        answer = await asyncio.wait_for(llm.generate(question, format_context(results)), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ProviderError(f"timed out after {timeout:g}s") from exc
    if results:
        await ctx.indexer.record_access([r.chunk_id for r in results], question)
    return answer or "(empty answer)"
