"""Command handlers for the multis bot.

Each public function handles a single slash-command and is invoked by the
router in :mod:`bot.router` through the registry.  A handler returns the
reply text or raises a :class:`core.errors.MultisError`; role and PIN gates
have already run by the time it is called.
"""

import os

from config import VERSION
from core.access import PairStatus
from core.audit import audit
from core.errors import GovernanceDenied, MultisError
from core.logger import MultisLogger
from indexer.chunk import ADMIN_SCOPE, KB_SCOPE, user_scope
from skills.executor import exec_command, list_skills, read_path
from bot.context import HandlerContext, flag_injection, generate_answer, require_llm, search
from bot.models import InboundMessage
from bot.registry import Command, registry

logger = MultisLogger.get_logger()

SNIPPET_CHARS = 200


@registry.register(Command.START, description="Pair with the bot", usage="/start <code>")
async def handle_start(ctx: HandlerContext, message: InboundMessage, args: str) -> str:
    """Handle /start — pair the sender; the first pairing claims the owner role."""
    user_id = message.sender_id
    code = args.split()[0] if args else ""
    if not code and not ctx.state.access.is_paired(user_id):
        audit("start", user_id=user_id, status="no_code")
        return "Send: /start <pairing_code>"

    result = await ctx.state.access.pair(user_id, code)
    audit("pair", user_id=user_id, username=message.sender_name, status=result.status.value)

    if result.status is PairStatus.ALREADY_PAIRED:
        return f"Welcome back! You're already paired ({result.role.value})."
    if result.status is PairStatus.INVALID_CODE:
        return "Invalid pairing code. Try again."
    if result.status is PairStatus.OWNER:
        return "Paired successfully as owner! Send /help to see what I can do."
    return "Paired successfully! Send /help to see what I can do."


@registry.register(Command.STATUS, description="Bot info")
async def handle_status(ctx: HandlerContext, message: InboundMessage, args: str) -> str:
    config = ctx.state.config
    stats = await ctx.indexer.get_stats()
    lines = [
        f"multis bot v{VERSION}",
        f"Role: {ctx.role.value}",
        f"Paired users: {len(config.allowed_users)}",
        f"LLM provider: {config.llm.provider or 'none'}",
        f"Governance: {'enabled' if config.governance.enabled else 'disabled'}",
        f"PIN: {'enabled' if ctx.state.pins.enabled else 'disabled'}",
        f"Indexed: {stats['indexed_files']} files, {stats['total_chunks']} chunks",
    ]
    return "\n".join(lines)


@registry.register(Command.UNPAIR, description="Remove pairing")
async def handle_unpair(ctx: HandlerContext, message: InboundMessage, args: str) -> str:
    user_id = message.sender_id
    await ctx.state.access.unpair(user_id)
    await ctx.state.pins.cancel(user_id)
    audit("unpair", user_id=user_id, status="success")
    return "Unpaired. Send /start <code> to pair again."


@registry.register(Command.EXEC, description="Run a shell command", usage="/exec <cmd>", owner_only=True)
async def handle_exec(ctx: HandlerContext, message: InboundMessage, args: str) -> str:
    if not args:
        return "Usage: /exec <command>\nExample: /exec ls -la ~/Documents"
    return await exec_command(args, ctx.state.governance, message.sender_id)


@registry.register(Command.READ, description="Read a file or list a directory", usage="/read <path>", owner_only=True)
async def handle_read(ctx: HandlerContext, message: InboundMessage, args: str) -> str:
    if not args:
        return "Usage: /read <path>\nExample: /read ~/Documents/notes.txt"
    return await read_path(args, ctx.state.governance, message.sender_id)


@registry.register(Command.INDEX, description="Index a document", usage="/index <path> [kb|admin]", owner_only=True)
async def handle_index(ctx: HandlerContext, message: InboundMessage, args: str) -> str:
    """Handle /index — ingest a local document into ``kb`` (default) or ``admin``."""
    parts = args.rsplit(maxsplit=1)
    scope = KB_SCOPE
    if len(parts) == 2 and parts[1] in (KB_SCOPE, ADMIN_SCOPE):
        path, scope = parts[0], parts[1]
    else:
        path = args
    if not path:
        return "Usage: /index <path> [kb|admin]"

    decision = ctx.state.governance.check_path(path)
    if not decision.allowed:
        audit("index", user_id=message.sender_id, path=path, allowed=False, reason=decision.reason)
        raise GovernanceDenied(decision.reason or "path not allowed")

    try:
        count = await ctx.indexer.index_file(path, scope)
    except (ValueError, FileNotFoundError) as exc:
        audit("index", user_id=message.sender_id, path=path, allowed=True, status="error", error=str(exc))
        return f"Cannot index {path}: {exc}"
    audit("index", user_id=message.sender_id, path=path, scope=scope, allowed=True, chunks=count)
    return f"Indexed {count} chunks from {os.path.basename(path)} into {scope}."


@registry.register(Command.SKILLS, description="List available skills")
async def handle_skills(ctx: HandlerContext, message: InboundMessage, args: str) -> str:
    names = list_skills(ctx.skills_dir)
    if not names:
        return "No skills found."
    return "Available skills:\n" + "\n".join(f"- {name}" for name in names)


@registry.register(Command.HELP, description="This message")
async def handle_help(ctx: HandlerContext, message: InboundMessage, args: str) -> str:
    """Handle /help — list the commands the sender may use."""
    lines = ["multis commands:"]
    for entry in registry.entries().values():
        if entry.owner_only and not ctx.is_owner:
            continue
        lines.append(f"{entry.usage} - {entry.description}")
    lines.append("Any other text is answered from your documents.")
    return "\n".join(lines)


@registry.register(Command.ASK, description="Ask a question about your documents", usage="/ask <question>")
async def handle_ask(ctx: HandlerContext, message: InboundMessage, args: str) -> str:
    """Handle /ask — scoped retrieval, then an LLM answer over the hits.

    The LLM is called even with zero hits so it can say it does not know.
    """
    question = args.strip()
    if not question:
        return "Usage: /ask <question>"
    require_llm(ctx)
    flag_injection(ctx, message, question)
    results = await search(ctx, message, question)
    return await generate_answer(ctx, question, results)


@registry.register(Command.SEARCH, description="Search your documents", usage="/search <query>")
async def handle_search(ctx: HandlerContext, message: InboundMessage, args: str) -> str:
    query = args.strip()
    if not query:
        return "Usage: /search <query>"
    results = await search(ctx, message, query)
    if not results:
        return "No results found."
    lines = []
    for i, result in enumerate(results, 1):
        chunk = result.chunk
        where = " > ".join(chunk.section_path) or chunk.name
        snippet = " ".join(chunk.content.split())
        if len(snippet) > SNIPPET_CHARS:
            snippet = snippet[:SNIPPET_CHARS] + "..."
        lines.append(f"{i}. [{chunk.name}] {where} (score {result.score:.2f})\n{snippet}")
    return "\n\n".join(lines)


async def handle_attachment(ctx: HandlerContext, message: InboundMessage) -> str:
    """Index an uploaded document: owner uploads go to ``kb``, others to their chat scope."""
    name = os.path.basename(message.attachment_name or "upload.txt")
    scope = KB_SCOPE if ctx.is_owner else user_scope(message.chat_id)
    try:
        count = await ctx.indexer.index_buffer(message.attachment or b"", name, scope)
    except ValueError as exc:
        audit("upload", user_id=message.sender_id, document=name, scope=scope, status="error", error=str(exc))
        raise MultisError(f"Cannot index {name}: {exc}") from exc
    audit("upload", user_id=message.sender_id, document=name, scope=scope, chunks=count)
    return f"Indexed {count} chunks from {name} into {scope}."
