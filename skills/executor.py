"""Governed owner skills: shell execution, file reading, skill catalogue.

Every call is checked against the :class:`~core.governance.GovernancePolicy`
first and leaves exactly one audit record, whatever the outcome.
"""

import asyncio
import os
from pathlib import Path

from core.audit import audit
from core.errors import ConfirmationRequired, GovernanceDenied
from core.governance import GovernancePolicy
from core.logger import MultisLogger

logger = MultisLogger.get_logger()

MAX_OUTPUT = 4000
"""Reply-size cap for command output and file contents."""

MAX_READ_BYTES = 512 * 1024
DEFAULT_EXEC_TIMEOUT = 10.0


def truncate(text: str, limit: int = MAX_OUTPUT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (truncated)"


async def exec_command(
    command: str,
    policy: GovernancePolicy,
    user_id: str,
    timeout: float = DEFAULT_EXEC_TIMEOUT,
) -> str:
    """Run *command* in a shell after the governance check.

    Returns the (truncated) output, or an ``Error: …`` line when the command
    fails or times out.

    Raises:
        GovernanceDenied: The policy rejected the command.
        ConfirmationRequired: The command matches a confirmation rule.
    """
    decision = policy.check_command(command)
    if not decision.allowed:
        audit("exec", user_id=user_id, command=command, allowed=False, reason=decision.reason)
        raise GovernanceDenied(decision.reason or "command not allowed")
    if decision.requires_confirmation:
        audit("exec", user_id=user_id, command=command, allowed=True, requires_confirmation=True)
        raise ConfirmationRequired(command)

    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        audit("exec", user_id=user_id, command=command, allowed=True, status="timeout")
        logger.warning("Command timed out", extra={"user_id": user_id, "command": command, "timeout": timeout})
        return f"Error: command timed out after {timeout:g}s"

    if proc.returncode != 0:
        error = stderr.decode(errors="replace").strip() or f"exit code {proc.returncode}"
        audit("exec", user_id=user_id, command=command, allowed=True, status="error", error=error)
        return truncate(f"Error: {error}")

    audit("exec", user_id=user_id, command=command, allowed=True, status="success")
    logger.info("Command executed", extra={"user_id": user_id, "command": command, "output_len": len(stdout)})
    return truncate(stdout.decode(errors="replace")) or "(no output)"


def _read_sync(resolved: str, shown: str) -> tuple[str, str]:
    """Return ``(kind, text)`` for *resolved*; kind is file, directory or error."""
    if not os.path.exists(resolved):
        return "error", f"File not found: {shown}"
    if os.path.isdir(resolved):
        entries = sorted(os.listdir(resolved))
        return "directory", truncate("\n".join(entries)) or "(empty directory)"
    size = os.path.getsize(resolved)
    if size > MAX_READ_BYTES:
        return "error", f"File too large: {size / 1024:.0f}KB (max {MAX_READ_BYTES // 1024}KB)"
    with open(resolved, "r", encoding="utf-8", errors="replace") as fh:
        content = fh.read()
    return "file", truncate(content) or "(empty file)"


async def read_path(path: str, policy: GovernancePolicy, user_id: str) -> str:
    """Read a file (up to 512 KB) or list a directory after the path check.

    Raises:
        GovernanceDenied: The path is denied or outside every allowed prefix.
    """
    resolved = os.path.abspath(os.path.expanduser(path.strip()))
    decision = policy.check_path(resolved)
    if not decision.allowed:
        audit("read", user_id=user_id, path=path, allowed=False, reason=decision.reason)
        raise GovernanceDenied(decision.reason or "path not allowed")

    try:
        kind, text = await asyncio.to_thread(_read_sync, resolved, path)
    except OSError as exc:
        audit("read", user_id=user_id, path=path, allowed=True, status="error", error=str(exc))
        return f"Error: {exc}"
    audit("read", user_id=user_id, path=path, allowed=True, type=kind)
    return text


def list_skills(skills_dir: str) -> list[str]:
    """Names of the ``*.md`` skill descriptions in *skills_dir* (sorted)."""
    directory = Path(skills_dir)
    if not directory.is_dir():
        return []
    return sorted(p.stem for p in directory.glob("*.md") if p.is_file())
