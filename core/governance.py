"""Command and path governance.

Deny always wins: the denylist (commands) and denied prefixes (paths) are
checked before any allow rule.
"""

import os
import re
from dataclasses import dataclass

from core.config_store import CommandPolicy, GovernanceConfig, PathPolicy
from core.logger import MultisLogger

logger = MultisLogger.get_logger()

# Shell operators that chain or substitute commands.
_CHAIN_SPLIT = re.compile(r"\|\||&&|;|\||(?<![<>])&(?!>)|\n")
_SUBSTITUTION = re.compile(r"`|\$\(")


@dataclass(frozen=True, slots=True)
class CommandDecision:
    allowed: bool
    reason: str | None = None
    requires_confirmation: bool = False


@dataclass(frozen=True, slots=True)
class PathDecision:
    allowed: bool
    reason: str | None = None


def _matches(command: str, entry: str) -> bool:
    """Return True when *entry* covers *command*.

    Single-word entries match the leading token; multi-word entries match as
    a whole-word phrase prefix (``"git push"`` covers ``"git push origin"``).
    """
    entry = " ".join(entry.split())
    if not entry:
        return False
    tokens = command.split()
    entry_tokens = entry.split()
    return tokens[: len(entry_tokens)] == entry_tokens


def _check_segment(segment: str, policy: CommandPolicy) -> CommandDecision:
    leading = segment.split()[0]
    for entry in policy.denylist:
        if _matches(segment, entry):
            return CommandDecision(False, f"Command '{leading}' is explicitly denied")
    if not any(_matches(segment, entry) for entry in policy.allowlist):
        return CommandDecision(False, f"Command '{leading}' is not in the allowlist")
    confirm = any(_matches(segment, entry) for entry in policy.require_confirmation)
    return CommandDecision(True, requires_confirmation=confirm)


def is_command_allowed(command: str, policy: CommandPolicy) -> CommandDecision:
    """Evaluate *command* against *policy*.

    Chained commands (``;``, ``&&``, ``||``, ``|``, background ``&``, newline)
    are split and every segment must pass; ``>&`` redirections are not chains.
    Command substitution is always denied.
    """
    command = command or ""
    if not command.strip():
        return CommandDecision(False, "Empty command")
    if _SUBSTITUTION.search(command):
        return CommandDecision(False, "Command substitution is explicitly denied")

    # Split before collapsing whitespace, a newline separates commands too.
    segments = [" ".join(s.split()) for s in _CHAIN_SPLIT.split(command) if s.strip()]
    requires_confirmation = False
    for segment in segments:
        decision = _check_segment(segment, policy)
        if not decision.allowed:
            return decision
        requires_confirmation = requires_confirmation or decision.requires_confirmation
    return CommandDecision(True, requires_confirmation=requires_confirmation)


def _normalize(path: str) -> str:
    return os.path.normpath(os.path.abspath(os.path.expanduser(path)))


def _under(path: str, prefix: str) -> bool:
    """Component-wise prefix test: ``/etc`` covers ``/etc/x`` but not ``/etcetera``."""
    prefix = _normalize(prefix)
    if path == prefix:
        return True
    return path.startswith(prefix.rstrip(os.sep) + os.sep)


def is_path_allowed(path: str, policy: PathPolicy) -> PathDecision:
    """Evaluate *path* against *policy* (denied prefixes first)."""
    if not path or not path.strip():
        return PathDecision(False, "Empty path")
    resolved = _normalize(path.strip())
    for prefix in policy.denied:
        if _under(resolved, prefix):
            return PathDecision(False, f"Path is in a denied directory: {prefix}")
    for prefix in policy.allowed:
        if _under(resolved, prefix):
            return PathDecision(True)
    return PathDecision(False, "Path is not in an allowed directory")


class GovernancePolicy:
    """Policy evaluator bound to a :class:`GovernanceConfig`.

    With governance disabled every command and path is allowed; callers still
    audit the decision.
    """

    def __init__(self, config: GovernanceConfig) -> None:
        self.config = config

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def check_command(self, command: str) -> CommandDecision:
        if not self.config.enabled:
            return CommandDecision(True)
        decision = is_command_allowed(command, self.config.commands)
        if not decision.allowed:
            logger.warning("Command denied by policy", extra={"command": command, "reason": decision.reason})
        return decision

    def check_path(self, path: str) -> PathDecision:
        if not self.config.enabled:
            return PathDecision(True)
        decision = is_path_allowed(path, self.config.paths)
        if not decision.allowed:
            logger.warning("Path denied by policy", extra={"path": path, "reason": decision.reason})
        return decision
