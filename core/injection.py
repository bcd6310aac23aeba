"""Lexical prompt-injection heuristic.

The result is an audit signal only.  Isolation is enforced by scoped
retrieval, so a flagged message is still answered.
"""

import re
from dataclasses import dataclass, field

_PATTERNS: dict[str, re.Pattern[str]] = {
    "ignore_instructions": re.compile(
        r"\b(ignore|disregard|forget|override)\b.{0,30}\b(previous|prior|above|earlier|all|your|the)\b.{0,20}\b(instructions?|rules?|prompts?|context)\b",
        re.IGNORECASE,
    ),
    "role_override": re.compile(r"\byou are now\b|\bfrom now on,? you\b|\bpretend (to be|you are)\b|\bact as (an? )?(admin|owner|system|root)\b", re.IGNORECASE),
    "system_prompt": re.compile(r"\b(reveal|show|print|repeat|leak)\b.{0,20}\b(system prompt|instructions|hidden prompt)\b", re.IGNORECASE),
    "scope_escape": re.compile(r"\b(admin|other users?'?s?|all) (documents|data|files|chats)\b", re.IGNORECASE),
    "jailbreak": re.compile(r"\b(jailbreak|developer mode|DAN mode)\b", re.IGNORECASE),
    "fake_markup": re.compile(r"(<\|?(system|im_start)\|?>|\[/?(SYSTEM|INST)\])", re.IGNORECASE),
}


@dataclass(frozen=True)
class InjectionResult:
    flagged: bool
    patterns: list[str] = field(default_factory=list)


def detect_injection(text: str) -> InjectionResult:
    """Return which injection patterns *text* matches."""
    hits = [name for name, pattern in _PATTERNS.items() if pattern.search(text or "")]
    return InjectionResult(flagged=bool(hits), patterns=hits)
