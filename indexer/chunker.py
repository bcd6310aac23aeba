"""Structural text chunking.

Pure functions, no I/O.  Markdown ATX headings delimit sections and feed the
heading lineage (``section_path``); section bodies are packed paragraph by
paragraph up to ``max_chars``.  Oversized paragraphs fall back to sentence
boundaries, then word boundaries.
"""

import re
from dataclasses import dataclass, field

_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


@dataclass
class TextChunk:
    content: str
    section_path: list[str] = field(default_factory=list)


def split_sections(text: str) -> list[tuple[list[str], str]]:
    """Split *text* into ``(heading lineage, body)`` pairs.

    The heading line itself is kept at the top of its body so the chunk text
    still carries the title for full-text matching.
    """
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    sections: list[tuple[list[str], str]] = []
    stack: list[tuple[int, str]] = []
    current: list[str] = []
    in_fence = False

    def flush() -> None:
        body = "\n".join(current).strip()
        if body:
            sections.append(([title for _, title in stack], body))
        current.clear()

    for line in lines:
        if line.lstrip().startswith("```"):
            in_fence = not in_fence
        match = None if in_fence else _HEADING.match(line)
        if match:
            flush()
            level = len(match.group(1))
            while stack and stack[-1][0] >= level:
                stack.pop()
            stack.append((level, match.group(2).strip()))
        current.append(line)
    flush()
    return sections


def _split_long(paragraph: str, max_chars: int) -> list[str]:
    """Break one oversized paragraph at sentence, then word, boundaries."""
    pieces: list[str] = []
    for sentence in _SENTENCE_END.split(paragraph):
        if len(sentence) <= max_chars:
            pieces.append(sentence)
            continue
        line = ""
        for word in sentence.split():
            if len(word) > max_chars:
                if line:
                    pieces.append(line)
                    line = ""
                pieces.extend(word[i:i + max_chars] for i in range(0, len(word), max_chars))
            elif not line:
                line = word
            elif len(line) + 1 + len(word) <= max_chars:
                line = f"{line} {word}"
            else:
                pieces.append(line)
                line = word
        if line:
            pieces.append(line)
    return [p for p in pieces if p.strip()]


def _pack(units: list[str], max_chars: int, separator: str) -> list[str]:
    packed: list[str] = []
    current = ""
    for unit in units:
        if not current:
            current = unit
        elif len(current) + len(separator) + len(unit) <= max_chars:
            current = f"{current}{separator}{unit}"
        else:
            packed.append(current)
            current = unit
    if current:
        packed.append(current)
    return packed


def chunk_text(text: str, *, max_chars: int = 1000) -> list[TextChunk]:
    """Chunk *text* into :class:`TextChunk` objects no longer than *max_chars*.

    Deterministic: the same input always yields the same chunks.
    """
    if not text or not text.strip():
        return []

    chunks: list[TextChunk] = []
    for lineage, body in split_sections(text):
        paragraphs = [p.strip() for p in re.split(r"\n\s*\n", body) if p.strip()]
        units: list[str] = []
        for para in paragraphs:
            if len(para) > max_chars:
                units.extend(_pack(_split_long(para, max_chars), max_chars, " "))
            else:
                units.append(para)
        for content in _pack(units, max_chars, "\n\n"):
            chunks.append(TextChunk(content=content, section_path=list(lineage)))
    return chunks
