"""Chunk models and scope labels."""

import time
import uuid

from pydantic import BaseModel, Field

KB_SCOPE = "kb"
ADMIN_SCOPE = "admin"
USER_SCOPE_PREFIX = "user:"


def user_scope(chat_id: str) -> str:
    """Return the private scope label for one conversation."""
    return f"{USER_SCOPE_PREFIX}{chat_id}"


def validate_scope(scope: str) -> str:
    """Return *scope* unchanged if it is ``kb``, ``admin`` or ``user:<id>``.

    Raises:
        ValueError: For any other label.
    """
    if scope in (KB_SCOPE, ADMIN_SCOPE):
        return scope
    if scope.startswith(USER_SCOPE_PREFIX) and len(scope) > len(USER_SCOPE_PREFIX):
        return scope
    raise ValueError(f"Invalid scope: {scope!r} (expected 'kb', 'admin' or 'user:<id>')")


class Chunk(BaseModel):
    """Indexed unit of document content with its heading lineage."""

    chunk_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    file_path: str
    name: str
    content: str
    section_path: list[str] = Field(default_factory=list)
    document_type: str = "txt"
    scope: str = KB_SCOPE
    created_at: float = Field(default_factory=time.time)

    model_config = {"frozen": True}


class SearchResult(BaseModel):
    """A chunk returned by search, with the components of its score."""

    chunk: Chunk
    score: float
    relevance: float
    activation: float

    @property
    def chunk_id(self) -> str:
        return self.chunk.chunk_id

    @property
    def content(self) -> str:
        return self.chunk.content

    @property
    def scope(self) -> str:
        return self.chunk.scope
