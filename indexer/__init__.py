"""Scoped document indexing and retrieval."""

from indexer.chunk import ADMIN_SCOPE, KB_SCOPE, Chunk, SearchResult, user_scope, validate_scope
from indexer.chunker import TextChunk, chunk_text
from indexer.indexer import DocumentIndexer
from indexer.store import ChunkStore

__all__ = [
    "ADMIN_SCOPE",
    "KB_SCOPE",
    "Chunk",
    "SearchResult",
    "user_scope",
    "validate_scope",
    "TextChunk",
    "chunk_text",
    "DocumentIndexer",
    "ChunkStore",
]
