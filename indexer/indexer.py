"""Document ingestion: read → chunk → atomic replace in the chunk store.

Blocking work (file reads, SQLite writes) runs in a worker thread through
``asyncio.to_thread`` so the event loop keeps serving other chats.
"""

import asyncio
import os
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

from core.config_store import RetrievalConfig
from core.logger import MultisLogger
from indexer.chunk import Chunk, SearchResult, validate_scope
from indexer.chunker import chunk_text
from indexer.store import ChunkStore

logger = MultisLogger.get_logger()

SUPPORTED_EXTENSIONS: dict[str, str] = {
    ".md": "md",
    ".markdown": "md",
    ".txt": "txt",
    ".rst": "rst",
    ".csv": "csv",
    ".json": "json",
    ".log": "log",
}


def document_type_for(filename: str) -> str:
    """Map *filename*'s extension to a document type.

    Raises:
        ValueError: If the extension is not supported.
    """
    ext = Path(filename).suffix.lower()
    try:
        return SUPPORTED_EXTENSIONS[ext]
    except KeyError:
        supported = ", ".join(sorted(SUPPORTED_EXTENSIONS))
        raise ValueError(f"Unsupported file type '{ext or filename}' (supported: {supported})") from None


def upload_key(scope: str, filename: str) -> str:
    """Synthetic source key for an uploaded buffer, stable across re-uploads."""
    return f"upload:{scope}:{filename}"


class DocumentIndexer:
    """Turns documents into scoped chunks and keeps the store in sync."""

    def __init__(self, store: ChunkStore, chunk_size: int = 1000) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.store = store
        self.chunk_size = chunk_size

    @classmethod
    def from_config(
        cls,
        db_path: str,
        retrieval: RetrievalConfig,
        clock: Callable[[], float] = time.time,
    ) -> "DocumentIndexer":
        """Build the store and indexer from the ``retrieval`` settings."""
        return cls(ChunkStore.from_config(db_path, retrieval, clock=clock), retrieval.chunk_size)

    def _build_chunks(self, text: str, file_path: str, name: str, document_type: str, scope: str) -> list[Chunk]:
        now = self.store.now()
        return [
            Chunk(
                file_path=file_path,
                name=name,
                content=piece.content,
                section_path=piece.section_path,
                document_type=document_type,
                scope=scope,
                created_at=now,
            )
            for piece in chunk_text(text, max_chars=self.chunk_size)
        ]

    def _index_text(self, text: str, file_path: str, name: str, scope: str) -> int:
        document_type = document_type_for(name)
        chunks = self._build_chunks(text, file_path, name, document_type, scope)
        count = self.store.replace_file(file_path, chunks)
        logger.info(
            "Indexed document",
            extra={"file_path": file_path, "scope": scope, "document_type": document_type, "chunks": count},
        )
        return count

    def _index_file_sync(self, path: str, scope: str) -> int:
        resolved = os.path.abspath(os.path.expanduser(path))
        document_type_for(resolved)
        if not os.path.isfile(resolved):
            raise FileNotFoundError(f"File not found: {path}")
        with open(resolved, "r", encoding="utf-8", errors="replace") as fh:
            text = fh.read()
        return self._index_text(text, resolved, os.path.basename(resolved), scope)

    def _index_buffer_sync(self, data: bytes, filename: str, scope: str) -> int:
        name = os.path.basename(filename)
        document_type_for(name)
        text = data.decode("utf-8", errors="replace")
        return self._index_text(text, upload_key(scope, name), name, scope)

    async def index_file(self, path: str, scope: str = "kb") -> int:
        """Index the document at *path* into *scope*; returns the chunk count.

        Re-indexing the same path replaces its previous chunks atomically.

        Raises:
            ValueError: Unsupported file type or invalid scope.
            FileNotFoundError: *path* does not exist.
            StoreError: The store write failed.
        """
        validate_scope(scope)
        return await asyncio.to_thread(self._index_file_sync, path, scope)

    async def index_buffer(self, data: bytes, filename: str, scope: str = "kb") -> int:
        """Index an uploaded document held in memory.

        The chunks are stored under ``upload:<scope>:<filename>`` so a second
        upload of the same name into the same scope replaces the first.
        """
        validate_scope(scope)
        return await asyncio.to_thread(self._index_buffer_sync, data, filename, scope)

    async def search(self, query: str, limit: int = 5, scopes: Optional[Sequence[str]] = None) -> list[SearchResult]:
        return await asyncio.to_thread(self.store.search, query, limit, scopes)

    async def record_access(self, chunk_ids: Sequence[str], query: str | None = None) -> int:
        return await asyncio.to_thread(self.store.record_search_access, chunk_ids, query)

    async def get_stats(self) -> dict:
        return await asyncio.to_thread(self.store.get_stats)

    def close(self) -> None:
        self.store.close()
