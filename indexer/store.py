"""Chunk Store — SQLite persistence, FTS5 search and activation bookkeeping.

Tables:
    chunks       - Indexed chunks (immutable, replaced wholesale on re-index)
    chunks_fts   - FTS5 external-content index over chunks (kept in sync by triggers)
    access_log   - Append-only access events, cascade-deleted with their chunk

Ranking combines BM25 text relevance with an ACT-R style base-level
activation::

    activation = ln( Σ_j (now − t_j) ^ (−d) )

where ``t_j`` runs over the chunk's creation time and every recorded access.
The scope filter is part of the SQL ``WHERE`` clause, so it is applied before
any ranking and activation can only reorder chunks the caller may see.

Thread safety: one connection opened with ``check_same_thread=False`` and an
explicit lock around every statement.  Writes are single transactions, so a
concurrent search sees either the old or the new set of a re-indexed file.
"""

from __future__ import annotations

import json
import math
import re
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from core.config_store import RetrievalConfig
from core.errors import StoreError
from core.logger import MultisLogger
from indexer.chunk import Chunk, SearchResult, validate_scope

logger = MultisLogger.get_logger()

# Ages below this many seconds are clamped so a brand-new event stays finite.
MIN_AGE_SECONDS = 1.0

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chunks (
    chunk_id      TEXT PRIMARY KEY,
    file_path     TEXT NOT NULL,
    name          TEXT NOT NULL,
    content       TEXT NOT NULL,
    section_path  TEXT NOT NULL DEFAULT '[]',
    document_type TEXT NOT NULL,
    scope         TEXT NOT NULL,
    created_at    REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS access_log (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    chunk_id  TEXT NOT NULL REFERENCES chunks(chunk_id) ON DELETE CASCADE,
    timestamp REAL NOT NULL,
    query     TEXT
);

CREATE INDEX IF NOT EXISTS idx_chunks_file ON chunks(file_path);
CREATE INDEX IF NOT EXISTS idx_chunks_scope ON chunks(scope);
CREATE INDEX IF NOT EXISTS idx_access_chunk ON access_log(chunk_id);
"""

_FTS_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
    content, name, section_path,
    content='chunks',
    content_rowid='rowid',
    tokenize='porter unicode61 remove_diacritics 2'
);

CREATE TRIGGER IF NOT EXISTS chunks_fts_ai
AFTER INSERT ON chunks BEGIN
    INSERT INTO chunks_fts(rowid, content, name, section_path)
    VALUES (new.rowid, new.content, new.name, new.section_path);
END;

-- BEFORE DELETE so the old rowid is still accessible
CREATE TRIGGER IF NOT EXISTS chunks_fts_bd
BEFORE DELETE ON chunks BEGIN
    INSERT INTO chunks_fts(chunks_fts, rowid, content, name, section_path)
    VALUES ('delete', old.rowid, old.content, old.name, old.section_path);
END;
"""

_TERM = re.compile(r"\w+", re.UNICODE)


def _terms(query: str) -> list[str]:
    """Lower-cased word tokens of *query*, de-duplicated, order preserved."""
    seen: dict[str, None] = {}
    for term in _TERM.findall((query or "").lower()):
        seen.setdefault(term, None)
    return list(seen)


class ChunkStore:
    """SQLite-backed chunk store with scoped full-text search."""

    def __init__(
        self,
        db_path: str = ":memory:",
        *,
        activation_decay: float = 0.5,
        activation_weight: float = 0.1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Open (or create) the store.

        Args:
            db_path: SQLite database path (or ``":memory:"``).
            activation_decay: Decay exponent ``d`` of the activation model.
            activation_weight: Multiplier applied to activation when it is
                added to text relevance.
            clock: Wall-clock source in epoch seconds (injectable for tests).
        """
        if activation_decay <= 0:
            raise ValueError("activation_decay must be positive")
        self._db_path = db_path
        self.activation_decay = activation_decay
        self.activation_weight = activation_weight
        self._clock = clock
        self._lock = threading.Lock()
        self._fts5_available = False
        try:
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            if db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.executescript(_SCHEMA_SQL)
            self._conn.commit()
        except (sqlite3.Error, OSError) as exc:
            logger.critical("Cannot open chunk store", extra={"db_path": db_path, "error": str(exc)})
            raise StoreError(f"cannot open chunk store '{db_path}': {exc}") from exc
        self._init_fts5()
        logger.info("ChunkStore initialised", extra={"db_path": db_path, "fts5": self._fts5_available})

    @classmethod
    def from_config(
        cls,
        db_path: str,
        retrieval: RetrievalConfig,
        clock: Callable[[], float] = time.time,
    ) -> "ChunkStore":
        """Open a store tuned by the ``retrieval`` settings."""
        return cls(
            db_path,
            activation_decay=retrieval.activation_decay,
            activation_weight=retrieval.activation_weight,
            clock=clock,
        )

    def _init_fts5(self) -> None:
        """Create the FTS5 table and triggers; fall back to LIKE search if unavailable."""
        try:
            self._conn.executescript(_FTS_SQL)
            self._conn.commit()
            self._fts5_available = True
        except sqlite3.OperationalError as exc:
            # Typical message: "no such module: fts5"
            self._fts5_available = False
            logger.warning("FTS5 not available, falling back to LIKE search", extra={"error": str(exc)})

    def now(self) -> float:
        return self._clock()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ── writes ───────────────────────────────────────────────────────────

    @staticmethod
    def _chunk_params(chunk: Chunk) -> tuple:
        return (
            chunk.chunk_id,
            chunk.file_path,
            chunk.name,
            chunk.content,
            json.dumps(chunk.section_path, ensure_ascii=False),
            chunk.document_type,
            validate_scope(chunk.scope),
            chunk.created_at,
        )

    def _insert(self, chunks: Sequence[Chunk]) -> None:
        self._conn.executemany(
            "INSERT INTO chunks (chunk_id, file_path, name, content, section_path, "
            "document_type, scope, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            [self._chunk_params(c) for c in chunks],
        )

    def save_chunk(self, chunk: Chunk) -> None:
        self.save_chunks([chunk])

    def save_chunks(self, chunks: Sequence[Chunk]) -> None:
        """Insert *chunks* in a single transaction (all or nothing)."""
        if not chunks:
            return
        with self._lock:
            try:
                with self._conn:
                    self._insert(chunks)
            except sqlite3.Error as exc:
                logger.error("Failed to save chunks", extra={"count": len(chunks), "error": str(exc)})
                raise StoreError(f"cannot save chunks: {exc}") from exc
        logger.debug("Saved chunks", extra={"count": len(chunks)})

    def delete_by_file(self, file_path: str) -> int:
        """Remove every chunk (and its access events) whose source is *file_path*."""
        with self._lock:
            try:
                with self._conn:
                    cur = self._conn.execute("DELETE FROM chunks WHERE file_path = ?", (file_path,))
            except sqlite3.Error as exc:
                logger.error("Failed to delete chunks", extra={"file_path": file_path, "error": str(exc)})
                raise StoreError(f"cannot delete chunks for '{file_path}': {exc}") from exc
        logger.info("Deleted chunks for file", extra={"file_path": file_path, "count": cur.rowcount})
        return cur.rowcount

    def replace_file(self, file_path: str, chunks: Sequence[Chunk]) -> int:
        """Atomically swap the chunks of *file_path* for *chunks*.

        Delete and insert share one transaction under the store lock, so no
        reader can observe a partial mix of old and new chunks.
        """
        with self._lock:
            try:
                with self._conn:
                    removed = self._conn.execute(
                        "DELETE FROM chunks WHERE file_path = ?", (file_path,)
                    ).rowcount
                    if chunks:
                        self._insert(chunks)
            except sqlite3.Error as exc:
                logger.error("Failed to re-index file", extra={"file_path": file_path, "error": str(exc)})
                raise StoreError(f"cannot re-index '{file_path}': {exc}") from exc
        logger.info("Replaced chunks for file", extra={"file_path": file_path, "removed": removed, "inserted": len(chunks)})
        return len(chunks)

    def record_access(self, chunk_id: str, query: str | None = None) -> bool:
        """Append an access event.  Returns ``False`` if the chunk does not exist."""
        return self.record_search_access([chunk_id], query) == 1

    def record_search_access(self, chunk_ids: Iterable[str], query: str | None = None) -> int:
        """Append one access event per existing chunk in *chunk_ids*."""
        ids = list(dict.fromkeys(chunk_ids))
        if not ids:
            return 0
        now = self._clock()
        with self._lock:
            try:
                with self._conn:
                    placeholders = ",".join("?" for _ in ids)
                    existing = [
                        row["chunk_id"] for row in self._conn.execute(
                            f"SELECT chunk_id FROM chunks WHERE chunk_id IN ({placeholders})", ids
                        )
                    ]
                    self._conn.executemany(
                        "INSERT INTO access_log (chunk_id, timestamp, query) VALUES (?, ?, ?)",
                        [(cid, now, query) for cid in existing],
                    )
            except sqlite3.Error as exc:
                logger.error("Failed to record access", extra={"chunk_ids": ids, "error": str(exc)})
                raise StoreError(f"cannot record access: {exc}") from exc
        return len(existing)

    # ── reads ────────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> Chunk:
        return Chunk(
            chunk_id=row["chunk_id"],
            file_path=row["file_path"],
            name=row["name"],
            content=row["content"],
            section_path=json.loads(row["section_path"] or "[]"),
            document_type=row["document_type"],
            scope=row["scope"],
            created_at=row["created_at"],
        )

    def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        with self._lock:
            try:
                row = self._conn.execute("SELECT * FROM chunks WHERE chunk_id = ?", (chunk_id,)).fetchone()
            except sqlite3.Error as exc:
                raise StoreError(f"cannot read chunk '{chunk_id}': {exc}") from exc
        return self._row_to_chunk(row) if row else None

    def _access_times(self, chunk_ids: Sequence[str]) -> dict[str, list[float]]:
        times: dict[str, list[float]] = {cid: [] for cid in chunk_ids}
        if not chunk_ids:
            return times
        placeholders = ",".join("?" for _ in chunk_ids)
        for row in self._conn.execute(
            f"SELECT chunk_id, timestamp FROM access_log WHERE chunk_id IN ({placeholders})",
            list(chunk_ids),
        ):
            times[row["chunk_id"]].append(row["timestamp"])
        return times

    def _activation(self, created_at: float, accesses: Sequence[float], now: float) -> float:
        total = 0.0
        for t in (created_at, *accesses):
            total += max(now - t, MIN_AGE_SECONDS) ** (-self.activation_decay)
        return math.log(total)

    def compute_activation(self, chunk_id: str, now: float | None = None) -> Optional[float]:
        """Base-level activation of *chunk_id* at *now* (``None`` if unknown)."""
        now = self._clock() if now is None else now
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT created_at FROM chunks WHERE chunk_id = ?", (chunk_id,)
                ).fetchone()
                if row is None:
                    return None
                accesses = self._access_times([chunk_id])[chunk_id]
            except sqlite3.Error as exc:
                raise StoreError(f"cannot compute activation for '{chunk_id}': {exc}") from exc
        return self._activation(row["created_at"], accesses, now)

    def _scope_clause(self, scopes: Sequence[str] | None, column: str) -> tuple[str, list[str]]:
        if scopes is None:
            return "", []
        placeholders = ",".join("?" for _ in scopes)
        return f" AND {column} IN ({placeholders})", list(scopes)

    def _candidates_fts(self, terms: list[str], scopes: Sequence[str] | None, pool: int) -> list[tuple[sqlite3.Row, float]]:
        match = " OR ".join('"' + t.replace('"', '""') + '"' for t in terms)
        scope_sql, scope_params = self._scope_clause(scopes, "c.scope")
        rows = self._conn.execute(
            "SELECT c.*, bm25(chunks_fts) AS bm25_score FROM chunks_fts "
            "JOIN chunks c ON c.rowid = chunks_fts.rowid "
            f"WHERE chunks_fts MATCH ?{scope_sql} "
            "ORDER BY bm25_score LIMIT ?",
            [match, *scope_params, pool],
        ).fetchall()
        # bm25() is lower-is-better; negate so relevance grows with the match.
        return [(row, -row["bm25_score"]) for row in rows]

    def _candidates_like(self, terms: list[str], scopes: Sequence[str] | None, pool: int) -> list[tuple[sqlite3.Row, float]]:
        conditions = " OR ".join("(LOWER(content) LIKE ? OR LOWER(name) LIKE ?)" for _ in terms)
        params: list = []
        for term in terms:
            params.extend([f"%{term}%", f"%{term}%"])
        scope_sql, scope_params = self._scope_clause(scopes, "scope")
        rows = self._conn.execute(
            f"SELECT * FROM chunks WHERE ({conditions}){scope_sql} LIMIT ?",
            [*params, *scope_params, pool],
        ).fetchall()
        scored = []
        for row in rows:
            text = f"{row['content']} {row['name']}".lower()
            scored.append((row, float(sum(1 for t in terms if t in text))))
        return scored

    def search(self, query: str, limit: int = 5, scopes: Sequence[str] | None = None) -> list[SearchResult]:
        """Ranked lexical search restricted to *scopes*.

        ``scopes=None`` means unrestricted; an empty sequence matches nothing.
        """
        terms = _terms(query)
        if not terms or limit <= 0:
            return []
        if scopes is not None:
            scopes = list(scopes)
            if not scopes:
                return []

        pool = max(limit * 5, 20)
        now = self._clock()
        with self._lock:
            try:
                if self._fts5_available:
                    candidates = self._candidates_fts(terms, scopes, pool)
                else:
                    candidates = self._candidates_like(terms, scopes, pool)
                access = self._access_times([row["chunk_id"] for row, _ in candidates])
            except sqlite3.Error as exc:
                logger.error("Search failed", extra={"query": query, "error": str(exc)})
                raise StoreError(f"search failed: {exc}") from exc

        results: list[SearchResult] = []
        for row, relevance in candidates:
            activation = self._activation(row["created_at"], access[row["chunk_id"]], now)
            results.append(SearchResult(
                chunk=self._row_to_chunk(row),
                score=relevance + self.activation_weight * activation,
                relevance=relevance,
                activation=activation,
            ))
        results.sort(key=lambda r: r.score, reverse=True)
        logger.debug(
            "Search completed",
            extra={"query": query, "scopes": scopes, "candidates": len(candidates), "result_count": min(limit, len(results))},
        )
        return results[:limit]

    def get_stats(self) -> dict:
        with self._lock:
            try:
                total = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
                files = self._conn.execute("SELECT COUNT(DISTINCT file_path) FROM chunks").fetchone()[0]
                by_type = {
                    row[0]: row[1] for row in self._conn.execute(
                        "SELECT document_type, COUNT(*) FROM chunks GROUP BY document_type"
                    )
                }
                by_scope = {
                    row[0]: row[1] for row in self._conn.execute(
                        "SELECT scope, COUNT(*) FROM chunks GROUP BY scope"
                    )
                }
                accesses = self._conn.execute("SELECT COUNT(*) FROM access_log").fetchone()[0]
            except sqlite3.Error as exc:
                raise StoreError(f"cannot read stats: {exc}") from exc
        return {
            "indexed_files": files,
            "total_chunks": total,
            "by_type": by_type,
            "by_scope": by_scope,
            "access_events": accesses,
            "fts5": self._fts5_available,
        }
