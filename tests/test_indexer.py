"""Tests for structural chunking and the document indexer."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.config_store import AppConfig
from indexer.chunker import chunk_text, split_sections
from indexer.indexer import DocumentIndexer, document_type_for, upload_key
from indexer.store import ChunkStore

DOC = """# Guide

Intro paragraph about widgets.

## Install

Run the installer.

### Linux

Use the package manager.

## Usage

```
# not a heading inside a fence
widget --run
```
"""


# ── Chunker ──────────────────────────────────────────────────────────────────


class TestChunker:
    def test_heading_lineage(self) -> None:
        sections = dict((tuple(path), body) for path, body in split_sections(DOC))
        assert ("Guide",) in sections
        assert ("Guide", "Install") in sections
        assert ("Guide", "Install", "Linux") in sections
        assert ("Guide", "Usage") in sections

    def test_sibling_heading_pops_stack(self) -> None:
        paths = [path for path, _ in split_sections(DOC)]
        assert ["Guide", "Install", "Linux", "Usage"] not in paths

    def test_fenced_hash_is_not_heading(self) -> None:
        sections = split_sections(DOC)
        usage = [body for path, body in sections if path == ["Guide", "Usage"]][0]
        assert "# not a heading inside a fence" in usage

    def test_heading_kept_in_body(self) -> None:
        chunks = chunk_text(DOC)
        linux = [c for c in chunks if c.section_path[-1:] == ["Linux"]][0]
        assert linux.content.startswith("### Linux")

    def test_empty_text(self) -> None:
        assert chunk_text("") == []
        assert chunk_text("   \n\n ") == []

    def test_paragraphs_packed_up_to_bound(self) -> None:
        text = "\n\n".join(f"Paragraph {i} " + "word " * 20 for i in range(20))
        chunks = chunk_text(text, max_chars=300)
        assert len(chunks) > 1
        assert all(len(c.content) <= 300 for c in chunks)
        # Paragraph boundaries are preferred: no paragraph is split.
        for chunk in chunks:
            for para in chunk.content.split("\n\n"):
                assert para.startswith("Paragraph ")

    def test_long_paragraph_splits_on_words(self) -> None:
        text = " ".join(f"token{i}" for i in range(400))
        chunks = chunk_text(text, max_chars=200)
        assert all(len(c.content) <= 200 for c in chunks)
        words = " ".join(c.content for c in chunks).split()
        assert words == text.split()

    def test_sentence_boundaries_preferred(self) -> None:
        sentence = "This sentence is about widgets and gadgets. "
        text = sentence * 30
        chunks = chunk_text(text, max_chars=200)
        assert all(c.content.rstrip().endswith(".") for c in chunks)

    def test_single_huge_word(self) -> None:
        chunks = chunk_text("x" * 450, max_chars=200)
        assert [len(c.content) for c in chunks] == [200, 200, 50]

    def test_deterministic(self) -> None:
        assert chunk_text(DOC, max_chars=120) == chunk_text(DOC, max_chars=120)


# ── Indexer ──────────────────────────────────────────────────────────────────


@pytest.fixture()
def indexer():
    idx = DocumentIndexer(ChunkStore(":memory:"), chunk_size=200)
    yield idx
    idx.close()


class TestDocumentIndexer:
    def test_document_types(self) -> None:
        assert document_type_for("a.MD") == "md"
        assert document_type_for("notes.txt") == "txt"
        with pytest.raises(ValueError):
            document_type_for("image.png")

    @pytest.mark.asyncio
    async def test_index_file(self, indexer, tmp_path) -> None:
        path = tmp_path / "guide.md"
        path.write_text(DOC, encoding="utf-8")
        count = await indexer.index_file(str(path), "kb")
        assert count > 0
        results = await indexer.search("package manager", 5, ["kb"])
        assert len(results) == 1
        assert results[0].chunk.name == "guide.md"
        assert results[0].chunk.document_type == "md"
        assert results[0].chunk.section_path == ["Guide", "Install", "Linux"]
        assert results[0].chunk.file_path == str(path)

    @pytest.mark.asyncio
    async def test_reindex_does_not_duplicate(self, indexer, tmp_path) -> None:
        path = tmp_path / "guide.md"
        path.write_text(DOC, encoding="utf-8")
        first = await indexer.index_file(str(path), "kb")
        await indexer.index_file(str(path), "kb")
        assert (await indexer.get_stats())["total_chunks"] == first

    @pytest.mark.asyncio
    async def test_reindex_picks_up_changes(self, indexer, tmp_path) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("old gadget text", encoding="utf-8")
        await indexer.index_file(str(path), "kb")
        path.write_text("new sprocket text", encoding="utf-8")
        await indexer.index_file(str(path), "kb")
        assert await indexer.search("gadget") == []
        assert len(await indexer.search("sprocket")) == 1

    @pytest.mark.asyncio
    async def test_missing_file(self, indexer, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            await indexer.index_file(str(tmp_path / "nope.md"), "kb")

    @pytest.mark.asyncio
    async def test_unsupported_type(self, indexer, tmp_path) -> None:
        path = tmp_path / "photo.jpg"
        path.write_bytes(b"\xff\xd8")
        with pytest.raises(ValueError):
            await indexer.index_file(str(path), "kb")

    @pytest.mark.asyncio
    async def test_invalid_scope(self, indexer, tmp_path) -> None:
        path = tmp_path / "a.md"
        path.write_text("text", encoding="utf-8")
        with pytest.raises(ValueError):
            await indexer.index_file(str(path), "everyone")

    @pytest.mark.asyncio
    async def test_buffer_upload_replaces(self, indexer) -> None:
        await indexer.index_buffer(b"first upload about gears", "faq.md", "user:chat9")
        await indexer.index_buffer(b"second upload about gears", "faq.md", "user:chat9")
        results = await indexer.search("gears", 10, ["user:chat9"])
        assert len(results) == 1
        assert "second" in results[0].content
        assert results[0].chunk.file_path == upload_key("user:chat9", "faq.md")

    @pytest.mark.asyncio
    async def test_same_name_different_scope_kept_apart(self, indexer) -> None:
        await indexer.index_buffer(b"gears for chat one", "faq.md", "user:chat1")
        await indexer.index_buffer(b"gears for chat two", "faq.md", "user:chat2")
        assert len(await indexer.search("gears", 10, ["user:chat1"])) == 1
        assert (await indexer.get_stats())["total_chunks"] == 2

    @pytest.mark.asyncio
    async def test_concurrent_reindex_and_search(self, indexer, tmp_path) -> None:
        path = tmp_path / "big.md"
        path.write_text("\n\n".join(f"Widget paragraph {i} " + "filler " * 20 for i in range(12)), encoding="utf-8")
        expected = await indexer.index_file(str(path), "kb")

        async def searcher() -> list[int]:
            return [len(await indexer.search("widget", 100)) for _ in range(10)]

        counts, *_ = await asyncio.gather(searcher(), *(indexer.index_file(str(path), "kb") for _ in range(5)))
        assert set(counts) == {expected}

    @pytest.mark.asyncio
    async def test_record_access(self, indexer) -> None:
        await indexer.index_buffer(b"cogs and gears", "cogs.txt", "kb")
        hit = (await indexer.search("cogs"))[0]
        assert await indexer.record_access([hit.chunk_id], "cogs") == 1


class TestFromConfig:
    def test_retrieval_settings_reach_store(self) -> None:
        app = AppConfig.model_validate({"retrieval": {"activation_decay": 0.8, "activation_weight": 0.25, "chunk_size": 300}})
        indexer = DocumentIndexer.from_config(":memory:", app.retrieval)
        assert indexer.store.activation_decay == 0.8
        assert indexer.store.activation_weight == 0.25
        assert indexer.chunk_size == 300
        indexer.close()

    @pytest.mark.asyncio
    async def test_status_off_event_loop(self) -> None:
        indexer = DocumentIndexer.from_config(":memory:", AppConfig().retrieval)
        stats = await indexer.get_stats()
        assert stats["total_chunks"] == 0
        indexer.close()
