"""Tests for the indexing pipeline."""

from __future__ import annotations

from unittest.mock import MagicMock

import numpy as np
import pytest

from knowledgescout.embedding.encoder import NullEmbeddingProvider
from knowledgescout.errors import (
    EmbeddingUnavailable,
    IndexingInProgress,
    IndexingPartialFailure,
    NotFoundError,
)
from knowledgescout.index.cache import MemoryCacheBackend, QueryCache
from knowledgescout.index.indexer import IndexingPipeline
from knowledgescout.index.storage import SQLiteChunkStore
from knowledgescout.models import IndexStatus

DIMENSION = 8


class FlakyEmbedder:
    """Fails on any chunk containing FAIL."""

    def __init__(self) -> None:
        self.dimension = DIMENSION
        self._inner = NullEmbeddingProvider(DIMENSION)

    def embed(self, text: str) -> np.ndarray:
        if "FAIL" in text:
            raise EmbeddingUnavailable("simulated outage")
        return self._inner.embed(text)

    def embed_many(self, texts):
        return np.vstack([self.embed(text) for text in texts])


@pytest.fixture
def store(tmp_path):
    store = SQLiteChunkStore(tmp_path / "index.db", dimension=DIMENSION)
    yield store
    store.close()


@pytest.fixture
def cache() -> QueryCache:
    return QueryCache(MemoryCacheBackend())


@pytest.fixture
def pipeline(store, cache) -> IndexingPipeline:
    return IndexingPipeline(
        NullEmbeddingProvider(DIMENSION), store, cache, chunk_chars=100, overlap=20
    )


def _long_text() -> str:
    return " ".join(f"Sentence number {i} talks about the topic." for i in range(20))


class TestIndexDocument:
    """Test IndexingPipeline.index_document."""

    def test_indexes_all_chunks(self, pipeline, store):
        document = store.create_document("Guide", _long_text())

        report = pipeline.index_document(document.id)

        chunks = store.list_chunks(document_id=document.id)
        assert report.status is IndexStatus.INDEXED
        assert report.chunk_count == len(chunks) > 1
        assert report.embedded == report.chunk_count
        assert report.failed_chunks == 0
        assert all(chunk.embedding is not None for chunk in chunks)

        stored = store.get_document(document.id)
        assert stored.status is IndexStatus.INDEXED
        assert stored.chunk_count == report.chunk_count

    def test_positions_are_contiguous_from_one(self, pipeline, store):
        document = store.create_document("Guide", _long_text())

        pipeline.index_document(document.id)

        positions = [chunk.position for chunk in store.list_chunks(document_id=document.id)]
        assert positions == list(range(1, len(positions) + 1))

    def test_reindex_replaces_chunks(self, pipeline, store):
        document = store.create_document("Guide", _long_text())
        first = pipeline.index_document(document.id)

        second = pipeline.reindex_document(document.id)

        assert second.chunk_count == first.chunk_count
        assert len(store.list_chunks(document_id=document.id)) == first.chunk_count

    def test_empty_document_is_indexed_with_no_chunks(self, pipeline, store):
        document = store.create_document("Empty", "   \n  ")

        report = pipeline.index_document(document.id)

        assert report.status is IndexStatus.INDEXED
        assert report.chunk_count == 0
        assert store.get_document(document.id).status is IndexStatus.INDEXED

    def test_unknown_document(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.index_document("missing")

    def test_concurrent_run_rejected(self, pipeline, store):
        """A second run for a document already being indexed is refused."""
        document = store.create_document("Guide", "Some text.")
        pipeline._active.add(document.id)

        with pytest.raises(IndexingInProgress):
            pipeline.index_document(document.id)
        assert pipeline.is_indexing(document.id)

    def test_claim_released_after_run(self, pipeline, store):
        document = store.create_document("Guide", "Some text.")

        pipeline.index_document(document.id)

        assert not pipeline.is_indexing(document.id)

    def test_invalidates_cached_answers(self, pipeline, store, cache):
        document = store.create_document("Guide", "Some text.")
        unscoped = QueryCache.fingerprint("what")
        scoped = QueryCache.fingerprint("what", document.id)
        other = QueryCache.fingerprint("what", "other-doc")
        for key in (unscoped, scoped, other):
            cache.set(key, {"answer": "stale"})

        pipeline.index_document(document.id)

        assert cache.get(unscoped) is None
        assert cache.get(scoped) is None
        assert cache.get(other) == {"answer": "stale"}

    def test_invalid_overlap(self, store):
        with pytest.raises(ValueError):
            IndexingPipeline(NullEmbeddingProvider(DIMENSION), store, chunk_chars=100, overlap=100)

    def test_fallback_dimension_must_match(self, store):
        with pytest.raises(ValueError):
            IndexingPipeline(
                NullEmbeddingProvider(DIMENSION),
                store,
                fallback_embedder=NullEmbeddingProvider(DIMENSION * 2),
            )


class TestEmbeddingFailures:
    """Test the partial-success policy."""

    def test_partial_failure_still_indexed(self, store):
        pipeline = IndexingPipeline(FlakyEmbedder(), store, chunk_chars=100, overlap=20)
        document = store.create_document("Mixed", "g" * 70 + "." + "FAIL" * 10)

        report = pipeline.index_document(document.id)

        assert report.status is IndexStatus.INDEXED
        assert report.chunk_count == 2
        assert report.embedded == 1
        assert report.failed_chunks == 1
        chunks = store.list_chunks(document_id=document.id)
        assert chunks[0].embedding is not None
        assert chunks[1].embedding is None
        assert store.get_document(document.id).chunk_count == 2

    def test_all_chunks_failing_marks_failed(self, store):
        pipeline = IndexingPipeline(FlakyEmbedder(), store, chunk_chars=100, overlap=20)
        document = store.create_document("Broken", "FAIL everything here.")

        with pytest.raises(IndexingPartialFailure) as excinfo:
            pipeline.index_document(document.id)

        assert excinfo.value.failed_chunks == 1
        assert store.get_document(document.id).status is IndexStatus.FAILED
        assert not pipeline.is_indexing(document.id)

    def test_fallback_embedder_used(self, store):
        pipeline = IndexingPipeline(
            FlakyEmbedder(),
            store,
            chunk_chars=100,
            overlap=20,
            fallback_embedder=NullEmbeddingProvider(DIMENSION),
        )
        document = store.create_document("Broken", "FAIL everything here.")

        report = pipeline.index_document(document.id)

        assert report.status is IndexStatus.INDEXED
        assert report.embedded == 1
        assert store.list_chunks(document_id=document.id)[0].embedding is not None

    def test_unexpected_error_marks_failed_and_propagates(self, store):
        embedder = MagicMock()
        embedder.dimension = DIMENSION
        embedder.embed.side_effect = RuntimeError("boom")
        pipeline = IndexingPipeline(embedder, store, chunk_chars=100, overlap=20)
        document = store.create_document("Guide", "Some text.")

        with pytest.raises(RuntimeError):
            pipeline.index_document(document.id)

        assert store.get_document(document.id).status is IndexStatus.FAILED
        assert not pipeline.is_indexing(document.id)
