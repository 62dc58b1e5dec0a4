"""Tests for SQLiteChunkStore."""

import sqlite3

import numpy as np
import pytest

from knowledgescout.index.storage import SQLiteChunkStore
from knowledgescout.models import ChunkRecord, IndexStatus, Visibility


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database for testing."""
    db_path = tmp_path / "test.db"
    store = SQLiteChunkStore(db_path, dimension=4)
    yield store
    store.close()


def _vector(*values):
    return np.asarray(values, dtype="float32")


class TestSQLiteChunkStore:
    """Test SQLiteChunkStore initialization and schema."""

    def test_init_creates_database(self, tmp_path):
        db_path = tmp_path / "new.db"
        assert not db_path.exists()

        store = SQLiteChunkStore(db_path, dimension=4)

        assert db_path.exists()
        assert store.db_path == db_path
        assert store.dimension == 4
        store.close()

    def test_schema_creation(self, temp_db):
        """Test that schema is properly created."""
        conn = temp_db.connection

        for table in ("documents", "chunks", "index_meta"):
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
            )
            assert cursor.fetchone() is not None

        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='index' AND name='idx_chunks_document_id'"
        )
        assert cursor.fetchone() is not None

    def test_pragma_settings(self, temp_db):
        """Test that PRAGMA settings are applied."""
        conn = temp_db.connection

        assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
        assert conn.execute("PRAGMA synchronous").fetchone()[0] == 1  # NORMAL
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_connection_property(self, temp_db):
        assert isinstance(temp_db.connection, sqlite3.Connection)


class TestDocuments:
    """Test document rows."""

    def test_create_document_defaults(self, temp_db):
        document = temp_db.create_document("Guide", "Body text", owner_id="user-1")

        assert document.id
        assert document.title == "Guide"
        assert document.owner_id == "user-1"
        assert document.visibility is Visibility.PRIVATE
        assert document.status is IndexStatus.UNINDEXED
        assert document.chunk_count == 0
        assert document.created_at is not None

    def test_create_document_with_explicit_id(self, temp_db):
        document = temp_db.create_document("Guide", "Body", document_id="doc-1")

        assert document.id == "doc-1"
        assert temp_db.get_document("doc-1") is not None

    def test_get_missing_document(self, temp_db):
        assert temp_db.get_document("missing") is None

    def test_list_documents_by_status(self, temp_db):
        temp_db.create_document("A", "a", document_id="a")
        temp_db.create_document("B", "b", document_id="b")
        temp_db.update_document_status("b", IndexStatus.INDEXED, chunk_count=3)

        unindexed = temp_db.list_documents([IndexStatus.UNINDEXED])
        everything = temp_db.list_documents()

        assert [doc.id for doc in unindexed] == ["a"]
        assert {doc.id for doc in everything} == {"a", "b"}
        assert temp_db.list_documents([]) == []

    def test_update_status_and_chunk_count(self, temp_db):
        temp_db.create_document("A", "a", document_id="a")

        assert temp_db.update_document_status("a", IndexStatus.INDEXED, chunk_count=2) is True

        document = temp_db.get_document("a")
        assert document.status is IndexStatus.INDEXED
        assert document.chunk_count == 2
        assert document.is_indexed

    def test_update_status_keeps_chunk_count(self, temp_db):
        temp_db.create_document("A", "a", document_id="a")
        temp_db.update_document_status("a", IndexStatus.INDEXED, chunk_count=2)

        temp_db.update_document_status("a", IndexStatus.FAILED)

        assert temp_db.get_document("a").chunk_count == 2

    def test_update_missing_document(self, temp_db):
        assert temp_db.update_document_status("missing", IndexStatus.FAILED) is False

    def test_delete_document_cascades_chunks(self, temp_db):
        temp_db.create_document("A", "a", document_id="a")
        temp_db.insert_chunk(ChunkRecord("a", 1, "one", _vector(1, 0, 0, 0)))

        assert temp_db.delete_document("a") is True
        assert temp_db.get_document("a") is None
        assert temp_db.list_chunks() == []
        assert temp_db.delete_document("a") is False


class TestChunks:
    """Test chunk rows."""

    def test_insert_and_list_roundtrip(self, temp_db):
        temp_db.create_document("Doc A", "a", document_id="a")
        temp_db.insert_chunk(ChunkRecord("a", 1, "first", _vector(1, 2, 3, 4)))

        [chunk] = temp_db.list_chunks()

        assert chunk.document_id == "a"
        assert chunk.position == 1
        assert chunk.text == "first"
        assert chunk.document_title == "Doc A"
        assert chunk.embedding.dtype == np.float32
        np.testing.assert_array_equal(chunk.embedding, _vector(1, 2, 3, 4))

    def test_chunk_without_embedding(self, temp_db):
        temp_db.create_document("A", "a", document_id="a")
        temp_db.insert_chunk(ChunkRecord("a", 1, "unembedded", None))

        [chunk] = temp_db.list_chunks()

        assert chunk.embedding is None

    def test_dimension_mismatch_rejected(self, temp_db):
        temp_db.create_document("A", "a", document_id="a")

        with pytest.raises(ValueError, match="dimension"):
            temp_db.insert_chunk(ChunkRecord("a", 1, "x", _vector(1, 2)))

    def test_duplicate_position_rejected(self, temp_db):
        temp_db.create_document("A", "a", document_id="a")
        temp_db.insert_chunk(ChunkRecord("a", 1, "x", None))

        with pytest.raises(sqlite3.IntegrityError):
            temp_db.insert_chunk(ChunkRecord("a", 1, "y", None))

    def test_position_must_be_positive(self, temp_db):
        temp_db.create_document("A", "a", document_id="a")

        with pytest.raises(sqlite3.IntegrityError):
            temp_db.insert_chunk(ChunkRecord("a", 0, "x", None))

    def test_list_chunks_scoped_and_limited(self, temp_db):
        temp_db.create_document("A", "a", document_id="a")
        temp_db.create_document("B", "b", document_id="b")
        for position in range(1, 4):
            temp_db.insert_chunk(ChunkRecord("a", position, f"a{position}", None))
            temp_db.insert_chunk(ChunkRecord("b", position, f"b{position}", None))

        scoped = temp_db.list_chunks(document_id="b")
        limited = temp_db.list_chunks(limit=2)

        assert [chunk.text for chunk in scoped] == ["b1", "b2", "b3"]
        assert [chunk.text for chunk in limited] == ["a1", "a2"]

    def test_delete_chunks(self, temp_db):
        temp_db.create_document("A", "a", document_id="a")
        temp_db.insert_chunk(ChunkRecord("a", 1, "x", None))
        temp_db.insert_chunk(ChunkRecord("a", 2, "y", None))

        assert temp_db.delete_chunks("a") == 2
        assert temp_db.list_chunks(document_id="a") == []
        assert temp_db.get_document("a") is not None


class TestOverview:
    """Test index statistics."""

    def test_empty_overview(self, temp_db):
        overview = temp_db.get_overview()

        assert overview.total_documents == 0
        assert overview.total_chunks == 0
        assert overview.last_index_update is None

    def test_counts(self, temp_db):
        temp_db.create_document("A", "a", document_id="a")
        temp_db.create_document("B", "b", document_id="b")
        temp_db.insert_chunk(ChunkRecord("a", 1, "x", _vector(1, 0, 0, 0)))
        temp_db.insert_chunk(ChunkRecord("a", 2, "y", None))
        temp_db.update_document_status("a", IndexStatus.INDEXED, chunk_count=2)

        overview = temp_db.get_overview()

        assert overview.total_documents == 2
        assert overview.indexed_documents == 1
        assert overview.unindexed_documents == 1
        assert overview.total_chunks == 2
        assert overview.total_embeddings == 1
        assert overview.documents_with_chunks == 1

    def test_touch_last_index_update(self, temp_db):
        temp_db.touch_last_index_update()
        first = temp_db.get_overview().last_index_update
        temp_db.touch_last_index_update()
        second = temp_db.get_overview().last_index_update

        assert first is not None
        assert second >= first
