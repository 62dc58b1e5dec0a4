"""Document indexing pipeline."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import numpy as np

from knowledgescout.embedding.encoder import EmbeddingProvider
from knowledgescout.errors import (
    EmbeddingUnavailable,
    IndexingInProgress,
    IndexingPartialFailure,
    NotFoundError,
)
from knowledgescout.index.cache import QueryCache
from knowledgescout.index.storage import ChunkStore
from knowledgescout.models import ChunkRecord, IndexStatus
from knowledgescout.utils.text import split_text

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexReport:
    document_id: str
    status: IndexStatus
    chunk_count: int = 0
    embedded: int = 0
    failed_chunks: int = 0


class IndexingPipeline:
    """Split, embed and persist one document at a time.

    A failed chunk embedding does not abort the document: the chunk is stored
    without a vector and counted. The document ends ``indexed`` when at least
    one chunk was embedded, or when it has no chunks at all; otherwise
    ``failed``.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: ChunkStore,
        cache: QueryCache | None = None,
        *,
        chunk_chars: int = 1000,
        overlap: int = 200,
        fallback_embedder: EmbeddingProvider | None = None,
    ) -> None:
        if overlap >= chunk_chars:
            raise ValueError("overlap must be smaller than chunk_chars")
        if fallback_embedder is not None and fallback_embedder.dimension != embedder.dimension:
            raise ValueError("fallback embedder dimension must match the primary embedder")
        self.embedder = embedder
        self.store = store
        self.cache = cache
        self.chunk_chars = chunk_chars
        self.overlap = overlap
        self.fallback_embedder = fallback_embedder
        self._active: set[str] = set()
        self._active_lock = threading.Lock()

    def is_indexing(self, document_id: str) -> bool:
        with self._active_lock:
            return document_id in self._active

    def _claim(self, document_id: str) -> None:
        with self._active_lock:
            if document_id in self._active:
                raise IndexingInProgress(document_id)
            self._active.add(document_id)

    def _release(self, document_id: str) -> None:
        with self._active_lock:
            self._active.discard(document_id)

    def index_document(self, document_id: str) -> IndexReport:
        """Index (or fully re-index) a single document."""
        document = self.store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found", document_id)

        self._claim(document_id)
        try:
            LOGGER.info(f"Processing document {document_id} for embedding")
            self.store.update_document_status(document_id, IndexStatus.INDEXING)
            removed = self.store.delete_chunks(document_id)
            if removed:
                LOGGER.debug("Removed %d existing chunks for %s", removed, document_id)

            report = self._embed_and_store(document_id, document.content)

            self.store.update_document_status(
                document_id, report.status, chunk_count=report.chunk_count
            )
        except Exception:
            LOGGER.exception("Indexing failed for document %s", document_id)
            self.store.update_document_status(document_id, IndexStatus.FAILED)
            raise
        finally:
            self._release(document_id)
            if self.cache is not None:
                self.cache.invalidate_document(document_id)

        if report.status is IndexStatus.FAILED:
            raise IndexingPartialFailure(document_id, report.failed_chunks)

        LOGGER.info(
            f"Indexed document {document_id}: {report.chunk_count} chunks, "
            f"{report.failed_chunks} failed"
        )
        return report

    reindex_document = index_document

    def _embed_and_store(self, document_id: str, content: str) -> IndexReport:
        chunks = split_text(content, chunk_size=self.chunk_chars, overlap=self.overlap)
        report = IndexReport(document_id=document_id, status=IndexStatus.INDEXED)
        if not chunks:
            LOGGER.warning("No text to index for document %s", document_id)
            return report

        for position, text in enumerate(chunks, start=1):
            vector = self._embed_chunk(document_id, position, text)
            if vector is None:
                report.failed_chunks += 1
            else:
                report.embedded += 1
            self.store.insert_chunk(
                ChunkRecord(
                    document_id=document_id,
                    position=position,
                    text=text,
                    embedding=vector,
                )
            )
            report.chunk_count += 1
            LOGGER.debug(f"Created chunk {position}/{len(chunks)} for document {document_id}")

        if report.embedded == 0:
            report.status = IndexStatus.FAILED
        return report

    def _embed_chunk(self, document_id: str, position: int, text: str) -> np.ndarray | None:
        try:
            return self.embedder.embed(text)
        except EmbeddingUnavailable as exc:
            if self.fallback_embedder is not None:
                LOGGER.warning(
                    "Embedding unavailable for %s chunk %d, using fallback vector: %s",
                    document_id,
                    position,
                    exc,
                )
                return self.fallback_embedder.embed(text)
            LOGGER.error(
                "Embedding failed for %s chunk %d: %s", document_id, position, exc
            )
            return None
