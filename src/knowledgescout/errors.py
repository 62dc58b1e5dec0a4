"""Exceptions raised by the retrieval core."""

from __future__ import annotations


class KnowledgeScoutError(Exception):
    """Base exception for all KnowledgeScout errors."""


class ValidationError(KnowledgeScoutError):
    """Malformed query, ``k`` or document id supplied by the caller."""


class NotFoundError(KnowledgeScoutError):
    """Unknown document in the requested scope."""

    def __init__(self, message: str, document_id: str | None = None) -> None:
        super().__init__(message)
        self.document_id = document_id


class EmbeddingUnavailable(KnowledgeScoutError):
    """The embedding capability is unreachable or misconfigured.

    Retryable: callers answering a question should surface it as a temporary
    failure instead of guessing an answer.
    """


class CacheUnavailable(KnowledgeScoutError):
    """The cache backend cannot be reached. Always absorbed by ``QueryCache``."""


class ComposerFailure(KnowledgeScoutError):
    """The answer-generation model failed or timed out."""


class IndexingInProgress(KnowledgeScoutError):
    """An indexing run for the same document is already queued or running."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document {document_id} is already being indexed")
        self.document_id = document_id


class IndexingPartialFailure(KnowledgeScoutError):
    """No chunk of a document could be embedded."""

    def __init__(self, document_id: str, failed_chunks: int) -> None:
        super().__init__(
            f"All {failed_chunks} chunk embeddings failed for document {document_id}"
        )
        self.document_id = document_id
        self.failed_chunks = failed_chunks
