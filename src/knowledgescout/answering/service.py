"""Question answering over indexed documents.

Flow: cache probe → query embedding → ranking → bounded context → composer →
cache store. The cache is injected; no module-level client is involved.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import List, Tuple

from knowledgescout.answering.composer import AnswerComposer
from knowledgescout.embedding.encoder import EmbeddingProvider
from knowledgescout.errors import ComposerFailure, NotFoundError, ValidationError
from knowledgescout.index.cache import QueryCache
from knowledgescout.index.search import Searcher
from knowledgescout.index.storage import ChunkStore
from knowledgescout.models import AnswerResult, RankedCandidate, Source
from knowledgescout.utils.text import truncate

LOGGER = logging.getLogger(__name__)

MAX_QUERY_CHARS = 1000
MAX_K = 20
PREVIEW_CHARS = 200

NO_RESULTS_ANSWER = "I couldn't find any relevant information to answer your question."
COMPOSER_FAILED_ANSWER = "I couldn't generate an answer at this time."


def generate_query_id() -> str:
    return f"query_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def relevance_for_rank(rank_index: int) -> float:
    """Relevance indicator from rank alone: 1.0, 0.9, ... floored at 0.5."""
    return round(max(0.5, 1.0 - rank_index * 0.1), 2)


def build_context(
    ranked: List[RankedCandidate], *, max_chars: int
) -> Tuple[str, List[RankedCandidate]]:
    """Label and join chunks until ``max_chars`` is reached.

    The first chunk is always included. Returns the context and the chunks used.
    """
    parts: List[str] = []
    used: List[RankedCandidate] = []
    total = 0
    for candidate in ranked:
        chunk = candidate.chunk
        part = (
            f"[Document: {chunk.document_title or 'Unknown'}, Chunk: {chunk.position}]\n"
            f"{chunk.text}"
        )
        if used and total + len(part) > max_chars:
            break
        parts.append(part)
        used.append(candidate)
        total += len(part) + 2
    return "\n\n".join(parts), used


class QuestionAnswerer:
    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: ChunkStore,
        composer: AnswerComposer,
        cache: QueryCache,
        *,
        cache_ttl: int = 60,
        max_context_chars: int = 12000,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.searcher = Searcher(store)
        self.composer = composer
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.max_context_chars = max_context_chars

    def _validate(self, query: str, k: int, document_id: str | None) -> str:
        cleaned = query.strip() if isinstance(query, str) else ""
        if not cleaned:
            raise ValidationError("Query must not be empty")
        if len(cleaned) > MAX_QUERY_CHARS:
            raise ValidationError(f"Query must be at most {MAX_QUERY_CHARS} characters")
        if isinstance(k, bool) or not isinstance(k, int) or not 1 <= k <= MAX_K:
            raise ValidationError(f"k must be an integer between 1 and {MAX_K}")
        if document_id is not None and self.store.get_document(document_id) is None:
            raise NotFoundError(f"Document {document_id} not found", document_id)
        return cleaned

    def answer(self, query: str, k: int = 5, document_id: str | None = None) -> AnswerResult:
        """Answer ``query`` from the top ``k`` chunks, optionally within one document.

        Raises:
            ValidationError: malformed query or ``k``.
            NotFoundError: ``document_id`` does not exist.
            EmbeddingUnavailable: the query could not be embedded (retryable).
        """
        query = self._validate(query, k, document_id)
        key = self.cache.fingerprint(query, document_id)

        cached = self.cache.get(key)
        if cached is not None:
            LOGGER.info(f"Returning cached result for query: {query[:50]}...")
            result = AnswerResult.from_dict(cached)
            result.from_cache = True
            return result

        generation = self.cache.generation
        LOGGER.info(f"Processing question: {query[:100]}...")
        query_vector = self.embedder.embed(query)
        ranked = self.searcher.search(query_vector, k=k, document_id=document_id)

        if not ranked:
            result = AnswerResult(answer=NO_RESULTS_ANSWER, query_id=generate_query_id())
            self.cache.set(key, result.to_dict(), self.cache_ttl, generation=generation)
            return result

        context, used = build_context(ranked, max_chars=self.max_context_chars)
        sources = [
            Source(
                document_id=item.chunk.document_id,
                document_title=item.chunk.document_title or "Unknown Document",
                position=item.chunk.position,
                content=truncate(item.chunk.text, PREVIEW_CHARS),
                relevance_score=relevance_for_rank(index),
            )
            for index, item in enumerate(used)
        ]

        try:
            text = self.composer.complete(query, context)
        except ComposerFailure as exc:
            LOGGER.error("Error generating answer: %s", exc)
            return AnswerResult(
                answer=COMPOSER_FAILED_ANSWER, sources=sources, query_id=generate_query_id()
            )

        result = AnswerResult(answer=text, sources=sources, query_id=generate_query_id())
        self.cache.set(key, result.to_dict(), self.cache_ttl, generation=generation)
        LOGGER.info(f"Question answered successfully: {result.query_id}")
        return result
