"""Cosine-similarity ranking over stored chunks."""

from __future__ import annotations

import logging
from typing import List, Sequence

import numpy as np

from knowledgescout.index.storage import ChunkStore
from knowledgescout.models import ChunkRecord, RankedCandidate

LOGGER = logging.getLogger(__name__)

CANDIDATE_MULTIPLIER = 3


def cosine_similarity(a: np.ndarray | None, b: np.ndarray | None) -> float:
    """Cosine similarity in [-1, 1].

    Missing vectors, mismatched lengths and zero-magnitude vectors score 0.0.
    """
    if a is None or b is None:
        return 0.0
    vec_a = np.asarray(a, dtype="float64").reshape(-1)
    vec_b = np.asarray(b, dtype="float64").reshape(-1)
    if vec_a.shape != vec_b.shape or vec_a.size == 0:
        return 0.0

    magnitude = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if magnitude == 0.0:
        return 0.0
    score = float(np.dot(vec_a, vec_b) / magnitude)
    return max(-1.0, min(1.0, score))


def rank(
    query_vector: np.ndarray, candidates: Sequence[ChunkRecord], k: int
) -> List[RankedCandidate]:
    """Return up to ``k`` candidates by descending score.

    Ties break by ascending position, then document id.
    """
    if k < 1:
        raise ValueError("k must be at least 1")

    scored = [
        RankedCandidate(chunk=chunk, score=cosine_similarity(query_vector, chunk.embedding))
        for chunk in candidates
    ]
    scored.sort(key=lambda item: (-item.score, item.chunk.position, item.chunk.document_id))
    return scored[:k]


class Searcher:
    """Linear-scan retrieval: pull a bounded candidate set, then rank it."""

    def __init__(self, store: ChunkStore) -> None:
        self.store = store

    def search(
        self, query_vector: np.ndarray, *, k: int = 5, document_id: str | None = None
    ) -> List[RankedCandidate]:
        if k < 1:
            raise ValueError("k must be at least 1")
        candidates = self.store.list_chunks(
            document_id=document_id, limit=k * CANDIDATE_MULTIPLIER
        )
        LOGGER.debug(
            "Ranking %d candidates (k=%d, document=%s)", len(candidates), k, document_id
        )
        return rank(query_vector, candidates, k)
