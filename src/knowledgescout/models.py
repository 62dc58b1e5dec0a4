"""Core KnowledgeScout data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

import numpy as np


class IndexStatus(str, Enum):
    """Indexing lifecycle of a document."""

    UNINDEXED = "unindexed"
    INDEXING = "indexing"
    INDEXED = "indexed"
    FAILED = "failed"


class Visibility(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"


@dataclass(slots=True)
class DocumentRecord:
    """Document as seen by the retrieval core."""

    id: str
    title: str
    content: str
    owner_id: str | None = None
    filename: str | None = None
    visibility: Visibility = Visibility.PRIVATE
    status: IndexStatus = IndexStatus.UNINDEXED
    chunk_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_indexed(self) -> bool:
        return self.status is IndexStatus.INDEXED

    def to_summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "filename": self.filename,
            "ownerId": self.owner_id,
            "visibility": self.visibility.value,
            "status": self.status.value,
            "isIndexed": self.is_indexed,
            "chunkCount": self.chunk_count,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(slots=True)
class ChunkRecord:
    """Chunk of document text paired with its embedding.

    ``position`` is 1-based and unique per document. ``embedding`` stays
    ``None`` when the embedding call for this chunk failed.
    """

    document_id: str
    position: int
    text: str
    embedding: np.ndarray | None = None
    document_title: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class RankedCandidate:
    chunk: ChunkRecord
    score: float


@dataclass(slots=True)
class Source:
    """Citation attached to an answer."""

    document_id: str
    document_title: str
    position: int
    content: str
    relevance_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "documentTitle": self.document_title,
            "position": self.position,
            "content": self.content,
            "relevanceScore": self.relevance_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Source":
        return cls(
            document_id=data["documentId"],
            document_title=data["documentTitle"],
            position=int(data["position"]),
            content=data["content"],
            relevance_score=float(data["relevanceScore"]),
        )


@dataclass(slots=True)
class AnswerResult:
    answer: str
    sources: List[Source] = field(default_factory=list)
    from_cache: bool = False
    query_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": [source.to_dict() for source in self.sources],
            "fromCache": self.from_cache,
            "queryId": self.query_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnswerResult":
        return cls(
            answer=data["answer"],
            sources=[Source.from_dict(item) for item in data.get("sources", [])],
            from_cache=bool(data.get("fromCache", False)),
            query_id=data.get("queryId", ""),
        )


@dataclass(slots=True)
class IndexOverview:
    """Aggregate counters reported by ``GET /index/stats``."""

    total_documents: int = 0
    total_chunks: int = 0
    indexed_documents: int = 0
    unindexed_documents: int = 0
    total_embeddings: int = 0
    documents_with_chunks: int = 0
    last_index_update: datetime | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalDocuments": self.total_documents,
            "totalPages": self.total_chunks,
            "indexedDocuments": self.indexed_documents,
            "unindexedDocuments": self.unindexed_documents,
            "totalEmbeddings": self.total_embeddings,
            "lastIndexUpdate": (
                self.last_index_update.isoformat() if self.last_index_update else None
            ),
        }
