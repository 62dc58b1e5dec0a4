"""FastAPI application exposing question answering and index management."""

from __future__ import annotations

import logging
import secrets
import threading
import uuid
from typing import Any, List, Literal

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from knowledgescout.config import AppConfig
from knowledgescout.errors import (
    EmbeddingUnavailable,
    IndexingInProgress,
    NotFoundError,
    ValidationError,
)
from knowledgescout.models import IndexStatus, Visibility
from knowledgescout.services import Services, build_services

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="KnowledgeScout", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_services: Services | None = None
_services_lock = threading.Lock()


def get_services() -> Services:
    """Build the process services on first use from environment configuration."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services(AppConfig.from_env())
        return _services


def require_admin(
    x_admin_token: str | None = Header(default=None),
    services: Services = Depends(get_services),
) -> None:
    expected = services.config.admin_token
    if not x_admin_token:
        raise HTTPException(status_code=401, detail="Authentication required")
    if not expected or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=403, detail="Admin access required")


class AskPayload(BaseModel):
    # length is checked by the answerer after stripping
    query: str = Field(min_length=1)
    k: int = Field(default=5, ge=1, le=20)
    documentId: uuid.UUID | None = None


class DocumentPayload(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    content: str
    visibility: Literal["private", "public"] = "private"
    ownerId: str | None = None
    filename: str | None = None


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    global _services
    with _services_lock:
        if _services is not None:
            _services.close()
            _services = None


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(IndexingInProgress)
async def indexing_in_progress_handler(request: Request, exc: IndexingInProgress) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(EmbeddingUnavailable)
async def embedding_unavailable_handler(
    request: Request, exc: EmbeddingUnavailable
) -> JSONResponse:
    LOGGER.error("Embedding unavailable for %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Embedding service unavailable, please retry later"},
        headers={"Retry-After": "30"},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


@app.post("/ask")
def ask_question(payload: AskPayload, services: Services = Depends(get_services)) -> dict[str, Any]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    document_id = str(payload.documentId) if payload.documentId else None
    result = services.answerer.answer(query, k=payload.k, document_id=document_id)
    return result.to_dict()


@app.get("/index/stats")
def index_stats(services: Services = Depends(get_services)) -> dict[str, Any]:
    overview = services.store.get_overview()
    LOGGER.info(
        f"Index stats retrieved: {overview.total_documents} docs, "
        f"{overview.total_chunks} chunks, {overview.indexed_documents} indexed"
    )
    return overview.to_dict()


@app.get("/index/health")
def index_health(services: Services = Depends(get_services)) -> dict[str, Any]:
    overview = services.store.get_overview()
    total = overview.total_documents
    indexed = overview.indexed_documents
    return {
        "totalDocuments": total,
        "indexedDocuments": indexed,
        "documentsWithChunks": overview.documents_with_chunks,
        "indexingProgress": (indexed / total) * 100 if total > 0 else 100.0,
        "needsReindexing": total - indexed,
        "status": "healthy" if indexed == total else "degraded",
    }


@app.post("/index/rebuild", dependencies=[Depends(require_admin)])
def rebuild_index(services: Services = Depends(get_services)) -> JSONResponse:
    scheduled = services.queue.rebuild()
    if scheduled == 0:
        return JSONResponse(
            status_code=200,
            content={
                "message": "No documents need reindexing",
                "documentsToProcess": 0,
                "status": "idle",
            },
        )
    return JSONResponse(
        status_code=202,
        content={
            "message": "Index rebuild started",
            "documentsToProcess": scheduled,
            "status": "processing",
        },
    )


@app.delete("/index/cache", dependencies=[Depends(require_admin)])
def clear_cache(services: Services = Depends(get_services)) -> dict[str, Any]:
    cleared = services.cache.clear()
    LOGGER.info(f"Cache cleared: {cleared} entries removed")
    return {"clearedEntries": cleared, "message": "Cache cleared successfully"}


@app.post("/documents", status_code=201)
def upload_document(
    payload: DocumentPayload, services: Services = Depends(get_services)
) -> dict[str, Any]:
    document = services.store.create_document(
        payload.title,
        payload.content,
        owner_id=payload.ownerId,
        filename=payload.filename,
        visibility=Visibility(payload.visibility),
    )
    services.queue.submit(document.id)
    LOGGER.info(f"Document uploaded: {document.id}, indexing scheduled")
    summary = document.to_summary()
    summary["indexingScheduled"] = True
    return summary


@app.get("/documents")
def list_documents(
    status: IndexStatus | None = None, services: Services = Depends(get_services)
) -> dict[str, List[dict[str, Any]]]:
    documents = services.store.list_documents([status] if status else None)
    return {"documents": [document.to_summary() for document in documents]}


@app.get("/documents/{document_id}")
def get_document(document_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    document = services.store.get_document(document_id)
    if document is None:
        raise NotFoundError(f"Document {document_id} not found", document_id)
    return document.to_summary()


@app.delete("/documents/{document_id}")
def delete_document(
    document_id: str, services: Services = Depends(get_services)
) -> dict[str, Any]:
    if services.pipeline.is_indexing(document_id):
        raise IndexingInProgress(document_id)
    if not services.store.delete_document(document_id):
        raise NotFoundError(f"Document {document_id} not found", document_id)
    services.cache.invalidate_document(document_id)
    LOGGER.info(f"Document deleted: {document_id}")
    return {"status": "ok", "deletedId": document_id}
