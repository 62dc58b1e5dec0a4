"""Wiring of the retrieval components from an :class:`AppConfig`."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from knowledgescout.answering.composer import (
    AnswerComposer,
    OpenAIAnswerComposer,
    TemplateAnswerComposer,
)
from knowledgescout.answering.service import QuestionAnswerer
from knowledgescout.config import AppConfig
from knowledgescout.embedding.encoder import (
    EmbeddingConfig,
    EmbeddingModel,
    EmbeddingProvider,
    NullEmbeddingProvider,
    OpenAIEmbeddingProvider,
)
from knowledgescout.index.cache import (
    CacheBackend,
    MemoryCacheBackend,
    QueryCache,
    RedisCacheBackend,
)
from knowledgescout.index.indexer import IndexingPipeline
from knowledgescout.index.storage import SQLiteChunkStore
from knowledgescout.index.worker import IndexingQueue

LOGGER = logging.getLogger(__name__)


def build_embedder(config: AppConfig) -> EmbeddingProvider:
    if config.embedding_backend == "null":
        LOGGER.warning(
            "Using NullEmbeddingProvider: embeddings are pseudo-random and carry no meaning"
        )
        return NullEmbeddingProvider(config.embedding_dimension)
    if config.embedding_backend == "openai":
        return OpenAIEmbeddingProvider(
            config.openai_api_key,
            dimension=config.embedding_dimension,
            timeout=config.request_timeout,
        )
    if config.embedding_backend == "sentence-transformers":
        return EmbeddingModel(EmbeddingConfig(model_name=config.model_name))
    raise ValueError(f"Unknown embedding backend: {config.embedding_backend}")


def build_cache_backend(config: AppConfig) -> CacheBackend:
    if config.cache_backend == "redis":
        return RedisCacheBackend(config.redis_url, socket_timeout=min(config.request_timeout, 5.0))
    if config.cache_backend == "memory":
        return MemoryCacheBackend()
    raise ValueError(f"Unknown cache backend: {config.cache_backend}")


def build_composer(config: AppConfig) -> AnswerComposer:
    if config.composer_backend == "template":
        return TemplateAnswerComposer()
    if config.composer_backend == "openai":
        if not config.openai_api_key:
            LOGGER.warning("No OpenAI API key configured; answers will not be generated")
        return OpenAIAnswerComposer(
            config.openai_api_key,
            model=config.chat_model,
            timeout=config.request_timeout,
        )
    raise ValueError(f"Unknown composer backend: {config.composer_backend}")


@dataclass(slots=True)
class Services:
    config: AppConfig
    embedder: EmbeddingProvider
    store: SQLiteChunkStore
    cache: QueryCache
    pipeline: IndexingPipeline
    queue: IndexingQueue
    answerer: QuestionAnswerer

    def close(self) -> None:
        self.queue.shutdown(wait=True)
        self.store.close()


def build_services(
    config: AppConfig,
    *,
    base_dir: Path | None = None,
    embedder: EmbeddingProvider | None = None,
    composer: AnswerComposer | None = None,
    cache_backend: CacheBackend | None = None,
) -> Services:
    """Create every component; explicit arguments override the config."""
    db_path = config.resolve_db_path(base_dir)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    embedder = embedder or build_embedder(config)
    store = SQLiteChunkStore(db_path, dimension=embedder.dimension)
    cache = QueryCache(cache_backend or build_cache_backend(config), default_ttl=config.cache_ttl)
    fallback = (
        NullEmbeddingProvider(embedder.dimension) if config.allow_fallback_embeddings else None
    )
    pipeline = IndexingPipeline(
        embedder,
        store,
        cache,
        chunk_chars=config.chunk_chars,
        overlap=config.overlap,
        fallback_embedder=fallback,
    )
    queue = IndexingQueue(pipeline, store, cache, max_workers=config.index_workers)
    answerer = QuestionAnswerer(
        embedder,
        store,
        composer or build_composer(config),
        cache,
        cache_ttl=config.cache_ttl,
        max_context_chars=config.max_context_chars,
    )
    return Services(
        config=config,
        embedder=embedder,
        store=store,
        cache=cache,
        pipeline=pipeline,
        queue=queue,
        answerer=answerer,
    )
