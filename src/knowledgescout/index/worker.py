"""Background indexing on a bounded worker pool."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import List

from knowledgescout.errors import IndexingInProgress, KnowledgeScoutError
from knowledgescout.index.cache import QueryCache
from knowledgescout.index.indexer import IndexingPipeline, IndexReport
from knowledgescout.index.storage import ChunkStore
from knowledgescout.models import IndexStatus

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RebuildStats:
    scheduled: int = 0
    processed: int = 0
    failed: int = 0
    failed_documents: List[str] = field(default_factory=list)

    def record(self, document_id: str, ok: bool) -> None:
        if ok:
            self.processed += 1
        else:
            self.failed += 1
            self.failed_documents.append(document_id)


class IndexingQueue:
    """Runs indexing tasks detached from the caller.

    At most one task per document is queued or running at any time.
    """

    def __init__(
        self,
        pipeline: IndexingPipeline,
        store: ChunkStore,
        cache: QueryCache | None = None,
        *,
        max_workers: int = 2,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.pipeline = pipeline
        self.store = store
        self.cache = cache
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="knowledgescout-index"
        )
        self._pending: dict[str, Future] = {}
        self._rebuilds: list[threading.Thread] = []
        self._lock = threading.Lock()

    def submit(self, document_id: str) -> Future:
        """Schedule a document for (re-)indexing."""
        with self._lock:
            if document_id in self._pending or self.pipeline.is_indexing(document_id):
                raise IndexingInProgress(document_id)
            future = self._executor.submit(self._run, document_id)
            self._pending[document_id] = future
        future.add_done_callback(lambda _: self._forget(document_id))
        LOGGER.debug("Queued document %s for indexing", document_id)
        return future

    def _forget(self, document_id: str) -> None:
        with self._lock:
            self._pending.pop(document_id, None)

    def _run(self, document_id: str) -> IndexReport | None:
        try:
            return self.pipeline.index_document(document_id)
        except KnowledgeScoutError as exc:
            LOGGER.error(f"Failed to index document {document_id}: {exc}")
        except Exception:
            LOGGER.exception("Unexpected error while indexing document %s", document_id)
        return None

    def rebuild(self) -> int:
        """Schedule every document that is not ``indexed``; return the count scheduled."""
        documents = self.store.list_documents(
            [IndexStatus.UNINDEXED, IndexStatus.FAILED, IndexStatus.INDEXING]
        )
        futures: dict[str, Future] = {}
        for document in documents:
            try:
                futures[document.id] = self.submit(document.id)
            except IndexingInProgress:
                LOGGER.info("Skipping %s, already being indexed", document.id)

        stats = RebuildStats(scheduled=len(futures))
        if futures:
            LOGGER.info(f"Index rebuild started for {len(futures)} documents")
            finisher = threading.Thread(
                target=self._finish_rebuild,
                args=(futures, stats),
                name="knowledgescout-rebuild",
                daemon=True,
            )
            with self._lock:
                self._rebuilds = [thread for thread in self._rebuilds if thread.is_alive()]
                self._rebuilds.append(finisher)
            finisher.start()
        return stats.scheduled

    def _finish_rebuild(self, futures: dict[str, Future], stats: RebuildStats) -> RebuildStats:
        wait(list(futures.values()))
        for document_id, future in futures.items():
            stats.record(document_id, future.result() is not None)
        self.store.touch_last_index_update()
        if self.cache is not None:
            self.cache.clear()
        LOGGER.info(
            f"Index rebuild completed: {stats.processed} processed, {stats.failed} errors"
        )
        return stats

    def wait(self, timeout: float | None = None) -> None:
        """Block until every queued task has finished."""
        with self._lock:
            futures = list(self._pending.values())
            finishers, self._rebuilds = self._rebuilds, []
        wait(futures, timeout=timeout)
        for finisher in finishers:
            finisher.join(timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the pool; with ``wait`` also join pending rebuild finishers."""
        self._executor.shutdown(wait=wait)
        if not wait:
            return
        with self._lock:
            finishers, self._rebuilds = self._rebuilds, []
        for finisher in finishers:
            finisher.join()
