# resumefind/services/resumes/indexing_service.py
"""Turns resume records into index entries: normalize -> embed -> pad -> upsert."""
from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from resumefind.core.errors import EmbeddingUnavailable, IndexUnavailable, ResumeFindError
from resumefind.core.retry import RetryPolicy, call_with_retry
from resumefind.schemas.resume import ResumeRecord
from resumefind.services.common.embedding_client import EmbeddingProvider, pad_vector
from resumefind.services.common.text_normalizer import DEFAULT_MAX_LENGTH, embedding_text, metadata_subset
from resumefind.services.resumes.vector_index import VectorIndex

logger = logging.getLogger("index.service")


@dataclass
class IndexReport:
    indexed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "indexed": sorted(self.indexed),
            "failed": dict(sorted(self.failed.items())),
            "skipped": sorted(self.skipped),
        }


class IndexingService:
    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        *,
        dimension: int,
        max_input_chars: int = DEFAULT_MAX_LENGTH,
        embed_policy: RetryPolicy = RetryPolicy(),
        index_policy: RetryPolicy = RetryPolicy(),
        concurrency: int = 8,
        batch_size: int = 32,
        failure_policy: str = "raise",
    ):
        if failure_policy not in ("raise", "skip"):
            raise ValueError(f"Unknown index failure policy: {failure_policy}")
        self.embedder = embedder
        self.vector_index = vector_index
        self.dimension = dimension
        self.max_input_chars = max_input_chars
        self.embed_policy = embed_policy
        self.index_policy = index_policy
        self.concurrency = max(1, concurrency)
        self.batch_size = max(1, batch_size)
        self.failure_policy = failure_policy
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def id_lock(self, resume_id: str) -> AsyncIterator[None]:
        """
        Serialize every index/delete step for one id. Not reentrant: code holding it
        calls the `lock_held=True` variants. Locks vanish once nobody holds them.
        """
        lock = self._locks.get(resume_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[resume_id] = lock
        async with lock:
            yield

    def _text_for(self, record: ResumeRecord) -> str:
        text = embedding_text(record, self.max_input_chars)
        if not text:
            logger.warning("Resume %s has no indexable text; embedding its id", record.id)
            text = record.id
        return text

    async def _embed(self, texts: Sequence[str]) -> List[List[float]]:
        vectors = await call_with_retry(
            lambda: self.embedder.embed_batch(list(texts)),
            policy=self.embed_policy,
            error_cls=EmbeddingUnavailable,
            what=f"Embedding {len(texts)} resume text(s)",
            stage="embedding",
        )
        if len(vectors) != len(texts):
            raise EmbeddingUnavailable(f"Provider returned {len(vectors)} vectors for {len(texts)} texts", retryable=False)
        return [pad_vector(v, self.dimension) for v in vectors]

    async def _upsert(self, record: ResumeRecord, vector: List[float]) -> None:
        await call_with_retry(
            lambda: self.vector_index.upsert(record.id, vector, metadata_subset(record)),
            policy=self.index_policy,
            error_cls=IndexUnavailable,
            what=f"Upserting resume {record.id}",
            stage="indexing",
        )

    async def index_resume(self, record: ResumeRecord, *, lock_held: bool = False) -> None:
        """Normalize, embed, pad and upsert one record under its id lock. Errors propagate."""
        if not lock_held:
            async with self.id_lock(record.id):
                await self.index_resume(record, lock_held=True)
            return
        (vector,) = await self._embed([self._text_for(record)])
        await self._upsert(record, vector)
        logger.info("Indexed resume %s", record.id)

    async def index_on_save(self, record: ResumeRecord, *, lock_held: bool = False) -> bool:
        """
        Index a freshly saved record, honouring INDEX_FAILURE_POLICY.
        Returns False only under the 'skip' policy, when the record stays stored but unsearchable.
        """
        try:
            await self.index_resume(record, lock_held=lock_held)
            return True
        except ResumeFindError as e:
            if self.failure_policy != "skip":
                raise
            logger.error(
                "Indexing resume %s failed (%s: %s); saved without indexing per INDEX_FAILURE_POLICY=skip",
                record.id, e.code, e.message,
            )
            return False

    async def delete_from_index(self, resume_id: str, *, lock_held: bool = False) -> None:
        if not lock_held:
            async with self.id_lock(resume_id):
                await self.delete_from_index(resume_id, lock_held=True)
            return
        await call_with_retry(
            lambda: self.vector_index.delete(resume_id),
            policy=self.index_policy,
            error_cls=IndexUnavailable,
            what=f"Deleting vector {resume_id}",
            stage="indexing",
        )
        logger.info("Removed resume %s from index", resume_id)

    async def index_many(
        self,
        records: Sequence[ResumeRecord],
        *,
        still_exists: Optional[Callable[[str], Awaitable[bool]]] = None,
    ) -> IndexReport:
        """
        Batch re-index with bounded concurrency. One bad batch or record is reported
        in `failed` and never aborts the rest.

        Embeddings are computed per batch outside the id locks; `still_exists` is
        re-checked under each id lock so a record deleted meanwhile is skipped, not revived.
        """
        report = IndexReport()
        if not records:
            return report
        semaphore = asyncio.Semaphore(self.concurrency)
        batches = [records[i : i + self.batch_size] for i in range(0, len(records), self.batch_size)]

        async def upsert_one(record: ResumeRecord, vector: List[float]) -> None:
            async with semaphore:
                try:
                    async with self.id_lock(record.id):
                        if still_exists is not None and not await still_exists(record.id):
                            logger.info("Resume %s was deleted during re-index; skipping", record.id)
                            report.skipped.append(record.id)
                            return
                        await self._upsert(record, vector)
                    report.indexed.append(record.id)
                except (ResumeFindError, ValueError) as e:
                    logger.warning("Failed to index resume %s: %s", record.id, e)
                    report.failed[record.id] = str(e)

        async def run_batch(batch: Sequence[ResumeRecord]) -> None:
            async with semaphore:
                try:
                    vectors = await self._embed([self._text_for(r) for r in batch])
                except ResumeFindError as e:
                    logger.warning("Embedding batch of %d failed: %s", len(batch), e.message)
                    for r in batch:
                        report.failed[r.id] = e.message
                    return
            await asyncio.gather(*(upsert_one(r, v) for r, v in zip(batch, vectors)))

        await asyncio.gather(*(run_batch(b) for b in batches))
        logger.info("Batch indexing done: %d indexed, %d failed", len(report.indexed), len(report.failed))
        return report
