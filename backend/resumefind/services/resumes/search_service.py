# resumefind/services/resumes/search_service.py
"""Semantic resume search: embed the query, query the vector index, hydrate from the record store."""
from __future__ import annotations

import asyncio
import logging
import math
from typing import List, Optional, Tuple

from resumefind.core.errors import (
    EmbeddingUnavailable,
    IndexUnavailable,
    InvalidQuery,
    RecordStoreUnavailable,
    ResumeFindError,
)
from resumefind.core.retry import RetryPolicy, call_with_retry
from resumefind.schemas.resume import ResumeRecord
from resumefind.schemas.search import (
    HydratedHit,
    MetadataOnlyHit,
    SearchFilter,
    SearchHit,
    SearchPage,
    SearchStatus,
    VectorMatch,
)
from resumefind.services.common.embedding_client import EmbeddingProvider, pad_vector
from resumefind.services.common.text_normalizer import DEFAULT_MAX_LENGTH, filter_to_text, process_query, truncate
from resumefind.services.resumes.record_store import RecordStore
from resumefind.services.resumes.vector_index import VectorIndex

logger = logging.getLogger("search.service")


class SearchService:
    """
    Validating -> Embedding -> Querying -> Hydrating -> {complete | partial | metadata_only | empty}.

    Embedding and index failures (after retries) surface as one typed error. Hydration
    failures never do: the affected hits fall back to the metadata stored beside the vector.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        record_store: RecordStore,
        *,
        dimension: int,
        max_input_chars: int = DEFAULT_MAX_LENGTH,
        embed_policy: RetryPolicy = RetryPolicy(),
        index_policy: RetryPolicy = RetryPolicy(),
        record_policy: RetryPolicy = RetryPolicy(),
        hydration_concurrency: int = 10,
    ):
        self.embedder = embedder
        self.vector_index = vector_index
        self.record_store = record_store
        self.dimension = dimension
        self.max_input_chars = max_input_chars
        self.embed_policy = embed_policy
        self.index_policy = index_policy
        self.record_policy = record_policy
        self.hydration_concurrency = max(1, hydration_concurrency)

    # ---- Validating ----

    def _query_text(self, query_text: str, search_filter: Optional[SearchFilter]) -> str:
        cleaned = process_query(query_text or "")
        if cleaned:
            return truncate(cleaned, self.max_input_chars)
        if search_filter is not None and not search_filter.is_empty():
            return truncate(filter_to_text(search_filter), self.max_input_chars)
        raise InvalidQuery("Please provide a search query or filters")

    @staticmethod
    def _check_paging(page: int, page_size: int) -> None:
        if page < 1:
            raise InvalidQuery("page must be >= 1")
        if page_size < 1:
            raise InvalidQuery("pageSize must be >= 1")

    # ---- Hydrating ----

    async def _hydrate(self, matches: List[VectorMatch]) -> Tuple[List[SearchHit], List[str]]:
        semaphore = asyncio.Semaphore(self.hydration_concurrency)

        async def fetch(match: VectorMatch) -> Optional[ResumeRecord]:
            async with semaphore:
                try:
                    return await call_with_retry(
                        lambda: self.record_store.get(match.id),
                        policy=self.record_policy,
                        error_cls=RecordStoreUnavailable,
                        what=f"Hydrating resume {match.id}",
                        stage="hydrating",
                    )
                except ResumeFindError as e:
                    logger.warning("Hydration failed for %s: %s", match.id, e.message)
                    return None

        # gather keeps the input order, so score order survives
        records = await asyncio.gather(*(fetch(m) for m in matches))

        hits: List[SearchHit] = []
        failed: List[str] = []
        for match, record in zip(matches, records):
            if record is None:
                failed.append(match.id)
                hits.append(MetadataOnlyHit(id=match.id, score=match.score, metadata=match.metadata))
            else:
                hits.append(HydratedHit(id=match.id, score=match.score, metadata=match.metadata, record=record))
        return hits, failed

    @staticmethod
    def _status(hits: List[SearchHit], failed: List[str]) -> SearchStatus:
        if not hits:
            return SearchStatus.empty
        if not failed:
            return SearchStatus.complete
        if len(failed) == len(hits):
            return SearchStatus.metadata_only
        return SearchStatus.partial

    async def search(
        self,
        query_text: str = "",
        search_filter: Optional[SearchFilter] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> SearchPage:
        self._check_paging(page, page_size)
        text = self._query_text(query_text, search_filter)
        active_filter = search_filter if search_filter is not None and not search_filter.is_empty() else None
        logger.info("Searching %r (filter=%s, page=%d, pageSize=%d)",
                    text[:80], active_filter.clauses() if active_filter else {}, page, page_size)

        # ---- Embedding ----
        raw = await call_with_retry(
            lambda: self.embedder.embed(text),
            policy=self.embed_policy,
            error_cls=EmbeddingUnavailable,
            what="Embedding search query",
            stage="embedding",
        )
        vector = pad_vector(raw, self.dimension)

        # ---- Querying ----
        # No native offset: fetch through the end of this page; totals cover only the fetched matches.
        top_k = min(page * page_size, self.vector_index.max_top_k)
        matches = await call_with_retry(
            lambda: self.vector_index.query(vector, top_k, active_filter),
            policy=self.index_policy,
            error_cls=IndexUnavailable,
            what="Querying vector index",
            stage="querying",
        )
        window = matches[(page - 1) * page_size:]

        hits, failed = await self._hydrate(window) if window else ([], [])
        total = len(matches)
        result = SearchPage(
            results=hits,
            page=page,
            page_size=page_size,
            total_results=total,
            total_pages=math.ceil(total / page_size) if total else 0,
            status=self._status(hits, failed),
            hydration_failures=failed,
        )

        partial = result.partial_failure()
        if partial is not None:
            logger.warning("%s: %s", partial.message, ", ".join(partial.failed_ids))
        logger.info("Search returned %d/%d hits (status=%s)", len(hits), total, result.status.value)
        return result
