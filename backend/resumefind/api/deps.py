# resumefind/api/deps.py
"""Service wiring. Everything is built once per app from Settings and hung on app.state."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from resumefind.core.config import Settings
from resumefind.core.retry import RetryPolicy
from resumefind.db.session import create_async_session_factory
from resumefind.services.common.embedding_client import EmbeddingProvider, build_embedding_provider
from resumefind.services.common.llm_client import LLMClient
from resumefind.services.feedback_service import FeedbackService
from resumefind.services.resumes.file_store import ResumeFileStore
from resumefind.services.resumes.indexing_service import IndexingService
from resumefind.services.resumes.record_store import FileRecordStore, RecordStore, SqlRecordStore
from resumefind.services.resumes.search_service import SearchService
from resumefind.services.resumes.service import ResumeService
from resumefind.services.resumes.vector_index import InMemoryVectorIndex, PgVectorIndex, VectorIndex

logger = logging.getLogger("api.deps")


@dataclass
class ServiceContainer:
    settings: Settings
    embedder: EmbeddingProvider
    vector_index: VectorIndex
    record_store: RecordStore
    file_store: ResumeFileStore
    indexing: IndexingService
    search: SearchService
    resumes: ResumeService
    feedback: FeedbackService

    async def startup(self) -> None:
        if isinstance(self.record_store, SqlRecordStore):
            await self.record_store.ensure_schema()
        if self.settings.AUTO_CREATE_INDEX:
            await self.vector_index.ensure_index_exists(
                self.vector_index.name, self.settings.VECTOR_DIMENSION, self.settings.VECTOR_METRIC
            )


def _policy(settings: Settings, timeout_sec: float) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.RETRY_MAX_ATTEMPTS,
        base_backoff_sec=settings.RETRY_BASE_BACKOFF_SEC,
        timeout_sec=timeout_sec,
    )


def build_services(
    settings: Settings,
    *,
    embedder: Optional[EmbeddingProvider] = None,
    vector_index: Optional[VectorIndex] = None,
    record_store: Optional[RecordStore] = None,
    llm: Optional[LLMClient] = None,
) -> ServiceContainer:
    """Assemble the service graph; any collaborator can be injected (tests, scripts)."""
    session_factory = None
    if settings.RECORD_STORE_BACKEND == "sql" or settings.VECTOR_INDEX_BACKEND == "pgvector":
        if record_store is None or vector_index is None:
            session_factory = create_async_session_factory(settings.database_url_async_effective)

    if embedder is None:
        embedder = build_embedding_provider(settings)
    if vector_index is None:
        if settings.VECTOR_INDEX_BACKEND == "pgvector":
            vector_index = PgVectorIndex(
                session_factory, settings.VECTOR_INDEX_NAME, settings.VECTOR_DIMENSION,
                max_top_k=settings.VECTOR_MAX_TOP_K,
            )
        else:
            vector_index = InMemoryVectorIndex(
                settings.VECTOR_INDEX_NAME, settings.VECTOR_DIMENSION, max_top_k=settings.VECTOR_MAX_TOP_K
            )
    if record_store is None:
        if settings.RECORD_STORE_BACKEND == "sql":
            record_store = SqlRecordStore(session_factory)
        else:
            record_store = FileRecordStore(settings.resume_dir)

    embed_policy = _policy(settings, settings.EMBEDDING_TIMEOUT_SEC)
    index_policy = _policy(settings, settings.VECTOR_INDEX_TIMEOUT_SEC)
    record_policy = _policy(settings, settings.RECORD_STORE_TIMEOUT_SEC)

    file_store = ResumeFileStore(settings.resume_dir)
    indexing = IndexingService(
        embedder,
        vector_index,
        dimension=settings.VECTOR_DIMENSION,
        max_input_chars=settings.MAX_EMBEDDING_INPUT_CHARS,
        embed_policy=embed_policy,
        index_policy=index_policy,
        concurrency=settings.INDEX_CONCURRENCY,
        batch_size=settings.INDEX_BATCH_SIZE,
        failure_policy=settings.INDEX_FAILURE_POLICY,
    )
    search = SearchService(
        embedder,
        vector_index,
        record_store,
        dimension=settings.VECTOR_DIMENSION,
        max_input_chars=settings.MAX_EMBEDDING_INPUT_CHARS,
        embed_policy=embed_policy,
        index_policy=index_policy,
        record_policy=record_policy,
        hydration_concurrency=settings.HYDRATION_CONCURRENCY,
    )
    feedback = FeedbackService(
        llm or LLMClient(settings),
        settings.feedback_dir,
        timeout_sec=settings.FEEDBACK_TIMEOUT_SEC,
        max_tokens=settings.FEEDBACK_MAX_TOKENS,
    )
    logger.info(
        "Services ready: records=%s, index=%s (%s, dim=%d), embeddings=%s",
        type(record_store).__name__, type(vector_index).__name__, vector_index.name,
        settings.VECTOR_DIMENSION, embedder.name,
    )
    return ServiceContainer(
        settings=settings,
        embedder=embedder,
        vector_index=vector_index,
        record_store=record_store,
        file_store=file_store,
        indexing=indexing,
        search=search,
        resumes=ResumeService(record_store, file_store, indexing),
        feedback=feedback,
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
