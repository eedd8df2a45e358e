import hashlib
import re
from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest
from fastapi.testclient import TestClient

from resumefind.api.deps import build_services
from resumefind.core.config import Settings
from resumefind.core.errors import IndexUnavailable, RecordStoreUnavailable
from resumefind.schemas.resume import ResumeRecord
from resumefind.schemas.search import VectorMatch
from resumefind.services.common.embedding_client import EmbeddingProvider
from resumefind.services.resumes.record_store import RecordStore
from resumefind.services.resumes.vector_index import InMemoryVectorIndex

TEST_DIMENSION = 64


class HashEmbedder(EmbeddingProvider):
    """Deterministic bag-of-words embedder: each token hashes to one component."""

    name = "hash"

    def __init__(self, native_dimension: int = TEST_DIMENSION):
        self.native_dimension = native_dimension
        self.calls: List[List[str]] = []

    def vector_for(self, text: str) -> List[float]:
        vec = np.zeros(self.native_dimension, dtype=np.float32)
        for token in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.native_dimension
            vec[bucket] += 1.0
        if not vec.any():
            vec[0] = 1.0
        return (vec / np.linalg.norm(vec)).tolist()

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self.vector_for(t) for t in texts]


class FailingEmbedder(EmbeddingProvider):
    name = "failing"

    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    async def embed_batch(self, texts):
        self.calls += 1
        raise self.error


class StaticVectorIndex(InMemoryVectorIndex):
    """Returns a fixed match list from query() regardless of top_k; records every call."""

    def __init__(self, matches: List[VectorMatch], dimension: int = TEST_DIMENSION):
        super().__init__("static", dimension)
        self.matches = matches
        self.query_calls: List[dict] = []

    async def query(self, vector, top_k, search_filter=None):
        self._check_vector(vector)
        self.query_calls.append({"top_k": top_k, "filter": search_filter})
        return list(self.matches)


class UnavailableVectorIndex(InMemoryVectorIndex):
    def __init__(self, dimension: int = TEST_DIMENSION):
        super().__init__("down", dimension)
        self.query_calls = 0

    async def query(self, vector, top_k, search_filter=None):
        self.query_calls += 1
        raise IndexUnavailable("connection refused")


class DictRecordStore(RecordStore):
    """In-memory record store; ids in `failing` raise RecordStoreUnavailable on get."""

    def __init__(self, records: Optional[Dict[str, ResumeRecord]] = None, failing=(), fail_all: bool = False):
        self.records: Dict[str, ResumeRecord] = dict(records or {})
        self.failing = set(failing)
        self.fail_all = fail_all
        self.get_calls: List[str] = []

    async def get(self, resume_id):
        self.get_calls.append(resume_id)
        if self.fail_all or resume_id in self.failing:
            raise RecordStoreUnavailable("record store offline", retryable=False)
        return self.records.get(resume_id)

    async def set(self, resume_id, doc):
        record = doc if isinstance(doc, ResumeRecord) else ResumeRecord.model_validate({**doc, "id": resume_id})
        self.records[resume_id] = record
        return record

    async def delete(self, resume_id):
        return self.records.pop(resume_id, None) is not None

    async def list(self, *, offset=0, limit=None):
        items = sorted(self.records.values(), key=lambda r: r.created_at, reverse=True)
        end = None if limit is None else offset + limit
        return items[offset:end], len(items)

    async def list_ids(self):
        return set(self.records)


class FakeLLM:
    def __init__(self, reply: str = "# Feedback\nLooks good.", configured: bool = True, error: Exception = None):
        self.reply = reply
        self.is_configured = configured
        self.error = error
        self.messages = []

    def chat_text(self, messages, timeout=60, *, options=None, max_tokens=None):
        self.messages.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply


def make_record(resume_id: str, **fields) -> ResumeRecord:
    base = {
        "id": resume_id,
        "title": f"Resume {resume_id}",
        "role": "Software Engineer",
        "experienceLevel": "mid",
        "skills": ["Python"],
        "content": f"Content of {resume_id}",
        "createdAt": 1_700_000_000_000,
        "updatedAt": 1_700_000_000_000,
    }
    base.update(fields)
    return ResumeRecord.model_validate(base)


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        DATA_DIR=tmp_path / "data",
        VECTOR_DIMENSION=TEST_DIMENSION,
        RETRY_MAX_ATTEMPTS=2,
        RETRY_BASE_BACKOFF_SEC=0.0,
        EMBEDDING_TIMEOUT_SEC=5,
        VECTOR_INDEX_TIMEOUT_SEC=5,
        RECORD_STORE_TIMEOUT_SEC=5,
        OPENAI_API_KEY=None,
        OPENAI_MODEL=None,
        LLM_CHAT_MODEL=None,
        OLLAMA_BASE_URL=None,
    )


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def fake_llm():
    return FakeLLM(configured=False)


@pytest.fixture
def services(test_settings, embedder, fake_llm):
    return build_services(test_settings, embedder=embedder, llm=fake_llm)


@pytest.fixture
def client(services):
    from resumefind.main import create_app

    with TestClient(create_app(services)) as c:
        yield c
