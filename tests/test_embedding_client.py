import asyncio
import threading
import time
from unittest.mock import MagicMock

import httpx
import numpy as np
import openai
import pytest

from resumefind.core.config import Settings
from resumefind.core.errors import EmbeddingUnavailable
from resumefind.services.common import embedding_client as ec


def test_pad_vector_zero_pads_short_vectors():
    padded = ec.pad_vector([0.5, 0.25, 1.0], 6)
    assert padded == [0.5, 0.25, 1.0, 0.0, 0.0, 0.0]


def test_pad_vector_truncates_long_vectors():
    assert ec.pad_vector([1.0, 2.0, 3.0, 4.0], 2) == [1.0, 2.0]


def test_pad_vector_exact_length_unchanged():
    assert ec.pad_vector([1, 2, 3], 3) == [1.0, 2.0, 3.0]


def test_l2_normalize_rejects_zero_vector():
    with pytest.raises(EmbeddingUnavailable):
        ec.l2_normalize([0.0, 0.0])


def test_l2_normalize_unit_length():
    out = ec.l2_normalize([3.0, 4.0])
    assert out == pytest.approx([0.6, 0.8])


class _SlowModel:
    def __init__(self, dim=4):
        self.dim = dim

    def encode(self, texts, **kwargs):
        return np.ones((len(texts), self.dim), dtype=np.float32) / 2.0

    def get_sentence_embedding_dimension(self):
        return self.dim


def test_sentence_transformer_model_loads_once_under_concurrency(monkeypatch):
    provider = ec.SentenceTransformerProvider("fake-model")
    created = []
    lock = threading.Lock()

    def fake_create():
        time.sleep(0.05)  # widen the race window
        with lock:
            created.append(1)
        return _SlowModel()

    monkeypatch.setattr(provider, "_create_model", fake_create)

    async def run():
        return await asyncio.gather(*(provider.embed(f"text {i}") for i in range(8)))

    vectors = asyncio.run(run())
    assert len(created) == 1
    assert provider.load_count == 1
    assert all(len(v) == 4 for v in vectors)
    assert provider.native_dimension == 4


def test_sentence_transformer_load_failure_is_typed(monkeypatch):
    provider = ec.SentenceTransformerProvider("missing-model")

    def boom():
        raise OSError("model not found")

    monkeypatch.setattr(provider, "_create_model", boom)
    with pytest.raises(EmbeddingUnavailable):
        asyncio.run(provider.embed("hello"))
    assert provider.load_count == 0


def test_embed_batch_empty_input_skips_model(monkeypatch):
    provider = ec.SentenceTransformerProvider("fake-model")
    monkeypatch.setattr(provider, "_create_model", lambda: pytest.fail("model should not load"))
    assert asyncio.run(provider.embed_batch([])) == []


def test_remote_client_openai_without_key_is_not_retryable():
    client = ec.RemoteEmbeddingClient("openai", model="text-embedding-3-small", api_key=None)
    with pytest.raises(EmbeddingUnavailable) as excinfo:
        asyncio.run(client.embed("hello"))
    assert excinfo.value.retryable is False


def test_remote_client_ollama_normalizes_output(monkeypatch):
    class _Resp:
        def raise_for_status(self):
            pass

        def json(self):
            return {"embedding": [3.0, 4.0]}

    monkeypatch.setattr(ec.requests, "post", lambda *a, **kw: _Resp())
    client = ec.RemoteEmbeddingClient("ollama", model="nomic-embed-text", base_url="http://ollama:11434")
    assert asyncio.run(client.embed("hello")) == pytest.approx([0.6, 0.8])


def test_remote_client_ollama_connection_error_is_retryable(monkeypatch):
    def refuse(*a, **kw):
        raise ec.requests.ConnectionError("refused")

    monkeypatch.setattr(ec.requests, "post", refuse)
    client = ec.RemoteEmbeddingClient("ollama", model="nomic-embed-text", base_url="http://ollama:11434")
    with pytest.raises(EmbeddingUnavailable) as excinfo:
        asyncio.run(client.embed("hello"))
    assert excinfo.value.retryable is True


def test_remote_client_openai_auth_error_is_typed_and_not_retryable():
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    error = openai.AuthenticationError("bad key", response=httpx.Response(401, request=request), body=None)
    client = ec.RemoteEmbeddingClient("openai", model="text-embedding-3-small", api_key="sk-test")
    client._client = MagicMock()
    client._client.embeddings.create.side_effect = error

    with pytest.raises(EmbeddingUnavailable) as excinfo:
        asyncio.run(client.embed("hello"))
    assert excinfo.value.retryable is False


def test_remote_client_ollama_invalid_json_is_typed(monkeypatch):
    class _Garbage:
        def raise_for_status(self):
            pass

        def json(self):
            raise ValueError("Expecting value")

    monkeypatch.setattr(ec.requests, "post", lambda *a, **kw: _Garbage())
    client = ec.RemoteEmbeddingClient("ollama", model="nomic-embed-text", base_url="http://ollama:11434")
    with pytest.raises(EmbeddingUnavailable):
        asyncio.run(client.embed("hello"))

def test_build_embedding_provider_selects_backend():
    local = ec.build_embedding_provider(Settings(EMBEDDING_PROVIDER="sentence-transformers"))
    assert isinstance(local, ec.SentenceTransformerProvider)
    remote = ec.build_embedding_provider(Settings(EMBEDDING_PROVIDER="ollama", OLLAMA_BASE_URL="http://x"))
    assert isinstance(remote, ec.RemoteEmbeddingClient)
    assert remote.provider == "ollama"
