# resumefind/services/common/embedding_client.py
"""Embedding providers for resumes and queries: a local SentenceTransformer (SBERT) encoder
and a remote OpenAI / Ollama client. Both return L2-normalized vectors in the model's native
dimensionality; padding to the index dimensionality is done by the callers via `pad_vector`."""
from __future__ import annotations
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

import numpy as np
import requests
from openai import (
    OpenAI,
    APIConnectionError,
    APIError,
    APITimeoutError,
    BadRequestError,
    InternalServerError,
    RateLimitError,
)

from resumefind.core.config import Settings
from resumefind.core.errors import EmbeddingUnavailable

logger = logging.getLogger("ai.embed")


def l2_normalize(vec: Sequence[float]) -> List[float]:
    arr = np.asarray(vec, dtype=np.float32)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0 or not np.isfinite(norm):
        raise EmbeddingUnavailable("Model returned a zero or non-finite vector")
    return (arr / norm).tolist()


def pad_vector(vec: Sequence[float], dimension: int) -> List[float]:
    """
    Fit `vec` to exactly `dimension` components: zero-pad the tail when shorter,
    keep the first `dimension` components when longer.
    """
    if dimension < 1:
        raise ValueError("dimension must be >= 1")
    values = [float(v) for v in vec]
    if len(values) >= dimension:
        return values[:dimension]
    return values + [0.0] * (dimension - len(values))


class EmbeddingProvider(ABC):
    """Text -> native-dimension embedding. Implementations must be safe for concurrent use."""

    name: str = "embedding"

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    @abstractmethod
    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        ...

    async def warm_up(self) -> None:
        """Load the model eagerly (e.g. at startup). Optional."""
        return None


class SentenceTransformerProvider(EmbeddingProvider):
    """
    Local SBERT-style encoder (mean pooling over token embeddings, L2-normalized output).

    The model is loaded lazily on first use and cached on the instance for the life of the
    process. Loading is single-flight: concurrent first callers block on one lock and only
    the first one actually loads.
    """

    name = "sentence-transformers"

    def __init__(self, model_name: str, *, batch_size: int = 32, device: Optional[str] = None):
        self.model_name = model_name
        self.batch_size = batch_size
        self.device = device
        self._model: Any = None
        self._lock = threading.Lock()
        self.load_count = 0

    def _create_model(self) -> Any:
        from sentence_transformers import SentenceTransformer
        return SentenceTransformer(self.model_name, device=self.device)

    def _get_model(self) -> Any:
        if self._model is not None:
            return self._model
        with self._lock:
            if self._model is None:
                logger.info("Loading SentenceTransformer model %s ...", self.model_name)
                try:
                    model = self._create_model()
                except Exception as e:
                    logger.exception("Failed to load SentenceTransformer %s: %s", self.model_name, e)
                    raise EmbeddingUnavailable(f"Embedding model {self.model_name} failed to load: {e}") from e
                self.load_count += 1
                self._model = model
                logger.info("SentenceTransformer %s loaded", self.model_name)
        return self._model

    @property
    def native_dimension(self) -> Optional[int]:
        if self._model is None:
            return None
        return int(self._model.get_sentence_embedding_dimension())

    def _encode(self, texts: Sequence[str]) -> List[List[float]]:
        model = self._get_model()
        try:
            arr = model.encode(
                list(texts),
                batch_size=self.batch_size,
                normalize_embeddings=True,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as e:
            logger.exception("SentenceTransformer inference error: %s", e)
            raise EmbeddingUnavailable(f"Embedding inference failed: {e}") from e
        vectors = [np.asarray(row, dtype=np.float32).tolist() for row in arr]
        logger.debug("Embedded %d texts (dim=%d)", len(vectors), len(vectors[0]) if vectors else -1)
        return vectors

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, list(texts))

    async def warm_up(self) -> None:
        await asyncio.to_thread(self._get_model)


class RemoteEmbeddingClient(EmbeddingProvider):
    """
    Embedding client for hosted models, supporting both OpenAI and Ollama.
    Outputs are L2-normalized so they are comparable with the local encoder's.
    """

    def __init__(
        self,
        provider: str,
        *,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        batch_size: int = 64,
    ):
        self.provider = provider.lower()
        if self.provider not in ("openai", "ollama"):
            raise ValueError(f"Unknown embedding provider: {provider}")
        self.name = self.provider
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.batch_size = max(1, batch_size)
        self._client: Optional[OpenAI] = None
        self._lock = threading.Lock()
        logger.info("Initialized embedding client with %s model: %s", self.provider, self.model)

    # ===== OpenAI =====
    def _get_openai_client(self) -> OpenAI:
        if self._client is not None:
            return self._client
        with self._lock:
            if self._client is None:
                if not self.api_key:
                    raise EmbeddingUnavailable(
                        "OPENAI_API_KEY is not set. Please add it to your environment or .env file.",
                        retryable=False,
                    )
                self._client = OpenAI(api_key=self.api_key)
                logger.info("OpenAI embedding client initialized")
        return self._client

    def _embed_openai(self, texts: Sequence[str]) -> List[List[float]]:
        client = self._get_openai_client()
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start : start + self.batch_size])
            try:
                resp = client.embeddings.create(model=self.model, input=batch, timeout=self.timeout)
            except (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError) as e:
                logger.warning("OpenAI embed transient error: %s", e)
                raise EmbeddingUnavailable(f"OpenAI embeddings unavailable: {e}") from e
            except BadRequestError as e:
                logger.exception("OpenAI embed bad request: %s", e)
                raise EmbeddingUnavailable(f"OpenAI rejected the embedding request: {e}", retryable=False) from e
            except APIError as e:
                logger.exception("OpenAI embed API error: %s", e)
                raise EmbeddingUnavailable(f"OpenAI embeddings failed: {e}", retryable=False) from e
            vectors.extend(d.embedding for d in resp.data)
        return vectors

    # ===== Ollama =====
    def _embed_ollama_one(self, text: str) -> List[float]:
        if not self.base_url:
            raise EmbeddingUnavailable("OLLAMA_BASE_URL is not set.", retryable=False)
        url = f"{self.base_url.rstrip('/')}/api/embeddings"
        try:
            resp = requests.post(url, json={"model": self.model, "prompt": text}, timeout=self.timeout)
            resp.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            logger.warning("Ollama embed HTTP %s: %s", status, e)
            raise EmbeddingUnavailable(f"Ollama embeddings failed: {e}", retryable=status >= 500 or status == 429) from e
        except requests.RequestException as e:
            logger.warning("Ollama embed connection error: %s", e)
            raise EmbeddingUnavailable(f"Ollama embeddings unavailable: {e}") from e
        try:
            vec = resp.json().get("embedding")
        except ValueError as e:
            raise EmbeddingUnavailable(f"Ollama returned invalid JSON: {e}") from e
        if not vec:
            raise EmbeddingUnavailable("No embedding returned from Ollama")
        return vec

    def _embed_sync(self, texts: Sequence[str]) -> List[List[float]]:
        if self.provider == "openai":
            raw = self._embed_openai(texts)
        else:
            # Ollama /api/embeddings takes one prompt per call.
            raw = [self._embed_ollama_one(t) for t in texts]
        return [l2_normalize(v) for v in raw]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._embed_sync, list(texts))


def build_embedding_provider(settings: Settings) -> EmbeddingProvider:
    if settings.EMBEDDING_PROVIDER == "sentence-transformers":
        return SentenceTransformerProvider(settings.SENTENCE_TRANSFORMER_MODEL, batch_size=settings.INDEX_BATCH_SIZE)
    if settings.EMBEDDING_PROVIDER == "openai":
        return RemoteEmbeddingClient(
            "openai",
            model=settings.OPENAI_EMBEDDING_MODEL,
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.EMBEDDING_TIMEOUT_SEC,
        )
    return RemoteEmbeddingClient(
        "ollama",
        model=settings.EMBEDDING_MODEL or "nomic-embed-text",
        base_url=settings.OLLAMA_BASE_URL,
        timeout=settings.EMBEDDING_TIMEOUT_SEC,
    )
