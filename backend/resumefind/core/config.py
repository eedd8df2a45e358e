# resumefind/core/config.py
from __future__ import annotations
from pathlib import Path
from typing import Literal
from pydantic_settings import BaseSettings
from pydantic import Field

# Resolve the .env alongside the backend package root (adjust if your layout differs)
ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
BACKEND_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):

    # --- App info ---
    APP_NAME: str = Field(default="ResumeFind Backend")
    CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )

    # --- Database (only needed for the sql / pgvector backends) ---
    DATABASE_URL: str | None = Field(default=None, description="PostgreSQL connection URL (e.g., postgresql+psycopg://...)")
    DATABASE_URL_ASYNC: str | None = Field(
        default=None,
        description="Async PostgreSQL URL (e.g., postgresql+asyncpg://...). Optional; derived if missing.",
    )

    # --- Storage backends ---
    RECORD_STORE_BACKEND: Literal["file", "sql"] = Field(default="file")
    VECTOR_INDEX_BACKEND: Literal["memory", "pgvector"] = Field(default="memory")
    DATA_DIR: Path = Field(default=BACKEND_DIR / "data")
    RESUME_DIR: Path | None = Field(default=None, description="Per-resume directories; defaults to DATA_DIR/resumes")
    FEEDBACK_DIR: Path | None = Field(default=None, description="Saved feedback requests; defaults to DATA_DIR/feedback")

    # --- Vector index ---
    VECTOR_INDEX_NAME: str = Field(default="resume_vectors")
    VECTOR_DIMENSION: int = Field(default=384, ge=1, description="Dimensionality D of every vector in the index")
    VECTOR_METRIC: Literal["cosine"] = "cosine"
    VECTOR_MAX_TOP_K: int = Field(default=1000, ge=1)
    AUTO_CREATE_INDEX: bool = True

    # --- Embeddings ---
    EMBEDDING_PROVIDER: Literal["sentence-transformers", "openai", "ollama"] = "sentence-transformers"
    SENTENCE_TRANSFORMER_MODEL: str = Field(
        default="all-MiniLM-L6-v2",
        description="SentenceTransformer model (mean pooling, 384 dims, ~80MB)",
    )
    EMBEDDING_MODEL: str | None = Field(default=None, description="Model used for text embeddings on Ollama")
    OPENAI_EMBEDDING_MODEL: str = Field(default="text-embedding-3-small", description="Default OpenAI model for embeddings")
    MAX_EMBEDDING_INPUT_CHARS: int = Field(default=5000, ge=1)

    # --- LLM feedback ---
    OLLAMA_BASE_URL: str | None = Field(default=None, description="Base URL of local Ollama server")
    LLM_CHAT_MODEL: str | None = Field(default=None, description="Ollama chat model used for feedback")
    OPENAI_API_KEY: str | None = Field(default=None, description="API key for OpenAI services")
    OPENAI_MODEL: str | None = Field(default=None, description="OpenAI chat model used for feedback")
    FEEDBACK_TIMEOUT_SEC: float = 120.0
    FEEDBACK_MAX_TOKENS: int = 4000

    # --- Timeouts / retries ---
    EMBEDDING_TIMEOUT_SEC: float = 60.0
    VECTOR_INDEX_TIMEOUT_SEC: float = 15.0
    RECORD_STORE_TIMEOUT_SEC: float = 10.0
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1, description="Total attempts per call, including the first")
    RETRY_BASE_BACKOFF_SEC: float = 0.5

    # --- Indexing / search ---
    INDEX_CONCURRENCY: int = Field(default=8, ge=1, le=64)
    INDEX_BATCH_SIZE: int = Field(default=32, ge=1)
    HYDRATION_CONCURRENCY: int = Field(default=10, ge=1)
    INDEX_FAILURE_POLICY: Literal["raise", "skip"] = Field(
        default="raise",
        description="'skip' keeps an uploaded resume even when indexing fails (logged, not searchable)",
    )

    class Config:
        env_file = str(ENV_PATH)
        case_sensitive = True

    @property
    def database_url_async_effective(self) -> str:
        """
        Prefer DATABASE_URL_ASYNC; if it's missing, derive from DATABASE_URL by swapping
        '+psycopg' -> '+asyncpg'. If no swap is possible, return DATABASE_URL as-is.
        """
        if self.DATABASE_URL_ASYNC:
            return self.DATABASE_URL_ASYNC
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is not set. The sql/pgvector backends need a PostgreSQL URL.")
        if "+psycopg" in self.DATABASE_URL:
            return self.DATABASE_URL.replace("+psycopg", "+asyncpg")
        return self.DATABASE_URL

    @property
    def resume_dir(self) -> Path:
        return self.RESUME_DIR or self.DATA_DIR / "resumes"

    @property
    def feedback_dir(self) -> Path:
        return self.FEEDBACK_DIR or self.DATA_DIR / "feedback"


settings = Settings()
