# resumefind/services/resumes/vector_index.py
"""Vector index clients: cosine-similarity nearest-neighbour search over resume embeddings.

`PgVectorIndex` keeps one PostgreSQL table per index (pgvector `vector(D)` column + JSONB
metadata, HNSW cosine index). `InMemoryVectorIndex` is a numpy implementation with the same
contract for local development and tests.
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np
from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, DateTime, Index, MetaData, Table, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from resumefind.core.errors import IndexUnavailable
from resumefind.schemas.search import SearchFilter, VectorMatch

logger = logging.getLogger("index.vector")

SUPPORTED_METRIC = "cosine"
_INDEX_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")
_UNDEFINED_TABLE = "42P01"


def cosine_similarity(matrix: np.ndarray, vec: np.ndarray) -> np.ndarray:
    """Row-wise cosine similarity in [-1, 1]; zero vectors score 0."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vec)
    dots = matrix @ vec
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / norms, 0.0)
    return scores


def index_table(name: str, dimension: int) -> Table:
    """Table layout of one pgvector index: id, vector(D), JSONB metadata, HNSW cosine index."""
    table = Table(
        name,
        MetaData(),
        Column("id", Text, primary_key=True),
        Column("embedding", Vector(dimension), nullable=False),
        Column("metadata", JSONB, nullable=False, server_default=text("'{}'::jsonb")),
        Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    )
    Index(
        f"{name}_embedding_hnsw",
        table.c.embedding,
        postgresql_using="hnsw",
        postgresql_ops={"embedding": "vector_cosine_ops"},
    )
    return table


def matches_filter(metadata: Dict[str, Any], clauses: Dict[str, List[str]]) -> bool:
    """Scalar metadata must equal one allowed value; list metadata must overlap them."""
    for key, allowed in clauses.items():
        value = metadata.get(key)
        if value is None:
            return False
        if isinstance(value, (list, tuple)):
            if not any(str(v) in allowed for v in value):
                return False
        elif str(value) not in allowed:
            return False
    return True


class VectorIndex(ABC):
    """
    Contract shared by all backends:
      - upsert is last-write-wins per id
      - query returns matches sorted by descending score (ties in backend order)
      - delete of an unknown id is a no-op
      - backend failures and missing indexes raise IndexUnavailable
    """

    def __init__(self, name: str, dimension: int, *, max_top_k: int = 1000):
        if dimension < 1:
            raise ValueError("dimension must be >= 1")
        self.name = name
        self.dimension = dimension
        self.max_top_k = max_top_k

    def _check_vector(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimension:
            raise ValueError(f"Vector has {len(vector)} dimensions, index '{self.name}' expects {self.dimension}")

    def _clamp_top_k(self, top_k: int) -> int:
        if not isinstance(top_k, int) or isinstance(top_k, bool) or top_k < 1:
            raise ValueError("top_k must be a positive integer")
        if top_k > self.max_top_k:
            logger.debug("top_k=%d clamped to %d", top_k, self.max_top_k)
        return min(top_k, self.max_top_k)

    @staticmethod
    def _check_metric(metric: str) -> None:
        if metric != SUPPORTED_METRIC:
            raise ValueError(f"Unsupported metric '{metric}'; resume indexes use '{SUPPORTED_METRIC}'")

    @abstractmethod
    async def ensure_index_exists(
        self, name: Optional[str] = None, dimension: Optional[int] = None, metric: str = SUPPORTED_METRIC
    ) -> None: ...

    @abstractmethod
    async def list_indexes(self) -> List[str]: ...

    @abstractmethod
    async def upsert(self, resume_id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def query(
        self, vector: Sequence[float], top_k: int, search_filter: Optional[SearchFilter] = None
    ) -> List[VectorMatch]: ...

    @abstractmethod
    async def delete(self, resume_id: str) -> None: ...

    @abstractmethod
    async def list_ids(self) -> Set[str]: ...


class InMemoryVectorIndex(VectorIndex):
    """Process-local index. Contents are lost on restart (rebuild via POST /resumes/index)."""

    def __init__(self, name: str, dimension: int, *, max_top_k: int = 1000):
        super().__init__(name, dimension, max_top_k=max_top_k)
        self._indexes: Dict[str, Dict[str, Tuple[np.ndarray, Dict[str, Any]]]] = {}
        self._dimensions: Dict[str, int] = {}

    async def ensure_index_exists(
        self, name: Optional[str] = None, dimension: Optional[int] = None, metric: str = SUPPORTED_METRIC
    ) -> None:
        self._check_metric(metric)
        name = name or self.name
        dimension = dimension or self.dimension
        existing = self._dimensions.get(name)
        if existing is not None:
            if existing != dimension:
                raise ValueError(f"Index '{name}' exists with dimension {existing}, not {dimension}")
            return
        self._indexes[name] = {}
        self._dimensions[name] = dimension
        logger.info("Created in-memory index '%s' (dim=%d, metric=%s)", name, dimension, metric)

    async def list_indexes(self) -> List[str]:
        return list(self._indexes)

    def _rows(self) -> Dict[str, Tuple[np.ndarray, Dict[str, Any]]]:
        rows = self._indexes.get(self.name)
        if rows is None:
            raise IndexUnavailable(f"Index '{self.name}' does not exist", retryable=False)
        return rows

    async def upsert(self, resume_id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        self._check_vector(vector)
        rows = self._rows()
        rows[resume_id] = (np.asarray(vector, dtype=np.float32), dict(metadata))

    async def query(
        self, vector: Sequence[float], top_k: int, search_filter: Optional[SearchFilter] = None
    ) -> List[VectorMatch]:
        self._check_vector(vector)
        top_k = self._clamp_top_k(top_k)
        rows = self._rows()
        clauses = search_filter.clauses() if search_filter else {}
        candidates = [(rid, vec, meta) for rid, (vec, meta) in rows.items() if matches_filter(meta, clauses)]
        if not candidates:
            return []
        matrix = np.stack([vec for _, vec, _ in candidates])
        scores = cosine_similarity(matrix, np.asarray(vector, dtype=np.float32))
        # stable sort: equal scores keep insertion order
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            VectorMatch(id=candidates[i][0], score=float(scores[i]), metadata=dict(candidates[i][2]))
            for i in order
        ]

    async def delete(self, resume_id: str) -> None:
        self._rows().pop(resume_id, None)

    async def list_ids(self) -> Set[str]:
        return set(self._rows())


class PgVectorIndex(VectorIndex):
    """pgvector-backed index; one table per index name."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        name: str,
        dimension: int,
        *,
        max_top_k: int = 1000,
    ):
        super().__init__(self._safe_name(name), dimension, max_top_k=max_top_k)
        self._session_factory = session_factory

    @staticmethod
    def _safe_name(name: str) -> str:
        if not _INDEX_NAME_RE.match(name):
            raise ValueError(f"Invalid index name '{name}' (lowercase letters, digits and '_' only)")
        return name

    @staticmethod
    def _vec_literal(vector: Sequence[float]) -> str:
        return str([float(v) for v in vector])

    def _wrap(self, action: str, e: Exception) -> IndexUnavailable:
        orig = getattr(e, "orig", None)
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate == _UNDEFINED_TABLE:
            return IndexUnavailable(f"Index '{self.name}' does not exist", retryable=False)
        logger.warning("pgvector %s failed on '%s': %s", action, self.name, e)
        return IndexUnavailable(f"Vector index {action} failed: {e}")

    async def ensure_index_exists(
        self, name: Optional[str] = None, dimension: Optional[int] = None, metric: str = SUPPORTED_METRIC
    ) -> None:
        self._check_metric(metric)
        table = self._safe_name(name or self.name)
        dimension = dimension or self.dimension
        try:
            async with self._session_factory() as session:
                await session.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
                existing = (await session.execute(
                    text(
                        "SELECT format_type(a.atttypid, a.atttypmod) FROM pg_attribute a "
                        "WHERE a.attrelid = to_regclass(:t) AND a.attname = 'embedding'"
                    ),
                    {"t": table},
                )).scalar_one_or_none()
                if existing is not None:
                    if existing != f"vector({dimension})":
                        raise ValueError(f"Index '{table}' exists as {existing}, not vector({dimension})")
                    return
                conn = await session.connection()
                await conn.run_sync(index_table(table, dimension).metadata.create_all)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap("provisioning", e) from e
        logger.info("Ensured pgvector index '%s' (dim=%d, metric=%s)", table, dimension, metric)

    async def list_indexes(self) -> List[str]:
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(text(
                    "SELECT table_name FROM information_schema.columns "
                    "WHERE table_schema = current_schema() AND column_name = 'embedding' AND udt_name = 'vector'"
                ))).scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap("listing", e) from e
        return list(rows)

    async def upsert(self, resume_id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        self._check_vector(vector)
        sql = text(f"""
            INSERT INTO {self.name} (id, embedding, metadata, updated_at)
            VALUES (:id, CAST(:vec AS vector), CAST(:meta AS jsonb), now())
            ON CONFLICT (id) DO UPDATE
               SET embedding = EXCLUDED.embedding,
                   metadata = EXCLUDED.metadata,
                   updated_at = now()
        """)
        params = {"id": resume_id, "vec": self._vec_literal(vector), "meta": json.dumps(metadata)}
        try:
            async with self._session_factory() as session:
                await session.execute(sql, params)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap("upsert", e) from e
        logger.debug("Upserted vector %s into '%s'", resume_id, self.name)

    @staticmethod
    def _filter_sql(clauses: Dict[str, List[str]], params: Dict[str, Any]) -> str:
        parts = []
        for i, (key, values) in enumerate(clauses.items()):
            k, v = f"k{i}", f"v{i}"
            params[k] = key
            params[v] = values
            parts.append(
                f"(CASE WHEN jsonb_typeof(metadata -> CAST(:{k} AS text)) = 'array' "
                f"THEN jsonb_exists_any(metadata -> CAST(:{k} AS text), CAST(:{v} AS text[])) "
                f"ELSE (metadata ->> CAST(:{k} AS text)) = ANY(CAST(:{v} AS text[])) END)"
            )
        return ("WHERE " + " AND ".join(parts)) if parts else ""

    async def query(
        self, vector: Sequence[float], top_k: int, search_filter: Optional[SearchFilter] = None
    ) -> List[VectorMatch]:
        self._check_vector(vector)
        params: Dict[str, Any] = {"vec": self._vec_literal(vector), "top_k": self._clamp_top_k(top_k)}
        where_clause = self._filter_sql(search_filter.clauses() if search_filter else {}, params)
        sql = text(f"""
            SELECT id,
                   1 - (embedding <=> CAST(:vec AS vector)) AS score,
                   metadata
              FROM {self.name}
              {where_clause}
             ORDER BY embedding <=> CAST(:vec AS vector)
             LIMIT :top_k
        """)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(sql, params)).mappings().all()
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap("query", e) from e
        logger.debug("pgvector query on '%s' returned %d matches", self.name, len(rows))
        return [VectorMatch(id=r["id"], score=float(r["score"]), metadata=r["metadata"] or {}) for r in rows]

    async def delete(self, resume_id: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(text(f"DELETE FROM {self.name} WHERE id = :id"), {"id": resume_id})
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap("delete", e) from e

    async def list_ids(self) -> Set[str]:
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(text(f"SELECT id FROM {self.name}"))).scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap("id listing", e) from e
        return set(rows)
