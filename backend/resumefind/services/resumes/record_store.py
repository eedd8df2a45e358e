# resumefind/services/resumes/record_store.py
"""Record Store adapters: keyed CRUD over ResumeRecord documents.

Every document crossing this boundary is validated into a ResumeRecord, so callers
never handle loosely-shaped dicts. Two implementations:
  - FileRecordStore: <root>/<id>/metadata.json plus a flat <root>/index.json for listing
  - SqlRecordStore:  `resumes` table in PostgreSQL (async SQLAlchemy)
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from resumefind.core.errors import RecordNotFound, RecordStoreUnavailable
from resumefind.db.base import Base
from resumefind.repositories import resume_repo
from resumefind.schemas.resume import ResumeRecord, now_millis
from resumefind.services.resumes.file_store import METADATA_FILENAME, validate_resume_id

logger = logging.getLogger("records.store")

INDEX_FILENAME = "index.json"

Document = Union[ResumeRecord, Dict[str, Any]]


def to_record(doc: Document, resume_id: Optional[str] = None) -> ResumeRecord:
    """Validate/coerce an incoming document. Raises pydantic.ValidationError on bad shapes."""
    if isinstance(doc, ResumeRecord):
        record = doc
    else:
        payload = dict(doc)
        if resume_id is not None:
            payload.setdefault("id", resume_id)
        record = ResumeRecord.model_validate(payload)
    if resume_id is not None and record.id != resume_id:
        raise ValueError(f"Document id {record.id!r} does not match key {resume_id!r}")
    return record


class RecordStore(ABC):

    @abstractmethod
    async def get(self, resume_id: str) -> Optional[ResumeRecord]: ...

    @abstractmethod
    async def set(self, resume_id: str, doc: Document) -> ResumeRecord: ...

    @abstractmethod
    async def delete(self, resume_id: str) -> bool: ...

    @abstractmethod
    async def list(self, *, offset: int = 0, limit: Optional[int] = None) -> Tuple[List[ResumeRecord], int]: ...

    @abstractmethod
    async def list_ids(self) -> Set[str]: ...

    async def update(self, resume_id: str, changes: Dict[str, Any]) -> ResumeRecord:
        """Merge `changes` (python or camelCase keys) into the stored record; `id`/`createdAt` are immutable."""
        current = await self.get(resume_id)
        if current is None:
            raise RecordNotFound(resume_id)
        merged = current.to_document()
        probe = ResumeRecord.model_fields
        for key, value in changes.items():
            field = probe.get(key)
            wire_key = field.alias if field is not None and field.alias else key
            if wire_key in ("id", "createdAt"):
                continue
            merged[wire_key] = value
        merged["updatedAt"] = now_millis()
        return await self.set(resume_id, merged)

    async def query(self, predicate: Callable[[ResumeRecord], bool]) -> List[ResumeRecord]:
        records, _ = await self.list()
        return [r for r in records if predicate(r)]


class FileRecordStore(RecordStore):
    """Local-filesystem record store (the app's offline fallback layout)."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = threading.Lock()

    # --- helpers (sync, run in worker threads) ---

    def _metadata_path(self, resume_id: str) -> Path:
        return self.root / validate_resume_id(resume_id) / METADATA_FILENAME

    @staticmethod
    def _write_json(path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)

    def _read_record(self, path: Path) -> ResumeRecord:
        try:
            return ResumeRecord.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("Corrupt resume metadata at %s: %s", path, e)
            raise RecordStoreUnavailable(f"Corrupt record at {path.parent.name}", retryable=False) from e

    def _load_index(self) -> Dict[str, Dict[str, Any]]:
        index_path = self.root / INDEX_FILENAME
        if not index_path.exists():
            return self._rebuild_index_locked()
        try:
            entries = json.loads(index_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("index.json unreadable; rebuilding from per-resume metadata")
            return self._rebuild_index_locked()
        return {e["id"]: e for e in entries if isinstance(e, dict) and e.get("id")}

    def _save_index(self, entries: Dict[str, Dict[str, Any]]) -> None:
        ordered = sorted(entries.values(), key=lambda e: e.get("createdAt", 0), reverse=True)
        self._write_json(self.root / INDEX_FILENAME, ordered)

    def _rebuild_index_locked(self) -> Dict[str, Dict[str, Any]]:
        entries: Dict[str, Dict[str, Any]] = {}
        if self.root.exists():
            for meta in self.root.glob(f"*/{METADATA_FILENAME}"):
                try:
                    record = self._read_record(meta)
                except RecordStoreUnavailable:
                    continue
                entries[record.id] = record.to_document()
        self._save_index(entries)
        return entries

    def _get_sync(self, resume_id: str) -> Optional[ResumeRecord]:
        try:
            path = self._metadata_path(resume_id)
        except ValueError:
            return None
        if not path.exists():
            return None
        try:
            return self._read_record(path)
        except OSError as e:
            raise RecordStoreUnavailable(f"Cannot read record {resume_id}: {e}") from e

    def _set_sync(self, record: ResumeRecord) -> ResumeRecord:
        doc = record.to_document()
        with self._lock:
            self._write_json(self._metadata_path(record.id), doc)
            entries = self._load_index()
            entries[record.id] = doc
            self._save_index(entries)
        return record

    def _delete_sync(self, resume_id: str) -> bool:
        try:
            resume_dir = self._metadata_path(resume_id).parent
        except ValueError:
            return False
        with self._lock:
            existed = (resume_dir / METADATA_FILENAME).exists()
            if resume_dir.exists():
                shutil.rmtree(resume_dir)
            entries = self._load_index()
            if entries.pop(resume_id, None) is not None:
                self._save_index(entries)
        return existed

    def _list_sync(self) -> List[ResumeRecord]:
        with self._lock:
            entries = self._load_index()
        records = []
        for doc in entries.values():
            try:
                records.append(ResumeRecord.model_validate(doc))
            except ValidationError as e:
                logger.warning("Skipping invalid index entry %s: %s", doc.get("id"), e)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    # --- async API ---

    async def get(self, resume_id: str) -> Optional[ResumeRecord]:
        return await asyncio.to_thread(self._get_sync, resume_id)

    async def set(self, resume_id: str, doc: Document) -> ResumeRecord:
        record = to_record(doc, validate_resume_id(resume_id))
        try:
            return await asyncio.to_thread(self._set_sync, record)
        except OSError as e:
            raise RecordStoreUnavailable(f"Cannot write record {resume_id}: {e}") from e

    async def delete(self, resume_id: str) -> bool:
        try:
            return await asyncio.to_thread(self._delete_sync, resume_id)
        except OSError as e:
            raise RecordStoreUnavailable(f"Cannot delete record {resume_id}: {e}") from e

    async def list(self, *, offset: int = 0, limit: Optional[int] = None) -> Tuple[List[ResumeRecord], int]:
        try:
            records = await asyncio.to_thread(self._list_sync)
        except OSError as e:
            raise RecordStoreUnavailable(f"Cannot list records: {e}") from e
        end = None if limit is None else offset + limit
        return records[offset:end], len(records)

    async def list_ids(self) -> Set[str]:
        records, _ = await self.list()
        return {r.id for r in records}


class SqlRecordStore(RecordStore):
    """PostgreSQL-backed record store (`resumes` table, JSONB document)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def ensure_schema(self) -> None:
        async with self._session_factory() as session:
            conn = await session.connection()
            await conn.run_sync(Base.metadata.create_all)
            await session.commit()

    async def get(self, resume_id: str) -> Optional[ResumeRecord]:
        try:
            async with self._session_factory() as session:
                row = await resume_repo.get_resume(session, resume_id)
        except (SQLAlchemyError, OSError) as e:
            raise RecordStoreUnavailable(f"Cannot read record {resume_id}: {e}") from e
        if row is None:
            return None
        try:
            return ResumeRecord.model_validate(row.document)
        except ValidationError as e:
            logger.error("Corrupt resume document %s: %s", resume_id, e)
            raise RecordStoreUnavailable(f"Corrupt record {resume_id}", retryable=False) from e

    async def set(self, resume_id: str, doc: Document) -> ResumeRecord:
        record = to_record(doc, resume_id)
        try:
            async with self._session_factory() as session:
                await resume_repo.save_resume(session, resume_id=record.id, document=record.to_document())
        except (SQLAlchemyError, OSError) as e:
            raise RecordStoreUnavailable(f"Cannot write record {resume_id}: {e}") from e
        return record

    async def delete(self, resume_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                return await resume_repo.delete_resume(session, resume_id)
        except (SQLAlchemyError, OSError) as e:
            raise RecordStoreUnavailable(f"Cannot delete record {resume_id}: {e}") from e

    async def list(self, *, offset: int = 0, limit: Optional[int] = None) -> Tuple[List[ResumeRecord], int]:
        try:
            async with self._session_factory() as session:
                rows, total = await resume_repo.list_resumes(session, offset=offset, limit=limit)
        except (SQLAlchemyError, OSError) as e:
            raise RecordStoreUnavailable(f"Cannot list records: {e}") from e
        records = []
        for row in rows:
            try:
                records.append(ResumeRecord.model_validate(row.document))
            except ValidationError as e:
                logger.warning("Skipping invalid resume row %s: %s", row.id, e)
        return records, total

    async def list_ids(self) -> Set[str]:
        try:
            async with self._session_factory() as session:
                return await resume_repo.list_ids(session)
        except (SQLAlchemyError, OSError) as e:
            raise RecordStoreUnavailable(f"Cannot list record ids: {e}") from e
