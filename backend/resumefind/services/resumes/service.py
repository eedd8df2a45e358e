from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from resumefind.core.errors import RecordNotFound
from resumefind.schemas.resume import CONTENT_FIELDS, ResumeRecord, ResumeUpdate, now_millis
from resumefind.services.resumes.file_store import ResumeFileStore
from resumefind.services.resumes.indexing_service import IndexingService, IndexReport
from resumefind.services.resumes.parsing_utils import extract_pdf_text, parse_bytes_to_text
from resumefind.services.resumes.record_store import RecordStore

logger = logging.getLogger("resumes.service")


class ResumeService:
    """Record lifecycle: create -> index, content update -> re-index, delete vector then record."""

    def __init__(self, record_store: RecordStore, file_store: ResumeFileStore, indexing: IndexingService):
        self.record_store = record_store
        self.file_store = file_store
        self.indexing = indexing

    async def get_resume(self, resume_id: str) -> ResumeRecord:
        record = await self.record_store.get(resume_id)
        if record is None:
            raise RecordNotFound(resume_id)
        return record

    async def list_resumes(self, *, offset: int = 0, limit: Optional[int] = 20):
        return await self.record_store.list(offset=offset, limit=limit)

    async def create_resume(
        self,
        fields: Dict[str, Any],
        upload: Optional[Tuple[str, bytes]] = None,
    ) -> Tuple[ResumeRecord, bool]:
        """
        Store the uploaded binary and the record, then index it.

        Returns (record, indexed). `indexed` is False only when INDEX_FAILURE_POLICY=skip
        swallowed an indexing failure; under 'raise' the error propagates after the record is saved.
        """
        resume_id = str(uuid.uuid4())
        doc = {k: v for k, v in fields.items() if v is not None}
        if upload is not None:
            filename, data = upload
            if not doc.get("content"):
                # extraction errors must surface before anything is written
                if filename.lower().endswith(".pdf"):
                    extracted = await asyncio.to_thread(extract_pdf_text, data)
                    doc["content"] = extracted.text if extracted.has_text else ""
                else:
                    doc["content"] = await asyncio.to_thread(parse_bytes_to_text, data, filename)
            stored = await self.file_store.save(resume_id, filename, data)
            doc["pdfFilename"] = stored.name
            doc["pdfUrl"] = f"/resumes/{resume_id}/file"

        now = now_millis()
        doc.update(id=resume_id, createdAt=now, updatedAt=now)
        record = await self.record_store.set(resume_id, doc)
        logger.info("Saved resume %s (%s)", resume_id, record.title or "untitled")

        indexed = await self.indexing.index_on_save(record)
        return record, indexed

    async def update_resume(self, resume_id: str, payload: ResumeUpdate) -> Tuple[ResumeRecord, bool]:
        changes = payload.model_dump(exclude_unset=True)
        # held across write and re-index so a concurrent delete cannot leave an orphan vector
        async with self.indexing.id_lock(resume_id):
            record = await self.record_store.update(resume_id, changes)
            if CONTENT_FIELDS.isdisjoint(changes):
                return record, False
            logger.info("Content of resume %s changed (%s); re-indexing", resume_id, ", ".join(sorted(changes)))
            return record, await self.indexing.index_on_save(record, lock_held=True)

    async def delete_resume(self, resume_id: str) -> None:
        async with self.indexing.id_lock(resume_id):
            # Vector first: a crash in between leaves an unindexed record, never an orphan vector.
            await self.indexing.delete_from_index(resume_id, lock_held=True)
            if not await self.record_store.delete(resume_id):
                raise RecordNotFound(resume_id)
        logger.info("Deleted resume %s", resume_id)

    async def index_resume(self, resume_id: str) -> ResumeRecord:
        async with self.indexing.id_lock(resume_id):
            record = await self.get_resume(resume_id)
            await self.indexing.index_resume(record, lock_held=True)
        return record

    async def _exists(self, resume_id: str) -> bool:
        return await self.record_store.get(resume_id) is not None

    async def reindex_all(self) -> IndexReport:
        records, total = await self.record_store.list()
        logger.info("Re-indexing %d resumes", total)
        return await self.indexing.index_many(records, still_exists=self._exists)

    async def file_path(self, resume_id: str) -> Optional[Path]:
        record = await self.get_resume(resume_id)
        if not record.pdf_filename:
            return None
        return self.file_store.path_for(resume_id, record.pdf_filename)
