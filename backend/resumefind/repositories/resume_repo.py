from __future__ import annotations
from typing import Any, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from resumefind.models.resume import ResumeRow


async def get_resume(db: AsyncSession, resume_id: str) -> Optional[ResumeRow]:
    return await db.get(ResumeRow, resume_id)


async def save_resume(db: AsyncSession, *, resume_id: str, document: dict[str, Any]) -> ResumeRow:
    row = await get_resume(db, resume_id)
    if row is None:
        row = ResumeRow(id=resume_id)
    row.document = document
    row.title = document.get("title") or ""
    row.role = document.get("role") or ""
    row.is_public = bool(document.get("isPublic"))
    row.created_at = document["createdAt"]
    row.updated_at = document["updatedAt"]
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def list_resumes(db: AsyncSession, *, offset: int = 0, limit: Optional[int] = 20) -> Tuple[list[ResumeRow], int]:
    total = (await db.execute(select(func.count()).select_from(ResumeRow))).scalar_one()
    stmt = select(ResumeRow).order_by(ResumeRow.created_at.desc()).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    rows = (await db.execute(stmt)).scalars().all()
    return list(rows), total


async def list_ids(db: AsyncSession) -> set[str]:
    rows = (await db.execute(select(ResumeRow.id))).scalars().all()
    return set(rows)


async def delete_resume(db: AsyncSession, resume_id: str) -> bool:
    resume = await get_resume(db, resume_id)
    if not resume:
        return False
    await db.delete(resume)
    await db.commit()
    return True
