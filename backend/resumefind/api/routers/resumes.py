"""Resume API endpoints: upload, list, fetch, update and delete resumes, stream stored files,
extract PDF text, and keep the vector index in step with the record store."""
from __future__ import annotations

import asyncio
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse

from resumefind.api.deps import ServiceContainer, get_services
from resumefind.schemas.resume import (
    ExtractedTextOut,
    IndexActionOut,
    ResumeListOut,
    ResumeRecord,
    ResumeUpdate,
    UploadOut,
)
from resumefind.services.resumes.parsing_utils import extract_pdf_text

router = APIRouter(prefix="/resumes", tags=["resumes"])

ALLOWED_UPLOAD_SUFFIXES = (".pdf", ".docx", ".txt")
MEDIA_TYPES = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".txt": "text/plain; charset=utf-8",
}


@router.get("", response_model=ResumeListOut)
async def list_resumes(
    services: ServiceContainer = Depends(get_services),
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=1000),
):
    items, total = await services.resumes.list_resumes(offset=offset, limit=limit)
    return ResumeListOut(items=items, total=total)


@router.post("/upload", response_model=UploadOut, status_code=201)
async def upload_resume(
    file: UploadFile = File(...),
    title: str = Form(..., min_length=1),
    role: str = Form(..., min_length=1),
    skills: str = Form(..., min_length=1),
    companies: str = Form(""),
    education: str = Form(""),
    experience_level: Optional[str] = Form(None, alias="experienceLevel"),
    education_level: Optional[str] = Form(None, alias="educationLevel"),
    years_experience: str = Form("", alias="yearsExperience"),
    interviews: str = Form(""),
    offers: str = Form(""),
    author: str = Form(""),
    content: str = Form(""),
    is_public: bool = Form(False, alias="isPublic"),
    services: ServiceContainer = Depends(get_services),
):
    filename = file.filename or ""
    if not filename.lower().endswith(ALLOWED_UPLOAD_SUFFIXES):
        raise HTTPException(status_code=400, detail="File must be a PDF, DOCX or TXT document")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    # comma-separated form fields become lists in ResumeRecord
    fields = {
        "title": title,
        "role": role,
        "skills": skills,
        "companies": companies,
        "education": education,
        "experienceLevel": experience_level,
        "educationLevel": education_level,
        "yearsExperience": years_experience,
        "interviews": interviews,
        "offers": offers,
        "author": author,
        "content": content,
        "isPublic": is_public,
    }
    record, indexed = await services.resumes.create_resume(fields, upload=(filename, data))
    message = "Resume uploaded successfully" if indexed else "Resume saved but not indexed; it will not appear in search yet"
    return UploadOut(resume_id=record.id, indexed=indexed, message=message)


@router.post("/extract-pdf", response_model=ExtractedTextOut)
async def extract_pdf(file: UploadFile = File(...)):
    if not (file.filename or "").lower().endswith(".pdf"):
        raise HTTPException(status_code=400, detail="File must be a PDF")
    data = await file.read()
    extracted = await asyncio.to_thread(extract_pdf_text, data)
    return ExtractedTextOut(
        text=extracted.text,
        page_count=extracted.page_count,
        character_count=len(extracted.text),
    )


@router.post("/index")
async def reindex_all(services: ServiceContainer = Depends(get_services)):
    """Re-embed and upsert every stored resume (bounded concurrency)."""
    report = await services.resumes.reindex_all()
    return report.to_dict()


@router.get("/{resume_id}", response_model=ResumeRecord)
async def get_resume(resume_id: str, services: ServiceContainer = Depends(get_services)):
    return await services.resumes.get_resume(resume_id)


@router.patch("/{resume_id}", response_model=ResumeRecord)
async def update_resume(resume_id: str, payload: ResumeUpdate, services: ServiceContainer = Depends(get_services)):
    record, _ = await services.resumes.update_resume(resume_id, payload)
    return record


@router.delete("/{resume_id}", status_code=204)
async def delete_resume(resume_id: str, services: ServiceContainer = Depends(get_services)):
    await services.resumes.delete_resume(resume_id)
    return None


@router.get("/{resume_id}/file")
async def resume_file(resume_id: str, services: ServiceContainer = Depends(get_services)):
    path = await services.resumes.file_path(resume_id)
    if path is None:
        raise HTTPException(status_code=404, detail="Resume file missing")
    # RFC 5987 encoding keeps non-ASCII filenames intact
    encoded_filename = quote(path.name.encode("utf-8"))
    return FileResponse(
        path,
        media_type=MEDIA_TYPES.get(path.suffix.lower(), "application/octet-stream"),
        headers={"Content-Disposition": f"inline; filename*=UTF-8''{encoded_filename}"},
    )


@router.put("/{resume_id}/index", response_model=IndexActionOut)
async def index_resume(resume_id: str, services: ServiceContainer = Depends(get_services)):
    record = await services.resumes.index_resume(resume_id)
    return IndexActionOut(resume_id=record.id, message="Resume indexed successfully")


@router.delete("/{resume_id}/index", response_model=IndexActionOut)
async def remove_from_index(resume_id: str, services: ServiceContainer = Depends(get_services)):
    """Idempotent: removing an id that is not indexed still succeeds."""
    await services.indexing.delete_from_index(resume_id)
    return IndexActionOut(resume_id=resume_id, message="Resume removed from index")
