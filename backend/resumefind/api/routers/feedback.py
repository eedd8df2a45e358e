"""Resume feedback endpoints: pasted text or an uploaded PDF, reviewed by the configured LLM."""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from resumefind.api.deps import ServiceContainer, get_services
from resumefind.schemas.feedback import FeedbackOut, TextFeedbackRequest
from resumefind.services.resumes.parsing_utils import extract_pdf_text

router = APIRouter(prefix="/resumes/feedback", tags=["feedback"])


@router.post("/text", response_model=FeedbackOut)
async def feedback_from_text(payload: TextFeedbackRequest, services: ServiceContainer = Depends(get_services)):
    result = await services.feedback.generate_feedback(
        payload.resume_text,
        payload.target_role,
        payload.target_company,
        payload.career_level,
    )
    return FeedbackOut(feedback_id=result.feedback_id, feedback=result.feedback, source=result.source)


@router.post("", response_model=FeedbackOut)
async def feedback_from_pdf(
    file: UploadFile = File(...),
    target_role: str = Form(..., alias="targetRole", min_length=1),
    target_company: str = Form("", alias="targetCompany"),
    career_level: str = Form("entry", alias="careerLevel"),
    services: ServiceContainer = Depends(get_services),
):
    filename = file.filename or ""
    if not filename.lower().endswith(".pdf"):
        raise HTTPException(status_code=400, detail="File must be a PDF")
    data = await file.read()
    # an unreadable PDF still gets general guidance for the role
    extracted = await asyncio.to_thread(extract_pdf_text, data)
    result = await services.feedback.generate_feedback(
        extracted.text,
        target_role,
        target_company,
        career_level,
        upload=(filename, data),
    )
    message = None if extracted.has_text else extracted.text
    return FeedbackOut(feedback_id=result.feedback_id, feedback=result.feedback, source=result.source, message=message)
