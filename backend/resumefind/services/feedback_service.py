# resumefind/services/feedback_service.py
"""LLM resume feedback with a deterministic fallback template; every request is saved under FEEDBACK_DIR."""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from resumefind.core.errors import InvalidQuery
from resumefind.services.common.llm_client import LLMClient, LLMUnavailable, load_prompt
from resumefind.services.resumes.file_store import safe_filename
from resumefind.services.resumes.parsing_utils import UNREADABLE_PDF_MESSAGE

logger = logging.getLogger("feedback.service")

SYSTEM_PROMPT = "You are an expert resume coach who provides detailed, professional feedback."

CAREER_LEVELS = {
    "intern": "internship",
    "entry": "entry-level",
    "mid": "mid-level",
    "senior": "senior",
    "executive": "executive-level",
}

MIN_RESUME_CHARS = 50
_EXTRACTION_FAILURE_PREFIXES = ("Failed to extract", "PDF file appears", UNREADABLE_PDF_MESSAGE)


@dataclass
class FeedbackResult:
    feedback_id: str
    feedback: str
    source: str  # "llm" | "fallback"


def readable_career_level(level: str) -> str:
    return CAREER_LEVELS.get(level, level)


def has_usable_text(resume_text: Optional[str]) -> bool:
    text = (resume_text or "").strip()
    return len(text) > MIN_RESUME_CHARS and not text.startswith(_EXTRACTION_FAILURE_PREFIXES)


def _company_suffix(target_company: str) -> str:
    return f" at {target_company}" if target_company else ""


def build_prompt(resume_text: str, target_role: str, target_company: str = "", career_level: str = "entry") -> str:
    level = readable_career_level(career_level)
    suffix = _company_suffix(target_company)
    if has_usable_text(resume_text):
        intro = (
            f"I need you to review a resume and provide detailed, personalized feedback. "
            f"The resume is being prepared for a {level} {target_role} position{suffix}.\n\n"
            f"Here is the resume content:\n---\n{resume_text.strip()}\n---"
        )
    else:
        intro = (
            f"I need you to provide general resume guidance for someone applying for a "
            f"{level} {target_role} position{suffix}.\n\n"
            "Note: We were unable to extract the text from the uploaded resume, so please provide "
            "general best practices for this specific role and level instead of personalized feedback."
        )
    return load_prompt("resume_feedback.prompt.txt").format(
        intro=intro, target_role=target_role, company_suffix=suffix
    )


def fallback_feedback(target_role: str, career_level: str = "entry", target_company: str = "") -> str:
    level = readable_career_level(career_level)
    company = _company_suffix(target_company)
    return f"""# Resume Feedback for {target_role} Position{company}

## Overall Assessment
Here are some general best practices for a {level} {target_role} position{company}.

## Content & Structure Recommendations
- **Professional Summary**: Start with a concise summary highlighting your relevant skills and experience for the {target_role} role.
- **Skills Section**: Clearly list technical and soft skills relevant to {target_role} positions.
- **Work Experience**: Focus on achievements and quantifiable results rather than just responsibilities.
- **Education**: List relevant degrees, certifications, and specialized training.
- **Project Experience**: Include relevant projects that demonstrate your capabilities in this field.

## Formatting Tips
- Use a clean, professional design appropriate for your industry
- Ensure consistent formatting throughout (fonts, spacing, bullet points)
- Make your resume ATS-friendly by using standard section headings
- Limit to 1-2 pages (depending on experience level)
- Use bullet points for easy scanning

## Keywords for {target_role} Positions
Include relevant keywords for your field to help pass ATS screening. Research job descriptions for {target_role} positions{company} and incorporate those terms.

## Next Steps
Consider sharing your resume with peers in your industry for additional feedback. Research the specific requirements for {target_role} positions{company} and tailor your resume accordingly.
"""


class FeedbackService:
    def __init__(self, llm: LLMClient, feedback_dir: Path, *, timeout_sec: float = 120.0, max_tokens: int = 4000):
        self.llm = llm
        self.feedback_dir = Path(feedback_dir)
        self.timeout_sec = timeout_sec
        self.max_tokens = max_tokens

    async def _ask_llm(self, prompt: str) -> Optional[str]:
        if not self.llm.is_configured:
            logger.info("No LLM provider configured, using fallback feedback")
            return None
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(self.llm.chat_text, messages, self.timeout_sec, max_tokens=self.max_tokens),
                timeout=self.timeout_sec + 5,
            )
        except (LLMUnavailable, asyncio.TimeoutError) as e:
            logger.error("LLM feedback failed, using fallback: %s", str(e) or "timeout")
            return None
        return text or None

    def _persist(self, feedback_id: str, metadata: dict, resume_text: str, feedback: str,
                 upload: Optional[tuple[str, bytes]]) -> Path:
        target = self.feedback_dir / feedback_id
        target.mkdir(parents=True, exist_ok=True)
        if upload is not None:
            filename, data = upload
            (target / safe_filename(filename)).write_bytes(data)
        (target / "metadata.json").write_text(json.dumps(metadata, indent=2, ensure_ascii=False), encoding="utf-8")
        (target / "resume-text.txt").write_text(resume_text, encoding="utf-8")
        (target / "feedback.md").write_text(feedback, encoding="utf-8")
        return target

    async def generate_feedback(
        self,
        resume_text: str,
        target_role: str,
        target_company: str = "",
        career_level: str = "entry",
        *,
        upload: Optional[tuple[str, bytes]] = None,
    ) -> FeedbackResult:
        """
        Produce markdown feedback for a resume. Never raises for provider problems:
        the fallback template is returned instead and `source` says which path was taken.
        """
        if not target_role or not target_role.strip():
            raise InvalidQuery("targetRole is required", stage="feedback")
        target_role = target_role.strip()
        target_company = (target_company or "").strip()
        feedback_id = str(uuid.uuid4())

        text = await self._ask_llm(build_prompt(resume_text, target_role, target_company, career_level))
        source = "llm" if text else "fallback"
        feedback = text or fallback_feedback(target_role, career_level, target_company)

        metadata = {
            "id": feedback_id,
            "type": "pdf" if upload is not None else "text",
            "fileName": upload[0] if upload is not None else None,
            "targetRole": target_role,
            "targetCompany": target_company,
            "careerLevel": career_level,
            "source": source,
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
        path = await asyncio.to_thread(self._persist, feedback_id, metadata, resume_text or "", feedback, upload)
        logger.info("Feedback %s generated (%s) and saved to %s", feedback_id, source, path)
        return FeedbackResult(feedback_id=feedback_id, feedback=feedback, source=source)
