# resumefind/schemas/feedback.py
from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field

from resumefind.schemas.resume import CamelModel


class TextFeedbackRequest(CamelModel):
    resume_text: str = Field(min_length=1)
    target_role: str = Field(min_length=1)
    target_company: str = ""
    career_level: str = Field(default="entry", min_length=1)


class FeedbackOut(CamelModel):
    success: bool = True
    feedback_id: str
    feedback: str
    source: Literal["llm", "fallback"]
    message: Optional[str] = None
