# resumefind/schemas/resume.py
# -----------------------------------------------------------------------------
# Canonical resume record. Every store validates documents through ResumeRecord
# once, at its boundary; consumers never see loosely-typed dicts.
# Field names are snake_case in Python and camelCase on the wire / on disk.
# -----------------------------------------------------------------------------
from __future__ import annotations

import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def now_millis() -> int:
    return int(time.time() * 1000)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExperienceLevel(str, Enum):
    entry = "entry"
    mid = "mid"
    senior = "senior"
    executive = "executive"


class EducationLevel(str, Enum):
    high_school = "high-school"
    associate = "associate"
    bachelor = "bachelor"
    master = "master"
    phd = "phd"


# Fields whose change requires re-embedding the resume.
CONTENT_FIELDS = frozenset({
    "title", "role", "experience_level", "skills", "education",
    "years_experience", "companies", "interviews", "offers", "content",
})


def _split_list(value: Any) -> Any:
    """Accept 'React, Node.js' style strings coming from upload forms."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class ResumeRecord(CamelModel):
    id: str = Field(min_length=1)
    title: str = ""
    role: str = ""
    author: str = ""
    experience_level: ExperienceLevel = ExperienceLevel.mid
    skills: list[str] = Field(default_factory=list)
    companies: list[str] = Field(default_factory=list)
    interviews: list[str] = Field(default_factory=list)
    offers: list[str] = Field(default_factory=list)
    education: str = ""
    education_level: Optional[EducationLevel] = None
    years_experience: str = ""
    content: str = ""
    pdf_url: Optional[str] = None
    pdf_filename: Optional[str] = None
    is_public: bool = False
    created_at: int = Field(default_factory=now_millis)
    updated_at: int = Field(default_factory=now_millis)

    @field_validator("skills", "companies", "interviews", "offers", mode="before")
    @classmethod
    def _coerce_lists(cls, v: Any) -> Any:
        return _split_list(v)

    @field_validator("title", "role", "author", "education", "years_experience", "content", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("experience_level", mode="before")
    @classmethod
    def _default_level(cls, v: Any) -> Any:
        return ExperienceLevel.mid if v in (None, "") else v

    @field_validator("education_level", mode="before")
    @classmethod
    def _blank_education_level(cls, v: Any) -> Any:
        return None if v == "" else v

    def to_document(self) -> dict[str, Any]:
        """Serialized form used by stores and the HTTP layer (camelCase)."""
        return self.model_dump(mode="json", by_alias=True)


class ResumeUpdate(CamelModel):
    """Partial update payload; unset fields are left untouched."""
    title: Optional[str] = None
    role: Optional[str] = None
    author: Optional[str] = None
    experience_level: Optional[ExperienceLevel] = None
    skills: Optional[list[str]] = None
    companies: Optional[list[str]] = None
    interviews: Optional[list[str]] = None
    offers: Optional[list[str]] = None
    education: Optional[str] = None
    education_level: Optional[EducationLevel] = None
    years_experience: Optional[str] = None
    content: Optional[str] = None
    is_public: Optional[bool] = None

    @field_validator("skills", "companies", "interviews", "offers", mode="before")
    @classmethod
    def _coerce_lists(cls, v: Any) -> Any:
        return None if v is None else _split_list(v)


class ResumeListOut(CamelModel):
    items: list[ResumeRecord]
    total: int


class IndexActionOut(CamelModel):
    success: bool = True
    resume_id: str
    message: Optional[str] = None


class UploadOut(CamelModel):
    success: bool = True
    resume_id: str
    indexed: bool
    message: Optional[str] = None


class ExtractedTextOut(CamelModel):
    success: bool = True
    text: str
    page_count: int
    character_count: int
