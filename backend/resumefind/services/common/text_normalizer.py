# resumefind/services/common/text_normalizer.py
"""Deterministic text preparation shared by indexing and search.

Corpus text and query text go through the same `process_query` cleanup so both
sides of the cosine comparison live in the same embedding space.
"""
from __future__ import annotations
import re
from typing import Any, Dict, List, Tuple

from resumefind.schemas.resume import ResumeRecord
from resumefind.schemas.search import SearchFilter


DEFAULT_MAX_LENGTH = 5000
CONTENT_PREVIEW_CHARS = 1000   # slice of `content` embedded with the structured fields
METADATA_PREVIEW_CHARS = 500   # slice of `content` stored beside the vector

# Anything that is neither a word character nor whitespace
_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")
_SINGLE_WS_RE = re.compile(r"\s")

# (label, attribute) in the order they appear in the canonical text
_FIELD_ORDER: Tuple[Tuple[str, str], ...] = (
    ("Title", "title"),
    ("Role", "role"),
    ("Experience Level", "experience_level"),
    ("Skills", "skills"),
    ("Education", "education"),
    ("Years Experience", "years_experience"),
    ("Companies", "companies"),
    ("Interviews", "interviews"),
    ("Offers", "offers"),
)

_FILTER_LABELS: Dict[str, str] = {
    "role": "Role",
    "experienceLevel": "Experience Level",
    "skills": "Skills",
    "education": "Education",
    "companies": "Companies",
}


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v).strip() for v in value if v is not None and str(v).strip())
    if hasattr(value, "value"):  # Enum members
        value = value.value
    return str(value).strip()


def normalize(record: ResumeRecord) -> str:
    """
    Render a resume as `Label: value` lines in a fixed field order.
    Empty strings, None and empty lists are skipped. Pure and idempotent.
    """
    lines: List[str] = []
    for label, attr in _FIELD_ORDER:
        rendered = _render(getattr(record, attr, None))
        if rendered:
            lines.append(f"{label}: {rendered}")

    preview = (record.content or "")[:CONTENT_PREVIEW_CHARS].strip()
    if preview:
        lines.append(f"Content: {preview}")
    return "\n".join(lines)


def truncate(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """
    Cap `text` at `max_length` characters without splitting the last word.

    Cuts at the last whitespace at or before `max_length`; hard-cuts when the
    window holds no whitespace. The result is never longer than `max_length`.
    """
    if max_length < 1:
        raise ValueError("max_length must be >= 1")
    if len(text) <= max_length:
        return text

    # Index max_length itself may be the separator right after a full word.
    window = text[: max_length + 1]
    cut = -1
    for m in _SINGLE_WS_RE.finditer(window):
        cut = m.start()
    head = text[:cut].rstrip() if cut > 0 else ""
    return head or text[:max_length]


def process_query(query: str) -> str:
    """Strip punctuation, collapse whitespace runs to one space, trim."""
    if not query:
        return ""
    cleaned = _PUNCT_RE.sub("", query)
    return _WS_RE.sub(" ", cleaned).strip()


def embedding_text(record: ResumeRecord, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """The exact text embedded for a resume."""
    return truncate(process_query(normalize(record)), max_length)


def filter_to_text(search_filter: SearchFilter) -> str:
    """Text embedded for a filter-only search (no free-text query)."""
    parts = []
    for key, values in search_filter.clauses().items():
        label = _FILTER_LABELS.get(key, key)
        parts.append(f"{label}: {', '.join(values)}")
    return process_query(" ".join(parts))


def metadata_subset(record: ResumeRecord) -> Dict[str, Any]:
    """Summary fields stored beside the vector; served when hydration fails."""
    return {
        "title": record.title,
        "role": record.role,
        "experienceLevel": _render(record.experience_level),
        "skills": list(record.skills),
        "companies": list(record.companies),
        "education": record.education,
        "contentPreview": (record.content or "")[:METADATA_PREVIEW_CHARS],
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
    }
