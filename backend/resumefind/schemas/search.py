# resumefind/schemas/search.py
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import Field

from resumefind.core.errors import RecordHydrationPartialFailure
from resumefind.schemas.resume import CamelModel, ResumeRecord


FilterValue = Union[str, list[str]]


class SearchFilter(CamelModel):
    """
    Structured metadata constraint. A scalar means equality, a list means set
    membership; for list-valued metadata (skills, companies) any overlap matches.
    """
    role: Optional[FilterValue] = None
    education: Optional[FilterValue] = None
    experience_level: Optional[FilterValue] = None
    skills: Optional[FilterValue] = None
    companies: Optional[FilterValue] = None

    def clauses(self) -> dict[str, list[str]]:
        """Metadata key -> allowed values, skipping absent/blank constraints."""
        out: dict[str, list[str]] = {}
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if value is None:
                continue
            values = [value] if isinstance(value, str) else list(value)
            values = [v.strip() for v in values if v and v.strip()]
            if values:
                out[field.alias or name] = values
        return out

    def is_empty(self) -> bool:
        return not self.clauses()


class SearchRequest(CamelModel):
    search_query: str = ""
    filters: Optional[SearchFilter] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=100)


class VectorMatch(CamelModel):
    """Raw nearest-neighbour match as returned by the vector index."""
    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class HydratedHit(CamelModel):
    kind: Literal["hydrated"] = "hydrated"
    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)
    record: ResumeRecord


class MetadataOnlyHit(CamelModel):
    """Served from the metadata stored beside the vector when the record is unavailable."""
    kind: Literal["metadata_only"] = "metadata_only"
    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


SearchHit = Annotated[Union[HydratedHit, MetadataOnlyHit], Field(discriminator="kind")]


class SearchStatus(str, Enum):
    complete = "complete"            # every hit hydrated
    partial = "partial"              # some hits metadata-only
    metadata_only = "metadata_only"  # no hit hydrated (degraded mode)
    empty = "empty"                  # legitimately no matches


class SearchPage(CamelModel):
    results: list[SearchHit] = Field(default_factory=list)
    page: int
    page_size: int
    total_results: int
    total_pages: int
    status: SearchStatus
    hydration_failures: list[str] = Field(default_factory=list)

    def partial_failure(self) -> Optional[RecordHydrationPartialFailure]:
        if not self.hydration_failures:
            return None
        return RecordHydrationPartialFailure(self.hydration_failures, total=len(self.results))
