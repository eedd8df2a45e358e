# resumefind/core/errors.py
"""Error taxonomy for the search subsystem.

Every error carries the pipeline stage it came from and whether retrying can help,
so the API layer can tell "no matches" apart from "search temporarily unavailable".
"""
from __future__ import annotations

from typing import Iterable, Optional


class ResumeFindError(Exception):
    """Base class. `code` is the stable machine-readable name exposed over HTTP."""

    code = "resumefind_error"
    retryable = False
    default_stage = "unknown"

    def __init__(self, message: str, *, stage: Optional[str] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "stage": self.stage,
            "retryable": self.retryable,
        }


class InvalidQuery(ResumeFindError):
    code = "invalid_query"
    default_stage = "validating"


class EmbeddingUnavailable(ResumeFindError):
    code = "embedding_unavailable"
    retryable = True
    default_stage = "embedding"


class IndexUnavailable(ResumeFindError):
    code = "index_unavailable"
    retryable = True
    default_stage = "querying"


class RecordStoreUnavailable(ResumeFindError):
    code = "record_store_unavailable"
    retryable = True
    default_stage = "hydrating"


class RecordNotFound(ResumeFindError):
    code = "record_not_found"
    default_stage = "records"

    def __init__(self, resume_id: str):
        super().__init__(f"Resume {resume_id} not found")
        self.resume_id = resume_id


class RecordHydrationPartialFailure(ResumeFindError):
    """One or more matched ids could not be hydrated.

    Not raised to callers: the search page keeps it in `partial_failure` and the
    affected hits are served as metadata-only.
    """

    code = "hydration_partial_failure"
    default_stage = "hydrating"

    def __init__(self, failed_ids: Iterable[str], total: int):
        self.failed_ids = list(failed_ids)
        self.total = total
        super().__init__(f"{len(self.failed_ids)}/{total} matches could not be hydrated")


class DanglingReference(ResumeFindError):
    """Vector without record, or record without vector. Raised only by consistency checks."""

    code = "dangling_reference"
    default_stage = "reconciliation"

    def __init__(self, orphan_vector_ids: Iterable[str], unindexed_record_ids: Iterable[str]):
        self.orphan_vector_ids = sorted(orphan_vector_ids)
        self.unindexed_record_ids = sorted(unindexed_record_ids)
        super().__init__(
            f"{len(self.orphan_vector_ids)} orphan vectors, "
            f"{len(self.unindexed_record_ids)} unindexed records"
        )


class PdfExtractionError(ResumeFindError):
    code = "pdf_extraction_failed"
    default_stage = "extraction"
