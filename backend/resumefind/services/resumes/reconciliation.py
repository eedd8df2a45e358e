# resumefind/services/resumes/reconciliation.py
"""Compare record-store ids with vector-index ids to find orphans and searchable gaps."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

from resumefind.core.errors import DanglingReference
from resumefind.services.resumes.record_store import RecordStore
from resumefind.services.resumes.vector_index import VectorIndex

logger = logging.getLogger("index.reconcile")


@dataclass
class ConsistencyReport:
    orphan_vector_ids: List[str] = field(default_factory=list)      # vector, no record
    unindexed_record_ids: List[str] = field(default_factory=list)   # record, no vector
    record_count: int = 0
    vector_count: int = 0

    @property
    def consistent(self) -> bool:
        return not self.orphan_vector_ids and not self.unindexed_record_ids

    def raise_for_dangling(self) -> None:
        if not self.consistent:
            raise DanglingReference(self.orphan_vector_ids, self.unindexed_record_ids)

    def to_dict(self) -> dict:
        return {
            "consistent": self.consistent,
            "recordCount": self.record_count,
            "vectorCount": self.vector_count,
            "orphanVectorIds": self.orphan_vector_ids,
            "unindexedRecordIds": self.unindexed_record_ids,
        }


async def check_consistency(record_store: RecordStore, vector_index: VectorIndex) -> ConsistencyReport:
    record_ids, vector_ids = await asyncio.gather(record_store.list_ids(), vector_index.list_ids())
    report = ConsistencyReport(
        orphan_vector_ids=sorted(vector_ids - record_ids),
        unindexed_record_ids=sorted(record_ids - vector_ids),
        record_count=len(record_ids),
        vector_count=len(vector_ids),
    )
    if report.consistent:
        logger.info("Index consistent: %d records, %d vectors", report.record_count, report.vector_count)
    else:
        logger.warning(
            "Index drift: %d orphan vectors, %d unindexed records",
            len(report.orphan_vector_ids), len(report.unindexed_record_ids),
        )
    return report
