"""Index maintenance: consistency between the record store and the vector index."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from resumefind.api.deps import ServiceContainer, get_services
from resumefind.services.resumes.reconciliation import check_consistency

router = APIRouter(prefix="/index", tags=["index"])


@router.get("/consistency")
async def index_consistency(services: ServiceContainer = Depends(get_services)):
    report = await check_consistency(services.record_store, services.vector_index)
    return report.to_dict()
