"""Semantic resume search endpoint."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from resumefind.api.deps import ServiceContainer, get_services
from resumefind.schemas.search import SearchPage, SearchRequest

router = APIRouter(tags=["search"])


@router.post("/search", response_model=SearchPage, response_model_by_alias=True)
async def search_resumes(payload: SearchRequest, services: ServiceContainer = Depends(get_services)):
    """
    400 when both the query and the filters are empty; 500 with a typed body
    when the embedding model or the vector index is unavailable.

    The index has no offset, so page N fetches the top N*pageSize matches and returns
    the last window. `totalResults` counts only what was fetched: `totalPages` never
    exceeds the requested page. A full page (len(results) == pageSize) is the only
    hint that page N+1 may have more; an empty page N+1 means it does not.
    """
    return await services.search.search(
        payload.search_query,
        payload.filters,
        page=payload.page,
        page_size=payload.page_size,
    )
