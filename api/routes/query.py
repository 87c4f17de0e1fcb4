"""
Data query endpoint
"""

from fastapi import APIRouter, Depends, Request
from api.dependencies import get_query_service
from schemas.api import QueryRequest, QueryResponse
from services.query import QueryService
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Query"])


@router.post("/query", response_model=QueryResponse)
async def query_data(
    request: Request,
    payload: QueryRequest,
    service: QueryService = Depends(get_query_service)
):
    """
    Filtered read of one project version.

    Filters are AND-combined; ``total`` counts every matching row regardless
    of ``limit``/``offset``.
    """
    logger.info(
        f"[{request.state.request_id}] POST /query - project={payload.project_id}, "
        f"version={payload.version}, filters={len(payload.filters)}"
    )
    rows, total, version = await service.query(payload)
    return QueryResponse(data=rows, total=total, version=version)
