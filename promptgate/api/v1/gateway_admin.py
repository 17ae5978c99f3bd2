"""Operator endpoints: gateway status and response cache management."""

from fastapi import APIRouter, Depends, Request, Response

from promptgate.core.dependencies import get_gateway
from promptgate.core.rate_limit import CACHE_INVALIDATE_LIMIT, limiter
from promptgate.gateway.gateway import PromptGateway
from promptgate.schemas.prompt import CacheInvalidateRequest, CacheInvalidateResponse, CacheStatsResponse

router = APIRouter(tags=["gateway"])


@router.get("/gateway/status")
async def gateway_status(gateway: PromptGateway = Depends(get_gateway)):
    return gateway.get_status()


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(gateway: PromptGateway = Depends(get_gateway)):
    return CacheStatsResponse(**gateway.cache.get_stats())


@router.post("/cache/invalidate", response_model=CacheInvalidateResponse)
@limiter.limit(CACHE_INVALIDATE_LIMIT)
async def invalidate_cache(
    request: Request,
    response: Response,
    body: CacheInvalidateRequest,
    gateway: PromptGateway = Depends(get_gateway),
):
    """Drop cached responses for one workspace, or all of them when no workspace is given."""
    if body.workspace_id:
        removed = gateway.cache.invalidate_workspace(body.workspace_id)
    else:
        removed = gateway.cache.get_stats()["size"]
        gateway.cache.clear()
    response.headers["X-Cache-Invalidated"] = "true"
    return CacheInvalidateResponse(removed=removed)
