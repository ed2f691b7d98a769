"""
Admin endpoints.

PUT /admin/default-provider
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from figbud.core.logging import get_logger
from figbud.services.ai.orchestration import QueryOrchestrator, get_query_orchestrator
from figbud.services.ai.registry import BackendUnregistered

logger = get_logger(__name__)

router = APIRouter()


class DefaultProviderRequest(BaseModel):
    """Request to change the default backend."""
    provider: str


@router.put("/default-provider")
async def set_default_provider(
    request: DefaultProviderRequest,
    orchestrator: QueryOrchestrator = Depends(get_query_orchestrator),
):
    """
    Override the default backend for subsequent requests.

    Security: Should require admin authentication in production.
    """
    previous = orchestrator.default_backend
    try:
        orchestrator.set_default_backend(request.provider)
    except BackendUnregistered as e:
        logger.warning(
            "admin_default_provider_rejected",
            provider=request.provider,
            available=e.available,
        )
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "status": "updated",
        "previous": previous,
        "default": orchestrator.default_backend,
        "providers": orchestrator.available_backends(),
    }
