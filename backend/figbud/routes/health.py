"""
Health check endpoints.
"""
from fastapi import APIRouter, Depends

from figbud.core.cache import get_cache_client
from figbud.core.logging import get_logger
from figbud.services.ai.orchestration import QueryOrchestrator, get_query_orchestrator

logger = get_logger(__name__)
router = APIRouter()


@router.get("/")
async def health_check():
    """Basic liveness check."""
    cache = get_cache_client()
    return {
        "status": "ok",
        "message": "API is running",
        "cache": {
            "store": cache.name,
            "available": cache.is_available(),
            "circuit_breaker": cache.get_circuit_breaker_metrics(),
        },
    }


@router.get("/backends")
async def backends_health(orchestrator: QueryOrchestrator = Depends(get_query_orchestrator)):
    """
    Registered backends with their circuit-breaker state.

    status is "degraded" when no backend is registered or every breaker is
    open.
    """
    backends = {}
    any_available = False
    for backend in orchestrator.registry:
        breaker = backend.health()
        backends[backend.name] = {"circuit_breaker": breaker}
        if breaker is None or "state" not in breaker:
            # Multi-model backends report one breaker per model.
            states = [m.get("state") for m in (breaker or {}).values() if isinstance(m, dict)]
            available = not states or any(state != "open" for state in states)
        else:
            available = breaker["state"] != "open"
        backends[backend.name]["available"] = available
        any_available = any_available or available

    return {
        "status": "ok" if any_available else "degraded",
        "default": orchestrator.default_backend,
        "backends": backends,
    }
