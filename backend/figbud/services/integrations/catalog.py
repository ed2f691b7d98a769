"""
Component catalog backed by the Supabase `figma_components` table.

The Supabase client is synchronous; calls run in a worker thread so the
event loop is not blocked. Lookups return an empty list when the database
is unavailable; usage recording is best-effort.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence

from pydantic import ValidationError

from figbud.core.database import get_supabase_client
from figbud.core.logging import get_logger
from figbud.services.ai.schema import ComponentSummary

logger = get_logger(__name__)

COMPONENTS_TABLE = "figma_components"
ANALYTICS_TABLE = "component_analytics"
INCREMENT_USAGE_RPC = "increment_component_usage"
DEFAULT_LOOKUP_LIMIT = 5


class ComponentCatalog:
    def __init__(self, client_factory: Callable[[], Any] = get_supabase_client):
        self._client_factory = client_factory

    async def lookup(
        self, component_types: Sequence[str], limit: int = DEFAULT_LOOKUP_LIMIT
    ) -> List[ComponentSummary]:
        """
        Most-used catalog components of the given types.

        Args:
            component_types: Component type names (button, card, ...)
            limit: Max rows returned

        Returns:
            Components ordered by usage_count descending; empty on failure.
        """
        if not component_types:
            return []

        client = self._client_factory()
        if client is None:
            logger.debug("component_lookup_skipped", reason="no_database_client")
            return []

        types = list(component_types)
        try:
            response = await asyncio.to_thread(
                lambda: client.table(COMPONENTS_TABLE)
                .select("*")
                .in_("type", types)
                .order("usage_count", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.warning(
                "component_lookup_failed",
                component_types=types,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

        components = []
        for row in response.data or []:
            try:
                components.append(ComponentSummary.model_validate(_normalize_row(row)))
            except ValidationError as e:
                logger.warning(
                    "component_row_invalid",
                    row_id=row.get("id") if isinstance(row, dict) else None,
                    error=str(e),
                )
        return components

    async def record_usage(self, component_id: str, caller_id: Optional[str] = None) -> bool:
        """Bump the component's usage counter and append an analytics row."""
        client = self._client_factory()
        if client is None:
            return False

        def _track():
            client.rpc(INCREMENT_USAGE_RPC, {"component_id": component_id}).execute()
            client.table(ANALYTICS_TABLE).insert(
                {
                    "component_id": component_id,
                    "user_id": caller_id,
                    "action": "created",
                    "created_at": datetime.now(timezone.utc).isoformat(),
                }
            ).execute()

        try:
            await asyncio.to_thread(_track)
        except Exception as e:
            logger.warning(
                "component_usage_tracking_failed",
                component_id=component_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True


def _normalize_row(row: Any) -> Any:
    if not isinstance(row, dict):
        return row
    normalized = dict(row)
    if normalized.get("id") is not None:
        normalized["id"] = str(normalized["id"])
    if normalized.get("usage_count") is None:
        normalized["usage_count"] = 0
    return normalized


_catalog: Optional[ComponentCatalog] = None


def get_component_catalog() -> ComponentCatalog:
    """Global singleton accessor for the component catalog."""
    global _catalog
    if _catalog is None:
        _catalog = ComponentCatalog()
    return _catalog
