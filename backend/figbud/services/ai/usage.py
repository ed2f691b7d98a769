"""
Per-call usage logging to the `api_calls` table.

Best-effort: a missing client or a failed insert is logged and dropped.
"""
import asyncio
import time
from typing import Any, Callable, Dict, Optional

from figbud.core.database import get_supabase_client
from figbud.core.logging import get_logger
from figbud.services.ai.schema import FinalResponse, QueryContext

logger = get_logger(__name__)

USAGE_ENDPOINT = "/api/chat/message"
USAGE_TABLE = "api_calls"


class UsageLogger:
    def __init__(self, client_factory: Callable[[], Any] = get_supabase_client, clock=time.time):
        self._client_factory = client_factory
        self._clock = clock

    def build_row(
        self, response: FinalResponse, message: str, context: QueryContext
    ) -> Dict[str, Any]:
        duration_ms = None
        if context.start_time is not None:
            duration_ms = max(0, int((self._clock() - context.start_time) * 1000))

        return {
            "user_id": context.user_id,
            "endpoint": USAGE_ENDPOINT,
            "method": "POST",
            "request_body": {"message": message, "context": context.stable_fields()},
            "response_status": 200,
            "response_body": {"text": response.text, "metadata": response.metadata.model_dump(mode="json")},
            "provider": response.provider,
            "tokens_used": response.tokens_used,
            "cost_cents": round(response.cost * 100),
            "duration_ms": duration_ms,
        }

    async def record(
        self, response: FinalResponse, message: str, context: QueryContext
    ) -> bool:
        client = self._client_factory()
        if client is None:
            logger.debug("usage_logging_skipped", reason="no_database_client")
            return False

        row = self.build_row(response, message, context)
        try:
            await asyncio.to_thread(
                lambda: client.table(USAGE_TABLE).insert(row).execute()
            )
        except Exception as e:
            logger.warning(
                "usage_logging_failed",
                provider=response.provider,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.debug(
            "usage_logged",
            provider=response.provider,
            tokens_used=response.tokens_used,
        )
        return True


_usage_logger: Optional[UsageLogger] = None


def get_usage_logger() -> UsageLogger:
    """Global singleton accessor for the usage logger."""
    global _usage_logger
    if _usage_logger is None:
        _usage_logger = UsageLogger()
    return _usage_logger
