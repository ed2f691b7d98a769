"""
Response cache for accepted orchestration results.

Content-addressed on top of the shared key-value store from
figbud.core.cache:

    ai:response:{sha256(normalized message, skill level, stable context)}

Entries are stored as CacheEntry envelopes. Expiry is checked on read, so
an entry the store has not yet evicted is still never served past its
expiry. Store failures degrade to a miss.
"""
import json
import time
from typing import Any, Optional, Union

from pydantic import ValidationError

from figbud.core.cache import CacheClient, get_cache_client, hash_payload
from figbud.core.logging import get_logger
from figbud.core.metrics import record_cache_hit, record_cache_miss
from figbud.services.ai.schema import CacheEntry, FinalResponse, QueryContext, SkillLevel

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "ai:response:"
RESPONSE_CACHE_TTL_SECONDS = 24 * 60 * 60  # 24h
CACHE_TYPE = "ai_response"


def normalize_message(message: str) -> str:
    """Trim, lower-case and collapse internal whitespace."""
    return " ".join(message.strip().lower().split())


def build_cache_key(
    message: str,
    context: Optional[QueryContext],
    skill_level: Union[SkillLevel, str] = SkillLevel.BEGINNER,
) -> str:
    """
    Derive the cache key for one query.

    Session identifiers, timestamps and retry annotations are left out, so
    the same question asked in two sessions shares an entry.
    """
    skill = skill_level.value if isinstance(skill_level, SkillLevel) else str(skill_level)
    payload = {
        "message": normalize_message(message),
        "skill_level": skill,
        "context": context.stable_fields() if context is not None else {},
    }
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return f"{CACHE_KEY_PREFIX}{hash_payload(serialized)}"


class ResponseCache:
    def __init__(
        self,
        store: Optional[CacheClient] = None,
        default_ttl: int = RESPONSE_CACHE_TTL_SECONDS,
        clock=time.time,
    ):
        self._store = store
        self.default_ttl = default_ttl
        self._clock = clock

    @property
    def store(self) -> CacheClient:
        return self._store if self._store is not None else get_cache_client()

    async def get(self, key: str) -> Optional[FinalResponse]:
        """
        Return the cached response, or None on miss.

        A hit bumps the entry's hit counter and last-accessed time and the
        returned copy is flagged `from_cache`.
        """
        raw = await self._read(key)
        if raw is None:
            record_cache_miss(CACHE_TYPE)
            return None

        try:
            entry = CacheEntry.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                "response_cache_entry_invalid",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            record_cache_miss(CACHE_TYPE)
            return None

        now = self._clock()
        if entry.is_expired(now):
            logger.debug("response_cache_expired", key=key)
            record_cache_miss(CACHE_TYPE)
            return None

        entry.hit_count += 1
        entry.last_accessed_at = now
        remaining = max(1, int(entry.expires_at - now))
        await self._write(key, entry, remaining)

        record_cache_hit(CACHE_TYPE)
        logger.debug("response_cache_hit", key=key, hit_count=entry.hit_count)
        return entry.response.model_copy(update={"from_cache": True})

    async def put(self, key: str, response: FinalResponse, ttl: Optional[int] = None) -> bool:
        """Store (or overwrite) an accepted response."""
        ttl = self.default_ttl if ttl is None else ttl
        now = self._clock()
        entry = CacheEntry(
            key=key,
            response=response.model_copy(update={"from_cache": False}),
            provider=response.provider,
            created_at=now,
            expires_at=now + ttl,
        )
        success = await self._write(key, entry, ttl)
        if not success:
            # Best-effort cache; failures should not affect correctness.
            logger.warning("response_cache_set_failed", key=key)
        return success

    async def _read(self, key: str) -> Optional[Any]:
        try:
            return await self.store.get(key)
        except Exception as e:
            logger.warning(
                "response_cache_get_failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def _write(self, key: str, entry: CacheEntry, ttl: int) -> bool:
        try:
            return await self.store.set(key, entry.model_dump(mode="json"), ttl)
        except Exception as e:
            logger.warning(
                "response_cache_set_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
