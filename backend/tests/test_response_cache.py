"""
Unit tests for the response cache (key derivation, expiry, hit accounting).
"""
import pytest

from figbud.core.cache import MemoryCacheClient
from figbud.services.ai.cache import (
    CACHE_KEY_PREFIX,
    ResponseCache,
    build_cache_key,
    normalize_message,
)
from figbud.services.ai.schema import (
    AttemptRecord,
    FinalResponse,
    QueryContext,
    ResponseMetadata,
    SkillLevel,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStore(MemoryCacheClient):
    async def get(self, key):
        raise ConnectionError("store down")

    async def set(self, key, value, ttl):
        raise ConnectionError("store down")


def _response(text="Here is a primary button with 16px padding."):
    return FinalResponse(
        text=text,
        metadata=ResponseMetadata(
            action="component_created",
            component_type="button",
            attempts=[AttemptRecord(backend="stub", success=True)],
        ),
        provider="stub",
        tokens_used=42,
        cost=0.001,
    )


def test_normalize_message():
    assert normalize_message("  Create   a\tBUTTON \n") == "create a button"


def test_cache_key_ignores_volatile_fields():
    a = QueryContext(session_id="s1", user_id="u1", start_time=1.0, selection="frame-1")
    b = QueryContext(session_id="s2", user_id="u2", start_time=2.0, selection="frame-1", timestamp="now")

    assert build_cache_key("Create a button", a) == build_cache_key("  create a BUTTON ", b)


def test_cache_key_ignores_retry_annotations():
    plain = QueryContext()
    retried = QueryContext(enhanced_prompt=True, validation_hint="Include componentType")

    assert build_cache_key("create a button", plain) == build_cache_key("create a button", retried)


def test_cache_key_depends_on_stable_context_and_skill_level():
    base = build_cache_key("create a button", QueryContext(selection="frame-1"))

    assert base != build_cache_key("create a button", QueryContext(selection="frame-2"))
    assert base != build_cache_key(
        "create a button", QueryContext(selection="frame-1"), SkillLevel.ADVANCED
    )
    assert base.startswith(CACHE_KEY_PREFIX)
    assert len(base) == len(CACHE_KEY_PREFIX) + 64


def test_cache_key_accepts_string_skill_level():
    assert build_cache_key("hi there", None, "advanced") == build_cache_key(
        "hi there", None, SkillLevel.ADVANCED
    )


@pytest.mark.asyncio
async def test_put_then_get_returns_response():
    clock = FakeClock()
    store = MemoryCacheClient(clock=clock)
    cache = ResponseCache(store=store, clock=clock)
    response = _response()

    assert await cache.put("ai:response:abc", response)
    cached = await cache.get("ai:response:abc")

    assert cached is not None
    assert cached.from_cache is True
    assert cached.text == response.text
    assert cached.provider == "stub"
    assert cached.metadata.component_type == "button"
    assert cached.metadata.attempts[0].success is True


@pytest.mark.asyncio
async def test_get_miss():
    cache = ResponseCache(store=MemoryCacheClient())

    assert await cache.get("ai:response:missing") is None


@pytest.mark.asyncio
async def test_hit_increments_counter_and_last_accessed():
    clock = FakeClock()
    store = MemoryCacheClient(clock=clock)
    cache = ResponseCache(store=store, clock=clock)
    await cache.put("k", _response())

    clock.now += 5
    await cache.get("k")
    clock.now += 5
    await cache.get("k")

    raw = await store.get("k")
    assert raw["hit_count"] == 2
    assert raw["last_accessed_at"] == clock.now


@pytest.mark.asyncio
async def test_expired_entry_is_never_served():
    store_clock = FakeClock()
    cache_clock = FakeClock()
    # Store keeps the entry longer than the logical expiry.
    store = MemoryCacheClient(clock=store_clock)
    cache = ResponseCache(store=store, default_ttl=60, clock=cache_clock)
    await cache.put("k", _response())
    await store.set("k", await store.get("k"), ttl=3600)

    cache_clock.now += 61

    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_put_overwrites():
    cache = ResponseCache(store=MemoryCacheClient())
    await cache.put("k", _response("First answer that is long enough."))
    await cache.put("k", _response("Second answer that is long enough."))

    cached = await cache.get("k")
    assert cached.text == "Second answer that is long enough."


@pytest.mark.asyncio
async def test_store_failures_degrade_to_miss():
    cache = ResponseCache(store=BrokenStore())

    assert await cache.put("k", _response()) is False
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_corrupt_entry_is_a_miss():
    store = MemoryCacheClient()
    await store.set("k", {"unexpected": "shape"}, ttl=60)
    cache = ResponseCache(store=store)

    assert await cache.get("k") is None
