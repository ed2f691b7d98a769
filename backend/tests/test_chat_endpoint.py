"""
Integration tests for the HTTP surface (chat, admin, health, metrics).

The orchestrator runs for real over scripted backends; the catalog and the
tutorial search are mocks. No network calls are made.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from figbud.core.cache import MemoryCacheClient, RedisCacheClient
from figbud.main import app
from figbud.services.ai.backends import Backend
from figbud.services.ai.cache import ResponseCache
from figbud.services.ai.orchestration import QueryOrchestrator, get_query_orchestrator
from figbud.services.ai.registry import BackendRegistry
from figbud.services.ai.schema import (
    CandidateResponse,
    ComponentSummary,
    ResponseMetadata,
    TutorialSummary,
)
from figbud.services.intent.enrichment import EnrichmentPipeline, get_enrichment_pipeline
from figbud.services.intent.extraction import IntentExtractor, get_intent_extractor


class StubBackend(Backend):
    def __init__(self, name, text, component_type=None, fail=False):
        super().__init__(timeout_seconds=1.0)
        self.name = name
        self.text = text
        self.component_type = component_type
        self.fail = fail
        self.messages = []

    async def _generate(self, message, context, system_prompt):
        self.messages.append((message, context))
        if self.fail:
            raise RuntimeError("backend down")
        tutorials = []
        if "tutorial" in message.lower():
            tutorials = [{"title": "Auto layout basics", "query": "figma auto layout"}]
        return CandidateResponse(
            text=self.text,
            metadata=ResponseMetadata(
                action="component_created" if self.component_type else None,
                component_type=self.component_type,
                tutorials=tutorials,
                model=f"{self.name}-model",
                is_free=True,
            ),
            provider=self.name,
            tokens_used=42,
        )


@pytest.fixture
def backends():
    return {
        "smart": StubBackend("smart", "Here is a primary button with clear padding.", component_type="button"),
        "deepseek": StubBackend("deepseek", "DeepSeek says hello with a button for you.", component_type="button"),
    }


@pytest.fixture
def orchestrator(backends):
    return QueryOrchestrator(
        registry=BackendRegistry(list(backends.values()), default_backend="smart"),
        cache=ResponseCache(store=MemoryCacheClient()),
        max_retries=2,
    )


@pytest.fixture
def enrichment():
    catalog = MagicMock()
    catalog.lookup = AsyncMock(
        return_value=[ComponentSummary(id="c1", name="Primary Button", type="button", usage_count=9)]
    )
    catalog.record_usage = AsyncMock(return_value=True)
    tutorial_search = MagicMock()
    tutorial_search.search = AsyncMock(
        return_value=[
            TutorialSummary(id="v1", title="Auto layout in 5 minutes", url="https://youtube.com/watch?v=v1")
        ]
    )
    return EnrichmentPipeline(catalog=catalog, tutorial_search=tutorial_search)


@pytest.fixture
def client(orchestrator, enrichment):
    app.dependency_overrides[get_query_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_intent_extractor] = lambda: IntentExtractor()
    app.dependency_overrides[get_enrichment_pipeline] = lambda: enrichment
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_chat_message_component_request(client, backends):
    """Scenario A end to end: answer, intent, components and guidance steps."""
    response = client.post(
        "/chat/message",
        json={"message": "How do I create a button?", "context": {"selection": "frame-1"}},
        headers={"X-User-ID": "user-1"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["response"] == "Here is a primary button with clear padding."
    assert data["provider"] == "smart"
    assert data["model"] == "smart-model"
    assert data["is_free"] is True
    assert data["from_cache"] is False
    assert data["available_providers"] == ["smart", "deepseek"]
    assert data["attempts"] == [
        {"backend": "smart", "success": True, "error": None, "validation_error": None}
    ]

    metadata = data["metadata"]
    assert metadata["intent"]["action"] == "create"
    assert metadata["intent"]["component_types"] == ["button"]
    assert metadata["intent"]["is_question"] is True
    assert [c["id"] for c in metadata["suggested_components"]] == ["c1"]
    assert [s["step"] for s in metadata["actionable_steps"]] == [1, 2, 3]
    assert metadata["related_tutorials"] == []

    message, context = backends["smart"].messages[0]
    assert message == "How do I create a button?"
    assert context.user_id == "user-1"
    assert context.model_extra["selection"] == "frame-1"


def test_chat_message_resolves_tutorials(client):
    """Scenario B: tutorial requests come back resolved."""
    response = client.post("/chat/message", json={"message": "Show me a tutorial on auto layout"})

    assert response.status_code == 200
    tutorials = response.json()["metadata"]["related_tutorials"]
    assert [t["id"] for t in tutorials] == ["v1"]


def test_chat_message_second_call_is_cached(client, backends):
    client.post("/chat/message", json={"message": "create a button"})
    response = client.post("/chat/message", json={"message": "Create a button"})

    assert response.json()["from_cache"] is True
    assert len(backends["smart"].messages) == 1


def test_chat_message_provider_header(client, backends):
    response = client.post(
        "/chat/message",
        json={"message": "create a button"},
        headers={"X-AI-Provider": "deepseek"},
    )

    assert response.json()["provider"] == "deepseek"
    assert backends["smart"].messages == []


def test_chat_message_body_provider_wins_over_header(client):
    response = client.post(
        "/chat/message",
        json={"message": "create a button", "provider": "smart"},
        headers={"X-AI-Provider": "deepseek"},
    )

    assert response.json()["provider"] == "smart"


def test_chat_message_all_backends_fail(client, backends):
    for backend in backends.values():
        backend.fail = True

    response = client.post("/chat/message", json={"message": "create a button"})

    assert response.status_code == 200
    data = response.json()
    assert data["provider"] == "error"
    assert data["response"].startswith("I apologize")
    assert len(data["attempts"]) == 2 + 1
    assert data["metadata"]["error"].startswith("deepseek unexpected")


@pytest.mark.parametrize("message", ["", "   "])
def test_chat_message_requires_message(client, message):
    response = client.post("/chat/message", json={"message": message})

    assert response.status_code == 400
    assert response.json()["detail"] == "Message is required"


def test_chat_message_invalid_skill_level(client):
    response = client.post("/chat/message", json={"message": "hi there", "skill_level": "guru"})

    assert response.status_code == 422


def test_chat_message_session_id(client):
    response = client.post(
        "/chat/message",
        json={"message": "create a button"},
        headers={"X-Session-ID": "session-9"},
    )

    assert response.json()["session_id"] == "session-9"


def test_list_providers(client):
    response = client.get("/chat/providers")

    assert response.status_code == 200
    assert response.json() == {"providers": ["smart", "deepseek"], "default": "smart"}


def test_admin_set_default_provider(client, orchestrator):
    response = client.put("/admin/default-provider", json={"provider": "deepseek"})

    assert response.status_code == 200
    assert response.json()["previous"] == "smart"
    assert response.json()["default"] == "deepseek"
    assert orchestrator.default_backend == "deepseek"


def test_admin_unknown_provider(client, orchestrator):
    response = client.put("/admin/default-provider", json={"provider": "nope"})

    assert response.status_code == 404
    assert "nope" in response.json()["detail"]
    assert orchestrator.default_backend == "smart"


def test_health_check(client):
    response = client.get("/health/")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "store" in data["cache"]
    assert data["cache"]["circuit_breaker"] is None


def test_health_check_reports_redis_circuit_breaker(client):
    redis_cache = RedisCacheClient("redis://localhost:6379")
    for _ in range(redis_cache.circuit_breaker.failure_threshold):
        redis_cache.circuit_breaker.record_failure()

    with patch("figbud.routes.health.get_cache_client", return_value=redis_cache):
        response = client.get("/health/")

    cache = response.json()["cache"]
    assert cache["store"] == "redis"
    assert cache["available"] is False
    assert cache["circuit_breaker"]["name"] == "redis_cache"
    assert cache["circuit_breaker"]["state"] == "open"


def test_backends_health_without_breakers(client):
    response = client.get("/health/backends")

    data = response.json()
    assert data["status"] == "ok"
    assert data["default"] == "smart"
    assert data["backends"]["smart"] == {"circuit_breaker": None, "available": True}


def test_backends_health_degraded_when_empty():
    empty = QueryOrchestrator(
        registry=BackendRegistry([], default_backend="smart"),
        cache=ResponseCache(store=MemoryCacheClient()),
    )
    app.dependency_overrides[get_query_orchestrator] = lambda: empty
    try:
        response = TestClient(app).get("/health/backends")
    finally:
        app.dependency_overrides.clear()

    assert response.json()["status"] == "degraded"


def test_trace_id_is_echoed(client):
    response = client.get("/chat/providers", headers={"X-Trace-ID": "trace-abc"})

    assert response.headers["X-Trace-ID"] == "trace-abc"
    assert response.headers["X-Request-ID"]


def test_metrics_endpoint(client):
    client.get("/chat/providers")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text
