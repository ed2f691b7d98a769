"""
Unit tests for the backend layer: output parsing, error mapping, timeouts,
the chat-completion client and the multi-model backend.

These tests use in-memory stubs/mocks only and do NOT perform real HTTP calls.
"""
import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from figbud.core.circuit_breaker import CircuitBreakerOpenError
from figbud.services.ai.backends import Backend, BackendCallError, BackendErrorKind
from figbud.services.ai.backends.chat_completion import (
    ChatCompletionBackend,
    build_messages,
    deepseek_backend,
    openrouter_backend,
)
from figbud.services.ai.backends.parsing import parse_backend_text
from figbud.services.ai.backends.smart import (
    OPENROUTER_MODELS,
    ModelConfig,
    SmartBackend,
    infer_component_type,
    rank_models,
)
from figbud.services.ai.llm_client import ChatCompletion, LLMClient, LLMConfigurationError
from figbud.services.ai.schema import CandidateResponse, QueryContext


class RaisingBackend(Backend):
    name = "raising"

    def __init__(self, exc, timeout_seconds=15.0):
        super().__init__(timeout_seconds=timeout_seconds)
        self.exc = exc

    async def _generate(self, message, context, system_prompt):
        raise self.exc


class SlowBackend(Backend):
    name = "slow"

    async def _generate(self, message, context, system_prompt):
        await asyncio.sleep(5)
        return CandidateResponse(text="too late to matter", provider=self.name)


class DummyLLMClient:
    """Stub with the LLMClient.chat signature."""

    def __init__(self, content, model="stub-model", input_tokens=100, output_tokens=400):
        self.content = content
        self.model = model
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls = []

    async def chat(self, model, messages, **kwargs):
        self.calls.append({"model": model, "messages": messages, **kwargs})
        if isinstance(self.content, Exception):
            raise self.content
        return ChatCompletion(
            content=self.content,
            model=self.model,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )


def _http_status_error(status_code):
    request = httpx.Request("POST", "https://example.test/chat/completions")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def test_parse_structured_payload():
    content = json.dumps(
        {
            "message": "  Here's a primary button.  ",
            "action": "component_created",
            "componentType": "button",
            "teacherNote": "Keep labels short",
            "suggestions": "Add an icon",
            "tutorials": ["Buttons in Figma"],
        }
    )

    parsed = parse_backend_text(content)

    assert parsed.parse_error is None
    assert parsed.text == "Here's a primary button."
    assert parsed.metadata.action == "component_created"
    assert parsed.metadata.component_type == "button"
    assert parsed.metadata.teacher_note == "Keep labels short"
    assert parsed.metadata.suggestions == ["Add an icon"]
    assert parsed.metadata.tutorials == [{"title": "Buttons in Figma", "query": "Buttons in Figma"}]


def test_parse_fenced_json():
    parsed = parse_backend_text('```json\n{"message": "Hello from a fence block"}\n```')

    assert parsed.parse_error is None
    assert parsed.text == "Hello from a fence block"


def test_parse_plain_prose():
    parsed = parse_backend_text("Auto layout lets frames grow with their content.")

    assert parsed.parse_error is None
    assert parsed.text == "Auto layout lets frames grow with their content."
    assert parsed.metadata.component_type is None


def test_parse_malformed_json_sets_parse_error():
    raw = '{"message": "Here is your button", "componentType": '

    parsed = parse_backend_text(raw)

    assert parsed.parse_error is not None
    assert parsed.parse_error.startswith("invalid JSON")
    assert parsed.text == raw


def test_parse_schema_mismatch_sets_parse_error():
    parsed = parse_backend_text('{"message": "Here is your button", "componentType": ["button"]}')

    assert parsed.parse_error is not None
    assert "Invalid backend payload" in parsed.parse_error


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc,kind,status_code",
    [
        (_http_status_error(401), BackendErrorKind.HTTP_STATUS, 401),
        (_http_status_error(429), BackendErrorKind.HTTP_STATUS, 429),
        (httpx.ConnectError("connection refused"), BackendErrorKind.TRANSPORT, None),
        (httpx.ReadTimeout("read timed out"), BackendErrorKind.TIMEOUT, None),
        (CircuitBreakerOpenError("llm_stub", 12.0), BackendErrorKind.UNAVAILABLE, None),
        (LLMConfigurationError("no key"), BackendErrorKind.CONFIGURATION, None),
        (ValueError("no choices"), BackendErrorKind.UNEXPECTED, None),
    ],
)
async def test_process_query_maps_exceptions_to_error_values(exc, kind, status_code):
    backend = RaisingBackend(exc)

    result = await backend.process_query("hello", QueryContext(), "system")

    assert isinstance(result, BackendCallError)
    assert result.backend == "raising"
    assert result.kind == kind
    assert result.status_code == status_code


@pytest.mark.asyncio
async def test_process_query_timeout():
    backend = SlowBackend(timeout_seconds=0.05)

    result = await backend.process_query("hello", QueryContext(), "system")

    assert isinstance(result, BackendCallError)
    assert result.kind == BackendErrorKind.TIMEOUT
    assert "0.05" in result.message


@pytest.mark.asyncio
async def test_process_query_propagates_cancellation():
    backend = SlowBackend(timeout_seconds=10)
    task = asyncio.create_task(backend.process_query("hello", QueryContext(), "system"))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


# ---------------------------------------------------------------------------
# Chat completion backends
# ---------------------------------------------------------------------------


def test_build_messages_includes_hint_on_retry():
    context = QueryContext(enhanced_prompt=True, validation_hint="Include componentType")

    messages = build_messages("create a button", context, "SYSTEM")

    assert messages[0] == {"role": "system", "content": "SYSTEM"}
    assert "User Message: create a button" in messages[1]["content"]
    assert messages[1]["content"].endswith("IMPORTANT: Include componentType")


def test_build_messages_excludes_volatile_context():
    context = QueryContext(session_id="secret-session", user_id="u1", selection="frame-1")

    content = build_messages("hi", context, "SYSTEM")[1]["content"]

    assert "secret-session" not in content
    assert "frame-1" in content
    assert "IMPORTANT: Include" not in content


@pytest.mark.asyncio
async def test_chat_completion_backend_builds_candidate():
    client = DummyLLMClient(
        json.dumps({"message": "Here is a card.", "action": "component_created", "componentType": "card"}),
        input_tokens=200,
        output_tokens=300,
    )
    backend = ChatCompletionBackend(
        name="stub", client=client, model="stub-model", cost_per_1k_tokens=0.002
    )

    result = await backend.process_query("make a card", QueryContext(), "SYSTEM")

    assert isinstance(result, CandidateResponse)
    assert result.provider == "stub"
    assert result.text == "Here is a card."
    assert result.metadata.component_type == "card"
    assert result.metadata.model == "stub-model"
    assert result.tokens_used == 500
    assert result.cost == pytest.approx(0.001)
    assert client.calls[0]["response_format"] == {"type": "json_object"}


def test_backend_factories():
    openrouter = openrouter_backend("key", timeout_seconds=7)
    deepseek = deepseek_backend("key")

    assert openrouter.name == "openrouter"
    assert openrouter.model == "deepseek/deepseek-chat"
    assert openrouter.timeout_seconds == 7
    assert openrouter.json_mode is True
    assert deepseek.name == "deepseek"
    assert deepseek.cost_per_1k_tokens == pytest.approx(0.0014)
    assert deepseek.json_mode is False


@pytest.mark.asyncio
async def test_llm_client_parses_usage():
    client = LLMClient(name="stub", api_base="https://example.test/v1", api_key="key")
    client._post = AsyncMock(
        return_value={
            "model": "stub-model",
            "choices": [{"message": {"content": "hello"}}],
            "usage": {"prompt_tokens": 10, "completion_tokens": 20},
        }
    )

    completion = await client.chat(model="stub-model", messages=[])

    assert completion.content == "hello"
    assert completion.total_tokens == 30
    client._post.assert_awaited_once()


@pytest.mark.asyncio
async def test_llm_client_without_key_raises_configuration_error():
    client = LLMClient(name="stub", api_base="https://example.test/v1", api_key=None)

    with pytest.raises(LLMConfigurationError):
        await client.chat(model="m", messages=[])


@pytest.mark.asyncio
async def test_llm_client_failures_open_circuit():
    client = LLMClient(name="flaky", api_base="https://example.test/v1", api_key="key")
    client._post = AsyncMock(side_effect=_http_status_error(503))

    for _ in range(client.circuit_breaker.failure_threshold):
        with pytest.raises(httpx.HTTPStatusError):
            await client.chat(model="m", messages=[])

    with pytest.raises(CircuitBreakerOpenError):
        await client.chat(model="m", messages=[])


@pytest.mark.asyncio
async def test_backend_timeouts_open_circuit():
    """A hanging backend is skipped once its deadline has been missed enough times."""
    client = LLMClient(name="hang", api_base="https://example.test/v1", api_key="key")

    async def never_answers(path, json_payload):
        await asyncio.sleep(10)

    client._post = AsyncMock(side_effect=never_answers)
    backend = ChatCompletionBackend(name="hang", client=client, model="m", timeout_seconds=0.05)

    for _ in range(client.circuit_breaker.failure_threshold):
        result = await backend.process_query("make a card", QueryContext(), "SYSTEM")
        assert result.kind == BackendErrorKind.TIMEOUT

    assert client.circuit_breaker.get_metrics()["state"] == "open"

    result = await backend.process_query("make a card", QueryContext(), "SYSTEM")
    assert result.kind == BackendErrorKind.UNAVAILABLE
    assert client._post.await_count == client.circuit_breaker.failure_threshold


# ---------------------------------------------------------------------------
# Multi-model backend
# ---------------------------------------------------------------------------


def test_rank_models_cost_optimized_puts_free_first():
    ranked = rank_models(OPENROUTER_MODELS, "cost_optimized")

    free = [m for m in ranked if m.is_free]
    assert ranked[: len(free)] == free
    paid = ranked[len(free):]
    assert [m.input_cost + m.output_cost for m in paid] == sorted(
        m.input_cost + m.output_cost for m in paid
    )


def test_rank_models_performance_puts_high_quality_first():
    ranked = rank_models(OPENROUTER_MODELS, "performance")

    assert ranked[0].quality == "high"
    assert ranked[-1].quality == "low"


def test_rank_models_balanced_skips_low_quality_free_models_first():
    ranked = rank_models(OPENROUTER_MODELS, "balanced")

    assert ranked[0].is_free and ranked[0].quality != "low"


def test_infer_component_type():
    assert infer_component_type("Please create a Toggle") == "toggle"
    assert infer_component_type("What is auto layout?") is None


@pytest.mark.parametrize("component", ["modal", "navbar", "form"])
def test_infer_component_type_covers_validated_nouns(component):
    assert infer_component_type(f"create a {component}") == component


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message,action,component_type",
    [
        ("create a modal", "component_created", "modal"),
        ("Design a navbar for the landing page", "component_created", "navbar"),
        ("What address field goes in a card?", None, "card"),
        ("I added a toggle yesterday", None, "toggle"),
    ],
)
async def test_smart_backend_infers_metadata_for_prose(message, action, component_type):
    models = [ModelConfig("free/model", 0, 0, "medium")]
    backend = SmartBackend(api_key="key", models=models)
    backend._clients = {"free/model": DummyLLMClient("Start from a frame and use auto layout.")}

    result = await backend.process_query(message, QueryContext(), "SYSTEM")

    assert isinstance(result, CandidateResponse)
    assert result.metadata.action == action
    assert result.metadata.component_type == component_type


@pytest.mark.asyncio
async def test_smart_backend_falls_through_models():
    models = [
        ModelConfig("free/model", 0, 0, "medium"),
        ModelConfig("paid/model", 0.14, 0.28, "high"),
    ]
    backend = SmartBackend(api_key="key", models=models)
    backend._clients = {
        "free/model": DummyLLMClient(_http_status_error(429)),
        "paid/model": DummyLLMClient(
            "Here is a clean button with a clear label.",
            model="paid/model",
            input_tokens=1000,
            output_tokens=1000,
        ),
    }

    result = await backend.process_query("create a button", QueryContext(), "SYSTEM")

    assert isinstance(result, CandidateResponse)
    assert result.provider == "smart"
    assert result.metadata.model == "paid/model"
    assert result.metadata.is_free is False
    # Prose answers get component metadata inferred from the message
    assert result.metadata.action == "component_created"
    assert result.metadata.component_type == "button"
    assert result.metadata.teacher_note
    assert result.cost == pytest.approx((1000 * 0.14 + 1000 * 0.28) / 1_000_000)
    assert [a["success"] for a in result.metadata.model_attempts] == [False, True]


@pytest.mark.asyncio
async def test_smart_backend_all_models_fail():
    models = [ModelConfig("free/model", 0, 0, "medium")]
    backend = SmartBackend(api_key="key", models=models)
    backend._clients = {"free/model": DummyLLMClient(httpx.ConnectError("refused"))}

    result = await backend.process_query("hello there", QueryContext(), "SYSTEM")

    assert isinstance(result, BackendCallError)
    assert result.kind == BackendErrorKind.TRANSPORT


@pytest.mark.asyncio
async def test_smart_backend_skips_json_mode_for_low_quality_models():
    models = [ModelConfig("tiny/model", 0, 0, "low")]
    backend = SmartBackend(api_key="key", models=models)
    client = DummyLLMClient("Frames are containers for layers.")
    backend._clients = {"tiny/model": client}

    await backend.process_query("what is a frame", QueryContext(), "SYSTEM")

    assert client.calls[0]["response_format"] is None
