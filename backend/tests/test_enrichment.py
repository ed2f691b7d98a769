"""
Unit tests for the enrichment pipeline.

Catalog and tutorial search are replaced with AsyncMock collaborators.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from figbud.services.ai.schema import (
    AttemptRecord,
    ComponentSummary,
    FinalResponse,
    ParsedIntent,
    ResponseMetadata,
    TutorialRequest,
    TutorialSummary,
)
from figbud.services.intent.enrichment import (
    EnrichmentPipeline,
    build_actionable_steps,
    build_tutorial_requests,
)


def _component(component_id, component_type, usage_count):
    return ComponentSummary(
        id=component_id, name=f"{component_type} {component_id}", type=component_type, usage_count=usage_count
    )


def _tutorial(video_id):
    return TutorialSummary(id=video_id, title=f"Video {video_id}", url=f"https://youtube.com/watch?v={video_id}")


@pytest.fixture
def catalog():
    catalog = MagicMock()
    catalog.lookup = AsyncMock(return_value=[])
    catalog.record_usage = AsyncMock(return_value=True)
    return catalog


@pytest.fixture
def tutorial_search():
    search = MagicMock()
    search.search = AsyncMock(return_value=[])
    return search


def _response():
    return FinalResponse(
        text="Here is how to build a button in Figma.",
        metadata=ResponseMetadata(attempts=[AttemptRecord(backend="smart", success=True)]),
        provider="smart",
        tokens_used=120,
    )


def test_actionable_steps_for_component_guidance():
    intent = ParsedIntent(component_types=["button", "card"], needs_guidance=True)

    steps = build_actionable_steps(intent)

    assert [step.step for step in steps] == [1, 2, 3]
    assert steps[0].description == "Select a frame or create a new one"
    assert steps[1].description == "Insert button component"
    assert steps[2].action == "customize"


@pytest.mark.parametrize(
    "intent",
    [
        ParsedIntent(component_types=["button"], needs_guidance=False),
        ParsedIntent(component_types=[], needs_guidance=True),
    ],
)
def test_no_actionable_steps(intent):
    assert build_actionable_steps(intent) == []


def test_tutorial_requests_from_intent():
    requests = build_tutorial_requests(ParsedIntent(tutorial_requests=["auto layout", "variants"]))

    assert requests == [
        TutorialRequest(search_query="auto layout"),
        TutorialRequest(search_query="variants"),
    ]
    assert requests[0].type == "youtube"


@pytest.mark.asyncio
async def test_enrich_builds_enriched_response(catalog, tutorial_search):
    catalog.lookup = AsyncMock(
        side_effect=lambda types: [_component("b1", types[0], 10)] if types == ["button"] else []
    )
    pipeline = EnrichmentPipeline(catalog=catalog, tutorial_search=tutorial_search)
    intent = ParsedIntent(
        action="create",
        component_types=["button"],
        tutorial_requests=["buttons"],
        needs_guidance=True,
    )

    enriched = await pipeline.enrich(_response(), intent, caller_id="user-1")
    await pipeline.wait_for_background_tasks()

    assert enriched.text == "Here is how to build a button in Figma."
    assert enriched.provider == "smart"
    assert enriched.tokens_used == 120
    assert enriched.metadata.attempts[0].backend == "smart"
    assert enriched.intent == intent
    assert [c.id for c in enriched.suggested_components] == ["b1"]
    assert enriched.related_tutorials == [TutorialRequest(search_query="buttons")]
    assert len(enriched.actionable_steps) == 3
    catalog.record_usage.assert_awaited_once_with("b1", "user-1")
    # Tutorial requests stay pending until resolved
    tutorial_search.search.assert_not_called()


@pytest.mark.asyncio
async def test_lookup_components_merges_and_ranks(catalog, tutorial_search):
    results = {
        "button": [_component("b1", "button", 3), _component("shared", "button", 50)],
        "card": [_component("c1", "card", 20), _component("shared", "button", 50)],
    }
    catalog.lookup = AsyncMock(side_effect=lambda types: results[types[0]])
    pipeline = EnrichmentPipeline(catalog=catalog, tutorial_search=tutorial_search, max_components=2)

    components = await pipeline.lookup_components(["button", "card"])

    assert [c.id for c in components] == ["shared", "c1"]
    assert catalog.lookup.await_count == 2


@pytest.mark.asyncio
async def test_lookup_failure_is_skipped(catalog, tutorial_search):
    async def lookup(types):
        if types == ["card"]:
            raise RuntimeError("database unavailable")
        return [_component("b1", "button", 1)]

    catalog.lookup = AsyncMock(side_effect=lookup)
    pipeline = EnrichmentPipeline(catalog=catalog, tutorial_search=tutorial_search)

    components = await pipeline.lookup_components(["button", "card"])

    assert [c.id for c in components] == ["b1"]


@pytest.mark.asyncio
async def test_usage_tracking_failure_does_not_affect_enrichment(catalog, tutorial_search):
    catalog.lookup = AsyncMock(return_value=[_component("b1", "button", 1)])
    catalog.record_usage = AsyncMock(side_effect=RuntimeError("insert failed"))
    pipeline = EnrichmentPipeline(catalog=catalog, tutorial_search=tutorial_search)

    enriched = await pipeline.enrich(_response(), ParsedIntent(component_types=["button"]))
    await pipeline.wait_for_background_tasks()

    assert [c.id for c in enriched.suggested_components] == ["b1"]


@pytest.mark.asyncio
async def test_enrich_without_components_skips_catalog(catalog, tutorial_search):
    pipeline = EnrichmentPipeline(catalog=catalog, tutorial_search=tutorial_search)

    enriched = await pipeline.enrich(_response(), ParsedIntent())

    assert enriched.suggested_components == []
    assert enriched.actionable_steps == []
    catalog.lookup.assert_not_called()


@pytest.mark.asyncio
async def test_resolve_tutorials(catalog, tutorial_search):
    async def search(query, max_results, skill_level):
        if query == "broken":
            raise RuntimeError("quota exceeded")
        return [_tutorial(f"{query}-1")]

    tutorial_search.search = AsyncMock(side_effect=search)
    pipeline = EnrichmentPipeline(catalog=catalog, tutorial_search=tutorial_search)

    resolved = await pipeline.resolve_tutorials(
        [
            TutorialRequest(search_query="variants"),
            TutorialRequest(search_query="broken"),
            TutorialRequest(search_query="variants"),
        ],
        skill_level="beginner",
    )

    assert [t.id for t in resolved["variants"]] == ["variants-1"]
    assert resolved["broken"] == []
    assert tutorial_search.search.await_count == 2
    tutorial_search.search.assert_any_await("variants", 2, "beginner")


@pytest.mark.asyncio
async def test_resolve_no_tutorials(catalog, tutorial_search):
    pipeline = EnrichmentPipeline(catalog=catalog, tutorial_search=tutorial_search)

    assert await pipeline.resolve_tutorials([]) == {}
