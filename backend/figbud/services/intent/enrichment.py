"""
Enrichment: turns a ParsedIntent into collaborator requests.

- component types  -> catalog lookups (concurrent), usage tracked in the
  background
- tutorial topics  -> pending video-search requests
- guidance needed  -> fixed three-step walkthrough for the first component
"""
import asyncio
from typing import Dict, List, Optional, Sequence, Set

from figbud.core.logging import get_logger
from figbud.core.metrics import record_enrichment_lookup
from figbud.services.ai.schema import (
    ComponentSummary,
    EnrichedResponse,
    FinalResponse,
    GuidanceStep,
    ParsedIntent,
    TutorialRequest,
    TutorialSummary,
)
from figbud.services.integrations.catalog import ComponentCatalog, get_component_catalog
from figbud.services.integrations.tutorials import YouTubeTutorialSearch, get_tutorial_search

logger = get_logger(__name__)

MAX_SUGGESTED_COMPONENTS = 5


def build_actionable_steps(intent: ParsedIntent) -> List[GuidanceStep]:
    if not intent.needs_guidance or not intent.component_types:
        return []
    component_type = intent.component_types[0]
    return [
        GuidanceStep(step=1, action="select_frame", description="Select a frame or create a new one"),
        GuidanceStep(step=2, action="insert_component", description=f"Insert {component_type} component"),
        GuidanceStep(step=3, action="customize", description="Customize properties and styling"),
    ]


def build_tutorial_requests(intent: ParsedIntent) -> List[TutorialRequest]:
    return [TutorialRequest(search_query=topic) for topic in intent.tutorial_requests]


class EnrichmentPipeline:
    def __init__(
        self,
        catalog: Optional[ComponentCatalog] = None,
        tutorial_search: Optional[YouTubeTutorialSearch] = None,
        max_components: int = MAX_SUGGESTED_COMPONENTS,
    ):
        self.catalog = catalog if catalog is not None else get_component_catalog()
        self.tutorial_search = tutorial_search if tutorial_search is not None else get_tutorial_search()
        self.max_components = max_components
        self._background_tasks: Set[asyncio.Task] = set()

    async def enrich(
        self,
        response: FinalResponse,
        intent: ParsedIntent,
        caller_id: Optional[str] = None,
    ) -> EnrichedResponse:
        components = await self.lookup_components(intent.component_types)
        for component in components:
            self._track_usage_detached(component.id, caller_id)

        enriched = EnrichedResponse(
            **response.model_dump(exclude={"metadata"}),
            metadata=response.metadata,
            intent=intent,
            suggested_components=components,
            related_tutorials=build_tutorial_requests(intent),
            actionable_steps=build_actionable_steps(intent),
        )
        logger.debug(
            "enrichment_completed",
            component_count=len(enriched.suggested_components),
            tutorial_request_count=len(enriched.related_tutorials),
            step_count=len(enriched.actionable_steps),
        )
        return enriched

    async def lookup_components(self, component_types: Sequence[str]) -> List[ComponentSummary]:
        """One catalog lookup per type, run concurrently; merged by usage."""
        if not component_types:
            return []

        results = await asyncio.gather(
            *(self.catalog.lookup([component_type]) for component_type in component_types),
            return_exceptions=True,
        )

        merged: Dict[str, ComponentSummary] = {}
        for component_type, result in zip(component_types, results):
            if isinstance(result, Exception):
                record_enrichment_lookup("component", "error")
                logger.warning(
                    "enrichment_component_lookup_failed",
                    component_type=component_type,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                continue
            record_enrichment_lookup("component", "hit" if result else "empty")
            for component in result:
                merged.setdefault(component.id, component)

        ranked = sorted(merged.values(), key=lambda c: c.usage_count, reverse=True)
        return ranked[: self.max_components]

    async def resolve_tutorials(
        self,
        requests: Sequence[TutorialRequest],
        max_results: int = 2,
        skill_level: Optional[str] = None,
    ) -> Dict[str, List[TutorialSummary]]:
        """
        Execute pending tutorial searches concurrently.

        Returns:
            search_query -> tutorials; a failed search maps to an empty list.
        """
        if not requests:
            return {}

        queries = list(dict.fromkeys(request.search_query for request in requests))
        results = await asyncio.gather(
            *(self.tutorial_search.search(query, max_results, skill_level) for query in queries),
            return_exceptions=True,
        )

        resolved: Dict[str, List[TutorialSummary]] = {}
        for query, result in zip(queries, results):
            if isinstance(result, Exception):
                record_enrichment_lookup("tutorial", "error")
                logger.warning(
                    "enrichment_tutorial_search_failed",
                    query=query,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                resolved[query] = []
                continue
            record_enrichment_lookup("tutorial", "hit" if result else "empty")
            resolved[query] = list(result)
        return resolved

    def _track_usage_detached(self, component_id: str, caller_id: Optional[str]) -> None:
        task = asyncio.create_task(self._track_usage(component_id, caller_id))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _track_usage(self, component_id: str, caller_id: Optional[str]) -> None:
        try:
            await self.catalog.record_usage(component_id, caller_id)
        except Exception as e:
            logger.warning(
                "component_usage_tracking_failed",
                component_id=component_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def wait_for_background_tasks(self) -> None:
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)


_enrichment_pipeline: Optional[EnrichmentPipeline] = None


def get_enrichment_pipeline() -> EnrichmentPipeline:
    """Global singleton accessor for the enrichment pipeline."""
    global _enrichment_pipeline
    if _enrichment_pipeline is None:
        _enrichment_pipeline = EnrichmentPipeline()
    return _enrichment_pipeline
