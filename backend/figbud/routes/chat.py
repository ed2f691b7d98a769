"""
Chat endpoints.

POST /chat/message
GET  /chat/providers
"""
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from figbud.core.logging import get_logger, get_session_id, get_user_id, set_session_id
from figbud.services.ai.orchestration import QueryOrchestrator, get_query_orchestrator
from figbud.services.ai.schema import QueryContext, SkillLevel
from figbud.services.intent.enrichment import EnrichmentPipeline, get_enrichment_pipeline
from figbud.services.intent.extraction import IntentExtractor, get_intent_extractor

logger = get_logger(__name__)

router = APIRouter()

TUTORIALS_PER_TOPIC = 2


class ChatRequest(BaseModel):
    """Chat message request model."""
    message: str = Field(..., description="What the user typed")
    context: Optional[Dict[str, Any]] = Field(None, description="Caller-supplied context (selection, canvas state, ...)")
    provider: Optional[str] = Field(None, description="Preferred backend name")
    skill_level: SkillLevel = Field(SkillLevel.BEGINNER, description="beginner, intermediate or advanced")
    session_id: Optional[str] = None


class ChatResponse(BaseModel):
    success: bool = True
    response: str
    metadata: Dict[str, Any]
    provider: str
    model: str
    is_free: bool
    attempts: List[Dict[str, Any]]
    available_providers: List[str]
    from_cache: bool = False
    session_id: Optional[str] = None


def _build_context(request: ChatRequest) -> QueryContext:
    fields = {
        k: v for k, v in (request.context or {}).items()
        if k not in QueryContext.RETRY_FIELDS
    }
    session_id = request.session_id or fields.get("session_id") or get_session_id()
    fields.update(
        session_id=session_id,
        user_id=get_user_id() or fields.get("user_id"),
        start_time=time.time(),
    )
    return QueryContext.model_validate(fields)


@router.post("/message", response_model=ChatResponse)
async def process_message(
    request: ChatRequest,
    x_ai_provider: Optional[str] = Header(None, alias="X-AI-Provider"),
    orchestrator: QueryOrchestrator = Depends(get_query_orchestrator),
    extractor: IntentExtractor = Depends(get_intent_extractor),
    enrichment: EnrichmentPipeline = Depends(get_enrichment_pipeline),
):
    """
    Answer one chat message.

    The orchestrator never fails the request: when every backend fails the
    response is an apology with provider "error" and the attempt log.
    """
    message = request.message.strip() if request.message else ""
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")

    context = _build_context(request)
    if context.session_id:
        set_session_id(context.session_id)
    preferred = request.provider or x_ai_provider

    logger.info(
        "chat_message_received",
        message_length=len(message),
        preferred_backend=preferred,
        skill_level=request.skill_level.value,
    )

    final = await orchestrator.process_query(
        message,
        context=context,
        skill_level=request.skill_level,
        preferred_backend=preferred,
    )
    if final.is_error:
        logger.warning(
            "chat_message_unanswered",
            attempts=len(final.metadata.attempts),
            error=final.metadata.error,
        )

    intent = extractor.classify(message, final.text)
    final = extractor.enhance_response(final, intent)
    enriched = await enrichment.enrich(final, intent, caller_id=context.user_id)

    resolved = await enrichment.resolve_tutorials(
        enriched.related_tutorials,
        max_results=TUTORIALS_PER_TOPIC,
        skill_level=request.skill_level.value,
    )
    tutorials = [
        tutorial.model_dump(mode="json")
        for request_tutorials in resolved.values()
        for tutorial in request_tutorials
    ]

    metadata = enriched.metadata.model_dump(mode="json")
    attempts = metadata.get("attempts", [])
    metadata.update(
        intent=enriched.intent.model_dump(mode="json"),
        suggested_components=[c.model_dump(mode="json") for c in enriched.suggested_components],
        related_tutorials=tutorials,
        actionable_steps=[s.model_dump(mode="json") for s in enriched.actionable_steps],
    )

    return ChatResponse(
        response=enriched.text,
        metadata=metadata,
        provider=enriched.provider,
        model=enriched.metadata.model or "unknown",
        is_free=bool(enriched.metadata.is_free),
        attempts=attempts,
        available_providers=orchestrator.available_backends(),
        from_cache=enriched.from_cache,
        session_id=context.session_id,
    )


@router.get("/providers")
async def list_providers(orchestrator: QueryOrchestrator = Depends(get_query_orchestrator)):
    """Registered backends and the current default."""
    return {
        "providers": orchestrator.available_backends(),
        "default": orchestrator.default_backend,
    }
