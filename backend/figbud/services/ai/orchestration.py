"""
Query orchestration.

Turns one user message into exactly one FinalResponse:

1. Cache lookup (hit -> done)
2. Select the preferred backend if registered, else the default
3. Up to `max_retries` attempts on it; after an invalid candidate the
   validator's hint is put on the context for the next attempt
4. Fallback cascade: every other registered backend once, in registration
   order
5. All exhausted -> synthesized apology with provider "error"

Accepted responses are cached and handed to the usage logger in a detached
task. Nothing below this layer raises past `process_query`; cancellation
propagates.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import List, Optional, Set, Union

from opentelemetry.trace import StatusCode

from figbud.core.config import Settings, get_settings
from figbud.core.logging import get_logger
from figbud.core.metrics import (
    record_orchestration_attempt,
    record_orchestration_result,
    record_validation_failure,
)
from figbud.core.tracing import set_span_status, start_span
from figbud.services.ai.backends import Backend, BackendCallError
from figbud.services.ai.cache import RESPONSE_CACHE_TTL_SECONDS, ResponseCache, build_cache_key
from figbud.services.ai.prompts import build_system_prompt
from figbud.services.ai.registry import BackendRegistry, build_registry
from figbud.services.ai.schema import (
    AttemptRecord,
    CandidateResponse,
    FinalResponse,
    QueryContext,
    ResponseMetadata,
    SkillLevel,
    ValidationVerdict,
)
from figbud.services.ai.usage import UsageLogger, get_usage_logger
from figbud.services.ai.validation import validate

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 3

APOLOGY_TEXT = (
    "I apologize, but I encountered an error processing your request. Please try again."
)
ALL_FAILED_ERROR = "All providers failed"


@dataclass
class _AttemptOutcome:
    candidate: Optional[CandidateResponse] = None
    verdict: Optional[ValidationVerdict] = None
    error: Optional[BackendCallError] = None


class QueryOrchestrator:
    """Backend selection, validation-driven retry and fallback cascade."""

    def __init__(
        self,
        registry: BackendRegistry,
        cache: Optional[ResponseCache] = None,
        usage_logger: Optional[UsageLogger] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        cache_ttl: int = RESPONSE_CACHE_TTL_SECONDS,
        product: str = "Figma",
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.registry = registry
        self.cache = cache if cache is not None else ResponseCache(default_ttl=cache_ttl)
        self.usage_logger = usage_logger
        self.max_retries = max_retries
        self.cache_ttl = cache_ttl
        self.product = product
        self._background_tasks: Set[asyncio.Task] = set()

    def available_backends(self) -> List[str]:
        return self.registry.names()

    @property
    def default_backend(self) -> str:
        return self.registry.default_backend

    def set_default_backend(self, name: str) -> None:
        """Raises BackendUnregistered for unknown names."""
        self.registry.set_default(name)

    async def process_query(
        self,
        message: str,
        context: Optional[QueryContext] = None,
        skill_level: Union[SkillLevel, str] = SkillLevel.BEGINNER,
        preferred_backend: Optional[str] = None,
    ) -> FinalResponse:
        start = time.perf_counter()
        context = context.model_copy(deep=True) if context is not None else QueryContext()
        try:
            skill_level = SkillLevel(skill_level)
        except ValueError:
            logger.warning("orchestration_unknown_skill_level", skill_level=str(skill_level))
            skill_level = SkillLevel.BEGINNER

        with start_span(
            "orchestration.process_query",
            skill_level=skill_level.value,
            preferred_backend=preferred_backend,
        ) as span:
            try:
                response, outcome = await self._run(message, context, skill_level, preferred_backend)
            except Exception as e:
                logger.error(
                    "orchestration_unexpected_error",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                set_span_status(StatusCode.ERROR, str(e))
                response = self._apology([], f"{type(e).__name__}: {e}")
                outcome = "all_failed"

            span.set_attribute("orchestration.outcome", outcome)
            span.set_attribute("orchestration.provider", response.provider)
            span.set_attribute("orchestration.attempts", len(response.metadata.attempts))

        duration = time.perf_counter() - start
        record_orchestration_result(outcome, duration)
        logger.info(
            "orchestration_completed",
            outcome=outcome,
            provider=response.provider,
            attempts=len(response.metadata.attempts),
            from_cache=response.from_cache,
            duration_ms=round(duration * 1000, 2),
        )
        return response

    async def _run(
        self,
        message: str,
        context: QueryContext,
        skill_level: SkillLevel,
        preferred_backend: Optional[str],
    ):
        cache_key = build_cache_key(message, context, skill_level)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return cached, "cache_hit"

        system_prompt = build_system_prompt(skill_level, self.product)
        attempts: List[AttemptRecord] = []
        last_error: Optional[BackendCallError] = None

        selected = self._select(preferred_backend)
        if selected is not None:
            for attempt_number in range(1, self.max_retries + 1):
                outcome = await self._attempt(
                    selected, message, context, system_prompt, "primary", attempts
                )
                if outcome.candidate is not None:
                    return await self._accept(outcome.candidate, attempts, cache_key, message, context), "primary"

                if outcome.error is not None:
                    last_error = outcome.error
                elif attempt_number < self.max_retries:
                    context.enhanced_prompt = True
                    context.validation_hint = outcome.verdict.hint

            logger.warning(
                "orchestration_primary_exhausted",
                backend=selected.name,
                attempts=self.max_retries,
            )

        for backend in self.registry:
            if selected is not None and backend.name == selected.name:
                continue
            outcome = await self._attempt(
                backend, message, context, system_prompt, "fallback", attempts
            )
            if outcome.candidate is not None:
                return await self._accept(outcome.candidate, attempts, cache_key, message, context), "fallback"
            if outcome.error is not None:
                last_error = outcome.error

        logger.error(
            "orchestration_all_backends_failed",
            attempts=len(attempts),
            last_error=str(last_error) if last_error else None,
        )
        return self._apology(attempts, str(last_error) if last_error else ALL_FAILED_ERROR), "all_failed"

    def _select(self, preferred_backend: Optional[str]) -> Optional[Backend]:
        if preferred_backend and preferred_backend in self.registry:
            return self.registry.get(preferred_backend)

        if preferred_backend:
            logger.warning(
                "orchestration_backend_unregistered",
                backend=preferred_backend,
                available=self.registry.names(),
            )

        backend = self.registry.get(self.registry.default_backend)
        if backend is None:
            logger.warning(
                "orchestration_default_backend_unregistered",
                backend=self.registry.default_backend,
                available=self.registry.names(),
            )
        return backend

    async def _attempt(
        self,
        backend: Backend,
        message: str,
        context: QueryContext,
        system_prompt: str,
        phase: str,
        attempts: List[AttemptRecord],
    ) -> _AttemptOutcome:
        with start_span(
            "orchestration.attempt",
            backend=backend.name,
            phase=phase,
            enhanced_prompt=context.enhanced_prompt,
        ) as span:
            result = await backend.process_query(message, context, system_prompt)

            if isinstance(result, BackendCallError):
                attempts.append(
                    AttemptRecord(backend=backend.name, success=False, error=str(result))
                )
                record_orchestration_attempt(backend.name, phase, "error")
                span.set_attribute("orchestration.attempt_outcome", "error")
                return _AttemptOutcome(error=result)

            verdict = validate(result, message)
            if not verdict.is_valid:
                error_code = verdict.error.value if verdict.error else None
                attempts.append(
                    AttemptRecord(
                        backend=backend.name, success=False, validation_error=error_code
                    )
                )
                record_orchestration_attempt(backend.name, phase, "invalid")
                record_validation_failure(error_code)
                span.set_attribute("orchestration.attempt_outcome", "invalid")
                logger.info(
                    "orchestration_validation_failed",
                    backend=backend.name,
                    phase=phase,
                    validation_error=error_code,
                )
                return _AttemptOutcome(verdict=verdict)

            attempts.append(AttemptRecord(backend=backend.name, success=True))
            record_orchestration_attempt(backend.name, phase, "success")
            span.set_attribute("orchestration.attempt_outcome", "success")
            return _AttemptOutcome(candidate=result, verdict=verdict)

    async def _accept(
        self,
        candidate: CandidateResponse,
        attempts: List[AttemptRecord],
        cache_key: str,
        message: str,
        context: QueryContext,
    ) -> FinalResponse:
        response = FinalResponse.from_candidate(candidate, attempts)
        await self.cache.put(cache_key, response, self.cache_ttl)
        self._log_usage_detached(response, message, context)
        return response

    def _apology(self, attempts: List[AttemptRecord], error: str) -> FinalResponse:
        return FinalResponse(
            text=APOLOGY_TEXT,
            metadata=ResponseMetadata(attempts=list(attempts), error=error),
            provider="error",
        )

    def _log_usage_detached(
        self, response: FinalResponse, message: str, context: QueryContext
    ) -> None:
        if self.usage_logger is None:
            return
        task = asyncio.create_task(self._log_usage(response, message, context))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _log_usage(
        self, response: FinalResponse, message: str, context: QueryContext
    ) -> None:
        try:
            await self.usage_logger.record(response, message, context)
        except Exception as e:
            logger.warning(
                "usage_logging_failed",
                provider=response.provider,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def wait_for_background_tasks(self) -> None:
        """Await pending usage-logging tasks (shutdown and tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)


_query_orchestrator: Optional[QueryOrchestrator] = None


def initialize_orchestrator(settings: Optional[Settings] = None) -> QueryOrchestrator:
    """Build the process-wide orchestrator from settings (registry, cache, usage logger)."""
    global _query_orchestrator
    settings = settings or get_settings()
    _query_orchestrator = QueryOrchestrator(
        registry=build_registry(settings),
        cache=ResponseCache(default_ttl=settings.cache_ttl_seconds),
        usage_logger=get_usage_logger(),
        max_retries=settings.max_retries,
        cache_ttl=settings.cache_ttl_seconds,
        product=settings.product_name,
    )
    return _query_orchestrator


def get_query_orchestrator() -> QueryOrchestrator:
    """Global singleton accessor for the query orchestrator."""
    if _query_orchestrator is None:
        return initialize_orchestrator()
    return _query_orchestrator


async def shutdown_orchestrator() -> None:
    global _query_orchestrator
    if _query_orchestrator is not None:
        await _query_orchestrator.wait_for_background_tasks()
        _query_orchestrator = None
