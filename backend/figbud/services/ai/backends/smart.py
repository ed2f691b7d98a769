"""
Cost-aware backend that walks a ranked list of OpenRouter models.

The first model that answers wins. Ranking depends on AI_STRATEGY:

- cost_optimized (default): free models first, then cheapest paid
- performance: highest quality first
- balanced: free non-low-quality first, then quality per dollar

Models flagged low quality are not asked for JSON mode; when a model answers
in prose, action / component type / teacher note are inferred from the user
message so component requests can still pass validation.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from figbud.core.circuit_breaker import CircuitBreakerOpenError
from figbud.core.logging import get_logger
from figbud.services.ai.backends.base import DEFAULT_TIMEOUT_SECONDS, Backend
from figbud.services.ai.backends.chat_completion import (
    JSON_MODE,
    OPENROUTER_API_BASE,
    OPENROUTER_HEADERS,
    build_messages,
)
from figbud.services.ai.backends.parsing import parse_backend_text
from figbud.services.ai.llm_client import LLMClient
from figbud.services.ai.schema import CandidateResponse, QueryContext

logger = get_logger(__name__)

QUALITY_RANK = {"high": 3, "medium": 2, "low": 1}


@dataclass(frozen=True)
class ModelConfig:
    name: str
    input_cost: float  # USD per 1M tokens
    output_cost: float
    quality: str

    @property
    def is_free(self) -> bool:
        return self.input_cost == 0 and self.output_cost == 0

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens * self.input_cost + output_tokens * self.output_cost) / 1_000_000


OPENROUTER_MODELS: List[ModelConfig] = [
    ModelConfig("google/gemini-2.0-flash-thinking-exp:free", 0, 0, "medium"),
    ModelConfig("google/gemini-flash-1.5-8b:free", 0, 0, "medium"),
    ModelConfig("microsoft/phi-3-mini-128k-instruct:free", 0, 0, "low"),
    ModelConfig("meta-llama/llama-3.2-1b-instruct:free", 0, 0, "low"),
    ModelConfig("deepseek/deepseek-chat", 0.14, 0.28, "high"),
    ModelConfig("meta-llama/llama-3.1-8b-instruct", 0.18, 0.18, "medium"),
    ModelConfig("google/gemini-flash-1.5", 0.25, 0.25, "high"),
]

FALLBACK_COMPONENTS = [
    "button", "card", "input", "toggle", "checkbox",
    "radio", "badge", "textarea", "dropdown",
    "modal", "navbar", "form",
]

TEACHER_NOTES = {
    "button": "Buttons should have clear labels and appropriate padding. Use primary buttons for main actions.",
    "card": "Cards group related content. Use consistent padding and consider adding subtle shadows.",
    "input": "Input fields need clear labels and placeholder text. Always consider accessibility.",
    "toggle": "Toggles are for on/off states. Place labels on the left for better usability.",
    "checkbox": "Checkboxes allow multiple selections. Group related options together.",
    "radio": "Radio buttons are for single selection from a group. Always have one option selected by default.",
    "badge": "Badges show status or counts. Keep text short and use appropriate colors.",
    "textarea": "Textareas are for longer text input. Set appropriate min/max heights.",
    "dropdown": "Dropdowns save space for long lists. Consider search functionality for 10+ items.",
    "modal": "Modals interrupt the flow. Keep one clear primary action and an obvious way to close.",
    "navbar": "Keep navigation items few and consistent. Highlight the current page.",
    "form": "Group related fields, label every input and put the submit button at the end.",
}

_CREATE_PATTERN = re.compile(r"\b(?:create|make|build|show|add|design)\b")


def rank_models(models: List[ModelConfig], strategy: str) -> List[ModelConfig]:
    if strategy == "performance":
        return sorted(models, key=lambda m: -QUALITY_RANK[m.quality])
    if strategy == "cost_optimized":
        return sorted(models, key=lambda m: (not m.is_free, m.input_cost + m.output_cost))

    def balanced_key(m: ModelConfig):
        preferred_free = m.is_free and m.quality != "low"
        value = QUALITY_RANK[m.quality] / (m.input_cost + m.output_cost + 1)
        return (not preferred_free, -value)

    return sorted(models, key=balanced_key)


def infer_component_type(message: str) -> Optional[str]:
    lower = message.lower()
    for component in FALLBACK_COMPONENTS:
        if component in lower:
            return component
    return None


class SmartBackend(Backend):
    name = "smart"

    def __init__(
        self,
        api_key: str,
        strategy: str = "cost_optimized",
        models: Optional[List[ModelConfig]] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        per_model_timeout_seconds: float = 8.0,
        product: str = "Figma",
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        self.strategy = strategy
        self.models = rank_models(models or OPENROUTER_MODELS, strategy)
        self.product = product
        # One client (and breaker) per model so one flaky model does not
        # block the others.
        self._clients: Dict[str, LLMClient] = {
            model.name: LLMClient(
                name="smart",
                api_base=OPENROUTER_API_BASE,
                api_key=api_key,
                timeout_seconds=min(per_model_timeout_seconds, timeout_seconds),
                extra_headers=OPENROUTER_HEADERS,
            )
            for model in self.models
        }

    async def _generate(
        self, message: str, context: QueryContext, system_prompt: str
    ) -> CandidateResponse:
        messages = build_messages(message, context, system_prompt, self.product)
        model_attempts: List[Dict[str, Any]] = []
        last_error: Optional[Exception] = None

        for model in self.models:
            client = self._clients[model.name]
            try:
                completion = await client.chat(
                    model=model.name,
                    messages=messages,
                    response_format=None if model.quality == "low" else JSON_MODE,
                )
            except CircuitBreakerOpenError as exc:
                last_error = exc
                model_attempts.append({"model": model.name, "success": False, "error": "circuit_open"})
                continue
            except Exception as exc:
                last_error = exc
                model_attempts.append({"model": model.name, "success": False, "error": str(exc)})
                logger.info(
                    "smart_model_failed",
                    model=model.name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue

            model_attempts.append({"model": model.name, "success": True})
            return self._to_candidate(message, model, completion, model_attempts)

        if last_error is None:
            raise RuntimeError("no models configured")
        raise last_error

    def _to_candidate(self, message, model: ModelConfig, completion, model_attempts) -> CandidateResponse:
        parsed = parse_backend_text(completion.content)
        metadata = parsed.metadata

        if parsed.parse_error is None and not completion.content.lstrip().startswith(("{", "```")):
            component = infer_component_type(message)
            if _CREATE_PATTERN.search(message.lower()):
                metadata.action = metadata.action or "component_created"
            metadata.component_type = metadata.component_type or component
            metadata.teacher_note = metadata.teacher_note or TEACHER_NOTES.get(component or "")

        metadata.model = model.name
        metadata.is_free = model.is_free
        metadata.model_attempts = model_attempts

        logger.info("smart_model_succeeded", model=model.name, is_free=model.is_free)
        return CandidateResponse(
            text=parsed.text,
            metadata=metadata,
            provider=self.name,
            tokens_used=completion.total_tokens,
            cost=model.cost(completion.input_tokens, completion.output_tokens),
            parse_error=parsed.parse_error,
        )

    def health(self) -> Optional[Dict[str, Any]]:
        return {
            name: client.circuit_breaker.get_metrics()
            for name, client in self._clients.items()
        }
