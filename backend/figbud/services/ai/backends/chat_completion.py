"""
Single-model backends over OpenAI-compatible chat completion APIs.
"""
from typing import Any, Dict, List, Optional

from figbud.services.ai.backends.base import DEFAULT_TIMEOUT_SECONDS, Backend
from figbud.services.ai.backends.parsing import parse_backend_text
from figbud.services.ai.llm_client import LLMClient
from figbud.services.ai.prompts import build_user_prompt
from figbud.services.ai.schema import CandidateResponse, QueryContext

OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"
DEEPSEEK_API_BASE = "https://api.deepseek.com/v1"
OPENAI_API_BASE = "https://api.openai.com/v1"

OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://figbud.com",
    "X-Title": "FigBud Assistant",
}

JSON_MODE = {"type": "json_object"}


def build_messages(
    message: str, context: QueryContext, system_prompt: str, product: str = "Figma"
) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": build_user_prompt(message, context, product)},
    ]


class ChatCompletionBackend(Backend):
    """One provider, one model."""

    def __init__(
        self,
        name: str,
        client: LLMClient,
        model: str,
        cost_per_1k_tokens: float = 0.0,
        json_mode: bool = True,
        max_tokens: int = 500,
        temperature: float = 0.7,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        product: str = "Figma",
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        self.name = name
        self.client = client
        self.model = model
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.json_mode = json_mode
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.product = product

    async def _generate(
        self, message: str, context: QueryContext, system_prompt: str
    ) -> CandidateResponse:
        completion = await self.client.chat(
            model=self.model,
            messages=build_messages(message, context, system_prompt, self.product),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            response_format=JSON_MODE if self.json_mode else None,
            cost_per_1k_tokens=self.cost_per_1k_tokens,
        )

        parsed = parse_backend_text(completion.content)
        parsed.metadata.model = completion.model
        return CandidateResponse(
            text=parsed.text,
            metadata=parsed.metadata,
            provider=self.name,
            tokens_used=completion.total_tokens,
            cost=(completion.total_tokens / 1000.0) * self.cost_per_1k_tokens,
            parse_error=parsed.parse_error,
        )

    def health(self) -> Optional[Dict[str, Any]]:
        return self.client.circuit_breaker.get_metrics()


def openrouter_backend(
    api_key: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS, product: str = "Figma"
) -> ChatCompletionBackend:
    """DeepSeek chat via OpenRouter, JSON mode, ~$0.002 per 1K tokens."""
    client = LLMClient(
        name="openrouter",
        api_base=OPENROUTER_API_BASE,
        api_key=api_key,
        timeout_seconds=timeout_seconds,
        extra_headers=OPENROUTER_HEADERS,
    )
    return ChatCompletionBackend(
        name="openrouter",
        client=client,
        model="deepseek/deepseek-chat",
        cost_per_1k_tokens=0.002,
        timeout_seconds=timeout_seconds,
        product=product,
    )


def deepseek_backend(
    api_key: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS, product: str = "Figma"
) -> ChatCompletionBackend:
    """DeepSeek direct API, $1.40 per 1M tokens, prose or JSON."""
    client = LLMClient(
        name="deepseek",
        api_base=DEEPSEEK_API_BASE,
        api_key=api_key,
        timeout_seconds=timeout_seconds,
    )
    return ChatCompletionBackend(
        name="deepseek",
        client=client,
        model="deepseek-chat",
        cost_per_1k_tokens=0.0014,
        json_mode=False,
        timeout_seconds=timeout_seconds,
        product=product,
    )


def openai_backend(
    api_key: str,
    model: str = "gpt-3.5-turbo",
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    product: str = "Figma",
) -> ChatCompletionBackend:
    client = LLMClient(
        name="openai",
        api_base=OPENAI_API_BASE,
        api_key=api_key,
        timeout_seconds=timeout_seconds,
    )
    return ChatCompletionBackend(
        name="openai",
        client=client,
        model=model,
        cost_per_1k_tokens=0.002,
        timeout_seconds=timeout_seconds,
        product=product,
    )
