"""
Async client for OpenAI-compatible /chat/completions APIs.

One client instance per backend (OpenRouter, DeepSeek, OpenAI all speak the
same wire format). Each instance owns a circuit breaker so a failing
provider is skipped quickly instead of burning the per-call timeout.

Errors are raised to the caller; the backend layer converts them into
BackendCallError values.
"""
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from figbud.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from figbud.core.logging import get_logger
from figbud.core.metrics import (
    record_llm_error,
    record_llm_request,
    record_llm_tokens_and_cost,
)

logger = get_logger(__name__)


class LLMConfigurationError(RuntimeError):
    """Backend is registered but cannot be called (e.g. no API key)."""


@dataclass
class ChatCompletion:
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMClient:
    """Async HTTP client for one OpenAI-compatible provider."""

    def __init__(
        self,
        name: str,
        api_base: str,
        api_key: Optional[str],
        timeout_seconds: float = 15.0,
        extra_headers: Optional[Dict[str, str]] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.name = name
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.extra_headers = extra_headers or {}
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name=f"llm_{name}")

    async def _post(self, path: str, json_payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST and decode; HTTP status errors count as breaker failures."""
        headers = {"Content-Type": "application/json", **self.extra_headers}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        url = f"{self.api_base}{path}"
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(url, headers=headers, json=json_payload)
            response.raise_for_status()
            return response.json()

    async def chat(
        self,
        model: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 500,
        temperature: float = 0.7,
        response_format: Optional[Dict[str, Any]] = None,
        cost_per_1k_tokens: float = 0.0,
    ) -> ChatCompletion:
        """
        Call the chat completion endpoint.

        Args:
            model: Provider model identifier
            messages: OpenAI-style chat messages
            max_tokens: Max tokens for completion
            temperature: Sampling temperature
            response_format: Optional response_format for JSON mode
            cost_per_1k_tokens: Used for the spend estimate in metrics

        Returns:
            ChatCompletion with the first choice's content and token usage.
        """
        if not self.api_key:
            record_llm_error(self.name, "missing_api_key")
            raise LLMConfigurationError(f"{self.name} API key not configured")

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            payload["response_format"] = response_format

        start = time.time()
        try:
            data = await self.circuit_breaker.call_async(
                self._post,
                "/chat/completions",
                json_payload=payload,
            )
        except CircuitBreakerOpenError:
            record_llm_error(self.name, "circuit_open")
            logger.warning("llm_circuit_open", backend=self.name, model=model)
            raise
        except httpx.TimeoutException as exc:
            record_llm_error(self.name, "timeout")
            logger.warning(
                "llm_timeout",
                backend=self.name,
                model=model,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        except httpx.HTTPStatusError as exc:
            record_llm_error(self.name, f"http_{exc.response.status_code}")
            logger.warning(
                "llm_http_status_error",
                backend=self.name,
                model=model,
                status_code=exc.response.status_code,
                error=str(exc),
            )
            raise
        except httpx.HTTPError as exc:
            record_llm_error(self.name, "http_error")
            logger.warning(
                "llm_http_error",
                backend=self.name,
                model=model,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            record_llm_request(self.name, model, time.time() - start)

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            record_llm_error(self.name, "malformed_response")
            raise ValueError(f"{self.name} returned no choices") from exc

        usage = data.get("usage") or {}
        input_tokens = int(usage.get("prompt_tokens") or 0)
        output_tokens = int(usage.get("completion_tokens") or 0)
        if not input_tokens and not output_tokens:
            output_tokens = int(usage.get("total_tokens") or 0)

        completion = ChatCompletion(
            content=content,
            model=data.get("model") or model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        record_llm_tokens_and_cost(
            backend=self.name,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=(completion.total_tokens / 1000.0) * cost_per_1k_tokens,
        )
        return completion
