"""
Backend capability: the one interface every generative backend implements.

`Backend.process_query` never raises for backend-side failures. It bounds
the call with a timeout and returns either a CandidateResponse or a
BackendCallError value describing what went wrong.
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

import httpx

from figbud.core.circuit_breaker import CircuitBreakerOpenError
from figbud.core.logging import get_logger
from figbud.services.ai.llm_client import LLMConfigurationError
from figbud.services.ai.schema import CandidateResponse, QueryContext

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


class BackendErrorKind(str, Enum):
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    TRANSPORT = "transport"
    UNAVAILABLE = "unavailable"
    CONFIGURATION = "configuration"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class BackendCallError:
    """Failed backend call (network, timeout, auth, quota, ...)."""

    backend: str
    kind: BackendErrorKind
    message: str
    status_code: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.backend} {self.kind.value}: {self.message}"


BackendResult = Union[CandidateResponse, BackendCallError]


class Backend(ABC):
    """Base class for generative backends."""

    name: str = "backend"

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    async def _generate(
        self, message: str, context: QueryContext, system_prompt: str
    ) -> CandidateResponse:
        """Produce a candidate; may raise on any failure."""

    async def process_query(
        self, message: str, context: QueryContext, system_prompt: str
    ) -> BackendResult:
        try:
            return await asyncio.wait_for(
                self._generate(message, context, system_prompt),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return self._error(
                BackendErrorKind.TIMEOUT,
                f"no response within {self.timeout_seconds:g}s",
            )
        except CircuitBreakerOpenError as exc:
            return self._error(BackendErrorKind.UNAVAILABLE, str(exc))
        except LLMConfigurationError as exc:
            return self._error(BackendErrorKind.CONFIGURATION, str(exc))
        except httpx.HTTPStatusError as exc:
            return self._error(
                BackendErrorKind.HTTP_STATUS,
                f"HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            )
        except httpx.HTTPError as exc:
            return self._error(
                BackendErrorKind.TRANSPORT, f"{type(exc).__name__}: {exc}"
            )
        except Exception as exc:
            logger.error(
                "backend_unexpected_error",
                backend=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return self._error(
                BackendErrorKind.UNEXPECTED, f"{type(exc).__name__}: {exc}"
            )

    def _error(
        self, kind: BackendErrorKind, message: str, status_code: Optional[int] = None
    ) -> BackendCallError:
        error = BackendCallError(
            backend=self.name, kind=kind, message=message, status_code=status_code
        )
        logger.warning(
            "backend_call_failed",
            backend=self.name,
            kind=kind.value,
            error=message,
        )
        return error

    def health(self) -> Optional[Dict[str, Any]]:
        """Circuit-breaker snapshot, for backends that have one."""
        return None
