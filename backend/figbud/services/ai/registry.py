"""
Backend registry.

Built once at startup by `build_registry(settings)` from an ordered list of
factories; each factory returns a Backend when its credentials are
configured, or None to be skipped. After construction the registry is
read-only except for `set_default`, the administrative override.
"""
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from figbud.core.config import Settings
from figbud.core.logging import get_logger
from figbud.services.ai.backends import Backend
from figbud.services.ai.backends.chat_completion import (
    deepseek_backend,
    openai_backend,
    openrouter_backend,
)
from figbud.services.ai.backends.smart import SmartBackend

logger = get_logger(__name__)


class BackendUnregistered(Exception):
    """Requested backend name is not in the registry."""

    def __init__(self, name: str, available: Sequence[str] = ()):
        super().__init__(
            f"AI provider {name} is not available (registered: {', '.join(available) or 'none'})"
        )
        self.name = name
        self.available = list(available)


class BackendRegistry:
    """Ordered, name-keyed collection of backends plus the default name."""

    def __init__(self, backends: Sequence[Backend], default_backend: str):
        self._backends: Dict[str, Backend] = {}
        for backend in backends:
            if backend.name in self._backends:
                raise ValueError(f"duplicate backend name: {backend.name}")
            self._backends[backend.name] = backend
        self._default_backend = default_backend

        if default_backend not in self._backends:
            logger.warning(
                "registry_default_backend_unregistered",
                default_backend=default_backend,
                available=self.names(),
            )

    @property
    def default_backend(self) -> str:
        return self._default_backend

    def set_default(self, name: str) -> None:
        if name not in self._backends:
            raise BackendUnregistered(name, self.names())
        previous = self._default_backend
        self._default_backend = name
        logger.info("registry_default_backend_changed", previous=previous, current=name)

    def get(self, name: Optional[str]) -> Optional[Backend]:
        if name is None:
            return None
        return self._backends.get(name)

    def names(self) -> List[str]:
        return list(self._backends)

    def __contains__(self, name: object) -> bool:
        return name in self._backends

    def __iter__(self) -> Iterator[Backend]:
        return iter(self._backends.values())

    def __len__(self) -> int:
        return len(self._backends)


BackendFactory = Callable[[Settings], Optional[Backend]]


def _openrouter(settings: Settings) -> Optional[Backend]:
    if not settings.openrouter_api_key:
        return None
    return openrouter_backend(
        settings.openrouter_api_key,
        timeout_seconds=settings.backend_timeout_seconds,
        product=settings.product_name,
    )


def _deepseek(settings: Settings) -> Optional[Backend]:
    if not settings.deepseek_api_key:
        return None
    return deepseek_backend(
        settings.deepseek_api_key,
        timeout_seconds=settings.backend_timeout_seconds,
        product=settings.product_name,
    )


def _smart(settings: Settings) -> Optional[Backend]:
    if not settings.openrouter_api_key:
        return None
    return SmartBackend(
        api_key=settings.openrouter_api_key,
        strategy=settings.ai_strategy,
        timeout_seconds=settings.backend_timeout_seconds,
        product=settings.product_name,
    )


def _openai(settings: Settings) -> Optional[Backend]:
    if not settings.openai_api_key:
        return None
    return openai_backend(
        settings.openai_api_key,
        model=settings.openai_model,
        timeout_seconds=settings.backend_timeout_seconds,
        product=settings.product_name,
    )


DEFAULT_FACTORIES: Tuple[Tuple[str, BackendFactory], ...] = (
    ("openrouter", _openrouter),
    ("deepseek", _deepseek),
    ("smart", _smart),
    ("openai", _openai),
)


def build_registry(
    settings: Settings,
    factories: Sequence[Tuple[str, BackendFactory]] = DEFAULT_FACTORIES,
) -> BackendRegistry:
    backends: List[Backend] = []
    for name, factory in factories:
        backend = factory(settings)
        if backend is None:
            logger.info("registry_backend_skipped", backend=name, reason="not_configured")
            continue
        backends.append(backend)

    registry = BackendRegistry(backends, default_backend=settings.default_provider)
    logger.info(
        "registry_built",
        backends=registry.names(),
        default_backend=registry.default_backend,
    )
    return registry
