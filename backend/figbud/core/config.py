"""
Runtime configuration for the assistant service.

All settings come from environment variables (optionally loaded from a
`.env` file at the repository root). Settings are read once and cached;
tests can call `reset_settings()` after patching the environment.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from figbud.core.logging import get_logger

logger = get_logger(__name__)

# Load environment variables from .env file in repository root
env_path = Path(__file__).parent.parent.parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)
    logger.info("env_loaded", env_path=str(env_path))


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("config_invalid_int", name=name, value=raw, default=default)
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("config_invalid_float", name=name, value=raw, default=default)
        return default


@dataclass(frozen=True)
class Settings:
    """Process-wide settings snapshot."""

    openrouter_api_key: Optional[str] = None
    deepseek_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-3.5-turbo"
    ai_strategy: str = "cost_optimized"

    default_provider: str = "smart"
    max_retries: int = 3
    backend_timeout_seconds: float = 15.0

    cache_ttl_seconds: int = 24 * 60 * 60
    redis_url: Optional[str] = None
    memory_cache_max_entries: int = 1000

    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    youtube_api_key: Optional[str] = None

    product_name: str = "Figma"

    log_level: str = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY") or None,
            deepseek_api_key=os.getenv("DEEPSEEK_API_KEY") or None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-3.5-turbo"),
            ai_strategy=os.getenv("AI_STRATEGY", "cost_optimized"),
            default_provider=os.getenv("DEFAULT_AI_PROVIDER", "smart"),
            max_retries=max(1, _get_int("AI_MAX_RETRIES", 3)),
            backend_timeout_seconds=_get_float("BACKEND_TIMEOUT_SECONDS", 15.0),
            cache_ttl_seconds=_get_int("AI_CACHE_TTL_SECONDS", 24 * 60 * 60),
            redis_url=os.getenv("REDIS_URL") or None,
            memory_cache_max_entries=_get_int("MEMORY_CACHE_MAX_ENTRIES", 1000),
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_key=os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_KEY") or None,
            youtube_api_key=os.getenv("YOUTUBE_API_KEY") or None,
            product_name=os.getenv("PRODUCT_NAME", "Figma"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=os.getenv("LOG_JSON", "true").lower() == "true",
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Global settings accessor."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None
