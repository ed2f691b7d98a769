"""
Setup check: verifies configuration, backends, cache store and Supabase tables.
Run this script before starting the API to see what is configured.
"""
import asyncio
import sys
from pathlib import Path

# Add parent directory to path to import figbud modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from figbud.core.cache import close_cache, initialize_cache
from figbud.core.config import get_settings
from figbud.core.database import get_supabase_client
from figbud.services.ai.registry import build_registry

REQUIRED_TABLES = ["figma_components", "component_analytics", "api_calls"]


def _preview(secret: str) -> str:
    return f"{secret[:6]}...{secret[-4:]}" if len(secret) > 12 else "***"


def check_backends(settings) -> bool:
    print("Step 1: Checking AI backends...")
    for name, key in (
        ("OPENROUTER_API_KEY", settings.openrouter_api_key),
        ("DEEPSEEK_API_KEY", settings.deepseek_api_key),
        ("OPENAI_API_KEY", settings.openai_api_key),
    ):
        if key:
            print(f"[OK] {name} found: {_preview(key)}")
        else:
            print(f"[ ] {name} not set")

    registry = build_registry(settings)
    if not registry.names():
        print("[X] No backend registered; every chat request will get the apology response")
        return False

    print(f"[OK] Registered backends: {', '.join(registry.names())}")
    if registry.default_backend not in registry:
        print(
            f"[!] DEFAULT_AI_PROVIDER={registry.default_backend} is not registered; "
            "requests will go straight to the fallback cascade"
        )
    else:
        print(f"[OK] Default backend: {registry.default_backend}")
    print(f"   Strategy: {settings.ai_strategy}, retries: {settings.max_retries}, "
          f"timeout: {settings.backend_timeout_seconds:g}s")
    return True


async def check_cache(settings) -> bool:
    print("Step 2: Checking cache store...")
    client = await initialize_cache(settings.redis_url, settings.memory_cache_max_entries)
    try:
        if settings.redis_url and client.name != "redis":
            print(f"[!] Redis at {settings.redis_url} unreachable, using in-memory cache")
        else:
            print(f"[OK] Cache store: {client.name}")
        return True
    finally:
        await close_cache()


def check_database(settings) -> bool:
    print("Step 3: Checking Supabase...")
    if not settings.supabase_url or not settings.supabase_key:
        print("[!] SUPABASE_URL / SUPABASE_SERVICE_KEY not set")
        print("   Usage logging and component suggestions are disabled")
        return True

    client = get_supabase_client()
    if not client:
        print("[X] Failed to create Supabase client")
        return False
    print("[OK] Supabase client created")

    missing = []
    for table in REQUIRED_TABLES:
        try:
            client.table(table).select("*").limit(1).execute()
            print(f"[OK] Table '{table}' exists")
        except Exception as e:
            missing.append(table)
            print(f"[X] Table '{table}' not found or not accessible: {e}")

    if missing:
        print(f"[!] {len(missing)} table(s) missing: {', '.join(missing)}")
    return not missing


def check_tutorials(settings) -> bool:
    print("Step 4: Checking tutorial search...")
    if settings.youtube_api_key:
        print(f"[OK] YOUTUBE_API_KEY found: {_preview(settings.youtube_api_key)}")
    else:
        print("[!] YOUTUBE_API_KEY not set; related tutorials will be empty")
    return True


def main() -> bool:
    print("=" * 60)
    print("FigBud Assistant Setup Check")
    print("=" * 60)
    print()

    settings = get_settings()
    results = [check_backends(settings)]
    print()
    results.append(asyncio.run(check_cache(settings)))
    print()
    results.append(check_database(settings))
    print()
    results.append(check_tutorials(settings))
    print()

    print("=" * 60)
    if all(results):
        print("[OK] Setup looks good.")
        return True
    print("[X] Setup incomplete. See the messages above.")
    return False


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
