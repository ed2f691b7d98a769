"""
Tutorial search over the YouTube Data API v3.

`search(topic, max_results)` runs a video search, fetches durations and
statistics for the hits, ranks them (known design channels first, then
rating and views) and returns TutorialSummary objects.
Results are cached in the shared store for ten minutes per
(topic, max_results, skill level).

Raises on transport / API errors; the enrichment pipeline decides how to
degrade.
"""
import json
import math
import re
from typing import Any, Dict, List, Optional

import httpx

from figbud.core.cache import CacheClient, get_cache_client, hash_payload
from figbud.core.circuit_breaker import CircuitBreaker
from figbud.core.config import get_settings
from figbud.core.logging import get_logger
from figbud.core.metrics import record_cache_hit, record_cache_miss
from figbud.services.ai.schema import SkillLevel, TutorialSummary

logger = get_logger(__name__)

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
TUTORIAL_CACHE_KEY_PREFIX = "tutorials:"
TUTORIAL_CACHE_TTL_SECONDS = 10 * 60
CACHE_TYPE = "tutorials"

OFFICIAL_CHANNEL_IDS = {
    "UCQsVmhSa4X-G3lHlUtejzLA",  # Figma
    "UC-b3c7kxa5vU-bnmaROgvog",  # Config
}
TRUSTED_CHANNEL_IDS = {
    "UCTIhfOopxukTIRkbXJ3kN-g",
    "UCJQJ7GId4i1NepmJpb1VAEw",
    "UCvBGFeXbBrq3W9_0oNLJREQ",
    "UCeB_OpLspKJGiKv1CYkWFFw",
    "UCzBkNPSxw15qrW_Y8p-oCUw",
    "UCW5gUZ7lKGrAbLOkHv2xfbw",
    "UCNZnXvcHmfbHBEbtF9V6u7g",
    "UCbqd2YmFeHMwxlj4NcN5zPQ",
    "UC7gLo5ERvucOoV8z_V0vvTw",
}
CHANNEL_NAME_SCORES = (
    ("figma", 10),
    ("config", 8),
    ("designcourse", 7),
    ("the futur academy", 7),
    ("flux academy", 6),
    ("aj&smart", 6),
    ("figma guru", 5),
    ("ui collective", 5),
    ("mizko", 5),
    ("mike locke", 4),
)

BEGINNER_TITLE_MARKERS = ("beginner", "basic", "introduction", "getting started")
ADVANCED_TITLE_MARKERS = ("advanced", "expert", "master", "pro tips")

ISO_DURATION_PATTERN = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


class TutorialSearchUnavailable(RuntimeError):
    """No YouTube API key configured."""


def parse_duration(duration: str) -> int:
    """ISO 8601 duration (PT1H2M3S) to seconds."""
    match = ISO_DURATION_PATTERN.match(duration or "")
    if not match:
        return 0
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds


def determine_skill_level(title: str, duration_seconds: int) -> str:
    lower = title.lower()
    if any(marker in lower for marker in BEGINNER_TITLE_MARKERS):
        return SkillLevel.BEGINNER.value
    if any(marker in lower for marker in ADVANCED_TITLE_MARKERS):
        return SkillLevel.ADVANCED.value
    if duration_seconds < 600:
        return SkillLevel.BEGINNER.value
    if duration_seconds > 1800:
        return SkillLevel.ADVANCED.value
    return SkillLevel.INTERMEDIATE.value


def calculate_rating(statistics: Optional[Dict[str, Any]]) -> float:
    """Like/view ratio mapped onto a 3-5 scale (0 without statistics)."""
    if not statistics:
        return 0.0
    likes = int(statistics.get("likeCount") or 0)
    views = int(statistics.get("viewCount") or 1) or 1
    ratio = likes / views
    if ratio > 0.1:
        return 5.0
    if ratio > 0.05:
        return 4.5
    if ratio > 0.02:
        return 4.0
    if ratio > 0.01:
        return 3.5
    return 3.0


def channel_score(channel_id: str, channel_title: str) -> int:
    if channel_id in OFFICIAL_CHANNEL_IDS:
        return 100
    if channel_id in TRUSTED_CHANNEL_IDS:
        return 50
    lower = channel_title.lower()
    for name, score in CHANNEL_NAME_SCORES:
        if name in lower:
            return score * 5
    return 0


class YouTubeTutorialSearch:
    """YouTube Data API v3 client."""

    def __init__(
        self,
        api_key: Optional[str],
        timeout_seconds: float = 10.0,
        product: str = "Figma",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache: Optional[CacheClient] = None,
        cache_ttl_seconds: int = TUTORIAL_CACHE_TTL_SECONDS,
    ):
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.product = product
        self._transport = transport
        self._cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self.circuit_breaker = CircuitBreaker(name="youtube_api")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def cache(self) -> CacheClient:
        return self._cache if self._cache is not None else get_cache_client()

    def cache_key(self, topic: str, max_results: int, skill_level: Optional[str]) -> str:
        payload = json.dumps(
            {
                "topic": " ".join(topic.lower().split()),
                "max_results": max_results,
                "skill_level": skill_level,
                "product": self.product,
            },
            sort_keys=True,
        )
        return f"{TUTORIAL_CACHE_KEY_PREFIX}{hash_payload(payload)}"

    async def _cached(self, key: str) -> Optional[List[TutorialSummary]]:
        try:
            raw = await self.cache.get(key)
            if raw is None:
                return None
            return [TutorialSummary.model_validate(item) for item in raw]
        except Exception as e:
            logger.warning(
                "tutorial_cache_get_failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def _store(self, key: str, tutorials: List[TutorialSummary]) -> None:
        try:
            await self.cache.set(
                key,
                [tutorial.model_dump(mode="json") for tutorial in tutorials],
                self.cache_ttl_seconds,
            )
        except Exception as e:
            logger.warning(
                "tutorial_cache_set_failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _get(self, client: httpx.AsyncClient, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = await client.get(f"{YOUTUBE_API_BASE}{path}", params={**params, "key": self.api_key})
        response.raise_for_status()
        return response.json()

    async def search(
        self,
        topic: str,
        max_results: int = 2,
        skill_level: Optional[str] = None,
    ) -> List[TutorialSummary]:
        """
        Search tutorials for a topic.

        Args:
            topic: What the user wants to learn
            max_results: Max tutorials returned
            skill_level: Beginners get short videos only

        Returns:
            Ranked TutorialSummary list (possibly empty)

        Raises:
            TutorialSearchUnavailable: no API key
            httpx.HTTPError / CircuitBreakerOpenError: API failures
        """
        if not self.is_configured():
            raise TutorialSearchUnavailable("YOUTUBE_API_KEY not configured")

        key = self.cache_key(topic, max_results, skill_level)
        cached = await self._cached(key)
        if cached is not None:
            record_cache_hit(CACHE_TYPE)
            logger.debug("tutorial_cache_hit", topic=topic)
            return cached
        record_cache_miss(CACHE_TYPE)

        results = await self._search_api(topic, max_results, skill_level)
        await self._store(key, results)
        return results

    async def _search_api(
        self, topic: str, max_results: int, skill_level: Optional[str]
    ) -> List[TutorialSummary]:
        search_params = {
            "part": "snippet",
            "q": f"{topic} {self.product} tutorial",
            "maxResults": max_results * 2,
            "type": "video",
            "videoDuration": "short" if skill_level == SkillLevel.BEGINNER.value else "any",
            "relevanceLanguage": "en",
            "order": "relevance",
            "safeSearch": "strict",
        }

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            search_data = await self.circuit_breaker.call_async(
                self._get, client, "/search", search_params
            )
            items = [
                item for item in search_data.get("items") or []
                if (item.get("id") or {}).get("videoId")
            ]
            if not items:
                logger.info("tutorial_search_empty", topic=topic)
                return []

            video_ids = [item["id"]["videoId"] for item in items]
            videos_data = await self.circuit_breaker.call_async(
                self._get,
                client,
                "/videos",
                {"part": "contentDetails,statistics", "id": ",".join(video_ids)},
            )

        details = {video.get("id"): video for video in videos_data.get("items") or []}

        scored = []
        for item in items:
            video_id = item["id"]["videoId"]
            snippet = item.get("snippet") or {}
            video = details.get(video_id) or {}
            duration = parse_duration((video.get("contentDetails") or {}).get("duration", "PT0S"))
            statistics = video.get("statistics")
            views = int((statistics or {}).get("viewCount") or 0)
            rating = calculate_rating(statistics)
            thumbnails = snippet.get("thumbnails") or {}
            thumbnail = (thumbnails.get("high") or thumbnails.get("default") or {}).get("url")

            tutorial = TutorialSummary(
                id=video_id,
                title=snippet.get("title", ""),
                channel_title=snippet.get("channelTitle"),
                url=f"https://youtube.com/watch?v={video_id}",
                thumbnail_url=thumbnail,
                duration_seconds=duration,
                skill_level=determine_skill_level(snippet.get("title", ""), duration),
            )
            score = (
                channel_score(snippet.get("channelId", ""), snippet.get("channelTitle", ""))
                + rating
                + (math.log10(views) if views > 0 else 0)
            )
            scored.append((score, tutorial))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        results = [tutorial for _, tutorial in scored[:max_results]]
        logger.info("tutorial_search_completed", topic=topic, result_count=len(results))
        return results


_tutorial_search: Optional[YouTubeTutorialSearch] = None


def get_tutorial_search() -> YouTubeTutorialSearch:
    """Global singleton accessor for the tutorial search client."""
    global _tutorial_search
    if _tutorial_search is None:
        settings = get_settings()
        _tutorial_search = YouTubeTutorialSearch(
            api_key=settings.youtube_api_key,
            product=settings.product_name,
        )
    return _tutorial_search
