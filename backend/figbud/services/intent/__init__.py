"""Intent extraction and enrichment of finished turns."""

from .enrichment import EnrichmentPipeline
from .extraction import IntentExtractor, get_intent_extractor

__all__ = ["EnrichmentPipeline", "IntentExtractor", "get_intent_extractor"]
