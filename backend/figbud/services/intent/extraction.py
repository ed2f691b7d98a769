"""
Intent extraction (rule-based).

Classifies one finished turn (user message + backend text) into:
- action: create / show / learn / analyze / modify (or None)
- component types mentioned
- stopword-filtered keywords
- tutorial topics the user asked about
- question / needs-guidance flags
- a confidence score in [0, 1]

Fixed keyword tables, no learned model.
"""
import re
from typing import Dict, List, Optional, Tuple

from figbud.core.config import get_settings
from figbud.core.logging import get_logger
from figbud.core.metrics import record_intent
from figbud.services.ai.schema import FinalResponse, ParsedIntent, ResponseMetadata

logger = get_logger(__name__)

# Checked in order; the first action with any matching keyword wins.
ACTION_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("create", ("create", "make", "build", "add", "generate", "design", "new")),
    ("show", ("show", "display", "present", "view", "see")),
    ("learn", ("how to", "tutorial", "teach", "learn", "guide", "help with", "explain")),
    ("analyze", ("analyze", "review", "check", "inspect", "evaluate")),
    ("modify", ("change", "update", "modify", "edit", "adjust", "customize")),
)

COMPONENT_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "button": ("button", "btn", "click", "press", "action", "submit", "cta"),
    "input": ("input", "field", "textfield", "text field", "entry", "form field"),
    "card": ("card", "container", "box", "panel", "tile"),
    "navbar": ("navbar", "navigation", "nav bar", "menu", "header navigation"),
    "toggle": ("toggle", "switch", "on/off", "checkbox", "enable/disable"),
    "dropdown": ("dropdown", "select", "picker", "combobox", "choice"),
    "modal": ("modal", "dialog", "popup", "overlay", "lightbox"),
    "table": ("table", "grid", "data table", "list view", "spreadsheet"),
    "form": ("form", "signup", "signin", "login", "register", "contact form"),
    "badge": ("badge", "chip", "tag", "label", "status"),
    "textarea": ("textarea", "text area", "multiline", "description field"),
    "radio": ("radio", "radio button", "option group", "single choice"),
    "avatar": ("avatar", "profile picture", "user image", "profile pic"),
    "icon": ("icon", "symbol", "glyph", "pictogram"),
    "tooltip": ("tooltip", "hint", "popover", "help text"),
}

TUTORIAL_KEYWORDS = (
    "tutorial", "guide", "how to", "learn", "teach me", "show me how",
    "walkthrough", "lesson", "course", "training", "youtube", "video",
)

STOPWORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "are", "was", "were", "been",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "can", "i", "me", "my", "we", "our",
    "you", "your", "it", "its", "this", "that", "these", "those",
}

GUIDANCE_MARKERS = ("help", "guide", "don't know", "confused")

TUTORIAL_TOPIC_PATTERNS = (
    re.compile(r"(?:tutorial|guide|teach|learn|how to)\s+(?:about\s+)?(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"show\s+me\s+how\s+to\s+(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"help\s+(?:me\s+)?(?:with\s+)?(.+?)(?:\?|$)", re.IGNORECASE),
)

QUESTION_PATTERN = re.compile(r"\?|\b(?:how|what|where|when|why|can|could|should)\b", re.IGNORECASE)
NON_WORD_PATTERN = re.compile(r"[^\w\s]")


def detect_action(text: str) -> Tuple[Optional[str], float]:
    """
    Return (action, action_confidence) for lower-cased text.

    action_confidence is the share of the winning action's keywords present.
    """
    for action, keywords in ACTION_KEYWORDS:
        matches = sum(1 for keyword in keywords if keyword in text)
        if matches:
            return action, matches / len(keywords)
    return None, 0.0


def detect_components(text: str) -> List[str]:
    lower = text.lower()
    return [
        component
        for component, keywords in COMPONENT_KEYWORDS.items()
        if any(keyword in lower for keyword in keywords)
    ]


def extract_keywords(text: str) -> List[str]:
    words = NON_WORD_PATTERN.sub(" ", text.lower()).split()
    seen = set()
    keywords = []
    for word in words:
        if len(word) <= 2 or word in STOPWORDS or word in seen:
            continue
        seen.add(word)
        keywords.append(word)
    return keywords


def has_tutorial_keyword(text: str) -> bool:
    lower = text.lower()
    return any(keyword in lower for keyword in TUTORIAL_KEYWORDS)


def extract_tutorial_topic(message: str, product: str = "Figma") -> Optional[str]:
    """
    Pull the topic out of a tutorial request.

    Falls back to "<first component> in <product>" when none of the request
    patterns yields a topic.
    """
    for pattern in TUTORIAL_TOPIC_PATTERNS:
        match = pattern.search(message)
        if match and match.group(1) and match.group(1).strip():
            return match.group(1).strip()

    if has_tutorial_keyword(message):
        components = detect_components(message)
        if components:
            return f"{components[0]} in {product}"
    return None


def calculate_confidence(
    has_action: bool, has_components: bool, keyword_count: int, action_confidence: float
) -> float:
    confidence = 0.0
    if has_action:
        confidence += 0.3 * action_confidence
    if has_components:
        confidence += 0.3
    if keyword_count > 5:
        confidence += 0.2
    if keyword_count > 10:
        confidence += 0.2
    return max(0.0, min(confidence, 1.0))


class IntentExtractor:
    """Keyword classifier for one conversational turn."""

    def __init__(self, product: str = "Figma"):
        self.product = product

    def classify(self, user_message: str, backend_text: str = "") -> ParsedIntent:
        """
        Classify a turn.

        Args:
            user_message: What the user typed
            backend_text: The accepted response text

        Returns:
            ParsedIntent (fresh per call)
        """
        lower_message = (user_message or "").lower()
        combined = f"{lower_message} {(backend_text or '').lower()}"

        action, action_confidence = detect_action(combined)
        components = detect_components(combined)
        keywords = extract_keywords(combined)

        tutorial_requests: List[str] = []
        if has_tutorial_keyword(lower_message):
            topic = extract_tutorial_topic(user_message, self.product)
            if topic:
                tutorial_requests.append(topic)

        is_question = bool(QUESTION_PATTERN.search(user_message or ""))
        needs_guidance = is_question or any(
            marker in lower_message for marker in GUIDANCE_MARKERS
        )

        confidence = calculate_confidence(
            action is not None, bool(components), len(keywords), action_confidence
        )

        intent = ParsedIntent(
            action=action,
            component_types=components,
            keywords=keywords,
            tutorial_requests=tutorial_requests,
            is_question=is_question,
            needs_guidance=needs_guidance,
            confidence=confidence,
        )

        record_intent(action, confidence)
        logger.debug(
            "intent_classified",
            action=action,
            component_types=components,
            tutorial_requests=tutorial_requests,
            is_question=is_question,
            needs_guidance=needs_guidance,
            confidence=round(confidence, 3),
        )
        return intent

    def enhance_response(self, response: FinalResponse, intent: ParsedIntent) -> FinalResponse:
        """
        Merge the detected intent into the response metadata.

        Adds default component and tutorial suggestions when the backend
        supplied none.
        """
        update = {
            "detected_action": intent.action,
            "detected_components": list(intent.component_types),
            "is_question": intent.is_question,
            "needs_guidance": intent.needs_guidance,
            "confidence": intent.confidence,
        }
        if intent.component_types and not response.metadata.components:
            update["components"] = [
                {"type": component, "description": f"Create a {component} component"}
                for component in intent.component_types
            ]
        if intent.tutorial_requests and not response.metadata.tutorials:
            update["tutorials"] = [
                {"title": f"Learn about {request}", "query": request}
                for request in intent.tutorial_requests
            ]

        metadata = ResponseMetadata.model_validate({**response.metadata.model_dump(), **update})
        return response.model_copy(update={"metadata": metadata})


_intent_extractor: Optional[IntentExtractor] = None


def get_intent_extractor() -> IntentExtractor:
    """Global singleton accessor for the intent extractor."""
    global _intent_extractor
    if _intent_extractor is None:
        _intent_extractor = IntentExtractor(product=get_settings().product_name)
    return _intent_extractor
