"""
Response validation.

`validate` is a pure function of (candidate, original message). Checks run
in order and stop at the first failure; the verdict's hint is fed back into
the next retry's prompt.
"""
import re

from figbud.services.ai.schema import (
    CandidateResponse,
    ValidationErrorCode,
    ValidationVerdict,
)

MIN_RESPONSE_LENGTH = 10

APOLOGY_MARKER = "sorry"
ERROR_MARKER = "error"

CREATION_VERBS = frozenset({"create", "make", "build", "show", "add", "design"})
COMPONENT_NOUNS = ("button", "card", "input", "toggle", "modal", "form", "navbar")
TUTORIAL_MARKERS = ("tutorial", "how to")

_WORD_SPLIT = re.compile(r"\s+")

VALID = ValidationVerdict(is_valid=True)


def _reject(error: ValidationErrorCode, hint: str) -> ValidationVerdict:
    return ValidationVerdict(is_valid=False, error=error, hint=hint)


def is_component_request(message: str) -> bool:
    """Creation verb as a whole word plus a component noun anywhere."""
    lower = message.lower()
    words = set(_WORD_SPLIT.split(lower))
    return bool(words & CREATION_VERBS) and any(noun in lower for noun in COMPONENT_NOUNS)


def is_tutorial_request(message: str) -> bool:
    lower = message.lower()
    return any(marker in lower for marker in TUTORIAL_MARKERS)


def validate(candidate: CandidateResponse, original_message: str) -> ValidationVerdict:
    text = (candidate.text or "").strip()
    if len(text) < MIN_RESPONSE_LENGTH:
        return _reject(
            ValidationErrorCode.TOO_SHORT,
            "Provide a detailed, helpful response",
        )

    lower_text = text.lower()
    if APOLOGY_MARKER in lower_text and ERROR_MARKER in lower_text:
        return _reject(
            ValidationErrorCode.CONTAINS_ERROR_LANGUAGE,
            "Provide a helpful response without errors",
        )

    metadata = candidate.metadata
    if is_component_request(original_message):
        if not metadata.component_type or not metadata.action:
            return _reject(
                ValidationErrorCode.MISSING_COMPONENT_METADATA,
                "Include componentType and action for component creation requests",
            )

    if is_tutorial_request(original_message) and not metadata.tutorials:
        return _reject(
            ValidationErrorCode.MISSING_TUTORIALS,
            "Include tutorial suggestions when user asks for tutorials",
        )

    if candidate.parse_error:
        return _reject(
            ValidationErrorCode.PARSE_ERROR,
            "Respond with a single valid JSON object using the documented keys",
        )

    return VALID
