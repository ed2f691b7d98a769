"""
Pydantic models for the orchestration pipeline.

Request side:   SkillLevel, QueryContext
Backend side:   BackendPayload (structured JSON a backend is asked to emit),
                CandidateResponse, ResponseMetadata
Orchestration:  AttemptRecord, ValidationVerdict, FinalResponse, CacheEntry
Intent:         ParsedIntent, TutorialRequest, GuidanceStep, EnrichedResponse
Collaborators:  ComponentSummary, TutorialSummary
"""
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class SkillLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class QueryContext(BaseModel):
    """
    Per-call context for one orchestration.

    Known session fields are typed; any other caller-supplied fields (e.g.
    the current selection on the canvas) are kept as extras and forwarded to
    the backend prompt. `enhanced_prompt` and `validation_hint` are set by
    the orchestrator between retries.
    """

    model_config = ConfigDict(extra="allow")

    # Fields that never influence backend output and are excluded from the
    # cache key and from the prompt.
    VOLATILE_FIELDS: ClassVar[FrozenSet[str]] = frozenset(
        {"session_id", "conversation_id", "user_id", "start_time", "timestamp"}
    )
    RETRY_FIELDS: ClassVar[FrozenSet[str]] = frozenset(
        {"enhanced_prompt", "validation_hint"}
    )

    session_id: Optional[str] = None
    conversation_id: Optional[str] = None
    user_id: Optional[str] = None
    start_time: Optional[float] = None

    enhanced_prompt: bool = False
    validation_hint: Optional[str] = None

    def stable_fields(self) -> Dict[str, Any]:
        """Context fields that are relevant to the generated output."""
        return self.model_dump(
            exclude=set(self.VOLATILE_FIELDS | self.RETRY_FIELDS),
            exclude_none=True,
            mode="json",
        )


class AttemptRecord(BaseModel):
    """One call to one backend during one orchestration."""

    backend: str
    success: bool
    error: Optional[str] = None
    validation_error: Optional[str] = None


class ResponseMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: Optional[str] = None
    component_type: Optional[str] = None
    teacher_note: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)
    tutorials: List[Dict[str, Any]] = Field(default_factory=list)
    components: List[Dict[str, Any]] = Field(default_factory=list)
    guidance: List[Dict[str, Any]] = Field(default_factory=list)
    model: Optional[str] = None
    is_free: Optional[bool] = None
    attempts: List[AttemptRecord] = Field(default_factory=list)
    error: Optional[str] = None


class CandidateResponse(BaseModel):
    """Output of one backend call, before validation."""

    text: str
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)
    provider: str
    tokens_used: int = 0
    cost: float = 0.0
    # Set when the backend emitted structured output that failed to parse.
    parse_error: Optional[str] = None


class FinalResponse(CandidateResponse):
    """The single response returned by an orchestration call."""

    from_cache: bool = False

    @classmethod
    def from_candidate(
        cls, candidate: CandidateResponse, attempts: List[AttemptRecord]
    ) -> "FinalResponse":
        metadata = candidate.metadata.model_copy(update={"attempts": list(attempts)})
        return cls(
            text=candidate.text,
            metadata=metadata,
            provider=candidate.provider,
            tokens_used=candidate.tokens_used,
            cost=candidate.cost,
        )

    @property
    def is_error(self) -> bool:
        return self.provider == "error"


class ValidationErrorCode(str, Enum):
    TOO_SHORT = "too_short"
    CONTAINS_ERROR_LANGUAGE = "contains_error_language"
    MISSING_COMPONENT_METADATA = "missing_component_metadata"
    MISSING_TUTORIALS = "missing_tutorials"
    PARSE_ERROR = "parse_error"


class ValidationVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    error: Optional[ValidationErrorCode] = None
    hint: Optional[str] = None


class CacheEntry(BaseModel):
    """Envelope stored in the cache store for one accepted response."""

    key: str
    response: FinalResponse
    provider: str
    created_at: float
    expires_at: float
    hit_count: int = 0
    last_accessed_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class BackendPayload(BaseModel):
    """
    Structured JSON a backend is instructed to return.

    Example:
    {
      "message": "Here's a primary button...",
      "action": "component_created",
      "componentType": "button",
      "teacherNote": "Keep button labels to one or two words",
      "suggestions": ["Add an icon"],
      "tutorials": [{"title": "Buttons in Figma", "query": "figma button tutorial"}],
      "guidance": [{"step": 1, "instruction": "Select a frame"}]
    }
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message: Optional[str] = None
    action: Optional[str] = None
    component_type: Optional[str] = Field(None, alias="componentType")
    teacher_note: Optional[str] = Field(None, alias="teacherNote")
    suggestions: List[str] = Field(default_factory=list)
    tutorials: List[Dict[str, Any]] = Field(default_factory=list)
    components: List[Dict[str, Any]] = Field(default_factory=list)
    guidance: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("suggestions", mode="before")
    @classmethod
    def coerce_suggestions(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, list):
            return [item if isinstance(item, str) else str(item) for item in value]
        return value

    @field_validator("tutorials", mode="before")
    @classmethod
    def coerce_tutorials(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [
                {"title": item, "query": item} if isinstance(item, str) else item
                for item in value
            ]
        return value

    @field_validator("components", "guidance", mode="before")
    @classmethod
    def coerce_lists(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_metadata(self) -> ResponseMetadata:
        return ResponseMetadata(
            action=self.action,
            component_type=self.component_type,
            teacher_note=self.teacher_note,
            suggestions=self.suggestions,
            tutorials=self.tutorials,
            components=self.components,
            guidance=self.guidance,
        )


class PayloadParseError(Exception):
    """Backend text looked like structured output but did not match BackendPayload."""

    def __init__(self, message: str, raw_output: Optional[str] = None):
        super().__init__(message)
        self.raw_output = raw_output


def validate_backend_payload(payload: Any) -> BackendPayload:
    """
    Validate a decoded JSON payload.

    Raises:
        PayloadParseError if validation fails.
    """
    if not isinstance(payload, dict):
        raise PayloadParseError(f"Expected a JSON object, got {type(payload).__name__}")
    try:
        return BackendPayload.model_validate(payload)
    except ValidationError as exc:
        raise PayloadParseError(f"Invalid backend payload: {exc}") from exc


class ParsedIntent(BaseModel):
    action: Optional[str] = None
    component_types: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    tutorial_requests: List[str] = Field(default_factory=list)
    is_question: bool = False
    needs_guidance: bool = False
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class TutorialRequest(BaseModel):
    """Pending video search; executed by the tutorial search collaborator."""

    search_query: str
    type: str = "youtube"


class GuidanceStep(BaseModel):
    step: int
    action: str
    description: str


class ComponentSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    type: str
    category: Optional[str] = None
    description: Optional[str] = None
    usage_count: int = 0


class TutorialSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    channel_title: Optional[str] = None
    url: str
    thumbnail_url: Optional[str] = None
    duration_seconds: Optional[int] = None
    skill_level: Optional[str] = None


class EnrichedResponse(FinalResponse):
    intent: ParsedIntent
    suggested_components: List[ComponentSummary] = Field(default_factory=list)
    related_tutorials: List[TutorialRequest] = Field(default_factory=list)
    actionable_steps: List[GuidanceStep] = Field(default_factory=list)
