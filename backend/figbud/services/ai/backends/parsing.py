"""
Turn raw backend text into (text, metadata, parse_error).

- JSON object matching BackendPayload → structured metadata, text = message
- Text that looks like JSON but fails to decode/validate → parse_error set,
  text kept verbatim so the validator can reject it and the orchestrator
  can retry with a hint
- Anything else → plain prose, accepted as the message with empty metadata
"""
import json
import re
from dataclasses import dataclass
from typing import Optional

from figbud.services.ai.schema import (
    PayloadParseError,
    ResponseMetadata,
    validate_backend_payload,
)

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


@dataclass
class ParsedOutput:
    text: str
    metadata: ResponseMetadata
    parse_error: Optional[str] = None


def _strip_fences(content: str) -> str:
    match = _FENCE_PATTERN.match(content)
    return match.group(1) if match else content


def parse_backend_text(content: str) -> ParsedOutput:
    stripped = _strip_fences((content or "").strip())

    if not stripped.startswith("{"):
        return ParsedOutput(text=stripped, metadata=ResponseMetadata())

    try:
        payload = validate_backend_payload(json.loads(stripped))
    except json.JSONDecodeError as exc:
        return ParsedOutput(
            text=stripped,
            metadata=ResponseMetadata(),
            parse_error=f"invalid JSON: {exc.msg} at position {exc.pos}",
        )
    except PayloadParseError as exc:
        return ParsedOutput(text=stripped, metadata=ResponseMetadata(), parse_error=str(exc))

    return ParsedOutput(text=(payload.message or "").strip(), metadata=payload.to_metadata())
