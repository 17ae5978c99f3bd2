"""Request validation and prompt sanitization."""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from promptgate.core.exceptions import ValidationError
from promptgate.gateway.types import ChatMessage, LLMRequest


class _MessageSchema(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str = Field(..., min_length=1, max_length=100_000)


class _LLMRequestSchema(BaseModel):
    model: str = Field(..., min_length=1, max_length=100)
    messages: list[_MessageSchema] = Field(..., min_length=1, max_length=100)
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, gt=0, le=100_000)
    stream: bool | None = None


_DANGEROUS_PATTERNS = [
    re.compile(r"\{\{.*?\}\}"),  # template injection
    re.compile(r"<script.*?>.*?</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),  # inline event handlers
]
_WHITESPACE_RUN = re.compile(r"\s{3,}")


def sanitize_prompt_content(content: str) -> str:
    sanitized = content.replace("\x00", "")
    for pattern in _DANGEROUS_PATTERNS:
        sanitized = pattern.sub("", sanitized)
    sanitized = _WHITESPACE_RUN.sub("  ", sanitized)
    return sanitized.strip()


def _to_dict(request: LLMRequest | dict) -> dict:
    if isinstance(request, LLMRequest):
        return {
            "model": request.model,
            "messages": [m.to_dict() for m in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "stream": request.stream,
        }
    return request


def validate_and_sanitize_request(request: LLMRequest | dict) -> LLMRequest:
    """Validate the request shape and sanitize every message body.

    Raises:
        ValidationError: the request does not match the accepted shape.
    """
    try:
        parsed = _LLMRequestSchema.model_validate(_to_dict(request))
    except PydanticValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ValidationError("Invalid LLM request", details={"fields": fields}) from None

    result = LLMRequest(
        model=parsed.model,
        messages=[ChatMessage(role=m.role, content=sanitize_prompt_content(m.content)) for m in parsed.messages],
        temperature=parsed.temperature,
        max_tokens=parsed.max_tokens,
        stream=bool(parsed.stream),
    )
    if isinstance(request, LLMRequest):
        result.request_id = request.request_id
    return result
