"""Core types and DTOs for the prompt gateway."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProviderName(str, Enum):
    """Supported LLM providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class RateWindow(str, Enum):
    """Fixed rate-limit windows, with their length in seconds."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    @property
    def seconds(self) -> int:
        return _WINDOW_SECONDS[self]


_WINDOW_SECONDS = {
    RateWindow.MINUTE: 60,
    RateWindow.HOUR: 60 * 60,
    RateWindow.DAY: 24 * 60 * 60,
}


# ---------------------------------------------------------------------------
# LLM request / response
# ---------------------------------------------------------------------------


@dataclass
class ChatMessage:
    role: str  # "system" | "user" | "assistant"
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class LLMRequest:
    """A chat-completion request as accepted by the gateway."""

    model: str
    messages: list[ChatMessage] = field(default_factory=list)
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False

    # Not part of the cache fingerprint
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])

    def to_payload(self) -> dict:
        """Provider-facing payload (OpenAI chat completions shape)."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
            "stream": False,
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class Choice:
    content: str
    role: str = "assistant"
    finish_reason: str = "stop"

    def to_dict(self) -> dict:
        return {
            "message": {"role": self.role, "content": self.content},
            "finish_reason": self.finish_reason,
        }


@dataclass
class LLMResponse:
    """Provider response normalized to a single shape.

    ``usage`` is None when the provider did not report token accounting;
    such responses are never cached.
    """

    id: str = ""
    model: str = ""
    created: int = 0
    choices: list[Choice] = field(default_factory=list)
    usage: Usage | None = None

    @property
    def text(self) -> str:
        return self.choices[0].content if self.choices else ""

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "model": self.model,
            "created": self.created,
            "choices": [c.to_dict() for c in self.choices],
        }
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        return data


# ---------------------------------------------------------------------------
# Proxy request / response
# ---------------------------------------------------------------------------


@dataclass
class ProxyRequest:
    """One gateway invocation: which tenant, which provider, what to send."""

    provider: ProviderName
    workspace_id: str
    request: LLMRequest | dict
    endpoint: str = "/api/generate-prompt"
    user_id: str = ""


@dataclass
class ProxyUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0

    def to_dict(self) -> dict:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
            "estimatedCost": self.estimated_cost,
        }


@dataclass
class ProxyResponse:
    data: LLMResponse
    usage: ProxyUsage
    cached: bool
    request_id: str
    rate_limit: AdmissionResult | None = None
    latency_ms: int = 0


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-window request limits. ``None`` means "use the limiter default"."""

    minute_limit: int | None = None
    hour_limit: int | None = None
    day_limit: int | None = None

    def limit_for(self, window: RateWindow) -> int | None:
        return {
            RateWindow.MINUTE: self.minute_limit,
            RateWindow.HOUR: self.hour_limit,
            RateWindow.DAY: self.day_limit,
        }[window]

    def merged_over(self, defaults: RateLimitConfig) -> RateLimitConfig:
        """Fill unset fields from ``defaults``."""
        return RateLimitConfig(
            minute_limit=self.minute_limit if self.minute_limit is not None else defaults.minute_limit,
            hour_limit=self.hour_limit if self.hour_limit is not None else defaults.hour_limit,
            day_limit=self.day_limit if self.day_limit is not None else defaults.day_limit,
        )


DEFAULT_RATE_LIMITS = RateLimitConfig(minute_limit=20, hour_limit=100, day_limit=1000)


@dataclass(frozen=True)
class AdmissionResult:
    """The limiter's verdict for one key at one instant.

    ``reset_at`` values are epoch seconds (the end of the current window).
    """

    allowed: bool
    remaining: dict[RateWindow, int]
    reset_at: dict[RateWindow, float]
    limits: RateLimitConfig = DEFAULT_RATE_LIMITS

    def exceeded_windows(self) -> list[str]:
        return [w.value for w in RateWindow if self.remaining[w] == 0]

    def reset_for(self, window: RateWindow) -> float:
        return self.reset_at[window]

    def retry_after(self, now: float) -> int:
        """Seconds until the soonest exhausted window resets (at least 1)."""
        exhausted = [self.reset_at[w] for w in RateWindow if self.remaining[w] == 0]
        reset = min(exhausted) if exhausted else self.reset_at[RateWindow.MINUTE]
        return max(1, math.ceil(reset - now))

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "remaining": {w.value: n for w, n in self.remaining.items()},
            "resetAt": {w.value: ts for w, ts in self.reset_at.items()},
        }


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

# USD per 1M tokens
MODEL_COSTS: dict[str, dict[str, float]] = {
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "gpt-4": {"input": 30.00, "output": 60.00},
    "gpt-3.5-turbo": {"input": 0.50, "output": 1.50},
    "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00},
    "claude-3-5-haiku-20241022": {"input": 1.00, "output": 5.00},
    "claude-3-opus-20240229": {"input": 15.00, "output": 75.00},
    "claude-3-sonnet-20240229": {"input": 3.00, "output": 15.00},
    "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
}


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimated USD cost; unknown models are priced as gpt-4o-mini."""
    pricing = MODEL_COSTS.get(model, MODEL_COSTS["gpt-4o-mini"])
    return (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000
