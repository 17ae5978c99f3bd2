"""Provider adapters: protocol-level calls to each LLM provider.

Each adapter translates an LLMRequest into the provider's HTTP protocol,
sends it with httpx and returns a normalized LLMResponse. Errors are raised
as ProviderError with a message that never includes the API key.

Provider-specific behaviors:
  - OpenAI: Chat Completions, usage reported as prompt/completion tokens
  - Anthropic: Messages API, system prompt passed separately,
    usage reported as input/output tokens
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

import httpx

from promptgate.core.exceptions import ProviderError
from promptgate.gateway.types import Choice, LLMRequest, LLMResponse, ProviderName, Usage

logger = logging.getLogger(__name__)


def _raise_for_status(provider: ProviderName, resp: httpx.Response) -> None:
    if resp.status_code < 400:
        return
    if resp.status_code == 401:
        raise ProviderError(
            "Invalid API key. Please check your API key in workspace settings.",
            upstream_status=401,
            status_code=401,
            code="INVALID_API_KEY",
        )
    if resp.status_code == 429:
        raise ProviderError(
            "API rate limit exceeded. Please try again later.",
            upstream_status=429,
            status_code=429,
            code="PROVIDER_RATE_LIMITED",
        )
    raise ProviderError(
        f"{provider.value} API error: HTTP {resp.status_code}",
        upstream_status=resp.status_code,
    )


class BaseProviderAdapter(ABC):
    """Base class for all provider adapters."""

    provider: ProviderName
    api_url: str

    def __init__(self, api_key: str, api_url: str | None = None):
        self.api_key = api_key
        if api_url:
            self.api_url = api_url

    def __repr__(self) -> str:
        return f"{type(self).__name__}(api_url={self.api_url!r})"

    @abstractmethod
    def _build_payload(self, request: LLMRequest) -> dict: ...

    @abstractmethod
    def _headers(self) -> dict[str, str]: ...

    @abstractmethod
    def _parse(self, data: dict, request: LLMRequest) -> LLMResponse: ...

    async def complete(self, request: LLMRequest, timeout: float = 60.0) -> LLMResponse:
        """Send a non-streaming completion request."""
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.post(self.api_url, json=self._build_payload(request), headers=self._headers())
        except httpx.TimeoutException:
            raise ProviderError("Request timed out. Please try again.", code="PROVIDER_TIMEOUT", status_code=504) from None
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.provider.value} connection error: {type(e).__name__}") from None

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug("%s responded %d in %dms", self.provider.value, resp.status_code, elapsed_ms)

        _raise_for_status(self.provider, resp)
        try:
            return self._parse(resp.json(), request)
        except (ValueError, KeyError, IndexError, TypeError):
            raise ProviderError(f"{self.provider.value} returned an unexpected response") from None


class OpenAIAdapter(BaseProviderAdapter):
    """OpenAI Chat Completions adapter."""

    provider = ProviderName.OPENAI
    api_url = "https://api.openai.com/v1/chat/completions"

    def _build_payload(self, request: LLMRequest) -> dict:
        return request.to_payload()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _parse(self, data: dict, request: LLMRequest) -> LLMResponse:
        response = LLMResponse(
            id=data.get("id", ""),
            model=data.get("model", request.model),
            created=data.get("created", int(time.time())),
            choices=[
                Choice(
                    content=choice["message"].get("content") or "",
                    role=choice["message"].get("role", "assistant"),
                    finish_reason=choice.get("finish_reason") or "stop",
                )
                for choice in data["choices"]
            ],
        )
        usage = data.get("usage")
        if usage:
            prompt_tokens = usage.get("prompt_tokens", 0)
            completion_tokens = usage.get("completion_tokens", 0)
            response.usage = Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=usage.get("total_tokens", prompt_tokens + completion_tokens),
            )
        return response


class AnthropicAdapter(BaseProviderAdapter):
    """Anthropic Messages API adapter."""

    provider = ProviderName.ANTHROPIC
    api_url = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"
    default_max_tokens = 1024

    def _build_payload(self, request: LLMRequest) -> dict:
        system = "\n\n".join(m.content for m in request.messages if m.role == "system")
        payload = {
            "model": request.model,
            "messages": [m.to_dict() for m in request.messages if m.role != "system"],
            "max_tokens": request.max_tokens or self.default_max_tokens,
        }
        if system:
            payload["system"] = system
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        return payload

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    def _parse(self, data: dict, request: LLMRequest) -> LLMResponse:
        text = "".join(block.get("text", "") for block in data["content"] if block.get("type") == "text")
        response = LLMResponse(
            id=data.get("id", ""),
            model=data.get("model", request.model),
            created=int(time.time()),
            choices=[Choice(content=text, role="assistant", finish_reason=data.get("stop_reason") or "stop")],
        )
        usage = data.get("usage")
        if usage:
            input_tokens = usage.get("input_tokens", 0)
            output_tokens = usage.get("output_tokens", 0)
            response.usage = Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )
        return response


ADAPTER_REGISTRY: dict[ProviderName, type[BaseProviderAdapter]] = {
    ProviderName.OPENAI: OpenAIAdapter,
    ProviderName.ANTHROPIC: AnthropicAdapter,
}


def get_adapter(provider: ProviderName | str, api_key: str, api_url: str | None = None) -> BaseProviderAdapter:
    """Create an adapter for the given provider."""
    try:
        provider = ProviderName(provider)
    except ValueError:
        raise ProviderError(f"Unsupported provider: {provider}", status_code=400, code="UNSUPPORTED_PROVIDER") from None
    return ADAPTER_REGISTRY[provider](api_key=api_key, api_url=api_url)
