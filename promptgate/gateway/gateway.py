"""Prompt Gateway: orchestrator composing the protective components.

Per request:
  1. Timeout Guard wraps the whole operation
  2. Request is validated and sanitized
  3. Rate Limiter charges the tenant (deny → RateLimitExceededError)
  4. Response Cache is consulted (hit → return, no quota refund)
  5. On miss, the tenant's stored API key is decrypted by the Credential Vault
  6. The provider is called under an inner timeout
  7. A cacheable success is written to the Response Cache
  8. Hits and successful calls are handed to the UsageRecorder

Usage:
    gateway = PromptGateway.from_settings(credential_store=store)
    result = await gateway.generate_prompt("ws-1", title="...", description="...")
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from promptgate.core.config import Settings
from promptgate.core.exceptions import (
    CredentialNotFoundError,
    GatewayError,
    ProviderError,
    RateLimitExceededError,
    ValidationError,
)
from promptgate.core.metrics import CACHE_LOOKUPS, GATEWAY_REQUESTS, IN_FLIGHT, PROVIDER_LATENCY, RATE_LIMIT_DENIALS
from promptgate.gateway.cache import ResponseCache
from promptgate.gateway.credentials import CredentialStore
from promptgate.gateway.provider_adapters import BaseProviderAdapter, get_adapter
from promptgate.gateway.rate_limiter import RateLimiter
from promptgate.gateway.timeout import TimeoutGuard, with_external_timeout
from promptgate.gateway.types import (
    AdmissionResult,
    ChatMessage,
    LLMRequest,
    LLMResponse,
    ProviderName,
    ProxyRequest,
    ProxyResponse,
    ProxyUsage,
    RateLimitConfig,
    calculate_cost,
)
from promptgate.gateway.usage import InMemoryUsageRecorder, UsageRecord, UsageRecorder
from promptgate.gateway.validator import validate_and_sanitize_request
from promptgate.gateway.vault import CredentialVault

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """Convert this to a prompt for an LLM-based software development agent.

Format the response as follows:
- What to do: [one line summary]
- How: [2-5 key technical points]

Keep the prompt concise and actionable."""

MAX_FIELD_LENGTH = 10_000

AdapterFactory = Callable[..., BaseProviderAdapter]


@dataclass
class PromptResult:
    prompt: str
    cached: bool
    request_id: str
    rate_limit: AdmissionResult | None = None


def build_user_prompt(title: str, description: str, agents_content: str = "") -> str:
    prompt = (
        "Convert this to a prompt for an LLM-based software development agent.\n\n"
        f"Issue Title: {title}\n"
        f"Issue Description: {description}\n"
    )
    if agents_content:
        prompt += f"\nAdditional context from Agents.md:\n{agents_content}"
    return prompt


def _proxy_usage(response: LLMResponse, model: str, cached: bool) -> ProxyUsage:
    usage = response.usage
    input_tokens = usage.prompt_tokens if usage else 0
    output_tokens = usage.completion_tokens if usage else 0
    return ProxyUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=usage.total_tokens if usage else 0,
        estimated_cost=0.0 if cached else calculate_cost(model, input_tokens, output_tokens),
    )


class PromptGateway:
    """Owns the per-process gateway state: limiter counters, cache and in-flight tracking.

    Construct once at startup and pass by reference to request handlers.
    """

    def __init__(
        self,
        vault: CredentialVault,
        credential_store: CredentialStore,
        rate_limiter: RateLimiter | None = None,
        cache: ResponseCache | None = None,
        timeout_guard: TimeoutGuard | None = None,
        adapter_factory: AdapterFactory = get_adapter,
        request_timeout_ms: int = 30_000,
        provider_timeout_ms: int = 60_000,
        provider_urls: dict[ProviderName, str] | None = None,
        default_model: str = "gpt-3.5-turbo",
        default_provider: ProviderName = ProviderName.OPENAI,
        usage_recorder: UsageRecorder | None = None,
    ):
        self.vault = vault
        self.credential_store = credential_store
        self.rate_limiter = rate_limiter or RateLimiter()
        self.cache = cache or ResponseCache()
        self.timeout_guard = timeout_guard or TimeoutGuard(default_timeout_ms=request_timeout_ms)
        self.request_timeout_ms = request_timeout_ms
        self.provider_timeout_ms = provider_timeout_ms
        self.default_model = default_model
        self.default_provider = default_provider
        self._adapter_factory = adapter_factory
        self._provider_urls = provider_urls or {}
        self.usage_recorder = usage_recorder or InMemoryUsageRecorder()

    @classmethod
    def from_settings(cls, credential_store: CredentialStore, config: Settings | None = None) -> PromptGateway:
        """Build a gateway from application settings.

        Raises:
            ConfigurationError: the operator secret is missing or too short.
        """
        if config is None:
            from promptgate.core.config import settings as config

        return cls(
            vault=CredentialVault.from_settings(config),
            credential_store=credential_store,
            rate_limiter=RateLimiter(
                RateLimitConfig(
                    minute_limit=config.rate_limit_minute,
                    hour_limit=config.rate_limit_hour,
                    day_limit=config.rate_limit_day,
                )
            ),
            cache=ResponseCache(max_size=config.cache_max_size, ttl=config.cache_ttl_seconds),
            timeout_guard=TimeoutGuard(default_timeout_ms=config.request_timeout_ms),
            request_timeout_ms=config.request_timeout_ms,
            provider_timeout_ms=config.provider_timeout_ms,
            provider_urls={
                ProviderName.OPENAI: config.openai_api_url,
                ProviderName.ANTHROPIC: config.anthropic_api_url,
            },
            default_model=config.default_model,
            default_provider=ProviderName(config.default_provider),
        )

    # ------------------------------------------------------------------
    # Request pipeline
    # ------------------------------------------------------------------

    async def process_request(
        self,
        proxy_request: ProxyRequest,
        limits: RateLimitConfig | None = None,
        rate_limit_key: str | None = None,
        timeout_ms: int | None = None,
    ) -> ProxyResponse:
        """Run one request through the full gateway pipeline under a deadline."""
        provider = getattr(proxy_request.provider, "value", proxy_request.provider)
        guarded = self.timeout_guard.with_timeout(
            self._process,
            self.request_timeout_ms if timeout_ms is None else timeout_ms,
            operation_name="prompt generation",
        )

        IN_FLIGHT.inc()
        try:
            response = await guarded(proxy_request, limits, rate_limit_key)
        except GatewayError as e:
            GATEWAY_REQUESTS.labels(provider=provider, outcome=e.code.lower()).inc()
            raise
        finally:
            IN_FLIGHT.dec()

        GATEWAY_REQUESTS.labels(provider=provider, outcome="cached" if response.cached else "success").inc()
        return response

    async def _process(
        self,
        proxy_request: ProxyRequest,
        limits: RateLimitConfig | None,
        rate_limit_key: str | None,
    ) -> ProxyResponse:
        try:
            provider = ProviderName(proxy_request.provider)
        except ValueError:
            raise ValidationError(f"Unsupported provider: {proxy_request.provider}") from None

        workspace_id = proxy_request.workspace_id
        if not workspace_id:
            raise ValidationError("Workspace ID is required")

        request = validate_and_sanitize_request(proxy_request.request)
        log_extra = {"request_id": request.request_id, "workspace_id": workspace_id, "provider": provider.value}
        logger.info("Processing %s request for model %s", proxy_request.endpoint, request.model, extra=log_extra)

        # Charge before dispatching so concurrent and cancelled calls still count
        admission = self.rate_limiter.check_and_increment(rate_limit_key or workspace_id, limits)
        if not admission.allowed:
            RATE_LIMIT_DENIALS.inc()
            raise RateLimitExceededError(admission, retry_after=admission.retry_after(self.rate_limiter.now()))

        if not request.stream:
            cached = self.cache.get(provider, request, workspace_id)
            CACHE_LOOKUPS.labels(result="hit" if cached is not None else "miss").inc()
            if cached is not None:
                logger.info("Cache hit", extra=log_extra)
                result = ProxyResponse(
                    data=cached,
                    usage=_proxy_usage(cached, request.model, cached=True),
                    cached=True,
                    request_id=uuid.uuid4().hex,
                    rate_limit=admission,
                )
                await self._record_usage(proxy_request, provider, request.model, result)
                return result

        api_key = await self._resolve_api_key(workspace_id, provider)
        adapter = self._adapter_factory(provider, api_key, self._provider_urls.get(provider))

        start = time.monotonic()
        response = await with_external_timeout(
            adapter.complete(request, timeout=self.provider_timeout_ms / 1000),
            self.provider_timeout_ms,
        )
        elapsed = time.monotonic() - start
        PROVIDER_LATENCY.labels(provider=provider.value).observe(elapsed)

        self.cache.set(provider, request, workspace_id, response)

        logger.info("Provider call completed in %dms", int(elapsed * 1000), extra=log_extra)
        result = ProxyResponse(
            data=response,
            usage=_proxy_usage(response, request.model, cached=False),
            cached=False,
            request_id=uuid.uuid4().hex,
            rate_limit=admission,
            latency_ms=int(elapsed * 1000),
        )
        await self._record_usage(proxy_request, provider, request.model, result)
        return result

    async def _record_usage(
        self, proxy_request: ProxyRequest, provider: ProviderName, model: str, result: ProxyResponse
    ) -> None:
        """Hand one usage row to the recorder. A recorder failure never fails the request."""
        usage = UsageRecord(
            workspace_id=proxy_request.workspace_id,
            user_id=proxy_request.user_id,
            model=model,
            provider=provider.value,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
            total_tokens=result.usage.total_tokens,
            estimated_cost=result.usage.estimated_cost,
            endpoint=proxy_request.endpoint,
            request_id=result.request_id,
            response_time_ms=result.latency_ms,
            cache_hit=result.cached,
        )
        try:
            await self.usage_recorder.record(usage)
        except Exception:
            logger.warning("Failed to record usage", exc_info=True, extra={"request_id": result.request_id})

    async def _resolve_api_key(self, workspace_id: str, provider: ProviderName) -> str:
        """Decrypt the workspace's provider key. The plaintext lives only for this call."""
        credential = await self.credential_store.get_credential(workspace_id)
        if credential is None or not credential.stored_api_key:
            raise CredentialNotFoundError("No API key configured for this workspace")
        if credential.provider != provider:
            raise CredentialNotFoundError(
                f"This workspace is configured for {credential.provider.value}, not {provider.value}"
            )
        # scrypt is CPU-bound; keep it off the event loop
        return await asyncio.to_thread(self.vault.resolve_api_key, credential.stored_api_key)

    # ------------------------------------------------------------------
    # Prompt generation
    # ------------------------------------------------------------------

    async def generate_prompt(
        self,
        workspace_id: str,
        title: str,
        description: str,
        limits: RateLimitConfig | None = None,
        rate_limit_key: str | None = None,
        model: str | None = None,
        user_id: str = "",
    ) -> PromptResult:
        """Turn an issue into an agent-ready prompt via the workspace's provider."""
        if not title or not description or not workspace_id:
            raise ValidationError("Missing required fields: title, description, or workspaceId")
        if len(title) > MAX_FIELD_LENGTH or len(description) > MAX_FIELD_LENGTH:
            raise ValidationError(f"Input exceeds maximum length of {MAX_FIELD_LENGTH} characters")

        credential = await self.credential_store.get_credential(workspace_id)
        provider = credential.provider if credential else self.default_provider
        agents_content = credential.agents_content if credential else ""

        proxy_request = ProxyRequest(
            provider=provider,
            workspace_id=workspace_id,
            request=LLMRequest(
                model=model or self.default_model,
                messages=[
                    ChatMessage(role="system", content=SYSTEM_PROMPT),
                    ChatMessage(role="user", content=build_user_prompt(title, description, agents_content)),
                ],
                temperature=0.7,
                max_tokens=500,
            ),
            endpoint="/api/generate-prompt",
            user_id=user_id,
        )
        result = await self.process_request(proxy_request, limits=limits, rate_limit_key=rate_limit_key)

        prompt = result.data.text.strip()
        if not prompt:
            raise ProviderError("No prompt generated")
        return PromptResult(
            prompt=prompt,
            cached=result.cached,
            request_id=result.request_id,
            rate_limit=result.rate_limit,
        )

    def get_status(self) -> dict:
        """Snapshot of gateway state."""
        return {
            "cache": self.cache.get_stats(),
            "rate_limiter": {
                "tracked_keys": self.rate_limiter.tracked_keys(),
                "defaults": {
                    "minute": self.rate_limiter.defaults.minute_limit,
                    "hour": self.rate_limiter.defaults.hour_limit,
                    "day": self.rate_limiter.defaults.day_limit,
                },
            },
            "in_flight": self.timeout_guard.active_count,
            "request_timeout_ms": self.request_timeout_ms,
            "provider_timeout_ms": self.provider_timeout_ms,
        }
