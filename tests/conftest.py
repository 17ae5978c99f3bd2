import asyncio
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from promptgate.core.config import settings

# Override settings for tests
TEST_SECRET = "test-encryption-secret-that-is-at-least-32-chars"
settings.api_key_encryption_secret = TEST_SECRET
settings.app_env = "development"
settings.use_workspace_limit = True

from promptgate.gateway.cache import ResponseCache  # noqa: E402
from promptgate.gateway.credentials import InMemoryCredentialStore, WorkspaceCredential  # noqa: E402
from promptgate.gateway.gateway import PromptGateway  # noqa: E402
from promptgate.gateway.rate_limiter import RateLimiter  # noqa: E402
from promptgate.gateway.timeout import TimeoutGuard  # noqa: E402
from promptgate.gateway.types import (  # noqa: E402
    ChatMessage,
    Choice,
    LLMRequest,
    LLMResponse,
    ProviderName,
    RateLimitConfig,
    Usage,
)
from promptgate.gateway.vault import CredentialVault  # noqa: E402
from promptgate.main import create_app  # noqa: E402

# Start of a minute, so window arithmetic in tests is exact
T0 = 1_700_000_040.0

LIVE_API_KEY = "sk-live-test-key-123"


class FakeClock:
    """Manually advanced clock for time-window tests."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_request(content: str = "Hello", **kwargs) -> LLMRequest:
    defaults = {"model": "gpt-4o-mini", "temperature": 0.7, "max_tokens": 500}
    defaults.update(kwargs)
    return LLMRequest(messages=[ChatMessage(role="user", content=content)], **defaults)


def make_response(text: str = "What to do: fix the bug", with_usage: bool = True) -> LLMResponse:
    return LLMResponse(
        id="chatcmpl-1",
        model="gpt-4o-mini",
        created=1_700_000_000,
        choices=[Choice(content=text)],
        usage=Usage(prompt_tokens=10, completion_tokens=20, total_tokens=30) if with_usage else None,
    )


class FakeAdapter:
    def __init__(self, provider: "FakeProvider", api_key: str):
        self.provider = provider
        self.api_key = api_key

    async def complete(self, request: LLMRequest, timeout: float = 60.0) -> LLMResponse:
        self.provider.calls.append((self.api_key, request))
        if self.provider.delay:
            await asyncio.sleep(self.provider.delay)
        return make_response(self.provider.text, with_usage=self.provider.with_usage)


class FakeProvider:
    """Adapter factory standing in for the real provider adapters."""

    def __init__(self, text: str = "What to do: fix the bug", with_usage: bool = True, delay: float = 0.0):
        self.text = text
        self.with_usage = with_usage
        self.delay = delay
        self.calls: list[tuple[str, LLMRequest]] = []

    def __call__(self, provider: ProviderName, api_key: str, api_url: str | None = None) -> FakeAdapter:
        return FakeAdapter(self, api_key)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_SECRET)


@pytest.fixture
def credential_store(vault: CredentialVault) -> InMemoryCredentialStore:
    return InMemoryCredentialStore(
        [
            WorkspaceCredential(
                workspace_id="ws-1",
                provider=ProviderName.OPENAI,
                stored_api_key=vault.encrypt(LIVE_API_KEY),
                agents_content="Use pytest for tests.",
            ),
        ]
    )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def gateway(vault, credential_store, fake_provider, clock) -> PromptGateway:
    return PromptGateway(
        vault=vault,
        credential_store=credential_store,
        rate_limiter=RateLimiter(RateLimitConfig(minute_limit=10, hour_limit=100, day_limit=1000), clock=clock),
        cache=ResponseCache(max_size=100, ttl=900),
        timeout_guard=TimeoutGuard(default_timeout_ms=2_000),
        adapter_factory=fake_provider,
        request_timeout_ms=2_000,
        provider_timeout_ms=1_000,
    )


@pytest.fixture
async def client(gateway: PromptGateway) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(gateway)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
