"""Typed gateway errors.

Every error carries a machine-readable ``code`` and a human-readable
``suggestion`` so the API layer can render a structured body without ever
exposing a stack trace or secret material.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from promptgate.gateway.types import AdmissionResult


class GatewayError(Exception):
    """Base class for all errors surfaced by the gateway."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    suggestion: str = "Contact support if the issue persists"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        if suggestion is not None:
            self.suggestion = suggestion
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        details = {**self.details, "suggestion": self.suggestion}
        return {"error": self.message, "code": self.code, "details": details}


class ValidationError(GatewayError):
    status_code = 400
    code = "VALIDATION_ERROR"
    suggestion = "Check the request fields and try again"


class RateLimitExceededError(GatewayError):
    """One or more rate-limit windows are exhausted for the key."""

    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    suggestion = "Wait until the rate limit window resets before retrying"

    def __init__(
        self,
        admission: AdmissionResult,
        retry_after: int | None = None,
        message: str = "Too many requests. Please try again later.",
    ):
        if retry_after is None:
            retry_after = admission.retry_after(time.time())
        super().__init__(message, details={"exceeded": admission.exceeded_windows()})
        self.admission = admission
        self.retry_after = retry_after


class RequestTimeoutError(GatewayError):
    status_code = 408
    code = "REQUEST_TIMEOUT"
    suggestion = "Try reducing the complexity of your request or contact support if the issue persists"

    def __init__(self, timeout_ms: int, operation: str = "request"):
        super().__init__(
            f"Request timeout - the {operation} took too long to complete",
            details={"timeoutMs": timeout_ms},
        )
        self.timeout_ms = timeout_ms


class ExternalTimeoutError(GatewayError):
    """A single outbound call exceeded its deadline."""

    status_code = 504
    code = "UPSTREAM_TIMEOUT"
    suggestion = "The AI provider did not respond in time. Please try again."

    def __init__(self, timeout_ms: int, message: str = "External API request timeout"):
        super().__init__(message, details={"timeoutMs": timeout_ms})
        self.timeout_ms = timeout_ms


class DecryptionError(GatewayError):
    """Stored credential could not be decrypted (wrong secret, malformed or tampered blob)."""

    status_code = 500
    code = "CREDENTIAL_ERROR"
    suggestion = "Re-enter the API key in workspace settings"

    def __init__(self, message: str = "Failed to decrypt API key"):
        super().__init__(message)


class ConfigurationError(GatewayError):
    status_code = 500
    code = "CONFIGURATION_ERROR"
    suggestion = "Check the server configuration"


class CredentialNotFoundError(GatewayError):
    status_code = 400
    code = "CREDENTIAL_NOT_FOUND"
    suggestion = "Configure an API key in workspace settings"


class ProviderError(GatewayError):
    """The LLM provider returned an error or an unusable response."""

    status_code = 502
    code = "PROVIDER_ERROR"
    suggestion = "Check your API key and try again"

    def __init__(self, message: str, *, upstream_status: int = 0, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.upstream_status = upstream_status
