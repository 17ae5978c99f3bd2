"""Rendering of gateway outcomes as HTTP responses."""

import math
from datetime import datetime, timezone

from fastapi.responses import JSONResponse

from promptgate.core.exceptions import GatewayError, RateLimitExceededError
from promptgate.gateway.types import AdmissionResult, RateWindow


def rate_limit_headers(admission: AdmissionResult | None) -> dict[str, str]:
    """``X-RateLimit-*`` headers describing the minute window."""
    if admission is None:
        return {}
    return {
        "X-RateLimit-Limit": str(admission.limits.minute_limit),
        "X-RateLimit-Remaining": str(admission.remaining[RateWindow.MINUTE]),
        "X-RateLimit-Reset": str(math.floor(admission.reset_at[RateWindow.MINUTE])),
    }


def error_response(exc: GatewayError) -> JSONResponse:
    content = exc.to_dict()
    content["timestamp"] = datetime.now(timezone.utc).isoformat()
    return JSONResponse(status_code=exc.status_code, content=content)


def rate_limited_response(exc: RateLimitExceededError) -> JSONResponse:
    admission = exc.admission
    exceeded = admission.exceeded_windows()
    window = RateWindow(exceeded[0]) if exceeded else RateWindow.MINUTE

    content = exc.to_dict()
    content["retryAfter"] = exc.retry_after
    content["timestamp"] = datetime.now(timezone.utc).isoformat()

    headers = rate_limit_headers(admission)
    headers["X-RateLimit-Reset"] = str(math.floor(admission.reset_at[window]))
    headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)
