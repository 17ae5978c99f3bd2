"""Sentry error reporting.

Enabled only when SENTRY_DSN is set. Events are scrubbed of provider keys
and credential headers before they leave the process.
"""

import logging

from promptgate.core.config import settings
from promptgate.core.logging import mask_secrets

logger = logging.getLogger(__name__)

_SENSITIVE_HEADERS = {"authorization", "x-api-key", "cookie"}


def scrub_event(event: dict, hint: dict | None = None) -> dict:
    """``before_send`` hook: drop credential headers and mask keys in messages."""
    headers = event.get("request", {}).get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in _SENSITIVE_HEADERS:
                headers[name] = "[Filtered]"

    logentry = event.get("logentry")
    if isinstance(logentry, dict) and isinstance(logentry.get("message"), str):
        logentry["message"] = mask_secrets(logentry["message"])

    for exc in event.get("exception", {}).get("values", []):
        if isinstance(exc.get("value"), str):
            exc["value"] = mask_secrets(exc["value"])
    return event


def init_sentry() -> bool:
    """Initialize the SDK. Returns False when no DSN is configured."""
    if not settings.sentry_dsn:
        logger.debug("Sentry disabled (no DSN)")
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        traces_sample_rate=0.1 if settings.app_env == "production" else 1.0,
        send_default_pii=False,
        before_send=scrub_event,
        integrations=[FastApiIntegration(transaction_style="endpoint")],
    )
    logger.info("Sentry initialized (env=%s)", settings.app_env)
    return True
