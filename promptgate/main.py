import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from promptgate.api.responses import error_response, rate_limited_response
from promptgate.api.v1.router import api_v1_router
from promptgate.core.config import settings, validate_settings_for_production
from promptgate.core.exceptions import GatewayError, RateLimitExceededError
from promptgate.core.logging import setup_logging
from promptgate.core.metrics import PrometheusMiddleware, metrics_response
from promptgate.core.rate_limit import limiter
from promptgate.core.sentry import init_sentry
from promptgate.gateway.credentials import InMemoryCredentialStore
from promptgate.gateway.gateway import PromptGateway

logger = logging.getLogger(__name__)


def create_app(gateway: PromptGateway | None = None) -> FastAPI:
    """Build the application. Without an explicit gateway one is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if getattr(app.state, "gateway", None) is None:
            validate_settings_for_production()
            app.state.gateway = PromptGateway.from_settings(credential_store=InMemoryCredentialStore())
        logger.info("Prompt gateway started")

        yield

        logger.info("Prompt gateway shut down (in-flight: %d)", app.state.gateway.timeout_guard.active_count)

    app = FastAPI(
        title="Prompt Gateway",
        description="Rate-limited, cached LLM prompt generation with encrypted tenant credentials",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.app_debug else None,
        redoc_url="/api/redoc" if settings.app_debug else None,
    )
    app.state.gateway = gateway

    @app.exception_handler(RateLimitExceededError)
    async def _tenant_rate_limit_handler(request: Request, exc: RateLimitExceededError):
        return rate_limited_response(exc)

    @app.exception_handler(GatewayError)
    async def _gateway_error_handler(request: Request, exc: GatewayError):
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        return error_response(exc)

    # Log unhandled exceptions; never leak details to the client
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
        logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
        return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "INTERNAL_ERROR"})

    # IP rate limiter for operator endpoints
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(PrometheusMiddleware)

    # CORS: parse allowed_origins from settings (comma-separated)
    _origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_v1_router)

    @app.get("/api/v1/health")
    async def health():
        return {"status": "ok"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return metrics_response()

    return app


def build_default_app() -> FastAPI:
    """Entry point for ``uvicorn --factory promptgate.main:build_default_app``."""
    setup_logging()
    init_sentry()
    return create_app()
