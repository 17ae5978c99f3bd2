from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Operator secret used to derive the credential cipher key (>= 32 chars)
    api_key_encryption_secret: str = ""

    # Per-tenant rate limits (requests per window)
    rate_limit_minute: int = 20
    rate_limit_hour: int = 100
    rate_limit_day: int = 1000
    use_workspace_limit: bool = True  # False: limit per user id instead of workspace

    # Per-IP throttling of operator endpoints
    admin_rate_limit_enabled: bool = True

    # Response cache
    cache_max_size: int = 100
    cache_ttl_seconds: float = 15 * 60

    # Timeouts
    request_timeout_ms: int = 30_000  # whole generate-prompt request
    provider_timeout_ms: int = 60_000  # single outbound provider call

    # Providers
    openai_api_url: str = "https://api.openai.com/v1/chat/completions"
    anthropic_api_url: str = "https://api.anthropic.com/v1/messages"
    default_model: str = "gpt-3.5-turbo"
    default_provider: str = "openai"

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated, e.g. "https://app.example.com,https://admin.example.com"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    from promptgate.core.exceptions import ConfigurationError
    from promptgate.gateway.vault import get_encryption_secret

    errors: list[str] = []

    try:
        get_encryption_secret(settings)
    except ConfigurationError as e:
        errors.append(str(e))

    for name in ("rate_limit_minute", "rate_limit_hour", "rate_limit_day", "cache_max_size"):
        if getattr(settings, name) < 1:
            errors.append(f"{name.upper()} must be a positive integer")

    if settings.cache_ttl_seconds <= 0:
        errors.append("CACHE_TTL_SECONDS must be positive")

    if settings.request_timeout_ms <= 0 or settings.provider_timeout_ms <= 0:
        errors.append("REQUEST_TIMEOUT_MS and PROVIDER_TIMEOUT_MS must be positive")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
