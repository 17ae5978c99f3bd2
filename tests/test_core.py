"""Tests for configuration validation, logging and error reporting helpers."""

import json
import logging

import pytest

from promptgate.core.config import settings, validate_settings_for_production
from promptgate.core.exceptions import GatewayError, RateLimitExceededError, RequestTimeoutError
from promptgate.core.logging import JSONFormatter, SecretMaskingFilter, mask_secrets
from promptgate.core.sentry import init_sentry, scrub_event
from promptgate.gateway.types import AdmissionResult, RateWindow


class TestConfigValidation:
    def test_valid_test_settings(self):
        validate_settings_for_production()

    def test_missing_secret(self, monkeypatch):
        monkeypatch.setattr(settings, "api_key_encryption_secret", "")
        with pytest.raises(SystemExit, match="API_KEY_ENCRYPTION_SECRET"):
            validate_settings_for_production()

    def test_non_positive_limit(self, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_minute", 0)
        with pytest.raises(SystemExit, match="RATE_LIMIT_MINUTE"):
            validate_settings_for_production()

    def test_production_rejects_wildcard_cors(self, monkeypatch):
        monkeypatch.setattr(settings, "app_env", "production")
        monkeypatch.setattr(settings, "app_debug", False)
        monkeypatch.setattr(settings, "allowed_origins", "*")
        with pytest.raises(SystemExit, match="ALLOWED_ORIGINS"):
            validate_settings_for_production()


class TestErrors:
    def test_to_dict_shape(self):
        err = GatewayError("boom", code="X", details={"a": 1})
        assert err.to_dict() == {"error": "boom", "code": "X", "details": {"a": 1, "suggestion": err.suggestion}}

    def test_timeout_error(self):
        err = RequestTimeoutError(30_000)
        assert err.status_code == 408
        assert err.to_dict()["details"]["timeoutMs"] == 30_000

    def test_rate_limit_error_retry_after(self):
        admission = AdmissionResult(
            allowed=False,
            remaining={RateWindow.MINUTE: 5, RateWindow.HOUR: 0, RateWindow.DAY: 10},
            reset_at={RateWindow.MINUTE: 160.0, RateWindow.HOUR: 3600.0, RateWindow.DAY: 86400.0},
        )
        err = RateLimitExceededError(admission, retry_after=admission.retry_after(100.5))
        assert err.retry_after == 3500
        assert err.details["exceeded"] == ["hour"]


class TestLogging:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("key sk-live-test-key-123 rejected", "key sk-live*** rejected"),
            ("key sk-ant-api03-abcdef rejected", "key sk-ant-api0*** rejected"),
            ("Authorization: Bearer abc.def", "Authorization: Bearer ***"),
            ("nothing secret here", "nothing secret here"),
        ],
    )
    def test_mask_secrets(self, text, expected):
        assert mask_secrets(text) == expected

    def test_filter_masks_formatted_message(self):
        record = logging.LogRecord("t", logging.INFO, __file__, 1, "using %s", ("sk-proj-abcdefgh",), None)
        assert SecretMaskingFilter().filter(record) is True
        assert record.getMessage() == "using sk-proj***"

    def test_json_formatter_includes_context(self):
        record = logging.LogRecord("promptgate.gateway", logging.WARNING, __file__, 1, "timed out", (), None)
        record.call_id = "abc"
        record.workspace_id = "ws-1"
        data = json.loads(JSONFormatter().format(record))
        assert data["level"] == "WARNING"
        assert data["message"] == "timed out"
        assert data["call_id"] == "abc"
        assert data["workspace_id"] == "ws-1"
        assert "request_id" not in data


class TestSentry:
    def test_disabled_without_dsn(self, monkeypatch):
        monkeypatch.setattr(settings, "sentry_dsn", "")
        assert init_sentry() is False

    def test_scrub_event(self):
        event = {
            "request": {"headers": {"Authorization": "Bearer sk-live-abcdef", "Accept": "application/json"}},
            "logentry": {"message": "failed with sk-live-abcdefgh"},
            "exception": {"values": [{"type": "ProviderError", "value": "bad key sk-live-abcdefgh"}]},
        }
        scrubbed = scrub_event(event)
        assert scrubbed["request"]["headers"]["Authorization"] == "[Filtered]"
        assert scrubbed["request"]["headers"]["Accept"] == "application/json"
        assert "abcdefgh" not in scrubbed["logentry"]["message"]
        assert "abcdefgh" not in scrubbed["exception"]["values"][0]["value"]
