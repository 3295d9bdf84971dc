"""Unit tests for admission settings."""

import pytest
from pydantic import ValidationError

from hostreamly_core.core.config import (
    AdmissionSettings,
    EndpointRule,
    FailurePolicy,
)


class TestAdmissionSettings:
    """Tests for AdmissionSettings."""

    def test_defaults(self):
        """Test default policies and limits."""
        settings = AdmissionSettings()

        assert settings.window_failure_policy == FailurePolicy.CLOSED
        assert settings.quota_failure_policy == FailurePolicy.CLOSED
        assert settings.progressive_failure_policy == FailurePolicy.OPEN
        assert settings.suspicious_failure_policy == FailurePolicy.OPEN
        assert settings.violation_ttl_seconds == 86400
        assert settings.multiplier_cap == 16
        assert settings.suspicious_limit == 10
        assert "curl" in settings.automation_signatures

    def test_env_overrides(self, monkeypatch):
        """Test settings load from ADMISSION_ environment variables."""
        monkeypatch.setenv("ADMISSION_WINDOW_FAILURE_POLICY", "open")
        monkeypatch.setenv("ADMISSION_BACKEND_TIMEOUT_SECONDS", "0.25")
        monkeypatch.setenv("ADMISSION_WHITELISTED_IPS", '["10.0.0.1", "10.0.0.2"]')

        settings = AdmissionSettings()

        assert settings.window_failure_policy == FailurePolicy.OPEN
        assert settings.backend_timeout_seconds == 0.25
        assert settings.whitelisted_ips == ["10.0.0.1", "10.0.0.2"]

    def test_invalid_timeout(self):
        """Test the backend timeout must be positive."""
        with pytest.raises(ValidationError):
            AdmissionSettings(backend_timeout_seconds=0)

    def test_invalid_multiplier_cap(self):
        """Test the multiplier cap must be at least one."""
        with pytest.raises(ValidationError):
            AdmissionSettings(multiplier_cap=0)

    def test_endpoint_rule_fallback(self):
        """Test unknown endpoint classes get the default rule."""
        settings = AdmissionSettings()

        assert settings.endpoint_rule("password-reset").max_requests == 3
        assert settings.endpoint_rule("unknown").window_seconds == 900

    def test_is_production(self):
        """Test production detection."""
        assert AdmissionSettings(environment="production").is_production is True
        assert AdmissionSettings(environment="development").is_production is False


class TestEndpointRule:
    """Tests for EndpointRule."""

    def test_rejects_non_positive(self):
        """Test window and ceiling must be positive."""
        with pytest.raises(ValidationError):
            EndpointRule(window_seconds=0, max_requests=10)
        with pytest.raises(ValidationError):
            EndpointRule(window_seconds=60, max_requests=-1)


class TestLogging:
    """Tests for structured logging setup."""

    def test_json_logs(self, caplog):
        """Test JSON output carries event, level and logger name."""
        import json
        import logging

        import structlog

        from hostreamly_core.core.logging import configure_logging

        configure_logging(level="info", json_logs=True)
        try:
            with caplog.at_level(logging.INFO):
                structlog.get_logger("admission.test").warning(
                    "window_limit_reached", key="general:ip:1.2.3.4"
                )
            payload = json.loads(caplog.records[-1].getMessage())
        finally:
            structlog.reset_defaults()

        assert payload["event"] == "window_limit_reached"
        assert payload["level"] == "warning"
        assert payload["logger"] == "admission.test"
        assert payload["key"] == "general:ip:1.2.3.4"
