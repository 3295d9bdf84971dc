"""Configuration for the admission control plane.

All values are loaded once at process start from the environment
(prefix ``ADMISSION_``) or a ``.env`` file. Hot reload is not supported;
restart the process to pick up changes.

Failure policy note:
    The primary window limiter and the quota gate fail *closed* by default.
    Under a counter-store outage this denies traffic across the board, which
    can cascade into a full outage for clients. Operators who prefer
    availability set ``ADMISSION_WINDOW_FAILURE_POLICY=open``.
"""

from enum import Enum
from functools import lru_cache
from typing import Dict, List

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FailurePolicy(str, Enum):
    """What a gate does when its backend is unreachable."""

    OPEN = "open"
    CLOSED = "closed"


class EndpointRule(BaseModel):
    """Fixed-window limits for one endpoint class."""

    window_seconds: int
    max_requests: int
    tier_limits: Dict[str, int] = Field(default_factory=dict)
    method_limits: Dict[str, int] = Field(default_factory=dict)
    message: str = "Rate limit exceeded."

    @field_validator("window_seconds", "max_requests")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v


GENERAL_ENDPOINT = "general"

DEFAULT_ENDPOINT_RULE = EndpointRule(
    window_seconds=15 * 60,
    max_requests=100,
    message="Rate limit exceeded.",
)


def _default_endpoint_classes() -> Dict[str, EndpointRule]:
    return {
        GENERAL_ENDPOINT: EndpointRule(
            window_seconds=15 * 60,
            max_requests=100,
            tier_limits={
                "anonymous": 50,
                "free": 100,
                "basic": 200,
                "premium": 1000,
                "enterprise": 5000,
            },
            message="Too many requests.",
        ),
        "auth": EndpointRule(
            window_seconds=15 * 60,
            max_requests=5,
            message="Too many authentication attempts. Please try again later.",
        ),
        "password-reset": EndpointRule(
            window_seconds=60 * 60,
            max_requests=3,
            message="Too many password reset attempts. Please try again later.",
        ),
        "upload": EndpointRule(
            window_seconds=60 * 60,
            max_requests=20,
            tier_limits={"premium": 100, "enterprise": 100},
            message="Upload limit exceeded. Consider upgrading your plan.",
        ),
        "stream": EndpointRule(
            window_seconds=60,
            max_requests=200,
            message="Streaming rate limit exceeded. Please try again shortly.",
        ),
        "analytics": EndpointRule(
            window_seconds=60,
            max_requests=60,
            message="Analytics rate limit exceeded.",
        ),
        "live-stream": EndpointRule(
            window_seconds=60 * 60,
            max_requests=100,
            method_limits={"POST": 5},
            message="Live streaming limit exceeded.",
        ),
        "drm": EndpointRule(
            window_seconds=60,
            max_requests=50,
            message="DRM token generation limit exceeded.",
        ),
        "webhook": EndpointRule(
            window_seconds=60,
            max_requests=1000,
            message="Webhook rate limit exceeded.",
        ),
    }


class AdmissionSettings(BaseSettings):
    """Admission control settings."""

    model_config = SettingsConfigDict(
        env_prefix="ADMISSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )
    log_level: str = "info"

    # Counter store
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "hostreamly:"
    backend_timeout_seconds: float = 0.5
    backend_retry_after_seconds: int = 30

    # Per-gate behaviour when the backend is unreachable
    window_failure_policy: FailurePolicy = FailurePolicy.CLOSED
    quota_failure_policy: FailurePolicy = FailurePolicy.CLOSED
    progressive_failure_policy: FailurePolicy = FailurePolicy.OPEN
    suspicious_failure_policy: FailurePolicy = FailurePolicy.OPEN

    # Progressive limiter
    violation_ttl_seconds: int = 24 * 60 * 60
    multiplier_cap: int = 16
    progressive_base_limit: int = 100
    progressive_window_seconds: int = 15 * 60

    # Suspicious activity
    suspicious_limit: int = 10
    suspicious_window_seconds: int = 60
    min_user_agent_length: int = 10
    bot_signatures: List[str] = Field(
        default_factory=lambda: ["bot", "crawler", "spider", "scraper"]
    )
    automation_signatures: List[str] = Field(
        default_factory=lambda: [
            "curl",
            "wget",
            "python",
            "requests",
            "postman",
            "insomnia",
        ]
    )
    sensitive_paths: List[str] = Field(
        default_factory=lambda: [
            "/admin",
            "/.env",
            "/config",
            "/backup",
            "/wp-admin",
            "/phpmyadmin",
            "/mysql",
        ]
    )

    whitelisted_ips: List[str] = Field(default_factory=list)

    endpoint_classes: Dict[str, EndpointRule] = Field(
        default_factory=_default_endpoint_classes
    )

    # Upgrade links rendered in denial bodies
    anonymous_upgrade_url: str = "/pricing"
    user_upgrade_url: str = "/dashboard/billing"
    quota_upgrade_url: str = "/pricing"

    @field_validator("multiplier_cap")
    @classmethod
    def validate_multiplier_cap(cls, v: int) -> int:
        if v < 1:
            raise ValueError("multiplier_cap must be at least 1")
        return v

    @field_validator("backend_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("backend_timeout_seconds must be positive")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod", "staging")

    def endpoint_rule(self, endpoint_class: str) -> EndpointRule:
        """Rule for an endpoint class, falling back to the default rule."""
        return self.endpoint_classes.get(endpoint_class, DEFAULT_ENDPOINT_RULE)


@lru_cache
def get_settings() -> AdmissionSettings:
    """Get cached settings instance."""
    return AdmissionSettings()
