"""
Admission Models
================

Request descriptor in, decision out. Decisions are plain values: the
orchestrator never raises for a domain outcome.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from hostreamly_core.core.errors import (
    AdmissionError,
    BackendUnavailable,
    QuotaExceeded,
    RateLimitExceeded,
    SuspiciousActivityBlocked,
)
from hostreamly_core.quota.gate import QuotaResource
from hostreamly_core.quota.plans import Tier


class IdentityKind(str, Enum):
    USER = "user"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Identity:
    """Who is calling, as reported by the identity resolver."""

    kind: IdentityKind
    id: str
    role: Optional[str] = None
    tier: Tier = Tier.ANONYMOUS

    @classmethod
    def user(cls, user_id: str, role: str = "user", tier: Tier = Tier.FREE) -> "Identity":
        return cls(kind=IdentityKind.USER, id=str(user_id), role=role, tier=tier)

    @classmethod
    def anonymous(cls, ip: str = "unknown") -> "Identity":
        return cls(kind=IdentityKind.ANONYMOUS, id=ip)

    @property
    def is_authenticated(self) -> bool:
        return self.kind == IdentityKind.USER

    @property
    def rate_tier(self) -> Tier:
        """Tier used for request ceilings. Anonymous callers never claim more."""
        return self.tier if self.is_authenticated else Tier.ANONYMOUS

    def rate_key(self, ip: str) -> str:
        """Identity part of a window key"""
        if self.is_authenticated:
            return f"user:{self.id}"
        return f"ip:{ip}"

    @property
    def label(self) -> str:
        if self.is_authenticated:
            return f"user:{self.id}"
        return "anonymous"


@dataclass(frozen=True)
class ResourceDelta:
    """Prospective consumption attached to a resource action"""

    resource: QuotaResource
    amount: float = 0


@dataclass
class RequestDescriptor:
    """Inbound admission request"""

    identity: Identity
    ip: str
    user_agent: Optional[str]
    path: str
    method: str = "GET"
    endpoint_class: str = "general"
    resource_delta: Optional[ResourceDelta] = None


class Gate(str, Enum):
    SUSPICIOUS = "suspicious"
    PROGRESSIVE = "progressive"
    WINDOW = "window"
    QUOTA = "quota"


class DecisionReason(str, Enum):
    ADMITTED = "admitted"
    RATE_LIMITED = "rate_limited"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    PROGRESSIVE_LIMIT = "progressive_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    BACKEND_UNAVAILABLE = "backend_unavailable"


class ErrorType(str, Enum):
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    SECURITY_BLOCK = "SECURITY_BLOCK"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


_ERROR_TITLES = {
    ErrorType.RATE_LIMIT_ERROR: "Rate limit exceeded",
    ErrorType.SECURITY_BLOCK: "Suspicious activity detected",
    ErrorType.QUOTA_EXCEEDED: "Quota exceeded",
    ErrorType.SERVICE_UNAVAILABLE: "Service temporarily unavailable",
}


@dataclass
class AdmissionResponse:
    """HTTP-shaped, transport-agnostic response"""

    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class AdmissionDecision:
    """The sole output of the admission orchestrator."""

    allow: bool
    reason: DecisionReason
    gate: Optional[Gate] = None
    status_code: int = 200
    error_type: Optional[ErrorType] = None
    message: str = ""
    retry_after_ms: Optional[int] = None
    current_usage: Optional[Any] = None
    limit: Optional[Any] = None
    percentage: Optional[float] = None
    upgrade_url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)
    degraded: bool = False  # a gate failed open

    @classmethod
    def admit(cls, headers: Optional[Dict[str, str]] = None, **details: Any) -> "AdmissionDecision":
        return cls(
            allow=True,
            reason=DecisionReason.ADMITTED,
            headers=dict(headers or {}),
            details=details,
        )

    @classmethod
    def deny(
        cls,
        reason: DecisionReason,
        gate: Gate,
        error_type: ErrorType,
        message: str,
        status_code: int = 429,
        retry_after: Optional[float] = None,
        **kwargs: Any,
    ) -> "AdmissionDecision":
        retry_after_ms = None
        if retry_after is not None:
            retry_after_ms = int(math.ceil(max(0.0, retry_after) * 1000))
        return cls(
            allow=False,
            reason=reason,
            gate=gate,
            status_code=status_code,
            error_type=error_type,
            message=message,
            retry_after_ms=retry_after_ms,
            **kwargs,
        )

    @property
    def retry_after_seconds(self) -> Optional[int]:
        if self.retry_after_ms is None:
            return None
        return max(1, int(math.ceil(self.retry_after_ms / 1000)))

    def to_response(self) -> AdmissionResponse:
        """Render as an HTTP-shaped response."""
        if self.allow:
            return AdmissionResponse(status_code=200, body={}, headers=dict(self.headers))

        body: Dict[str, Any] = {
            "error": _ERROR_TITLES[self.error_type],
            "type": self.error_type.value,
            "message": self.message,
        }
        if self.retry_after_seconds is not None:
            body["retryAfterSeconds"] = self.retry_after_seconds
        if self.current_usage is not None:
            body["currentUsage"] = self.current_usage
        if self.limit is not None:
            body["limit"] = self.limit
        if self.percentage is not None:
            body["percentage"] = self.percentage
        if self.upgrade_url:
            body["upgradeUrl"] = self.upgrade_url
        body.update(self.details)

        headers = dict(self.headers)
        if self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)

        return AdmissionResponse(status_code=self.status_code, body=body, headers=headers)

    def raise_for_denial(self) -> None:
        """Raise the matching taxonomy exception if the request was denied."""
        if self.allow:
            return

        retry_after = (self.retry_after_ms or 0) / 1000
        details = dict(self.details)
        exc: AdmissionError
        if self.error_type == ErrorType.SECURITY_BLOCK:
            exc = SuspiciousActivityBlocked(self.message, retry_after=retry_after, details=details)
        elif self.error_type == ErrorType.QUOTA_EXCEEDED:
            exc = QuotaExceeded(
                self.message,
                resource=details.get("resource", ""),
                current_usage=self.current_usage,
                limit=self.limit,
                details=details,
            )
        elif self.error_type == ErrorType.SERVICE_UNAVAILABLE:
            exc = BackendUnavailable(self.message, details=details)
        else:
            exc = RateLimitExceeded(self.message, retry_after=retry_after, details=details)
        raise exc


__all__ = [
    "IdentityKind",
    "Identity",
    "ResourceDelta",
    "RequestDescriptor",
    "Gate",
    "DecisionReason",
    "ErrorType",
    "AdmissionResponse",
    "AdmissionDecision",
]
