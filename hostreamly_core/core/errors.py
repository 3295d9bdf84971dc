"""
Admission Error Taxonomy
========================

Domain outcomes (rate limited, security blocked, quota exceeded) are
returned as ``AdmissionDecision`` values. These exceptions exist for
callers that prefer raising, via ``AdmissionDecision.raise_for_denial()``.
``BackendUnavailable`` is the only one raised internally: counter stores
and usage sources raise it, and the orchestrator converts it into the
configured fail-open/closed decision.
"""

from typing import Any, Dict, Optional


class AdmissionError(Exception):
    """Base class for admission errors"""

    status_code: int = 500
    error_type: str = "ADMISSION_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class BackendUnavailable(AdmissionError):
    """Counter store or usage source unreachable or timed out"""

    status_code = 429
    error_type = "SERVICE_UNAVAILABLE"

    def __init__(
        self,
        message: str,
        backend: str = "counter_store",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.backend = backend


class RateLimitExceeded(AdmissionError):
    """Raised when a request rate limit is exceeded"""

    status_code = 429
    error_type = "RATE_LIMIT_ERROR"

    def __init__(
        self,
        message: str,
        retry_after: float = 0.0,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.retry_after = retry_after


class SuspiciousActivityBlocked(RateLimitExceeded):
    """Raised when a flagged request exceeds the suspicious-activity limit"""

    error_type = "SECURITY_BLOCK"


class QuotaExceeded(AdmissionError):
    """Raised when a resource quota would be exceeded"""

    status_code = 403
    error_type = "QUOTA_EXCEEDED"

    def __init__(
        self,
        message: str,
        resource: str,
        current_usage: Any = None,
        limit: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.resource = resource
        self.current_usage = current_usage
        self.limit = limit
