"""
Admission Security
==================

Suspicious-activity classification, security event emission and the
geographic lookup contract.

Author: Platform Security Team
Version: 1.0.0
"""

from hostreamly_core.security.suspicious import (
    Classification,
    SuspiciousActivityClassifier,
)
from hostreamly_core.security.events import (
    SecurityEventType,
    SecuritySeverity,
    SecurityEvent,
    AuditSink,
    LoggingAuditSink,
    InMemoryAuditSink,
    SecurityEventEmitter,
)
from hostreamly_core.security.geo import (
    GeoLookup,
    NullGeoLookup,
    country_for,
)

__all__ = [
    # Classifier
    "Classification",
    "SuspiciousActivityClassifier",
    # Events
    "SecurityEventType",
    "SecuritySeverity",
    "SecurityEvent",
    "AuditSink",
    "LoggingAuditSink",
    "InMemoryAuditSink",
    "SecurityEventEmitter",
    # Geo
    "GeoLookup",
    "NullGeoLookup",
    "country_for",
]
