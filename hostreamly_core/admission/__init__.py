"""
Admission
=========

Per-request admission: the orchestrator that sequences the rate-limit,
security and quota gates, its request/decision models, and the HTTP
adapter.
"""

from hostreamly_core.admission.models import (
    IdentityKind,
    Identity,
    ResourceDelta,
    RequestDescriptor,
    Gate,
    DecisionReason,
    ErrorType,
    AdmissionResponse,
    AdmissionDecision,
)
from hostreamly_core.admission.orchestrator import AdmissionOrchestrator
from hostreamly_core.admission.factory import build_orchestrator
from hostreamly_core.admission.middleware import (
    AdmissionMiddleware,
    extract_client_ip,
    resolve_endpoint_class,
)

__all__ = [
    # Models
    "IdentityKind",
    "Identity",
    "ResourceDelta",
    "RequestDescriptor",
    "Gate",
    "DecisionReason",
    "ErrorType",
    "AdmissionResponse",
    "AdmissionDecision",
    # Orchestration
    "AdmissionOrchestrator",
    "build_orchestrator",
    # HTTP
    "AdmissionMiddleware",
    "extract_client_ip",
    "resolve_endpoint_class",
]
