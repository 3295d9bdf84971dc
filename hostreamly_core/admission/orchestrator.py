"""
Admission Orchestrator
======================

Runs the admission gates for one request, strictly in order:

    suspicious activity -> progressive limiter -> window limiter -> quota

A later gate is never evaluated once an earlier one denies, so a throttled
client never costs a usage aggregation query. Side effects (security
events, violation records) happen only once a gate's decision is final.

Backend faults are converted at each gate boundary according to that
gate's failure policy:
    - open: admit, mark the decision degraded, log the fault
    - closed: deny with SERVICE_UNAVAILABLE and a retry hint

Usage:
    orchestrator = build_orchestrator(settings, store, usage_source, users)
    decision = await orchestrator.admit(request)
    response = decision.to_response()

Author: Platform Engineering Team
Version: 1.0.0
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from hostreamly_core.admission.models import (
    AdmissionDecision,
    DecisionReason,
    ErrorType,
    Gate,
    RequestDescriptor,
)
from hostreamly_core.core.config import GENERAL_ENDPOINT, AdmissionSettings, FailurePolicy
from hostreamly_core.core.errors import BackendUnavailable
from hostreamly_core.quota.gate import QuotaGate
from hostreamly_core.ratelimit.progressive import ProgressiveLimiter
from hostreamly_core.ratelimit.window import (
    WindowLimiter,
    build_key,
    resolve_endpoint_limit,
)
from hostreamly_core.security.events import (
    SecurityEvent,
    SecurityEventEmitter,
    SecurityEventType,
    SecuritySeverity,
)
from hostreamly_core.security.geo import GeoLookup, NullGeoLookup, country_for
from hostreamly_core.security.suspicious import SuspiciousActivityClassifier

BACKEND_UNAVAILABLE_MESSAGE = (
    "Admission control is temporarily unavailable. Please retry shortly."
)


@dataclass
class _Evaluation:
    """State carried across the gates of one request"""

    headers: Dict[str, str] = field(default_factory=dict)
    degraded_gates: List[Gate] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)


class AdmissionOrchestrator:
    """
    Sequences the admission gates and produces the final decision.

    No lock is held across requests. The only shared state is the
    counter store behind the limiters.
    """

    def __init__(
        self,
        settings: AdmissionSettings,
        window_limiter: WindowLimiter,
        suspicious_limiter: WindowLimiter,
        progressive_limiter: ProgressiveLimiter,
        classifier: SuspiciousActivityClassifier,
        quota_gate: Optional[QuotaGate] = None,
        emitter: Optional[SecurityEventEmitter] = None,
        geo: Optional[GeoLookup] = None,
    ):
        self.settings = settings
        self._window = window_limiter
        self._suspicious = suspicious_limiter
        self._progressive = progressive_limiter
        self._classifier = classifier
        self._quota = quota_gate
        self._emitter = emitter or SecurityEventEmitter()
        self._geo = geo or NullGeoLookup()
        self._whitelist = frozenset(settings.whitelisted_ips)
        self._logger = structlog.get_logger("admission")

    @property
    def emitter(self) -> SecurityEventEmitter:
        return self._emitter

    async def admit(self, request: RequestDescriptor) -> AdmissionDecision:
        """Decide whether to admit ``request``. Never raises for domain outcomes."""
        evaluation = _Evaluation()

        if request.ip in self._whitelist:
            evaluation.details["whitelisted"] = True
        else:
            for gate in (self._check_suspicious, self._check_progressive, self._check_window):
                denial = await gate(request, evaluation)
                if denial is not None:
                    return denial

        if request.resource_delta is not None:
            denial = await self._check_quota(request, evaluation)
            if denial is not None:
                return denial

        decision = AdmissionDecision.admit(headers=evaluation.headers, **evaluation.details)
        decision.degraded = bool(evaluation.degraded_gates)
        return decision

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    async def _check_suspicious(
        self, request: RequestDescriptor, evaluation: _Evaluation
    ) -> Optional[AdmissionDecision]:
        classification = self._classifier.classify(request)
        if not classification.suspicious:
            return None

        try:
            result = await self._suspicious.admit(
                build_key("suspicious", request.ip),
                self.settings.suspicious_window_seconds,
                self.settings.suspicious_limit,
            )
        except BackendUnavailable as e:
            return self._backend_failure(
                Gate.SUSPICIOUS, self.settings.suspicious_failure_policy, e, request, evaluation
            )

        evaluation.headers = result.to_headers()
        self._emit(
            SecurityEventType.SUSPICIOUS_ACTIVITY_TRIGGERED,
            request,
            reasons=classification.reasons,
            severity=SecuritySeverity.CRITICAL if not result.allowed else SecuritySeverity.ERROR,
            country=country_for(self._geo, request.ip),
            blocked=not result.allowed,
            count=result.count,
            limit=result.limit,
        )

        if result.allowed:
            return None

        return AdmissionDecision.deny(
            reason=DecisionReason.SUSPICIOUS_ACTIVITY,
            gate=Gate.SUSPICIOUS,
            error_type=ErrorType.SECURITY_BLOCK,
            message=(
                "Your request has been flagged for review. Please contact "
                "support if you believe this is an error."
            ),
            retry_after=result.retry_after,
            headers=result.to_headers(),
            details={"reasons": list(classification.reasons)},
        )

    async def _check_progressive(
        self, request: RequestDescriptor, evaluation: _Evaluation
    ) -> Optional[AdmissionDecision]:
        try:
            result = await self._progressive.admit(request.ip)
        except BackendUnavailable as e:
            return self._backend_failure(
                Gate.PROGRESSIVE, self.settings.progressive_failure_policy, e, request, evaluation
            )

        if result.allowed:
            return None

        self._emit(
            SecurityEventType.PROGRESSIVE_VIOLATION,
            request,
            violations=result.new_violations,
            previous_violations=result.violations,
            adjusted_limit=result.effective_limit,
            country=country_for(self._geo, request.ip),
            base_limit=result.base_limit,
        )

        return AdmissionDecision.deny(
            reason=DecisionReason.PROGRESSIVE_LIMIT,
            gate=Gate.PROGRESSIVE,
            error_type=ErrorType.RATE_LIMIT_ERROR,
            message=(
                f"Rate limit reduced due to {result.violations} previous violations. "
                f"Current limit: {result.effective_limit} requests."
            ),
            retry_after=result.window.retry_after,
            limit=result.effective_limit,
            upgrade_url=self._upgrade_url(request),
            headers=result.window.to_headers(),
            details={
                "violations": result.violations,
                "baseLimit": result.base_limit,
                "adjustedLimit": result.effective_limit,
            },
        )

    async def _check_window(
        self, request: RequestDescriptor, evaluation: _Evaluation
    ) -> Optional[AdmissionDecision]:
        tier = request.identity.rate_tier
        endpoint = resolve_endpoint_limit(
            tier, request.endpoint_class, request.method, self.settings
        )
        key = build_key(request.endpoint_class, request.identity.rate_key(request.ip))

        try:
            result = await self._window.admit(key, endpoint.window_seconds, endpoint.max_requests)
        except BackendUnavailable as e:
            return self._backend_failure(
                Gate.WINDOW, self.settings.window_failure_policy, e, request, evaluation
            )

        evaluation.headers = result.to_headers()
        if result.allowed:
            return None

        self._emit(
            SecurityEventType.RATE_LIMIT_EXCEEDED,
            request,
            tier=tier.value,
            limit=endpoint.max_requests,
            country=country_for(self._geo, request.ip),
        )

        if request.endpoint_class == GENERAL_ENDPOINT:
            message = (
                f"Too many requests for {tier.value} users. "
                f"Please upgrade your plan or try again later."
            )
        else:
            message = endpoint.message

        return AdmissionDecision.deny(
            reason=DecisionReason.RATE_LIMITED,
            gate=Gate.WINDOW,
            error_type=ErrorType.RATE_LIMIT_ERROR,
            message=message,
            retry_after=result.retry_after,
            limit=endpoint.max_requests,
            upgrade_url=self._upgrade_url(request),
            headers=evaluation.headers,
            details={"userType": tier.value, "endpointClass": request.endpoint_class},
        )

    async def _check_quota(
        self, request: RequestDescriptor, evaluation: _Evaluation
    ) -> Optional[AdmissionDecision]:
        delta = request.resource_delta
        identity = request.identity

        if not identity.is_authenticated:
            return AdmissionDecision.deny(
                reason=DecisionReason.QUOTA_EXCEEDED,
                gate=Gate.QUOTA,
                error_type=ErrorType.QUOTA_EXCEEDED,
                status_code=403,
                message=f"Your anonymous plan does not include {delta.resource.value}.",
                limit=0,
                upgrade_url=self.settings.quota_upgrade_url,
                headers=evaluation.headers,
                details={"resource": delta.resource.value},
            )

        if self._quota is None:
            return self._backend_failure(
                Gate.QUOTA,
                self.settings.quota_failure_policy,
                BackendUnavailable("No quota gate configured", backend="quota_gate"),
                request,
                evaluation,
            )

        try:
            check = await self._quota.check(identity.id, delta.resource, delta.amount)
        except BackendUnavailable as e:
            return self._backend_failure(
                Gate.QUOTA, self.settings.quota_failure_policy, e, request, evaluation
            )

        if check.allowed:
            evaluation.details["quota"] = check.to_dict()
            return None

        self._emit(
            SecurityEventType.QUOTA_EXCEEDED,
            request,
            reasons=[check.denial.value] if check.denial else [],
            resource=delta.resource.value,
            tier=check.tier.value,
            current_usage=check.current_usage,
            limit=check.limit,
            delta=delta.amount,
        )

        details: Dict[str, Any] = {"resource": delta.resource.value, "plan": check.tier.value}
        if check.denial:
            details["denial"] = check.denial.value
        details.update(check.details)

        return AdmissionDecision.deny(
            reason=DecisionReason.QUOTA_EXCEEDED,
            gate=Gate.QUOTA,
            error_type=ErrorType.QUOTA_EXCEEDED,
            status_code=403,
            message=check.message,
            current_usage=check.current_usage,
            limit=check.limit,
            percentage=check.percentage,
            upgrade_url=self.settings.quota_upgrade_url,
            headers=evaluation.headers,
            details=details,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _backend_failure(
        self,
        gate: Gate,
        policy: FailurePolicy,
        error: BackendUnavailable,
        request: RequestDescriptor,
        evaluation: _Evaluation,
    ) -> Optional[AdmissionDecision]:
        self._logger.error(
            "admission_backend_unavailable",
            gate=gate.value,
            policy=policy.value,
            backend=error.backend,
            error=str(error),
            ip=request.ip,
            endpoint=request.path,
        )

        if policy == FailurePolicy.OPEN:
            evaluation.degraded_gates.append(gate)
            evaluation.details.setdefault("degradedGates", []).append(gate.value)
            return None

        return AdmissionDecision.deny(
            reason=DecisionReason.BACKEND_UNAVAILABLE,
            gate=gate,
            error_type=ErrorType.SERVICE_UNAVAILABLE,
            message=BACKEND_UNAVAILABLE_MESSAGE,
            retry_after=self.settings.backend_retry_after_seconds,
            headers=evaluation.headers,
        )

    def _upgrade_url(self, request: RequestDescriptor) -> str:
        if request.identity.is_authenticated:
            return self.settings.user_upgrade_url
        return self.settings.anonymous_upgrade_url

    def _emit(
        self,
        event_type: SecurityEventType,
        request: RequestDescriptor,
        reasons: Optional[List[str]] = None,
        severity: Optional[SecuritySeverity] = None,
        country: Optional[str] = None,
        **metadata: Any,
    ) -> None:
        self._emitter.emit(
            SecurityEvent(
                event=event_type,
                identity=request.identity.label,
                ip=request.ip,
                endpoint=request.path,
                reasons=list(reasons or []),
                severity=severity,
                method=request.method,
                user_agent=request.user_agent,
                country=country,
                metadata=metadata,
            )
        )


__all__ = [
    "AdmissionOrchestrator",
    "BACKEND_UNAVAILABLE_MESSAGE",
]
