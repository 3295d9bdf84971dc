"""Wiring for the admission orchestrator."""

import time
from datetime import datetime
from typing import Callable, List, Optional

import structlog

from hostreamly_core.admission.orchestrator import AdmissionOrchestrator
from hostreamly_core.core.config import AdmissionSettings, get_settings
from hostreamly_core.quota.gate import QuotaGate, UserDirectory
from hostreamly_core.quota.plans import PlanResolver
from hostreamly_core.quota.usage import UsageAggregator, UsageSource, utcnow
from hostreamly_core.ratelimit.progressive import ProgressiveLimiter, ViolationTracker
from hostreamly_core.ratelimit.store import (
    CounterStore,
    TimeoutCounterStore,
    create_counter_store,
)
from hostreamly_core.ratelimit.window import WindowLimiter
from hostreamly_core.security.events import AuditSink, SecurityEventEmitter
from hostreamly_core.security.geo import GeoLookup
from hostreamly_core.security.suspicious import SuspiciousActivityClassifier

logger = structlog.get_logger(__name__)


def build_orchestrator(
    settings: Optional[AdmissionSettings] = None,
    store: Optional[CounterStore] = None,
    usage_source: Optional[UsageSource] = None,
    users: Optional[UserDirectory] = None,
    sinks: Optional[List[AuditSink]] = None,
    geo: Optional[GeoLookup] = None,
    resolver: Optional[PlanResolver] = None,
    clock: Callable[[], float] = time.time,
    usage_clock: Callable[[], datetime] = utcnow,
) -> AdmissionOrchestrator:
    """Build an orchestrator from settings.

    Without a ``store`` one is created from ``settings.redis_url`` (in-memory
    when unset). Every store call is bounded by ``backend_timeout_seconds``.
    The quota gate is only wired when both ``usage_source`` and ``users``
    are given. Without it, resource actions follow
    ``settings.quota_failure_policy`` as if the usage backend were down.
    """
    settings = settings or get_settings()

    if store is None:
        store = create_counter_store(
            redis_url=settings.redis_url,
            key_prefix=settings.key_prefix,
            timeout_seconds=settings.backend_timeout_seconds,
        )
    elif not isinstance(store, TimeoutCounterStore):
        store = TimeoutCounterStore(store, settings.backend_timeout_seconds)

    quota_gate = None
    if usage_source is not None and users is not None:
        aggregator = UsageAggregator(
            usage_source,
            clock=usage_clock,
            timeout_seconds=settings.backend_timeout_seconds,
        )
        quota_gate = QuotaGate(aggregator, users, resolver=resolver)

    progressive = ProgressiveLimiter(
        WindowLimiter(store, clock=clock, name="progressive"),
        ViolationTracker(
            store,
            ttl_seconds=settings.violation_ttl_seconds,
            multiplier_cap=settings.multiplier_cap,
        ),
        base_limit=settings.progressive_base_limit,
        window_seconds=settings.progressive_window_seconds,
    )

    logger.info(
        "admission_orchestrator_built",
        backend="redis" if settings.redis_url else "memory",
        quota_enabled=quota_gate is not None,
        whitelisted_ips=len(settings.whitelisted_ips),
    )

    return AdmissionOrchestrator(
        settings=settings,
        window_limiter=WindowLimiter(store, clock=clock, name="window"),
        suspicious_limiter=WindowLimiter(store, clock=clock, name="suspicious"),
        progressive_limiter=progressive,
        classifier=SuspiciousActivityClassifier.from_settings(settings),
        quota_gate=quota_gate,
        emitter=SecurityEventEmitter(sinks),
        geo=geo,
    )
