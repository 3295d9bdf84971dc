"""
Security Event Emission
=======================

Fire-and-forget delivery of admission security events to audit sinks.

``SecurityEventEmitter.emit`` schedules delivery and returns at once; the
admission decision never waits on a sink. Sink failures are logged and
dropped.

Author: Platform Security Team
Version: 1.0.0
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

logger = structlog.get_logger(__name__)


class SecurityEventType(str, Enum):
    """Types of admission security events."""

    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SUSPICIOUS_ACTIVITY_TRIGGERED = "suspicious_activity_triggered"
    PROGRESSIVE_VIOLATION = "progressive_violation"
    QUOTA_EXCEEDED = "quota_exceeded"


class SecuritySeverity(str, Enum):
    """Severity levels; maps onto log levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_DEFAULT_SEVERITY = {
    SecurityEventType.RATE_LIMIT_EXCEEDED: SecuritySeverity.WARNING,
    SecurityEventType.QUOTA_EXCEEDED: SecuritySeverity.WARNING,
    SecurityEventType.PROGRESSIVE_VIOLATION: SecuritySeverity.ERROR,
    SecurityEventType.SUSPICIOUS_ACTIVITY_TRIGGERED: SecuritySeverity.ERROR,
}


@dataclass
class SecurityEvent:
    """One security event."""

    event: SecurityEventType
    identity: str
    ip: str
    endpoint: str
    reasons: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: Optional[SecuritySeverity] = None
    method: Optional[str] = None
    user_agent: Optional[str] = None
    country: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.severity is None:
            self.severity = _DEFAULT_SEVERITY.get(self.event, SecuritySeverity.WARNING)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "event": self.event.value,
            "identity": self.identity,
            "ip": self.ip,
            "endpoint": self.endpoint,
            "reasons": list(self.reasons),
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "method": self.method,
            "user_agent": self.user_agent,
            "country": self.country,
            "metadata": dict(self.metadata),
        }


class AuditSink(ABC):
    """Destination for security events."""

    @abstractmethod
    async def publish(self, event: SecurityEvent) -> None:
        pass


class LoggingAuditSink(AuditSink):
    """Writes events to the structured log at their severity."""

    def __init__(self, logger_name: str = "security"):
        self._logger = structlog.get_logger(logger_name)

    async def publish(self, event: SecurityEvent) -> None:
        log = getattr(self._logger, event.severity.value, self._logger.warning)
        payload = event.to_dict()
        payload.pop("event")
        log(event.event.value, **payload)


class InMemoryAuditSink(AuditSink):
    """Keeps events in memory, newest last."""

    def __init__(self, max_events: int = 10000):
        self._max_events = max_events
        self.events: List[SecurityEvent] = []

    async def publish(self, event: SecurityEvent) -> None:
        self.events.append(event)
        if len(self.events) > self._max_events:
            del self.events[: len(self.events) - self._max_events]

    def of_type(self, event_type: SecurityEventType) -> List[SecurityEvent]:
        return [e for e in self.events if e.event == event_type]


class SecurityEventEmitter:
    """
    Schedules event delivery without blocking the caller.

    Usage:
        emitter = SecurityEventEmitter([LoggingAuditSink()])
        emitter.emit(SecurityEvent(...))
        ...
        await emitter.drain()  # on shutdown
    """

    def __init__(self, sinks: Optional[List[AuditSink]] = None):
        self._sinks: List[AuditSink] = list(sinks) if sinks else [LoggingAuditSink()]
        self._pending: Set[asyncio.Task] = set()
        self._hooks: List[Callable[[SecurityEvent], None]] = []

    def add_sink(self, sink: AuditSink) -> None:
        self._sinks.append(sink)

    def add_hook(self, hook: Callable[[SecurityEvent], None]) -> None:
        """Add a synchronous hook called for each event."""
        self._hooks.append(hook)

    def emit(self, event: SecurityEvent) -> None:
        """Schedule delivery of ``event`` to every sink and return."""
        for hook in self._hooks:
            try:
                hook(event)
            except Exception as e:
                logger.error("security_hook_error", error=str(e), event=event.event.value)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("security_event_dropped", event=event.event.value, reason="no_event_loop")
            return

        for sink in self._sinks:
            task = loop.create_task(self._deliver(sink, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, sink: AuditSink, event: SecurityEvent) -> None:
        try:
            await sink.publish(event)
        except Exception as e:
            logger.error(
                "security_event_delivery_failed",
                sink=type(sink).__name__,
                event=event.event.value,
                error=str(e),
            )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for all scheduled deliveries to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = [
    "SecurityEventType",
    "SecuritySeverity",
    "SecurityEvent",
    "AuditSink",
    "LoggingAuditSink",
    "InMemoryAuditSink",
    "SecurityEventEmitter",
]
