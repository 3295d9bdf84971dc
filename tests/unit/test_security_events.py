"""Unit tests for security event emission."""

from unittest.mock import MagicMock

import pytest

from hostreamly_core.security.events import (
    AuditSink,
    InMemoryAuditSink,
    LoggingAuditSink,
    SecurityEvent,
    SecurityEventEmitter,
    SecurityEventType,
    SecuritySeverity,
)


def _event(event_type=SecurityEventType.RATE_LIMIT_EXCEEDED, **kwargs):
    return SecurityEvent(
        event=event_type,
        identity="anonymous",
        ip="203.0.113.9",
        endpoint="/api/videos",
        **kwargs,
    )


class TestSecurityEvent:
    """Tests for SecurityEvent."""

    def test_default_severity(self):
        """Test suspicious activity outranks plain rate limiting."""
        assert _event().severity == SecuritySeverity.WARNING
        assert (
            _event(SecurityEventType.SUSPICIOUS_ACTIVITY_TRIGGERED).severity
            == SecuritySeverity.ERROR
        )

    def test_to_dict(self):
        """Test serialization."""
        data = _event(reasons=["Automated tool detected"], country="Unknown").to_dict()

        assert data["event"] == "rate_limit_exceeded"
        assert data["reasons"] == ["Automated tool detected"]
        assert data["country"] == "Unknown"
        assert data["timestamp"].endswith("+00:00")


class TestSecurityEventEmitter:
    """Tests for SecurityEventEmitter."""

    @pytest.mark.asyncio
    async def test_emit_delivers_to_every_sink(self):
        """Test events fan out to all sinks."""
        first, second = InMemoryAuditSink(), InMemoryAuditSink()
        emitter = SecurityEventEmitter([first])
        emitter.add_sink(second)

        emitter.emit(_event())
        await emitter.drain()

        assert len(first.events) == 1
        assert len(second.events) == 1

    @pytest.mark.asyncio
    async def test_emit_returns_before_delivery(self):
        """Test emit only schedules delivery."""
        sink = InMemoryAuditSink()
        emitter = SecurityEventEmitter([sink])

        emitter.emit(_event())

        assert sink.events == []
        assert emitter.pending == 1
        await emitter.drain()
        assert emitter.pending == 0

    @pytest.mark.asyncio
    async def test_hooks_run_synchronously(self):
        """Test hooks see the event immediately."""
        hook = MagicMock()
        emitter = SecurityEventEmitter([InMemoryAuditSink()])
        emitter.add_hook(hook)

        event = _event()
        emitter.emit(event)

        hook.assert_called_once_with(event)
        await emitter.drain()

    @pytest.mark.asyncio
    async def test_sink_failure_is_logged(self):
        """Test a failing sink does not affect the others."""

        class BrokenSink(AuditSink):
            async def publish(self, event):
                raise ConnectionError("audit store down")

        sink = InMemoryAuditSink()
        emitter = SecurityEventEmitter([BrokenSink(), sink])

        emitter.emit(_event())
        await emitter.drain()

        assert len(sink.events) == 1

    def test_emit_without_loop_drops_event(self):
        """Test emitting outside an event loop does not raise."""
        sink = InMemoryAuditSink()
        emitter = SecurityEventEmitter([sink])

        emitter.emit(_event())

        assert emitter.pending == 0

    @pytest.mark.asyncio
    async def test_logging_sink(self):
        """Test the logging sink writes at the event severity."""
        sink = LoggingAuditSink()
        sink._logger = MagicMock()

        await sink.publish(_event(SecurityEventType.PROGRESSIVE_VIOLATION))

        sink._logger.error.assert_called_once()
        assert sink._logger.error.call_args.args[0] == "progressive_violation"

    @pytest.mark.asyncio
    async def test_in_memory_sink_bounds_history(self):
        """Test old events are dropped past the cap."""
        sink = InMemoryAuditSink(max_events=2)

        for event_type in (
            SecurityEventType.RATE_LIMIT_EXCEEDED,
            SecurityEventType.PROGRESSIVE_VIOLATION,
            SecurityEventType.QUOTA_EXCEEDED,
        ):
            await sink.publish(_event(event_type))

        assert [e.event for e in sink.events] == [
            SecurityEventType.PROGRESSIVE_VIOLATION,
            SecurityEventType.QUOTA_EXCEEDED,
        ]
        assert len(sink.of_type(SecurityEventType.QUOTA_EXCEEDED)) == 1


class TestGeoLookup:
    """Tests for the geo lookup contract."""

    def test_null_lookup_reports_unknown(self):
        """Test the default lookup knows no countries."""
        from hostreamly_core.security.geo import NullGeoLookup, country_for

        assert country_for(NullGeoLookup(), "203.0.113.9") == "Unknown"

    def test_custom_lookup(self):
        """Test a plugged-in lookup is used."""
        from hostreamly_core.security.geo import country_for

        lookup = MagicMock()
        lookup.country.return_value = "DE"

        assert country_for(lookup, "203.0.113.9") == "DE"
        lookup.country.assert_called_once_with("203.0.113.9")

    @pytest.mark.asyncio
    async def test_country_on_rate_limit_events(self, settings, store, clock):
        """Test rate limit events carry the looked-up country."""
        from hostreamly_core.admission.factory import build_orchestrator
        from hostreamly_core.admission.models import Identity, RequestDescriptor

        lookup = MagicMock()
        lookup.country.return_value = "FR"
        sink = InMemoryAuditSink()
        orchestrator = build_orchestrator(
            settings=settings, store=store, sinks=[sink], geo=lookup, clock=clock
        )
        request = RequestDescriptor(
            identity=Identity.anonymous("203.0.113.9"),
            ip="203.0.113.9",
            user_agent="Mozilla/5.0 (Windows NT 6.1; Win64; x64)",
            path="/api/auth/login",
            endpoint_class="auth",
        )

        for _ in range(6):
            await orchestrator.admit(request)
        await orchestrator.emitter.drain()

        assert sink.events[0].country == "FR"
