"""Shared pytest fixtures for testing."""

from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from hostreamly_core.admission.factory import build_orchestrator
from hostreamly_core.admission.orchestrator import AdmissionOrchestrator
from hostreamly_core.core.config import AdmissionSettings
from hostreamly_core.quota.gate import InMemoryUserDirectory
from hostreamly_core.quota.plans import GB, TB, UserRecord
from hostreamly_core.quota.usage import InMemoryUsageSource
from hostreamly_core.ratelimit.store import InMemoryCounterStore
from hostreamly_core.security.events import InMemoryAuditSink


class FakeClock:
    """Controllable time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCounterStore:
    """Create an in-memory counter store driven by the fake clock."""
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def settings() -> AdmissionSettings:
    """Create test admission settings."""
    return AdmissionSettings(
        environment="development",
        redis_url="",
        backend_timeout_seconds=0.5,
    )


@pytest.fixture
def now() -> datetime:
    """Fixed 'now' in the middle of a month."""
    return datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def usage_source() -> InMemoryUsageSource:
    """Create an empty usage source."""
    return InMemoryUsageSource()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    """Create an in-memory audit sink."""
    return InMemoryAuditSink()


# =============================================================================
# Test Data Fixtures
# =============================================================================


@pytest.fixture
def free_user() -> UserRecord:
    """Free tier user."""
    return UserRecord(
        id="usr_free",
        storage_limit_bytes=100 * GB,
        bandwidth_limit_month_bytes=TB // 2,
    )


@pytest.fixture
def premium_user() -> UserRecord:
    """Premium tier user."""
    return UserRecord(
        id="usr_premium",
        storage_limit_bytes=1000 * GB,
        bandwidth_limit_month_bytes=5 * TB,
    )


@pytest.fixture
def enterprise_user() -> UserRecord:
    """Enterprise tier user."""
    return UserRecord(
        id="usr_enterprise",
        storage_limit_bytes=3500 * GB,
        bandwidth_limit_month_bytes=35 * TB,
    )


@pytest.fixture
def users(free_user, premium_user, enterprise_user) -> InMemoryUserDirectory:
    """User directory with one user per paid tier fixture."""
    return InMemoryUserDirectory([free_user, premium_user, enterprise_user])


# =============================================================================
# Orchestrator Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def orchestrator(
    settings, store, clock, usage_source, users, audit_sink, now
) -> AsyncGenerator[AdmissionOrchestrator, None]:
    """Create a fully wired orchestrator over in-memory backends."""
    orchestrator = build_orchestrator(
        settings=settings,
        store=store,
        usage_source=usage_source,
        users=users,
        sinks=[audit_sink],
        clock=clock,
        usage_clock=lambda: now,
    )
    yield orchestrator
    await orchestrator.emitter.drain()
