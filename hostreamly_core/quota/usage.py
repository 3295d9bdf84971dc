"""
Usage Aggregation
=================

Computes a user's current consumption from billed-quantity sources.

A snapshot mixes two temporal scopes on purpose:
    - storage and video count are standing balances summed over all time
    - bandwidth and live-stream minutes are monthly allowances summed over
      ``[first instant of the current month, now)``

Snapshots are derived on demand and never cached.

Month boundaries follow the timezone of the aggregator clock. The default
clock is UTC; pass a clock returning aware local datetimes to bound months
in server time.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from hostreamly_core.core.errors import BackendUnavailable

logger = structlog.get_logger(__name__)

Number = Union[int, float]


class BilledQuantity(str, Enum):
    """Quantities recorded by the billing pipeline."""

    STORAGE_BYTES = "storage_bytes"
    BANDWIDTH_BYTES = "bandwidth_bytes"
    LIVE_STREAM_MINUTES = "live_stream_minutes"
    VIDEOS = "videos"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_start(now: datetime) -> datetime:
    """First instant of the calendar month containing ``now``."""
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class UsageSnapshot:
    """Point-in-time consumption for one user."""

    user_id: str
    storage_bytes: int
    bandwidth_bytes_this_month: int
    live_stream_minutes_this_month: float
    video_count: int
    period_start: datetime
    period_end: datetime

    @property
    def live_stream_hours_this_month(self) -> float:
        return self.live_stream_minutes_this_month / 60

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "storageBytes": self.storage_bytes,
            "bandwidthBytesThisMonth": self.bandwidth_bytes_this_month,
            "liveStreamMinutesThisMonth": self.live_stream_minutes_this_month,
            "videoCount": self.video_count,
            "periodStart": self.period_start.isoformat(),
            "periodEnd": self.period_end.isoformat(),
        }


class UsageSource(ABC):
    """Billed-quantity data source (typically the billing database)."""

    @abstractmethod
    async def sum(
        self,
        user_id: str,
        quantity: BilledQuantity,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Number:
        """Sum ``quantity`` for a user over ``[start, end)``.

        A missing bound leaves that side of the range open.

        Raises:
            BackendUnavailable: If the source cannot be queried
        """
        pass

    @abstractmethod
    async def count_live_streams(self, user_id: str) -> int:
        """Number of the user's streams currently live."""
        pass


@dataclass
class UsageRecord:
    """A single billed quantity."""

    user_id: str
    quantity: BilledQuantity
    amount: Number
    timestamp: datetime = field(default_factory=utcnow)


class InMemoryUsageSource(UsageSource):
    """In-memory usage source implementation."""

    def __init__(self):
        self._records: Dict[str, List[UsageRecord]] = defaultdict(list)
        self._live_streams: Dict[str, int] = defaultdict(int)
        self.queries = 0

    def record(
        self,
        user_id: str,
        quantity: BilledQuantity,
        amount: Number,
        timestamp: Optional[datetime] = None,
    ) -> UsageRecord:
        """Record a billed quantity. Negative amounts model deletions."""
        record = UsageRecord(
            user_id=user_id,
            quantity=quantity,
            amount=amount,
            timestamp=timestamp or utcnow(),
        )
        self._records[user_id].append(record)
        return record

    def start_stream(self, user_id: str) -> None:
        self._live_streams[user_id] += 1

    def end_stream(self, user_id: str) -> None:
        self._live_streams[user_id] = max(0, self._live_streams[user_id] - 1)

    async def sum(
        self,
        user_id: str,
        quantity: BilledQuantity,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Number:
        self.queries += 1
        total: Number = 0
        for r in self._records.get(user_id, []):
            if r.quantity != quantity:
                continue
            if start is not None and r.timestamp < start:
                continue
            if end is not None and r.timestamp >= end:
                continue
            total += r.amount
        return total

    async def count_live_streams(self, user_id: str) -> int:
        self.queries += 1
        return self._live_streams.get(user_id, 0)


class UsageAggregator:
    """
    Builds usage snapshots from a usage source.

    Usage:
        aggregator = UsageAggregator(source, timeout_seconds=0.5)
        snapshot = await aggregator.usage("usr_123")
    """

    def __init__(
        self,
        source: UsageSource,
        clock: Callable[[], datetime] = utcnow,
        timeout_seconds: Optional[float] = None,
    ):
        self._source = source
        self._clock = clock
        self._timeout = timeout_seconds

    def now(self) -> datetime:
        return self._clock()

    async def _bounded(self, operation: str, awaitable):
        if self._timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise BackendUnavailable(
                f"Usage {operation} timed out after {self._timeout}s",
                backend="usage_source",
                details={"operation": operation},
            ) from e

    async def usage(
        self,
        user_id: str,
        period_start: Optional[datetime] = None,
        period_now: Optional[datetime] = None,
    ) -> UsageSnapshot:
        """Current consumption for a user.

        Args:
            user_id: User to aggregate
            period_start: Start of the monthly window (default: first of month)
            period_now: End of the monthly window, exclusive (default: now)
        """
        period_now = period_now or self.now()
        period_start = period_start or month_start(period_now)

        storage, videos, bandwidth, minutes = await self._bounded(
            "aggregation",
            asyncio.gather(
                self._source.sum(user_id, BilledQuantity.STORAGE_BYTES),
                self._source.sum(user_id, BilledQuantity.VIDEOS),
                self._source.sum(
                    user_id, BilledQuantity.BANDWIDTH_BYTES, period_start, period_now
                ),
                self._source.sum(
                    user_id, BilledQuantity.LIVE_STREAM_MINUTES, period_start, period_now
                ),
            ),
        )

        return UsageSnapshot(
            user_id=user_id,
            storage_bytes=int(storage or 0),
            bandwidth_bytes_this_month=int(bandwidth or 0),
            live_stream_minutes_this_month=float(minutes or 0),
            video_count=int(videos or 0),
            period_start=period_start,
            period_end=period_now,
        )

    async def live_stream_count(self, user_id: str) -> int:
        return await self._bounded(
            "live_stream_count",
            self._source.count_live_streams(user_id),
        )


__all__ = [
    "BilledQuantity",
    "UsageSnapshot",
    "UsageSource",
    "UsageRecord",
    "InMemoryUsageSource",
    "UsageAggregator",
    "month_start",
    "utcnow",
]
