"""
Quota Gate
==========

Admits or denies resource-consuming actions against plan limits.

Boundaries are inclusive: usage may land exactly on a limit.
Alert thresholds (> 80% warning, > 95% critical) are informational and
recomputed on every status query.

Author: Platform Engineering Team
Version: 1.0.0
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

import structlog

from hostreamly_core.quota.plans import (
    GB,
    PLAN_LIMITS,
    PlanLimits,
    PlanResolver,
    Tier,
    UserRecord,
)
from hostreamly_core.quota.usage import UsageAggregator, UsageSnapshot

logger = structlog.get_logger(__name__)

WARNING_THRESHOLD = 80.0
CRITICAL_THRESHOLD = 95.0


class QuotaResource(str, Enum):
    """Quota-governed resources"""

    STORAGE = "storage"
    BANDWIDTH = "bandwidth"
    VIDEOS = "videos"
    LIVE_STREAMING = "liveStreaming"


class QuotaDenial(str, Enum):
    """Why a quota check failed"""

    LIMIT_EXCEEDED = "limit_exceeded"
    NOT_IN_PLAN = "not_in_plan"
    ACTIVE_STREAM = "active_stream"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class UserDirectory(Protocol):
    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...


class InMemoryUserDirectory:
    """Dictionary-backed user lookup"""

    def __init__(self, users: Optional[List[UserRecord]] = None):
        self._users: Dict[str, UserRecord] = {u.id: u for u in users or []}

    def add(self, user: UserRecord) -> None:
        self._users[user.id] = user

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self._users.get(user_id)


def usage_percentage(current: float, limit: float) -> float:
    """Percentage of ``limit`` used. Zero or unlimited limits report 0."""
    if limit <= 0:
        return 0.0
    return (current / limit) * 100


@dataclass
class QuotaCheck:
    """Result of a quota check"""

    allowed: bool
    resource: QuotaResource
    tier: Tier
    current_usage: Optional[float]
    limit: float
    percentage: float = 0.0
    delta: float = 0
    denial: Optional[QuotaDenial] = None
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "allowed": self.allowed,
            "resource": self.resource.value,
            "tier": self.tier.value,
            "currentUsage": self.current_usage,
            "limit": self.limit,
            "percentage": self.percentage,
        }
        if self.denial:
            data["denial"] = self.denial.value
        data.update(self.details)
        return data


@dataclass
class QuotaAlert:
    resource: QuotaResource
    severity: AlertSeverity
    percentage: float
    message: str


@dataclass
class QuotaStatus:
    """Usage, limits, percentages and alerts for one user"""

    tier: Tier
    limits: PlanLimits
    usage: UsageSnapshot
    percentages: Dict[QuotaResource, float]
    alerts: List[QuotaAlert] = field(default_factory=list)

    @property
    def has_alerts(self) -> bool:
        return bool(self.alerts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.tier.value,
            "limits": self.limits.to_dict(),
            "usage": self.usage.to_dict(),
            "percentages": {r.value: p for r, p in self.percentages.items()},
            "alerts": [
                {
                    "type": a.resource.value,
                    "severity": a.severity.value,
                    "message": a.message,
                    "percentage": a.percentage,
                }
                for a in self.alerts
            ],
            "hasAlerts": self.has_alerts,
        }


def alert_for(resource: QuotaResource, label: str, percentage: float) -> Optional[QuotaAlert]:
    if percentage <= WARNING_THRESHOLD:
        return None
    severity = (
        AlertSeverity.CRITICAL if percentage > CRITICAL_THRESHOLD else AlertSeverity.WARNING
    )
    return QuotaAlert(
        resource=resource,
        severity=severity,
        percentage=percentage,
        message=f"{label} at {percentage:.1f}%",
    )


class QuotaGate:
    """
    Compares a prospective delta against plan limits minus current usage.

    Usage:
        gate = QuotaGate(aggregator, users)
        check = await gate.check("usr_123", QuotaResource.STORAGE, upload_size)
        if not check.allowed:
            ...

    ``BackendUnavailable`` from the aggregator propagates to the caller.
    """

    def __init__(
        self,
        aggregator: UsageAggregator,
        users: UserDirectory,
        resolver: Optional[PlanResolver] = None,
    ):
        self._aggregator = aggregator
        self._users = users
        self._resolver = resolver or PlanResolver()
        self._logger = structlog.get_logger("quota_gate")

    async def plan_for(self, user_id: str) -> Tuple[Tier, PlanLimits]:
        """Tier and limits for a user. Unknown users get the anonymous plan."""
        user = await self._users.get_user(user_id)
        if user is None:
            self._logger.warning("quota_unknown_user", user_id=user_id)
            return Tier.ANONYMOUS, PLAN_LIMITS[Tier.ANONYMOUS]
        tier = self._resolver.resolve(user)
        return tier, self._resolver.limits_for(tier)

    async def check(
        self,
        user_id: str,
        resource: QuotaResource,
        delta: float = 0,
    ) -> QuotaCheck:
        """Decide whether ``delta`` more of ``resource`` fits the user's plan."""
        tier, limits = await self.plan_for(user_id)

        if resource == QuotaResource.STORAGE:
            result = await self._check_storage(user_id, tier, limits, delta)
        elif resource == QuotaResource.BANDWIDTH:
            result = await self._check_bandwidth(user_id, tier, limits, delta)
        elif resource == QuotaResource.VIDEOS:
            result = await self._check_videos(user_id, tier, limits, delta)
        elif resource == QuotaResource.LIVE_STREAMING:
            result = await self._check_live_streaming(user_id, tier, limits, delta)
        else:
            raise ValueError(f"Unknown quota resource: {resource}")

        if not result.allowed:
            self._logger.warning(
                "quota_denied",
                user_id=user_id,
                tier=tier.value,
                resource=resource.value,
                denial=result.denial.value if result.denial else None,
                current_usage=result.current_usage,
                limit=result.limit,
                delta=delta,
            )
        return result

    async def _check_storage(
        self, user_id: str, tier: Tier, limits: PlanLimits, delta: float
    ) -> QuotaCheck:
        usage = await self._aggregator.usage(user_id)
        limit = limits.storage_bytes
        current = usage.storage_bytes
        allowed = current + delta <= limit

        return QuotaCheck(
            allowed=allowed,
            resource=QuotaResource.STORAGE,
            tier=tier,
            current_usage=current,
            limit=limit,
            percentage=usage_percentage(current, limit),
            delta=delta,
            denial=None if allowed else QuotaDenial.LIMIT_EXCEEDED,
            message="" if allowed else (
                f"Your {tier.value} plan allows {limits.storage_gb:g}GB of storage. "
                f"You are currently using {current / GB:.2f}GB."
            ),
        )

    async def _check_bandwidth(
        self, user_id: str, tier: Tier, limits: PlanLimits, delta: float
    ) -> QuotaCheck:
        usage = await self._aggregator.usage(user_id)
        limit = limits.bandwidth_bytes_per_month
        current = usage.bandwidth_bytes_this_month
        allowed = current + delta <= limit

        return QuotaCheck(
            allowed=allowed,
            resource=QuotaResource.BANDWIDTH,
            tier=tier,
            current_usage=current,
            limit=limit,
            percentage=usage_percentage(current, limit),
            delta=delta,
            denial=None if allowed else QuotaDenial.LIMIT_EXCEEDED,
            message="" if allowed else (
                f"Your {tier.value} plan allows {limits.bandwidth_tb_per_month:g}TB "
                f"of bandwidth per month."
            ),
        )

    async def _check_videos(
        self, user_id: str, tier: Tier, limits: PlanLimits, delta: float
    ) -> QuotaCheck:
        if limits.unlimited_videos:
            return QuotaCheck(
                allowed=True,
                resource=QuotaResource.VIDEOS,
                tier=tier,
                current_usage=None,
                limit=limits.max_videos,
                delta=delta,
            )

        usage = await self._aggregator.usage(user_id)
        current = usage.video_count
        # A full library rejects new videos even when no count is given.
        allowed = current < limits.max_videos and current + delta <= limits.max_videos

        return QuotaCheck(
            allowed=allowed,
            resource=QuotaResource.VIDEOS,
            tier=tier,
            current_usage=current,
            limit=limits.max_videos,
            percentage=usage_percentage(current, limits.max_videos),
            delta=delta,
            denial=None if allowed else QuotaDenial.LIMIT_EXCEEDED,
            message="" if allowed else (
                f"Your {tier.value} plan allows {limits.max_videos} videos. "
                f"You currently have {current} videos."
            ),
        )

    async def _check_live_streaming(
        self, user_id: str, tier: Tier, limits: PlanLimits, delta: float
    ) -> QuotaCheck:
        limit = limits.live_streaming_minutes_per_month

        if limit <= 0:
            return QuotaCheck(
                allowed=False,
                resource=QuotaResource.LIVE_STREAMING,
                tier=tier,
                current_usage=None,
                limit=0,
                delta=delta,
                denial=QuotaDenial.NOT_IN_PLAN,
                message=(
                    f"Live streaming is not available in your {tier.value} plan. "
                    f"Please upgrade your plan."
                ),
            )

        usage = await self._aggregator.usage(user_id)
        current = usage.live_stream_minutes_this_month
        percentage = usage_percentage(current, limit)

        if current >= limit or current + delta > limit:
            return QuotaCheck(
                allowed=False,
                resource=QuotaResource.LIVE_STREAMING,
                tier=tier,
                current_usage=current,
                limit=limit,
                percentage=percentage,
                delta=delta,
                denial=QuotaDenial.LIMIT_EXCEEDED,
                message=(
                    f"You have used {usage.live_stream_hours_this_month:.1f} of "
                    f"{limits.live_streaming_hours_per_month:g} hours this month."
                ),
            )

        active = await self._aggregator.live_stream_count(user_id)
        if active > 0:
            return QuotaCheck(
                allowed=False,
                resource=QuotaResource.LIVE_STREAMING,
                tier=tier,
                current_usage=current,
                limit=limit,
                percentage=percentage,
                delta=delta,
                denial=QuotaDenial.ACTIVE_STREAM,
                message=(
                    "You already have an active live stream. "
                    "Only one concurrent stream is allowed."
                ),
                details={"activeStreams": active},
            )

        return QuotaCheck(
            allowed=True,
            resource=QuotaResource.LIVE_STREAMING,
            tier=tier,
            current_usage=current,
            limit=limit,
            percentage=percentage,
            delta=delta,
            details={
                "maxConcurrentViewers": limits.max_concurrent_viewers,
                "usedHours": usage.live_stream_hours_this_month,
            },
        )

    async def status(self, user_id: str) -> QuotaStatus:
        """Usage, limits and threshold alerts for a user."""
        tier, limits = await self.plan_for(user_id)
        usage = await self._aggregator.usage(user_id)

        percentages = {
            QuotaResource.STORAGE: usage_percentage(
                usage.storage_bytes, limits.storage_bytes
            ),
            QuotaResource.BANDWIDTH: usage_percentage(
                usage.bandwidth_bytes_this_month, limits.bandwidth_bytes_per_month
            ),
            QuotaResource.VIDEOS: usage_percentage(usage.video_count, limits.max_videos),
            QuotaResource.LIVE_STREAMING: usage_percentage(
                usage.live_stream_minutes_this_month,
                limits.live_streaming_minutes_per_month,
            ),
        }

        labels = {
            QuotaResource.STORAGE: "Storage usage",
            QuotaResource.BANDWIDTH: "Bandwidth usage",
            QuotaResource.VIDEOS: "Video count",
            QuotaResource.LIVE_STREAMING: "Live streaming hours",
        }
        alerts = []
        for resource, percentage in percentages.items():
            alert = alert_for(resource, labels[resource], percentage)
            if alert:
                alerts.append(alert)

        return QuotaStatus(
            tier=tier,
            limits=limits,
            usage=usage,
            percentages=percentages,
            alerts=alerts,
        )


__all__ = [
    "WARNING_THRESHOLD",
    "CRITICAL_THRESHOLD",
    "QuotaResource",
    "QuotaDenial",
    "AlertSeverity",
    "UserDirectory",
    "InMemoryUserDirectory",
    "QuotaCheck",
    "QuotaAlert",
    "QuotaStatus",
    "QuotaGate",
    "usage_percentage",
    "alert_for",
]
