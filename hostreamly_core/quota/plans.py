"""
Plans and Tiers
===============

Static plan limits and derivation of a user's tier.

A user's tier is not stored. It is derived from the raw storage and
bandwidth allowances on the user record, so editing those allowances
reclassifies the user. ``PlanResolver.resolve`` is monotonic: a larger
allowance never yields a lower tier.

Author: Platform Engineering Team
Version: 1.0.0
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple, Union

import structlog

logger = structlog.get_logger(__name__)

GB = 1024 ** 3
TB = 1024 ** 4

UNLIMITED = -1

PLAN_LIMITS_VERSION = "2024.1"


class Tier(str, Enum):
    """Service levels, lowest first"""

    ANONYMOUS = "anonymous"
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def __ge__(self, other):
        if isinstance(other, Tier):
            return self.rank >= other.rank
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, Tier):
            return self.rank > other.rank
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, Tier):
            return self.rank <= other.rank
        return NotImplemented

    def __lt__(self, other):
        if isinstance(other, Tier):
            return self.rank < other.rank
        return NotImplemented


_TIER_ORDER = [
    Tier.ANONYMOUS,
    Tier.FREE,
    Tier.BASIC,
    Tier.PREMIUM,
    Tier.ENTERPRISE,
]


@dataclass(frozen=True)
class PlanLimits:
    """Resource limits for a tier. ``-1`` means unlimited."""

    tier: Tier
    storage_gb: float
    bandwidth_tb_per_month: float
    max_videos: int
    max_users: int
    live_streaming_hours_per_month: float
    max_concurrent_viewers: int

    @property
    def storage_bytes(self) -> int:
        return int(self.storage_gb * GB)

    @property
    def bandwidth_bytes_per_month(self) -> int:
        return int(self.bandwidth_tb_per_month * TB)

    @property
    def live_streaming_minutes_per_month(self) -> float:
        return self.live_streaming_hours_per_month * 60

    @property
    def unlimited_videos(self) -> bool:
        return self.max_videos == UNLIMITED

    def to_dict(self) -> Dict[str, Union[str, float, int]]:
        return {
            "tier": self.tier.value,
            "storageGB": self.storage_gb,
            "bandwidthTBPerMonth": self.bandwidth_tb_per_month,
            "maxVideos": self.max_videos,
            "maxUsers": self.max_users,
            "liveStreamingHoursPerMonth": self.live_streaming_hours_per_month,
            "maxConcurrentViewers": self.max_concurrent_viewers,
        }


PLAN_LIMITS: Dict[Tier, PlanLimits] = {
    Tier.ANONYMOUS: PlanLimits(
        tier=Tier.ANONYMOUS,
        storage_gb=0,
        bandwidth_tb_per_month=0,
        max_videos=0,
        max_users=0,
        live_streaming_hours_per_month=0,
        max_concurrent_viewers=0,
    ),
    Tier.FREE: PlanLimits(
        tier=Tier.FREE,
        storage_gb=100,
        bandwidth_tb_per_month=0.5,
        max_videos=100,
        max_users=1,
        live_streaming_hours_per_month=0,
        max_concurrent_viewers=0,
    ),
    Tier.BASIC: PlanLimits(
        tier=Tier.BASIC,
        storage_gb=500,
        bandwidth_tb_per_month=2,
        max_videos=1000,
        max_users=3,
        live_streaming_hours_per_month=0,
        max_concurrent_viewers=0,
    ),
    Tier.PREMIUM: PlanLimits(
        tier=Tier.PREMIUM,
        storage_gb=1000,
        bandwidth_tb_per_month=5,
        max_videos=5000,
        max_users=5,
        live_streaming_hours_per_month=5,
        max_concurrent_viewers=25,
    ),
    Tier.ENTERPRISE: PlanLimits(
        tier=Tier.ENTERPRISE,
        storage_gb=3500,
        bandwidth_tb_per_month=35,
        max_videos=UNLIMITED,
        max_users=15,
        live_streaming_hours_per_month=15,
        max_concurrent_viewers=60,
    ),
}


# Minimum (storage GB, bandwidth TB/month) allowances for each paid tier.
# Checked from the highest tier down; both thresholds must be met.
DEFAULT_TIER_THRESHOLDS: Tuple[Tuple[Tier, float, float], ...] = (
    (Tier.ENTERPRISE, 1000, 10),
    (Tier.PREMIUM, 1000, 5),
    (Tier.BASIC, 500, 2),
)

ADMIN_ROLES = frozenset({"admin", "super_admin"})


@dataclass
class UserRecord:
    """The slice of a user record the resolver needs"""

    id: str
    role: str = "user"
    storage_limit_bytes: int = 0
    bandwidth_limit_month_bytes: int = 0
    metadata: Dict[str, str] = field(default_factory=dict)


class PlanResolver:
    """
    Derives a user's tier from their configured allowances.

    Usage:
        resolver = PlanResolver()
        tier = resolver.resolve(user)
        limits = resolver.limits_for(tier)
    """

    def __init__(
        self,
        plan_limits: Optional[Dict[Tier, PlanLimits]] = None,
        thresholds: Iterable[Tuple[Tier, float, float]] = DEFAULT_TIER_THRESHOLDS,
        admin_roles: Iterable[str] = ADMIN_ROLES,
    ):
        self._plan_limits = plan_limits or PLAN_LIMITS
        self._thresholds = sorted(thresholds, key=lambda t: t[0].rank, reverse=True)
        self._admin_roles = frozenset(admin_roles)

    def resolve(self, user: UserRecord) -> Tier:
        """Tier for a user. Administrative roles are always enterprise."""
        if user.role in self._admin_roles:
            return Tier.ENTERPRISE

        storage_gb = user.storage_limit_bytes / GB
        bandwidth_tb = user.bandwidth_limit_month_bytes / TB

        for tier, min_storage_gb, min_bandwidth_tb in self._thresholds:
            if storage_gb >= min_storage_gb and bandwidth_tb >= min_bandwidth_tb:
                return tier

        return Tier.FREE

    def limits_for(self, tier: Tier) -> PlanLimits:
        return self._plan_limits[tier]

    def limits_for_user(self, user: UserRecord) -> PlanLimits:
        return self.limits_for(self.resolve(user))


def meets_plan(tier: Tier, required: Union[Tier, Iterable[Tier]]) -> bool:
    """Whether ``tier`` is at least one of the required tiers."""
    if isinstance(required, Tier):
        required = [required]
    return any(tier >= r for r in required)


__all__ = [
    "GB",
    "TB",
    "UNLIMITED",
    "PLAN_LIMITS_VERSION",
    "Tier",
    "PlanLimits",
    "PLAN_LIMITS",
    "DEFAULT_TIER_THRESHOLDS",
    "UserRecord",
    "PlanResolver",
    "meets_plan",
]
