"""
Resource Quotas
===============

Plan tiers, usage aggregation and quota enforcement for storage,
bandwidth, video count and live streaming.

Author: Platform Engineering Team
Version: 1.0.0
"""

from hostreamly_core.quota.plans import (
    GB,
    TB,
    UNLIMITED,
    PLAN_LIMITS_VERSION,
    Tier,
    PlanLimits,
    PLAN_LIMITS,
    UserRecord,
    PlanResolver,
    meets_plan,
)
from hostreamly_core.quota.usage import (
    BilledQuantity,
    UsageSnapshot,
    UsageSource,
    UsageRecord,
    InMemoryUsageSource,
    UsageAggregator,
    month_start,
)
from hostreamly_core.quota.gate import (
    QuotaResource,
    QuotaDenial,
    AlertSeverity,
    UserDirectory,
    InMemoryUserDirectory,
    QuotaCheck,
    QuotaAlert,
    QuotaStatus,
    QuotaGate,
)

__all__ = [
    # Plans
    "GB",
    "TB",
    "UNLIMITED",
    "PLAN_LIMITS_VERSION",
    "Tier",
    "PlanLimits",
    "PLAN_LIMITS",
    "UserRecord",
    "PlanResolver",
    "meets_plan",
    # Usage
    "BilledQuantity",
    "UsageSnapshot",
    "UsageSource",
    "UsageRecord",
    "InMemoryUsageSource",
    "UsageAggregator",
    "month_start",
    # Gate
    "QuotaResource",
    "QuotaDenial",
    "AlertSeverity",
    "UserDirectory",
    "InMemoryUserDirectory",
    "QuotaCheck",
    "QuotaAlert",
    "QuotaStatus",
    "QuotaGate",
]
