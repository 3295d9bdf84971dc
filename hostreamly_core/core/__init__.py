"""
Core Infrastructure
===================

Configuration and logging shared by every admission component.
"""

from hostreamly_core.core.config import (
    AdmissionSettings,
    EndpointRule,
    FailurePolicy,
    get_settings,
)
from hostreamly_core.core.logging import configure_logging

__all__ = [
    "AdmissionSettings",
    "EndpointRule",
    "FailurePolicy",
    "get_settings",
    "configure_logging",
]
