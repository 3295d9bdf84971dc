"""
Hostreamly Platform Core
========================

Request-admission and resource-quota control plane for the Hostreamly
video platform.

This package decides, for every inbound request and every
resource-consuming action, whether to admit, throttle or reject it:
- Fixed-window tiered rate limiting
- Progressive penalties for repeat offenders
- Suspicious-activity detection
- Rolling-month resource quota accounting
"""

__version__ = "1.0.0"
