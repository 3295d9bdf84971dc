"""Geographic lookup contract.

No geo database ships with the platform. Deployments plug one in by
implementing ``GeoLookup``; the default reports every address as unknown.
"""

from typing import Optional, Protocol

UNKNOWN_COUNTRY = "Unknown"


class GeoLookup(Protocol):
    def country(self, ip: str) -> Optional[str]:
        """ISO country code for ``ip``, or None if unknown."""
        ...


class NullGeoLookup:
    def country(self, ip: str) -> Optional[str]:
        return None


def country_for(lookup: GeoLookup, ip: str) -> str:
    """Country for ``ip``, falling back to ``UNKNOWN_COUNTRY``."""
    return lookup.country(ip) or UNKNOWN_COUNTRY
