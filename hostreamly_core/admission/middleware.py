"""
Admission Middleware for FastAPI

Adapts HTTP requests to the admission orchestrator:
- Client IP from proxy headers, falling back to the socket peer
- Identity from an injected resolver (defaults to ``request.state.user``)
- Endpoint class from a path-prefix map
- Denials rendered as JSON with the rate-limit headers
"""

import inspect
from typing import Awaitable, Callable, Dict, List, Optional, Union

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from hostreamly_core.admission.models import (
    Identity,
    RequestDescriptor,
    ResourceDelta,
)
from hostreamly_core.admission.orchestrator import AdmissionOrchestrator
from hostreamly_core.core.config import GENERAL_ENDPOINT
from hostreamly_core.quota.plans import Tier

logger = structlog.get_logger(__name__)

IdentityResolver = Callable[[Request, str], Union[Identity, Awaitable[Identity]]]
ResourceResolver = Callable[[Request], Optional[ResourceDelta]]

DEFAULT_EXCLUDED_PATHS = [
    "/health",
    "/healthz",
    "/ready",
    "/metrics",
    "/docs",
    "/redoc",
    "/openapi.json",
]

DEFAULT_ENDPOINT_CLASSES = {
    "/api/auth/password-reset": "password-reset",
    "/api/auth": "auth",
    "/api/upload": "upload",
    "/api/stream": "stream",
    "/api/analytics": "analytics",
    "/api/live": "live-stream",
    "/api/drm": "drm",
    "/api/webhooks": "webhook",
}


def extract_client_ip(request: Request) -> str:
    """
    Extract the client IP address.

    Priority:
    1. X-Forwarded-For (first hop)
    2. X-Real-IP
    3. CF-Connecting-IP
    4. Socket peer
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for header in ("X-Real-IP", "CF-Connecting-IP"):
        value = request.headers.get(header)
        if value:
            return value.strip()

    return request.client.host if request.client else "unknown"


def default_identity_resolver(request: Request, ip: str) -> Identity:
    """Identity from ``request.state.user`` as set by the auth layer."""
    user = getattr(request.state, "user", None)
    if user is None or not hasattr(user, "id"):
        return Identity.anonymous(ip)

    tier = getattr(user, "tier", Tier.FREE)
    if not isinstance(tier, Tier):
        try:
            tier = Tier(tier)
        except ValueError:
            logger.warning("unknown_user_tier", user_id=user.id, tier=tier)
            tier = Tier.FREE
    return Identity.user(user.id, role=getattr(user, "role", "user"), tier=tier)


def resolve_endpoint_class(path: str, endpoint_classes: Dict[str, str]) -> str:
    """Endpoint class for ``path`` by longest matching prefix."""
    best = GENERAL_ENDPOINT
    best_len = -1
    for prefix, endpoint_class in endpoint_classes.items():
        if path.startswith(prefix) and len(prefix) > best_len:
            best, best_len = endpoint_class, len(prefix)
    return best


class AdmissionMiddleware(BaseHTTPMiddleware):
    """
    Runs every request through the admission orchestrator.

    Admitted requests get the rate-limit headers of the deciding window;
    denied requests never reach the route.
    """

    def __init__(
        self,
        app: ASGIApp,
        orchestrator: AdmissionOrchestrator,
        identity_resolver: Optional[IdentityResolver] = None,
        resource_resolver: Optional[ResourceResolver] = None,
        endpoint_classes: Optional[Dict[str, str]] = None,
        exclude_paths: Optional[List[str]] = None,
    ):
        super().__init__(app)
        self.orchestrator = orchestrator
        self.identity_resolver = identity_resolver or default_identity_resolver
        self.resource_resolver = resource_resolver
        self.endpoint_classes = (
            endpoint_classes if endpoint_classes is not None else dict(DEFAULT_ENDPOINT_CLASSES)
        )
        self.exclude_paths = exclude_paths if exclude_paths is not None else list(DEFAULT_EXCLUDED_PATHS)

    async def _identity(self, request: Request, ip: str) -> Identity:
        identity = self.identity_resolver(request, ip)
        if inspect.isawaitable(identity):
            identity = await identity
        return identity

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with admission control."""
        path = request.url.path
        if any(path.startswith(p) for p in self.exclude_paths):
            return await call_next(request)

        ip = extract_client_ip(request)
        descriptor = RequestDescriptor(
            identity=await self._identity(request, ip),
            ip=ip,
            user_agent=request.headers.get("User-Agent"),
            path=path,
            method=request.method,
            endpoint_class=resolve_endpoint_class(path, self.endpoint_classes),
            resource_delta=self.resource_resolver(request) if self.resource_resolver else None,
        )

        decision = await self.orchestrator.admit(descriptor)
        rendered = decision.to_response()

        if not decision.allow:
            logger.info(
                "request_denied",
                path=path,
                ip=ip,
                reason=decision.reason.value,
                gate=decision.gate.value if decision.gate else None,
                status_code=rendered.status_code,
            )
            return JSONResponse(
                status_code=rendered.status_code,
                content=rendered.body,
                headers=rendered.headers,
            )

        request.state.admission = decision
        response = await call_next(request)
        for name, value in rendered.headers.items():
            response.headers[name] = value
        if decision.degraded:
            response.headers["X-Admission-Degraded"] = "true"
        return response


__all__ = [
    "AdmissionMiddleware",
    "DEFAULT_ENDPOINT_CLASSES",
    "DEFAULT_EXCLUDED_PATHS",
    "default_identity_resolver",
    "extract_client_ip",
    "resolve_endpoint_class",
]
