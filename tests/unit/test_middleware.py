"""Unit tests for the admission middleware."""

from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient

from hostreamly_core.admission.middleware import (
    AdmissionMiddleware,
    extract_client_ip,
    resolve_endpoint_class,
)
from hostreamly_core.admission.models import Identity, ResourceDelta
from hostreamly_core.quota.gate import QuotaResource
from hostreamly_core.quota.plans import Tier

BROWSER_UA = "Mozilla/5.0 (Windows NT 6.1; Win64; x64)"


def _resolve_identity(request: Request, ip: str) -> Identity:
    user_id = request.headers.get("X-Test-User")
    if user_id:
        return Identity.user(user_id, tier=Tier(request.headers.get("X-Test-Tier", "free")))
    return Identity.anonymous(ip)


def _resolve_resource(request: Request):
    size = request.headers.get("X-Upload-Size")
    if size:
        return ResourceDelta(QuotaResource.STORAGE, int(size))
    return None


def _create_app(orchestrator) -> FastAPI:
    app = FastAPI()
    app.add_middleware(
        AdmissionMiddleware,
        orchestrator=orchestrator,
        identity_resolver=_resolve_identity,
        resource_resolver=_resolve_resource,
    )

    @app.get("/api/videos")
    async def list_videos(request: Request):
        return {"degraded": request.state.admission.degraded}

    @app.post("/api/upload")
    async def upload():
        return {"status": "accepted"}

    @app.post("/api/auth/login")
    async def login():
        return {"status": "ok"}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


@pytest_asyncio.fixture
async def client(orchestrator) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client."""
    transport = ASGITransport(app=_create_app(orchestrator))
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"User-Agent": BROWSER_UA},
    ) as ac:
        yield ac


class TestAdmissionMiddleware:
    """Tests for AdmissionMiddleware."""

    @pytest.mark.asyncio
    async def test_admitted_request_gets_headers(self, client):
        """Test admitted responses carry the rate-limit headers."""
        response = await client.get("/api/videos", headers={"X-Forwarded-For": "198.51.100.7"})

        assert response.status_code == 200
        assert response.json() == {"degraded": False}
        assert response.headers["X-RateLimit-Limit"] == "50"
        assert response.headers["X-RateLimit-Remaining"] == "49"

    @pytest.mark.asyncio
    async def test_denied_request_renders_json(self, client):
        """Test a throttled request gets a JSON 429 and never reaches the route."""
        headers = {"X-Forwarded-For": "198.51.100.8"}
        for _ in range(5):
            assert (await client.post("/api/auth/login", headers=headers)).status_code == 200

        response = await client.post("/api/auth/login", headers=headers)

        assert response.status_code == 429
        body = response.json()
        assert body["type"] == "RATE_LIMIT_ERROR"
        assert body["upgradeUrl"] == "/pricing"
        assert "retryAfterSeconds" in body
        assert response.headers["Retry-After"] == str(body["retryAfterSeconds"])
        assert response.headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_quota_denial(self, client):
        """Test resource actions over quota get a 403."""
        response = await client.post(
            "/api/upload",
            headers={
                "X-Test-User": "usr_free",
                "X-Test-Tier": "free",
                "X-Upload-Size": str(101 * 1024 ** 3),
            },
        )

        assert response.status_code == 403
        assert response.json()["type"] == "QUOTA_EXCEEDED"

    @pytest.mark.asyncio
    async def test_suspicious_request(self, client):
        """Test automation tools hit the security block."""
        headers = {"User-Agent": "curl/7.68.0", "X-Real-IP": "192.0.2.50"}
        for _ in range(10):
            await client.get("/api/videos", headers=headers)

        response = await client.get("/api/videos", headers=headers)

        assert response.status_code == 429
        assert response.json()["type"] == "SECURITY_BLOCK"

    @pytest.mark.asyncio
    async def test_excluded_paths_skip_admission(self, client):
        """Test health checks bypass admission."""
        response = await client.get("/health")

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers


class TestRequestHelpers:
    """Tests for request parsing helpers."""

    def _request(self, headers=None, client=("10.0.0.5", 1234)):
        return SimpleNamespace(headers=headers or {}, client=SimpleNamespace(host=client[0]) if client else None)

    def test_forwarded_for_first_hop(self):
        """Test X-Forwarded-For wins and uses the first hop."""
        request = self._request({"X-Forwarded-For": "203.0.113.1, 10.0.0.1", "X-Real-IP": "1.1.1.1"})

        assert extract_client_ip(request) == "203.0.113.1"

    def test_header_priority(self):
        """Test X-Real-IP then CF-Connecting-IP."""
        assert extract_client_ip(
            self._request({"X-Real-IP": "1.1.1.1", "CF-Connecting-IP": "2.2.2.2"})
        ) == "1.1.1.1"
        assert extract_client_ip(self._request({"CF-Connecting-IP": "2.2.2.2"})) == "2.2.2.2"

    def test_peer_and_unknown(self):
        """Test fallback to the socket peer, then unknown."""
        assert extract_client_ip(self._request()) == "10.0.0.5"
        assert extract_client_ip(self._request(client=None)) == "unknown"

    def test_identity_from_request_state(self):
        """Test the auth layer's user becomes a user identity."""
        from hostreamly_core.admission.middleware import default_identity_resolver

        user = SimpleNamespace(id="usr_1", tier="premium", role="user")
        request = SimpleNamespace(state=SimpleNamespace(user=user))

        identity = default_identity_resolver(request, "10.0.0.5")

        assert identity.id == "usr_1"
        assert identity.rate_tier == Tier.PREMIUM

    def test_unknown_tier_falls_back_to_free(self):
        """Test an unrecognised tier value does not break admission."""
        from hostreamly_core.admission.middleware import default_identity_resolver

        user = SimpleNamespace(id="usr_2", tier="platinum")
        request = SimpleNamespace(state=SimpleNamespace(user=user))

        identity = default_identity_resolver(request, "10.0.0.5")

        assert identity.is_authenticated is True
        assert identity.rate_tier == Tier.FREE

    def test_missing_user_is_anonymous(self):
        """Test requests without a user resolve to the anonymous identity."""
        from hostreamly_core.admission.middleware import default_identity_resolver

        request = SimpleNamespace(state=SimpleNamespace())

        assert default_identity_resolver(request, "10.0.0.5").is_authenticated is False

    def test_endpoint_class_longest_prefix(self):
        """Test the most specific prefix wins."""
        classes = {"/api/auth": "auth", "/api/auth/password-reset": "password-reset"}

        assert resolve_endpoint_class("/api/auth/password-reset/confirm", classes) == "password-reset"
        assert resolve_endpoint_class("/api/auth/login", classes) == "auth"
        assert resolve_endpoint_class("/api/videos", classes) == "general"
