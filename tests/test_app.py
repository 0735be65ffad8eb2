"""Health check and the shared error response shape."""
import pytest
from httpx import ASGITransport, AsyncClient

from leadrelay.core.deps import get_db
from leadrelay.core.security import sign_payload
from leadrelay.main import app
from leadrelay.services import client_session_service, feature_service


@pytest.mark.asyncio
async def test_health_reports_ok(client):
    res = await client.get("/health")
    assert res.status_code == 200
    data = res.json()
    assert data["status"] == "ok"
    assert data["env"] == "dev"
    assert data["version"]


@pytest.mark.asyncio
async def test_unknown_route_uses_error_body(client):
    res = await client.get("/api/does-not-exist")
    assert res.status_code == 404
    assert "error" in res.json()


@pytest.mark.asyncio
async def test_validation_errors_are_400_with_field_details(client):
    res = await client.post("/api/client/auth/send-otp", json={"identifier": "4035550100", "method": "fax"})
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "Invalid input"
    assert any(d["field"] == "method" for d in body["details"])


@pytest.mark.asyncio
async def test_unhandled_errors_return_generic_500(db, make_client, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(feature_service, "get_client_toggles", explode)
    acme = make_client()

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app, raise_app_exceptions=False),
            base_url="http://test",
            # Legacy cookie: client without an owner membership
            cookies={client_session_service.COOKIE_NAME: sign_payload(str(acme.id))},
        ) as c:
            res = await c.get("/api/client/features")
    finally:
        app.dependency_overrides.clear()

    assert res.status_code == 500
    assert res.json() == {"error": "Internal server error"}
