"""Health endpoint smoke test."""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from clinicflow.main import app


@pytest.mark.asyncio
async def test_healthcheck_returns_ok() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/v1/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["service"] == "Elvet Clinic Workflow Gateway"
    assert payload["upstream"] == "http://clinic.test/api/v1/"


@pytest.mark.asyncio
async def test_security_and_request_id_headers_are_set() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/v1/health")
    assert response.headers.get("x-content-type-options") == "nosniff"
    assert response.headers.get("x-request-id")


@pytest.mark.asyncio
async def test_upstream_health_reports_reachable_api(api_client, backend) -> None:
    backend.add("GET", "", status=401, payload={"detail": "Учетные данные не были предоставлены."})

    response = await api_client.get("/api/v1/health/upstream")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["upstream_status"] == 401


@pytest.mark.asyncio
async def test_upstream_health_when_api_is_down(api_client, backend) -> None:
    def refuse(call):
        raise httpx.ConnectError("connection refused")

    backend.add("GET", "", handler=refuse)

    response = await api_client.get("/api/v1/health/upstream")

    assert response.status_code == 503
    assert response.json() == {
        "status": "unreachable",
        "upstream": "http://clinic.test/api/v1/",
        "upstream_status": None,
    }
