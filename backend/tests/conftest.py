"""Test fixtures for the clinic workflow gateway."""
from __future__ import annotations

import asyncio
import json
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from urllib.parse import parse_qsl

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("CLINIC_API_BASE", "http://clinic.test/api/v1/")
os.environ.setdefault("LOCAL_TIMEZONE", "UTC")
os.environ.setdefault("LABEL_LOCALE", "ru")
os.environ.setdefault("RESOLVE_WAIT_SECONDS", "1")

from clinicflow.api import deps
from clinicflow.core.labels import Labels, get_labels
from clinicflow.core.settings import WorkflowSettings, resolve_timezone
from clinicflow.integrations.clinic_api import ClinicApiClient
from clinicflow.main import app
from clinicflow.services.session_service import SessionRegistry

CLINIC_BASE = "http://clinic.test/api/v1/"
FIXED_NOW = datetime(2026, 3, 14, 10, 30, tzinfo=UTC)


@dataclass
class RecordedCall:
    """One request received by the fake clinic API."""

    method: str
    path: str
    params: dict[str, str]
    body: Any
    headers: httpx.Headers


Handler = Callable[[RecordedCall], Any]


@dataclass
class Route:
    status: int = 200
    payload: Any = None
    handler: Handler | None = None
    delay: float = 0.0


class FakeClinicBackend:
    """Route table standing in for the clinic REST API; every call is recorded."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.calls: list[RecordedCall] = []

    def add(
        self,
        method: str,
        path: str,
        payload: Any = None,
        *,
        status: int = 200,
        handler: Handler | None = None,
        delay: float = 0.0,
    ) -> None:
        self.routes[(method.upper(), path.lstrip("/"))] = Route(
            status=status, payload=payload, handler=handler, delay=delay
        )

    def calls_to(self, method: str | None = None, path: str | None = None) -> list[RecordedCall]:
        return [
            call
            for call in self.calls
            if (method is None or call.method == method.upper())
            and (path is None or call.path == path.lstrip("/"))
        ]

    @property
    def requests(self) -> list[tuple[str, str]]:
        return [(call.method, call.path) for call in self.calls]

    def mutations(self) -> list[tuple[str, str]]:
        return [(call.method, call.path) for call in self.calls if call.method != "GET"]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/api/v1/"):
            path = path[len("/api/v1/"):]
        body: Any = None
        content_type = request.headers.get("content-type", "")
        raw = await request.aread()
        if raw and content_type.startswith("application/json"):
            body = json.loads(raw)
        elif raw:
            body = raw
        call = RecordedCall(
            method=request.method,
            path=path,
            params=dict(parse_qsl(request.url.query.decode())),
            body=body,
            headers=request.headers,
        )
        self.calls.append(call)

        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(404, json={"detail": "Not found."})
        if route.delay:
            await asyncio.sleep(route.delay)
        if route.handler is not None:
            result = route.handler(call)
            if isinstance(result, httpx.Response):
                return result
            status, payload = result
            return httpx.Response(status, json=payload)
        if route.status == 204:
            return httpx.Response(204)
        return httpx.Response(route.status, json=route.payload)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture()
def backend() -> FakeClinicBackend:
    return FakeClinicBackend()


@pytest_asyncio.fixture()
async def clinic_client(backend: FakeClinicBackend) -> AsyncIterator[ClinicApiClient]:
    """Upstream client wired to the fake clinic API."""
    http = httpx.AsyncClient(base_url=CLINIC_BASE, transport=backend.transport())
    client = ClinicApiClient(http)
    yield client
    await client.aclose()


@pytest.fixture()
def labels() -> Labels:
    return get_labels("ru")


@pytest.fixture()
def workflow() -> WorkflowSettings:
    return WorkflowSettings(
        timezone=resolve_timezone("UTC"),
        locale="ru",
        resolve_wait_seconds=1.0,
        session_idle_seconds=3600,
    )


def fixed_clock() -> datetime:
    return FIXED_NOW


@pytest_asyncio.fixture()
async def api_client(
    clinic_client: ClinicApiClient,
    workflow: WorkflowSettings,
    labels: Labels,
) -> AsyncIterator[AsyncClient]:
    """Gateway client; upstream calls go to the fake clinic API."""
    registry = SessionRegistry(workflow, labels=labels, clock=fixed_clock)
    app.state.sessions = registry
    app.dependency_overrides[deps.get_base_client] = lambda: clinic_client
    app.dependency_overrides[deps.get_workflow] = lambda: workflow
    app.dependency_overrides[deps.get_request_labels] = lambda: labels
    app.dependency_overrides[deps.get_session_registry] = lambda: registry
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
        await registry.aclose()


async def drain(awaitables: list[Awaitable[Any]]) -> list[Any]:
    return list(await asyncio.gather(*awaitables))
