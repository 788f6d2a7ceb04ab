"""Common API dependencies."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from asgi_correlation_id import correlation_id
from fastapi import Depends, Header, HTTPException, Request, status

from clinicflow.core.labels import Labels, get_labels
from clinicflow.core.settings import (
    WorkflowSettings,
    get_upstream_settings,
    get_workflow_settings,
)
from clinicflow.integrations.clinic_api import ClinicApiClient, ClinicApiError
from clinicflow.services.session_service import DashboardSession, SessionRegistry

SESSION_HEADER = "X-Dashboard-Session"


def get_base_client(request: Request) -> ClinicApiClient:
    """Return the shared upstream client, creating it on first use."""
    client = getattr(request.app.state, "clinic_api", None)
    if client is None:
        client = ClinicApiClient.build(get_upstream_settings())
        request.app.state.clinic_api = client
    return client


def get_request_labels() -> Labels:
    return get_labels()


def get_workflow() -> WorkflowSettings:
    return get_workflow_settings()


async def get_clinic_client(
    base: Annotated[ClinicApiClient, Depends(get_base_client)],
    authorization: Annotated[str | None, Header()] = None,
) -> ClinicApiClient:
    """Bind the caller's credentials and the request id to upstream calls."""
    return base.bind(authorization=authorization, request_id=correlation_id.get())


def get_session_registry(
    request: Request,
    workflow: Annotated[WorkflowSettings, Depends(get_workflow)],
    labels: Annotated[Labels, Depends(get_request_labels)],
) -> SessionRegistry:
    registry = getattr(request.app.state, "sessions", None)
    if registry is None:
        registry = SessionRegistry(workflow, labels=labels)
        request.app.state.sessions = registry
    return registry


async def get_dashboard_session(
    client: Annotated[ClinicApiClient, Depends(get_clinic_client)],
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
    session_id: Annotated[str | None, Header(alias=SESSION_HEADER)] = None,
) -> AsyncGenerator[DashboardSession, None]:
    """Yield the caller's dashboard session, or a throwaway one without the header."""
    if session_id:
        yield await registry.acquire(session_id, client)
        return
    session = registry.create(client)
    try:
        yield session
    finally:
        await session.aclose()


def upstream_error(exc: ClinicApiError, fallback: str = "Clinic API request failed") -> HTTPException:
    """Translate an upstream failure, keeping client errors and their detail."""
    code = exc.status_code
    if code is None or not 400 <= code < 500:
        code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail=exc.describe(fallback))
