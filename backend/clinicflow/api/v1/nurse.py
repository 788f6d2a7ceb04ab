"""Nurse dashboard and task endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from clinicflow.api import deps
from clinicflow.core.labels import Labels
from clinicflow.core.settings import WorkflowSettings
from clinicflow.integrations.clinic_api import ClinicApiClient, ClinicApiError
from clinicflow.schemas.nurse import (
    NurseDashboardRead,
    NurseIdentityRead,
    TaskCompleteRequest,
    TaskCompletionResponse,
    TaskCreate,
    TaskDetailRead,
)
from clinicflow.services import (
    nurse_dashboard_service,
    task_creation_service,
)
from clinicflow.services.session_service import DashboardSession
from clinicflow.services.task_lifecycle_service import (
    CompletionBlock,
    TaskBucket,
    TaskCompletionRejected,
    TaskUpdateFailed,
)

router = APIRouter()


@router.get("/me", response_model=NurseIdentityRead, summary="Resolve the caller's nurse id")
async def nurse_identity(
    client: Annotated[ClinicApiClient, Depends(deps.get_clinic_client)],
    labels: Annotated[Labels, Depends(deps.get_request_labels)],
) -> NurseIdentityRead:
    try:
        nurse_id = await nurse_dashboard_service.resolve_nurse_id(client, labels=labels)
    except nurse_dashboard_service.NurseProfileNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ClinicApiError as exc:
        raise deps.upstream_error(exc) from exc
    return NurseIdentityRead(nurse_id=nurse_id)


@router.get(
    "/{nurse_id}/dashboard",
    response_model=NurseDashboardRead,
    summary="Task buckets and metrics for a nurse",
)
async def nurse_dashboard(
    nurse_id: int,
    client: Annotated[ClinicApiClient, Depends(deps.get_clinic_client)],
    session: Annotated[DashboardSession, Depends(deps.get_dashboard_session)],
    workflow: Annotated[WorkflowSettings, Depends(deps.get_workflow)],
) -> NurseDashboardRead:
    dashboard = await nurse_dashboard_service.load_dashboard(
        client,
        session.resolver,
        session.tasks,
        nurse_id,
        resolve_wait=workflow.resolve_wait_seconds,
    )
    return NurseDashboardRead.model_validate(dashboard)


@router.get(
    "/tasks/{task_id}",
    response_model=TaskDetailRead,
    summary="Open a task in the detail view",
)
async def task_detail(
    task_id: str,
    client: Annotated[ClinicApiClient, Depends(deps.get_clinic_client)],
    session: Annotated[DashboardSession, Depends(deps.get_dashboard_session)],
    labels: Annotated[Labels, Depends(deps.get_request_labels)],
    origin: TaskBucket = Query(TaskBucket.TODO, description="List the task was opened from"),
) -> TaskDetailRead:
    try:
        detail = await nurse_dashboard_service.open_task_detail(
            client, session.resolver, session.tasks, task_id, origin, labels=labels
        )
    except ClinicApiError as exc:
        raise deps.upstream_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return TaskDetailRead.model_validate(detail)


@router.post(
    "/tasks/{task_id}/complete",
    response_model=TaskCompletionResponse,
    summary="Mark a task as done",
)
async def complete_task(
    task_id: str,
    payload: TaskCompleteRequest,
    client: Annotated[ClinicApiClient, Depends(deps.get_clinic_client)],
    session: Annotated[DashboardSession, Depends(deps.get_dashboard_session)],
    workflow: Annotated[WorkflowSettings, Depends(deps.get_workflow)],
    labels: Annotated[Labels, Depends(deps.get_request_labels)],
) -> TaskCompletionResponse:
    try:
        task = await client.get(f"tasks/{task_id}/")
    except ClinicApiError as exc:
        raise deps.upstream_error(exc) from exc
    if not isinstance(task, dict):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")

    async def _refresh():
        if payload.nurse_id is None:
            return None
        return await nurse_dashboard_service.load_dashboard(
            client,
            session.resolver,
            session.tasks,
            payload.nurse_id,
            resolve_wait=workflow.resolve_wait_seconds,
        )

    try:
        dashboard = await session.tasks.mark_done(task, payload.origin, refresh=_refresh)
    except TaskCompletionRejected as exc:
        if exc.reason is CompletionBlock.ALREADY_DONE:
            return TaskCompletionResponse(completed=False, message=str(exc))
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except TaskUpdateFailed as exc:
        code = exc.status_code
        if code is None or not 400 <= code < 500:
            code = status.HTTP_502_BAD_GATEWAY
        raise HTTPException(status_code=code, detail=str(exc)) from exc

    return TaskCompletionResponse(
        completed=True,
        message=labels.message("task.done"),
        dashboard=NurseDashboardRead.model_validate(dashboard) if dashboard else None,
    )


@router.post(
    "/tasks",
    status_code=status.HTTP_201_CREATED,
    summary="Create a manual task for a card service",
)
async def create_task(
    payload: TaskCreate,
    client: Annotated[ClinicApiClient, Depends(deps.get_clinic_client)],
    labels: Annotated[Labels, Depends(deps.get_request_labels)],
) -> dict:
    try:
        created = await task_creation_service.create_task(
            client,
            card_id=payload.medical_card,
            service_id=payload.service,
            title=payload.title,
            description=payload.description,
            due_date=payload.due_date,
            labels=labels,
        )
    except task_creation_service.TaskCreationError as exc:
        if exc.field is not None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
            ) from exc
        code = exc.status_code if exc.status_code and 400 <= exc.status_code < 500 else 502
        raise HTTPException(status_code=code, detail=str(exc)) from exc
    return created if isinstance(created, dict) else {"result": created}
