"""Medical card edit session, save pipeline and task creation endpoints."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import ValidationError

from clinicflow.api import deps
from clinicflow.core.labels import Labels
from clinicflow.core.settings import WorkflowSettings
from clinicflow.integrations.clinic_api import ClinicApiClient, ClinicApiError, UploadPart
from clinicflow.schemas.medical_card import (
    CardSavePayload,
    CardSaveResponse,
    EditSessionRead,
)
from clinicflow.schemas.nurse import CardTaskCreate
from clinicflow.services import medical_card_service, task_creation_service
from clinicflow.services.session_service import DashboardSession
from clinicflow.services.stationary_service import BookingValidationError

router = APIRouter()


async def _edit_session(
    client: ClinicApiClient,
    session: DashboardSession,
    card_id: str,
    labels: Labels,
    *,
    tz: ZoneInfo,
    reload: bool = False,
) -> medical_card_service.EditSession:
    cached = session.edit_sessions.get(card_id)
    if cached is not None and not reload:
        return cached
    try:
        edit = await medical_card_service.load_edit_session(
            client, card_id, tz=tz, labels=labels
        )
    except ClinicApiError as exc:
        raise deps.upstream_error(exc, labels.message("card.load_error")) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    session.edit_sessions[edit.card_id] = edit
    return edit


@router.get(
    "/{card_id}/edit-session",
    response_model=EditSessionRead,
    summary="Load a card with its usage drafts for editing",
)
async def edit_session(
    card_id: str,
    client: Annotated[ClinicApiClient, Depends(deps.get_clinic_client)],
    session: Annotated[DashboardSession, Depends(deps.get_dashboard_session)],
    workflow: Annotated[WorkflowSettings, Depends(deps.get_workflow)],
    labels: Annotated[Labels, Depends(deps.get_request_labels)],
) -> EditSessionRead:
    edit = await _edit_session(
        client, session, card_id, labels, tz=workflow.timezone, reload=True
    )
    return EditSessionRead.from_session(edit)


async def _attachments(
    files: list[UploadFile], types: list[str]
) -> list[medical_card_service.AttachmentUpload]:
    uploads = []
    for index, upload in enumerate(files):
        raw_type = types[index] if index < len(types) else medical_card_service.AttachmentType.OTHER.value
        try:
            kind = medical_card_service.AttachmentType(raw_type.upper())
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Unsupported attachment type: {raw_type}",
            ) from exc
        uploads.append(
            medical_card_service.AttachmentUpload(
                part=UploadPart(
                    filename=upload.filename or f"attachment-{index + 1}",
                    content=await upload.read(),
                    content_type=upload.content_type or "application/octet-stream",
                ),
                type=kind,
            )
        )
    return uploads


@router.post(
    "/{card_id}/save",
    response_model=CardSaveResponse,
    summary="Save card fields, usage rows and attachments",
)
async def save_card(
    card_id: str,
    client: Annotated[ClinicApiClient, Depends(deps.get_clinic_client)],
    session: Annotated[DashboardSession, Depends(deps.get_dashboard_session)],
    workflow: Annotated[WorkflowSettings, Depends(deps.get_workflow)],
    labels: Annotated[Labels, Depends(deps.get_request_labels)],
    payload: str = Form(..., description="JSON encoded save payload"),
    files: list[UploadFile] | None = File(default=None),
    types: list[str] | None = Form(default=None),
) -> CardSaveResponse:
    try:
        request = CardSavePayload.model_validate_json(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc

    edit = await _edit_session(client, session, card_id, labels, tz=workflow.timezone)
    drafts = dict(edit.drafts)
    for collection, rows in request.usage_lists().items():
        drafts[collection] = edit.drafts[collection].with_flags(rows)
    uploads = await _attachments(files or [], types or [])

    try:
        result = await medical_card_service.save_edit_session(
            client,
            session.resolver,
            edit,
            form=request.form.to_form(),
            drafts=drafts,
            attachments=uploads,
            tz=workflow.timezone,
            labels=labels,
            doctor_id=request.doctor_id,
            page=request.page,
        )
    except medical_card_service.CardLockedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except BookingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"field": exc.field, "message": str(exc)},
        ) from exc
    except medical_card_service.CardSaveFailed as exc:
        code = exc.status_code
        if code is None or not 400 <= code < 500:
            code = status.HTTP_502_BAD_GATEWAY
        raise HTTPException(status_code=code, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc

    if result.status == "saved":
        session.edit_sessions.pop(edit.card_id, None)
    return CardSaveResponse.from_result(result)


@router.post(
    "/{card_id}/tasks",
    status_code=status.HTTP_201_CREATED,
    summary="Create a procedure task from a card service",
)
async def create_card_task(
    card_id: str,
    payload: CardTaskCreate,
    client: Annotated[ClinicApiClient, Depends(deps.get_clinic_client)],
    workflow: Annotated[WorkflowSettings, Depends(deps.get_workflow)],
    labels: Annotated[Labels, Depends(deps.get_request_labels)],
) -> dict:
    try:
        created = await task_creation_service.create_task_from_card(
            client,
            card_id=card_id,
            service_id=payload.service,
            scheduled_for=payload.datetime,
            now=datetime.now(UTC),
            tz=workflow.timezone,
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
