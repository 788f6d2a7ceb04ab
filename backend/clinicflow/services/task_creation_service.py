"""Creation of nurse tasks from a medical card."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from clinicflow.core.labels import Labels
from clinicflow.integrations.clinic_api import ClinicApiClient, ClinicApiError
from clinicflow.services.reference_service import normalize_id
from clinicflow.services.usage_reconciler_service import wire_id

logger = logging.getLogger(__name__)


class TaskCreationError(ValueError):
    """Raised for missing input or an upstream rejection."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.status_code = status_code


def _local_minutes(now: datetime, tz: ZoneInfo) -> str:
    return now.astimezone(tz).strftime("%Y-%m-%dT%H:%M")


async def _post(
    client: ClinicApiClient, path: str, payload: dict[str, Any], labels: Labels
) -> Any:
    try:
        created = await client.post(path, json=payload)
    except ClinicApiError as exc:
        raise TaskCreationError(
            exc.describe(labels.message("task.create_error")),
            status_code=exc.status_code,
        ) from exc
    logger.info("Created task for medical card %s", payload.get("medical_card"))
    return created


async def create_task_from_card(
    client: ClinicApiClient,
    *,
    card_id: Any,
    service_id: Any,
    scheduled_for: str | None = None,
    now: datetime,
    tz: ZoneInfo,
    labels: Labels,
) -> Any:
    """Create a procedure task for a service of the card (defaults to now)."""

    if normalize_id(service_id) is None:
        raise TaskCreationError(labels.message("task.service_required"), field="service")
    payload = {
        "medical_card": wire_id(card_id),
        "service": wire_id(service_id),
        "datetime": (scheduled_for or "").strip() or _local_minutes(now, tz),
    }
    return await _post(client, "tasks/create-from-medical-card/", payload, labels)


async def create_task(
    client: ClinicApiClient,
    *,
    card_id: Any,
    service_id: Any,
    title: str | None,
    description: str | None = None,
    due_date: str | None,
    labels: Labels,
) -> Any:
    """Create a manual task; the backend assigns it to the calling nurse."""

    if normalize_id(service_id) is None:
        raise TaskCreationError(labels.message("task.service_required"), field="service")
    if not (title or "").strip():
        raise TaskCreationError(labels.message("task.title_required"), field="title")
    if not (due_date or "").strip():
        raise TaskCreationError(labels.message("task.due_date_required"), field="due_date")
    payload = {
        "medical_card": wire_id(card_id),
        "service": wire_id(service_id),
        "title": (title or "").strip(),
        "description": (description or "").strip(),
        "due_date": (due_date or "").strip(),
    }
    return await _post(client, "tasks/", payload, labels)


__all__ = ["TaskCreationError", "create_task", "create_task_from_card"]
