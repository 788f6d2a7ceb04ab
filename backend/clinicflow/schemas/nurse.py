"""Schemas for the nurse dashboard and task endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from clinicflow.services.task_lifecycle_service import TaskBucket


class NurseIdentityRead(BaseModel):
    nurse_id: int


class TaskViewRead(BaseModel):
    """Task row with resolved display names."""

    model_config = ConfigDict(from_attributes=True)

    task: dict[str, Any]
    bucket: TaskBucket
    pet_name: str
    service_name: str
    scheduled_today: bool
    card_number: str | None = None


class DashboardMetricsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    todo: int = 0
    done: int = 0
    done_today: int = 0
    medicines: int = 0
    pets: int = 0


class NurseDashboardRead(BaseModel):
    """Task buckets, metrics and the medicines list for one nurse."""

    model_config = ConfigDict(from_attributes=True)

    nurse_id: int
    todo: list[TaskViewRead] = Field(default_factory=list)
    done_today: list[TaskViewRead] = Field(default_factory=list)
    done: list[TaskViewRead] = Field(default_factory=list)
    metrics: DashboardMetricsRead
    medicines: list[Any] = Field(default_factory=list)


class TaskDetailRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    view: TaskViewRead
    origin: TaskBucket
    can_complete: bool
    restriction: str | None = None
    details_loading: bool = False


class TaskCompleteRequest(BaseModel):
    origin: TaskBucket
    nurse_id: int | None = None


class TaskCompletionResponse(BaseModel):
    completed: bool
    message: str
    dashboard: NurseDashboardRead | None = None


class TaskCreate(BaseModel):
    """Manual task created by a nurse for a card service."""

    medical_card: int | str
    service: int | str | None = None
    title: str | None = None
    description: str | None = None
    due_date: str | None = None


class CardTaskCreate(BaseModel):
    service: int | str | None = None
    datetime: str | None = None


__all__ = [
    "CardTaskCreate",
    "DashboardMetricsRead",
    "NurseDashboardRead",
    "NurseIdentityRead",
    "TaskCompleteRequest",
    "TaskCompletionResponse",
    "TaskCreate",
    "TaskDetailRead",
    "TaskViewRead",
]
