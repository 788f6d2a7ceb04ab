"""Nurse dashboard: profile lookup, task lists, metrics and task detail."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from clinicflow.core.labels import Labels
from clinicflow.integrations.clinic_api import (
    ClinicApiClient,
    ClinicApiError,
    as_list,
    count_of,
)
from clinicflow.services.name_resolver_service import EntityResolver
from clinicflow.services.reference_service import normalize_id, normalize_task
from clinicflow.services.task_lifecycle_service import (
    TaskBucket,
    TaskLifecycleManager,
    classify,
    is_scheduled_for_today,
    partition,
    restriction_message,
)

logger = logging.getLogger(__name__)

_NURSE_ENDPOINTS = ("nurses/me/", "nurses/by-user/{user}/", "nurses/{user}/")


class NurseProfileNotFound(ValueError):
    """Raised when no nurse id can be derived for the current user."""


def parse_positive_id(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return number if number > 0 else None


def _get(mapping: Any, *path: str) -> Any:
    current = mapping
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _first_positive(candidates: list[Any]) -> int | None:
    for candidate in candidates:
        parsed = parse_positive_id(candidate)
        if parsed is not None:
            return parsed
    return None


def nurse_id_from_profile(me: Mapping[str, Any]) -> int | None:
    return _first_positive(
        [
            _get(me, "profile", "nurse_id"),
            _get(me, "profile", "id"),
            _get(me, "profile", "nurse", "id"),
            _get(me, "profile", "nurse", "pk"),
            _get(me, "profile", "profile_id"),
            me.get("nurse_id"),
        ]
    )


def _nurse_id_from_record(data: Any) -> int | None:
    return _first_positive(
        [
            _get(data, "id"),
            _get(data, "nurse", "id"),
            _get(data, "nurse_id"),
            _get(data, "profile", "id"),
            _get(data, "profile", "nurse_id"),
        ]
    )


async def resolve_nurse_id(
    client: ClinicApiClient,
    *,
    labels: Labels,
    me: Mapping[str, Any] | None = None,
) -> int:
    """Find the nurse id: profile fields first, then the nurse endpoints in order."""

    if me is None:
        payload = await client.get("me/")
        me = payload if isinstance(payload, Mapping) else {}

    direct = nurse_id_from_profile(me)
    if direct is not None:
        return direct

    user_id = normalize_id(me.get("id"))
    for template in _NURSE_ENDPOINTS:
        if "{user}" in template and user_id is None:
            continue
        path = template.format(user=user_id)
        try:
            data = await client.get(path)
        except ClinicApiError as exc:
            logger.debug("Nurse lookup via %s failed: %s", path, exc)
            continue
        found = _nurse_id_from_record(data)
        if found is not None:
            return found
    raise NurseProfileNotFound(labels.message("nurse.profile_not_found"))


def _assigned_to(task: Any, nurse_id: str) -> bool:
    return isinstance(task, Mapping) and normalize_id(task.get("assigned_nurse")) == nurse_id


async def list_nurse_tasks(client: ClinicApiClient, nurse_id: Any) -> list[Any]:
    """Tasks of one nurse, trying ``nurse_id``, then ``nurse``, then an unfiltered list."""

    key = normalize_id(nurse_id)
    if key is None:
        return []
    for param in ("nurse_id", "nurse"):
        try:
            return as_list(await client.get("tasks/", params={param: key}))
        except ClinicApiError as exc:
            logger.debug("Task list filtered by %s failed: %s", param, exc)
    try:
        payload = await client.get("tasks/")
    except ClinicApiError as exc:
        logger.warning("Could not load tasks for nurse %s: %s", key, exc)
        return []
    return [task for task in as_list(payload) if _assigned_to(task, key)]


@dataclass(slots=True)
class TaskView:
    task: Mapping[str, Any]
    bucket: TaskBucket
    pet_name: str
    service_name: str
    scheduled_today: bool
    card_number: str | None = None


@dataclass(slots=True)
class DashboardMetrics:
    todo: int = 0
    done: int = 0
    done_today: int = 0
    medicines: int = 0
    pets: int = 0


@dataclass(slots=True)
class NurseDashboard:
    nurse_id: int
    todo: list[TaskView] = field(default_factory=list)
    done_today: list[TaskView] = field(default_factory=list)
    done: list[TaskView] = field(default_factory=list)
    metrics: DashboardMetrics = field(default_factory=DashboardMetrics)
    medicines: list[Any] = field(default_factory=list)


def task_view(
    manager: TaskLifecycleManager,
    resolver: EntityResolver,
    task: Mapping[str, Any],
    bucket: TaskBucket,
) -> TaskView:
    refs = normalize_task(task)
    return TaskView(
        task=task,
        bucket=bucket,
        pet_name=resolver.display_pet_name(refs),
        service_name=resolver.display_service_name(refs),
        scheduled_today=is_scheduled_for_today(task, now=manager.now(), tz=manager.tz),
        card_number=refs.card_number,
    )


async def _optional(client: ClinicApiClient, path: str) -> Any:
    try:
        return await client.get(path)
    except ClinicApiError as exc:
        logger.warning("Dashboard fetch %s failed: %s", path, exc)
        return None


async def load_dashboard(
    client: ClinicApiClient,
    resolver: EntityResolver,
    manager: TaskLifecycleManager,
    nurse_id: int,
    *,
    resolve_wait: float,
) -> NurseDashboard:
    """Load lists and metrics; display names get ``resolve_wait`` seconds to settle."""

    tasks, medicines, taken_rooms = await asyncio.gather(
        list_nurse_tasks(client, nurse_id),
        _optional(client, "medicines/"),
        _optional(client, "stationary-rooms/taken/"),
    )
    buckets = partition(tasks, now=manager.now(), tz=manager.tz)
    for task in buckets.all():
        resolver.prefetch_task(task)
    await resolver.settle(resolve_wait)

    dashboard = NurseDashboard(
        nurse_id=nurse_id,
        metrics=DashboardMetrics(
            todo=len(buckets.todo),
            done=len(buckets.done),
            done_today=len(buckets.done_today),
            medicines=count_of(medicines),
            pets=count_of(taken_rooms),
        ),
        medicines=as_list(medicines),
    )
    for bucket in TaskBucket:
        views = [task_view(manager, resolver, task, bucket) for task in buckets.bucket(bucket)]
        setattr(dashboard, bucket.value, views)
    return dashboard


@dataclass(slots=True)
class TaskDetail:
    view: TaskView
    origin: TaskBucket
    can_complete: bool
    restriction: str | None
    details_loading: bool


async def open_task_detail(
    client: ClinicApiClient,
    resolver: EntityResolver,
    manager: TaskLifecycleManager,
    task_id: Any,
    origin: TaskBucket,
    *,
    labels: Labels,
) -> TaskDetail:
    """Fetch a task, open it in the detail view and resolve its names."""

    task = await client.get(f"tasks/{normalize_id(task_id)}/")
    if not isinstance(task, Mapping):
        raise ValueError(labels.message("task.update_error"))
    opened = manager.open_task(task, origin)
    await manager.load_details(task)
    block = manager.verdict(task, origin)
    return TaskDetail(
        view=task_view(
            manager, resolver, task, classify(task, now=manager.now(), tz=manager.tz)
        ),
        origin=origin,
        can_complete=block is None,
        restriction=restriction_message(block, labels),
        details_loading=opened.details_loading,
    )


__all__ = [
    "DashboardMetrics",
    "NurseDashboard",
    "NurseProfileNotFound",
    "TaskDetail",
    "TaskView",
    "list_nurse_tasks",
    "load_dashboard",
    "nurse_id_from_profile",
    "open_task_detail",
    "parse_positive_id",
    "resolve_nurse_id",
    "task_view",
]
