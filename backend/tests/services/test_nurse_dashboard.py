"""Tests for nurse lookup, task lists and dashboard assembly."""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from clinicflow.services.name_resolver_service import EntityResolver
from clinicflow.services.nurse_dashboard_service import (
    NurseProfileNotFound,
    list_nurse_tasks,
    load_dashboard,
    nurse_id_from_profile,
    open_task_detail,
    parse_positive_id,
    resolve_nurse_id,
)
from clinicflow.services.task_lifecycle_service import TaskBucket, TaskLifecycleManager

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 3, 14, 10, 30, tzinfo=UTC)
TASKS = [
    {
        "id": 1,
        "status": "TODO",
        "datetime": "2026-03-14T09:00:00Z",
        "pet": {"id": 3, "name": "Мурка"},
        "service": 6,
        "medical_card": {"id": 12, "card_number": "MC-12"},
    },
    {
        "id": 2,
        "status": "DONE",
        "completed_at": "2026-03-14T08:00:00Z",
        "schedule": 14,
        "service": {"id": 7, "name": "Осмотр"},
    },
    {"id": 3, "status": "DONE", "updated_at": "2026-03-01T08:00:00Z", "pet": 21},
]


def _wire(client, labels):
    resolver = EntityResolver(client, labels=labels)
    manager = TaskLifecycleManager(
        client, resolver, tz=ZoneInfo("UTC"), labels=labels, clock=lambda: NOW
    )
    return resolver, manager


@pytest.mark.parametrize(("raw", "expected"), [(5, 5), ("7", 7), ("0", None), (-2, None), ("x", None), (True, None)])
async def test_parse_positive_id(raw, expected) -> None:
    assert parse_positive_id(raw) == expected


async def test_nurse_id_from_profile_variants() -> None:
    assert nurse_id_from_profile({"profile": {"nurse_id": 9}}) == 9
    assert nurse_id_from_profile({"profile": {"nurse": {"id": 4}}}) == 4
    assert nurse_id_from_profile({"nurse_id": "11"}) == 11
    assert nurse_id_from_profile({"id": 5}) is None


async def test_resolve_nurse_id_from_me(backend, clinic_client, labels) -> None:
    backend.add("GET", "me/", {"id": 5, "profile": {"nurse_id": 9}})

    assert await resolve_nurse_id(clinic_client, labels=labels) == 9
    assert backend.requests == [("GET", "me/")]


async def test_resolve_nurse_id_walks_endpoints(backend, clinic_client, labels) -> None:
    backend.add("GET", "me/", {"id": 5, "profile": {}})
    backend.add("GET", "nurses/by-user/5/", {"nurse": {"id": 12}})

    assert await resolve_nurse_id(clinic_client, labels=labels) == 12
    assert backend.requests == [
        ("GET", "me/"),
        ("GET", "nurses/me/"),
        ("GET", "nurses/by-user/5/"),
    ]


async def test_resolve_nurse_id_not_found(backend, clinic_client, labels) -> None:
    with pytest.raises(NurseProfileNotFound):
        await resolve_nurse_id(clinic_client, labels=labels, me={"id": 5})
    assert [path for _, path in backend.requests] == [
        "nurses/me/",
        "nurses/by-user/5/",
        "nurses/5/",
    ]


async def test_task_list_falls_back_to_client_side_filter(backend, clinic_client) -> None:
    def tasks(call):
        if call.params:
            return 400, {"detail": "Unknown filter"}
        return 200, {
            "results": [
                {"id": 1, "assigned_nurse": 9},
                {"id": 2, "assigned_nurse": {"id": 4}},
                {"id": 3, "assigned_nurse": "9"},
            ]
        }

    backend.add("GET", "tasks/", handler=tasks)

    found = await list_nurse_tasks(clinic_client, 9)

    assert [task["id"] for task in found] == [1, 3]
    assert [call.params for call in backend.calls] == [{"nurse_id": "9"}, {"nurse": "9"}, {}]


async def test_load_dashboard_buckets_metrics_and_names(backend, clinic_client, labels) -> None:
    backend.add("GET", "tasks/", {"count": 3, "results": TASKS})
    backend.add("GET", "medicines/", {"count": 5, "results": [{"id": 1, "name": "Рингер"}]})
    backend.add("GET", "stationary-rooms/taken/", [{"id": 1}, {"id": 2}])
    backend.add("GET", "services/6/", {"id": 6, "name": "Капельница", "medicine": {"id": 2, "name": "Рингер"}})
    backend.add("GET", "schedules/14/", {"id": 14, "pet": 21})
    backend.add("GET", "pets/21/", {"id": 21, "name": "Рекс"})
    resolver, manager = _wire(clinic_client, labels)

    dashboard = await load_dashboard(clinic_client, resolver, manager, 9, resolve_wait=1.0)

    assert [view.task["id"] for view in dashboard.todo] == [1]
    assert [view.task["id"] for view in dashboard.done_today] == [2]
    assert [view.task["id"] for view in dashboard.done] == [3]
    todo = dashboard.todo[0]
    assert todo.pet_name == "Мурка"
    assert todo.service_name == "Капельница · Рингер"
    assert todo.scheduled_today is True
    assert todo.card_number == "MC-12"
    assert dashboard.done_today[0].pet_name == "Рекс"
    assert dashboard.done_today[0].service_name == "Осмотр"
    assert dashboard.done[0].pet_name == "Рекс"
    metrics = dashboard.metrics
    assert (metrics.todo, metrics.done_today, metrics.done) == (1, 1, 1)
    assert (metrics.medicines, metrics.pets) == (5, 2)
    assert dashboard.medicines == [{"id": 1, "name": "Рингер"}]
    assert len(backend.calls_to("GET", "pets/21/")) == 1


async def test_dashboard_survives_failing_extras(backend, clinic_client, labels) -> None:
    backend.add("GET", "tasks/", [])
    resolver, manager = _wire(clinic_client, labels)

    dashboard = await load_dashboard(clinic_client, resolver, manager, 9, resolve_wait=1.0)

    assert dashboard.todo == []
    assert (dashboard.metrics.medicines, dashboard.metrics.pets) == (0, 0)


async def test_open_task_detail_reports_gate(backend, clinic_client, labels) -> None:
    backend.add("GET", "tasks/1/", TASKS[0])
    backend.add("GET", "services/6/", {"id": 6, "name": "Капельница"})
    resolver, manager = _wire(clinic_client, labels)

    detail = await open_task_detail(
        clinic_client, resolver, manager, 1, TaskBucket.TODO, labels=labels
    )
    assert detail.can_complete is True
    assert detail.restriction is None
    assert detail.details_loading is False
    assert detail.view.service_name == "Капельница"
    assert manager.selected is not None

    from_done = await open_task_detail(
        clinic_client, resolver, manager, 1, TaskBucket.DONE, labels=labels
    )
    assert from_done.can_complete is False
    assert from_done.restriction == labels.message("task.only_from_todo")
    assert from_done.view.bucket is TaskBucket.TODO
