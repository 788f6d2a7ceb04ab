"""Tests for usage draft reconciliation."""

from __future__ import annotations

import pytest

from clinicflow.services.usage_reconciler_service import (
    OperationKind,
    RowState,
    UsageCollection,
    UsageDraft,
    apply_usage_plan,
    parse_quantity,
    plan_usage_operations,
)

SERVICE_ROWS = [
    {"id": 1, "service": 4, "service_name": "Осмотр", "quantity": 2, "description": ""},
    {"id": 2, "service": 6, "service_name": "УЗИ", "quantity": 1, "description": ""},
]


def _services() -> UsageDraft:
    return UsageDraft.hydrate(UsageCollection.SERVICES, SERVICE_ROWS)


def test_minimal_plan_for_delete_and_create(labels) -> None:
    draft = _services().with_flags(
        [
            {"id": 1, "service": 4, "quantity": 2, "_dirty": False},
            {"id": 2, "_deleted": True},
            {"_new": True, "service": 5, "quantity": 3},
        ]
    )

    plan = plan_usage_operations(draft, card_id="12", labels=labels)

    assert [(op.method, op.path) for op in plan.operations] == [
        ("DELETE", "service-usages/2/"),
        ("POST", "service-usages/"),
    ]
    create = plan.operations[1]
    assert create.payload == {
        "medical_card": 12,
        "service": 5,
        "quantity": 3,
        "service_name": "Услуга #5",
    }
    assert all("service-usages/1/" not in op.path for op in plan.operations)


def test_new_row_deleted_before_save_is_never_sent(labels) -> None:
    draft = _services().with_flags(
        [{"_new": True, "_deleted": True, "id": 99, "service": 5, "quantity": 1}]
    )

    assert draft.rows[0].state is RowState.DELETED
    assert plan_usage_operations(draft, card_id=12, labels=labels).operations == ()

    added = _services().add({"service": 7, "quantity": 1})
    new_id = added.rows[-1].local_id
    assert added.rows[-1].state is RowState.NEW
    removed = added.remove(new_id)
    assert [row.local_id for row in removed.rows] == ["su-1", "su-2"]
    assert not removed.has_changes


def test_incomplete_rows_are_skipped(labels) -> None:
    medicines = UsageDraft(UsageCollection.MEDICINES).with_flags(
        [
            {"_localId": "a", "_new": True, "medicine": 3, "quantity": 1},
            {"_localId": "b", "_new": True, "medicine": 3, "quantity": "0", "dosage": "5 мл"},
            {"_localId": "c", "_new": True, "quantity": 1, "dosage": "5 мл"},
            {"_localId": "d", "_new": True, "medicine": 3, "quantity": "1,5", "dosage": " 5 мл "},
        ]
    )

    plan = plan_usage_operations(
        medicines, card_id=12, labels=labels, names={"3": "Кеторол"}
    )

    assert plan.skipped == ("a", "b", "c")
    assert len(plan.operations) == 1
    assert plan.operations[0].payload == {
        "medical_card": 12,
        "medicine": 3,
        "quantity": 1.5,
        "name": "Кеторол",
        "dosage": "5 мл",
    }


def test_create_snapshot_prefers_catalog_name_then_row_name(labels) -> None:
    draft = UsageDraft(UsageCollection.SERVICES).with_flags(
        [
            {"_localId": "x", "_new": True, "service": 4, "service_name": "Старое имя", "quantity": 1},
            {"_localId": "y", "_new": True, "service": 8, "service_name": "Своё имя", "quantity": 1},
        ]
    )

    plan = plan_usage_operations(draft, card_id=1, labels=labels, names={"4": "Осмотр"})

    assert [op.payload["service_name"] for op in plan.operations] == ["Осмотр", "Своё имя"]


def test_dirty_row_sends_only_changed_fields(labels) -> None:
    draft = _services().edit("su-1", quantity=5)

    plan = plan_usage_operations(draft, card_id=12, labels=labels)

    assert len(plan.operations) == 1
    update = plan.operations[0]
    assert update.kind is OperationKind.UPDATE
    assert update.path == "service-usages/1/"
    assert update.payload == {"quantity": 5}


def test_reference_change_resnapshots_name(labels) -> None:
    draft = _services().edit("su-2", service=9, description="после еды")

    plan = plan_usage_operations(draft, card_id=12, labels=labels, names={"9": "Рентген"})

    assert plan.operations[0].payload == {
        "description": "после еды",
        "service": 9,
        "service_name": "Рентген",
    }


def test_dirty_row_without_changes_sends_nothing(labels) -> None:
    draft = _services().with_flags([{"id": 1, "service": 4, "quantity": "2", "_dirty": True}])

    assert plan_usage_operations(draft, card_id=12, labels=labels).operations == ()


def test_feed_rows_have_no_name_snapshot(labels) -> None:
    feeds = UsageDraft(UsageCollection.FEEDS).add({"feed": 2, "quantity": 1})

    plan = plan_usage_operations(feeds, card_id=3, labels=labels)

    assert plan.operations[0].payload == {"medical_card": 3, "feed": 2, "quantity": 1}


def test_reducer_marks_server_rows() -> None:
    draft = _services()
    assert not draft.has_changes

    edited = draft.edit("su-1", quantity=4)
    assert edited.rows[0].state is RowState.DIRTY
    assert draft.rows[0].state is RowState.UNCHANGED

    deleted = edited.remove("su-2")
    assert deleted.rows[1].state is RowState.DELETED
    assert deleted.edit("su-2", quantity=9).rows[1].values["quantity"] == 1
    assert deleted.reference_ids() == {"4"}


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(2, 2), ("3", 3), ("2,5", 2.5), (0, None), ("-1", None), ("abc", None), (None, None), (True, None)],
)
def test_parse_quantity(raw, expected) -> None:
    assert parse_quantity(raw) == expected


@pytest.mark.asyncio
async def test_apply_runs_in_order_and_swallows_row_failures(
    backend, clinic_client, labels
) -> None:
    backend.add("DELETE", "service-usages/2/", {"detail": "Нельзя удалить"}, status=400)
    backend.add("PATCH", "service-usages/1/", {"id": 1})
    backend.add("POST", "service-usages/", {"id": 3}, status=201)
    draft = (
        _services()
        .remove("su-2")
        .edit("su-1", quantity=7)
        .add({"service": 5, "quantity": 1})
    )
    plan = plan_usage_operations(draft, card_id=12, labels=labels)

    results = await apply_usage_plan(clinic_client, plan)

    assert backend.mutations() == [
        ("PATCH", "service-usages/1/"),
        ("DELETE", "service-usages/2/"),
        ("POST", "service-usages/"),
    ]
    assert [result.ok for result in results] == [True, False, True]
    assert results[1].detail == "Нельзя удалить"
