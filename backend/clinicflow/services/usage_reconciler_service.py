"""Reconcile edited service, medicine and feed usage rows with the clinic API.

A :class:`UsageDraft` is an immutable list of tagged rows. Planning is a
pure function of the draft; only :func:`apply_usage_plan` talks to the
network, and it does so one request at a time.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from clinicflow.core.labels import Labels
from clinicflow.integrations.clinic_api import ClinicApiClient, ClinicApiError
from clinicflow.services.reference_service import EntityKind, normalize_id

logger = logging.getLogger(__name__)


class UsageCollection(str, enum.Enum):
    SERVICES = "services"
    MEDICINES = "medicines"
    FEEDS = "feeds"

    @property
    def layout(self) -> "CollectionLayout":
        return _COLLECTIONS[self]


@dataclass(slots=True, frozen=True)
class CollectionLayout:
    endpoint: str
    reference_field: str
    kind: EntityKind
    local_prefix: str
    name_field: str | None = None
    detail_field: str | None = None
    detail_required: bool = False


_COLLECTIONS: dict[UsageCollection, CollectionLayout] = {
    UsageCollection.SERVICES: CollectionLayout(
        endpoint="service-usages/",
        reference_field="service",
        kind=EntityKind.SERVICE,
        local_prefix="su",
        name_field="service_name",
        detail_field="description",
    ),
    UsageCollection.MEDICINES: CollectionLayout(
        endpoint="medicine-usages/",
        reference_field="medicine",
        kind=EntityKind.MEDICINE,
        local_prefix="mu",
        name_field="name",
        detail_field="dosage",
        detail_required=True,
    ),
    UsageCollection.FEEDS: CollectionLayout(
        endpoint="feed-usages/",
        reference_field="feed",
        kind=EntityKind.FEED,
        local_prefix="fu",
    ),
}

# Processing order for a save.
COLLECTION_ORDER: tuple[UsageCollection, ...] = (
    UsageCollection.SERVICES,
    UsageCollection.MEDICINES,
    UsageCollection.FEEDS,
)


class RowState(str, enum.Enum):
    UNCHANGED = "unchanged"
    NEW = "new"
    DIRTY = "dirty"
    DELETED = "deleted"


_FLAG_KEYS = frozenset({"_localId", "_local_id", "_new", "_dirty", "_deleted"})


def _clean(values: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if key not in _FLAG_KEYS}


@dataclass(slots=True, frozen=True)
class UsageRow:
    """One usage row in a draft together with the server record it came from."""

    local_id: str
    state: RowState
    values: Mapping[str, Any] = field(default_factory=dict)
    original: Mapping[str, Any] | None = None

    @property
    def id(self) -> str | None:
        row_id = normalize_id(self.values.get("id"))
        if row_id is None and self.original is not None:
            row_id = normalize_id(self.original.get("id"))
        return row_id

    @property
    def has_server_id(self) -> bool:
        return self.state is not RowState.NEW and self.id is not None

    @classmethod
    def from_flags(
        cls,
        data: Mapping[str, Any],
        *,
        original: Mapping[str, Any] | None = None,
    ) -> "UsageRow":
        """Build a row from a flagged record (``_new``, ``_dirty``, ``_deleted``)."""

        values = _clean(data)
        local_id = str(
            data.get("_localId")
            or data.get("_local_id")
            or (f"row-{values['id']}" if values.get("id") is not None else f"new-{uuid.uuid4().hex[:8]}")
        )
        if data.get("_deleted"):
            state = RowState.DELETED
        elif data.get("_new") or normalize_id(values.get("id")) is None:
            state = RowState.NEW
        elif data.get("_dirty"):
            state = RowState.DIRTY
        else:
            state = RowState.UNCHANGED
        if state is RowState.DELETED and data.get("_new"):
            values = {key: value for key, value in values.items() if key != "id"}
        return cls(local_id=local_id, state=state, values=values, original=original)


@dataclass(slots=True, frozen=True)
class UsageDraft:
    """Immutable working copy of one usage collection."""

    collection: UsageCollection
    rows: tuple[UsageRow, ...] = ()

    @classmethod
    def hydrate(
        cls, collection: UsageCollection, records: Iterable[Any]
    ) -> "UsageDraft":
        prefix = collection.layout.local_prefix
        rows = []
        for record in records:
            if not isinstance(record, Mapping):
                continue
            record_id = normalize_id(record.get("id"))
            if record_id is None:
                continue
            values = dict(record)
            rows.append(
                UsageRow(
                    local_id=f"{prefix}-{record_id}",
                    state=RowState.UNCHANGED,
                    values=values,
                    original=values,
                )
            )
        return cls(collection=collection, rows=tuple(rows))

    def originals(self) -> dict[str, Mapping[str, Any]]:
        return {
            row.id: row.original
            for row in self.rows
            if row.id is not None and row.original is not None
        }

    def with_flags(self, records: Iterable[Any]) -> "UsageDraft":
        """Replace the rows with flagged records, keeping known originals."""

        originals = self.originals()
        rows = []
        for record in records:
            if not isinstance(record, Mapping):
                continue
            row = UsageRow.from_flags(record)
            if row.state is not RowState.NEW and row.id in originals:
                row = replace(row, original=originals[row.id])
            rows.append(row)
        return replace(self, rows=tuple(rows))

    def add(self, values: Mapping[str, Any]) -> "UsageDraft":
        row = UsageRow(
            local_id=f"new-{uuid.uuid4().hex[:8]}",
            state=RowState.NEW,
            values=_clean(values),
        )
        return replace(self, rows=(*self.rows, row))

    def edit(self, local_id: str, **changes: Any) -> "UsageDraft":
        rows = []
        for row in self.rows:
            if row.local_id == local_id and row.state is not RowState.DELETED:
                state = RowState.NEW if row.state is RowState.NEW else RowState.DIRTY
                row = replace(row, state=state, values={**row.values, **changes})
            rows.append(row)
        return replace(self, rows=tuple(rows))

    def remove(self, local_id: str) -> "UsageDraft":
        """Mark a row deleted; rows never sent to the server simply disappear."""

        rows = []
        for row in self.rows:
            if row.local_id == local_id:
                if row.state is RowState.NEW:
                    continue
                row = replace(row, state=RowState.DELETED)
            rows.append(row)
        return replace(self, rows=tuple(rows))

    def reference_ids(self) -> set[str]:
        ref_field = self.collection.layout.reference_field
        ids = set()
        for row in self.rows:
            if row.state in (RowState.NEW, RowState.DIRTY):
                ref_id = normalize_id(row.values.get(ref_field))
                if ref_id is not None:
                    ids.add(ref_id)
        return ids

    @property
    def has_changes(self) -> bool:
        return any(row.state is not RowState.UNCHANGED for row in self.rows)


class OperationKind(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True, frozen=True)
class UsageOperation:
    kind: OperationKind
    collection: UsageCollection
    local_id: str
    path: str
    payload: Mapping[str, Any] | None = None

    @property
    def method(self) -> str:
        return {
            OperationKind.CREATE: "POST",
            OperationKind.UPDATE: "PATCH",
            OperationKind.DELETE: "DELETE",
        }[self.kind]


@dataclass(slots=True, frozen=True)
class UsagePlan:
    collection: UsageCollection
    operations: tuple[UsageOperation, ...] = ()
    skipped: tuple[str, ...] = ()


def wire_id(value: Any) -> Any:
    """Send numeric ids as integers, anything else unchanged."""

    normalized = normalize_id(value)
    if normalized is not None and normalized.isdigit():
        return int(normalized)
    return normalized


def parse_quantity(value: Any) -> int | float | None:
    """Return a positive quantity or ``None`` when it is missing or invalid."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip().replace(",", "."))
        except ValueError:
            return None
    else:
        return None
    if number != number or number <= 0:
        return None
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _snapshot_name(
    layout: CollectionLayout,
    row: UsageRow,
    ref_id: str,
    names: Mapping[str, str],
    labels: Labels,
) -> str:
    own = _text(row.values.get(layout.name_field)) if layout.name_field else None
    return names.get(ref_id) or own or labels.placeholder(layout.kind.value, ref_id)


def _create_payload(
    layout: CollectionLayout,
    row: UsageRow,
    *,
    card_id: Any,
    names: Mapping[str, str],
    labels: Labels,
) -> dict[str, Any] | None:
    ref_id = normalize_id(row.values.get(layout.reference_field))
    quantity = parse_quantity(row.values.get("quantity"))
    detail = _text(row.values.get(layout.detail_field)) if layout.detail_field else None
    if ref_id is None or quantity is None or (layout.detail_required and detail is None):
        return None

    payload: dict[str, Any] = {
        "medical_card": wire_id(card_id),
        layout.reference_field: wire_id(ref_id),
        "quantity": quantity,
    }
    if layout.name_field:
        payload[layout.name_field] = _snapshot_name(layout, row, ref_id, names, labels)
    if layout.detail_field and detail is not None:
        payload[layout.detail_field] = detail
    return payload


def _update_payload(
    layout: CollectionLayout,
    row: UsageRow,
    *,
    names: Mapping[str, str],
    labels: Labels,
) -> dict[str, Any]:
    original = row.original
    payload: dict[str, Any] = {}

    quantity = parse_quantity(row.values.get("quantity"))
    if quantity is not None and (
        original is None or parse_quantity(original.get("quantity")) != quantity
    ):
        payload["quantity"] = quantity

    if layout.detail_field and isinstance(row.values.get(layout.detail_field), str):
        detail = row.values[layout.detail_field]
        if original is None or (original.get(layout.detail_field) or "") != detail:
            payload[layout.detail_field] = detail

    ref_id = normalize_id(row.values.get(layout.reference_field))
    if ref_id is not None and (
        original is None or normalize_id(original.get(layout.reference_field)) != ref_id
    ):
        payload[layout.reference_field] = wire_id(ref_id)
        if layout.name_field:
            payload[layout.name_field] = _snapshot_name(layout, row, ref_id, names, labels)
    return payload


def plan_usage_operations(
    draft: UsageDraft,
    *,
    card_id: Any,
    labels: Labels,
    names: Mapping[str, str] | None = None,
) -> UsagePlan:
    """Compute the ordered requests that bring the server in line with ``draft``.

    ``names`` maps catalog ids to names captured at save time; they are sent
    as a snapshot on creates and on updates that change the reference.
    """

    layout = draft.collection.layout
    names = names or {}
    operations: list[UsageOperation] = []
    skipped: list[str] = []

    for row in draft.rows:
        if row.state is RowState.DELETED:
            if row.has_server_id:
                operations.append(
                    UsageOperation(
                        kind=OperationKind.DELETE,
                        collection=draft.collection,
                        local_id=row.local_id,
                        path=f"{layout.endpoint}{row.id}/",
                    )
                )
            continue
        if row.state is RowState.NEW:
            payload = _create_payload(
                layout, row, card_id=card_id, names=names, labels=labels
            )
            if payload is None:
                skipped.append(row.local_id)
                continue
            operations.append(
                UsageOperation(
                    kind=OperationKind.CREATE,
                    collection=draft.collection,
                    local_id=row.local_id,
                    path=layout.endpoint,
                    payload=payload,
                )
            )
            continue
        if row.state is RowState.DIRTY and row.id is not None:
            payload = _update_payload(layout, row, names=names, labels=labels)
            if payload:
                operations.append(
                    UsageOperation(
                        kind=OperationKind.UPDATE,
                        collection=draft.collection,
                        local_id=row.local_id,
                        path=f"{layout.endpoint}{row.id}/",
                        payload=payload,
                    )
                )

    return UsagePlan(
        collection=draft.collection,
        operations=tuple(operations),
        skipped=tuple(skipped),
    )


@dataclass(slots=True, frozen=True)
class OperationResult:
    operation: UsageOperation
    ok: bool
    detail: str | None = None


async def apply_usage_plan(
    client: ClinicApiClient, plan: UsagePlan
) -> list[OperationResult]:
    """Run a plan strictly in order; a failed row is logged and skipped."""

    results: list[OperationResult] = []
    for operation in plan.operations:
        try:
            await client.request(
                operation.method,
                operation.path,
                json=dict(operation.payload) if operation.payload is not None else None,
            )
        except ClinicApiError as exc:
            logger.warning(
                "Usage %s %s failed: %s",
                operation.method,
                operation.path,
                exc.detail or exc,
            )
            results.append(OperationResult(operation, ok=False, detail=exc.detail))
            continue
        results.append(OperationResult(operation, ok=True))
    return results


__all__ = [
    "COLLECTION_ORDER",
    "CollectionLayout",
    "OperationKind",
    "OperationResult",
    "RowState",
    "UsageCollection",
    "UsageDraft",
    "UsageOperation",
    "UsagePlan",
    "UsageRow",
    "apply_usage_plan",
    "parse_quantity",
    "plan_usage_operations",
    "wire_id",
]
