"""Normalization of loosely shaped entity references.

Upstream records point at pets, services, schedules and medicines in several
shapes: a bare id, an embedded partial object, or a differently named field.
Everything here runs once at the ingestion boundary so that the rest of the
workflow code only ever sees :class:`IdRef` or :class:`EmbeddedRef` values.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Union


class EntityKind(str, enum.Enum):
    """Entity kinds the resolver knows how to fetch and label."""

    PET = "pet"
    SERVICE = "service"
    MEDICINE = "medicine"
    SCHEDULE = "schedule"
    FEED = "feed"

    @property
    def endpoint(self) -> str:
        return _ENDPOINTS[self]

    @property
    def name_fields(self) -> tuple[str, ...]:
        return _NAME_FIELDS[self]


_ENDPOINTS: dict[EntityKind, str] = {
    EntityKind.PET: "pets/",
    EntityKind.SERVICE: "services/",
    EntityKind.MEDICINE: "medicines/",
    EntityKind.SCHEDULE: "schedules/",
    EntityKind.FEED: "pet-feeds/",
}

_INTEGER = re.compile(r"[+-]?\d+")

_NAME_FIELDS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.PET: ("name", "nickname", "pet_name", "display_name"),
    EntityKind.SERVICE: ("service_name", "name", "title", "display_name"),
    EntityKind.MEDICINE: ("medicine_name", "name", "title", "display_name"),
    EntityKind.SCHEDULE: ("title", "name"),
    EntityKind.FEED: ("name", "feed_name", "product_name", "display_name"),
}


@dataclass(slots=True, frozen=True)
class IdRef:
    """A reference known only by its id."""

    kind: EntityKind
    id: str


@dataclass(slots=True, frozen=True)
class EmbeddedRef:
    """A reference that arrived as a (possibly partial) embedded object."""

    kind: EntityKind
    id: str | None
    name: str | None
    value: Mapping[str, Any] = field(default_factory=dict, compare=False)


Reference = Union[IdRef, EmbeddedRef]


def normalize_id(value: Any) -> str | None:
    """Return a canonical string id for numbers, strings or ``{id: ...}`` objects.

    Numeric ids must be positive.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value) if value > 0 else None
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")) or value <= 0:
            return None
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str):
        stripped = value.strip()
        if _INTEGER.fullmatch(stripped) and int(stripped) <= 0:
            return None
        return stripped or None
    if isinstance(value, Mapping):
        return normalize_id(value.get("id"))
    return None


def first_id(candidates: Iterable[Any]) -> str | None:
    for candidate in candidates:
        normalized = normalize_id(candidate)
        if normalized:
            return normalized
    return None


def first_text(candidates: Iterable[Any]) -> str | None:
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def name_from(payload: Any, fields: Iterable[str]) -> str | None:
    """Return the first non-empty name-like field of ``payload``."""

    if not isinstance(payload, Mapping):
        return None
    return first_text(payload.get(name) for name in fields)


def to_reference(kind: EntityKind, value: Any) -> Reference | None:
    """Turn a raw field value into a tagged reference."""

    if isinstance(value, Mapping):
        ref_id = normalize_id(value)
        name = name_from(value, kind.name_fields)
        if ref_id is None and name is None:
            return None
        return EmbeddedRef(kind=kind, id=ref_id, name=name, value=value)
    ref_id = normalize_id(value)
    if ref_id is None:
        return None
    return IdRef(kind=kind, id=ref_id)


def reference_id(ref: Reference | None) -> str | None:
    return ref.id if ref is not None else None


def _get(mapping: Any, *path: str) -> Any:
    current = mapping
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


@dataclass(slots=True, frozen=True)
class TaskRefs:
    """Normalized references extracted from a raw task record."""

    task_id: str | None
    pet: Reference | None
    pet_name: str | None
    schedule: Reference | None
    service: Reference | None
    service_name: str | None
    medicine_name: str | None
    card_number: str | None


def task_pet_name(task: Mapping[str, Any]) -> str | None:
    """Direct pet name already present somewhere on the task."""

    pet = task.get("pet")
    card = _as_mapping(task.get("medical_card"))
    card_pet = _as_mapping(card.get("pet"))
    return first_text(
        [
            task.get("pet_name"),
            task.get("patient"),
            name_from(pet, ("name", "nickname")),
            card_pet.get("name"),
            card_pet.get("nickname"),
            card.get("pet_name"),
            pet if isinstance(pet, str) and normalize_id(pet) != pet.strip() else None,
        ]
    )


def task_pet_id(task: Mapping[str, Any]) -> str | None:
    pet = task.get("pet")
    schedule = _as_mapping(task.get("schedule"))
    return first_id(
        [
            task.get("pet_id"),
            pet if not isinstance(pet, str) or pet.strip().isdigit() else None,
            _get(task, "medical_card", "pet"),
            schedule.get("pet"),
            schedule.get("pet_id"),
            schedule.get("animal"),
            schedule.get("animal_id"),
        ]
    )


def task_schedule_id(task: Mapping[str, Any]) -> str | None:
    return first_id([task.get("schedule_id"), task.get("schedule")])


def task_service_id(task: Mapping[str, Any]) -> str | None:
    service = task.get("service")
    return first_id(
        [
            task.get("service_id"),
            service if not isinstance(service, str) or service.strip().isdigit() else None,
            _get(task, "service", "service_id"),
        ]
    )


def task_service_name(task: Mapping[str, Any]) -> str | None:
    service = task.get("service")
    if isinstance(service, str) and not service.strip().isdigit():
        direct = service.strip() or None
    else:
        direct = name_from(service, ("service_name", "name", "title"))
    return first_text([task.get("service_name"), direct])


def task_medicine_name(task: Mapping[str, Any]) -> str | None:
    service = _as_mapping(task.get("service"))
    medicine = service.get("medicine")
    return first_text(
        [
            service.get("medicine_name"),
            service.get("medicineTitle"),
            name_from(medicine, ("name", "title")),
        ]
    )


def normalize_task(task: Mapping[str, Any]) -> TaskRefs:
    """Extract every reference of a task in one pass."""

    pet_name = task_pet_name(task)
    pet_id = task_pet_id(task)
    schedule_id = task_schedule_id(task)
    service_id = task_service_id(task)
    service_name = task_service_name(task)

    pet: Reference | None = None
    if pet_id or pet_name:
        pet = (
            EmbeddedRef(kind=EntityKind.PET, id=pet_id, name=pet_name)
            if pet_name
            else IdRef(kind=EntityKind.PET, id=pet_id)  # type: ignore[arg-type]
        )
    schedule = (
        IdRef(kind=EntityKind.SCHEDULE, id=schedule_id) if schedule_id else None
    )
    service: Reference | None = None
    if service_id or service_name:
        service = (
            EmbeddedRef(kind=EntityKind.SERVICE, id=service_id, name=service_name)
            if service_name
            else IdRef(kind=EntityKind.SERVICE, id=service_id)  # type: ignore[arg-type]
        )

    card_number = _get(task, "medical_card", "card_number")
    return TaskRefs(
        task_id=normalize_id(task.get("id")),
        pet=pet,
        pet_name=pet_name,
        schedule=schedule,
        service=service,
        service_name=service_name,
        medicine_name=task_medicine_name(task),
        card_number=str(card_number) if card_number not in (None, "") else None,
    )


def schedule_pet(schedule: Any) -> tuple[str | None, str | None]:
    """Return ``(pet_id, pet_name)`` derived from a schedule payload."""

    if not isinstance(schedule, Mapping):
        return None, None
    pet_id = first_id(
        [
            _get(schedule, "pet", "id"),
            schedule.get("pet_id"),
            schedule.get("pet"),
            _get(schedule, "animal", "id"),
            schedule.get("animal_id"),
        ]
    )
    pet_name = first_text(
        [
            _get(schedule, "pet", "name"),
            _get(schedule, "pet", "nickname"),
            schedule.get("pet_name"),
            _get(schedule, "animal", "name"),
            schedule.get("animal_name"),
        ]
    )
    return pet_id, pet_name


def service_medicine(service: Any) -> tuple[str | None, str | None]:
    """Return ``(medicine_id, medicine_name)`` attached to a service payload."""

    if not isinstance(service, Mapping):
        return None, None
    medicine = service.get("medicine")
    name = first_text(
        [
            service.get("medicine_name"),
            name_from(medicine, ("name", "title")),
            service.get("medicine_title"),
            medicine if isinstance(medicine, str) and not medicine.strip().isdigit() else None,
        ]
    )
    medicine_id = first_id(
        [
            _get(service, "medicine", "id"),
            service.get("medicine_id"),
            medicine if isinstance(medicine, int) or (isinstance(medicine, str) and medicine.strip().isdigit()) else None,
        ]
    )
    return medicine_id, name


__all__ = [
    "EmbeddedRef",
    "EntityKind",
    "IdRef",
    "Reference",
    "TaskRefs",
    "first_id",
    "first_text",
    "name_from",
    "normalize_id",
    "normalize_task",
    "reference_id",
    "schedule_pet",
    "service_medicine",
    "task_pet_id",
    "task_pet_name",
    "task_schedule_id",
    "task_service_id",
    "task_service_name",
    "to_reference",
]
