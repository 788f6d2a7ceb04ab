"""Tests for entity reference normalization."""

from __future__ import annotations

import pytest

from clinicflow.services.reference_service import (
    EmbeddedRef,
    EntityKind,
    IdRef,
    name_from,
    normalize_id,
    normalize_task,
    schedule_pet,
    service_medicine,
    to_reference,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (42, "42"),
        ("42", "42"),
        ("  7 ", "7"),
        (3.0, "3"),
        ({"id": 9, "name": "Барсик"}, "9"),
        (None, None),
        ("", None),
        (True, None),
        (0, None),
        ("0", None),
        (-4, None),
        ({"id": 0}, None),
        ({"name": "no id"}, None),
    ],
)
def test_normalize_id(raw, expected) -> None:
    assert normalize_id(raw) == expected


def test_to_reference_distinguishes_bare_ids_and_embedded_objects() -> None:
    assert to_reference(EntityKind.PET, 5) == IdRef(kind=EntityKind.PET, id="5")
    embedded = to_reference(EntityKind.PET, {"id": 5, "nickname": "Рыжик"})
    assert isinstance(embedded, EmbeddedRef)
    assert embedded.id == "5"
    assert embedded.name == "Рыжик"
    assert to_reference(EntityKind.PET, {}) is None


def test_normalize_task_reads_direct_and_nested_fields() -> None:
    refs = normalize_task(
        {
            "id": 11,
            "pet": {"id": 3, "name": "Мурка"},
            "service": {"id": 8, "name": "Капельница", "medicine": {"id": 2, "name": "Рингер"}},
            "medical_card": {"card_number": "MC-17"},
        }
    )
    assert refs.task_id == "11"
    assert refs.pet_name == "Мурка"
    assert refs.pet is not None and refs.pet.id == "3"
    assert refs.service is not None and refs.service.id == "8"
    assert refs.service_name == "Капельница"
    assert refs.medicine_name == "Рингер"
    assert refs.card_number == "MC-17"


def test_normalize_task_with_schedule_only() -> None:
    refs = normalize_task({"id": 1, "schedule": 14, "service": 6})
    assert refs.pet is None
    assert refs.pet_name is None
    assert refs.schedule == IdRef(kind=EntityKind.SCHEDULE, id="14")
    assert refs.service == IdRef(kind=EntityKind.SERVICE, id="6")


def test_pet_id_falls_back_to_embedded_schedule_and_card() -> None:
    assert normalize_task({"schedule": {"id": 4, "pet": 21}}).pet.id == "21"
    assert normalize_task({"medical_card": {"pet": 33}}).pet.id == "33"


def test_schedule_pet_variants() -> None:
    assert schedule_pet({"pet": {"id": 3, "name": "Бим"}}) == ("3", "Бим")
    assert schedule_pet({"pet_id": 4}) == ("4", None)
    assert schedule_pet({"animal": {"id": 5, "name": "Кеша"}}) == ("5", "Кеша")
    assert schedule_pet("not a schedule") == (None, None)


def test_service_medicine_variants() -> None:
    assert service_medicine({"medicine": {"id": 2, "name": "Рингер"}}) == ("2", "Рингер")
    assert service_medicine({"medicine": 9}) == ("9", None)
    assert service_medicine({"medicine_name": "Но-шпа"}) == (None, "Но-шпа")
    assert service_medicine({}) == (None, None)


def test_catalog_snapshot_prefers_denormalized_names() -> None:
    service = {"id": 8, "name": "Инфузия", "service_name": "Капельница"}
    medicine = {"id": 2, "name": "Раствор", "medicine_name": "Рингер"}

    assert name_from(service, EntityKind.SERVICE.name_fields) == "Капельница"
    assert name_from(medicine, EntityKind.MEDICINE.name_fields) == "Рингер"
    assert name_from({"id": 8, "name": "Инфузия"}, EntityKind.SERVICE.name_fields) == "Инфузия"
