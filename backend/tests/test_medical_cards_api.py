"""Medical card edit session and save endpoints."""

from __future__ import annotations

import json

import pytest

pytestmark = pytest.mark.asyncio

CARD = {
    "id": 12,
    "status": "WAITING_FOR_PAYMENT",
    "client": 40,
    "doctor": 7,
    "diagnosis": "Гастрит",
    "revisit_date": None,
    "stationary_room": None,
    "attachments": [],
}
FORM = {
    "diagnosis": "Гастрит",
    "revisit_date": None,
    "stationary": {"is_stationary": False},
}


def _seed(backend, card=None) -> None:
    backend.add("GET", "medical-cards/12/", card or CARD)
    backend.add(
        "GET",
        "service-usages/",
        [
            {"id": 1, "service": 4, "service_name": "Осмотр", "quantity": 2},
            {"id": 2, "service": 6, "service_name": "УЗИ", "quantity": 1},
        ],
    )
    backend.add("GET", "medicine-usages/", [])
    backend.add("GET", "feed-usages/", [])
    backend.add("GET", "medical-cards/by-doctor/7/", [])
    backend.add("GET", "medical-cards/by-user/40/", [])


def _payload(**changes) -> dict[str, str]:
    return {"payload": json.dumps({"form": FORM, **changes})}


async def test_edit_session_returns_flagged_rows(api_client, backend) -> None:
    _seed(backend)

    response = await api_client.get("/api/v1/medical-cards/12/edit-session")

    assert response.status_code == 200
    body = response.json()
    assert body["editable"] is True
    assert body["form"]["diagnosis"] == "Гастрит"
    assert [row["_localId"] for row in body["services"]] == ["su-1", "su-2"]
    assert body["usages_error"] is None


async def test_edit_session_for_missing_card(api_client, backend) -> None:
    response = await api_client.get("/api/v1/medical-cards/12/edit-session")

    assert response.status_code == 404


async def test_save_usages_and_attachment(api_client, backend) -> None:
    _seed(backend)
    backend.add("GET", "services/5/", {"id": 5, "name": "Капельница"})
    backend.add("DELETE", "service-usages/2/", status=204)
    backend.add("POST", "service-usages/", {"id": 3}, status=201)
    backend.add("POST", "medical-cards/12/attachments/", {"id": 1, "file": "xray.png"}, status=201)

    response = await api_client.post(
        "/api/v1/medical-cards/12/save",
        data={
            **_payload(
                services=[
                    {"_localId": "su-1", "id": 1, "service": 4, "quantity": 2},
                    {"_localId": "su-2", "id": 2, "_deleted": True},
                    {"_localId": "n1", "_new": True, "service": 5, "quantity": 3},
                ]
            ),
            "types": ["xray"],
        },
        files=[("files", ("xray.png", b"png-bytes", "image/png"))],
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "saved"
    assert body["card_patch"] == {}
    assert [(item["method"], item["ok"]) for item in body["usage_results"]["services"]] == [
        ("DELETE", True),
        ("POST", True),
    ]
    assert body["attachments"] == [{"id": 1, "file": "xray.png"}]
    assert backend.mutations() == [
        ("DELETE", "service-usages/2/"),
        ("POST", "service-usages/"),
        ("POST", "medical-cards/12/attachments/"),
    ]
    created = backend.calls_to("POST", "service-usages/")[0].body
    assert created == {"medical_card": 12, "service": 5, "quantity": 3, "service_name": "Капельница"}
    assert b"XRAY" in backend.calls_to("POST", "medical-cards/12/attachments/")[0].body


async def test_save_without_changes(api_client, backend, labels) -> None:
    _seed(backend)

    response = await api_client.post("/api/v1/medical-cards/12/save", data=_payload())

    assert response.status_code == 200
    assert response.json()["status"] == "no_changes"
    assert backend.mutations() == []


async def test_save_card_fields(api_client, backend) -> None:
    _seed(backend)
    backend.add("PATCH", "medical-cards/12/", {"id": 12})

    response = await api_client.post(
        "/api/v1/medical-cards/12/save",
        data=_payload(form={**FORM, "notes": "Контроль через неделю", "revisit_date": "2026-03-21"}),
    )

    assert response.status_code == 200
    assert backend.calls_to("PATCH", "medical-cards/12/")[0].body == {
        "notes": "Контроль через неделю",
        "revisit_date": "2026-03-21T00:00:00Z",
    }


async def test_save_locked_card_is_conflict(api_client, backend, labels) -> None:
    _seed(backend, card={**CARD, "status": "CLOSED"})

    response = await api_client.post(
        "/api/v1/medical-cards/12/save",
        data=_payload(form={**FORM, "notes": "Поздняя правка"}),
    )

    assert response.status_code == 409
    assert response.json()["detail"] == labels.message("card.locked")
    assert backend.mutations() == []


async def test_save_with_incomplete_booking(api_client, backend, labels) -> None:
    _seed(backend)

    response = await api_client.post(
        "/api/v1/medical-cards/12/save",
        data=_payload(
            form={
                **FORM,
                "stationary": {
                    "is_stationary": True,
                    "booking_type": "DAILY",
                    "stay_start": "2026-03-14",
                    "stay_end": "2026-03-16",
                },
            }
        ),
    )

    assert response.status_code == 422
    assert response.json()["detail"] == {
        "field": "stationary_room",
        "message": labels.message("card.stationary_required"),
    }
    assert backend.mutations() == []


async def test_save_patch_rejected(api_client, backend) -> None:
    _seed(backend)
    backend.add("PATCH", "medical-cards/12/", {"detail": "Карта уже оплачена"}, status=400)

    response = await api_client.post(
        "/api/v1/medical-cards/12/save",
        data=_payload(form={**FORM, "diagnosis": "Новый диагноз"}),
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Карта уже оплачена"


async def test_save_rejects_malformed_payload(api_client, backend) -> None:
    response = await api_client.post(
        "/api/v1/medical-cards/12/save", data={"payload": "{not json"}
    )

    assert response.status_code == 422
    assert backend.calls == []


async def test_save_rejects_unknown_attachment_type(api_client, backend) -> None:
    _seed(backend)

    response = await api_client.post(
        "/api/v1/medical-cards/12/save",
        data={**_payload(), "types": ["SELFIE"]},
        files=[("files", ("a.png", b"png", "image/png"))],
    )

    assert response.status_code == 422
    assert backend.mutations() == []


async def test_create_task_from_card(api_client, backend) -> None:
    backend.add("POST", "tasks/create-from-medical-card/", {"id": 60}, status=201)

    response = await api_client.post(
        "/api/v1/medical-cards/12/tasks",
        json={"service": 6, "datetime": "2026-03-15T08:00"},
    )

    assert response.status_code == 201
    assert response.json() == {"id": 60}
    assert backend.calls[0].body == {
        "medical_card": 12,
        "service": 6,
        "datetime": "2026-03-15T08:00",
    }


async def test_create_task_from_card_requires_service(api_client, backend, labels) -> None:
    response = await api_client.post("/api/v1/medical-cards/12/tasks", json={})

    assert response.status_code == 422
    assert response.json()["detail"] == labels.message("task.service_required")
