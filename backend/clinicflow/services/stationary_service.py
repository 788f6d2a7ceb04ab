"""Stationary (hospitalization) booking form and its patch payload."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from clinicflow.core.labels import Labels
from clinicflow.services.reference_service import normalize_id
from clinicflow.services.task_lifecycle_service import parse_timestamp

STATIONARY_FIELDS: tuple[str, ...] = (
    "stationary_room",
    "booking_type",
    "stay_start",
    "stay_end",
    "hourly_start",
    "hourly_end",
)


class BookingType(str, enum.Enum):
    DAILY = "DAILY"
    HOURLY = "HOURLY"


class BookingValidationError(ValueError):
    """Raised when the stationary form cannot be saved."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


@dataclass(slots=True, frozen=True)
class StationaryForm:
    """Editable stationary fields.

    Daily dates are ``YYYY-MM-DD`` strings; hourly values are
    ``YYYY-MM-DDTHH:MM`` clinic wall-clock strings.
    """

    is_stationary: bool = False
    room: str | None = None
    booking_type: BookingType = BookingType.DAILY
    stay_start: str | None = None
    stay_end: str | None = None
    hourly_start: str | None = None
    hourly_end: str | None = None


def had_stationary(card: Mapping[str, Any]) -> bool:
    return any(
        card.get(name)
        for name in ("stationary_room", "stay_start", "stay_end", "hourly_start", "hourly_end")
    )


def local_day(value: Any, tz: ZoneInfo) -> str | None:
    """Clinic calendar day of a stored date or instant, as ``YYYY-MM-DD``."""

    if value in (None, ""):
        return None
    parsed = parse_timestamp(value, tz)
    if parsed is None:
        return str(value)[:10]
    return parsed.astimezone(tz).date().isoformat()


def local_minute(value: Any, tz: ZoneInfo) -> str | None:
    """Clinic wall-clock minute of a stored instant, as ``YYYY-MM-DDTHH:MM``."""

    if value in (None, ""):
        return None
    parsed = parse_timestamp(value, tz)
    if parsed is None:
        return str(value)[:16]
    return parsed.astimezone(tz).strftime("%Y-%m-%dT%H:%M")


def _booking_type(value: Any) -> BookingType:
    try:
        return BookingType(str(value).upper())
    except ValueError:
        return BookingType.DAILY


def form_from_card(card: Mapping[str, Any], *, tz: ZoneInfo) -> StationaryForm:
    return StationaryForm(
        is_stationary=had_stationary(card),
        room=normalize_id(card.get("stationary_room")),
        booking_type=_booking_type(card.get("booking_type")),
        stay_start=local_day(card.get("stay_start"), tz),
        stay_end=local_day(card.get("stay_end"), tz),
        hourly_start=local_minute(card.get("hourly_start"), tz),
        hourly_end=local_minute(card.get("hourly_end"), tz),
    )


def switch_booking_type(form: StationaryForm, booking_type: BookingType) -> StationaryForm:
    """Change the booking mode and clear the fields of the other one."""

    if booking_type is BookingType.DAILY:
        return replace(form, booking_type=booking_type, hourly_start=None, hourly_end=None)
    return replace(form, booking_type=booking_type, stay_start=None, stay_end=None)


def _parse_day(value: str, field: str, labels: Labels) -> date:
    try:
        return date.fromisoformat(value[:10])
    except ValueError as exc:
        raise BookingValidationError(field, labels.message("card.stationary_required")) from exc


def _parse_local(value: str, field: str, tz: ZoneInfo, labels: Labels) -> datetime:
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise BookingValidationError(field, labels.message("card.stationary_required")) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def to_utc_iso(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat().replace("+00:00", "Z")


def build_stationary_patch(
    form: StationaryForm,
    card: Mapping[str, Any],
    *,
    tz: ZoneInfo,
    labels: Labels,
) -> dict[str, Any]:
    """Stationary part of the card patch.

    The unused booking pair is always sent as explicit nulls, and removing a
    booking nulls all six fields.
    """

    if not form.is_stationary:
        if had_stationary(card):
            return {name: None for name in STATIONARY_FIELDS}
        return {}

    room = normalize_id(form.room)
    if room is None:
        raise BookingValidationError("stationary_room", labels.message("card.stationary_required"))

    patch: dict[str, Any] = {
        "stationary_room": int(room) if room.isdigit() else room,
        "booking_type": form.booking_type.value,
    }
    if form.booking_type is BookingType.DAILY:
        if not form.stay_start or not form.stay_end:
            field = "stay_start" if not form.stay_start else "stay_end"
            raise BookingValidationError(field, labels.message("card.stationary_required"))
        start = _parse_day(form.stay_start, "stay_start", labels)
        end = _parse_day(form.stay_end, "stay_end", labels)
        if end < start:
            raise BookingValidationError("stay_end", labels.message("card.stay_range"))
        patch.update(
            stay_start=start.isoformat(),
            stay_end=end.isoformat(),
            hourly_start=None,
            hourly_end=None,
        )
        return patch

    if not form.hourly_start or not form.hourly_end:
        field = "hourly_start" if not form.hourly_start else "hourly_end"
        raise BookingValidationError(field, labels.message("card.stationary_required"))
    start_at = _parse_local(form.hourly_start, "hourly_start", tz, labels)
    end_at = _parse_local(form.hourly_end, "hourly_end", tz, labels)
    if end_at < start_at:
        raise BookingValidationError("hourly_end", labels.message("card.stay_range"))
    patch.update(
        hourly_start=to_utc_iso(start_at),
        hourly_end=to_utc_iso(end_at),
        stay_start=None,
        stay_end=None,
    )
    return patch


__all__ = [
    "BookingType",
    "BookingValidationError",
    "STATIONARY_FIELDS",
    "StationaryForm",
    "build_stationary_patch",
    "form_from_card",
    "had_stationary",
    "local_day",
    "local_minute",
    "switch_booking_type",
    "to_utc_iso",
]
