"""Schemas for the medical card edit session and save pipeline."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from clinicflow.services.medical_card_service import (
    CardEditForm,
    EditSession,
    SaveResult,
)
from clinicflow.services.stationary_service import (
    BookingType,
    StationaryForm,
    switch_booking_type,
)
from clinicflow.services.usage_reconciler_service import UsageCollection, UsageDraft


class StationaryFormSchema(BaseModel):
    is_stationary: bool = False
    room: int | str | None = None
    booking_type: BookingType = BookingType.DAILY
    stay_start: str | None = None
    stay_end: str | None = None
    hourly_start: str | None = None
    hourly_end: str | None = None

    @classmethod
    def from_form(cls, form: StationaryForm) -> "StationaryFormSchema":
        return cls(
            is_stationary=form.is_stationary,
            room=form.room,
            booking_type=form.booking_type,
            stay_start=form.stay_start,
            stay_end=form.stay_end,
            hourly_start=form.hourly_start,
            hourly_end=form.hourly_end,
        )

    def to_form(self) -> StationaryForm:
        """Form values with the inactive booking pair cleared."""
        form = StationaryForm(
            is_stationary=self.is_stationary,
            room=str(self.room) if self.room not in (None, "") else None,
            booking_type=self.booking_type,
            stay_start=self.stay_start or None,
            stay_end=self.stay_end or None,
            hourly_start=self.hourly_start or None,
            hourly_end=self.hourly_end or None,
        )
        return switch_booking_type(form, self.booking_type)


class CardEditFormSchema(BaseModel):
    """Editable card fields as shown in the edit dialog."""

    diagnosis: str = ""
    analyze: str = ""
    general_condition: str = ""
    chest_condition: str = ""
    notes: str = ""
    recommended_feed_text: str = ""
    revisit_date: str | None = None
    stationary: StationaryFormSchema = Field(default_factory=StationaryFormSchema)

    @classmethod
    def from_form(cls, form: CardEditForm) -> "CardEditFormSchema":
        return cls(
            diagnosis=form.diagnosis,
            analyze=form.analyze,
            general_condition=form.general_condition,
            chest_condition=form.chest_condition,
            notes=form.notes,
            recommended_feed_text=form.recommended_feed_text,
            revisit_date=form.revisit_date,
            stationary=StationaryFormSchema.from_form(form.stationary),
        )

    def to_form(self) -> CardEditForm:
        return CardEditForm(
            diagnosis=self.diagnosis,
            analyze=self.analyze,
            general_condition=self.general_condition,
            chest_condition=self.chest_condition,
            notes=self.notes,
            recommended_feed_text=self.recommended_feed_text,
            revisit_date=self.revisit_date or None,
            stationary=self.stationary.to_form(),
        )


def _flagged_rows(draft: UsageDraft) -> list[dict[str, Any]]:
    return [{"_localId": row.local_id, **row.values} for row in draft.rows]


class EditSessionRead(BaseModel):
    card_id: str
    card: dict[str, Any]
    editable: bool
    form: CardEditFormSchema
    services: list[dict[str, Any]] = Field(default_factory=list)
    medicines: list[dict[str, Any]] = Field(default_factory=list)
    feeds: list[dict[str, Any]] = Field(default_factory=list)
    attachments: list[Any] = Field(default_factory=list)
    usages_error: str | None = None

    @classmethod
    def from_session(cls, session: EditSession) -> "EditSessionRead":
        return cls(
            card_id=session.card_id,
            card=dict(session.card),
            editable=session.editable,
            form=CardEditFormSchema.from_form(session.form),
            services=_flagged_rows(session.drafts[UsageCollection.SERVICES]),
            medicines=_flagged_rows(session.drafts[UsageCollection.MEDICINES]),
            feeds=_flagged_rows(session.drafts[UsageCollection.FEEDS]),
            attachments=session.attachments,
            usages_error=session.usages_error,
        )


class CardSavePayload(BaseModel):
    """JSON part of a save request.

    Usage lists carry the ``_new``, ``_dirty`` and ``_deleted`` flags; a
    missing list leaves that collection untouched.
    """

    form: CardEditFormSchema
    services: list[dict[str, Any]] | None = None
    medicines: list[dict[str, Any]] | None = None
    feeds: list[dict[str, Any]] | None = None
    doctor_id: int | str | None = None
    page: int = Field(default=1, ge=1)

    def usage_lists(self) -> dict[UsageCollection, list[dict[str, Any]]]:
        lists = {
            UsageCollection.SERVICES: self.services,
            UsageCollection.MEDICINES: self.medicines,
            UsageCollection.FEEDS: self.feeds,
        }
        return {key: value for key, value in lists.items() if value is not None}


class OperationResultRead(BaseModel):
    method: str
    path: str
    local_id: str
    ok: bool
    detail: str | None = None


class AttachmentErrorRead(BaseModel):
    filename: str
    message: str


class CardSaveResponse(BaseModel):
    status: str
    message: str
    card_patch: dict[str, Any] = Field(default_factory=dict)
    usage_results: dict[str, list[OperationResultRead]] = Field(default_factory=dict)
    skipped_rows: dict[str, list[str]] = Field(default_factory=dict)
    attachments: list[Any] = Field(default_factory=list)
    attachment_errors: list[AttachmentErrorRead] = Field(default_factory=list)
    doctor_cards: list[Any] | None = None
    client_cards: list[Any] | None = None

    @classmethod
    def from_result(cls, result: SaveResult) -> "CardSaveResponse":
        return cls(
            status=result.status,
            message=result.message,
            card_patch=result.card_patch,
            usage_results={
                collection.value: [
                    OperationResultRead(
                        method=item.operation.method,
                        path=item.operation.path,
                        local_id=item.operation.local_id,
                        ok=item.ok,
                        detail=item.detail,
                    )
                    for item in items
                ]
                for collection, items in result.usage_results.items()
            },
            skipped_rows={
                collection.value: rows for collection, rows in result.skipped_rows.items()
            },
            attachments=result.attachments,
            attachment_errors=[
                AttachmentErrorRead(filename=error.filename, message=error.message)
                for error in result.attachment_errors
            ],
            doctor_cards=result.doctor_cards,
            client_cards=result.client_cards,
        )


__all__ = [
    "AttachmentErrorRead",
    "CardEditFormSchema",
    "CardSavePayload",
    "CardSaveResponse",
    "EditSessionRead",
    "OperationResultRead",
    "StationaryFormSchema",
]
