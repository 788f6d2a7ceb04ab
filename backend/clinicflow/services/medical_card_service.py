"""Doctor-side editing of a medical card: load, diff and the save pipeline."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from typing import Any
from zoneinfo import ZoneInfo

from clinicflow.core.labels import Labels
from clinicflow.integrations.clinic_api import (
    ClinicApiClient,
    ClinicApiError,
    UploadPart,
    as_list,
)
from clinicflow.services.name_resolver_service import EntityResolver
from clinicflow.services.reference_service import normalize_id
from clinicflow.services.stationary_service import (
    STATIONARY_FIELDS,
    StationaryForm,
    build_stationary_patch,
    form_from_card as stationary_form_from_card,
    local_day,
    local_minute,
)
from clinicflow.services.usage_reconciler_service import (
    COLLECTION_ORDER,
    OperationResult,
    UsageCollection,
    UsageDraft,
    apply_usage_plan,
    plan_usage_operations,
)

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = frozenset(
    {"OPEN", "WAITING_FOR_PAYMENT", "WAITING", "PENDING_PAYMENT", "PARTLY_PAID"}
)
SCALAR_FIELDS: tuple[str, ...] = (
    "diagnosis",
    "analyze",
    "general_condition",
    "chest_condition",
    "notes",
    "recommended_feed_text",
)


class AttachmentType(str, enum.Enum):
    XRAY = "XRAY"
    PRESCRIPTION = "PRESCRIPTION"
    OTHER = "OTHER"


class CardLockedError(ValueError):
    """Raised when a closed or paid card is saved."""


class CardSaveFailed(ValueError):
    """Raised when the card patch itself is rejected."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def card_status(card: Mapping[str, Any]) -> str:
    return str(card.get("status") or "OPEN").strip().upper()


def is_editable(card: Mapping[str, Any]) -> bool:
    return card_status(card) in EDITABLE_STATUSES


@dataclass(slots=True)
class CardEditForm:
    diagnosis: str = ""
    analyze: str = ""
    general_condition: str = ""
    chest_condition: str = ""
    notes: str = ""
    recommended_feed_text: str = ""
    revisit_date: str | None = None
    stationary: StationaryForm = field(default_factory=StationaryForm)


def edit_form_from_card(card: Mapping[str, Any], *, tz: ZoneInfo) -> CardEditForm:
    return CardEditForm(
        **{name: str(card.get(name) or "") for name in SCALAR_FIELDS},
        revisit_date=local_day(card.get("revisit_date"), tz),
        stationary=stationary_form_from_card(card, tz=tz),
    )


@dataclass(slots=True)
class EditSession:
    card_id: str
    card: Mapping[str, Any]
    form: CardEditForm
    drafts: dict[UsageCollection, UsageDraft]
    attachments: list[Any] = field(default_factory=list)
    usages_error: str | None = None

    @property
    def editable(self) -> bool:
        return is_editable(self.card)


async def _usage_rows(
    client: ClinicApiClient, collection: UsageCollection, card_id: str
) -> list[Any] | None:
    try:
        payload = await client.get(
            collection.layout.endpoint, params={"medical_card": card_id}
        )
    except ClinicApiError as exc:
        logger.warning("Could not load %s for card %s: %s", collection.value, card_id, exc)
        return None
    return as_list(payload)


async def load_edit_session(
    client: ClinicApiClient, card_id: Any, *, tz: ZoneInfo, labels: Labels
) -> EditSession:
    """Fetch the card and its usages; usage failures degrade to empty drafts."""

    key = normalize_id(card_id)
    if key is None:
        raise ValueError(labels.message("card.load_error"))
    card = await client.get(f"medical-cards/{key}/")
    if not isinstance(card, Mapping):
        raise ValueError(labels.message("card.load_error"))

    services, medicines, feeds = await asyncio.gather(
        _usage_rows(client, UsageCollection.SERVICES, key),
        _usage_rows(client, UsageCollection.MEDICINES, key),
        _usage_rows(client, UsageCollection.FEEDS, key),
    )
    usages_error = None
    if services is None or medicines is None:
        usages_error = labels.message("card.usages_load_error")

    drafts = {
        UsageCollection.SERVICES: UsageDraft.hydrate(UsageCollection.SERVICES, services or []),
        UsageCollection.MEDICINES: UsageDraft.hydrate(UsageCollection.MEDICINES, medicines or []),
        UsageCollection.FEEDS: UsageDraft.hydrate(UsageCollection.FEEDS, feeds or []),
    }
    attachments = card.get("attachments")
    return EditSession(
        card_id=key,
        card=card,
        form=edit_form_from_card(card, tz=tz),
        drafts=drafts,
        attachments=list(attachments) if isinstance(attachments, list) else [],
        usages_error=usages_error,
    )


def revisit_instant(value: Any) -> str | None:
    """ISO instant for a revisit date; bare dates are midnight UTC."""

    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=UTC)
    elif isinstance(value, date):
        moment = datetime.combine(value, time.min, tzinfo=UTC)
    else:
        text = str(value).strip()
        if text.endswith(("Z", "z")):
            text = f"{text[:-1]}+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid revisit date: {value!r}") from exc
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _stationary_matches(
    patch: Mapping[str, Any], card: Mapping[str, Any], tz: ZoneInfo
) -> bool:
    for name in STATIONARY_FIELDS:
        new = patch.get(name)
        old = card.get(name)
        if name in ("hourly_start", "hourly_end"):
            if local_minute(new, tz) != local_minute(old, tz):
                return False
        elif name in ("stay_start", "stay_end"):
            if local_day(new, tz) != local_day(old, tz):
                return False
        elif name == "booking_type":
            if (str(new).upper() if new else None) != (str(old).upper() if old else None):
                return False
        elif normalize_id(new) != normalize_id(old):
            return False
    return True


def build_card_patch(
    card: Mapping[str, Any],
    form: CardEditForm,
    *,
    tz: ZoneInfo,
    labels: Labels,
) -> dict[str, Any]:
    """Sparse diff of the card: changed text fields, revisit date and stationary block."""

    patch: dict[str, Any] = {}
    for name in SCALAR_FIELDS:
        new = (getattr(form, name) or "").strip()
        if new != str(card.get(name) or "").strip():
            patch[name] = new

    if local_day(form.revisit_date, tz) != local_day(card.get("revisit_date"), tz):
        patch["revisit_date"] = revisit_instant(form.revisit_date)

    stationary = build_stationary_patch(form.stationary, card, tz=tz, labels=labels)
    if stationary and not _stationary_matches(stationary, card, tz):
        patch.update(stationary)
    return patch


@dataclass(slots=True, frozen=True)
class AttachmentUpload:
    part: UploadPart
    type: AttachmentType = AttachmentType.OTHER


@dataclass(slots=True, frozen=True)
class AttachmentError:
    filename: str
    message: str


@dataclass(slots=True)
class SaveResult:
    status: str
    message: str
    card_patch: dict[str, Any] = field(default_factory=dict)
    usage_results: dict[UsageCollection, list[OperationResult]] = field(default_factory=dict)
    skipped_rows: dict[UsageCollection, list[str]] = field(default_factory=dict)
    attachments: list[Any] = field(default_factory=list)
    attachment_errors: list[AttachmentError] = field(default_factory=list)
    doctor_cards: list[Any] | None = None
    client_cards: list[Any] | None = None


async def _snapshot_names(
    resolver: EntityResolver, draft: UsageDraft
) -> dict[str, str]:
    kind = draft.collection.layout.kind
    if draft.collection.layout.name_field is None:
        return {}
    names: dict[str, str] = {}
    for ref_id in sorted(draft.reference_ids()):
        name = await resolver.lookup(kind, ref_id)
        if name:
            names[ref_id] = name
    return names


async def _upload_attachments(
    client: ClinicApiClient,
    card_id: str,
    uploads: Sequence[AttachmentUpload],
    labels: Labels,
) -> tuple[list[Any], list[AttachmentError]]:
    created: list[Any] = []
    errors: list[AttachmentError] = []
    for upload in uploads:
        try:
            data = await client.upload(
                f"medical-cards/{card_id}/attachments/",
                upload.part,
                fields={"types": upload.type.value},
            )
        except ClinicApiError as exc:
            logger.warning(
                "Attachment %s for card %s failed: %s", upload.part.filename, card_id, exc
            )
            errors.append(
                AttachmentError(
                    filename=upload.part.filename,
                    message=exc.describe(labels.message("card.attachment_error")),
                )
            )
            continue
        if isinstance(data, list):
            created.extend(data)
        elif data:
            created.append(data)
    return created, errors


async def _refresh_list(client: ClinicApiClient, path: str) -> list[Any] | None:
    try:
        return as_list(await client.get(path))
    except ClinicApiError as exc:
        logger.warning("Could not refresh %s: %s", path, exc)
        return None


async def save_edit_session(
    client: ClinicApiClient,
    resolver: EntityResolver,
    session: EditSession,
    *,
    form: CardEditForm,
    drafts: Mapping[UsageCollection, UsageDraft],
    attachments: Sequence[AttachmentUpload] = (),
    tz: ZoneInfo,
    labels: Labels,
    doctor_id: Any = None,
    page: int = 1,
) -> SaveResult:
    """Persist an edit session.

    The card patch is fatal on failure. Usage rows and attachments after it
    fail individually without aborting the save.
    """

    card = session.card
    card_id = session.card_id
    if not is_editable(card):
        raise CardLockedError(labels.message("card.locked"))

    patch = build_card_patch(card, form, tz=tz, labels=labels)
    usages_changed = any(draft.has_changes for draft in drafts.values())
    if not patch and not usages_changed and not attachments:
        return SaveResult(status="no_changes", message=labels.message("card.no_changes"))

    if patch:
        try:
            await client.patch(f"medical-cards/{card_id}/", json=patch)
        except ClinicApiError as exc:
            raise CardSaveFailed(
                exc.describe(labels.message("card.save_error")),
                status_code=exc.status_code,
            ) from exc

    result = SaveResult(status="saved", message=labels.message("card.saved"), card_patch=patch)
    for collection in COLLECTION_ORDER:
        draft = drafts.get(collection)
        if draft is None or not draft.has_changes:
            continue
        names = await _snapshot_names(resolver, draft)
        plan = plan_usage_operations(draft, card_id=card_id, labels=labels, names=names)
        if plan.skipped:
            logger.info(
                "Skipping incomplete %s rows on card %s: %s",
                collection.value,
                card_id,
                ", ".join(plan.skipped),
            )
            result.skipped_rows[collection] = list(plan.skipped)
        result.usage_results[collection] = await apply_usage_plan(client, plan)

    if attachments:
        result.attachments, result.attachment_errors = await _upload_attachments(
            client, card_id, attachments, labels
        )

    doctor = normalize_id(doctor_id) or normalize_id(card.get("doctor"))
    if doctor is not None:
        result.doctor_cards = await _refresh_list(
            client, f"medical-cards/by-doctor/{doctor}/?page={page}"
        )
    owner = normalize_id(card.get("client"))
    if owner is not None:
        result.client_cards = await _refresh_list(client, f"medical-cards/by-user/{owner}/")
    return result


__all__ = [
    "AttachmentError",
    "AttachmentType",
    "AttachmentUpload",
    "CardEditForm",
    "CardLockedError",
    "CardSaveFailed",
    "EDITABLE_STATUSES",
    "EditSession",
    "SCALAR_FIELDS",
    "SaveResult",
    "build_card_patch",
    "card_status",
    "edit_form_from_card",
    "is_editable",
    "load_edit_session",
    "revisit_instant",
    "save_edit_session",
]
