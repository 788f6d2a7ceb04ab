"""Nurse task buckets, the completion gate and the ``TODO -> DONE`` transition."""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from typing import Any
from zoneinfo import ZoneInfo

from clinicflow.core.labels import Labels
from clinicflow.integrations.clinic_api import ClinicApiClient, ClinicApiError
from clinicflow.services.name_resolver_service import EntityResolver
from clinicflow.services.reference_service import normalize_id

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
RefreshCallback = Callable[[], Awaitable[Any]]


class TaskStatus(str, enum.Enum):
    TODO = "TODO"
    DONE = "DONE"


class TaskBucket(str, enum.Enum):
    """Dashboard list a task is shown in (and the origin it was opened from)."""

    TODO = "todo"
    DONE_TODAY = "done_today"
    DONE = "done"


class CompletionBlock(str, enum.Enum):
    """Reasons a task cannot be marked done, in the order they are checked."""

    ALREADY_DONE = "already_done"
    WRONG_ORIGIN = "wrong_origin"
    NOT_SCHEDULED_TODAY = "not_scheduled_today"
    IN_PROGRESS = "in_progress"


_BLOCK_MESSAGES = {
    CompletionBlock.ALREADY_DONE: "task.already_done",
    CompletionBlock.WRONG_ORIGIN: "task.only_from_todo",
    CompletionBlock.NOT_SCHEDULED_TODAY: "task.only_today",
    CompletionBlock.IN_PROGRESS: "task.in_progress",
}


class TaskCompletionRejected(ValueError):
    """Raised before any request when the completion gate is closed."""

    def __init__(self, reason: CompletionBlock, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class TaskUpdateFailed(ValueError):
    """Raised when the clinic API rejects the status change."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def task_status(task: Mapping[str, Any]) -> str:
    return str(task.get("status") or "").strip().upper()


def is_done(task: Mapping[str, Any]) -> bool:
    return task_status(task) == TaskStatus.DONE.value


def parse_timestamp(value: Any, tz: ZoneInfo) -> datetime | None:
    """Parse an ISO timestamp or date into an aware datetime.

    Naive values and bare dates are read as clinic wall-clock time.
    Unparseable values yield ``None``.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _local_now(now: datetime, tz: ZoneInfo) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    return now.astimezone(tz)


def scheduled_at(task: Mapping[str, Any], tz: ZoneInfo) -> datetime | None:
    """Scheduled moment of a task: ``datetime`` wins, ``due_date`` is the fallback."""

    return parse_timestamp(task.get("datetime"), tz) or parse_timestamp(
        task.get("due_date"), tz
    )


def is_scheduled_for_today(
    task: Mapping[str, Any], *, now: datetime, tz: ZoneInfo
) -> bool:
    moment = scheduled_at(task, tz)
    if moment is None:
        return False
    return moment.astimezone(tz).date() == _local_now(now, tz).date()


def completed_at(task: Mapping[str, Any], tz: ZoneInfo) -> datetime | None:
    return parse_timestamp(task.get("completed_at"), tz) or parse_timestamp(
        task.get("updated_at"), tz
    )


def classify(task: Mapping[str, Any], *, now: datetime, tz: ZoneInfo) -> TaskBucket:
    if not is_done(task):
        return TaskBucket.TODO
    finished = completed_at(task, tz)
    if finished is not None and finished.astimezone(tz).date() == _local_now(now, tz).date():
        return TaskBucket.DONE_TODAY
    return TaskBucket.DONE


@dataclass(slots=True)
class TaskBuckets:
    todo: list[Mapping[str, Any]] = field(default_factory=list)
    done_today: list[Mapping[str, Any]] = field(default_factory=list)
    done: list[Mapping[str, Any]] = field(default_factory=list)

    def bucket(self, name: TaskBucket) -> list[Mapping[str, Any]]:
        return getattr(self, name.value)

    def all(self) -> list[Mapping[str, Any]]:
        return [*self.todo, *self.done_today, *self.done]


def partition(
    tasks: Iterable[Any], *, now: datetime, tz: ZoneInfo
) -> TaskBuckets:
    """Split tasks into disjoint buckets; a repeated id keeps its first record."""

    buckets = TaskBuckets()
    seen: set[str] = set()
    for task in tasks:
        if not isinstance(task, Mapping):
            continue
        task_id = normalize_id(task.get("id"))
        if task_id is not None:
            if task_id in seen:
                continue
            seen.add(task_id)
        buckets.bucket(classify(task, now=now, tz=tz)).append(task)
    return buckets


def check_completion(
    task: Mapping[str, Any],
    origin: TaskBucket,
    *,
    now: datetime,
    tz: ZoneInfo,
) -> CompletionBlock | None:
    """Return the first reason completion is refused, or ``None`` if allowed."""

    if is_done(task):
        return CompletionBlock.ALREADY_DONE
    if origin is not TaskBucket.TODO:
        return CompletionBlock.WRONG_ORIGIN
    if not is_scheduled_for_today(task, now=now, tz=tz):
        return CompletionBlock.NOT_SCHEDULED_TODAY
    return None


def restriction_message(block: CompletionBlock | None, labels: Labels) -> str | None:
    if block is None:
        return None
    return labels.message(_BLOCK_MESSAGES[block])


@dataclass(slots=True)
class OpenTask:
    """The task currently shown in the detail view."""

    task: Mapping[str, Any]
    origin: TaskBucket
    details_loading: bool = False


class TaskLifecycleManager:
    """Detail-view state and status transitions for one dashboard session."""

    def __init__(
        self,
        client: ClinicApiClient,
        resolver: EntityResolver,
        *,
        tz: ZoneInfo,
        labels: Labels | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._tz = tz
        self._labels = labels or resolver.labels
        self._clock = clock or (lambda: datetime.now(UTC))
        self._details_request_id = 0
        self._updating: set[str] = set()
        self.updating_task_id: str | None = None
        self.selected: OpenTask | None = None

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def now(self) -> datetime:
        return self._clock()

    def bind(self, client: ClinicApiClient) -> None:
        self._client = client

    def verdict(
        self, task: Mapping[str, Any], origin: TaskBucket
    ) -> CompletionBlock | None:
        block = check_completion(task, origin, now=self.now(), tz=self._tz)
        if block is None:
            task_id = normalize_id(task.get("id"))
            if task_id is not None and task_id in self._updating:
                return CompletionBlock.IN_PROGRESS
        return block

    def restriction(self, task: Mapping[str, Any], origin: TaskBucket) -> str | None:
        return restriction_message(self.verdict(task, origin), self._labels)

    def open_task(self, task: Mapping[str, Any], origin: TaskBucket) -> OpenTask:
        self.selected = OpenTask(task=task, origin=origin)
        return self.selected

    def origin_of(self, task: Mapping[str, Any], claimed: TaskBucket) -> TaskBucket:
        """List the task was opened from; ``claimed`` when it is not the open task."""

        opened = self.selected
        if opened is None:
            return claimed
        if normalize_id(opened.task.get("id")) == normalize_id(task.get("id")):
            return opened.origin
        return claimed

    async def load_details(self, task: Mapping[str, Any] | None = None) -> bool:
        """Resolve names for the open task.

        Returns ``False`` when a newer load started meanwhile; the stale load
        then leaves ``details_loading`` alone.
        """

        current = self.selected
        target = task if task is not None else (current.task if current else None)
        if target is None:
            return False
        self._details_request_id += 1
        request_id = self._details_request_id
        if current is not None:
            current.details_loading = True
        try:
            await self._resolver.ensure_task_details(target)
        finally:
            if self._details_request_id == request_id and self.selected is not None:
                self.selected.details_loading = False
        return self._details_request_id == request_id

    async def mark_done(
        self,
        task: Mapping[str, Any],
        origin: TaskBucket,
        *,
        refresh: RefreshCallback | None = None,
    ) -> Any:
        """Send ``PATCH tasks/{id}/ {status: DONE}``, refresh, close the detail view."""

        block = self.verdict(task, self.origin_of(task, origin))
        if block is not None:
            raise TaskCompletionRejected(block, restriction_message(block, self._labels) or "")

        task_id = normalize_id(task.get("id"))
        if task_id is None:
            raise TaskUpdateFailed(self._labels.message("task.update_error"))

        self._updating.add(task_id)
        self.updating_task_id = task_id
        try:
            try:
                await self._client.patch(
                    f"tasks/{task_id}/", json={"status": TaskStatus.DONE.value}
                )
            except ClinicApiError as exc:
                raise TaskUpdateFailed(
                    exc.describe(self._labels.message("task.update_error")),
                    status_code=exc.status_code,
                ) from exc
            logger.info("Task %s marked as done", task_id)
            result = await refresh() if refresh is not None else None
            self.close()
            return result
        finally:
            self._updating.discard(task_id)
            if self.updating_task_id == task_id:
                self.updating_task_id = None

    def close(self) -> None:
        self.selected = None


__all__ = [
    "CompletionBlock",
    "OpenTask",
    "TaskBucket",
    "TaskBuckets",
    "TaskCompletionRejected",
    "TaskLifecycleManager",
    "TaskStatus",
    "TaskUpdateFailed",
    "check_completion",
    "classify",
    "completed_at",
    "is_done",
    "is_scheduled_for_today",
    "parse_timestamp",
    "partition",
    "restriction_message",
    "scheduled_at",
    "task_status",
]
