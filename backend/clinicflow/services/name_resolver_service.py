"""Display-name resolution for pets, services, medicines and schedules."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from clinicflow.core.labels import EMPTY_LABEL, Labels, get_labels
from clinicflow.integrations.clinic_api import ClinicApiClient, ClinicApiError
from clinicflow.services.reference_service import (
    EmbeddedRef,
    EntityKind,
    IdRef,
    Reference,
    TaskRefs,
    name_from,
    normalize_id,
    normalize_task,
    reference_id,
    schedule_pet,
    service_medicine,
)

logger = logging.getLogger(__name__)

_Key = tuple[EntityKind, str]


class EntityResolver:
    """Resolve entity references to display names with per-key fetch dedupe.

    One resolver belongs to one dashboard session. Its caches live as long as
    the session and are dropped with :meth:`invalidate` or :meth:`aclose`.
    A fetch that fails caches the ``"{Kind} #{id}"`` placeholder so the same
    id is never requested twice.
    """

    def __init__(self, client: ClinicApiClient, *, labels: Labels | None = None) -> None:
        self._client = client
        self._labels = labels or get_labels()
        self._names: dict[_Key, str] = {}
        self._failed: set[_Key] = set()
        self._schedule_pets: dict[str, str | None] = {}
        self._service_medicines: dict[str, str | None] = {}
        self._inflight: dict[_Key, asyncio.Task[None]] = {}

    @property
    def labels(self) -> Labels:
        return self._labels

    @property
    def pending(self) -> frozenset[_Key]:
        return frozenset(self._inflight)

    def bind(self, client: ClinicApiClient) -> None:
        """Use ``client`` (carrying the current caller's headers) for new fetches."""
        self._client = client

    # cache reads

    def cached(self, kind: EntityKind, entity_id: Any) -> str | None:
        key = normalize_id(entity_id)
        if key is None:
            return None
        return self._names.get((kind, key))

    def _is_loaded(self, kind: EntityKind, entity_id: str) -> bool:
        if kind is EntityKind.SCHEDULE:
            return entity_id in self._schedule_pets
        return (kind, entity_id) in self._names

    # fetching

    def _start(self, kind: EntityKind, entity_id: str) -> asyncio.Task[None] | None:
        key = (kind, entity_id)
        task = self._inflight.get(key)
        if task is not None or self._is_loaded(kind, entity_id):
            return task
        task = asyncio.get_running_loop().create_task(self._load(kind, entity_id))
        self._inflight[key] = task
        return task

    def _schedule(self, kind: EntityKind, entity_id: str) -> None:
        try:
            self._start(kind, entity_id)
        except RuntimeError:
            # no running loop; callers get the placeholder until a later read
            return

    async def _ensure(self, kind: EntityKind, entity_id: str) -> None:
        task = self._start(kind, entity_id)
        if task is not None:
            await asyncio.shield(task)

    async def _load(self, kind: EntityKind, entity_id: str) -> None:
        key = (kind, entity_id)
        try:
            try:
                payload = await self._client.get(f"{kind.endpoint}{entity_id}/")
            except ClinicApiError as exc:
                logger.debug("Could not resolve %s %s: %s", kind.value, entity_id, exc)
                self._remember_failure(kind, entity_id)
                return
            await self._store(kind, entity_id, payload)
        finally:
            self._inflight.pop(key, None)

    def _remember_failure(self, kind: EntityKind, entity_id: str) -> None:
        if kind is EntityKind.SCHEDULE:
            self._schedule_pets.setdefault(entity_id, None)
            return
        key = (kind, entity_id)
        self._failed.add(key)
        self._names.setdefault(key, self._labels.placeholder(kind.value, entity_id))

    async def _store(self, kind: EntityKind, entity_id: str, payload: Any) -> None:
        if kind is EntityKind.SCHEDULE:
            pet_id, pet_name = schedule_pet(payload)
            self._schedule_pets[entity_id] = pet_id
            if pet_id and pet_name:
                self._names.setdefault((EntityKind.PET, pet_id), pet_name)
            elif pet_id:
                await self._ensure(EntityKind.PET, pet_id)
            return

        name = name_from(payload, kind.name_fields)
        key = (kind, entity_id)
        if name is None:
            self._failed.add(key)
        self._names[key] = name or self._labels.placeholder(kind.value, entity_id)

        if kind is EntityKind.SERVICE:
            medicine_id, medicine_name = service_medicine(payload)
            if medicine_id and medicine_name:
                self._names.setdefault((EntityKind.MEDICINE, medicine_id), medicine_name)
            elif medicine_id:
                await self._ensure(EntityKind.MEDICINE, medicine_id)
                medicine_name = self._names.get((EntityKind.MEDICINE, medicine_id))
            self._service_medicines[entity_id] = medicine_name

    # public API

    def peek(self, ref: Reference | None) -> str:
        """Return the best label available now, scheduling a fetch if needed."""

        if ref is None:
            return EMPTY_LABEL
        if isinstance(ref, EmbeddedRef) and ref.name:
            return ref.name
        if ref.id is None:
            return EMPTY_LABEL
        cached = self._names.get((ref.kind, ref.id))
        if cached is not None:
            return cached
        self._schedule(ref.kind, ref.id)
        return self._labels.placeholder(ref.kind.value, ref.id)

    async def resolve(self, kind: EntityKind, entity_id: Any) -> str:
        """Return a display name, fetching at most once per ``(kind, id)``."""

        key = normalize_id(entity_id)
        if key is None:
            return EMPTY_LABEL
        cached = self._names.get((kind, key))
        if cached is not None:
            return cached
        await self._ensure(kind, key)
        return self._names.get((kind, key)) or self._labels.placeholder(kind.value, key)

    async def lookup(self, kind: EntityKind, entity_id: Any) -> str | None:
        """Like :meth:`resolve` but ``None`` when no real name could be found."""

        key = normalize_id(entity_id)
        if key is None:
            return None
        await self.resolve(kind, key)
        if (kind, key) in self._failed:
            return None
        return self._names.get((kind, key))

    async def resolve_task_pet(self, task: Mapping[str, Any] | TaskRefs) -> str:
        """Walk direct fields, then the pet id, then ``schedule -> pet``."""

        refs = task if isinstance(task, TaskRefs) else normalize_task(task)
        if refs.pet_name:
            return refs.pet_name
        pet_id = reference_id(refs.pet)
        if pet_id is None:
            schedule_id = reference_id(refs.schedule)
            if schedule_id is None:
                return EMPTY_LABEL
            await self._ensure(EntityKind.SCHEDULE, schedule_id)
            pet_id = self._schedule_pets.get(schedule_id)
            if pet_id is None:
                return EMPTY_LABEL
        return await self.resolve(EntityKind.PET, pet_id)

    async def ensure_task_details(self, task: Mapping[str, Any] | TaskRefs) -> None:
        """Load pet and service details for a task opened in the detail view."""

        refs = task if isinstance(task, TaskRefs) else normalize_task(task)
        pending = [self.resolve_task_pet(refs)]
        service_id = reference_id(refs.service)
        if service_id is not None:
            pending.append(self.resolve(EntityKind.SERVICE, service_id))
        await asyncio.gather(*pending)

    def prefetch_task(self, task: Mapping[str, Any] | TaskRefs) -> None:
        """Schedule background fetches needed to label ``task``."""

        refs = task if isinstance(task, TaskRefs) else normalize_task(task)
        if not refs.pet_name:
            pet_id = reference_id(refs.pet)
            schedule_id = reference_id(refs.schedule)
            if pet_id is not None:
                self._schedule(EntityKind.PET, pet_id)
            elif schedule_id is not None:
                self._schedule(EntityKind.SCHEDULE, schedule_id)
        service_id = reference_id(refs.service)
        if service_id is not None:
            self._schedule(EntityKind.SERVICE, service_id)

    def display_pet_name(self, task: Mapping[str, Any] | TaskRefs) -> str:
        refs = task if isinstance(task, TaskRefs) else normalize_task(task)
        if refs.pet_name:
            return refs.pet_name
        pet_id = reference_id(refs.pet)
        if pet_id is not None and (EntityKind.PET, pet_id) in self._names:
            return self._names[(EntityKind.PET, pet_id)]

        schedule_id = reference_id(refs.schedule)
        if schedule_id is not None:
            derived = self._schedule_pets.get(schedule_id)
            if derived is not None:
                return self._names.get(
                    (EntityKind.PET, derived),
                    self._labels.placeholder(EntityKind.PET.value, derived),
                )
            if pet_id is None and (EntityKind.SCHEDULE, schedule_id) in self._inflight:
                return self._labels.message("loading")

        if pet_id is not None:
            return self._labels.placeholder(EntityKind.PET.value, pet_id)
        return EMPTY_LABEL

    def display_service_name(self, task: Mapping[str, Any] | TaskRefs) -> str:
        """Service label, with ``" · {medicine}"`` appended when one is known."""

        refs = task if isinstance(task, TaskRefs) else normalize_task(task)
        service_id = reference_id(refs.service)
        base = refs.service_name
        medicine = refs.medicine_name

        if service_id is not None:
            key = (EntityKind.SERVICE, service_id)
            if key in self._names and key not in self._failed:
                base = self._names[key]
            elif base is None:
                base = self._labels.placeholder(EntityKind.SERVICE.value, service_id)
            medicine = self._service_medicines.get(service_id) or medicine

        if medicine:
            return f"{base or EMPTY_LABEL} · {medicine}"
        return base or EMPTY_LABEL

    async def settle(self, timeout: float | None = None) -> bool:
        """Wait for in-flight fetches (including chained ones) up to ``timeout``.

        Returns ``True`` when nothing is left pending.
        """

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._inflight:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(set(self._inflight.values()), timeout=remaining)
        return True

    def invalidate(self, kind: EntityKind | None = None, entity_id: Any = None) -> None:
        """Drop cached names for one entity, one kind, or everything."""

        if kind is None:
            self._names.clear()
            self._failed.clear()
            self._schedule_pets.clear()
            self._service_medicines.clear()
            return
        key = normalize_id(entity_id)
        if key is None:
            for cached in [k for k in self._names if k[0] is kind]:
                self._names.pop(cached, None)
                self._failed.discard(cached)
            if kind is EntityKind.SCHEDULE:
                self._schedule_pets.clear()
            elif kind is EntityKind.SERVICE:
                self._service_medicines.clear()
            return
        self._names.pop((kind, key), None)
        self._failed.discard((kind, key))
        if kind is EntityKind.SCHEDULE:
            self._schedule_pets.pop(key, None)
        elif kind is EntityKind.SERVICE:
            self._service_medicines.pop(key, None)

    async def aclose(self) -> None:
        """Cancel outstanding fetches and forget every cached name."""

        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        self.invalidate()


def reference_label(resolver: EntityResolver, kind: EntityKind, value: Any) -> str:
    """Non-blocking label for a raw id or embedded object."""

    if isinstance(value, Mapping):
        ref: Reference | None = EmbeddedRef(
            kind=kind,
            id=normalize_id(value),
            name=name_from(value, kind.name_fields),
            value=value,
        )
    else:
        entity_id = normalize_id(value)
        ref = IdRef(kind=kind, id=entity_id) if entity_id else None
    return resolver.peek(ref)


__all__ = ["EntityResolver", "reference_label"]
