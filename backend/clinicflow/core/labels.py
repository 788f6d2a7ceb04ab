"""Localized labels used in placeholders and workflow messages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

EMPTY_LABEL = "—"

_ENTITY_LABELS: dict[str, dict[str, str]] = {
    "ru": {
        "pet": "Питомец",
        "service": "Услуга",
        "medicine": "Препарат",
        "schedule": "Расписание",
        "feed": "Корм",
        "room": "Палата",
    },
    "en": {
        "pet": "Pet",
        "service": "Service",
        "medicine": "Medicine",
        "schedule": "Schedule",
        "feed": "Feed",
        "room": "Room",
    },
}

_MESSAGES: dict[str, dict[str, str]] = {
    "ru": {
        "loading": "Загрузка…",
        "task.done": "Задача отмечена как выполненная",
        "task.already_done": "Задача уже выполнена",
        "task.only_from_todo": "Отметить выполнение можно только из списка «К выполнению»",
        "task.only_today": "Отметить выполнение можно только в день процедуры",
        "task.in_progress": "Задача уже отправлена на обновление",
        "task.update_error": "Не удалось обновить задачу",
        "task.create_error": "Не удалось создать задачу",
        "task.service_required": "Выберите услугу",
        "task.title_required": "Введите название задачи",
        "task.due_date_required": "Выберите срок выполнения",
        "nurse.profile_not_found": "Профиль медсестры не найден",
        "card.locked": "Карта закрыта для изменений",
        "card.no_changes": "Нет изменений",
        "card.saved": "Карта обновлена",
        "card.save_error": "Не удалось сохранить карту",
        "card.load_error": "Не удалось загрузить карту",
        "card.usages_load_error": "Не удалось загрузить услуги и препараты",
        "card.stationary_required": "Укажите палату и даты стационара",
        "card.stay_range": "Дата окончания раньше даты начала",
        "card.attachment_error": "Не удалось загрузить вложение",
        "usage.incomplete": "Строка пропущена: не заполнены обязательные поля",
    },
    "en": {
        "loading": "Loading…",
        "task.done": "Task marked as done",
        "task.already_done": "Task is already completed",
        "task.only_from_todo": "Tasks can only be completed from the to-do list",
        "task.only_today": "Tasks can only be completed on the scheduled day",
        "task.in_progress": "Task update is already in progress",
        "task.update_error": "Failed to update task",
        "task.create_error": "Failed to create task",
        "task.service_required": "Please select a service",
        "task.title_required": "Please enter a task title",
        "task.due_date_required": "Please select a due date",
        "nurse.profile_not_found": "Nurse profile not found",
        "card.locked": "Card can no longer be edited",
        "card.no_changes": "No changes",
        "card.saved": "Card updated",
        "card.save_error": "Failed to save card",
        "card.load_error": "Failed to load card",
        "card.usages_load_error": "Failed to load services and medicines",
        "card.stationary_required": "Select a room and fill in the stay period",
        "card.stay_range": "Stay end is before stay start",
        "card.attachment_error": "Failed to upload attachment",
        "usage.incomplete": "Row skipped: required fields are missing",
    },
}


@dataclass(slots=True, frozen=True)
class Labels:
    """Label lookup bound to one locale."""

    locale: str = "ru"

    @property
    def _entities(self) -> Mapping[str, str]:
        return _ENTITY_LABELS.get(self.locale, _ENTITY_LABELS["ru"])

    def entity(self, kind: str) -> str:
        return self._entities.get(kind, kind.capitalize())

    def placeholder(self, kind: str, entity_id: object) -> str:
        """Return the deterministic ``"{Kind} #{id}"`` label."""
        return f"{self.entity(kind)} #{entity_id}"

    def message(self, key: str) -> str:
        table = _MESSAGES.get(self.locale, _MESSAGES["ru"])
        return table.get(key, key)


def get_labels(locale: str | None = None) -> Labels:
    """Return labels for ``locale`` (unknown locales fall back to Russian)."""
    if locale is None:
        from clinicflow.core.config import get_settings

        locale = get_settings().label_locale
    if locale not in _MESSAGES:
        locale = "ru"
    return Labels(locale=locale)


__all__ = ["EMPTY_LABEL", "Labels", "get_labels"]
