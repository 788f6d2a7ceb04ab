"""Specialized settings adapters for the upstream client and workflows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel

from clinicflow.core.config import get_settings

logger = logging.getLogger(__name__)


class UpstreamSettings(BaseModel):
    """Slim view of the clinic REST API configuration."""

    base_url: str
    timeout: float = 10.0
    service_token: str | None = None


@dataclass(slots=True, frozen=True)
class WorkflowSettings:
    """Values shared by the nurse and doctor workflows."""

    timezone: ZoneInfo
    locale: str
    resolve_wait_seconds: float
    session_idle_seconds: int


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):  # pragma: no cover - depends on system tz database
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return ZoneInfo("UTC")


def get_upstream_settings() -> UpstreamSettings:
    """Return upstream-specific configuration."""

    settings = get_settings()
    return UpstreamSettings(
        base_url=settings.clinic_api_base,
        timeout=settings.clinic_api_timeout,
        service_token=settings.clinic_api_token or None,
    )


def get_workflow_settings() -> WorkflowSettings:
    """Return workflow configuration with the clinic timezone resolved."""

    settings = get_settings()
    return WorkflowSettings(
        timezone=resolve_timezone(settings.local_timezone),
        locale=settings.label_locale,
        resolve_wait_seconds=settings.resolve_wait_seconds,
        session_idle_seconds=settings.session_idle_seconds,
    )
