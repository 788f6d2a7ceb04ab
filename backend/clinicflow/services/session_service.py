"""Per-dashboard sessions holding the resolver caches and detail-view state."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from clinicflow.core.labels import Labels
from clinicflow.core.settings import WorkflowSettings
from clinicflow.integrations.clinic_api import ClinicApiClient
from clinicflow.services.medical_card_service import EditSession
from clinicflow.services.name_resolver_service import EntityResolver
from clinicflow.services.task_lifecycle_service import TaskLifecycleManager

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DashboardSession:
    session_id: str
    resolver: EntityResolver
    tasks: TaskLifecycleManager
    edit_sessions: dict[str, EditSession] = field(default_factory=dict)
    last_seen: float = field(default_factory=time.monotonic)

    def bind(self, client: ClinicApiClient) -> None:
        """Route new upstream calls through the current request's client."""
        self.resolver.bind(client)
        self.tasks.bind(client)
        self.last_seen = time.monotonic()

    async def aclose(self) -> None:
        self.tasks.close()
        self.edit_sessions.clear()
        await self.resolver.aclose()


class SessionRegistry:
    """In-memory registry of dashboard sessions with idle expiry."""

    def __init__(
        self,
        settings: WorkflowSettings,
        *,
        labels: Labels,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._labels = labels
        self._clock = clock
        self._monotonic = monotonic
        self._sessions: dict[str, DashboardSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def create(self, client: ClinicApiClient, session_id: str | None = None) -> DashboardSession:
        resolver = EntityResolver(client, labels=self._labels)
        session = DashboardSession(
            session_id=session_id or uuid.uuid4().hex,
            resolver=resolver,
            tasks=TaskLifecycleManager(
                client,
                resolver,
                tz=self._settings.timezone,
                labels=self._labels,
                clock=self._clock,
            ),
            last_seen=self._monotonic(),
        )
        return session

    async def acquire(self, session_id: str, client: ClinicApiClient) -> DashboardSession:
        """Return the named session, creating it on first use."""

        await self.prune()
        session = self._sessions.get(session_id)
        if session is None:
            session = self.create(client, session_id)
            self._sessions[session_id] = session
            logger.debug("Opened dashboard session %s", session_id)
        session.bind(client)
        session.last_seen = self._monotonic()
        return session

    async def dispose(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.aclose()
        logger.debug("Disposed dashboard session %s", session_id)
        return True

    async def prune(self) -> int:
        """Dispose sessions idle for longer than the configured limit."""

        cutoff = self._monotonic() - self._settings.session_idle_seconds
        expired = [key for key, session in self._sessions.items() if session.last_seen < cutoff]
        for key in expired:
            await self.dispose(key)
        return len(expired)

    async def aclose(self) -> None:
        for key in list(self._sessions):
            await self.dispose(key)


__all__ = ["DashboardSession", "SessionRegistry"]
