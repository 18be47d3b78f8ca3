"""FastAPI dependencies: per-workspace agendas backed by the settings store."""

from __future__ import annotations

import asyncio
import logging

from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from psi_agenda.agenda.state import Agenda
from psi_agenda.core.persistence import PersistenceQueue
from psi_agenda.core.repository import WorkspaceSettingsRepository, workspace_writer

logger = logging.getLogger(__name__)


class AgendaRegistry:
    """Loads each workspace's agenda once and keeps it in memory.

    Reads come from the store on first access; afterwards the in-memory agenda
    is authoritative and every mutation is written back in the background.
    """

    def __init__(self, session_factory: async_sessionmaker, debounce_seconds: float = 0.6) -> None:
        self.session_factory = session_factory
        self.debounce_seconds = debounce_seconds
        self._agendas: dict[str, Agenda] = {}
        self._queues: dict[str, PersistenceQueue] = {}
        self._lock = asyncio.Lock()

    async def get(self, workspace_id: str) -> Agenda:
        agenda = self._agendas.get(workspace_id)
        if agenda is not None:
            return agenda
        async with self._lock:
            agenda = self._agendas.get(workspace_id)
            if agenda is not None:
                return agenda
            async with self.session_factory() as session:
                state = await WorkspaceSettingsRepository(session).load_state(workspace_id)
            queue = PersistenceQueue(
                workspace_writer(self.session_factory, workspace_id),
                debounce_seconds=self.debounce_seconds,
            )
            agenda = Agenda(state, queue)
            self._agendas[workspace_id] = agenda
            self._queues[workspace_id] = queue
            logger.info("Loaded agenda for workspace %s", workspace_id)
            return agenda

    def stats(self) -> dict[str, int]:
        queues = self._queues.values()
        return {
            "workspaces_loaded": len(self._agendas),
            "pending_writes": sum(1 for q in queues if q.has_pending),
            "failed_writes": sum(q.failures for q in queues),
        }

    def queue(self, workspace_id: str) -> PersistenceQueue | None:
        return self._queues.get(workspace_id)

    async def flush(self, workspace_id: str) -> None:
        queue = self._queues.get(workspace_id)
        if queue is not None:
            await queue.flush()

    async def close(self) -> None:
        for queue in self._queues.values():
            await queue.close()


def get_registry(request: Request) -> AgendaRegistry:
    return request.app.state.agenda_registry
