"""Repository for persisted workspace override buckets."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from psi_agenda.agenda.state import AgendaState
from psi_agenda.core.models import WorkspaceSettings
from psi_agenda.core.persistence import Snapshot, Writer
from psi_agenda.scheduling.keys import (
    EXTRA_SESSIONS_BUCKET,
    OVERRIDES_BUCKET,
    PAYMENT_OVERRIDES_BUCKET,
)

logger = logging.getLogger(__name__)


class WorkspaceSettingsRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, workspace_id: str) -> Optional[WorkspaceSettings]:
        return await self.session.get(WorkspaceSettings, workspace_id)

    async def upsert(self, workspace_id: str, snapshot: Snapshot) -> WorkspaceSettings:
        row = await self.get(workspace_id)
        if row is None:
            row = WorkspaceSettings(workspace_id=workspace_id)
            self.session.add(row)
        row.appointment_overrides = snapshot.get(OVERRIDES_BUCKET) or {}
        row.extra_sessions = snapshot.get(EXTRA_SESSIONS_BUCKET) or []
        row.payment_overrides = snapshot.get(PAYMENT_OVERRIDES_BUCKET) or {}
        row.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        return row

    async def load_state(self, workspace_id: str) -> AgendaState:
        """Stored state for *workspace_id*, empty when nothing is stored yet."""
        row = await self.get(workspace_id)
        if row is None:
            return AgendaState()
        return AgendaState.from_storage(
            overrides=row.appointment_overrides,
            extra_sessions=row.extra_sessions,
            payment_overrides=row.payment_overrides,
        )


def workspace_writer(factory: async_sessionmaker, workspace_id: str) -> Writer:
    """A ``PersistenceQueue`` writer that upserts snapshots for one workspace."""

    async def write(snapshot: Snapshot) -> None:
        async with factory() as session:
            await WorkspaceSettingsRepository(session).upsert(workspace_id, snapshot)
            await session.commit()
        logger.debug("Persisted workspace %s", workspace_id)

    return write
