"""Debounced, best-effort background writer for workspace snapshots."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Snapshot = dict[str, Any]
Writer = Callable[[Snapshot], Awaitable[None]]


class PersistenceQueue:
    """Coalesce rapid snapshot submissions into one write per quiet period.

    ``submit`` never blocks and never raises on store errors: each submission
    restarts the debounce timer, and only the latest snapshot is written once
    the timer expires. Failed writes are logged and counted, not retried.
    """

    def __init__(self, writer: Writer, debounce_seconds: float = 0.6) -> None:
        self._writer = writer
        self.debounce_seconds = debounce_seconds
        self._pending: Optional[Snapshot] = None
        self._timer: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self.writes = 0
        self.failures = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def submit(self, snapshot: Snapshot) -> None:
        """Queue *snapshot* for writing. Must be called from a running event loop."""
        self._pending = snapshot
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._write_after_quiet_period())

    async def flush(self) -> None:
        """Write the pending snapshot now, if any."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        await self._write_pending()

    async def close(self) -> None:
        await self.flush()

    async def _write_after_quiet_period(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        # Detach so a later submit restarts the timer instead of cancelling this write.
        self._timer = None
        await self._write_pending()

    async def _write_pending(self) -> None:
        async with self._lock:
            snapshot, self._pending = self._pending, None
            if snapshot is None:
                return
            try:
                await self._writer(snapshot)
                self.writes += 1
            except Exception as e:
                self.failures += 1
                logger.warning(f"Background persist failed, keeping in-memory state: {e}")
