"""
history/recorder.py -- Writes audit entries on behalf of the auth flow.

A failed audit write must never undo or block the account change it
describes: the account already exists, the session is already bound. So
record() never raises for a storage failure. It logs the failure with the
full traceback on the "accessledger.history" logger instead.

Two dispatch modes, chosen by Settings.history_wait:

  wait=True  (default) -- record() returns after the row is written, so the
      entry is durable before the HTTP response commits.
  wait=False -- record() schedules the write as an asyncio task and returns
      immediately. Pending tasks are held in a set until done (the event loop
      keeps only weak references to tasks), and drain() awaits them at
      shutdown.
"""

from __future__ import annotations

import asyncio
import logging

from starlette.concurrency import run_in_threadpool

from history.models import OPERATIONS, HistoryEntry
from history.store import HistoryStore

logger = logging.getLogger("accessledger.history")


class HistoryRecorder:
    def __init__(self, store: HistoryStore, wait: bool = True) -> None:
        self._store = store
        self.wait = wait
        self._pending: set[asyncio.Task] = set()

    async def record(self, email: str, operation: str) -> None:
        """Append an audit entry for a change that has already committed.

        Raises ValueError for an unknown operation -- that is a bug in the
        caller, not a storage failure.
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown history operation: {operation!r}")
        if self.wait:
            await self._write(email, operation)
            return
        task = asyncio.create_task(self._write(email, operation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, email: str, operation: str) -> HistoryEntry | None:
        try:
            entry = await run_in_threadpool(self._store.append, email, operation)
        except Exception:
            logger.exception("Failed to record history %r for %s", operation, email)
            return None
        logger.debug("Recorded history %r for %s", operation, email)
        return entry

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every background write started with wait=False."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
