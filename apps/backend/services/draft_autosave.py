"""
Debounced, last-write-wins persistence of customer drafts.

Draft edits are applied in memory and handed to the autosaver, which waits
for a short quiet period per customer before writing. A failed write is
logged and the draft stays pending, so the next change (or flush) retries it.
"""

import asyncio
import logging
import os
from collections import defaultdict
from typing import Callable, Dict, Optional, Set

from exceptions import PersistenceError
from observability.metrics import draft_pending_gauge, draft_saves_total
from services.bundles import DraftState

logger = logging.getLogger(__name__)

DRAFT_AUTOSAVE_DELAY_SECONDS = float(os.getenv("DRAFT_AUTOSAVE_DELAY_SECONDS", "0.5"))


class DraftAutosaver:
    def __init__(self, session_factory: Callable, delay: float = DRAFT_AUTOSAVE_DELAY_SECONDS):
        self._session_factory = session_factory
        self.delay = delay
        self._pending: Dict[int, DraftState] = {}
        self._generation: Dict[int, int] = defaultdict(int)
        self._write_locks: Dict[int, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()

    def pending(self, customer_id: int) -> Optional[DraftState]:
        draft = self._pending.get(customer_id)
        return draft.model_copy(deep=True) if draft is not None else None

    def pending_count(self) -> int:
        return len(self._pending)

    def schedule(self, customer_id: int, draft: DraftState) -> None:
        """Queue a draft for saving after the quiet period. Never raises."""
        self._pending[customer_id] = draft.model_copy(deep=True)
        self._generation[customer_id] += 1
        draft_pending_gauge.set(len(self._pending))

        task = asyncio.create_task(self._save_later(customer_id, self._generation[customer_id]))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def discard(self, customer_id: int) -> None:
        """Forget a pending draft; used when the draft is written synchronously."""
        self._pending.pop(customer_id, None)
        self._generation[customer_id] += 1
        draft_pending_gauge.set(len(self._pending))

    async def save_now(self, session, customer_id: int, draft: DraftState) -> None:
        """Synchronous write that supersedes anything pending. Raises PersistenceError."""
        from services.drafts import write_draft

        self.discard(customer_id)
        async with self._lock(customer_id):
            await write_draft(session, customer_id, draft)

    async def _save_later(self, customer_id: int, generation: int) -> None:
        await asyncio.sleep(self.delay)
        # A newer change restarted the quiet period
        if self._generation[customer_id] != generation:
            return
        await self._write(customer_id)

    def _lock(self, customer_id: int) -> asyncio.Lock:
        lock = self._write_locks.get(customer_id)
        if lock is None:
            lock = asyncio.Lock()
            self._write_locks[customer_id] = lock
        return lock

    async def _write(self, customer_id: int) -> bool:
        from services.drafts import write_draft

        async with self._lock(customer_id):
            draft = self._pending.get(customer_id)
            if draft is None:
                return True
            generation = self._generation[customer_id]
            try:
                async with self._session_factory() as session:
                    await write_draft(session, customer_id, draft)
            except PersistenceError as e:
                draft_saves_total.labels(outcome="failed").inc()
                logger.warning(
                    "Draft autosave failed, will retry on next change",
                    extra={"customer_id": customer_id, "error": e.message},
                )
                return False

            draft_saves_total.labels(outcome="saved").inc()
            if self._generation[customer_id] == generation:
                self._pending.pop(customer_id, None)
                draft_pending_gauge.set(len(self._pending))
            return True

    async def drain(self) -> None:
        """Wait for every scheduled save to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def flush(self) -> int:
        """Write every pending draft now. Returns the number still pending."""
        for customer_id in list(self._pending):
            self._generation[customer_id] += 1
            await self._write(customer_id)
        await self.drain()
        if self._pending:
            logger.error("Drafts left unsaved after flush", extra={"customer_ids": sorted(self._pending)})
        return len(self._pending)
