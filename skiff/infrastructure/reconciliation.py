"""
Reconciliation Sweeper

Architectural Intent:
- Background task that drains the PendingEventSet once the matching job
  record exists in the store
- Shares the per-job lock with the event logger so a job's events are
  written in recorded order, exactly once
- Explicit start/stop lifecycle owned by the composition root

Domain Logic:
- A job's pending events are appended as one ordered write, then cleared
- Entries whose job never appears are dropped after the pending TTL
"""

from __future__ import annotations
from typing import Optional
import asyncio
import logging

from skiff.domain.errors import PersistenceError
from skiff.domain.ports.job_store_port import JobStorePort
from skiff.infrastructure.event_logger import PendingEventSet

logger = logging.getLogger(__name__)


class ReconciliationSweeper:
    def __init__(
        self,
        store: JobStorePort,
        pending: PendingEventSet,
        interval_seconds: float = 5.0,
        pending_ttl_seconds: float = 3600.0,
    ):
        self._store = store
        self._pending = pending
        self.interval_seconds = interval_seconds
        self.pending_ttl_seconds = pending_ttl_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._sweep_loop(), name="skiff-reconciliation")
        logger.info("Reconciliation sweeper started (interval=%.1fs)", self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Reconciliation sweeper stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception as e:
                logger.warning("Reconciliation sweep failed: %s", e)

    async def sweep_once(self) -> int:
        """Run one reconciliation pass. Returns the number of events persisted."""
        persisted = 0
        for job_id in self._pending.job_ids():
            async with self._pending.lock_for(job_id):
                events = self._pending.peek(job_id)
                if not events:
                    continue
                try:
                    if not await self._store.job_exists(job_id):
                        self._expire_if_stale(job_id)
                        continue
                    stored = await self._store.append_events(job_id, events)
                except PersistenceError as e:
                    logger.warning("Could not reconcile events for job %s: %s", job_id, e)
                    continue

                if stored:
                    self._pending.take(job_id)
                    self._pending.mark_reconciled(job_id)
                    persisted += len(events)
                    logger.info("Reconciled %d pending events for job %s", len(events), job_id)
        return persisted

    def _expire_if_stale(self, job_id: str) -> None:
        age = self._pending.age(job_id)
        if age <= self.pending_ttl_seconds:
            return
        dropped = self._pending.discard(job_id)
        logger.warning(
            "Dropped %d pending events for job %s: no record after %.0fs",
            dropped,
            job_id,
            age,
        )
