"""
Event Logger

Architectural Intent:
- The single entry point pipeline code uses to report progress
- Assigns per-job sequence numbers and non-decreasing timestamps
- Broadcasts immediately (best effort) and persists in batches
- Events for a job whose record does not exist yet are parked in the
  PendingEventSet and written later by the reconciliation sweeper

Ordering:
- Every persist for a job runs under that job's lock (shared with the
  sweeper) and prepends anything already pending, so events reach the
  store in the order they were recorded
"""

from __future__ import annotations
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional
import asyncio
import logging
import time

from skiff.domain.ports.job_store_port import JobStorePort
from skiff.domain.value_objects.log_event import LogEvent, LogKind

logger = logging.getLogger(__name__)

_OPS_LEVEL = {
    LogKind.INFO: logging.INFO,
    LogKind.SUCCESS: logging.INFO,
    LogKind.ERROR: logging.WARNING,
}


class PendingEventSet:
    """
    Events recorded before their job record was durable, keyed by job id.

    Shared by the event logger and the reconciliation sweeper; all
    mutations for a job happen while holding ``lock_for(job_id)``.
    """

    def __init__(self):
        self._events: dict[str, list[LogEvent]] = {}
        self._since: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    def add(self, job_id: str, events: list[LogEvent]) -> None:
        if not events:
            return
        self._events.setdefault(job_id, []).extend(events)
        self._since.setdefault(job_id, time.monotonic())

    def restore(self, job_id: str, events: list[LogEvent]) -> None:
        """Put events back at the front of the job's pending list."""
        if not events:
            return
        self._events[job_id] = list(events) + self._events.get(job_id, [])
        self._since.setdefault(job_id, time.monotonic())

    def take(self, job_id: str) -> list[LogEvent]:
        # _since is kept so a restored batch keeps its original age
        return self._events.pop(job_id, [])

    def peek(self, job_id: str) -> list[LogEvent]:
        return list(self._events.get(job_id, []))

    def discard(self, job_id: str) -> int:
        dropped = self._events.pop(job_id, [])
        self._since.pop(job_id, None)
        return len(dropped)

    def mark_reconciled(self, job_id: str) -> None:
        if job_id not in self._events:
            self._since.pop(job_id, None)

    def age(self, job_id: str) -> float:
        since = self._since.get(job_id)
        return 0.0 if since is None else time.monotonic() - since

    def forget_lock(self, job_id: str) -> None:
        lock = self._locks.get(job_id)
        if lock is not None and not lock.locked() and job_id not in self._events:
            del self._locks[job_id]

    def job_ids(self) -> list[str]:
        return list(self._events)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._events

    def __len__(self) -> int:
        return sum(len(events) for events in self._events.values())


@dataclass
class _JobLog:
    sequence: int = 0
    last_timestamp: Optional[datetime] = None
    batch: list[LogEvent] = field(default_factory=list)
    timer: Optional[asyncio.TimerHandle] = None
    in_flight: set[asyncio.Task] = field(default_factory=set)


class EventLogger:
    """
    Records job progress events.

    ``record`` never blocks and never raises on broadcast or persistence
    trouble; failures surface in operational logs only.
    """

    _RETIRED_LIMIT = 4096

    def __init__(
        self,
        store: JobStorePort,
        hub,
        batch_size: int = 10,
        flush_interval: float = 2.0,
        pending: Optional[PendingEventSet] = None,
    ):
        self._store = store
        self._hub = hub
        self._batch_size = max(1, batch_size)
        self._flush_interval = flush_interval
        self._pending = pending if pending is not None else PendingEventSet()
        self._jobs: dict[str, _JobLog] = {}
        # sequence/timestamp of released jobs, so late events keep counting up
        self._retired: OrderedDict[str, tuple[int, Optional[datetime]]] = OrderedDict()

    @property
    def pending(self) -> PendingEventSet:
        return self._pending

    def _state(self, job_id: str) -> _JobLog:
        state = self._jobs.get(job_id)
        if state is None:
            sequence, last = self._retired.pop(job_id, (0, None))
            state = self._jobs[job_id] = _JobLog(sequence=sequence, last_timestamp=last)
        return state

    def record(
        self,
        job_id: str,
        kind: LogKind | str,
        message: str,
        terminal: bool = False,
    ) -> LogEvent:
        state = self._state(job_id)
        state.sequence += 1
        now = datetime.now(UTC)
        if state.last_timestamp is not None and now < state.last_timestamp:
            now = state.last_timestamp
        state.last_timestamp = now

        event = LogEvent(
            job_id=job_id,
            kind=LogKind(kind),
            message=message,
            timestamp=now,
            sequence=state.sequence,
            terminal=terminal,
        )
        logger.log(
            _OPS_LEVEL[event.kind],
            "[%s] %s",
            event.kind.value.upper(),
            message,
            extra={"job_id": job_id},
        )

        try:
            self._hub.publish(event)
        except Exception as e:
            logger.error("Broadcast failed for job %s: %s", job_id, e)

        state.batch.append(event)
        if len(state.batch) >= self._batch_size:
            self._flush(job_id, state)
        elif state.timer is None:
            loop = asyncio.get_running_loop()
            state.timer = loop.call_later(self._flush_interval, self._flush, job_id, state)
        return event

    def info(self, job_id: str, message: str) -> LogEvent:
        return self.record(job_id, LogKind.INFO, message)

    def error(self, job_id: str, message: str, terminal: bool = False) -> LogEvent:
        return self.record(job_id, LogKind.ERROR, message, terminal=terminal)

    def success(self, job_id: str, message: str, terminal: bool = False) -> LogEvent:
        return self.record(job_id, LogKind.SUCCESS, message, terminal=terminal)

    def _flush(self, job_id: str, state: _JobLog) -> Optional[asyncio.Task]:
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None
        events, state.batch = state.batch, []
        if not events and job_id not in self._pending:
            return None
        task = asyncio.get_running_loop().create_task(self._persist(job_id, events))
        state.in_flight.add(task)
        task.add_done_callback(state.in_flight.discard)
        return task

    async def _persist(self, job_id: str, events: list[LogEvent]) -> None:
        async with self._pending.lock_for(job_id):
            batch = self._pending.take(job_id) + events
            if not batch:
                return
            try:
                stored = await self._store.append_events(job_id, batch)
            except Exception as e:
                logger.error(
                    "Failed to persist %d events for job %s: %s", len(batch), job_id, e
                )
                self._pending.restore(job_id, batch)
                return

            if stored:
                self._pending.mark_reconciled(job_id)
                logger.debug("Persisted %d events for job %s", len(batch), job_id)
            else:
                self._pending.restore(job_id, batch)
                logger.info(
                    "No record for job %s yet; %d events held for reconciliation",
                    job_id,
                    len(batch),
                )

    async def wait_for_flush(self, job_id: str) -> bool:
        """
        Flush everything recorded for ``job_id`` and wait for the writes.

        Returns True when nothing is left pending for the job.
        """
        state = self._jobs.get(job_id)
        if state is not None:
            self._flush(job_id, state)
            tasks = list(state.in_flight)
            if tasks:
                await asyncio.gather(*tasks)
        elif job_id in self._pending:
            await self._persist(job_id, [])
        return job_id not in self._pending

    def release(self, job_id: str) -> None:
        """Drop in-memory state for a finished job once it has been flushed."""
        state = self._jobs.get(job_id)
        if state is None or state.batch or state.in_flight:
            return
        del self._jobs[job_id]
        self._retired[job_id] = (state.sequence, state.last_timestamp)
        while len(self._retired) > self._RETIRED_LIMIT:
            self._retired.popitem(last=False)
        self._pending.forget_lock(job_id)

    def active_jobs(self) -> list[str]:
        return list(self._jobs)
