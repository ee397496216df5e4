"""
SQLite Job Store

Architectural Intent:
- Durable job record store using SQLite (stdlib, zero external deps)
- Implements JobStorePort: job metadata plus append-only event history
- All blocking sqlite calls run in the default executor so a slow write
  never stalls the event loop that drives pipelines and the hub

Design Decisions:
- Single database file at configurable path (default: skiff.db)
- Auto-creates tables on first use; WAL mode for concurrent readers
- One connection shared across executor threads, serialized by a lock
- Event history is trimmed to the most recent `retention` events per job
- Timestamps stored as ISO 8601 strings with fixed microsecond precision so
  lexical order equals chronological order
"""

from __future__ import annotations
import asyncio
import logging
import sqlite3
import threading
from dataclasses import replace
from datetime import datetime, UTC
from functools import partial
from typing import Any, Callable, Optional, Sequence

from skiff.domain.entities.job import Job, JobStatus
from skiff.domain.errors import PersistenceError
from skiff.domain.ports.job_store_port import JobStorePort
from skiff.domain.value_objects.artifact import PublishedArtifact
from skiff.domain.value_objects.deployment_spec import DeploymentSpec
from skiff.domain.value_objects.log_event import LogEvent, LogKind

logger = logging.getLogger(__name__)


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


class SQLiteJobStore(JobStorePort):
    """Persistent job records and event history in SQLite."""

    def __init__(self, db_path: str = "skiff.db", retention: int = 1000):
        self._db_path = db_path
        self._retention = retention
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Open database connection and create tables."""
        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info("SQLite job store connected: %s", self._db_path)

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def _create_tables(self) -> None:
        """Create tables if they don't exist."""
        assert self._conn is not None
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL UNIQUE,
                owner TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                source_ref TEXT NOT NULL,
                branch TEXT NOT NULL,
                build_command TEXT,
                output_directory TEXT,
                requested_project_type TEXT,
                project_type TEXT,
                cid TEXT,
                url TEXT,
                size_mb REAL,
                error TEXT
            );

            CREATE TABLE IF NOT EXISTS job_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                type TEXT NOT NULL,
                message TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                terminal INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_jobs_owner ON jobs(owner, created_at);
            CREATE INDEX IF NOT EXISTS idx_events_job_ts ON job_events(job_id, timestamp);
        """)

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(self._locked, fn, *args))

    def _locked(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            if self._conn is None:
                raise PersistenceError("Job store is not connected")
            try:
                return fn(self._conn, *args)
            except sqlite3.Error as e:
                self._conn.rollback()
                raise PersistenceError(f"Job store write failed: {e}") from e

    # -- Jobs ----------------------------------------------------------------

    async def create_job(self, job: Job) -> Job:
        internal_id = await self._run(self._insert_job, job)
        return replace(job, internal_id=internal_id)

    @staticmethod
    def _insert_job(conn: sqlite3.Connection, job: Job) -> int:
        now = _ts(job.created_at)
        cursor = conn.execute(
            """INSERT INTO jobs
               (job_id, owner, status, created_at, updated_at, source_ref, branch,
                build_command, output_directory, requested_project_type)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (job.job_id, job.owner, job.status.value, now, now,
             job.spec.source_ref, job.spec.branch, job.spec.build_command,
             job.spec.output_directory, job.spec.project_type),
        )
        conn.commit()
        return cursor.lastrowid

    async def find_job(self, ref: str, owner: Optional[str] = None) -> Optional[Job]:
        row = await self._run(self._select_job, ref, owner)
        return self._row_to_job(row) if row else None

    @staticmethod
    def _select_job(
        conn: sqlite3.Connection, ref: str, owner: Optional[str]
    ) -> Optional[sqlite3.Row]:
        column = "id" if ref.isdigit() else "job_id"
        query = f"SELECT * FROM jobs WHERE {column} = ?"
        params: list[Any] = [int(ref) if ref.isdigit() else ref]
        if owner is not None:
            query += " AND owner = ?"
            params.append(owner)
        return conn.execute(query, params).fetchone()

    async def job_exists(self, job_id: str) -> bool:
        return await self._run(self._exists, job_id)

    @staticmethod
    def _exists(conn: sqlite3.Connection, job_id: str) -> bool:
        row = conn.execute("SELECT 1 FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
        return row is not None

    async def update_job(self, job: Job) -> bool:
        return await self._run(self._update, job)

    @staticmethod
    def _update(conn: sqlite3.Connection, job: Job) -> bool:
        artifact = job.artifact
        cursor = conn.execute(
            """UPDATE jobs
               SET status = ?, updated_at = ?, project_type = ?, cid = ?, url = ?,
                   size_mb = ?, error = ?
               WHERE job_id = ? AND status NOT IN (?, ?)""",
            (job.status.value, _ts(datetime.now(UTC)),
             job.project_type,
             artifact.content_id if artifact else None,
             artifact.url if artifact else None,
             artifact.size_mb if artifact else None,
             job.error_message, job.job_id,
             JobStatus.SUCCEEDED.value, JobStatus.FAILED.value),
        )
        conn.commit()
        return cursor.rowcount > 0

    async def list_jobs(
        self,
        owner: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        source_ref: Optional[str] = None,
    ) -> list[Job]:
        page = max(page, 1)
        limit = max(limit, 1)
        rows = await self._run(
            self._select_jobs, owner, source_ref, (page - 1) * limit, limit
        )
        return [self._row_to_job(row) for row in rows]

    @staticmethod
    def _select_jobs(
        conn: sqlite3.Connection,
        owner: Optional[str],
        source_ref: Optional[str],
        offset: int,
        limit: int,
    ) -> list[sqlite3.Row]:
        clauses: list[str] = []
        params: list[Any] = []
        if owner is not None:
            clauses.append("owner = ?")
            params.append(owner)
        if source_ref is not None:
            clauses.append("source_ref = ?")
            params.append(source_ref)
        query = "SELECT * FROM jobs"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        return conn.execute(query, [*params, limit, offset]).fetchall()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        artifact = None
        if row["cid"] and row["url"]:
            artifact = PublishedArtifact(row["cid"], row["url"], row["size_mb"])
        spec = DeploymentSpec(
            source_ref=row["source_ref"],
            branch=row["branch"],
            build_command=row["build_command"],
            output_directory=row["output_directory"],
            project_type=row["requested_project_type"],
        )
        return Job(
            job_id=row["job_id"],
            spec=spec,
            owner=row["owner"],
            status=JobStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            internal_id=row["id"],
            project_type=row["project_type"],
            artifact=artifact,
            error_message=row["error"],
        )

    # -- Events --------------------------------------------------------------

    async def append_events(self, job_id: str, events: Sequence[LogEvent]) -> bool:
        if not events:
            return await self.job_exists(job_id)
        return await self._run(self._append, job_id, list(events))

    def _append(self, conn: sqlite3.Connection, job_id: str, events: list[LogEvent]) -> bool:
        if not self._exists(conn, job_id):
            return False
        conn.executemany(
            """INSERT INTO job_events
               (job_id, sequence, type, message, timestamp, terminal)
               VALUES (?, ?, ?, ?, ?, ?)""",
            [
                (job_id, e.sequence, e.kind.value, e.message, _ts(e.timestamp), int(e.terminal))
                for e in events
            ],
        )
        if self._retention > 0:
            conn.execute(
                """DELETE FROM job_events WHERE job_id = ? AND id NOT IN (
                       SELECT id FROM job_events WHERE job_id = ?
                       ORDER BY id DESC LIMIT ?)""",
                (job_id, job_id, self._retention),
            )
        conn.commit()
        return True

    async def get_events(
        self, job_id: str, page: int = 1, limit: int = 100
    ) -> list[LogEvent]:
        page = max(page, 1)
        limit = max(limit, 1)
        rows = await self._run(self._select_events, job_id, (page - 1) * limit, limit)
        return [self._row_to_event(r) for r in rows]

    async def recent_events(self, job_id: str, limit: int) -> list[LogEvent]:
        rows = await self._run(self._select_recent_events, job_id, max(limit, 1))
        return [self._row_to_event(r) for r in reversed(rows)]

    @staticmethod
    def _row_to_event(r: sqlite3.Row) -> LogEvent:
        return LogEvent(
            job_id=r["job_id"],
            kind=LogKind(r["type"]),
            message=r["message"],
            timestamp=datetime.fromisoformat(r["timestamp"]),
            sequence=r["sequence"],
            terminal=bool(r["terminal"]),
        )

    @staticmethod
    def _select_events(
        conn: sqlite3.Connection, job_id: str, offset: int, limit: int
    ) -> list[sqlite3.Row]:
        return conn.execute(
            """SELECT * FROM job_events WHERE job_id = ?
               ORDER BY timestamp ASC, sequence ASC, id ASC
               LIMIT ? OFFSET ?""",
            (job_id, limit, offset),
        ).fetchall()

    @staticmethod
    def _select_recent_events(
        conn: sqlite3.Connection, job_id: str, limit: int
    ) -> list[sqlite3.Row]:
        return conn.execute(
            """SELECT * FROM job_events WHERE job_id = ?
               ORDER BY timestamp DESC, sequence DESC, id DESC
               LIMIT ?""",
            (job_id, limit),
        ).fetchall()

    async def count_events(self, job_id: str) -> int:
        return await self._run(self._count_events, job_id)

    @staticmethod
    def _count_events(conn: sqlite3.Connection, job_id: str) -> int:
        row = conn.execute(
            "SELECT COUNT(*) FROM job_events WHERE job_id = ?", (job_id,)
        ).fetchone()
        return row[0]
