"""
Job Store Port

Architectural Intent:
- Port interface for the durable document store holding job records
- Events are appended to a job's history by external job id; an append
  against a job that does not exist yet reports False instead of raising,
  which is how the event logger detects the creation race
- Implemented by SQLiteJobStore
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence
from skiff.domain.entities.job import Job
from skiff.domain.value_objects.log_event import LogEvent


class JobStorePort(ABC):
    """
    Port interface for job record persistence.
    """

    @abstractmethod
    async def create_job(self, job: Job) -> Job:
        """
        Inserts a new job record. Returns the job with its internal id set.
        """
        pass

    @abstractmethod
    async def find_job(self, ref: str, owner: Optional[str] = None) -> Optional[Job]:
        """
        Finds a job by external id or internal id, optionally scoped to an owner.
        """
        pass

    @abstractmethod
    async def job_exists(self, job_id: str) -> bool:
        """
        Returns True once a record with this external id has been committed.
        """
        pass

    @abstractmethod
    async def update_job(self, job: Job) -> bool:
        """
        Persists status, result and failure fields. Returns False, writing
        nothing, if the record is missing or already succeeded or failed.
        """
        pass

    @abstractmethod
    async def append_events(self, job_id: str, events: Sequence[LogEvent]) -> bool:
        """
        Appends events, in order, as one write. Returns False if the job
        record does not exist (nothing is written).
        """
        pass

    @abstractmethod
    async def get_events(
        self, job_id: str, page: int = 1, limit: int = 100
    ) -> list[LogEvent]:
        """
        Returns persisted events ordered by timestamp ascending.
        """
        pass

    @abstractmethod
    async def recent_events(self, job_id: str, limit: int) -> list[LogEvent]:
        """
        Returns the last ``limit`` persisted events, oldest first.
        """
        pass

    @abstractmethod
    async def list_jobs(
        self,
        owner: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        source_ref: Optional[str] = None,
    ) -> list[Job]:
        """
        Returns jobs newest first, optionally scoped to an owner and a source.
        """
        pass
