"""
Job Query Use Cases

Architectural Intent:
- Read and administrative access to job records for the HTTP API and CLI
- Listing returns the caller's deployments newest first, optionally for one source
- Every lookup is scoped to the caller when an owner is given
- Status updates go through the Job aggregate so the lifecycle stays monotonic
"""

import logging
from typing import Optional

from skiff.application.dtos.deployment_dtos import JobListPage, LogPage, UpdateStatusRequest
from skiff.domain.entities.job import Job, JobStatus
from skiff.domain.errors import InvalidTransitionError, JobNotFoundError, ValidationError
from skiff.domain.ports.job_store_port import JobStorePort

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000


def _check_paging(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")


class GetJob:
    def __init__(self, store: JobStorePort):
        self.store = store

    async def execute(self, ref: str, owner: Optional[str] = None) -> Job:
        job = await self.store.find_job(ref, owner=owner)
        if job is None:
            raise JobNotFoundError(f"Deployment {ref} not found")
        return job


class UpdateJobStatus:
    def __init__(self, store: JobStorePort):
        self.store = store

    async def execute(
        self, ref: str, request: UpdateStatusRequest, owner: Optional[str] = None
    ) -> Job:
        job = await GetJob(self.store).execute(ref, owner)
        updated = job.transition_to(JobStatus(request.status))
        if updated is not job:
            if not await self.store.update_job(updated):
                raise InvalidTransitionError(f"Deployment {job.job_id} has already finished")
            logger.info("Job %s status set to %s", job.job_id, request.status)
        return updated


class GetJobLogs:
    def __init__(self, store: JobStorePort):
        self.store = store

    async def execute(
        self, ref: str, page: int = 1, limit: int = 100, owner: Optional[str] = None
    ) -> LogPage:
        _check_paging(page, limit)
        job = await GetJob(self.store).execute(ref, owner)
        events = await self.store.get_events(job.job_id, page=page, limit=limit)
        return LogPage(job_id=job.job_id, page=page, limit=limit, events=events)


class ListJobs:
    """A caller's deployments, newest first."""

    def __init__(self, store: JobStorePort):
        self.store = store

    async def execute(
        self,
        owner: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        source_ref: Optional[str] = None,
    ) -> JobListPage:
        _check_paging(page, limit)
        jobs = await self.store.list_jobs(owner, page=page, limit=limit, source_ref=source_ref)
        return JobListPage(page=page, limit=limit, jobs=jobs)
