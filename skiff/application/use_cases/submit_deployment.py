"""
Submit Deployment Use Case

Architectural Intent:
- Validates a deployment request, allocates the job id and returns at once
- The pipeline runs as a detached asyncio task; the caller never waits on it
- Source reachability is checked before an id is allocated, so a rejected
  submission leaves no job and no stream behind
- The submitter is recorded on the job's broadcast channel before its first
  event, so streams are owner-scoped even before the record is committed
"""

import asyncio
import logging
from typing import Optional

from skiff.application.dtos.deployment_dtos import (
    SubmitDeploymentRequest,
    SubmitDeploymentResponse,
)
from skiff.domain.entities.job import Job
from skiff.domain.errors import ValidationError
from skiff.domain.ports.source_fetch_port import SourceFetchPort
from skiff.domain.value_objects.job_id import JobId

logger = logging.getLogger(__name__)


class SubmitDeployment:
    def __init__(self, source: SourceFetchPort, runner, event_logger, hub=None):
        self.source = source
        self.runner = runner
        self.event_logger = event_logger
        self.hub = hub
        self._tasks: set[asyncio.Task] = set()

    async def execute(self, request: SubmitDeploymentRequest) -> SubmitDeploymentResponse:
        spec = request.to_spec()
        if not await self.source.verify(spec.source_ref, spec.branch):
            raise ValidationError(
                f"Repository {spec.source_ref} or branch {spec.branch} is not accessible"
            )

        job_id = JobId.generate().value
        job = Job(job_id=job_id, spec=spec, owner=request.owner)
        if self.hub is not None:
            self.hub.claim(job_id, request.owner)
        self.event_logger.info(job_id, f"Starting deployment process with ID: {job_id}")

        task = asyncio.create_task(self.runner.run(job), name=f"deploy-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("Accepted deployment %s for %s@%s", job_id, spec.source_ref, spec.branch)
        return SubmitDeploymentResponse(job_id=job_id)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Deployment task %s was cancelled", task.get_name())
        elif task.exception() is not None:
            logger.error(
                "Deployment task %s crashed", task.get_name(), exc_info=task.exception()
            )

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight deployments (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.wait(list(self._tasks), timeout=timeout)
