"""
Job Module

Architectural Intent:
- Job aggregate is the consistency boundary for one deployment attempt
- Status changes only through domain methods that enforce the monotonic
  lifecycle pending -> running -> {succeeded | failed}
- All state changes produce new instances to ensure auditability
- Domain events are accumulated on the aggregate and published by the
  orchestrator via the event bus

Domain Events:
- JobStartedEvent: the orchestrator picked the job up
- JobSucceededEvent: artifact published and recorded
- JobFailedEvent: a stage failed or the pipeline timed out
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Optional

from skiff.domain.errors import InvalidTransitionError
from skiff.domain.events.event_base import DomainEvent
from skiff.domain.value_objects.artifact import PublishedArtifact
from skiff.domain.value_objects.deployment_spec import DeploymentSpec


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED}),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class JobStartedEvent(DomainEvent):
    source_ref: str = ""
    branch: str = ""


@dataclass(frozen=True)
class JobSucceededEvent(DomainEvent):
    content_id: str = ""
    url: str = ""


@dataclass(frozen=True)
class JobFailedEvent(DomainEvent):
    error_message: str = ""


@dataclass(frozen=True)
class Job:
    job_id: str
    spec: DeploymentSpec
    owner: str = "anonymous"
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    internal_id: Optional[int] = None
    project_type: Optional[str] = None
    artifact: Optional[PublishedArtifact] = None
    error_message: Optional[str] = None
    domain_events: tuple = field(default=(), compare=False, repr=False)

    def __post_init__(self):
        if not self.job_id:
            raise ValueError("Job requires a job id")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def _check_transition(self, target: JobStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Job {self.job_id} cannot move from {self.status.value} "
                f"to {target.value}"
            )

    def start(self) -> "Job":
        self._check_transition(JobStatus.RUNNING)
        return replace(
            self,
            status=JobStatus.RUNNING,
            domain_events=self.domain_events
            + (
                JobStartedEvent(
                    aggregate_id=self.job_id,
                    source_ref=self.spec.source_ref,
                    branch=self.spec.branch,
                ),
            ),
        )

    def detected(self, project_type: str) -> "Job":
        return replace(self, project_type=project_type)

    def succeed(self, artifact: PublishedArtifact) -> "Job":
        if artifact is None:
            raise InvalidTransitionError("A succeeded job requires an artifact")
        self._check_transition(JobStatus.SUCCEEDED)
        return replace(
            self,
            status=JobStatus.SUCCEEDED,
            artifact=artifact,
            domain_events=self.domain_events
            + (
                JobSucceededEvent(
                    aggregate_id=self.job_id,
                    content_id=artifact.content_id,
                    url=artifact.url,
                ),
            ),
        )

    def fail(self, message: str) -> "Job":
        self._check_transition(JobStatus.FAILED)
        return replace(
            self,
            status=JobStatus.FAILED,
            error_message=message,
            domain_events=self.domain_events
            + (JobFailedEvent(aggregate_id=self.job_id, error_message=message),),
        )

    def transition_to(self, status: JobStatus) -> "Job":
        """Generic transition used by the status PATCH endpoint."""
        if status == self.status:
            return self
        self._check_transition(status)
        if status is JobStatus.SUCCEEDED and self.artifact is None:
            raise InvalidTransitionError(
                f"Job {self.job_id} cannot succeed without a published artifact"
            )
        return replace(self, status=status)

    def clear_events(self) -> "Job":
        return replace(self, domain_events=())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.internal_id,
            "jobId": self.job_id,
            "owner": self.owner,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "sourceRef": self.spec.source_ref,
            "branch": self.spec.branch,
            "buildCommand": self.spec.build_command,
            "outputDirectory": self.spec.output_directory,
            "projectType": self.project_type or self.spec.project_type,
            "cid": self.artifact.content_id if self.artifact else None,
            "url": self.artifact.url if self.artifact else None,
            "sizeInMB": self.artifact.size_mb if self.artifact else None,
            "error": self.error_message,
        }
