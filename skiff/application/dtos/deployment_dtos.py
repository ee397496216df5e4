"""
Deployment DTOs

Architectural Intent:
- Data Transfer Objects for deployment use case boundaries
- Input validation at the application boundary, before any job id exists
- Decouples the JSON wire representation from the domain model
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from skiff.domain.errors import ValidationError
from skiff.domain.value_objects.deployment_spec import DeploymentSpec


def _optional_str(payload: dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value.strip() or None


@dataclass(frozen=True)
class SubmitDeploymentRequest:
    source_ref: str
    branch: str
    owner: str = "anonymous"
    build_command: Optional[str] = None
    output_directory: Optional[str] = None
    project_type: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.source_ref:
            raise ValidationError("sourceRef is required")
        if not self.branch:
            raise ValidationError("branch is required")

    @classmethod
    def from_payload(cls, payload: Any, owner: str = "anonymous") -> "SubmitDeploymentRequest":
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")
        return cls(
            source_ref=_optional_str(payload, "sourceRef") or "",
            branch=_optional_str(payload, "branch") or "",
            owner=owner,
            build_command=_optional_str(payload, "buildCommand"),
            output_directory=_optional_str(payload, "outputDirectory"),
            project_type=_optional_str(payload, "projectType"),
        )

    def to_spec(self) -> DeploymentSpec:
        try:
            return DeploymentSpec(
                source_ref=self.source_ref,
                branch=self.branch,
                build_command=self.build_command,
                output_directory=self.output_directory,
                project_type=self.project_type,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e


@dataclass(frozen=True)
class SubmitDeploymentResponse:
    job_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"jobId": self.job_id}


@dataclass(frozen=True)
class UpdateStatusRequest:
    status: str

    ALLOWED = ("running", "succeeded", "failed")

    def __post_init__(self) -> None:
        if self.status not in self.ALLOWED:
            raise ValidationError(
                f"status must be one of {', '.join(self.ALLOWED)}"
            )

    @classmethod
    def from_payload(cls, payload: Any) -> "UpdateStatusRequest":
        if not isinstance(payload, dict) or not isinstance(payload.get("status"), str):
            raise ValidationError("status is required")
        return cls(status=payload["status"])


@dataclass(frozen=True)
class LogPage:
    job_id: str
    page: int
    limit: int
    events: list = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "page": self.page,
            "limit": self.limit,
            "logs": [event.to_dict() for event in self.events],
        }


@dataclass(frozen=True)
class JobListPage:
    page: int
    limit: int
    jobs: list = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "deployments": [job.to_dict() for job in self.jobs],
        }
