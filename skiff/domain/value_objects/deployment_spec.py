from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import re

PROJECT_TYPES = ("static", "react", "nextjs", "other")

_OWNER_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_BRANCH_RE = re.compile(r"^[A-Za-z0-9._/-]+$")


@dataclass(frozen=True)
class DeploymentSpec:
    """
    Value Object holding the pipeline parameters of one deployment.
    source_ref is either "owner/repo" or a full git URL.
    """
    source_ref: str
    branch: str
    build_command: Optional[str] = None
    output_directory: Optional[str] = None
    project_type: Optional[str] = None

    def __post_init__(self):
        if not self.source_ref:
            raise ValueError("source_ref cannot be empty")
        if not self.branch:
            raise ValueError("branch cannot be empty")
        if not self.is_url and not _OWNER_REPO_RE.match(self.source_ref):
            raise ValueError(
                f"source_ref must be 'owner/repo' or a git URL: {self.source_ref}"
            )
        if not _BRANCH_RE.match(self.branch) or self.branch.startswith("-"):
            raise ValueError(f"Invalid branch name: {self.branch}")
        if self.project_type and self.project_type not in PROJECT_TYPES:
            raise ValueError(
                f"project_type must be one of {', '.join(PROJECT_TYPES)}"
            )
        if self.output_directory and (
            self.output_directory.startswith("/") or ".." in self.output_directory.split("/")
        ):
            raise ValueError("output_directory must be relative to the repository")

    @property
    def is_url(self) -> bool:
        return "://" in self.source_ref or self.source_ref.startswith("git@")

    @property
    def owner_repo(self) -> tuple[str, str]:
        """Best-effort (owner, repo) pair, used to look up provisioned secrets."""
        ref = self.source_ref
        if self.is_url:
            ref = ref.rstrip("/")
            if ref.endswith(".git"):
                ref = ref[: -len(".git")]
            ref = ref.replace(":", "/")
            parts = [p for p in ref.split("/") if p]
            return (parts[-2], parts[-1]) if len(parts) >= 2 else ("", parts[-1])
        owner, repo = ref.split("/", 1)
        return owner, repo

    @property
    def full_name(self) -> str:
        owner, repo = self.owner_repo
        return f"{owner}/{repo}" if owner else repo
