"""
Log Event Value Objects

Architectural Intent:
- LogEvent is one immutable, timestamped progress message tied to a job
- Ordering within a job is carried by an explicit per-job sequence number
- Completion is signalled by an explicit terminal marker on the event,
  never inferred from message text (text matching survives only as an
  opt-in legacy mode in the broadcast hub)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Optional


class LogKind(str, Enum):
    INFO = "info"
    ERROR = "error"
    SUCCESS = "success"


@dataclass(frozen=True)
class LogEvent:
    job_id: str
    kind: LogKind
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    sequence: int = 0
    terminal: bool = False

    def __post_init__(self):
        if not self.job_id:
            raise ValueError("LogEvent requires a job id")
        if not isinstance(self.kind, LogKind):
            object.__setattr__(self, "kind", LogKind(self.kind))

    @property
    def is_success_marker(self) -> bool:
        return self.terminal and self.kind == LogKind.SUCCESS

    @property
    def is_failure_marker(self) -> bool:
        return self.terminal and self.kind == LogKind.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "type": self.kind.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "sequence": self.sequence,
            "terminal": self.terminal,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogEvent":
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            job_id=data["jobId"],
            kind=LogKind(data["type"]),
            message=data["message"],
            timestamp=timestamp or datetime.now(UTC),
            sequence=int(data.get("sequence", 0)),
            terminal=bool(data.get("terminal", False)),
        )


def matches_legacy_completion(event: LogEvent) -> bool:
    """Deprecated text heuristic kept for clients that never set the marker."""
    if event.kind == LogKind.SUCCESS:
        return "completed successfully" in event.message
    if event.kind == LogKind.ERROR:
        return "failed" in event.message
    return False


@dataclass(frozen=True)
class CompletionEvent:
    """Synthesized by the broadcast hub once a job's terminal event is seen."""
    job_id: str
    succeeded: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def type(self) -> str:
        return "completion_success" if self.succeeded else "completion_error"

    @property
    def message(self) -> str:
        if self.succeeded:
            return "Deployment completed successfully"
        return "Deployment failed"

    @classmethod
    def for_terminal(
        cls, event: LogEvent, succeeded: Optional[bool] = None
    ) -> "CompletionEvent":
        if succeeded is None:
            succeeded = event.kind == LogKind.SUCCESS
        return cls(job_id=event.job_id, succeeded=succeeded)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
