"""
Domain Events Module

Architectural Intent:
- Base class for Job lifecycle events; the aggregate id is the external job id
- Events are immutable and serialise with their subclass payload, so
  lifecycle logging and telemetry need no per-type code
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, UTC
from typing import Any


@dataclass(frozen=True)
class DomainEvent:
    aggregate_id: str = ""
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC), repr=False)

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"event_type": self.event_type}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = value.isoformat() if isinstance(value, datetime) else value
        return data
