"""
Domain Errors

Architectural Intent:
- Single error taxonomy shared by every layer
- Presentation maps these to transport status codes; messages are
  human-readable summaries safe to show to clients
- Diagnostic detail (tracebacks, raw subprocess output) stays in operational logs
"""

from __future__ import annotations


class SkiffError(Exception):
    """Base class for all Skiff errors."""


class ValidationError(SkiffError):
    """Submission rejected synchronously: missing or malformed fields."""


class AuthError(SkiffError):
    """Caller could not be authenticated."""


class JobNotFoundError(SkiffError):
    """No job matches the given identifier (for this caller)."""


class InvalidTransitionError(SkiffError, ValueError):
    """A job status change that would leave a terminal state or skip one."""


class PipelineStageError(SkiffError):
    """A pipeline stage failed; the remaining stages are aborted."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message


class PipelineTimeoutError(PipelineStageError):
    """The pipeline exceeded its overall wall-clock budget."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            "timeout",
            f"Deployment timed out after {timeout_seconds:g} seconds",
        )
        self.timeout_seconds = timeout_seconds


class PersistenceError(SkiffError):
    """A write to the job record store failed."""


class DeliveryError(SkiffError):
    """A frame could not be written to a subscriber."""
