"""
Stage Pipeline

Architectural Intent:
- Runs the deployment stages of one job in dependency order
- Stages run one at a time; a job's stages share a workspace and must not
  interleave
- Every stage reports an info event on entry and a success or error event
  on exit through the supplied reporter

Failure Strategy:
- A critical stage failure aborts the remaining stages (PipelineStageError)
- A non-critical stage failure is reported and the pipeline continues
- No stage is retried
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol
import logging

from skiff.domain.errors import PipelineStageError

logger = logging.getLogger(__name__)

StageFn = Callable[[dict[str, Any]], Awaitable[Optional[str]]]


class StageReporter(Protocol):
    def info(self, message: str) -> Any: ...

    def success(self, message: str) -> Any: ...

    def error(self, message: str) -> Any: ...


@dataclass
class PipelineStage:
    name: str
    description: str
    execute: StageFn
    depends_on: list[str] = field(default_factory=list)
    is_critical: bool = True


class StagePipeline:
    def __init__(self, stages: list[PipelineStage]) -> None:
        self.stages: dict[str, PipelineStage] = {}
        for stage in stages:
            if stage.name in self.stages:
                raise ValueError(f"Duplicate stage name: {stage.name}")
            self.stages[stage.name] = stage
        self.order = self._resolve_order()

    def _resolve_order(self) -> list[str]:
        """Topological order, stable with respect to declaration order."""
        for stage in self.stages.values():
            for dep in stage.depends_on:
                if dep not in self.stages:
                    raise ValueError(f"Stage {stage.name} depends on unknown stage {dep}")

        order: list[str] = []
        placed: set[str] = set()
        remaining = list(self.stages)
        while remaining:
            ready = [
                name for name in remaining
                if all(dep in placed for dep in self.stages[name].depends_on)
            ]
            if not ready:
                raise ValueError(f"Circular dependency between stages: {remaining}")
            name = ready[0]
            order.append(name)
            placed.add(name)
            remaining.remove(name)
        return order

    async def execute(
        self, context: dict[str, Any], reporter: StageReporter
    ) -> dict[str, Optional[str]]:
        """Run every stage. Returns each stage's summary (or error text for skipped failures)."""
        completed: dict[str, Optional[str]] = {}
        for name in self.order:
            stage = self.stages[name]
            reporter.info(f"{stage.description}...")
            try:
                summary = await stage.execute(context)
            except PipelineStageError as e:
                error = e
            except Exception as e:
                logger.debug("Stage %s raised", name, exc_info=True)
                error = PipelineStageError(name, str(e) or type(e).__name__)
            else:
                reporter.success(summary or f"{stage.description} finished")
                completed[name] = summary
                continue

            if stage.is_critical:
                reporter.error(f"{stage.description} failed: {error.message}")
                raise error
            reporter.error(f"{stage.description} failed, continuing: {error.message}")
            completed[name] = error.message
        return completed
