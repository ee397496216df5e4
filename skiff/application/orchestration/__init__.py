"""
Application Orchestration Package

Architectural Intent:
- Contains the stage pipeline that drives one deployment job
- Dependency-ordered, strictly sequential stage execution
"""

from skiff.application.orchestration.stage_pipeline import (
    PipelineStage,
    StagePipeline,
    StageReporter,
)

__all__ = ["PipelineStage", "StagePipeline", "StageReporter"]
