"""
Domain Ports Package

Architectural Intent:
- Contains port interfaces (abstract contracts) for external collaborators
- Ports define what the pipeline needs, adapters implement how
- Follows Hexagonal Architecture principles
"""

from skiff.domain.ports.job_store_port import JobStorePort
from skiff.domain.ports.source_fetch_port import SourceFetchPort
from skiff.domain.ports.build_runner_port import BuildRunnerPort, CommandResult
from skiff.domain.ports.artifact_publisher_port import ArtifactPublisherPort
from skiff.domain.ports.secret_provider_port import SecretProviderPort
from skiff.domain.ports.event_bus_port import EventBusPort

__all__ = [
    "JobStorePort",
    "SourceFetchPort",
    "BuildRunnerPort",
    "CommandResult",
    "ArtifactPublisherPort",
    "SecretProviderPort",
    "EventBusPort",
]
