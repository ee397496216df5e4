"""
Composition Root

Architectural Intent:
- Dependency injection composition root for the Skiff application
- Single place where all adapters, infrastructure services and use cases
  are wired together
- No adapter instantiation should occur outside this module (except tests)

Design Decisions:
- Uses a simple dataclass container instead of a DI framework
- Factory function creates and wires all dependencies from SkiffConfig
- Background services (store connection, telemetry export, reconciliation
  sweeper) have an explicit start/stop lifecycle owned by the container
"""

import logging
from dataclasses import dataclass
from typing import Optional

from skiff.application.use_cases.job_queries import GetJob, GetJobLogs, ListJobs, UpdateJobStatus
from skiff.application.use_cases.run_deployment import DeploymentRunner
from skiff.application.use_cases.submit_deployment import SubmitDeployment
from skiff.domain.entities.job import JobFailedEvent, JobStartedEvent, JobSucceededEvent
from skiff.domain.events.event_base import DomainEvent
from skiff.domain.ports.artifact_publisher_port import ArtifactPublisherPort
from skiff.infrastructure.adapters.git_source_adapter import GitSourceAdapter
from skiff.infrastructure.adapters.http_artifact_publisher import HTTPArtifactPublisher
from skiff.infrastructure.adapters.json_secret_provider import JSONFileSecretProvider
from skiff.infrastructure.adapters.local_artifact_publisher import LocalArtifactPublisher
from skiff.infrastructure.adapters.subprocess_build_runner import SubprocessBuildRunner
from skiff.infrastructure.auth import Authenticator
from skiff.infrastructure.broadcast_hub import BroadcastHub
from skiff.infrastructure.config import PublishConfig, SkiffConfig
from skiff.infrastructure.event_bus import EventBus
from skiff.infrastructure.event_logger import EventLogger, PendingEventSet
from skiff.infrastructure.reconciliation import ReconciliationSweeper
from skiff.infrastructure.repositories.sqlite_job_store import SQLiteJobStore
from skiff.infrastructure.telemetry.otel_exporter import DeploymentTelemetry

logger = logging.getLogger(__name__)


@dataclass
class SkiffContainer:
    """DI container holding all wired dependencies."""

    config: SkiffConfig
    store: SQLiteJobStore
    hub: BroadcastHub
    event_logger: EventLogger
    sweeper: ReconciliationSweeper
    event_bus: EventBus
    authenticator: Authenticator
    runner: DeploymentRunner
    submit: SubmitDeployment
    get_job: GetJob
    update_status: UpdateJobStatus
    get_logs: GetJobLogs
    list_jobs: ListJobs
    telemetry: DeploymentTelemetry

    async def start(self) -> None:
        self.store.connect()
        await self.telemetry.initialize()
        await self.sweeper.start()

    async def stop(self, drain_timeout: Optional[float] = 30.0) -> None:
        await self.submit.drain(timeout=drain_timeout)
        await self.sweeper.stop()
        await self.sweeper.sweep_once()
        self.hub.shutdown()
        self.store.close()
        self.telemetry.shutdown()


async def _log_lifecycle(event: DomainEvent) -> None:
    logger.info(
        "Job lifecycle: %s %s",
        event.event_type,
        event.to_dict(),
        extra={"job_id": event.aggregate_id},
    )


def _create_publisher(config: PublishConfig) -> ArtifactPublisherPort:
    if config.provider == "http":
        return HTTPArtifactPublisher(
            api_url=config.api_url,
            api_key=config.api_key,
            gateway_url=config.gateway_url,
        )
    if config.provider != "local":
        raise ValueError(f"Unknown publish provider: {config.provider}")
    return LocalArtifactPublisher(output_root=config.output_root)


def create_container(config: Optional[SkiffConfig] = None) -> SkiffContainer:
    """Create and wire all dependencies."""
    config = config or SkiffConfig()

    store = SQLiteJobStore(config.store.db_path, retention=config.logger.retention)
    hub = BroadcastHub(
        buffer_size=config.hub.buffer_size,
        queue_size=config.hub.queue_size,
        grace_seconds=config.hub.grace_seconds,
        channel_ttl_seconds=config.hub.channel_ttl_seconds,
        legacy_completion_matching=config.hub.legacy_completion_matching,
    )
    pending = PendingEventSet()
    event_logger = EventLogger(
        store,
        hub,
        batch_size=config.logger.batch_size,
        flush_interval=config.logger.flush_interval,
        pending=pending,
    )
    sweeper = ReconciliationSweeper(
        store,
        pending,
        interval_seconds=config.sweeper.interval_seconds,
        pending_ttl_seconds=config.sweeper.pending_ttl_seconds,
    )

    event_bus = EventBus()
    for event_type in (JobStartedEvent, JobSucceededEvent, JobFailedEvent):
        event_bus.subscribe(event_type, _log_lifecycle)
    telemetry = DeploymentTelemetry(config.telemetry)
    telemetry.subscribe_to(event_bus)

    source = GitSourceAdapter(config.source.base_url, config.source.access_token)
    runner = DeploymentRunner(
        store=store,
        source=source,
        builder=SubprocessBuildRunner(config.pipeline.command_timeout_seconds),
        publisher=_create_publisher(config.publish),
        secrets=JSONFileSecretProvider(config.secrets.path),
        event_logger=event_logger,
        event_bus=event_bus,
        timeout_seconds=config.pipeline.timeout_seconds,
        upload_timeout_seconds=config.pipeline.upload_timeout_seconds,
        command_timeout_seconds=config.pipeline.command_timeout_seconds,
        workspace_root=config.pipeline.workspace_root,
        large_output_mb=config.pipeline.large_output_mb,
    )

    return SkiffContainer(
        config=config,
        store=store,
        hub=hub,
        event_logger=event_logger,
        sweeper=sweeper,
        event_bus=event_bus,
        authenticator=Authenticator(config.auth.tokens),
        runner=runner,
        submit=SubmitDeployment(source, runner, event_logger, hub=hub),
        get_job=GetJob(store),
        update_status=UpdateJobStatus(store),
        get_logs=GetJobLogs(store),
        list_jobs=ListJobs(store),
        telemetry=telemetry,
    )
