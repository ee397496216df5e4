"""
Run Deployment Use Case

Architectural Intent:
- Drives one job through the fixed deployment stages using StagePipeline
- Owns the temporary workspace: created by the first stage, removed on
  every exit path
- Reports progress exclusively through the EventLogger and records the
  final state on the job record
- Publishes Job domain events on the EventBus

Failure Strategy:
- First critical stage failure aborts the run; the job is marked failed
- One wall-clock budget for the whole run (PipelineTimeoutError)
- Status writes never leave a terminal state; when the record was finished
  elsewhere (status PATCH) the run stops and reports the stored outcome
- The job record leads the event log: the final status is written first,
  then the matching terminal event; the last action of every run is
  EventLogger.wait_for_flush, so both are durable when run() returns
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional

from skiff.application.orchestration.stage_pipeline import PipelineStage, StagePipeline
from skiff.domain.entities.job import Job, JobStatus
from skiff.domain.errors import PersistenceError, PipelineStageError, PipelineTimeoutError
from skiff.domain.ports.artifact_publisher_port import ArtifactPublisherPort
from skiff.domain.ports.build_runner_port import BuildRunnerPort
from skiff.domain.ports.event_bus_port import EventBusPort
from skiff.domain.ports.job_store_port import JobStorePort
from skiff.domain.ports.secret_provider_port import SecretProviderPort
from skiff.domain.ports.source_fetch_port import SourceFetchPort
from skiff.domain.services.project_detection import ProjectInspector
from skiff.domain.services.static_site import StaticSitePreparer, directory_size_mb
from skiff.domain.value_objects.artifact import PublishedArtifact

logger = logging.getLogger(__name__)

SERVER_COMPONENT_GUIDANCE = (
    "This looks like a server component or custom document that cannot be "
    "statically exported. Remove server-only features (next/document <Html>, "
    "API routes, getServerSideProps) or deploy a client-only build."
)


class JobReporter:
    """Binds the event logger to one job id for the stage pipeline."""

    def __init__(self, event_logger, job_id: str):
        self._events = event_logger
        self.job_id = job_id

    def info(self, message: str):
        return self._events.info(self.job_id, message)

    def success(self, message: str, terminal: bool = False):
        return self._events.success(self.job_id, message, terminal=terminal)

    def error(self, message: str, terminal: bool = False):
        return self._events.error(self.job_id, message, terminal=terminal)


def _write_env_file(path: Path, variables: dict[str, str]) -> None:
    lines = []
    for key, value in sorted(variables.items()):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        lines.append(f'{key}="{escaped}"')
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _success_line(artifact: PublishedArtifact) -> str:
    return f"Deployment completed successfully with CID: {artifact.content_id}"


class DeploymentRunner:
    def __init__(
        self,
        store: JobStorePort,
        source: SourceFetchPort,
        builder: BuildRunnerPort,
        publisher: ArtifactPublisherPort,
        secrets: SecretProviderPort,
        event_logger,
        event_bus: Optional[EventBusPort] = None,
        timeout_seconds: float = 1800.0,
        upload_timeout_seconds: float = 900.0,
        command_timeout_seconds: float = 900.0,
        workspace_root: str = "",
        large_output_mb: float = 100.0,
    ):
        self.store = store
        self.source = source
        self.builder = builder
        self.publisher = publisher
        self.secrets = secrets
        self.event_logger = event_logger
        self.event_bus = event_bus
        self.timeout_seconds = timeout_seconds
        self.upload_timeout_seconds = upload_timeout_seconds
        self.command_timeout_seconds = command_timeout_seconds
        self.workspace_root = workspace_root
        self.large_output_mb = large_output_mb

    async def run(self, job: Job) -> Job:
        reporter = JobReporter(self.event_logger, job.job_id)
        context: dict[str, Any] = {"job": job, "reporter": reporter}
        try:
            context["job"] = await self.store.create_job(job)
            context["job"] = await self._save(context["job"].start())

            try:
                await asyncio.wait_for(
                    self._pipeline().execute(context, reporter),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                raise PipelineTimeoutError(self.timeout_seconds)

            artifact = context["artifact"]
            reporter.info(f"Your site is available at: {artifact.url}")
            reporter.success(_success_line(artifact), terminal=True)
        except PipelineStageError as e:
            logger.warning(
                "Deployment %s failed in stage %s: %s",
                job.job_id,
                e.stage,
                e.message,
                extra={"job_id": job.job_id, "stage": e.stage},
            )
            await self._fail(context, e.message, f"Deployment failed: {e.message}")
        except PersistenceError as e:
            logger.error("Deployment %s could not be recorded: %s", job.job_id, e)
            await self._fail(
                context,
                "Job record could not be saved",
                "Deployment failed: job record could not be saved",
            )
        except Exception:
            logger.exception("Unexpected error while deploying %s", job.job_id)
            await self._fail(
                context,
                "Unexpected internal error",
                "Deployment failed: unexpected internal error",
            )
        finally:
            await self._release_workspace(context, reporter)
            await self.event_logger.wait_for_flush(job.job_id)
            self.event_logger.release(job.job_id)
        return context["job"]

    async def _save(self, job: Job) -> Job:
        if not await self.store.update_job(job):
            current = await self.store.find_job(job.job_id)
            if current is not None and current.is_terminal:
                raise PersistenceError(
                    f"Job {job.job_id} was already {current.status.value}"
                )
            raise PersistenceError(f"No record for job {job.job_id}")
        return await self._publish_domain_events(job)

    async def _publish_domain_events(self, job: Job) -> Job:
        if self.event_bus is not None and job.domain_events:
            await self.event_bus.publish(list(job.domain_events))
        return job.clear_events()

    async def _mark_failed(self, job: Job, message: str) -> Job:
        if job.is_terminal:
            return job
        failed = job.fail(message)
        try:
            if not await self.store.update_job(failed):
                current = await self.store.find_job(job.job_id)
                if current is not None and current.is_terminal:
                    logger.warning(
                        "Job %s was already %s; keeping the stored outcome",
                        job.job_id,
                        current.status.value,
                        extra={"job_id": job.job_id},
                    )
                    if current.status is JobStatus.FAILED:
                        await self._publish_domain_events(failed)
                    return current
                logger.warning("Failed job %s has no record to update", job.job_id)
        except PersistenceError as e:
            logger.error("Could not record failure of %s: %s", job.job_id, e)
        return await self._publish_domain_events(failed)

    async def _fail(self, context: dict[str, Any], message: str, summary: str) -> None:
        """Record the failure, then emit the terminal event matching the stored record."""
        reporter: JobReporter = context["reporter"]
        job = await self._mark_failed(context["job"], message)
        context["job"] = job
        if job.status is JobStatus.SUCCEEDED and job.artifact is not None:
            reporter.success(_success_line(job.artifact), terminal=True)
        elif job.error_message == message:
            reporter.error(summary, terminal=True)
        else:
            reason = job.error_message or "job was marked failed while running"
            reporter.error(f"Deployment failed: {reason}", terminal=True)

    async def _release_workspace(self, context: dict[str, Any], reporter: JobReporter) -> None:
        workspace: Optional[Path] = context.pop("workspace", None)
        if workspace is None:
            return
        await asyncio.get_event_loop().run_in_executor(
            None, lambda: shutil.rmtree(workspace, ignore_errors=True)
        )
        reporter.info("Cleaned up temporary files")

    def _pipeline(self) -> StagePipeline:
        return StagePipeline([
            PipelineStage("workspace", "Preparing workspace", self._acquire_workspace),
            PipelineStage("fetch", "Cloning repository", self._fetch_source, ["workspace"]),
            PipelineStage("detect", "Detecting project type", self._detect_project, ["fetch"]),
            PipelineStage("install", "Installing dependencies", self._install_dependencies, ["detect"]),
            PipelineStage(
                "secrets",
                "Injecting environment variables",
                self._inject_secrets,
                ["detect"],
                is_critical=False,
            ),
            PipelineStage("build", "Building project", self._build, ["install", "secrets"]),
            PipelineStage("output", "Preparing build output", self._prepare_output, ["build"]),
            PipelineStage("upload", "Uploading build output", self._upload, ["output"]),
            PipelineStage("persist", "Saving deployment record", self._persist_success, ["upload"]),
        ])

    async def _acquire_workspace(self, context: dict[str, Any]) -> str:
        workspace = Path(tempfile.mkdtemp(prefix="skiff-", dir=self.workspace_root or None))
        context["workspace"] = workspace
        context["repo"] = workspace / "repo"
        return "Workspace ready"

    async def _fetch_source(self, context: dict[str, Any]) -> str:
        spec = context["job"].spec
        context["reporter"].info(f"Fetching {spec.source_ref} (branch {spec.branch})")
        await self.source.fetch(spec.source_ref, spec.branch, context["repo"])
        return "Repository cloned successfully"

    async def _detect_project(self, context: dict[str, Any]) -> str:
        job: Job = context["job"]
        reporter: JobReporter = context["reporter"]
        inspector = ProjectInspector(context["repo"])
        detection = inspector.detect(job.spec.project_type)
        for problem in detection.problems:
            reporter.error(problem)
        for note in detection.notes:
            reporter.info(note)

        context["inspector"] = inspector
        context["project_type"] = detection.project_type
        job = job.detected(detection.project_type)
        context["job"] = await self._save(job)
        return f"Project type: {detection.project_type}"

    async def _install_dependencies(self, context: dict[str, Any]) -> str:
        if context["project_type"] == "static":
            return "No dependencies to install"
        command = context["inspector"].install_command()
        context["reporter"].info(f"Running {command}")
        result = await self.builder.run(
            command, context["repo"], timeout=self.command_timeout_seconds
        )
        if not result.ok:
            tail = result.tail()
            if tail:
                context["reporter"].error(tail)
            raise PipelineStageError(
                "install", f"Dependency installation failed with exit code {result.exit_code}"
            )
        return "Dependencies installed successfully"

    async def _inject_secrets(self, context: dict[str, Any]) -> str:
        owner, repo = context["job"].spec.owner_repo
        variables = await self.secrets.get_variables(owner, repo)
        if not variables:
            return "No environment variables provisioned"

        repo_path: Path = context["repo"]
        _write_env_file(repo_path / ".env", variables)
        if context["project_type"] == "react":
            prefixed = {
                key if key.startswith("REACT_APP_") else f"REACT_APP_{key}": value
                for key, value in variables.items()
            }
            _write_env_file(repo_path / ".env.production", prefixed)
            context["reporter"].info("Added REACT_APP_ prefixed variables to .env.production")
        context["env"] = dict(variables)
        return f"Injected {len(variables)} environment variables"

    async def _build(self, context: dict[str, Any]) -> str:
        reporter: JobReporter = context["reporter"]
        inspector: ProjectInspector = context["inspector"]
        project_type = context["project_type"]
        command = inspector.resolve_build_command(project_type, context["job"].spec.build_command)
        if command is None:
            return "No build step required"

        if project_type == "nextjs":
            note = inspector.enable_next_static_export()
            if note:
                reporter.info(note)

        reporter.info(f"Running build command: {command}")
        result = await self.builder.run(
            command,
            context["repo"],
            env=context.get("env"),
            timeout=self.command_timeout_seconds,
        )
        if not result.ok:
            tail = result.tail()
            if tail:
                reporter.error(tail)
            if ProjectInspector.is_server_component_failure(result.output):
                reporter.error(SERVER_COMPONENT_GUIDANCE)
            raise PipelineStageError(
                "build", f"Build command failed with exit code {result.exit_code}"
            )
        return "Build completed successfully"

    async def _prepare_output(self, context: dict[str, Any]) -> str:
        reporter: JobReporter = context["reporter"]
        repo_path: Path = context["repo"]
        project_type = context["project_type"]
        relative, notes = context["inspector"].resolve_output_directory(
            project_type, context["job"].spec.output_directory
        )
        for note in notes:
            reporter.info(note)

        output = (repo_path / relative).resolve()
        if not output.is_dir() or not output.is_relative_to(repo_path.resolve()):
            raise PipelineStageError("output", f"Output directory '{relative}' not found")

        loop = asyncio.get_event_loop()
        preparer = StaticSitePreparer(output, project_type)
        if await loop.run_in_executor(None, preparer.remove_node_modules):
            reporter.info("Removed node_modules from output directory")

        size_mb = await loop.run_in_executor(None, directory_size_mb, output)
        context["size_mb"] = size_mb
        reporter.info(f"Output size: {size_mb:.2f} MB")
        if size_mb > self.large_output_mb:
            reporter.info(
                f"WARNING: Output is larger than {self.large_output_mb:g} MB; "
                "upload may be slow"
            )

        for note in await loop.run_in_executor(None, preparer.prepare):
            reporter.info(note)
        context["output"] = output
        return f"Build output ready in '{relative}'"

    async def _upload(self, context: dict[str, Any]) -> str:
        try:
            artifact = await asyncio.wait_for(
                self.publisher.publish(context["output"]),
                timeout=self.upload_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise PipelineStageError(
                "upload",
                f"Upload timed out after {self.upload_timeout_seconds:g} seconds. "
                f"Try reducing the output size ({context.get('size_mb', 0):.1f} MB) "
                "by excluding unneeded files.",
            )
        context["artifact"] = artifact
        return f"Uploaded with CID: {artifact.content_id}"

    async def _persist_success(self, context: dict[str, Any]) -> str:
        succeeded = context["job"].succeed(context["artifact"])
        context["job"] = await self._save(succeeded)
        return "Deployment record updated"
