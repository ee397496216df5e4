"""
Integration Tests: submit over HTTP, follow the live stream with the CLI client

Architectural Intent:
- Exercises the whole path a user sees: SkiffClient -> HTTP API ->
  SubmitDeployment -> DeploymentRunner -> EventLogger -> BroadcastHub -> SSE
- The streamed events must match the persisted history one for one
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from skiff.composition_root import create_container
from skiff.infrastructure.config import (
    HubConfig,
    PipelineConfig,
    PublishConfig,
    SecretsConfig,
    SkiffConfig,
    StoreConfig,
    SweeperConfig,
)
from skiff.presentation.cli.stream_client import ReconnectPolicy, SkiffClient
from skiff.presentation.web.app import SkiffWebApp


async def slow_static_checkout(ref, branch, destination):
    await asyncio.sleep(0.2)
    destination.mkdir(parents=True)
    (destination / "index.html").write_text("<html><head></head><body>hello</body></html>")


@pytest_asyncio.fixture
async def server(tmp_path):
    config = SkiffConfig(
        store=StoreConfig(db_path=str(tmp_path / "skiff.db")),
        pipeline=PipelineConfig(workspace_root=str(tmp_path)),
        publish=PublishConfig(output_root=str(tmp_path / "artifacts")),
        secrets=SecretsConfig(path=str(tmp_path / "secrets.json")),
        hub=HubConfig(grace_seconds=0.2),
        sweeper=SweeperConfig(interval_seconds=0.1),
    )
    container = create_container(config)
    source = AsyncMock()
    source.verify.return_value = True
    source.fetch.side_effect = slow_static_checkout
    container.submit.source = source
    container.runner.source = source
    await container.start()
    app = SkiffWebApp(container, heartbeat_seconds=0.1)
    await app.start("127.0.0.1", 0)
    yield app
    await asyncio.to_thread(app.stop)
    await container.stop(drain_timeout=5)


@pytest.fixture
def client(server):
    return SkiffClient(
        f"http://127.0.0.1:{server.port}",
        policy=ReconnectPolicy(initial_delay=0.05, max_attempts=3, stall_seconds=5),
    )


@pytest.mark.asyncio
async def test_successful_deployment_end_to_end(server, client):
    job_id = await asyncio.to_thread(client.submit, {"sourceRef": "acme/site", "branch": "main"})

    streamed = []
    result = await asyncio.to_thread(client.follow, job_id, streamed.append)
    await server.container.submit.drain(timeout=10)

    assert result.succeeded is True
    assert not result.fell_back
    job = await asyncio.to_thread(client.get_job, job_id)
    assert job["status"] == "succeeded"
    assert job["url"].startswith("file://")

    persisted = await asyncio.to_thread(lambda: list(client.iter_logs(job_id, limit=5)))
    completed_at = next(i for i, e in enumerate(persisted) if e.terminal)
    assert [e.sequence for e in streamed] == [e.sequence for e in persisted[: completed_at + 1]]
    assert [e.message for e in streamed] == [e.message for e in persisted[: completed_at + 1]]
    assert streamed[-1].message == f"Deployment completed successfully with CID: {job['cid']}"


@pytest.mark.asyncio
async def test_failed_deployment_end_to_end(server, client):
    job_id = await asyncio.to_thread(
        client.submit,
        {"sourceRef": "acme/site", "branch": "main", "outputDirectory": "public"},
    )

    streamed = []
    result = await asyncio.to_thread(client.follow, job_id, streamed.append)
    await server.container.submit.drain(timeout=10)

    assert result.succeeded is False
    assert result.completion["message"] == "Deployment failed"
    assert streamed[-1].message == "Deployment failed: Output directory 'public' not found"
    job = await asyncio.to_thread(client.get_job, job_id)
    assert job["status"] == "failed"
    assert job["error"] == "Output directory 'public' not found"


@pytest.mark.asyncio
async def test_two_deployments_stream_independently(server, client):
    first = await asyncio.to_thread(client.submit, {"sourceRef": "acme/one", "branch": "main"})
    second = await asyncio.to_thread(client.submit, {"sourceRef": "acme/two", "branch": "main"})

    first_events, second_events = [], []
    results = await asyncio.gather(
        asyncio.to_thread(client.follow, first, first_events.append),
        asyncio.to_thread(client.follow, second, second_events.append),
    )
    await server.container.submit.drain(timeout=10)

    assert all(r.succeeded for r in results)
    assert {e.job_id for e in first_events} == {first}
    assert {e.job_id for e in second_events} == {second}
    for events in (first_events, second_events):
        assert [e.sequence for e in events] == list(range(1, len(events) + 1))
