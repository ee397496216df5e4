"""Shared fixtures for the Skiff test suite."""

import pytest
import pytest_asyncio

from skiff.domain.entities.job import Job
from skiff.domain.value_objects.deployment_spec import DeploymentSpec
from skiff.infrastructure.broadcast_hub import BroadcastHub
from skiff.infrastructure.repositories.sqlite_job_store import SQLiteJobStore


def make_job(job_id: str = "deploy_1700000000000_abc1234", owner: str = "anonymous", **spec) -> Job:
    spec.setdefault("source_ref", "acme/site")
    spec.setdefault("branch", "main")
    return Job(job_id=job_id, spec=DeploymentSpec(**spec), owner=owner)


@pytest.fixture
def job_factory():
    return make_job


@pytest_asyncio.fixture
async def store(tmp_path):
    """A fresh SQLite job store per test."""
    s = SQLiteJobStore(str(tmp_path / "skiff.db"))
    s.connect()
    yield s
    s.close()


@pytest.fixture
def hub():
    h = BroadcastHub(buffer_size=100, queue_size=64, grace_seconds=0.2, channel_ttl_seconds=5.0)
    yield h
    h.shutdown()
