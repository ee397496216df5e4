"""
Composition Root Tests
"""

import pytest

from skiff.composition_root import create_container
from skiff.infrastructure.adapters.http_artifact_publisher import HTTPArtifactPublisher
from skiff.infrastructure.adapters.local_artifact_publisher import LocalArtifactPublisher
from skiff.infrastructure.config import (
    HubConfig,
    PublishConfig,
    SkiffConfig,
    StoreConfig,
    SweeperConfig,
)


def config_for(tmp_path, **overrides):
    return SkiffConfig(store=StoreConfig(db_path=str(tmp_path / "skiff.db")), **overrides)


def test_wiring_follows_config(tmp_path):
    container = create_container(
        config_for(tmp_path, hub=HubConfig(buffer_size=7, grace_seconds=0.5))
    )
    assert container.hub.buffer_size == 7
    assert container.hub.grace_seconds == 0.5
    assert container.event_logger.pending is container.sweeper._pending
    assert isinstance(container.runner.publisher, LocalArtifactPublisher)
    assert not container.authenticator.enabled
    assert not container.telemetry.enabled
    container.hub.shutdown()


def test_http_publisher_selected(tmp_path):
    container = create_container(
        config_for(tmp_path, publish=PublishConfig(provider="http", api_url="https://pin.example"))
    )
    assert isinstance(container.runner.publisher, HTTPArtifactPublisher)
    container.hub.shutdown()


def test_unknown_publisher_rejected(tmp_path):
    with pytest.raises(ValueError, match="Unknown publish provider"):
        create_container(config_for(tmp_path, publish=PublishConfig(provider="s3")))


@pytest.mark.asyncio
async def test_start_and_stop(tmp_path, job_factory):
    container = create_container(
        config_for(tmp_path, sweeper=SweeperConfig(interval_seconds=0.05))
    )
    await container.start()
    assert container.sweeper.running
    await container.store.create_job(job_factory())
    assert await container.store.job_exists(job_factory().job_id)

    await container.stop(drain_timeout=1)
    assert not container.sweeper.running
