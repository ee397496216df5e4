"""
Application Layer Tests: job query use cases (real SQLite store)
"""

from unittest.mock import AsyncMock

import pytest

from skiff.application.dtos.deployment_dtos import UpdateStatusRequest
from skiff.application.use_cases.job_queries import GetJob, GetJobLogs, ListJobs, UpdateJobStatus
from skiff.domain.entities.job import JobStatus
from skiff.domain.errors import InvalidTransitionError, JobNotFoundError, ValidationError
from skiff.domain.value_objects.log_event import LogEvent, LogKind

JOB = "deploy_1700000000000_abc1234"


class TestGetJob:
    @pytest.mark.asyncio
    async def test_found(self, store, job_factory):
        await store.create_job(job_factory(job_id=JOB))
        assert (await GetJob(store).execute(JOB)).job_id == JOB

    @pytest.mark.asyncio
    async def test_not_found(self, store):
        with pytest.raises(JobNotFoundError, match="Deployment deploy_0_x not found"):
            await GetJob(store).execute("deploy_0_x")

    @pytest.mark.asyncio
    async def test_other_owner_cannot_see_job(self, store, job_factory):
        await store.create_job(job_factory(job_id=JOB, owner="alice"))
        with pytest.raises(JobNotFoundError):
            await GetJob(store).execute(JOB, owner="bob")


class TestUpdateJobStatus:
    @pytest.mark.asyncio
    async def test_forward_transition(self, store, job_factory):
        await store.create_job(job_factory(job_id=JOB))
        updated = await UpdateJobStatus(store).execute(JOB, UpdateStatusRequest("running"))
        assert updated.status == JobStatus.RUNNING
        assert (await store.find_job(JOB)).status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_terminal_job_cannot_change(self, store, job_factory):
        await store.create_job(job_factory(job_id=JOB))
        use_case = UpdateJobStatus(store)
        await use_case.execute(JOB, UpdateStatusRequest("failed"))
        with pytest.raises(InvalidTransitionError):
            await use_case.execute(JOB, UpdateStatusRequest("running"))

    @pytest.mark.asyncio
    async def test_running_job_cannot_succeed_without_artifact(self, store, job_factory):
        await store.create_job(job_factory(job_id=JOB))
        use_case = UpdateJobStatus(store)
        await use_case.execute(JOB, UpdateStatusRequest("running"))
        with pytest.raises(InvalidTransitionError):
            await use_case.execute(JOB, UpdateStatusRequest("succeeded"))
        record = await store.find_job(JOB)
        assert record.status == JobStatus.RUNNING
        assert record.artifact is None

    @pytest.mark.asyncio
    async def test_job_finished_between_read_and_write(self, store, job_factory):
        await store.create_job(job_factory(job_id=JOB))
        store.update_job = AsyncMock(return_value=False)
        with pytest.raises(InvalidTransitionError, match="already finished"):
            await UpdateJobStatus(store).execute(JOB, UpdateStatusRequest("failed"))


class TestGetJobLogs:
    @pytest.mark.asyncio
    async def test_paged_logs(self, store, job_factory):
        await store.create_job(job_factory(job_id=JOB))
        await store.append_events(
            JOB, [LogEvent(JOB, LogKind.INFO, f"line {i}", sequence=i) for i in range(1, 6)]
        )
        page = await GetJobLogs(store).execute(JOB, page=1, limit=2)
        assert [e.sequence for e in page.events] == [1, 2]
        assert page.to_dict()["jobId"] == JOB

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), (1, 1001)])
    async def test_invalid_paging(self, store, page, limit):
        with pytest.raises(ValidationError):
            await GetJobLogs(store).execute(JOB, page=page, limit=limit)

    @pytest.mark.asyncio
    async def test_logs_of_unknown_job(self, store):
        with pytest.raises(JobNotFoundError):
            await GetJobLogs(store).execute("deploy_0_x")


class TestListJobs:
    @pytest.mark.asyncio
    async def test_lists_only_the_callers_jobs(self, store, job_factory):
        await store.create_job(job_factory(job_id="deploy_1700000000000_alice01", owner="alice"))
        await store.create_job(job_factory(job_id="deploy_1700000000001_bob0001", owner="bob"))

        page = await ListJobs(store).execute(owner="alice")
        assert [job.job_id for job in page.jobs] == ["deploy_1700000000000_alice01"]
        body = page.to_dict()
        assert body["page"] == 1
        assert body["deployments"][0]["owner"] == "alice"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), (1, 1001)])
    async def test_invalid_paging(self, store, page, limit):
        with pytest.raises(ValidationError):
            await ListJobs(store).execute(page=page, limit=limit)
