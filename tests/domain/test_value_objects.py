"""
Domain Layer Tests: value objects
"""

from datetime import datetime, UTC

import pytest

from skiff.domain.value_objects.artifact import PublishedArtifact
from skiff.domain.value_objects.deployment_spec import DeploymentSpec
from skiff.domain.value_objects.job_id import JobId
from skiff.domain.value_objects.log_event import (
    CompletionEvent,
    LogEvent,
    LogKind,
    matches_legacy_completion,
)


class TestJobId:
    def test_generated_id_is_canonical(self):
        job_id = JobId.generate()
        assert job_id.is_canonical
        assert str(job_id).startswith("deploy_")

    def test_generated_ids_differ(self):
        assert len({JobId.generate().value for _ in range(50)}) == 50

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            JobId("")

    def test_foreign_id_is_not_canonical(self):
        assert not JobId("build-42").is_canonical


class TestLogEvent:
    def test_kind_is_coerced(self):
        event = LogEvent("job", "error", "boom")
        assert event.kind is LogKind.ERROR

    def test_requires_job_id(self):
        with pytest.raises(ValueError):
            LogEvent("", LogKind.INFO, "x")

    def test_markers_require_terminal_flag(self):
        plain = LogEvent("job", LogKind.SUCCESS, "Deployment completed successfully")
        marked = LogEvent("job", LogKind.SUCCESS, "done", terminal=True)
        failed = LogEvent("job", LogKind.ERROR, "done", terminal=True)
        assert not plain.is_success_marker
        assert marked.is_success_marker
        assert failed.is_failure_marker

    def test_wire_format(self):
        ts = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        event = LogEvent("job-1", LogKind.INFO, "hello", ts, sequence=7)
        assert event.to_dict() == {
            "jobId": "job-1",
            "type": "info",
            "message": "hello",
            "timestamp": "2024-01-02T03:04:05+00:00",
            "sequence": 7,
            "terminal": False,
        }

    def test_from_dict_restores_event(self):
        ts = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        event = LogEvent("job-1", LogKind.SUCCESS, "ok", ts, sequence=3, terminal=True)
        assert LogEvent.from_dict(event.to_dict()) == event

    def test_legacy_completion_matching(self):
        assert matches_legacy_completion(
            LogEvent("j", LogKind.SUCCESS, "Deployment completed successfully with CID: x")
        )
        assert matches_legacy_completion(LogEvent("j", LogKind.ERROR, "Deployment failed: x"))
        assert not matches_legacy_completion(LogEvent("j", LogKind.INFO, "Build failed"))


class TestCompletionEvent:
    def test_success_completion(self):
        terminal = LogEvent("j", LogKind.SUCCESS, "done", terminal=True)
        completion = CompletionEvent.for_terminal(terminal)
        assert completion.type == "completion_success"
        assert set(completion.to_dict()) == {"type", "message", "timestamp"}

    def test_error_completion(self):
        terminal = LogEvent("j", LogKind.ERROR, "Deployment failed: x", terminal=True)
        assert CompletionEvent.for_terminal(terminal).type == "completion_error"


class TestDeploymentSpec:
    def test_owner_repo_reference(self):
        spec = DeploymentSpec("acme/site", "main")
        assert spec.owner_repo == ("acme", "site")
        assert not spec.is_url

    def test_url_reference(self):
        spec = DeploymentSpec("https://github.com/acme/site.git", "release/v2")
        assert spec.is_url
        assert spec.owner_repo == ("acme", "site")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"source_ref": "", "branch": "main"},
            {"source_ref": "acme/site", "branch": ""},
            {"source_ref": "not a repo", "branch": "main"},
            {"source_ref": "acme/site", "branch": "--upload-pack=x"},
            {"source_ref": "acme/site", "branch": "main", "project_type": "rails"},
            {"source_ref": "acme/site", "branch": "main", "output_directory": "../etc"},
            {"source_ref": "acme/site", "branch": "main", "output_directory": "/tmp"},
        ],
    )
    def test_invalid_specs_rejected(self, kwargs):
        with pytest.raises(ValueError):
            DeploymentSpec(**kwargs)


class TestPublishedArtifact:
    def test_requires_cid_and_url(self):
        with pytest.raises(ValueError):
            PublishedArtifact("", "https://x")
        with pytest.raises(ValueError):
            PublishedArtifact("cid", "")

    def test_str_is_content_id(self):
        assert str(PublishedArtifact("cid", "https://x/cid")) == "cid"
