"""
Presentation Layer Tests: SkiffClient

Architectural Intent:
- A scripted opener stands in for urlopen so reconnect, resume and
  fallback behaviour can be driven deterministically without sockets
"""

import io
import json
import urllib.error
from datetime import datetime, UTC

import pytest

from skiff.domain.errors import JobNotFoundError, ValidationError
from skiff.domain.value_objects.log_event import CompletionEvent, LogEvent, LogKind
from skiff.infrastructure.config import ClientConfig
from skiff.presentation.cli.stream_client import FollowResult, ReconnectPolicy, SkiffClient
from skiff.presentation.sse import format_completion, format_event, format_keepalive

BASE = "http://skiff.test"
JOB = "deploy_1700000000000_abc1234"
TS = datetime(2024, 1, 1, tzinfo=UTC)


def log_event(seq, message=None):
    return LogEvent(JOB, LogKind.INFO, message or f"step {seq}", TS, seq)


def sse_lines(*frames):
    return [line.encode() + b"\n" for line in "".join(frames).split("\n")]


def http_error(code, message):
    body = io.BytesIO(json.dumps({"error": message}).encode())
    return urllib.error.HTTPError(BASE, code, message, {}, body)


class FakeResponse:
    def __init__(self, lines=(), body=None, fail_with=None):
        self._lines = list(lines)
        self._body = body
        self._fail_with = fail_with

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def __iter__(self):
        yield from self._lines
        if self._fail_with is not None:
            raise self._fail_with

    def read(self):
        return json.dumps(self._body).encode()


class ScriptedOpener:
    """Serves queued responses per path; records every request."""

    def __init__(self):
        self.streams = []
        self.routes = {}
        self.requests = []

    def __call__(self, request, timeout=None):
        self.requests.append((request.get_method(), request.full_url, timeout))
        path = request.full_url[len(BASE):]
        if "/stream" in path:
            item = self.streams.pop(0)
        else:
            item = self.routes[path.split("?")[0]]
            if isinstance(item, list):
                item = item.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def opener():
    return ScriptedOpener()


@pytest.fixture
def sleeps():
    return []


def make_client(opener, sleeps, **policy):
    policy.setdefault("initial_delay", 1.0)
    policy.setdefault("max_attempts", 3)
    return SkiffClient(
        BASE, token="t0k", policy=ReconnectPolicy(**policy), opener=opener, sleep=sleeps.append
    )


class TestReconnectPolicy:
    def test_exponential_backoff_is_capped(self):
        policy = ReconnectPolicy(initial_delay=1, multiplier=2, max_delay=10, max_attempts=6)
        assert [policy.delay(n) for n in range(1, 7)] == [1, 2, 4, 8, 10, 10]
        assert policy.delay(0) == 0.0
        assert len(list(policy.delays())) == 6

    def test_from_config(self):
        policy = ReconnectPolicy.from_config(ClientConfig(max_attempts=4, stall_seconds=5))
        assert policy.max_attempts == 4
        assert policy.stall_seconds == 5


class TestApiCalls:
    def test_submit(self, opener, sleeps):
        opener.routes["/api/deployments"] = FakeResponse(body={"jobId": JOB})
        assert make_client(opener, sleeps).submit({"sourceRef": "acme/site"}) == JOB
        method, url, _ = opener.requests[0]
        assert method == "POST"
        assert url == f"{BASE}/api/deployments"

    def test_http_errors_map_to_domain_errors(self, opener, sleeps):
        opener.routes["/api/deployments"] = http_error(400, "branch is required")
        with pytest.raises(ValidationError, match="branch is required"):
            make_client(opener, sleeps).submit({})

    def test_list_deployments(self, opener, sleeps):
        opener.routes["/api/deployments"] = FakeResponse(
            body={"page": 2, "limit": 5, "deployments": [{"jobId": JOB}]}
        )
        jobs = make_client(opener, sleeps).list_deployments(2, 5, "acme/site")
        assert jobs == [{"jobId": JOB}]
        method, url, _ = opener.requests[0]
        assert method == "GET"
        assert url == f"{BASE}/api/deployments?page=2&limit=5&sourceRef=acme%2Fsite"

    def test_iter_logs_pages_until_short_page(self, opener, sleeps):
        pages = [
            FakeResponse(body={"logs": [log_event(1).to_dict(), log_event(2).to_dict()]}),
            FakeResponse(body={"logs": [log_event(3).to_dict()]}),
        ]
        opener.routes[f"/api/deployments/{JOB}/logs"] = pages
        events = list(make_client(opener, sleeps).iter_logs(JOB, limit=2))
        assert [e.sequence for e in events] == [1, 2, 3]


class TestFollow:
    def test_events_then_completion(self, opener, sleeps):
        opener.streams.append(
            FakeResponse(
                sse_lines(
                    "retry: 1000\n\n",
                    format_event(log_event(1)),
                    format_keepalive(),
                    format_event(log_event(2)),
                    format_completion(CompletionEvent(JOB, True, TS)),
                )
            )
        )
        seen, completions = [], []
        result = make_client(opener, sleeps).follow(JOB, seen.append, completions.append)

        assert [e.sequence for e in seen] == [1, 2]
        assert result.succeeded is True
        assert completions == [result.completion]
        assert result.reconnects == 0
        assert sleeps == []

    def test_reconnect_resumes_after_last_sequence(self, opener, sleeps):
        opener.streams.append(
            FakeResponse(
                sse_lines(format_event(log_event(1)), format_event(log_event(2))),
                fail_with=ConnectionResetError("reset by peer"),
            )
        )
        opener.streams.append(
            FakeResponse(
                sse_lines(
                    format_event(log_event(2)),
                    format_event(log_event(3)),
                    format_completion(CompletionEvent(JOB, False, TS)),
                )
            )
        )
        seen = []
        result = make_client(opener, sleeps).follow(JOB, seen.append)

        assert [e.sequence for e in seen] == [1, 2, 3]
        assert result.reconnects == 1
        assert result.succeeded is False
        assert opener.requests[1][1].endswith("/stream?after=2")
        assert sleeps == [1.0]

    def test_stall_timeout_is_passed_to_opener(self, opener, sleeps):
        opener.streams.append(
            FakeResponse(sse_lines(format_completion(CompletionEvent(JOB, True, TS))))
        )
        make_client(opener, sleeps, stall_seconds=7).follow(JOB, lambda e: None)
        assert opener.requests[0][2] == 7

    def test_unknown_job_is_not_retried(self, opener, sleeps):
        opener.streams.append(http_error(404, f"Deployment {JOB} not found"))
        with pytest.raises(JobNotFoundError):
            make_client(opener, sleeps).follow(JOB, lambda e: None)
        assert sleeps == []

    def test_falls_back_to_log_fetch(self, opener, sleeps):
        for _ in range(3):
            opener.streams.append(urllib.error.URLError("connection refused"))
        opener.routes[f"/api/deployments/{JOB}/logs"] = FakeResponse(
            body={"logs": [log_event(1).to_dict(), log_event(2).to_dict()]}
        )
        opener.routes[f"/api/deployments/{JOB}"] = FakeResponse(
            body={"jobId": JOB, "status": "succeeded"}
        )
        seen = []
        result = make_client(opener, sleeps, max_attempts=2, multiplier=3.0).follow(
            JOB, seen.append
        )

        assert result.fell_back
        assert [e.sequence for e in seen] == [1, 2]
        assert result.completion["type"] == "completion_success"
        assert sleeps == [1.0, 3.0]

    def test_fallback_skips_events_already_shown(self, opener, sleeps):
        opener.streams.append(
            FakeResponse(sse_lines(format_event(log_event(1))), fail_with=OSError("stalled"))
        )
        opener.streams.append(urllib.error.URLError("refused"))
        opener.routes[f"/api/deployments/{JOB}/logs"] = FakeResponse(
            body={"logs": [log_event(1).to_dict(), log_event(2).to_dict()]}
        )
        opener.routes[f"/api/deployments/{JOB}"] = FakeResponse(
            body={"jobId": JOB, "status": "running"}
        )
        seen = []
        result = make_client(opener, sleeps, max_attempts=1).follow(JOB, seen.append)

        assert [e.sequence for e in seen] == [1, 2]
        assert result.completion is None
        assert result.succeeded is None


def test_follow_result_defaults():
    result = FollowResult(JOB)
    assert result.succeeded is None
    assert not result.fell_back
