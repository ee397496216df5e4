"""
Skiff API Client

Architectural Intent:
- Blocking HTTP client used by the CLI and the TUI log viewer
- Uses stdlib urllib for the HTTP layer (no external dependencies)
- One ReconnectPolicy governs every retry and stall decision while
  following a live log stream

Reconnect Strategy:
- A read that sees no bytes (frames or keepalive comments) for
  stall_seconds counts as a dropped connection
- Reconnects back off exponentially and resume with ?after=<last sequence>
  so already-displayed events are not repeated
- When attempts are exhausted the client falls back to the paged log
  endpoint and the job record
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional
from urllib.parse import quote, urlencode
import json
import logging
import time
import urllib.error
import urllib.request

from skiff.domain.errors import (
    AuthError,
    InvalidTransitionError,
    JobNotFoundError,
    SkiffError,
    ValidationError,
)
from skiff.domain.value_objects.log_event import LogEvent
from skiff.presentation.sse import SSEParser

logger = logging.getLogger(__name__)

_ERRORS_BY_STATUS = {
    400: ValidationError,
    401: AuthError,
    404: JobNotFoundError,
    409: InvalidTransitionError,
}

Opener = Callable[..., Any]


@dataclass(frozen=True)
class ReconnectPolicy:
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_attempts: int = 10
    stall_seconds: float = 30.0

    @classmethod
    def from_config(cls, config) -> "ReconnectPolicy":
        return cls(
            initial_delay=config.initial_delay,
            multiplier=config.multiplier,
            max_delay=config.max_delay,
            max_attempts=config.max_attempts,
            stall_seconds=config.stall_seconds,
        )

    def delay(self, attempt: int) -> float:
        """Delay before reconnect number ``attempt`` (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.max_delay, self.initial_delay * self.multiplier ** (attempt - 1))

    def delays(self) -> Iterator[float]:
        for attempt in range(1, self.max_attempts + 1):
            yield self.delay(attempt)


@dataclass
class FollowResult:
    job_id: str
    completion: Optional[dict[str, Any]] = None
    events: int = 0
    reconnects: int = 0
    fell_back: bool = False

    @property
    def succeeded(self) -> Optional[bool]:
        if self.completion is None:
            return None
        return self.completion.get("type") == "completion_success"


class SkiffClient:
    def __init__(
        self,
        base_url: str,
        token: str = "",
        policy: Optional[ReconnectPolicy] = None,
        opener: Optional[Opener] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._token = token
        self.policy = policy or ReconnectPolicy()
        self._open = opener or urllib.request.urlopen
        self._sleep = sleep
        self.timeout = timeout

    # ---- plain API calls ---------------------------------------------------

    def _request(self, path: str, method: str = "GET", body: Any = None) -> urllib.request.Request:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        request = urllib.request.Request(f"{self.base_url}{path}", data=data, method=method)
        if data is not None:
            request.add_header("Content-Type", "application/json")
        if self._token:
            request.add_header("Authorization", f"Bearer {self._token}")
        return request

    def _call(self, path: str, method: str = "GET", body: Any = None) -> Any:
        try:
            with self._open(self._request(path, method, body), timeout=self.timeout) as response:
                return json.loads(response.read().decode("utf-8") or "null")
        except urllib.error.HTTPError as e:
            raise self._error_for(e)

    @staticmethod
    def _error_for(error: urllib.error.HTTPError) -> SkiffError:
        try:
            message = json.loads(error.read().decode("utf-8")).get("error", "")
        except (ValueError, AttributeError, OSError):
            message = ""
        error_type = _ERRORS_BY_STATUS.get(error.code, SkiffError)
        return error_type(message or f"HTTP {error.code}")

    def submit(self, payload: dict[str, Any]) -> str:
        return self._call("/api/deployments", "POST", payload)["jobId"]

    def list_deployments(
        self, page: int = 1, limit: int = 20, source_ref: Optional[str] = None
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"page": page, "limit": limit}
        if source_ref:
            params["sourceRef"] = source_ref
        return self._call(f"/api/deployments?{urlencode(params)}").get("deployments", [])

    def get_job(self, ref: str) -> dict[str, Any]:
        return self._call(f"/api/deployments/{quote(ref)}")

    def update_status(self, ref: str, status: str) -> dict[str, Any]:
        return self._call(f"/api/deployments/{quote(ref)}", "PATCH", {"status": status})

    def get_logs(self, ref: str, page: int = 1, limit: int = 100) -> list[LogEvent]:
        query = urlencode({"page": page, "limit": limit})
        data = self._call(f"/api/deployments/{quote(ref)}/logs?{query}")
        return [LogEvent.from_dict(item) for item in data.get("logs", [])]

    def iter_logs(self, ref: str, limit: int = 100) -> Iterator[LogEvent]:
        page = 1
        while True:
            events = self.get_logs(ref, page=page, limit=limit)
            yield from events
            if len(events) < limit:
                return
            page += 1

    # ---- live stream -------------------------------------------------------

    def follow(
        self,
        job_id: str,
        on_event: Callable[[LogEvent], None],
        on_completion: Optional[Callable[[dict[str, Any]], None]] = None,
        after: Optional[int] = None,
    ) -> FollowResult:
        """Follow a job's live stream until its completion event arrives."""
        result = FollowResult(job_id=job_id)
        cursor = after
        attempt = 0

        while True:
            try:
                for frame in self._frames(job_id, cursor):
                    if frame.is_completion:
                        result.completion = frame.json()
                        if on_completion:
                            on_completion(result.completion)
                        return result
                    if not frame.data:
                        continue
                    event = LogEvent.from_dict(frame.json())
                    if cursor is not None and event.sequence <= cursor:
                        continue
                    cursor = event.sequence
                    attempt = 0
                    result.events += 1
                    on_event(event)
                logger.info("Stream for %s ended before completion", job_id)
            except urllib.error.HTTPError as e:
                if e.code in _ERRORS_BY_STATUS:
                    raise self._error_for(e)
                logger.info("Stream for %s failed with HTTP %d", job_id, e.code)
            except (urllib.error.URLError, OSError, ValueError) as e:
                logger.info("Stream for %s dropped: %s", job_id, e)

            attempt += 1
            if attempt > self.policy.max_attempts:
                break
            result.reconnects += 1
            delay = self.policy.delay(attempt)
            logger.info("Reconnecting to %s in %.1fs (attempt %d)", job_id, delay, attempt)
            self._sleep(delay)

        logger.warning("Giving up on live stream for %s; falling back to log fetch", job_id)
        return self._pull(job_id, cursor, on_event, on_completion, result)

    def _frames(self, job_id: str, after: Optional[int]):
        path = f"/api/deployments/{quote(job_id)}/stream"
        if after is not None:
            path += f"?after={after}"
        request = self._request(path)
        request.add_header("Accept", "text/event-stream")
        with self._open(request, timeout=self.policy.stall_seconds) as response:
            parser = SSEParser()
            for line in response:
                frame = parser.feed(line.decode("utf-8", errors="replace"))
                if frame is not None:
                    yield frame

    def _pull(
        self,
        job_id: str,
        cursor: Optional[int],
        on_event: Callable[[LogEvent], None],
        on_completion: Optional[Callable[[dict[str, Any]], None]],
        result: FollowResult,
    ) -> FollowResult:
        result.fell_back = True
        for event in self.iter_logs(job_id):
            if cursor is not None and event.sequence <= cursor:
                continue
            cursor = event.sequence
            result.events += 1
            on_event(event)

        job = self.get_job(job_id)
        if job.get("status") in ("succeeded", "failed"):
            succeeded = job["status"] == "succeeded"
            result.completion = {
                "type": "completion_success" if succeeded else "completion_error",
                "message": "Deployment completed successfully" if succeeded else "Deployment failed",
                "timestamp": None,
            }
            if on_completion:
                on_completion(result.completion)
        return result
