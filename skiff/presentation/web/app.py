"""
Skiff HTTP API

Architectural Intent:
- Lightweight API server built on Python stdlib (http.server + asyncio)
- Thin presentation adapter: parses requests, authenticates, calls use
  cases, maps domain errors to status codes
- Live log streaming over Server-Sent Events, fed by the BroadcastHub

API Surface:
    POST  /api/deployments                 -> 202 {"jobId": ...}
    GET   /api/deployments                 -> caller's jobs, newest first (?page=&limit=&sourceRef=)
    GET   /api/deployments/{id}            -> job record
    PATCH /api/deployments/{id}            -> update status ({"status": ...})
    GET   /api/deployments/{id}/logs       -> persisted events (?page=&limit=)
    GET   /api/deployments/{id}/stream     -> SSE stream (?after=<sequence>)
    GET   /health                          -> liveness

Threading Model:
    ThreadingHTTPServer runs in a daemon thread, one thread per connection,
    so a long-lived stream never blocks other requests. Use cases are
    coroutines owned by the main event loop; handlers schedule them there
    with run_coroutine_threadsafe and wait for the result. Stream handlers
    only touch the thread-safe BroadcastHub.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

from skiff import __version__
from skiff.application.dtos.deployment_dtos import (
    SubmitDeploymentRequest,
    UpdateStatusRequest,
)
from skiff.domain.entities.job import Job, JobStatus
from skiff.domain.errors import (
    AuthError,
    DeliveryError,
    InvalidTransitionError,
    JobNotFoundError,
    ValidationError,
)
from skiff.domain.value_objects.log_event import CompletionEvent
from skiff.infrastructure.broadcast_hub import KEEPALIVE
from skiff.presentation.sse import (
    format_completion,
    format_event,
    format_keepalive,
    format_retry,
)

logger = logging.getLogger(__name__)

_JOB_PATH_RE = re.compile(r"^/api/deployments/([A-Za-z0-9_-]+)(?:/(logs|stream))?/?$")

_ERROR_STATUS: tuple[tuple[type, HTTPStatus], ...] = (
    (ValidationError, HTTPStatus.BAD_REQUEST),
    (AuthError, HTTPStatus.UNAUTHORIZED),
    (JobNotFoundError, HTTPStatus.NOT_FOUND),
    (InvalidTransitionError, HTTPStatus.CONFLICT),
)

_MAX_BODY_BYTES = 64 * 1024


def _int_param(query: dict[str, list[str]], name: str, default: Optional[int]) -> Optional[int]:
    values = query.get(name)
    if not values:
        return default
    try:
        return int(values[0])
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


# ---------------------------------------------------------------------------
# Request handler
# ---------------------------------------------------------------------------

class SkiffRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the Skiff API.

    The server instance carries ``app`` (the owning SkiffWebApp).
    """

    server_version = f"skiff/{__version__}"

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("web: %s", format % args)

    @property
    def app(self) -> "SkiffWebApp":
        return self.server.app  # type: ignore[attr-defined]

    # ---- routing -----------------------------------------------------------

    def do_GET(self) -> None:  # noqa: N802
        self._dispatch("GET")

    def do_POST(self) -> None:  # noqa: N802
        self._dispatch("POST")

    def do_PATCH(self) -> None:  # noqa: N802
        self._dispatch("PATCH")

    def _dispatch(self, method: str) -> None:
        url = urlsplit(self.path)
        query = parse_qs(url.query)
        try:
            if url.path == "/health" and method == "GET":
                self._send_json({"status": "ok", "version": __version__})
                return
            if url.path.rstrip("/") == "/api/deployments":
                if method == "POST":
                    self._handle_submit()
                elif method == "GET":
                    self._handle_list(query)
                else:
                    self._send_json(
                        {"error": "method not allowed"}, HTTPStatus.METHOD_NOT_ALLOWED
                    )
                return
            match = _JOB_PATH_RE.match(url.path)
            if match is None:
                self._send_json({"error": "not found"}, HTTPStatus.NOT_FOUND)
                return

            ref, action = match.group(1), match.group(2)
            if method == "GET" and action is None:
                self._handle_get_job(ref)
            elif method == "PATCH" and action is None:
                self._handle_update_status(ref)
            elif method == "GET" and action == "logs":
                self._handle_logs(ref, query)
            elif method == "GET" and action == "stream":
                self._handle_stream(ref, query)
            else:
                self._send_json({"error": "method not allowed"}, HTTPStatus.METHOD_NOT_ALLOWED)
        except Exception as exc:
            self._send_error(exc)

    # ---- endpoint implementations ------------------------------------------

    def _handle_submit(self) -> None:
        owner = self._authenticate()
        request = SubmitDeploymentRequest.from_payload(self._read_json(), owner=owner)
        response = self.app.call(self.app.container.submit.execute(request))
        self._send_json(response.to_dict(), HTTPStatus.ACCEPTED)

    def _handle_list(self, query: dict[str, list[str]]) -> None:
        scope = self._scope(self._authenticate())
        source_ref = query.get("sourceRef", [None])[0]
        result = self.app.call(
            self.app.container.list_jobs.execute(
                owner=scope,
                page=_int_param(query, "page", 1),
                limit=_int_param(query, "limit", 20),
                source_ref=source_ref,
            )
        )
        self._send_json(result.to_dict())

    def _handle_get_job(self, ref: str) -> None:
        scope = self._scope(self._authenticate())
        job = self.app.call(self.app.container.get_job.execute(ref, owner=scope))
        self._send_json(job.to_dict())

    def _handle_update_status(self, ref: str) -> None:
        scope = self._scope(self._authenticate())
        request = UpdateStatusRequest.from_payload(self._read_json())
        job = self.app.call(
            self.app.container.update_status.execute(ref, request, owner=scope)
        )
        self._send_json(job.to_dict())

    def _handle_logs(self, ref: str, query: dict[str, list[str]]) -> None:
        scope = self._scope(self._authenticate())
        page = _int_param(query, "page", 1)
        limit = _int_param(query, "limit", 100)
        result = self.app.call(
            self.app.container.get_logs.execute(ref, page=page, limit=limit, owner=scope)
        )
        self._send_json(result.to_dict())

    def _handle_stream(self, ref: str, query: dict[str, list[str]]) -> None:
        scope = self._scope(self._authenticate())
        after = _int_param(query, "after", None)
        job_id, job = self._resolve_stream_job(ref, scope)
        hub = self.app.container.hub

        completed: Optional[CompletionEvent] = None
        history: list = []
        if job is not None and job.is_terminal and not hub.is_completed(job_id):
            history = self.app.call(
                self.app.container.store.recent_events(job_id, hub.buffer_size)
            )
            completed = CompletionEvent(job_id, succeeded=job.status is JobStatus.SUCCEEDED)

        sub, replay = hub.subscribe(
            job_id, after_sequence=after, completed=completed, history=history
        )
        logger.info("Stream opened for %s (replay=%d)", job_id, len(replay))
        try:
            self.send_response(HTTPStatus.OK)
            self.send_header("Content-Type", "text/event-stream")
            self.send_header("Cache-Control", "no-cache")
            self.send_header("X-Accel-Buffering", "no")
            self.end_headers()
            self._write_frame(format_retry(self.app.retry_ms))
            for event in replay:
                self._write_frame(format_event(event))

            while True:
                item = sub.next(timeout=self.app.heartbeat_seconds)
                if item is None:
                    break
                if item is KEEPALIVE:
                    self._write_frame(format_keepalive())
                elif isinstance(item, CompletionEvent):
                    self._write_frame(format_completion(item))
                else:
                    self._write_frame(format_event(item))
        except DeliveryError as e:
            logger.info("Subscriber %s for %s went away: %s", sub.id, job_id, e)
        finally:
            hub.unsubscribe(sub)
            self.close_connection = True
            logger.info("Stream closed for %s (%s)", job_id, sub.close_reason)

    def _resolve_stream_job(self, ref: str, scope: Optional[str]) -> tuple[str, Optional[Job]]:
        """
        A stream is available once the hub or the store knows the job.

        Before the record is committed the owner comes from the hub channel;
        an unclaimed channel is never streamed to a scoped caller.
        """
        hub = self.app.container.hub
        job = self.app.call(self.app.container.store.find_job(ref))
        if job is None:
            if hub.knows(ref) and (scope is None or hub.owner_of(ref) == scope):
                return ref, None
            raise JobNotFoundError(f"Deployment {ref} not found")
        if scope is not None and job.owner != scope:
            raise JobNotFoundError(f"Deployment {ref} not found")
        return job.job_id, job

    # ---- helpers -----------------------------------------------------------

    def _authenticate(self) -> str:
        return self.app.container.authenticator.authenticate(self.headers.get("Authorization"))

    def _scope(self, owner: str) -> Optional[str]:
        return owner if self.app.container.authenticator.enabled else None

    def _read_json(self) -> Any:
        try:
            length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            raise ValidationError("invalid Content-Length")
        if length > _MAX_BODY_BYTES:
            raise ValidationError("request body too large")
        raw = self.rfile.read(length) if length else b""
        try:
            return json.loads(raw) if raw else {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ValidationError("invalid JSON body")

    def _write_frame(self, frame: str) -> None:
        try:
            self.wfile.write(frame.encode("utf-8"))
            self.wfile.flush()
        except OSError as e:
            raise DeliveryError(str(e) or type(e).__name__) from e

    def _send_error(self, exc: Exception) -> None:
        for error_type, status in _ERROR_STATUS:
            if isinstance(exc, error_type):
                self._send_json({"error": str(exc)}, status)
                return
        if isinstance(exc, DeliveryError):
            return
        logger.exception("Unhandled error serving %s %s", self.command, self.path)
        self._send_json({"error": "internal server error"}, HTTPStatus.INTERNAL_SERVER_ERROR)

    def _send_json(self, data: Any, status: HTTPStatus = HTTPStatus.OK) -> None:
        """Serialize *data* as JSON and send it as the HTTP response."""
        body = json.dumps(data, default=str).encode("utf-8")
        try:
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
        except OSError as e:
            logger.debug("Client went away before response: %s", e)


# ---------------------------------------------------------------------------
# Web application wrapper
# ---------------------------------------------------------------------------

class SkiffWebApp:
    """Async-friendly HTTP server for the Skiff API.

    Usage::

        app = SkiffWebApp(container)
        await app.start("127.0.0.1", 8080)
        # ... later ...
        app.stop()
    """

    def __init__(
        self,
        container,
        heartbeat_seconds: Optional[float] = None,
        retry_ms: int = 1000,
        call_timeout: float = 60.0,
    ) -> None:
        self.container = container
        self.heartbeat_seconds = (
            heartbeat_seconds
            if heartbeat_seconds is not None
            else container.config.hub.heartbeat_seconds
        )
        self.retry_ms = retry_ms
        self.call_timeout = call_timeout
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        if self._server is None:
            raise RuntimeError("server not started")
        return self._server.server_address[1]

    def call(self, coro) -> Any:
        """Run a coroutine on the application loop from a handler thread."""
        if self._loop is None:
            coro.close()
            raise RuntimeError("server not started")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout=self.call_timeout)

    async def start(self, host: str = "127.0.0.1", port: int = 8080) -> None:
        """Start the server in a background thread, bound to the running loop."""
        self._loop = asyncio.get_running_loop()
        self._server = ThreadingHTTPServer((host, port), SkiffRequestHandler)
        self._server.daemon_threads = True
        self._server.app = self  # type: ignore[attr-defined]

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="skiff-web",
        )
        self._thread.start()
        logger.info("Skiff API listening on http://%s:%d", host, self.port)

    def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            logger.info("Skiff API stopped")
        if self._thread is not None:
            self._thread.join(timeout=5)
