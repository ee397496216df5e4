"""
Log Viewer TUI

Architectural Intent:
- Textual-based live view of one deployment's build log
- Reuses SkiffClient.follow, so reconnect/backoff and the pull fallback
  behave exactly as in `skiff logs`
- The blocking client runs in a thread worker; widget updates are marshalled
  back with call_from_thread
"""

from textual.app import App, ComposeResult
from textual.widgets import Header, Footer, DataTable, Log
from textual.containers import Vertical
from typing import Any
import logging

from skiff.domain.errors import SkiffError
from skiff.domain.value_objects.log_event import LogEvent
from skiff.presentation.cli.stream_client import SkiffClient

logger = logging.getLogger(__name__)

_SUMMARY_FIELDS = (
    ("Status", "status"),
    ("Source", "sourceRef"),
    ("Branch", "branch"),
    ("Project type", "projectType"),
    ("CID", "cid"),
    ("URL", "url"),
)


class LogViewer(App):
    """Follow a Skiff deployment's log until it completes."""

    CSS = """
    Screen {
        layout: vertical;
    }
    DataTable {
        height: 9;
        border: solid green;
    }
    Log {
        height: 1fr;
        border: solid yellow;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh Status"),
    ]

    def __init__(self, client: SkiffClient, job_id: str, log_max_lines: int = 2000):
        super().__init__()
        self.client = client
        self.job_id = job_id
        self._log_max_lines = log_max_lines
        self.lines: list[str] = []
        self.completion: dict[str, Any] | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield Vertical(DataTable(id="job_summary"), Log(id="build_log"))
        yield Footer()

    def on_mount(self) -> None:
        self.title = f"skiff {self.job_id}"
        table = self.query_one(DataTable)
        table.add_column("Field", key="field")
        table.add_column("Value", key="value")
        for label, key in _SUMMARY_FIELDS:
            table.add_row(label, "...", key=key)
        self.run_worker(self._follow, thread=True, exclusive=True)
        self.action_refresh()

    def write_line(self, line: str) -> None:
        self.lines.append(line)
        if len(self.lines) > self._log_max_lines:
            self.lines = self.lines[-self._log_max_lines:]
        self.query_one(Log).write_line(line)

    def show_event(self, event: LogEvent) -> None:
        stamp = event.timestamp.strftime("%H:%M:%S")
        self.write_line(f"[{stamp}] [{event.kind.value.upper()}] {event.message}")

    def show_completion(self, completion: dict[str, Any]) -> None:
        self.completion = completion
        self.write_line(f"==> {completion.get('message', 'Deployment finished')}")
        self.action_refresh()

    def show_job(self, job: dict[str, Any]) -> None:
        table = self.query_one(DataTable)
        for _label, key in _SUMMARY_FIELDS:
            value = job.get(key)
            table.update_cell(key, "value", "-" if value is None else str(value))

    def action_refresh(self) -> None:
        self.run_worker(self._load_job, thread=True, group="status")

    def _load_job(self) -> None:
        try:
            job = self.client.get_job(self.job_id)
        except (SkiffError, OSError) as e:
            self.call_from_thread(self.write_line, f"[ERROR] Could not load job: {e}")
            return
        self.call_from_thread(self.show_job, job)

    def _follow(self) -> None:
        try:
            self.client.follow(
                self.job_id,
                on_event=lambda event: self.call_from_thread(self.show_event, event),
                on_completion=lambda c: self.call_from_thread(self.show_completion, c),
            )
        except (SkiffError, OSError) as e:
            logger.warning("Log stream for %s failed: %s", self.job_id, e)
            self.call_from_thread(self.write_line, f"[ERROR] {e}")
