"""
Server-Sent Events Codec

Architectural Intent:
- Frame encoding used by the web stream endpoint
- Incremental frame parsing used by the CLI stream client
- One module so both ends agree on the wire format

Wire Format:
    data: <json LogEvent>\\n\\n
    event: completion\\ndata: {"type", "message", "timestamp"}\\n\\n
    : keepalive <timestamp>\\n\\n        (comment, ignored by consumers)
    retry: <milliseconds>\\n\\n
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Iterator, Optional
import json

from skiff.domain.value_objects.log_event import CompletionEvent, LogEvent

COMPLETION_EVENT = "completion"


def format_event(event: LogEvent) -> str:
    return f"data: {json.dumps(event.to_dict())}\n\n"


def format_completion(event: CompletionEvent) -> str:
    return f"event: {COMPLETION_EVENT}\ndata: {json.dumps(event.to_dict())}\n\n"


def format_comment(text: str) -> str:
    return f": {text}\n\n"


def format_keepalive() -> str:
    return format_comment(f"keepalive {datetime.now(UTC).isoformat()}")


def format_retry(milliseconds: int) -> str:
    return f"retry: {int(milliseconds)}\n\n"


@dataclass(frozen=True)
class SSEFrame:
    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None

    @property
    def is_completion(self) -> bool:
        return self.event == COMPLETION_EVENT

    def json(self) -> dict:
        return json.loads(self.data)


class SSEParser:
    """
    Incremental parser; feed it decoded lines (without the trailing newline)
    and it yields a frame at each blank line. Comment lines are dropped.
    """

    def __init__(self):
        self._reset()

    def _reset(self) -> None:
        self._event = "message"
        self._data: list[str] = []
        self._id: Optional[str] = None
        self._retry: Optional[int] = None

    def feed(self, line: str) -> Optional[SSEFrame]:
        line = line.rstrip("\r\n")
        if not line:
            if not self._data and self._retry is None:
                self._reset()
                return None
            frame = SSEFrame(
                event=self._event,
                data="\n".join(self._data),
                id=self._id,
                retry=self._retry,
            )
            self._reset()
            return frame
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value or "message"
        elif name == "id":
            self._id = value
        elif name == "retry" and value.isdigit():
            self._retry = int(value)
        return None

    def parse_lines(self, lines) -> Iterator[SSEFrame]:
        for raw in lines:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            frame = self.feed(raw)
            if frame is not None:
                yield frame
