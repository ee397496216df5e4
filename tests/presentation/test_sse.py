"""
Presentation Layer Tests: SSE codec
"""

import json
from datetime import datetime, UTC

from skiff.domain.value_objects.log_event import CompletionEvent, LogEvent, LogKind
from skiff.presentation.sse import (
    SSEParser,
    format_completion,
    format_event,
    format_keepalive,
    format_retry,
)

TS = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def test_event_frame():
    event = LogEvent("deploy_1_abcdefg", LogKind.INFO, "Cloning repository...", TS, 4)
    frame = format_event(event)
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame[len("data: "):]) == event.to_dict()


def test_completion_frame():
    completion = CompletionEvent("deploy_1_abcdefg", succeeded=False, timestamp=TS)
    frame = format_completion(completion)
    assert frame.startswith("event: completion\ndata: ")
    payload = json.loads(frame.split("data: ", 1)[1])
    assert payload == {
        "type": "completion_error",
        "message": "Deployment failed",
        "timestamp": TS.isoformat(),
    }


def test_keepalive_is_a_comment():
    assert format_keepalive().startswith(": keepalive ")
    assert format_retry(1500) == "retry: 1500\n\n"


def test_parser_round_trip():
    event = LogEvent("deploy_1_abcdefg", LogKind.SUCCESS, "done", TS, 9, terminal=True)
    stream = (
        format_retry(1000)
        + format_keepalive()
        + format_event(event)
        + format_completion(CompletionEvent("deploy_1_abcdefg", True, TS))
    )
    frames = list(SSEParser().parse_lines(line.encode() for line in stream.split("\n")))

    assert [f.event for f in frames] == ["message", "message", "completion"]
    assert frames[0].retry == 1000
    assert LogEvent.from_dict(frames[1].json()) == event
    assert frames[2].is_completion
    assert frames[2].json()["type"] == "completion_success"


def test_parser_joins_multiline_data_and_handles_crlf():
    parser = SSEParser()
    assert parser.feed("id: 7\r\n") is None
    assert parser.feed("data: first\r\n") is None
    assert parser.feed("data: second\r\n") is None
    frame = parser.feed("\r\n")
    assert frame.data == "first\nsecond"
    assert frame.id == "7"


def test_blank_lines_without_data_are_ignored():
    parser = SSEParser()
    assert parser.feed("") is None
    assert parser.feed(": comment") is None
    assert parser.feed("") is None
