"""
Tests for event reporters.
"""

from unittest.mock import Mock, patch

import requests

from ness.events import (
    EventTypes,
    HttpEventReporter,
    MultiReporter,
    NdjsonEventReporter,
    events_path,
    read_events,
)


def test_ndjson_round_trip(tmp_path):
    path = events_path(tmp_path, "ness-site-main")
    reporter = NdjsonEventReporter(path)

    reporter.record(EventTypes.STARTED, {"command": "deploy"})
    reporter.record(EventTypes.FINISHED, {"url": "https://d123.cloudfront.net"})

    events = read_events(path)
    assert [e["type"] for e in events] == ["STARTED", "FINISHED"]
    assert events[1]["data"]["url"] == "https://d123.cloudfront.net"
    assert "ts" in events[0]


def test_read_skips_malformed_lines(tmp_path):
    path = tmp_path / "events.ndjson"
    path.write_text('{"type": "STEP"}\nnot json\n\n')
    assert read_events(path) == [{"type": "STEP"}]


def test_read_missing_file(tmp_path):
    assert read_events(tmp_path / "missing.ndjson") == []


def test_multi_reporter_fans_out():
    first, second = Mock(), Mock()
    MultiReporter([first, second]).record(EventTypes.STEP, {"step": "deploying_web"})

    first.record.assert_called_once_with("STEP", {"step": "deploying_web"})
    second.record.assert_called_once_with("STEP", {"step": "deploying_web"})


@patch("ness.events.requests.post")
def test_http_payload(mock_post):
    reporter = HttpEventReporter("https://events.example.com", "deploy", session_id="abc")

    reporter.record(EventTypes.STARTED, {"options": {"dir": "public", "csp": "default-src 'self'"}})
    reporter.flush()

    payload = mock_post.call_args.kwargs["json"]
    assert payload["event"] == "STARTED"
    assert payload["command"] == "deploy"
    assert payload["session"] == "abc"
    assert payload["options"] == {"dir": "public"}


@patch("ness.events.requests.post", side_effect=requests.ConnectionError("offline"))
def test_http_errors_are_dropped(mock_post):
    reporter = HttpEventReporter("https://events.example.com", "destroy")

    reporter.record(EventTypes.ERROR, {"detail": "boom"})
    reporter.flush()

    mock_post.assert_called_once()
