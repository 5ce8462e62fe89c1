# tests/unit/test_framing.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from llm_stream.transport.framing import NDJSONFramer, RawEvent, SSEFramer, framer_for


def feed_all(framer, lines):
    out = []
    for line in lines:
        out.extend(framer.feed(line))
    out.extend(framer.flush())
    return out


def test_sse_event_and_data_fields():
    events = feed_all(SSEFramer(), [
        "event: content_block_delta",
        'data: {"a": 1}',
        "",
        'data: {"b": 2}',
        "",
    ])
    assert events == [
        RawEvent(data='{"a": 1}', event="content_block_delta"),
        RawEvent(data='{"b": 2}', event="message"),
    ]


def test_sse_multiline_data_is_joined_with_newlines():
    events = feed_all(SSEFramer(), ["data: one", "data:two", ""])
    assert [e.data for e in events] == ["one\ntwo"]


def test_sse_comment_lines_become_comment_events():
    events = feed_all(SSEFramer(), [": keep-alive", "data: x", ""])
    assert events[0].is_comment and events[0].comment == "keep-alive"
    assert events[1].data == "x" and not events[1].is_comment


def test_sse_id_belongs_only_to_the_event_that_carried_it():
    f = SSEFramer()
    events = feed_all(f, ["id: 7", "data: a", "", "data: b", ""])
    assert events[0].id == "7"
    assert events[1].id is None


def test_sse_retry_field_and_unknown_fields():
    f = SSEFramer()
    events = feed_all(f, ["retry: 1500", "bogus: 1", "data: x", ""])
    assert f.retry_ms == 1500
    assert len(events) == 1


def test_sse_incomplete_trailing_event_is_dropped():
    events = feed_all(SSEFramer(), ["data: done", "", "data: half"])
    assert [e.data for e in events] == ["done"]


def test_sse_blank_lines_without_data_dispatch_nothing():
    assert feed_all(SSEFramer(), ["", "event: ping", "", ""]) == []


def test_ndjson_one_event_per_nonblank_line():
    events = feed_all(NDJSONFramer(), ['{"a":1}', "", '  {"b":2}  '])
    assert [e.data for e in events] == ['{"a":1}', '{"b":2}']


def test_framer_for_known_and_unknown():
    assert isinstance(framer_for("SSE"), SSEFramer)
    assert isinstance(framer_for("ndjson"), NDJSONFramer)
    with pytest.raises(ValueError):
        framer_for("xml")
