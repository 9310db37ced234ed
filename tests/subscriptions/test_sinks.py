"""Tests for SSE framing and queue-backed sinks."""

import json

import pytest

from lavs.subscriptions.sinks import QueueSink, SinkClosedError, encode_comment, encode_event


def data_of(frame: bytes):
    for line in frame.decode().split("\n"):
        if line.startswith("data: "):
            return json.loads(line[len("data: "):])
    raise AssertionError(f"no data line in {frame!r}")


def test_encode_event_fields():
    frame = encode_event({"a": 1}, event="todo:created", event_id="sub-1")
    text = frame.decode()

    assert "id: sub-1\n" in text
    assert "event: todo:created\n" in text
    assert data_of(frame) == {"a": 1}
    assert text.endswith("\n\n")


def test_encode_event_without_optional_fields():
    text = encode_event([1, 2]).decode()

    assert "event:" not in text
    assert "id:" not in text
    assert "data: [1, 2]\n" in text


def test_encode_comment():
    text = encode_comment("heartbeat").decode()

    assert text.startswith(": heartbeat\n")
    assert "data:" not in text


class TestQueueSink:
    def test_write_and_drain(self):
        sink = QueueSink()
        sink.write(b"one")
        sink.write(b"two")

        assert sink.pending == 2
        assert sink.drain() == [b"one", b"two"]
        assert sink.pending == 0

    def test_write_after_end_raises(self):
        sink = QueueSink()
        sink.end()

        assert sink.ended
        with pytest.raises(SinkClosedError):
            sink.write(b"late")

    @pytest.mark.asyncio
    async def test_stream_stops_after_end(self):
        sink = QueueSink()
        sink.write(b"one")
        sink.drain()
        sink.write(b"two")
        sink.end()

        assert [frame async for frame in sink.stream()] == [b"two"]

    def test_full_queue_rejects_writes_but_still_ends(self):
        sink = QueueSink(max_queue=1)
        sink.write(b"one")

        with pytest.raises(Exception):
            sink.write(b"two")

        sink.end()
        assert sink.ended

    def test_mark_closed_fires_callbacks_once(self):
        sink = QueueSink()
        calls = []
        sink.on_close(lambda: calls.append("closed"))

        sink.mark_closed()
        sink.mark_closed()

        assert calls == ["closed"]
        assert sink.ended

    def test_failing_close_callback_does_not_stop_others(self):
        sink = QueueSink()
        calls = []

        def boom():
            raise RuntimeError("callback failed")

        sink.on_close(boom)
        sink.on_close(lambda: calls.append("second"))
        sink.mark_closed()

        assert calls == ["second"]
