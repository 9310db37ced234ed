"""Tests for the subscription registry and fan-out."""

import json

import pytest

from lavs.errors import LAVSError, LAVSErrorCode
from lavs.subscriptions.manager import SubscriptionEvent, SubscriptionManager
from lavs.subscriptions.sinks import QueueSink, SubscriptionSink, encode_comment


def events(sink: QueueSink) -> list[tuple[str | None, dict]]:
    """Decode buffered frames into (event name, data) pairs, skipping comments."""
    decoded = []
    for frame in sink.drain():
        name, data = None, None
        for line in frame.decode().split("\n"):
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        if data is not None:
            decoded.append((name, data))
    return decoded


class FlakySink(SubscriptionSink):
    """Sink that accepts the connected frame and fails afterwards."""

    def __init__(self):
        super().__init__()
        self.writes = 0

    def _write(self, frame: bytes) -> None:
        self.writes += 1
        if self.writes > 1:
            raise ConnectionResetError("peer went away")


@pytest.fixture
def manager():
    mgr = SubscriptionManager(max_subscriptions=3, heartbeat_interval=60)
    yield mgr
    mgr.destroy()


def test_subscribe_sends_connected_frame(manager):
    sink = QueueSink()

    sub_id = manager.subscribe("todo", "changes", sink)

    [(name, data)] = events(sink)
    assert name == "connected"
    assert data["subscriptionId"] == sub_id
    assert data["agentId"] == "todo"
    assert data["endpointId"] == "changes"
    assert "timestamp" in data
    assert manager.active_count == 1


def test_capacity_is_enforced(manager):
    for _ in range(3):
        manager.subscribe("todo", "changes", QueueSink())

    with pytest.raises(LAVSError) as exc_info:
        manager.subscribe("todo", "changes", QueueSink())

    assert exc_info.value.code == LAVSErrorCode.CAPACITY_EXCEEDED
    assert exc_info.value.http_status == 503


def test_subscribing_an_ended_sink_is_rejected(manager):
    sink = QueueSink()
    sink.end()

    with pytest.raises(LAVSError) as exc_info:
        manager.subscribe("todo", "changes", sink)

    assert exc_info.value.code == LAVSErrorCode.INVALID_REQUEST
    assert manager.active_count == 0


class BrokenSink(SubscriptionSink):
    """Sink whose transport is gone before the first frame."""

    def _write(self, frame: bytes) -> None:
        raise BrokenPipeError("gone")


def test_failed_connected_frame_is_rejected(manager):
    sink = BrokenSink()

    with pytest.raises(LAVSError) as exc_info:
        manager.subscribe("todo", "changes", sink)

    assert exc_info.value.code == LAVSErrorCode.INVALID_REQUEST
    assert exc_info.value.message == "Subscription sink is closed"
    assert sink.ended
    assert manager.active_count == 0


def test_publish_without_subscribers_returns_zero(manager):
    assert manager.publish("todo", "changes", {"type": "todo:created"}) == 0


def test_publish_targets_endpoint_subscribers(manager):
    changes, other = QueueSink(), QueueSink()
    manager.subscribe("todo", "changes", changes)
    manager.subscribe("todo", "other", other)
    events(changes)
    events(other)

    count = manager.publish("todo", "changes", SubscriptionEvent(type="todo:created", data={"id": 1}))

    assert count == 1
    [(name, data)] = events(changes)
    assert name == "todo:created"
    assert data["type"] == "todo:created"
    assert data["data"] == {"id": 1}
    assert data["timestamp"]
    assert events(other) == []


def test_publish_to_agent_reaches_every_endpoint(manager):
    a, b, elsewhere = QueueSink(), QueueSink(), QueueSink()
    manager.subscribe("todo", "changes", a)
    manager.subscribe("todo", "other", b)
    manager.subscribe("notes", "changes", elsewhere)

    assert manager.publish_to_agent("todo", {"type": "add:mutated", "data": [1]}) == 2


def test_event_without_type_is_rejected(manager):
    manager.subscribe("todo", "changes", QueueSink())

    with pytest.raises(LAVSError) as exc_info:
        manager.publish("todo", "changes", {"data": 1})

    assert exc_info.value.code == LAVSErrorCode.INVALID_PARAMS


def test_failing_sink_is_removed_without_blocking_others(manager):
    healthy = QueueSink()
    manager.subscribe("todo", "changes", FlakySink())
    manager.subscribe("todo", "changes", healthy)
    events(healthy)

    count = manager.publish("todo", "changes", {"type": "ping"})

    assert count == 1
    assert manager.active_count == 1
    assert [name for name, _ in events(healthy)] == ["ping"]


def test_unsubscribe_sends_disconnected_and_ends(manager):
    sink = QueueSink()
    sub_id = manager.subscribe("todo", "changes", sink)

    assert manager.unsubscribe(sub_id) is True

    names = [name for name, _ in events(sink)]
    assert names == ["connected", "disconnected"]
    assert sink.ended
    assert manager.active_count == 0
    assert manager.unsubscribe(sub_id) is False


def test_peer_close_removes_subscription(manager):
    sink = QueueSink()
    manager.subscribe("todo", "changes", sink)

    sink.mark_closed()

    assert manager.active_count == 0


def test_heartbeats_prune_ended_and_failing_sinks(manager):
    healthy, ended = QueueSink(), QueueSink()
    manager.subscribe("todo", "changes", healthy)
    manager.subscribe("todo", "changes", ended)
    manager.subscribe("todo", "changes", FlakySink())
    ended.end()
    healthy.drain()

    assert manager.send_heartbeats() == 2
    assert manager.active_count == 1
    assert healthy.drain() == [encode_comment("heartbeat")]


def test_subscription_listing(manager):
    sub_id = manager.subscribe("todo", "changes", QueueSink())
    manager.subscribe("notes", "changes", QueueSink())

    [summary] = manager.get_subscriptions_for_agent("todo")

    assert summary["id"] == sub_id
    assert summary["endpointId"] == "changes"
    assert isinstance(summary["createdAt"], int)


def test_destroy_closes_everything():
    manager = SubscriptionManager()
    sinks = [QueueSink(), QueueSink()]
    for sink in sinks:
        manager.subscribe("todo", "changes", sink)

    manager.destroy()

    assert manager.active_count == 0
    for sink in sinks:
        assert sink.ended
        assert events(sink)[-1][1]["reason"] == "server_shutdown"


@pytest.mark.asyncio
async def test_heartbeat_task_starts_inside_event_loop(manager):
    manager.subscribe("todo", "changes", QueueSink())

    assert manager.heartbeat_running

    manager.destroy()
    assert not manager.heartbeat_running


@pytest.mark.asyncio
async def test_aclose_waits_for_heartbeat_task():
    manager = SubscriptionManager(heartbeat_interval=60)
    sink = QueueSink()
    manager.subscribe("todo", "changes", sink)

    await manager.aclose()

    assert not manager.heartbeat_running
    assert manager.active_count == 0
    assert sink.ended


def test_no_heartbeat_task_outside_event_loop(manager):
    manager.subscribe("todo", "changes", QueueSink())

    assert not manager.heartbeat_running
