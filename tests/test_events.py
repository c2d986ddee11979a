"""
Tests for event sinks and the session fan-out hub.
"""

import asyncio

import pytest

from agentrun.errors import NotFoundError
from agentrun.events import (
  MonitorRegistry,
  NullSink,
  QueueSink,
  RecordingSink,
  SessionHub,
  monitored_envelope,
  names,
)


def connect(hub: SessionHub, *session_ids: str):
  sinks = {session_id: RecordingSink() for session_id in session_ids}
  for session_id, sink in sinks.items():
    hub.connect(session_id, sink)
  return sinks


class TestSinks:
  def test_recording_sink(self):
    sink = RecordingSink()
    sink.emit(names.AGENT_ACTION, {"action": "Reading file: a"})
    sink.emit(names.RESPONSE, {"message": "done"})

    assert sink.named(names.RESPONSE) == [{"message": "done"}]
    sink.clear()
    assert sink.events == []

  def test_null_sink(self):
    NullSink().emit(names.ERROR, {"message": "ignored"})

  async def test_queue_sink(self):
    sink = QueueSink()
    sink.emit(names.AGENT_MESSAGE, {"type": "assistant"})

    assert await sink.get() == (names.AGENT_MESSAGE, {"type": "assistant"})

  def test_full_queue_drops_events(self):
    sink = QueueSink(asyncio.Queue(maxsize=1))
    sink.emit(names.AGENT_ACTION, {"n": 1})
    sink.emit(names.AGENT_ACTION, {"n": 2})

    assert sink.queue.qsize() == 1


class TestMonitorRegistry:
  def test_add_and_remove(self):
    registry = MonitorRegistry()
    registry.add("monitor_1", "session_a")
    registry.add("monitor_2", "session_a")
    registry.add("monitor_3", "session_b")

    assert registry.monitors_for("session_a") == ["monitor_1", "monitor_2"]
    assert registry.target_of("monitor_3") == "session_b"
    assert registry.remove("monitor_1") == "session_a"
    assert registry.remove("monitor_1") is None
    assert len(registry) == 2

  def test_monitor_switches_target(self):
    registry = MonitorRegistry()
    registry.add("monitor_1", "session_a")
    registry.add("monitor_1", "session_b")

    assert registry.monitors_for("session_a") == []
    assert registry.monitors_for("session_b") == ["monitor_1"]

  def test_remove_target(self):
    registry = MonitorRegistry()
    registry.add("monitor_1", "session_a")
    registry.add("monitor_2", "session_b")

    assert registry.remove_target("session_a") == ["monitor_1"]
    assert len(registry) == 1


class TestSessionHub:
  def test_events_reach_session_and_monitors(self):
    hub = SessionHub()
    sinks = connect(hub, "session_a", "monitor_1")
    hub.attach_monitor("monitor_1", "session_a")

    hub.sink_for("session_a").emit(names.AGENT_ACTION, {"action": "Reading file: a"})

    assert sinks["session_a"].events == [(names.AGENT_ACTION, {"action": "Reading file: a"})]
    [(event, envelope)] = sinks["monitor_1"].events
    assert event == names.MONITORED_EVENT
    assert envelope["target_session_id"] == "session_a"
    assert envelope["event"] == names.AGENT_ACTION
    assert envelope["data"] == {"action": "Reading file: a"}
    assert envelope["timestamp"].endswith("Z")

  def test_monitor_attached_mid_run_sees_only_later_events(self):
    hub = SessionHub()
    sinks = connect(hub, "session_a", "monitor_1")
    sink = hub.sink_for("session_a")

    sink.emit(names.AGENT_EXECUTION_START, {"runId": "run_1"})
    hub.attach_monitor("monitor_1", "session_a")
    sink.emit(names.AGENT_MESSAGE, {"type": "assistant", "message": "hi"})
    sink.emit(names.RESPONSE, {"message": "hi"})

    assert [envelope["event"] for _, envelope in sinks["monitor_1"].events] == [names.AGENT_MESSAGE, names.RESPONSE]
    assert len(sinks["session_a"].events) == 3

  def test_detached_monitor_stops_receiving(self):
    hub = SessionHub()
    sinks = connect(hub, "session_a", "monitor_1")
    hub.attach_monitor("monitor_1", "session_a")
    hub.detach_monitor("monitor_1")

    hub.broadcast("session_a", names.RESPONSE, {"message": "hi"})

    assert sinks["monitor_1"].events == []

  def test_disconnect_notifies_monitors(self):
    hub = SessionHub()
    sinks = connect(hub, "session_a", "monitor_1", "monitor_2")
    hub.attach_monitor("monitor_1", "session_a")
    hub.attach_monitor("monitor_2", "session_a")

    hub.disconnect("session_a")

    for monitor in ("monitor_1", "monitor_2"):
      [(event, envelope)] = sinks[monitor].events
      assert event == names.MONITORED_EVENT
      assert envelope["event"] == names.DISCONNECT
      assert envelope["data"] == {}
    assert not hub.is_connected("session_a")
    assert hub.monitors.monitors_for("session_a") == []

  def test_disconnecting_monitor_drops_subscription(self):
    hub = SessionHub()
    sinks = connect(hub, "session_a", "monitor_1")
    hub.attach_monitor("monitor_1", "session_a")

    hub.disconnect("monitor_1")
    hub.broadcast("session_a", names.RESPONSE, {"message": "hi"})

    assert hub.monitors.monitors_for("session_a") == []
    assert len(sinks["session_a"].events) == 1

  def test_empty_shared_registry_is_used(self):
    shared = MonitorRegistry()
    hub = SessionHub(monitors=shared)
    connect(hub, "session_a", "monitor_1")

    hub.attach_monitor("monitor_1", "session_a")

    assert hub.monitors is shared
    assert shared.target_of("monitor_1") == "session_a"
    assert len(shared) == 1

  def test_unknown_monitor_cannot_attach(self):
    hub = SessionHub()

    with pytest.raises(NotFoundError):
      hub.attach_monitor("ghost", "session_a")

  def test_failing_sink_does_not_break_fanout(self):
    class BrokenSink:
      def emit(self, event, payload):
        raise ConnectionResetError("socket closed")

    hub = SessionHub()
    hub.connect("session_a", BrokenSink())
    sinks = connect(hub, "monitor_1")
    hub.attach_monitor("monitor_1", "session_a")

    hub.broadcast("session_a", names.RESPONSE, {"message": "hi"})

    assert len(sinks["monitor_1"].events) == 1

  def test_events_for_unconnected_session_are_dropped(self):
    hub = SessionHub()
    hub.broadcast("nobody", names.RESPONSE, {"message": "hi"})


def test_monitored_envelope():
  envelope = monitored_envelope("session_a", names.ERROR, {"message": "boom"})

  assert set(envelope) == {"target_session_id", "event", "data", "timestamp"}
