"""
Fan-out of progress events to a session and its monitors.

A monitor is a passive session that observes another ("target") session. Every
event emitted for the target is delivered to the target's own sink and, wrapped
in a ``monitored_event`` envelope, to every monitor subscribed at that moment.
Monitors attached mid-run therefore only see events from that point on.
"""

from datetime import datetime, UTC
from typing import Any, Dict, List, Optional

from ..errors import NotFoundError
from ..logs import get_logger
from .names import DISCONNECT, MONITORED_EVENT
from .sinks import EventSink

logger = get_logger("events")


def _timestamp() -> str:
  return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def monitored_envelope(target_session_id: str, event: str, data: Dict[str, Any]) -> Dict[str, Any]:
  return {
    "target_session_id": target_session_id,
    "event": event,
    "data": data,
    "timestamp": _timestamp(),
  }


class MonitorRegistry:
  """Which monitor observes which target session. A monitor observes at most one target."""

  def __init__(self):
    self._targets: Dict[str, str] = {}

  def add(self, monitor_id: str, target_id: str) -> None:
    previous = self._targets.get(monitor_id)
    if previous is not None and previous != target_id:
      logger.info(f"Monitor {monitor_id} switched from {previous} to {target_id}")
    self._targets[monitor_id] = target_id

  def remove(self, monitor_id: str) -> Optional[str]:
    return self._targets.pop(monitor_id, None)

  def target_of(self, monitor_id: str) -> Optional[str]:
    return self._targets.get(monitor_id)

  def monitors_for(self, target_id: str) -> List[str]:
    return [monitor for monitor, target in self._targets.items() if target == target_id]

  def remove_target(self, target_id: str) -> List[str]:
    monitors = self.monitors_for(target_id)
    for monitor in monitors:
      del self._targets[monitor]
    return monitors

  def __len__(self) -> int:
    return len(self._targets)


class SessionHub:
  """
  Registry of connected sessions and their sinks.

  Key features:
  - ``sink_for`` returns the sink a run should emit to for a session
  - ``attach_monitor`` / ``detach_monitor`` manage passive observers
  - ``disconnect`` notifies the monitors of a leaving session and drops its subscriptions
  """

  def __init__(self, monitors: Optional[MonitorRegistry] = None):
    self.monitors = monitors if monitors is not None else MonitorRegistry()
    self._sinks: Dict[str, EventSink] = {}

  def connect(self, session_id: str, sink: EventSink) -> None:
    self._sinks[session_id] = sink
    logger.debug(f"Session {session_id} connected")

  def is_connected(self, session_id: str) -> bool:
    return session_id in self._sinks

  def attach_monitor(self, monitor_id: str, target_id: str) -> None:
    if monitor_id not in self._sinks:
      raise NotFoundError("session", monitor_id)
    self.monitors.add(monitor_id, target_id)
    logger.info(f"Session {monitor_id} is now monitoring {target_id}")

  def detach_monitor(self, monitor_id: str) -> None:
    target = self.monitors.remove(monitor_id)
    if target is not None:
      logger.info(f"Session {monitor_id} stopped monitoring {target}")

  def disconnect(self, session_id: str) -> None:
    self._sinks.pop(session_id, None)
    self.monitors.remove(session_id)
    for monitor in self.monitors.remove_target(session_id):
      self._deliver(monitor, MONITORED_EVENT, monitored_envelope(session_id, DISCONNECT, {}))
    logger.debug(f"Session {session_id} disconnected")

  def broadcast(self, session_id: str, event: str, payload: Dict[str, Any]) -> None:
    self._deliver(session_id, event, payload)
    monitors = self.monitors.monitors_for(session_id)
    if not monitors:
      return
    envelope = monitored_envelope(session_id, event, payload)
    for monitor in monitors:
      self._deliver(monitor, MONITORED_EVENT, envelope)

  def sink_for(self, session_id: str) -> "FanoutSink":
    return FanoutSink(self, session_id)

  def _deliver(self, session_id: str, event: str, payload: Dict[str, Any]) -> None:
    sink = self._sinks.get(session_id)
    if sink is None:
      return
    try:
      sink.emit(event, payload)
    except Exception as e:
      logger.warning(f"Failed to deliver '{event}' to session {session_id}: {type(e).__name__}: {e}")


class FanoutSink:
  """EventSink bound to one session; every emit is broadcast through the hub."""

  def __init__(self, hub: SessionHub, session_id: str):
    self.hub = hub
    self.session_id = session_id

  def emit(self, event: str, payload: Dict[str, Any]) -> None:
    self.hub.broadcast(self.session_id, event, payload)
