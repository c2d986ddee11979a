import asyncio
from typing import Any, Dict, List, Optional, Protocol, Tuple

from ..logs import get_logger

logger = get_logger("events")


class EventSink(Protocol):
  """Receives progress events of a session. ``emit`` must not block."""

  def emit(self, event: str, payload: Dict[str, Any]) -> None: ...


class NullSink:
  def emit(self, event: str, payload: Dict[str, Any]) -> None:
    pass


class RecordingSink:
  """Keeps every emitted event in memory, in emission order."""

  def __init__(self):
    self.events: List[Tuple[str, Dict[str, Any]]] = []

  def emit(self, event: str, payload: Dict[str, Any]) -> None:
    self.events.append((event, payload))

  def named(self, event: str) -> List[Dict[str, Any]]:
    return [payload for name, payload in self.events if name == event]

  def clear(self) -> None:
    self.events.clear()


class QueueSink:
  """
  Puts events on an ``asyncio.Queue`` so a transport task can forward them.

  When a bounded queue is full the event is dropped with a warning.
  """

  def __init__(self, queue: Optional[asyncio.Queue] = None):
    self.queue = queue if queue is not None else asyncio.Queue()

  def emit(self, event: str, payload: Dict[str, Any]) -> None:
    try:
      self.queue.put_nowait((event, payload))
    except asyncio.QueueFull:
      logger.warning(f"Dropping '{event}' event, the session queue is full")

  async def get(self) -> Tuple[str, Dict[str, Any]]:
    return await self.queue.get()
