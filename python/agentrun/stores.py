"""
In-process stores for threads, messages and runs.

Providers that keep conversation state locally (Ollama, StackSpot) hold one
ConversationStore and one RunStore per adapter instance. Both are created
empty, live as long as their adapter and are only emptied through ``clear()``.

Writes to the same key are serialized with a per-key ``asyncio.Lock``; writes
to different keys never wait on each other.
"""

import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional

from .errors import NotFoundError
from .logs import get_logger
from .types import Message, Run, Thread, new_id, now

logger = get_logger("store")


class _KeyedLocks:
  def __init__(self):
    self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

  def __call__(self, key: str) -> asyncio.Lock:
    return self._locks[key]

  def discard(self, key: str) -> None:
    self._locks.pop(key, None)

  def clear(self) -> None:
    self._locks.clear()


class ConversationStore:
  """
  Threads and their append-only message history.

  Key features:
  - Messages of a thread are kept in append order
  - ``read`` returns a slice of the history by index range
  - ``list_messages`` mimics the paging of network providers (limit + order)
  """

  def __init__(self):
    self._threads: Dict[str, Thread] = {}
    self._messages: Dict[str, List[Message]] = {}
    self._locks = _KeyedLocks()

  async def create_thread(self, metadata: Optional[Dict[str, Any]] = None) -> Thread:
    thread = Thread(id=new_id("thread"), metadata=dict(metadata or {}))
    async with self._locks(thread.id):
      self._threads[thread.id] = thread
      self._messages[thread.id] = []
    logger.debug(f"Created thread {thread.id}")
    return thread

  def get_thread(self, thread_id: str) -> Thread:
    thread = self._threads.get(thread_id)
    if thread is None:
      raise NotFoundError("thread", thread_id)
    return thread

  def has_thread(self, thread_id: str) -> bool:
    return thread_id in self._threads

  async def update_metadata(self, thread_id: str, metadata: Dict[str, Any]) -> Thread:
    async with self._locks(thread_id):
      thread = self.get_thread(thread_id)
      thread.metadata.update(metadata)
      return thread

  async def append(self, thread_id: str, role: str, content: str) -> Message:
    async with self._locks(thread_id):
      self.get_thread(thread_id)
      message = Message(id=new_id("msg"), thread_id=thread_id, role=role, content=content)
      self._messages[thread_id].append(message)
      return message

  def read(self, thread_id: str, start: int = 0, end: Optional[int] = None) -> List[Message]:
    """
    Read messages of a thread by index range, oldest first.

    :param start: Index of the first message to return
    :param end: Index one past the last message to return, None for the end of the history
    """
    self.get_thread(thread_id)
    return list(self._messages[thread_id][start:end])

  def count(self, thread_id: str) -> int:
    self.get_thread(thread_id)
    return len(self._messages[thread_id])

  def list_messages(self, thread_id: str, limit: int = 20, order: str = "desc") -> List[Message]:
    history = self.read(thread_id)
    if order == "desc":
      return list(reversed(history))[:limit]
    return history[:limit]

  async def delete_thread(self, thread_id: str) -> None:
    async with self._locks(thread_id):
      self._threads.pop(thread_id, None)
      self._messages.pop(thread_id, None)
    self._locks.discard(thread_id)

  def clear(self) -> None:
    self._threads.clear()
    self._messages.clear()
    self._locks.clear()
    logger.debug("Cleared conversation store")


class RunStore:
  """Runs per thread for providers that simulate asynchronous runs."""

  def __init__(self):
    self._runs: Dict[str, Run] = {}
    self._by_thread: Dict[str, List[str]] = defaultdict(list)
    self._locks = _KeyedLocks()

  async def add(self, thread_id: str, agent_id: str) -> Run:
    run = Run(id=new_id("run"), thread_id=thread_id, agent_id=agent_id, created_at=now())
    async with self._locks(thread_id):
      self._runs[run.id] = run
      self._by_thread[thread_id].append(run.id)
    return run

  def get(self, thread_id: str, run_id: str) -> Run:
    run = self._runs.get(run_id)
    if run is None or run.thread_id != thread_id:
      raise NotFoundError("run", run_id, context={"thread_id": thread_id})
    return run

  def lock(self, thread_id: str) -> asyncio.Lock:
    return self._locks(thread_id)

  def list_runs(self, thread_id: str, limit: int = 10) -> List[Run]:
    ids = self._by_thread.get(thread_id, [])
    return [self._runs[run_id] for run_id in reversed(ids)][:limit]

  def active_runs(self, thread_id: str) -> List[Run]:
    ids = self._by_thread.get(thread_id, [])
    return [self._runs[run_id] for run_id in ids if self._runs[run_id].status.is_active]

  def clear(self) -> None:
    self._runs.clear()
    self._by_thread.clear()
    self._locks.clear()
