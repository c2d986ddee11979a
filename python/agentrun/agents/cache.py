"""
Agent identity cache.

Reconciles the agent definition a caller wants with what a registry (remote or
local) holds, writing to the registry only when something actually changed.

Key features:
- A cache hit with an unchanged definition returns the cached identity without any registry call
- A changed definition triggers exactly one registry update and refreshes the entry
- A cache miss looks the agent up by name before creating it, so agents survive process restarts
- Concurrent calls for the same agent name are serialized
"""

import asyncio
import json
from collections import Counter, defaultdict
from typing import Any, Dict, List, Optional, Protocol

from ..logs import get_logger
from ..types import AgentDefinition, CachedAgentDescriptor

logger = get_logger("agent")


class AgentRegistry(Protocol):
  """Where agents live for a provider."""

  async def find_by_name(self, name: str) -> Optional[CachedAgentDescriptor]: ...

  async def create(self, definition: AgentDefinition) -> str: ...

  async def update(self, identity: str, definition: AgentDefinition) -> str: ...

  def normalize_tools(self, tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Reduce tool specs to the fields the registry reports back in ``find_by_name``."""
    ...


def _tool_key(tool: Dict[str, Any]) -> str:
  return json.dumps(tool, sort_keys=True, default=str)


def tools_equal(left: List[Dict[str, Any]], right: List[Dict[str, Any]]) -> bool:
  """Multiset equality of two tool lists, ignoring their order."""
  return Counter(_tool_key(t) for t in left or []) == Counter(_tool_key(t) for t in right or [])


def definition_changes(cached: CachedAgentDescriptor, definition: AgentDefinition) -> List[str]:
  changes = []
  if cached.instructions != definition.instructions:
    changes.append("instructions")
  if not tools_equal(cached.tools, definition.tools):
    changes.append("tools")
  if cached.model != definition.model:
    changes.append("model")
  if definition.remote_id is not None and cached.identity != definition.remote_id:
    changes.append("identity")
  return changes


class AgentIdentityCache:
  def __init__(self, registry: AgentRegistry):
    self.registry = registry
    self._entries: Dict[str, CachedAgentDescriptor] = {}
    self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

  def get(self, name: str) -> Optional[CachedAgentDescriptor]:
    return self._entries.get(name)

  def evict(self, name: str) -> None:
    self._entries.pop(name, None)

  def clear(self) -> None:
    self._entries.clear()

  async def get_or_create(self, definition: AgentDefinition) -> str:
    async with self._locks[definition.name]:
      cached = self._entries.get(definition.name)
      if cached is not None:
        return await self._reconcile_cached(cached, definition)
      return await self._reconcile_remote(definition)

  async def _reconcile_cached(self, cached: CachedAgentDescriptor, definition: AgentDefinition) -> str:
    changes = definition_changes(cached, definition)
    if not changes:
      logger.debug(f"Agent '{definition.name}' found in cache, unchanged")
      return cached.identity

    try:
      identity = await self.registry.update(cached.identity, definition)
    except Exception:
      self.evict(definition.name)
      logger.error(f"Failed to update agent '{definition.name}', evicted it from the cache")
      raise
    self._entries[definition.name] = CachedAgentDescriptor.of(definition, identity)
    logger.info(f"Agent '{definition.name}' updated ({', '.join(changes)} changed)")
    return identity

  async def _reconcile_remote(self, definition: AgentDefinition) -> str:
    try:
      existing = await self.registry.find_by_name(definition.name)
    except Exception as e:
      logger.warning(f"Lookup of agent '{definition.name}' failed, creating it instead: {type(e).__name__}: {e}")
      existing = None

    if existing is not None:
      comparable = AgentDefinition(
        name=definition.name,
        instructions=definition.instructions,
        tools=self.registry.normalize_tools(definition.tools),
        model=definition.model,
        remote_id=definition.remote_id,
      )
      changes = definition_changes(existing, comparable)
      identity = existing.identity
      if changes:
        identity = await self.registry.update(existing.identity, definition)
        logger.info(f"Agent '{definition.name}' updated in the registry ({', '.join(changes)} changed)")
      else:
        logger.info(f"Agent '{definition.name}' found in the registry, unchanged")
    else:
      identity = await self.registry.create(definition)
      logger.info(f"Agent '{definition.name}' registered with identity {identity}")

    self._entries[definition.name] = CachedAgentDescriptor.of(definition, identity)
    return identity
