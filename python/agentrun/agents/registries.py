from typing import Any, Dict, List, Optional

from ..errors import NotFoundError
from ..logs import get_logger
from ..types import AgentDefinition, CachedAgentDescriptor, new_id

logger = get_logger("agent")


class LocalAgentRegistry:
  """
  Agents held in process, for providers without an agent concept of their own.

  Identities are generated locally and resolve back to the stored definition.
  """

  def __init__(self):
    self._agents: Dict[str, AgentDefinition] = {}

  async def find_by_name(self, name: str) -> Optional[CachedAgentDescriptor]:
    for identity, definition in self._agents.items():
      if definition.name == name:
        return CachedAgentDescriptor.of(definition, identity)
    return None

  async def create(self, definition: AgentDefinition) -> str:
    identity = new_id("agent")
    self._agents[identity] = definition
    return identity

  async def update(self, identity: str, definition: AgentDefinition) -> str:
    if identity not in self._agents:
      raise NotFoundError("agent", identity)
    self._agents[identity] = definition
    return identity

  def normalize_tools(self, tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return tools

  def definition_for(self, identity: str) -> AgentDefinition:
    definition = self._agents.get(identity)
    if definition is None:
      raise NotFoundError("agent", identity)
    return definition

  def clear(self) -> None:
    self._agents.clear()


class PreProvisionedRegistry:
  """
  Agents provisioned outside of this process, for example in a vendor console.

  Nothing is ever written: the identity is the definition's ``remote_id``. When it
  is missing the agent name is used instead, so the conversation can still be
  attempted, and a warning explains how to fix the definition.
  """

  def __init__(self, provider: str, id_field: str = "remote_id"):
    self.provider = provider
    self.id_field = id_field

  async def find_by_name(self, name: str) -> Optional[CachedAgentDescriptor]:
    return None

  async def create(self, definition: AgentDefinition) -> str:
    return self._resolve(definition)

  async def update(self, identity: str, definition: AgentDefinition) -> str:
    return self._resolve(definition)

  def normalize_tools(self, tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return tools

  def _resolve(self, definition: AgentDefinition) -> str:
    if definition.remote_id:
      logger.debug(f"Using pre-provisioned {self.provider} agent {definition.remote_id} for '{definition.name}'")
      return definition.remote_id

    logger.warning(
      f"Agent '{definition.name}' has no {self.provider} agent id ({self.id_field}). "
      f"Falling back to the agent name as its identity, which only works if an agent with that exact id exists. "
      f"Create the agent in the {self.provider} console and set {self.id_field} on its definition."
    )
    return definition.name
