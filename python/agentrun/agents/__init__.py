from .cache import AgentIdentityCache, AgentRegistry, definition_changes, tools_equal
from .registries import LocalAgentRegistry, PreProvisionedRegistry

__all__ = [
  "AgentIdentityCache",
  "AgentRegistry",
  "LocalAgentRegistry",
  "PreProvisionedRegistry",
  "definition_changes",
  "tools_equal",
]
