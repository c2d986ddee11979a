from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..errors import UnknownToolError
from ..logs import get_logger
from .tool import Tool

logger = get_logger("tool")


class ToolRegistry:
  """
  Local tools available to agents, by name.

  Implements ``ToolExecutor``. Unknown names raise ``UnknownToolError``; failures
  inside a tool come back as ``Tool execution failed: ...`` strings.
  """

  def __init__(self, tools: Optional[Iterable[Union[Tool, Callable]]] = None):
    self._tools: Dict[str, Tool] = {}
    for tool in tools or []:
      self.register(tool)

  def register(self, tool: Union[Tool, Callable], name: Optional[str] = None) -> Tool:
    if not isinstance(tool, Tool):
      tool = Tool(tool, name=name)
    if tool.name in self._tools:
      logger.warning(f"Replacing already registered tool '{tool.name}'")
    self._tools[tool.name] = tool
    return tool

  def unregister(self, name: str) -> None:
    self._tools.pop(name, None)

  def get(self, name: str) -> Tool:
    tool = self._tools.get(name)
    if tool is None:
      raise UnknownToolError(name, self.names())
    return tool

  def names(self) -> List[str]:
    return sorted(self._tools)

  def specs(self, names: Optional[Iterable[str]] = None) -> List[dict]:
    """Function specs for ``names`` (all tools when None), ready for an AgentDefinition."""
    selected = self.names() if names is None else list(names)
    return [self.get(name).spec for name in selected]

  async def execute_tool(self, name: str, arguments: Dict[str, Any]) -> str:
    return await self.get(name).invoke(arguments)

  def __contains__(self, name: str) -> bool:
    return name in self._tools

  def __len__(self) -> int:
    return len(self._tools)
