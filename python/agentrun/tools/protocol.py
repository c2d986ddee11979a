from typing import Any, Dict, Protocol


class ToolExecutor(Protocol):
  """Runs a registered tool by name and returns its result as a string."""

  async def execute_tool(self, name: str, arguments: Dict[str, Any]) -> str: ...
