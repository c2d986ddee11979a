from .tool import Tool
from .protocol import ToolExecutor
from .registry import ToolRegistry
from .bridge import ToolExecutorBridge, ToolExecution
from .descriptions import format_action_message

__all__ = [
  "Tool",
  "ToolExecutor",
  "ToolRegistry",
  "ToolExecutorBridge",
  "ToolExecution",
  "format_action_message",
]
