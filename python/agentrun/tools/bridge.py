"""
Bridge between tool calls requested by a model and local tool implementations.

A failing tool is not an error for the run: its error string is sent back to the
model like any other output, so the model can react to it. Only a call to a tool
that does not exist raises (``UnknownToolError``).
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import UnknownToolError, is_error_output
from ..events import names
from ..events.sinks import EventSink, NullSink
from ..logs import get_logger
from ..types import ToolCall, ToolOutput
from .descriptions import format_action_message
from .protocol import ToolExecutor

logger = get_logger("tool")

# Length of the result preview carried by agent_action_complete events
ACTION_PREVIEW_LENGTH = 500


@dataclass
class ToolExecution:
  call: ToolCall
  output: str
  success: bool
  execution_time_ms: int

  def to_output(self) -> ToolOutput:
    return ToolOutput(tool_call_id=self.call.id, output=self.output)


def normalize_result(result: Any) -> str:
  if isinstance(result, str):
    return result
  return json.dumps(result, indent=2, default=str)


class ToolExecutorBridge:
  def __init__(self, executor: ToolExecutor, clock=time.perf_counter):
    self.executor = executor
    self.clock = clock

  async def execute(self, call: ToolCall, sink: Optional[EventSink] = None) -> ToolExecution:
    """
    Run one tool call and report its progress to ``sink``.

    Emits ``agent_action`` before the call, then ``agent_message`` (type
    ``function_result``) and ``agent_action_complete`` after it.

    :raises UnknownToolError: when no tool is registered under ``call.name``
    """
    sink = sink if sink is not None else NullSink()
    action = format_action_message(call.name, call.arguments)
    sink.emit(names.AGENT_ACTION, {"action": action, "functionName": call.name, "args": call.arguments})

    started = self.clock()
    try:
      output = normalize_result(await self.executor.execute_tool(call.name, call.arguments))
    except UnknownToolError:
      raise
    except Exception as e:
      output = f"Error: {type(e).__name__}: {e}"
    execution_time_ms = int(round((self.clock() - started) * 1000))
    success = not is_error_output(output)

    if success:
      logger.debug(f"Tool '{call.name}' ({call.id}) finished in {execution_time_ms}ms")
    else:
      logger.warning(f"Tool '{call.name}' ({call.id}) reported a failure: {output[:200]}")

    sink.emit(
      names.AGENT_MESSAGE,
      {
        "type": names.MESSAGE_FUNCTION_RESULT,
        "functionName": call.name,
        "arguments": call.arguments,
        "result": output,
        "executionTime": execution_time_ms,
        "details": {"toolCallId": call.id, "success": success},
      },
    )
    sink.emit(
      names.AGENT_ACTION_COMPLETE,
      {"action": action, "success": success, "result": output[:ACTION_PREVIEW_LENGTH]},
    )
    return ToolExecution(call=call, output=output, success=success, execution_time_ms=execution_time_ms)


def tool_calls_payload(run_id: str, calls: List[ToolCall]) -> Dict[str, Any]:
  return {
    "type": names.MESSAGE_FUNCTION_CALLS,
    "toolCalls": [
      {
        "toolCallId": call.id,
        "functionName": call.name,
        "arguments": call.arguments,
        "rawArguments": call.raw_arguments,
      }
      for call in calls
    ],
    "details": {"runId": run_id, "toolCallsCount": len(calls)},
  }
