from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ..events.sinks import EventSink
from ..types import AgentDefinition, Message, Run, RunResult, Thread, ToolOutput


@runtime_checkable
class ProviderAdapter(Protocol):
  """
  Thread, message and run primitives over one completion provider.

  ``list_messages`` returns messages in the order requested when the provider
  supports it; callers that depend on ordering should still sort with
  ``agentrun.types.newest_first``. Providers that cannot list or cancel runs
  return an empty list or a synthesized run instead of failing.
  """

  provider: str

  async def is_configured(self) -> bool: ...

  async def get_or_create_agent(self, definition: AgentDefinition) -> str: ...

  async def create_thread(self, metadata: Optional[Dict[str, Any]] = None) -> Thread: ...

  async def retrieve_thread(self, thread_id: str) -> Thread: ...

  async def add_message(self, thread_id: str, role: str, content: str) -> Message: ...

  async def list_messages(self, thread_id: str, limit: int = 20, order: str = "desc") -> List[Message]: ...

  async def create_run(self, thread_id: str, agent_id: str) -> Run: ...

  async def retrieve_run(self, thread_id: str, run_id: str) -> Run: ...

  async def wait_for_run_completion(
    self, thread_id: str, run_id: str, sink: Optional[EventSink] = None
  ) -> RunResult: ...

  async def submit_tool_outputs(self, thread_id: str, run_id: str, outputs: List[ToolOutput]) -> Run: ...

  async def list_runs(self, thread_id: str, limit: int = 10) -> List[Run]: ...

  async def cancel_run(self, thread_id: str, run_id: str) -> Run: ...

  async def aclose(self) -> None: ...
