"""
Asynchronous runs simulated over a synchronous completion call.

Providers such as Ollama answer a chat request in one blocking call and have no
notion of runs. ``LocalRunEngine`` gives them the same lifecycle as a threaded
provider: ``start`` returns immediately with an in-progress run while a
background task performs the call, and the poller observes the run moving
through ``requires_action`` and ``completed`` exactly as it would remotely.

The provider plugs in a single ``step`` coroutine. It receives the run and, when
resuming after ``requires_action``, the submitted tool outputs, and returns
either the final assistant text or more tool calls.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from ..errors import ProviderUnavailableError, ToolOutputMismatchError
from ..logs import get_logger
from ..stores import ConversationStore, RunStore
from ..types import Role, Run, RunError, RunStatus, TokenUsage, ToolCall, ToolOutput

logger = get_logger("adapter")


@dataclass
class StepResult:
  content: Optional[str] = None
  tool_calls: List[ToolCall] = field(default_factory=list)
  # usage of this step alone; the engine keeps the run's cumulative total
  usage: Optional[TokenUsage] = None


StepFunction = Callable[[Run, Optional[List[ToolOutput]]], Awaitable[StepResult]]

# Called with the run id once a run is completed, failed or cancelled
FinishCallback = Callable[[str], None]


class LocalRunEngine:
  def __init__(
    self,
    provider: str,
    conversations: ConversationStore,
    runs: RunStore,
    step: StepFunction,
    on_finish: Optional[FinishCallback] = None,
  ):
    self.provider = provider
    self.conversations = conversations
    self.runs = runs
    self.step = step
    self.on_finish = on_finish
    self._tasks: Dict[str, asyncio.Task] = {}

  async def start(self, thread_id: str, agent_id: str) -> Run:
    self.conversations.get_thread(thread_id)
    run = await self.runs.add(thread_id, agent_id)
    run.transition(RunStatus.IN_PROGRESS)
    self._spawn(run, None)
    logger.debug(f"Started {self.provider} run {run.id} on thread {thread_id}")
    return run

  def get(self, thread_id: str, run_id: str) -> Run:
    return self.runs.get(thread_id, run_id)

  def list(self, thread_id: str, limit: int = 10) -> List[Run]:
    return self.runs.list_runs(thread_id, limit)

  async def submit(self, thread_id: str, run_id: str, outputs: List[ToolOutput]) -> Run:
    """
    Resume a run waiting in ``requires_action``.

    :raises ValueError: the run is not waiting for tool outputs
    :raises ToolOutputMismatchError: the outputs do not answer exactly the pending calls
    """
    async with self.runs.lock(thread_id):
      run = self.runs.get(thread_id, run_id)
      if run.status != RunStatus.REQUIRES_ACTION:
        raise ValueError(f"Run {run_id} is {run.status.value}, it is not waiting for tool outputs")

      expected = sorted(call.id for call in run.tool_calls)
      received = sorted(output.tool_call_id for output in outputs)
      if expected != received:
        raise ToolOutputMismatchError(run_id, expected, received)

      run.transition(RunStatus.IN_PROGRESS)
      self._spawn(run, list(outputs))
      return run

  async def cancel(self, thread_id: str, run_id: str) -> Run:
    run = self.runs.get(thread_id, run_id)
    if run.status.is_terminal:
      return run

    task = self._tasks.pop(run.id, None)
    if task is not None:
      task.cancel()
    run.transition(RunStatus.CANCELLED)
    self._finished(run)
    logger.info(f"Cancelled {self.provider} run {run.id}")
    return run

  async def aclose(self) -> None:
    tasks = list(self._tasks.values())
    self._tasks.clear()
    for task in tasks:
      task.cancel()
    if tasks:
      await asyncio.gather(*tasks, return_exceptions=True)

  def _spawn(self, run: Run, outputs: Optional[List[ToolOutput]]) -> None:
    task = asyncio.create_task(self._drive(run, outputs), name=f"{self.provider}-run-{run.id}")
    self._tasks[run.id] = task

    def forget(done: asyncio.Task) -> None:
      if self._tasks.get(run.id) is done:
        del self._tasks[run.id]

    task.add_done_callback(forget)

  async def _drive(self, run: Run, outputs: Optional[List[ToolOutput]]) -> None:
    try:
      result = await self.step(run, outputs)
    except asyncio.CancelledError:
      raise
    except Exception as e:
      if run.status.is_terminal:
        self._finished(run)
        return
      code = "provider_unavailable" if isinstance(e, ProviderUnavailableError) else "server_error"
      logger.error(f"{self.provider} run {run.id} failed: {type(e).__name__}: {e}")
      run.transition(RunStatus.FAILED, RunError(code=code, message=str(e)))
      self._finished(run)
      return

    if run.status.is_terminal:
      # cancelled while the step was running
      self._finished(run)
      return

    if result.usage is not None:
      run.usage = (run.usage or TokenUsage()) + result.usage

    if result.tool_calls:
      run.transition(RunStatus.REQUIRES_ACTION)
      run.tool_calls = list(result.tool_calls)
      logger.debug(f"{self.provider} run {run.id} requires action: {[c.name for c in run.tool_calls]}")
      return

    await self.conversations.append(run.thread_id, Role.ASSISTANT.value, result.content or "")
    run.transition(RunStatus.COMPLETED)
    self._finished(run)

  def _finished(self, run: Run) -> None:
    if self.on_finish is not None:
      self.on_finish(run.id)
