"""
Run completion poller.

Drives one run from submission to a terminal state:

  queued -> in_progress -> {requires_action <-> in_progress} -> {completed | failed | cancelled}

Each iteration reads the run, accumulates its usage and, while the run is still
going, forwards assistant messages that appeared since the last look. Tool calls
requested in ``requires_action`` are executed concurrently through the tool
bridge and their outputs submitted as a single batch; the next iteration follows
immediately. Any other non-terminal state waits according to the polling policy.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol, Set, Tuple

from ..config import get_poll_max_iterations
from ..errors import OrchestrationError, RunCancelledError, RunFailedError, RunTimeoutError
from ..events import names
from ..events.sinks import EventSink, NullSink
from ..logs import get_logger
from ..tools.bridge import ToolExecutorBridge, tool_calls_payload
from ..types import Message, Run, RunResult, RunStatus, ToolOutput, newest_first
from ..usage import TokenAccountant

logger = get_logger("poller")

# Returned when a run completes without any message to show
NO_RESPONSE_MESSAGE = "No response available."

# Length of each output preview carried by function_outputs events
OUTPUT_PREVIEW_LENGTH = 1000


@dataclass
class PollingPolicy:
  """Iteration bound and adaptive delay between polls."""

  # Polls before giving up with RunTimeoutError
  max_iterations: int = field(default_factory=get_poll_max_iterations)
  # (last iteration, delay in seconds) steps, in increasing order of iteration
  schedule: Tuple[Tuple[int, float], ...] = ((3, 0.2), (10, 0.3), (20, 0.5))
  # Delay once the schedule is exhausted
  final_delay: float = 1.0
  # Messages fetched per poll when looking for new assistant messages
  page_size: int = 50

  def delay_for(self, iteration: int) -> float:
    for last_iteration, delay in self.schedule:
      if iteration <= last_iteration:
        return delay
    return self.final_delay


class RunSource(Protocol):
  """The provider primitives the poller needs."""

  async def retrieve_run(self, thread_id: str, run_id: str) -> Run: ...

  async def list_messages(self, thread_id: str, limit: int = 20, order: str = "desc") -> List[Message]: ...

  async def submit_tool_outputs(self, thread_id: str, run_id: str, outputs: List[ToolOutput]) -> Run: ...

  async def cancel_run(self, thread_id: str, run_id: str) -> Run: ...


class RunCompletionPoller:
  def __init__(
    self,
    source: RunSource,
    bridge: ToolExecutorBridge,
    policy: Optional[PollingPolicy] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    cumulative_usage: bool = True,
    cancel_on_timeout: bool = False,
  ):
    self.source = source
    self.bridge = bridge
    self.policy = policy or PollingPolicy()
    self.sleep = sleep
    self.cumulative_usage = cumulative_usage
    # Runs simulated in process keep working after a timeout unless cancelled
    self.cancel_on_timeout = cancel_on_timeout

  async def wait(self, thread_id: str, run_id: str, sink: Optional[EventSink] = None) -> RunResult:
    """
    Poll ``run_id`` until it reaches a terminal state.

    :param sink: Receives progress events; without a sink no messages are fetched while polling
    :return: The final assistant message and the run's token usage
    :raises RunFailedError: the run failed or expired
    :raises RunCancelledError: the run was cancelled
    :raises RunTimeoutError: the run was still going after ``max_iterations`` polls; with
      ``cancel_on_timeout`` the run is cancelled first
    """
    accountant = TokenAccountant(cumulative=self.cumulative_usage)
    seen: Set[str] = set()
    if sink is not None:
      for message in await self._page(thread_id):
        if message.is_assistant:
          seen.add(message.id)

    status = None
    for iteration in range(1, self.policy.max_iterations + 1):
      run = await self.source.retrieve_run(thread_id, run_id)
      accountant.add(run.usage)
      status = run.status
      logger.debug(f"Run {run_id} poll {iteration}: {status.value}")

      if sink is not None and not status.is_terminal:
        await self._emit_new_messages(thread_id, seen, sink)

      if status in (RunStatus.COMPLETED, RunStatus.INCOMPLETE):
        return await self._complete(thread_id, run, accountant, seen, sink)

      if status in (RunStatus.FAILED, RunStatus.EXPIRED):
        error = run.last_error
        raise RunFailedError(run_id, error.code if error else status.value, error.message if error else None)

      if status == RunStatus.CANCELLED:
        raise RunCancelledError(run_id)

      if status == RunStatus.REQUIRES_ACTION:
        if run.tool_calls:
          await self._resolve_tool_calls(thread_id, run, sink if sink is not None else NullSink())
          continue
        logger.warning(f"Run {run_id} requires action but requested no function calls")

      await self.sleep(self.policy.delay_for(iteration))

    if self.cancel_on_timeout:
      await self._cancel_timed_out(thread_id, run_id)
    raise RunTimeoutError(run_id, self.policy.max_iterations, status.value if status else None)

  async def _cancel_timed_out(self, thread_id: str, run_id: str) -> None:
    try:
      await self.source.cancel_run(thread_id, run_id)
    except OrchestrationError as e:
      logger.warning(f"Could not cancel timed out run {run_id}: {e}")
    else:
      logger.info(f"Cancelled run {run_id} after {self.policy.max_iterations} polls")

  async def _page(self, thread_id: str) -> List[Message]:
    return newest_first(await self.source.list_messages(thread_id, limit=self.policy.page_size, order="desc"))

  async def _emit_new_messages(self, thread_id: str, seen: Set[str], sink: EventSink) -> List[Message]:
    page = await self._page(thread_id)
    for message in reversed(page):
      if not message.is_assistant or message.id in seen or not message.content:
        continue
      seen.add(message.id)
      sink.emit(
        names.AGENT_MESSAGE,
        {
          "type": names.MESSAGE_ASSISTANT,
          "message": message.content,
          "messageId": message.id,
          "details": {"threadId": thread_id, "role": message.role, "createdAt": message.created_at},
        },
      )
    return page

  async def _complete(
    self,
    thread_id: str,
    run: Run,
    accountant: TokenAccountant,
    seen: Set[str],
    sink: Optional[EventSink],
  ) -> RunResult:
    if sink is not None:
      page = await self._emit_new_messages(thread_id, seen, sink)
    else:
      page = newest_first(await self.source.list_messages(thread_id, limit=20, order="desc"))

    message = select_response(page)
    if message is None:
      logger.warning(f"Run {run.id} completed without a message, returning the fallback response")
      text = NO_RESPONSE_MESSAGE
    else:
      text = message.content

    usage = accountant.result(text)
    logger.info(f"Run {run.id} completed ({usage.total_tokens} tokens)")
    return RunResult(message=text, token_usage=usage)

  async def _resolve_tool_calls(self, thread_id: str, run: Run, sink: EventSink) -> None:
    calls = list(run.tool_calls)
    logger.info(f"Run {run.id} requested {len(calls)} function call(s): {', '.join(c.name for c in calls)}")
    sink.emit(names.AGENT_MESSAGE, tool_calls_payload(run.id, calls))

    executions = await asyncio.gather(*(self.bridge.execute(call, sink) for call in calls))
    outputs = [execution.to_output() for execution in executions]

    sink.emit(names.AGENT_ACTION, {"action": "Processing results...", "functionName": "processing"})
    sink.emit(
      names.AGENT_MESSAGE,
      {
        "type": names.MESSAGE_FUNCTION_OUTPUTS,
        "outputs": [
          {
            "toolCallId": output.tool_call_id,
            "output": output.output[:OUTPUT_PREVIEW_LENGTH]
            + ("..." if len(output.output) > OUTPUT_PREVIEW_LENGTH else ""),
            "outputLength": len(output.output),
          }
          for output in outputs
        ],
        "details": {"runId": run.id, "outputsCount": len(outputs)},
      },
    )

    await self.source.submit_tool_outputs(thread_id, run.id, outputs)


def select_response(page: List[Message]) -> Optional[Message]:
  """
  Pick the message a completed run answers with from a newest-first page.

  The most recent assistant message with text wins; otherwise the first message
  of the page that has text.
  """
  for message in page:
    if message.is_assistant and message.content:
      return message
  for message in page[:1]:
    if message.content:
      return message
  return None
