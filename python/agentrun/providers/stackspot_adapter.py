"""
StackSpot adapter.

StackSpot agents are created in the StackSpot console and answer through a chat
endpoint; there are no threads, runs or native function calls. Threads and
runs are simulated in process with ``LocalRunEngine``. Each run step sends the
recent conversation as a single prompt. Function calls the agent writes as text
are detected and surface as ``requires_action``; their results are added to the
thread as a user message and the agent is asked again.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Union

import httpx

from ..agents.cache import AgentIdentityCache
from ..agents.registries import PreProvisionedRegistry
from ..config import StackSpotCredentials, get_stackspot_credentials
from ..errors import ConfigurationError, NotFoundError, OrchestrationError, is_error_output
from ..events.sinks import EventSink
from ..logs import get_logger
from ..stores import ConversationStore, RunStore
from ..tools.bridge import ToolExecutorBridge
from ..tools.protocol import ToolExecutor
from ..types import AgentDefinition, Message, Role, Run, RunResult, RunStatus, Thread, TokenUsage, ToolCall, ToolOutput, new_id
from .local_runs import LocalRunEngine, StepResult
from .poller import PollingPolicy, RunCompletionPoller
from .stackspot_client import StackSpotClient
from .stackspot_functions import detect_function_calls, format_function_results

logger = get_logger("adapter")

# Messages of the thread included in each prompt
HISTORY_LENGTH = 10
# Wait after cancelling stale runs before a new message is added
CANCEL_SETTLE_DELAY = 0.5
# Function call rounds per run before the agent's text is taken as the answer
DEFAULT_MAX_TOOL_ROUNDS = 5

_SPEAKERS = {Role.USER.value: "User", Role.ASSISTANT.value: "Assistant"}


def extract_text(response: Union[Dict[str, Any], str, None]) -> str:
  if response is None:
    return "No response"
  if isinstance(response, str):
    return response
  for key in ("message", "response"):
    if response.get(key):
      return str(response[key])
  content = response.get("content")
  if content:
    return content if isinstance(content, str) else json.dumps(content)
  return json.dumps(response)


def normalize_tokens(response: Union[Dict[str, Any], str, None]) -> Optional[TokenUsage]:
  if not isinstance(response, dict) or not response.get("tokens"):
    return None
  tokens = response["tokens"]
  prompt = tokens.get("input") or tokens.get("user") or 0
  completion = tokens.get("output") or 0
  return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)


def build_prompt(history: List[Message]) -> str:
  """
  Render the recent conversation as one prompt ending with the last user message.

  :raises ValueError: when the history has no user message
  """
  turns = [m for m in history if m.role in _SPEAKERS]
  last_user = next((i for i in range(len(turns) - 1, -1, -1) if turns[i].role == Role.USER.value), None)
  if last_user is None:
    raise ValueError("The thread has no user message to answer")

  earlier = [f"{_SPEAKERS[m.role]}: {m.content}" for m in turns[:last_user]]
  prompt = turns[last_user].content
  if not earlier:
    return prompt
  return "\n".join(earlier) + f"\n\nUser: {prompt}\nAssistant:"


class StackSpotAdapter:
  provider = "stackspot"

  def __init__(
    self,
    tool_executor: ToolExecutor,
    credentials: Optional[StackSpotCredentials] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    client: Optional[StackSpotClient] = None,
    policy: Optional[PollingPolicy] = None,
    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    sleep=asyncio.sleep,
  ):
    self.logger = logger
    if client is None:
      credentials = credentials or get_stackspot_credentials()
      missing = credentials.missing()
      if missing:
        raise ConfigurationError(self.provider, missing)
      client = StackSpotClient(credentials, http_client=http_client)
    self.client = client
    self.max_tool_rounds = max_tool_rounds
    self.sleep = sleep

    self.agents = AgentIdentityCache(PreProvisionedRegistry("StackSpot", id_field="stackspotAgentId"))
    self.conversations = ConversationStore()
    self.runs = LocalRunEngine(self.provider, self.conversations, RunStore(), self._step, on_finish=self._forget)
    self.poller = RunCompletionPoller(
      self, ToolExecutorBridge(tool_executor), policy=policy, sleep=sleep, cancel_on_timeout=True
    )
    self._pending: Dict[str, List[ToolCall]] = {}
    self._rounds: Dict[str, int] = {}

  async def is_configured(self) -> bool:
    return not self.client.credentials.missing()

  async def get_or_create_agent(self, definition: AgentDefinition) -> str:
    return await self.agents.get_or_create(definition)

  async def create_thread(self, metadata: Optional[Dict[str, Any]] = None) -> Thread:
    return await self.conversations.create_thread(metadata)

  async def retrieve_thread(self, thread_id: str) -> Thread:
    return self.conversations.get_thread(thread_id)

  async def add_message(self, thread_id: str, role: str, content: str) -> Message:
    self.conversations.get_thread(thread_id)
    await self._cancel_active_runs(thread_id)
    return await self.conversations.append(thread_id, role, content)

  async def _cancel_active_runs(self, thread_id: str) -> None:
    try:
      active = [run for run in await self.list_runs(thread_id) if run.status.is_active]
    except OrchestrationError as e:
      self.logger.warning(f"Could not check active runs of thread {thread_id}: {e}")
      return
    if not active:
      return

    self.logger.info(f"Cancelling {len(active)} active run(s) on thread {thread_id} before adding a message")
    for run in active:
      try:
        await self.cancel_run(thread_id, run.id)
      except OrchestrationError as e:
        self.logger.warning(f"Failed to cancel run {run.id}: {e}")
    await self.sleep(CANCEL_SETTLE_DELAY)

  async def list_messages(self, thread_id: str, limit: int = 20, order: str = "desc") -> List[Message]:
    return self.conversations.list_messages(thread_id, limit, order)

  async def create_run(self, thread_id: str, agent_id: str) -> Run:
    return await self.runs.start(thread_id, agent_id)

  async def retrieve_run(self, thread_id: str, run_id: str) -> Run:
    return self.runs.get(thread_id, run_id)

  async def wait_for_run_completion(self, thread_id: str, run_id: str, sink: Optional[EventSink] = None) -> RunResult:
    return await self.poller.wait(thread_id, run_id, sink)

  async def submit_tool_outputs(self, thread_id: str, run_id: str, outputs: List[ToolOutput]) -> Run:
    return await self.runs.submit(thread_id, run_id, outputs)

  async def list_runs(self, thread_id: str, limit: int = 10) -> List[Run]:
    return self.runs.list(thread_id, limit)

  async def cancel_run(self, thread_id: str, run_id: str) -> Run:
    self._forget(run_id)
    try:
      return await self.runs.cancel(thread_id, run_id)
    except NotFoundError:
      self.logger.warning(f"Run {run_id} is unknown, reporting it as cancelled")
      return Run(id=run_id, thread_id=thread_id, agent_id="", status=RunStatus.CANCELLED)

  async def aclose(self) -> None:
    await self.runs.aclose()

  def _forget(self, run_id: str) -> None:
    self._pending.pop(run_id, None)
    self._rounds.pop(run_id, None)

  async def _step(self, run: Run, outputs: Optional[List[ToolOutput]]) -> StepResult:
    if outputs:
      calls = {call.id: call for call in self._pending.pop(run.id, [])}
      results = [
        (calls[o.tool_call_id].name if o.tool_call_id in calls else o.tool_call_id, o.output, not is_error_output(o.output))
        for o in outputs
      ]
      await self.conversations.append(run.thread_id, Role.USER.value, format_function_results(results))

    prompt = build_prompt(self.conversations.read(run.thread_id)[-HISTORY_LENGTH:])
    response = await self.client.chat(run.agent_id, prompt)
    text = extract_text(response)
    usage = normalize_tokens(response)

    rounds = self._rounds.get(run.id, 0)
    detected = detect_function_calls(text) if rounds < self.max_tool_rounds else []
    if detected:
      calls = [ToolCall(id=new_id("call"), name=d.name, raw_arguments=json.dumps(d.arguments)) for d in detected]
      self._pending[run.id] = calls
      self._rounds[run.id] = rounds + 1
      self.logger.debug(f"StackSpot agent {run.agent_id} wrote {len(calls)} function call(s)")
      return StepResult(tool_calls=calls, usage=usage)

    if rounds >= self.max_tool_rounds:
      self.logger.warning(f"Run {run.id} reached {self.max_tool_rounds} function call rounds, using the answer as is")
    return StepResult(content=text, usage=usage)
