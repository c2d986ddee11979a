"""
OpenAI Assistants adapter.

Threads, messages, runs and assistants all live on OpenAI's side; this adapter
maps the Assistants API onto the shared data model and hands run completion to
the poller. Agents are OpenAI assistants, reconciled by name through the agent
identity cache.
"""

import asyncio
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from ..agents.cache import AgentIdentityCache
from ..config import get_openai_api_key
from ..errors import ConfigurationError, NotFoundError, ProviderUnavailableError
from ..events.sinks import EventSink
from ..logs import get_logger
from ..tools.bridge import ToolExecutorBridge
from ..tools.protocol import ToolExecutor
from ..types import (
  AgentDefinition,
  CachedAgentDescriptor,
  Message,
  Role,
  Run,
  RunError,
  RunResult,
  RunStatus,
  Thread,
  TokenUsage,
  ToolCall,
  ToolOutput,
)
from .poller import PollingPolicy, RunCompletionPoller
from .shared_clients import create_http_client, create_timeout

logger = get_logger("adapter")

# Assistants scanned when looking an agent up by name
ASSISTANT_LOOKUP_LIMIT = 100

UNAVAILABLE_REMEDIATION = [
  "Check your network connection and any proxy settings",
  "Check https://status.openai.com for ongoing incidents",
  "If requests are rate limited, wait a moment and retry",
]


@contextmanager
def openai_errors(kind: Optional[str] = None, identifier: Optional[str] = None, **context):
  """
  Re-raise OpenAI SDK errors as orchestration errors.

  A 404 becomes ``NotFoundError`` for ``kind``/``identifier``; a rejected key becomes
  ``ConfigurationError``; any other API or connection failure becomes
  ``ProviderUnavailableError``.
  """
  try:
    yield
  except openai.AuthenticationError as e:
    logger.error(f"OpenAI rejected the API key: {e.message}")
    raise ConfigurationError("openai", ["OPENAI_API_KEY"], context={"reason": e.message}) from e
  except openai.NotFoundError as e:
    if kind is None:
      raise ProviderUnavailableError("openai", f"OpenAI API error (404): {e.message}", [], context) from e
    raise NotFoundError(kind, identifier, context=context or None) from e
  except openai.APIStatusError as e:
    logger.warning(f"OpenAI API error ({e.status_code}): {e.message}")
    context = {**context, "request_id": e.request_id}
    reason = f"OpenAI API error ({e.status_code}): {e.message}"
    raise ProviderUnavailableError("openai", reason, UNAVAILABLE_REMEDIATION, context) from e
  except openai.APIConnectionError as e:
    logger.warning(f"Could not reach the OpenAI API: {type(e).__name__}: {e}")
    reason = f"could not reach the OpenAI API: {e}"
    raise ProviderUnavailableError("openai", reason, UNAVAILABLE_REMEDIATION, context) from e


def _text_of(message) -> str:
  for block in message.content or []:
    if getattr(block, "type", None) == "text":
      return block.text.value
  return ""


def to_message(message) -> Message:
  return Message(
    id=message.id,
    thread_id=message.thread_id,
    role=message.role,
    content=_text_of(message),
    created_at=message.created_at,
  )


def to_run(run) -> Run:
  usage = None
  if run.usage is not None:
    usage = TokenUsage(
      prompt_tokens=run.usage.prompt_tokens or 0,
      completion_tokens=run.usage.completion_tokens or 0,
      total_tokens=run.usage.total_tokens or 0,
    )

  last_error = None
  if run.last_error is not None:
    last_error = RunError(code=run.last_error.code or "unknown", message=run.last_error.message or "Unknown error")

  tool_calls = []
  required = getattr(run, "required_action", None)
  if required is not None and required.submit_tool_outputs is not None:
    tool_calls = [
      ToolCall(id=call.id, name=call.function.name, raw_arguments=call.function.arguments or "")
      for call in required.submit_tool_outputs.tool_calls
      if call.type == "function"
    ]

  return Run(
    id=run.id,
    thread_id=run.thread_id,
    agent_id=run.assistant_id,
    status=RunStatus(run.status),
    created_at=run.created_at,
    started_at=run.started_at,
    completed_at=run.completed_at,
    failed_at=run.failed_at,
    cancelled_at=run.cancelled_at,
    last_error=last_error,
    usage=usage,
    tool_calls=tool_calls,
  )


def summarize_tool(tool: Dict[str, Any]) -> Dict[str, Any]:
  """
  Reduce a tool spec to type, name and description.

  OpenAI adds defaults to the parameter schemas it stores, so full specs read
  back from an assistant never equal the specs that were sent.
  """
  summary: Dict[str, Any] = {"type": tool.get("type")}
  function = tool.get("function")
  if function:
    summary["function"] = {"name": function.get("name"), "description": function.get("description")}
  return summary


class OpenAIAssistantRegistry:
  def __init__(self, client: AsyncOpenAI):
    self.client = client

  async def find_by_name(self, name: str) -> Optional[CachedAgentDescriptor]:
    with openai_errors():
      assistants = await self.client.beta.assistants.list(limit=ASSISTANT_LOOKUP_LIMIT)
    for assistant in assistants.data:
      if assistant.name == name:
        return CachedAgentDescriptor(
          name=name,
          instructions=assistant.instructions or "",
          tools=[summarize_tool(tool.model_dump(exclude_none=True)) for tool in assistant.tools or []],
          model=assistant.model,
          identity=assistant.id,
        )
    return None

  async def create(self, definition: AgentDefinition) -> str:
    extra = {"description": definition.description} if definition.description else {}
    with openai_errors():
      assistant = await self.client.beta.assistants.create(
        name=definition.name,
        instructions=definition.instructions,
        model=definition.model,
        tools=definition.tools,
        **extra,
      )
    return assistant.id

  async def update(self, identity: str, definition: AgentDefinition) -> str:
    with openai_errors("agent", identity):
      await self.client.beta.assistants.update(
        identity,
        instructions=definition.instructions,
        model=definition.model,
        tools=definition.tools,
      )
    return identity

  def normalize_tools(self, tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [summarize_tool(tool) for tool in tools]


class OpenAIAdapter:
  provider = "openai"

  def __init__(
    self,
    tool_executor: ToolExecutor,
    api_key: Optional[str] = None,
    client: Optional[AsyncOpenAI] = None,
    policy: Optional[PollingPolicy] = None,
    sleep=asyncio.sleep,
  ):
    self.logger = logger
    self._owns_client = client is None
    if client is None:
      api_key = api_key or get_openai_api_key()
      if not api_key:
        raise ConfigurationError("openai", ["OPENAI_API_KEY"])
      client = AsyncOpenAI(api_key=api_key, timeout=create_timeout(), http_client=create_http_client())
    self.client = client
    self.agents = AgentIdentityCache(OpenAIAssistantRegistry(client))
    self.poller = RunCompletionPoller(self, ToolExecutorBridge(tool_executor), policy=policy, sleep=sleep)

  async def is_configured(self) -> bool:
    return bool(self.client.api_key)

  async def get_or_create_agent(self, definition: AgentDefinition) -> str:
    return await self.agents.get_or_create(definition)

  async def create_thread(self, metadata: Optional[Dict[str, Any]] = None) -> Thread:
    with openai_errors():
      thread = await self.client.beta.threads.create(metadata=metadata or {})
    return Thread(id=thread.id, created_at=thread.created_at, metadata=dict(thread.metadata or {}))

  async def retrieve_thread(self, thread_id: str) -> Thread:
    with openai_errors("thread", thread_id):
      thread = await self.client.beta.threads.retrieve(thread_id)
    return Thread(id=thread.id, created_at=thread.created_at, metadata=dict(thread.metadata or {}))

  async def add_message(self, thread_id: str, role: str, content: str) -> Message:
    # threads only accept user and assistant messages
    if role == Role.SYSTEM.value:
      role = Role.USER.value
    with openai_errors("thread", thread_id):
      message = await self.client.beta.threads.messages.create(thread_id, role=role, content=content)
    result = to_message(message)
    if not result.content:
      result.content = content
    return result

  async def list_messages(self, thread_id: str, limit: int = 20, order: str = "desc") -> List[Message]:
    with openai_errors("thread", thread_id):
      page = await self.client.beta.threads.messages.list(thread_id, limit=limit, order=order)
    return [to_message(message) for message in page.data]

  async def create_run(self, thread_id: str, agent_id: str) -> Run:
    with openai_errors("thread", thread_id, agent_id=agent_id):
      run = await self.client.beta.threads.runs.create(thread_id=thread_id, assistant_id=agent_id)
    self.logger.debug(f"Created run {run.id} on thread {thread_id}")
    return to_run(run)

  async def retrieve_run(self, thread_id: str, run_id: str) -> Run:
    with openai_errors("run", run_id, thread_id=thread_id):
      run = await self.client.beta.threads.runs.retrieve(run_id, thread_id=thread_id)
    return to_run(run)

  async def wait_for_run_completion(self, thread_id: str, run_id: str, sink: Optional[EventSink] = None) -> RunResult:
    return await self.poller.wait(thread_id, run_id, sink)

  async def submit_tool_outputs(self, thread_id: str, run_id: str, outputs: List[ToolOutput]) -> Run:
    with openai_errors("run", run_id, thread_id=thread_id):
      run = await self.client.beta.threads.runs.submit_tool_outputs(
        run_id,
        thread_id=thread_id,
        tool_outputs=[{"tool_call_id": output.tool_call_id, "output": output.output} for output in outputs],
      )
    return to_run(run)

  async def list_runs(self, thread_id: str, limit: int = 10) -> List[Run]:
    with openai_errors("thread", thread_id):
      page = await self.client.beta.threads.runs.list(thread_id, limit=limit)
    return [to_run(run) for run in page.data]

  async def cancel_run(self, thread_id: str, run_id: str) -> Run:
    with openai_errors("run", run_id, thread_id=thread_id):
      run = await self.client.beta.threads.runs.cancel(run_id, thread_id=thread_id)
    return to_run(run)

  async def aclose(self) -> None:
    if self._owns_client:
      await self.client.close()
