"""
Ollama adapter.

Ollama exposes a synchronous ``/api/chat`` endpoint and keeps no conversation
state. Threads, messages and agents are held in process and runs are simulated
by ``LocalRunEngine``: each run performs one chat call per step in a background
task. Native tool calling is used when the agent has tools; the model's tool
calls surface as ``requires_action`` and the submitted outputs are sent back as
``tool`` messages in the next step.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx

from ..agents.cache import AgentIdentityCache
from ..agents.registries import LocalAgentRegistry
from ..config import get_ollama_base_url, get_ollama_default_model
from ..errors import OrchestrationError, ProviderUnavailableError
from ..events.sinks import EventSink
from ..logs import get_logger
from ..stores import ConversationStore, RunStore
from ..tools.bridge import ToolExecutorBridge
from ..tools.protocol import ToolExecutor
from ..types import AgentDefinition, Message, Role, Run, RunResult, Thread, TokenUsage, ToolCall, ToolOutput, new_id
from .local_runs import LocalRunEngine, StepResult
from .poller import PollingPolicy, RunCompletionPoller
from .shared_clients import get_shared_http_client

logger = get_logger("adapter")

# Reachability checks must answer quickly
CHECK_TIMEOUT = 5.0

# Agent models that only exist on OpenAI; such agents run on the default Ollama model
OPENAI_MODEL_MARKERS = ("gpt-4", "gpt-3.5")


class OllamaAPIError(OrchestrationError):
  def __init__(self, status_code: int, body: str):
    self.status_code = status_code
    self.body = body
    super().__init__()

  def _describe(self) -> str:
    return f"Ollama API error ({self.status_code}): {self.body}"


class OllamaAdapter:
  provider = "ollama"

  def __init__(
    self,
    tool_executor: ToolExecutor,
    base_url: Optional[str] = None,
    default_model: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    policy: Optional[PollingPolicy] = None,
    sleep=asyncio.sleep,
  ):
    self.logger = logger
    self.base_url = (base_url or get_ollama_base_url()).rstrip("/")
    self.default_model = default_model or get_ollama_default_model()
    self._http = http_client

    self.registry = LocalAgentRegistry()
    self.agents = AgentIdentityCache(self.registry)
    self.conversations = ConversationStore()
    self.runs = LocalRunEngine(self.provider, self.conversations, RunStore(), self._step, on_finish=self._forget)
    self.poller = RunCompletionPoller(
      self, ToolExecutorBridge(tool_executor), policy=policy, sleep=sleep, cancel_on_timeout=True
    )
    # chat messages exchanged during tool calling, per run
    self._exchanges: Dict[str, List[Dict[str, Any]]] = {}

  async def _client(self) -> httpx.AsyncClient:
    if self._http is None:
      self._http = await get_shared_http_client()
    return self._http

  async def check_running(self) -> None:
    """
    Check that the Ollama server answers.

    :raises ProviderUnavailableError: with the steps that usually fix the problem
    """
    client = await self._client()
    try:
      response = await client.get(f"{self.base_url}/api/tags", timeout=CHECK_TIMEOUT)
    except httpx.TimeoutException:
      reason = f"timed out connecting to Ollama at {self.base_url}, the server may be overloaded or stuck"
    except httpx.ConnectError:
      reason = f"could not connect to Ollama at {self.base_url}, make sure it is running"
    except httpx.HTTPError as e:
      reason = f"{type(e).__name__}: {e}"
    else:
      if response.status_code == 200:
        return
      reason = f"Ollama answered with status {response.status_code}"

    self.logger.warning(f"Ollama is not reachable: {reason}")
    raise ProviderUnavailableError(
      self.provider,
      reason,
      [
        "Make sure Ollama is installed and running",
        f"Check that Ollama is reachable at {self.base_url}",
        "Start the server with: ollama serve",
        "Make sure port 11434 is not used by another process",
        "If Ollama runs elsewhere, set OLLAMA_BASE_URL to its URL",
      ],
    )

  async def is_configured(self) -> bool:
    try:
      await self.check_running()
    except ProviderUnavailableError:
      return False
    return True

  async def get_or_create_agent(self, definition: AgentDefinition) -> str:
    return await self.agents.get_or_create(definition)

  async def create_thread(self, metadata: Optional[Dict[str, Any]] = None) -> Thread:
    return await self.conversations.create_thread(metadata)

  async def retrieve_thread(self, thread_id: str) -> Thread:
    return self.conversations.get_thread(thread_id)

  async def add_message(self, thread_id: str, role: str, content: str) -> Message:
    return await self.conversations.append(thread_id, role, content)

  async def list_messages(self, thread_id: str, limit: int = 20, order: str = "desc") -> List[Message]:
    return self.conversations.list_messages(thread_id, limit, order)

  async def create_run(self, thread_id: str, agent_id: str) -> Run:
    self.conversations.get_thread(thread_id)
    self.registry.definition_for(agent_id)
    await self.check_running()
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
    return await self.runs.cancel(thread_id, run_id)

  async def aclose(self) -> None:
    await self.runs.aclose()

  def _forget(self, run_id: str) -> None:
    self._exchanges.pop(run_id, None)

  def model_for(self, definition: AgentDefinition) -> str:
    model = definition.model or self.default_model
    if any(marker in model.lower() for marker in OPENAI_MODEL_MARKERS):
      self.logger.info(f"Model '{model}' is not available on Ollama, using '{self.default_model}'")
      return self.default_model
    return model

  def _chat_messages(self, run: Run, definition: AgentDefinition) -> List[Dict[str, Any]]:
    messages = []
    if definition.instructions:
      messages.append({"role": Role.SYSTEM.value, "content": definition.instructions})
    for message in self.conversations.read(run.thread_id):
      messages.append({"role": message.role, "content": message.content})
    return messages + self._exchanges.get(run.id, [])

  async def _step(self, run: Run, outputs: Optional[List[ToolOutput]]) -> StepResult:
    definition = self.registry.definition_for(run.agent_id)
    exchange = self._exchanges.setdefault(run.id, [])
    if outputs:
      names = {call["id"]: call["function"]["name"] for m in exchange for call in m.get("tool_calls", [])}
      for output in outputs:
        exchange.append({"role": "tool", "content": output.output, "tool_name": names.get(output.tool_call_id)})

    model = self.model_for(definition)
    body: Dict[str, Any] = {"model": model, "messages": self._chat_messages(run, definition), "stream": False}
    if definition.tools:
      body["tools"] = definition.tools

    client = await self._client()
    response = await client.post(f"{self.base_url}/api/chat", json=body)
    if response.status_code != 200:
      text = response.text
      if response.status_code == 404 and "not found" in text:
        raise ProviderUnavailableError(
          self.provider,
          f'model "{model}" was not found',
          [
            "Check the installed models with: ollama list",
            f"Download the model with: ollama pull {model}",
            "Or set OLLAMA_DEFAULT_MODEL to an installed model (llama2, llama3, mistral, codellama, ...)",
          ],
        )
      raise OllamaAPIError(response.status_code, text)

    data = response.json()
    message = data.get("message") or {}
    usage = None
    if data.get("prompt_eval_count") is not None and data.get("eval_count") is not None:
      usage = TokenUsage(
        prompt_tokens=data["prompt_eval_count"],
        completion_tokens=data["eval_count"],
        total_tokens=data["prompt_eval_count"] + data["eval_count"],
      )

    calls = []
    for requested in message.get("tool_calls") or []:
      function = requested.get("function") or {}
      arguments = function.get("arguments")
      raw = arguments if isinstance(arguments, str) else json.dumps(arguments or {})
      calls.append(ToolCall(id=new_id("call"), name=function.get("name", ""), raw_arguments=raw))

    if calls:
      exchange.append(
        {
          "role": Role.ASSISTANT.value,
          "content": message.get("content", ""),
          "tool_calls": [
            {"id": call.id, "function": {"name": call.name, "arguments": call.arguments}} for call in calls
          ],
        }
      )
      return StepResult(tool_calls=calls, usage=usage)

    return StepResult(content=message.get("content", ""), usage=usage)
