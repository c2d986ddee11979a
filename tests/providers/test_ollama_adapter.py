"""
Tests for the Ollama adapter, against a mocked Ollama HTTP API.
"""

import asyncio
import json

import httpx
import pytest

from agentrun.errors import NotFoundError, ProviderUnavailableError, RunCancelledError, RunFailedError, RunTimeoutError
from agentrun.events import RecordingSink, names
from agentrun.providers import OllamaAdapter, OllamaAPIError, PollingPolicy
from agentrun.tools import ToolRegistry
from agentrun.types import AgentDefinition, RunStatus, TokenUsage
from mock_provider import YieldingSleep

BASE_URL = "http://ollama.test:11434"


def read_file(filePath: str) -> str:
  """Read a file from the workspace."""
  return f"contents of {filePath}"


class FakeOllama:
  """Mocked Ollama server answering /api/chat from a list of scripted replies."""

  def __init__(self, *replies, tags_status=200, chat_status=200, chat_body=None):
    self.replies = list(replies)
    self.tags_status = tags_status
    self.chat_status = chat_status
    self.chat_body = chat_body
    self.chat_requests = []

  def __call__(self, request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/tags":
      return httpx.Response(self.tags_status, json={"models": [{"name": "llama3:latest"}]})
    if request.url.path == "/api/chat":
      self.chat_requests.append(json.loads(request.content))
      if self.chat_status != 200:
        return httpx.Response(self.chat_status, text=self.chat_body or "")
      reply = self.replies.pop(0)
      if isinstance(reply, httpx.Response):
        return reply
      return httpx.Response(200, json=reply)
    return httpx.Response(404)


def chat_reply(content="", tool_calls=None, prompt_eval_count=None, eval_count=None):
  message = {"role": "assistant", "content": content}
  if tool_calls:
    message["tool_calls"] = tool_calls
  reply = {"model": "llama3", "message": message, "done": True}
  if prompt_eval_count is not None:
    reply["prompt_eval_count"] = prompt_eval_count
    reply["eval_count"] = eval_count
  return reply


def create_adapter(handler, tools=None, max_iterations=100):
  http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
  return OllamaAdapter(
    tools if tools is not None else ToolRegistry([read_file]),
    base_url=BASE_URL,
    default_model="llama3",
    http_client=http_client,
    policy=PollingPolicy(max_iterations=max_iterations),
    sleep=YieldingSleep(),
  )


async def start_turn(adapter, text="hello", **definition):
  agent_id = await adapter.get_or_create_agent(
    AgentDefinition(name=definition.pop("name", "coder"), instructions="Help with code.", **definition)
  )
  thread = await adapter.create_thread()
  await adapter.add_message(thread.id, "user", text)
  run = await adapter.create_run(thread.id, agent_id)
  return thread, run


class TestOllamaAdapter:
  async def test_simple_completion(self):
    server = FakeOllama(chat_reply("Hi! How can I help?", prompt_eval_count=12, eval_count=6))
    adapter = create_adapter(server)

    thread, run = await start_turn(adapter)
    result = await adapter.wait_for_run_completion(thread.id, run.id)

    assert result.message == "Hi! How can I help?"
    assert result.token_usage == TokenUsage(12, 6, 18)
    request = server.chat_requests[0]
    assert request["stream"] is False
    assert request["messages"] == [
      {"role": "system", "content": "Help with code."},
      {"role": "user", "content": "hello"},
    ]
    assert "tools" not in request

  async def test_tool_calling_round_trip(self):
    server = FakeOllama(
      chat_reply(
        tool_calls=[{"function": {"name": "read_file", "arguments": {"filePath": "notes.txt"}}}],
        prompt_eval_count=20,
        eval_count=4,
      ),
      chat_reply("The notes are empty.", prompt_eval_count=30, eval_count=8),
    )
    registry = ToolRegistry([read_file])
    adapter = create_adapter(server, registry)
    sink = RecordingSink()

    thread, run = await start_turn(adapter, "read my notes", tools=registry.specs(), model="gpt-4-turbo-preview")
    result = await adapter.wait_for_run_completion(thread.id, run.id, sink)

    assert result.message == "The notes are empty."
    assert result.token_usage == TokenUsage(50, 12, 62)

    first, second = server.chat_requests
    assert first["model"] == "llama3"
    assert first["tools"][0]["function"]["name"] == "read_file"
    assert second["messages"][-1] == {"role": "tool", "content": "contents of notes.txt", "tool_name": "read_file"}
    assert second["messages"][-2]["tool_calls"][0]["function"]["name"] == "read_file"

    results = [p for p in sink.named(names.AGENT_MESSAGE) if p["type"] == names.MESSAGE_FUNCTION_RESULT]
    assert [(p["functionName"], p["details"]["success"]) for p in results] == [("read_file", True)]
    assistant = [p for p in sink.named(names.AGENT_MESSAGE) if p["type"] == names.MESSAGE_ASSISTANT]
    assert [p["message"] for p in assistant] == ["The notes are empty."]

    messages = await adapter.list_messages(thread.id)
    assert [m.role for m in messages] == ["assistant", "user"]
    assert adapter._exchanges == {}

  async def test_unreachable_server(self):
    def refuse(request):
      raise httpx.ConnectError("connection refused", request=request)

    adapter = create_adapter(refuse)
    agent_id = await adapter.get_or_create_agent(AgentDefinition(name="coder"))
    thread = await adapter.create_thread()

    with pytest.raises(ProviderUnavailableError) as exc_info:
      await adapter.create_run(thread.id, agent_id)

    assert "ollama serve" in str(exc_info.value)
    assert BASE_URL in str(exc_info.value)
    assert await adapter.is_configured() is False
    assert await adapter.list_runs(thread.id) == []

  async def test_is_configured_when_running(self):
    adapter = create_adapter(FakeOllama())
    assert await adapter.is_configured() is True

  async def test_missing_model_fails_the_run(self):
    server = FakeOllama(chat_status=404, chat_body='{"error":"model \\"llama3\\" not found, try pulling it first"}')
    adapter = create_adapter(server)

    thread, run = await start_turn(adapter)
    with pytest.raises(RunFailedError) as exc_info:
      await adapter.wait_for_run_completion(thread.id, run.id)

    assert exc_info.value.code == "provider_unavailable"
    assert "ollama pull llama3" in exc_info.value.provider_message

  async def test_other_api_errors(self):
    server = FakeOllama(chat_status=500, chat_body="out of memory")
    adapter = create_adapter(server)

    thread, run = await start_turn(adapter)
    with pytest.raises(RunFailedError) as exc_info:
      await adapter.wait_for_run_completion(thread.id, run.id)

    assert exc_info.value.code == "server_error"
    assert "out of memory" in exc_info.value.provider_message

  async def test_failure_after_tool_round_drops_the_exchange(self):
    server = FakeOllama(
      chat_reply(tool_calls=[{"function": {"name": "read_file", "arguments": {"filePath": "notes.txt"}}}]),
      httpx.Response(500, text="out of memory"),
    )
    registry = ToolRegistry([read_file])
    adapter = create_adapter(server, registry)

    thread, run = await start_turn(adapter, "read my notes", tools=registry.specs())
    with pytest.raises(RunFailedError):
      await adapter.wait_for_run_completion(thread.id, run.id)

    assert len(server.chat_requests) == 2
    assert adapter._exchanges == {}

  async def test_timed_out_run_is_cancelled(self):
    async def stuck(request):
      if request.url.path == "/api/tags":
        return httpx.Response(200, json={"models": []})
      await asyncio.Event().wait()

    adapter = create_adapter(stuck, max_iterations=3)
    thread, run = await start_turn(adapter)

    with pytest.raises(RunTimeoutError):
      await adapter.wait_for_run_completion(thread.id, run.id)

    assert (await adapter.retrieve_run(thread.id, run.id)).status == RunStatus.CANCELLED
    await adapter.aclose()
    assert adapter.runs._tasks == {}

  async def test_cancel_run(self):
    release = asyncio.Event()

    async def slow(request):
      if request.url.path == "/api/tags":
        return httpx.Response(200, json={"models": []})
      await release.wait()
      return httpx.Response(200, json=chat_reply("late"))

    adapter = create_adapter(slow)
    thread, run = await start_turn(adapter)

    cancelled = await adapter.cancel_run(thread.id, run.id)

    assert cancelled.status == RunStatus.CANCELLED
    with pytest.raises(RunCancelledError):
      await adapter.wait_for_run_completion(thread.id, run.id)
    await adapter.aclose()

  async def test_unknown_thread_and_run(self):
    adapter = create_adapter(FakeOllama())

    with pytest.raises(NotFoundError):
      await adapter.retrieve_thread("thread_missing")
    with pytest.raises(NotFoundError):
      await adapter.list_messages("thread_missing")

    thread = await adapter.create_thread({"topic": "tests"})
    assert (await adapter.retrieve_thread(thread.id)).metadata == {"topic": "tests"}
    with pytest.raises(NotFoundError):
      await adapter.retrieve_run(thread.id, "run_missing")

  async def test_unknown_agent(self):
    adapter = create_adapter(FakeOllama())
    thread = await adapter.create_thread()

    with pytest.raises(NotFoundError):
      await adapter.create_run(thread.id, "agent_missing")

  def test_model_for(self):
    adapter = create_adapter(FakeOllama())

    assert adapter.model_for(AgentDefinition(name="a", model="gpt-3.5-turbo")) == "llama3"
    assert adapter.model_for(AgentDefinition(name="a", model="mistral")) == "mistral"
    assert adapter.model_for(AgentDefinition(name="a", model="")) == "llama3"

  def test_api_error_message(self):
    assert "502" in str(OllamaAPIError(502, "bad gateway"))
