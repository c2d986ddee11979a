"""
Tests for the OpenAI Assistants adapter, with a mocked AsyncOpenAI client.
"""

import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from agentrun.conversation import ConversationService
from agentrun.errors import ConfigurationError, NotFoundError, ProviderUnavailableError
from agentrun.events import RecordingSink, SessionHub, names
from agentrun.providers import OpenAIAdapter, OpenAIAssistantRegistry, PollingPolicy
from agentrun.providers.openai_adapter import summarize_tool, to_message, to_run
from agentrun.types import AgentDefinition, RunStatus, TokenUsage
from mock_provider import RecordingSleep, StaticToolExecutor


def api_run(status="in_progress", usage=None, last_error=None, required_action=None, run_id="run_1"):
  return SimpleNamespace(
    id=run_id,
    thread_id="thread_1",
    assistant_id="asst_1",
    status=status,
    created_at=100,
    started_at=101,
    completed_at=None,
    failed_at=None,
    cancelled_at=None,
    last_error=last_error,
    usage=usage,
    required_action=required_action,
  )


def api_message(message_id, role, text, created_at):
  blocks = [SimpleNamespace(type="text", text=SimpleNamespace(value=text))] if text is not None else []
  return SimpleNamespace(id=message_id, thread_id="thread_1", role=role, content=blocks, created_at=created_at)


def function_call(call_id, name, arguments):
  return SimpleNamespace(id=call_id, type="function", function=SimpleNamespace(name=name, arguments=arguments))


def not_found():
  request = httpx.Request("GET", "https://api.openai.com/v1/threads/thread_missing")
  return openai.NotFoundError("No thread found", response=httpx.Response(404, request=request), body=None)


def api_request(path):
  return httpx.Request("POST", f"https://api.openai.com/v1/{path}")


def status_error(error_class, status_code, message, path="threads"):
  return error_class(message, response=httpx.Response(status_code, request=api_request(path)), body=None)


def create_client():
  client = MagicMock()
  client.api_key = "sk-test"
  beta = client.beta
  for method in ("list", "create", "update"):
    setattr(beta.assistants, method, AsyncMock())
  for method in ("create", "retrieve"):
    setattr(beta.threads, method, AsyncMock())
  for method in ("create", "list"):
    setattr(beta.threads.messages, method, AsyncMock())
  for method in ("create", "retrieve", "list", "cancel", "submit_tool_outputs"):
    setattr(beta.threads.runs, method, AsyncMock())
  return client


def create_adapter(client, tools=None):
  return OpenAIAdapter(
    tools if tools is not None else StaticToolExecutor({}),
    client=client,
    policy=PollingPolicy(max_iterations=10),
    sleep=RecordingSleep(),
  )


class TestMapping:
  def test_to_run(self):
    required = SimpleNamespace(
      submit_tool_outputs=SimpleNamespace(
        tool_calls=[
          function_call("call_1", "read_file", '{"filePath": "a.txt"}'),
          SimpleNamespace(id="call_2", type="code_interpreter", function=None),
        ]
      )
    )
    run = to_run(
      api_run(
        "requires_action",
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=None, total_tokens=10),
        required_action=required,
      )
    )

    assert run.status == RunStatus.REQUIRES_ACTION
    assert run.agent_id == "asst_1"
    assert run.usage == TokenUsage(10, 0, 10)
    assert [(c.id, c.name, c.arguments) for c in run.tool_calls] == [("call_1", "read_file", {"filePath": "a.txt"})]

  def test_to_run_error(self):
    run = to_run(api_run("failed", last_error=SimpleNamespace(code="rate_limit_exceeded", message=None)))

    assert run.last_error.code == "rate_limit_exceeded"
    assert run.last_error.message == "Unknown error"
    assert run.usage is None
    assert run.tool_calls == []

  def test_to_message(self):
    message = to_message(api_message("msg_1", "assistant", "hello", 5))
    assert (message.id, message.role, message.content, message.created_at) == ("msg_1", "assistant", "hello", 5)

    assert to_message(api_message("msg_2", "assistant", None, 6)).content == ""

  def test_summarize_tool(self):
    tool = {
      "type": "function",
      "function": {"name": "read_file", "description": "Read a file", "parameters": {"type": "object"}},
    }

    assert summarize_tool(tool) == {
      "type": "function",
      "function": {"name": "read_file", "description": "Read a file"},
    }
    assert summarize_tool({"type": "code_interpreter"}) == {"type": "code_interpreter"}


class TestAssistantRegistry:
  async def test_find_by_name(self):
    client = create_client()
    tool = MagicMock()
    tool.model_dump.return_value = {
      "type": "function",
      "function": {"name": "read_file", "description": "Read", "parameters": {"type": "object", "strict": False}},
    }
    assistant = SimpleNamespace(id="asst_9", name="coder", instructions=None, tools=[tool], model="gpt-4o")
    other = SimpleNamespace(id="asst_1", name="reviewer", instructions="", tools=[], model="gpt-4o")
    client.beta.assistants.list.return_value = SimpleNamespace(data=[other, assistant])

    found = await OpenAIAssistantRegistry(client).find_by_name("coder")

    assert found.identity == "asst_9"
    assert found.instructions == ""
    assert found.tools == [{"type": "function", "function": {"name": "read_file", "description": "Read"}}]
    assert await OpenAIAssistantRegistry(client).find_by_name("missing") is None

  async def test_create_and_update(self):
    client = create_client()
    client.beta.assistants.create.return_value = SimpleNamespace(id="asst_new")
    registry = OpenAIAssistantRegistry(client)
    definition = AgentDefinition(name="coder", instructions="Code.", model="gpt-4o", description="Writes code")

    assert await registry.create(definition) == "asst_new"
    client.beta.assistants.create.assert_awaited_once_with(
      name="coder", instructions="Code.", model="gpt-4o", tools=[], description="Writes code"
    )

    assert await registry.update("asst_new", definition) == "asst_new"
    client.beta.assistants.update.assert_awaited_once_with("asst_new", instructions="Code.", model="gpt-4o", tools=[])

  async def test_agent_reconciled_through_the_cache(self):
    client = create_client()
    client.beta.assistants.list.return_value = SimpleNamespace(data=[])
    client.beta.assistants.create.return_value = SimpleNamespace(id="asst_new")
    adapter = create_adapter(client)
    definition = AgentDefinition(name="coder", instructions="Code.")

    assert await adapter.get_or_create_agent(definition) == "asst_new"
    assert await adapter.get_or_create_agent(definition) == "asst_new"

    client.beta.assistants.create.assert_awaited_once()
    client.beta.assistants.update.assert_not_awaited()


class TestOpenAIAdapter:
  def test_missing_api_key(self):
    with patch.dict(os.environ, {}, clear=True):
      with pytest.raises(ConfigurationError) as exc_info:
        OpenAIAdapter(StaticToolExecutor({}))

    assert exc_info.value.missing == ["OPENAI_API_KEY"]

  async def test_is_configured(self):
    adapter = create_adapter(create_client())
    assert await adapter.is_configured() is True

  async def test_system_messages_are_sent_as_user(self):
    client = create_client()
    client.beta.threads.messages.create.return_value = api_message("msg_1", "user", None, 1)
    adapter = create_adapter(client)

    message = await adapter.add_message("thread_1", "system", "Be brief.")

    client.beta.threads.messages.create.assert_awaited_once_with("thread_1", role="user", content="Be brief.")
    assert message.content == "Be brief."

  async def test_thread_not_found(self):
    client = create_client()
    client.beta.threads.retrieve.side_effect = not_found()
    adapter = create_adapter(client)

    with pytest.raises(NotFoundError):
      await adapter.retrieve_thread("thread_missing")

  async def test_run_not_found(self):
    client = create_client()
    client.beta.threads.runs.retrieve.side_effect = not_found()
    adapter = create_adapter(client)

    with pytest.raises(NotFoundError) as exc_info:
      await adapter.retrieve_run("thread_1", "run_missing")

    assert exc_info.value.context == {"thread_id": "thread_1"}

  async def test_create_thread(self):
    client = create_client()
    client.beta.threads.create.return_value = SimpleNamespace(id="thread_1", created_at=1, metadata={"a": "b"})
    adapter = create_adapter(client)

    thread = await adapter.create_thread({"a": "b"})

    assert (thread.id, thread.metadata) == ("thread_1", {"a": "b"})
    client.beta.threads.create.assert_awaited_once_with(metadata={"a": "b"})

  async def test_run_with_tool_calls(self):
    client = create_client()
    required = SimpleNamespace(
      submit_tool_outputs=SimpleNamespace(tool_calls=[function_call("call_1", "read_file", '{"filePath": "a.txt"}')])
    )
    client.beta.threads.runs.retrieve.side_effect = [
      api_run("requires_action", required_action=required),
      api_run("in_progress"),
      api_run("completed", usage=SimpleNamespace(prompt_tokens=40, completion_tokens=10, total_tokens=50)),
    ]
    client.beta.threads.runs.submit_tool_outputs.return_value = api_run("in_progress")
    client.beta.threads.messages.list.return_value = SimpleNamespace(
      data=[api_message("msg_2", "assistant", "The file says hi.", 20), api_message("msg_1", "user", "read a.txt", 10)]
    )
    tools = StaticToolExecutor({"read_file": "hi"})
    adapter = create_adapter(client, tools)

    result = await adapter.wait_for_run_completion("thread_1", "run_1")

    assert result.message == "The file says hi."
    assert result.token_usage == TokenUsage(40, 10, 50)
    client.beta.threads.runs.submit_tool_outputs.assert_awaited_once_with(
      "run_1", thread_id="thread_1", tool_outputs=[{"tool_call_id": "call_1", "output": "hi"}]
    )
    assert adapter.poller.sleep.delays == [0.2]

  async def test_list_and_cancel_runs(self):
    client = create_client()
    client.beta.threads.runs.list.return_value = SimpleNamespace(data=[api_run("completed", run_id="run_2")])
    client.beta.threads.runs.cancel.return_value = api_run("cancelling")
    adapter = create_adapter(client)

    assert [r.id for r in await adapter.list_runs("thread_1", limit=5)] == ["run_2"]
    client.beta.threads.runs.list.assert_awaited_once_with("thread_1", limit=5)
    assert (await adapter.cancel_run("thread_1", "run_1")).status == RunStatus.CANCELLING

  async def test_borrowed_client_is_not_closed(self):
    client = create_client()
    client.close = AsyncMock()
    adapter = create_adapter(client)

    await adapter.aclose()

    client.close.assert_not_awaited()


class TestErrorTranslation:
  """Tests for OpenAI SDK errors surfacing as orchestration errors."""

  async def test_connection_failure(self):
    client = create_client()
    client.beta.threads.runs.create.side_effect = openai.APIConnectionError(request=api_request("threads/thread_1/runs"))
    adapter = create_adapter(client)

    with pytest.raises(ProviderUnavailableError) as exc_info:
      await adapter.create_run("thread_1", "asst_1")

    assert exc_info.value.provider == "openai"
    assert exc_info.value.context == {"agent_id": "asst_1"}
    assert "status.openai.com" in str(exc_info.value)

  async def test_rejected_api_key(self):
    client = create_client()
    client.beta.threads.create.side_effect = status_error(openai.AuthenticationError, 401, "Incorrect API key provided")
    adapter = create_adapter(client)

    with pytest.raises(ConfigurationError) as exc_info:
      await adapter.create_thread()

    assert exc_info.value.missing == ["OPENAI_API_KEY"]
    assert exc_info.value.context == {"reason": "Incorrect API key provided"}

  async def test_rate_limit_while_polling(self):
    client = create_client()
    client.beta.threads.runs.retrieve.side_effect = status_error(openai.RateLimitError, 429, "Rate limit reached")
    adapter = create_adapter(client)

    with pytest.raises(ProviderUnavailableError) as exc_info:
      await adapter.wait_for_run_completion("thread_1", "run_1")

    assert "(429)" in exc_info.value.reason

  async def test_registry_errors(self):
    client = create_client()
    client.beta.assistants.list.side_effect = status_error(openai.InternalServerError, 500, "Server error", "assistants")

    with pytest.raises(ProviderUnavailableError):
      await OpenAIAssistantRegistry(client).find_by_name("coder")

  async def test_failed_turn_reported_to_the_session(self):
    client = create_client()
    client.beta.assistants.list.return_value = SimpleNamespace(data=[])
    client.beta.assistants.create.return_value = SimpleNamespace(id="asst_1")
    client.beta.threads.create.return_value = SimpleNamespace(id="thread_1", created_at=1, metadata={})
    client.beta.threads.messages.create.return_value = api_message("msg_1", "user", "hello", 1)
    client.beta.threads.runs.create.side_effect = openai.APIConnectionError(request=api_request("threads/thread_1/runs"))
    hub = SessionHub()
    sink = RecordingSink()
    hub.connect("s1", sink)
    service = ConversationService(create_adapter(client), hub)

    result = await service.send("s1", AgentDefinition(name="coder", instructions="Code."), "hello")

    assert not result.success
    assert result.thread_id == "thread_1"
    [error] = sink.named(names.ERROR)
    assert error["type"] == "ProviderUnavailableError"
