"""
One conversational turn, end to end.

``ConversationService`` is what a chat surface calls for every user message. It
maps the session to a provider thread, reconciles the agent, adds the message,
runs the agent to completion and reports progress, the answer and the token
totals to the session and to everyone monitoring it.
"""

import asyncio
import re
import time
from dataclasses import dataclass, replace
from typing import Dict, Optional

from .errors import OrchestrationError
from .events import names
from .events.fanout import SessionHub
from .logs import get_logger
from .providers.protocol import ProviderAdapter
from .types import AgentDefinition, Role, TokenUsage
from .usage import UsageLedger, estimate_cost

logger = get_logger("conversation")

_VARIABLE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_instructions(template: str, **variables: str) -> str:
  """
  Replace ``{{ name }}`` placeholders with the matching keyword argument.

  Placeholders without a value are left untouched.
  """
  if not template:
    return template
  return _VARIABLE.sub(lambda m: str(variables[m.group(1)]) if variables.get(m.group(1)) is not None else m.group(0), template)


@dataclass
class TurnResult:
  success: bool
  thread_id: Optional[str] = None
  run_id: Optional[str] = None
  message: Optional[str] = None
  token_usage: Optional[TokenUsage] = None
  accumulated_usage: Optional[TokenUsage] = None
  error: Optional[str] = None


class ConversationService:
  def __init__(self, adapter: ProviderAdapter, hub: SessionHub, ledger: Optional[UsageLedger] = None):
    self.adapter = adapter
    self.hub = hub
    self.ledger = ledger or UsageLedger()
    self._threads: Dict[str, str] = {}
    self._lock = asyncio.Lock()

  def thread_of(self, session_id: str) -> Optional[str]:
    return self._threads.get(session_id)

  def bind(self, session_id: str, thread_id: str) -> None:
    """Resume an existing thread for ``session_id``."""
    self._threads[session_id] = thread_id

  def forget(self, session_id: str) -> Optional[str]:
    return self._threads.pop(session_id, None)

  async def thread_for(self, session_id: str) -> str:
    async with self._lock:
      thread_id = self._threads.get(session_id)
      if thread_id is not None:
        return thread_id
      thread = await self.adapter.create_thread({"session_id": session_id})
      self._threads[session_id] = thread.id

    logger.info(f"Created thread {thread.id} for session {session_id}")
    self.hub.broadcast(session_id, names.THREAD_CREATED, {"threadId": thread.id})
    return thread.id

  async def send(self, session_id: str, agent: AgentDefinition, text: str) -> TurnResult:
    """
    Run ``agent`` on ``text`` in the session's thread and report the outcome.

    Orchestration errors are reported to the session as ``error`` events and
    returned in the result; anything else propagates.
    """
    thread_id = self._threads.get(session_id)
    run_id = None
    try:
      thread_id = await self.thread_for(session_id)

      definition = replace(agent, instructions=render_instructions(agent.instructions, input_user=text))
      agent_id = await self.adapter.get_or_create_agent(definition)
      self.hub.broadcast(
        session_id,
        names.AGENT_SELECTED,
        {"agentName": agent.name, "description": agent.description, "llmProvider": self.adapter.provider},
      )
      logger.info(f"Agent '{agent.name}' ({agent_id}) selected for session {session_id}")

      user_message = await self.adapter.add_message(thread_id, Role.USER.value, text)
      self.hub.broadcast(
        session_id,
        names.AGENT_MESSAGE,
        {
          "type": names.MESSAGE_USER,
          "message": text,
          "messageId": user_message.id,
          "details": {"threadId": thread_id, "role": Role.USER.value, "createdAt": user_message.created_at},
        },
      )

      start = time.time()
      run = await self.adapter.create_run(thread_id, agent_id)
      run_id = run.id
      execution = {"agentName": agent.name, "agentId": agent_id, "runId": run.id, "threadId": thread_id}
      self.hub.broadcast(session_id, names.AGENT_EXECUTION_START, {**execution, "startTime": int(start * 1000)})

      result = await self.adapter.wait_for_run_completion(thread_id, run.id, self.hub.sink_for(session_id))

      end = time.time()
      duration = int((end - start) * 1000)
      self.hub.broadcast(
        session_id,
        names.AGENT_EXECUTION_END,
        {
          **execution,
          "startTime": int(start * 1000),
          "endTime": int(end * 1000),
          "duration": duration,
          "durationSeconds": f"{duration / 1000:.2f}",
        },
      )

      accumulated = await self.ledger.add(thread_id, result.token_usage)
      self.hub.broadcast(
        session_id,
        names.RESPONSE,
        {
          "message": result.message,
          "originalMessage": text,
          "agentName": agent.name,
          "llmProvider": self.adapter.provider,
          "tokenUsage": result.token_usage.to_dict(),
          "accumulatedTokenUsage": accumulated.to_dict(),
          "cost": estimate_cost(result.token_usage, agent.model),
        },
      )
      logger.info(
        f"Run {run.id} answered in {duration}ms using {result.token_usage.total_tokens} tokens "
        f"({accumulated.total_tokens} in thread {thread_id})"
      )
      return TurnResult(
        success=True,
        thread_id=thread_id,
        run_id=run.id,
        message=result.message,
        token_usage=result.token_usage,
        accumulated_usage=accumulated,
      )
    except OrchestrationError as e:
      logger.error(f"Turn failed for session {session_id}: {e}")
      self.hub.broadcast(session_id, names.ERROR, {"message": str(e), "type": type(e).__name__})
      return TurnResult(success=False, thread_id=thread_id, run_id=run_id, error=str(e))
