"""
Data model shared by every provider adapter.

Adapters translate their provider's payloads into these dataclasses so the
poller, the stores and the conversation service never see provider types.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


def now() -> int:
  return int(time.time())


def new_id(prefix: str) -> str:
  return f"{prefix}_{uuid.uuid4().hex[:24]}"


class Role(str, Enum):
  USER = "user"
  ASSISTANT = "assistant"
  SYSTEM = "system"


class RunStatus(str, Enum):
  QUEUED = "queued"
  IN_PROGRESS = "in_progress"
  REQUIRES_ACTION = "requires_action"
  CANCELLING = "cancelling"
  CANCELLED = "cancelled"
  FAILED = "failed"
  COMPLETED = "completed"
  INCOMPLETE = "incomplete"
  EXPIRED = "expired"

  @property
  def is_terminal(self) -> bool:
    return self in TERMINAL_STATUSES

  @property
  def is_active(self) -> bool:
    return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset(
  {RunStatus.COMPLETED, RunStatus.INCOMPLETE, RunStatus.FAILED, RunStatus.EXPIRED, RunStatus.CANCELLED}
)
ACTIVE_STATUSES = frozenset({RunStatus.QUEUED, RunStatus.IN_PROGRESS, RunStatus.REQUIRES_ACTION})

# Position of each status along the run lifecycle; a run never moves to a lower rank
_STATUS_RANK = {
  RunStatus.QUEUED: 0,
  RunStatus.IN_PROGRESS: 1,
  RunStatus.REQUIRES_ACTION: 1,
  RunStatus.CANCELLING: 2,
  RunStatus.CANCELLED: 3,
  RunStatus.FAILED: 3,
  RunStatus.COMPLETED: 3,
  RunStatus.INCOMPLETE: 3,
  RunStatus.EXPIRED: 3,
}


def can_transition(current: RunStatus, target: RunStatus) -> bool:
  if current.is_terminal:
    return False
  if current == RunStatus.CANCELLING:
    return target.is_terminal
  return _STATUS_RANK[target] >= _STATUS_RANK[current]


@dataclass
class TokenUsage:
  prompt_tokens: int = 0
  completion_tokens: int = 0
  total_tokens: int = 0

  def __post_init__(self):
    if min(self.prompt_tokens, self.completion_tokens, self.total_tokens) < 0:
      raise ValueError(f"Token counts must be non-negative: {self}")

  def __add__(self, other: "TokenUsage") -> "TokenUsage":
    return TokenUsage(
      prompt_tokens=self.prompt_tokens + other.prompt_tokens,
      completion_tokens=self.completion_tokens + other.completion_tokens,
      total_tokens=self.total_tokens + other.total_tokens,
    )

  @property
  def is_empty(self) -> bool:
    return self.total_tokens == 0 and self.prompt_tokens == 0 and self.completion_tokens == 0

  def to_dict(self) -> Dict[str, int]:
    return {
      "promptTokens": self.prompt_tokens,
      "completionTokens": self.completion_tokens,
      "totalTokens": self.total_tokens,
    }


@dataclass
class Thread:
  id: str
  created_at: int = field(default_factory=now)
  metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Message:
  id: str
  thread_id: str
  role: str
  content: str
  created_at: int = field(default_factory=now)

  @property
  def is_assistant(self) -> bool:
    return self.role == Role.ASSISTANT.value


@dataclass
class ToolCall:
  """
  A function call requested by the model while a run is in ``requires_action``.

  ``arguments`` is parsed from ``raw_arguments`` on a best-effort basis; when the
  string is not a JSON object it is wrapped as ``{"raw": raw_arguments}``.
  """

  id: str
  name: str
  raw_arguments: str = ""
  arguments: Dict[str, Any] = field(default=None)

  def __post_init__(self):
    if self.arguments is None:
      self.arguments = parse_arguments(self.raw_arguments)


def parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
  if raw is None or raw.strip() == "":
    return {}
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError:
    return {"raw": raw}
  if not isinstance(parsed, dict):
    return {"raw": raw}
  return parsed


@dataclass
class ToolOutput:
  tool_call_id: str
  output: str


@dataclass
class RunError:
  code: str
  message: str


@dataclass
class Run:
  id: str
  thread_id: str
  agent_id: str
  status: RunStatus = RunStatus.QUEUED
  created_at: int = field(default_factory=now)
  started_at: Optional[int] = None
  completed_at: Optional[int] = None
  failed_at: Optional[int] = None
  cancelled_at: Optional[int] = None
  last_error: Optional[RunError] = None
  usage: Optional[TokenUsage] = None
  tool_calls: List[ToolCall] = field(default_factory=list)

  def transition(self, status: RunStatus, error: Optional[RunError] = None) -> None:
    """
    Move the run forward to ``status``, stamping the matching timestamp.

    :raises ValueError: when the transition would move the run backwards
    """
    if status == self.status:
      return
    if not can_transition(self.status, status):
      raise ValueError(f"Run {self.id} cannot move from {self.status.value} to {status.value}")

    timestamp = now()
    self.status = status
    if status == RunStatus.IN_PROGRESS and self.started_at is None:
      self.started_at = timestamp
    elif status in (RunStatus.COMPLETED, RunStatus.INCOMPLETE):
      self.completed_at = timestamp
    elif status in (RunStatus.FAILED, RunStatus.EXPIRED):
      self.failed_at = timestamp
      self.last_error = error or RunError(code="server_error", message="Run failed")
    elif status == RunStatus.CANCELLED:
      self.cancelled_at = timestamp

    if status != RunStatus.REQUIRES_ACTION:
      self.tool_calls = []


@dataclass
class RunResult:
  message: str
  token_usage: TokenUsage


@dataclass
class AgentDefinition:
  """
  A named bundle of instructions, allowed tools and model.

  ``remote_id`` is only used by providers whose agents are provisioned outside of
  this process.
  """

  name: str
  instructions: str = ""
  tools: List[Dict[str, Any]] = field(default_factory=list)
  model: str = "gpt-4-turbo-preview"
  description: Optional[str] = None
  remote_id: Optional[str] = None

  @classmethod
  def from_dict(cls, data: Dict[str, Any]) -> "AgentDefinition":
    """Build a definition from a stored agent record, accepting camelCase keys."""
    return cls(
      name=data["name"],
      instructions=data.get("instructions", ""),
      tools=list(data.get("tools") or []),
      model=data.get("model") or "gpt-4-turbo-preview",
      description=data.get("description"),
      remote_id=data.get("remote_id") or data.get("stackspotAgentId"),
    )


@dataclass
class CachedAgentDescriptor:
  name: str
  instructions: str
  tools: List[Dict[str, Any]]
  model: str
  identity: str

  @classmethod
  def of(cls, definition: AgentDefinition, identity: str) -> "CachedAgentDescriptor":
    return cls(
      name=definition.name,
      instructions=definition.instructions,
      tools=[dict(tool) for tool in definition.tools],
      model=definition.model,
      identity=identity,
    )


def newest_first(messages: Iterable[Message]) -> List[Message]:
  """Sort messages newest first; ties keep the order they were given in."""
  indexed = list(enumerate(messages))
  indexed.sort(key=lambda pair: (-pair[1].created_at, pair[0]))
  return [message for _, message in indexed]
