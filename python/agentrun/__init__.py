from .types import (
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
from .errors import (
  ConfigurationError,
  NotFoundError,
  OrchestrationError,
  ProviderUnavailableError,
  RunCancelledError,
  RunFailedError,
  RunTimeoutError,
  ToolOutputMismatchError,
  UnknownToolError,
)
from .events import EventSink, QueueSink, RecordingSink, SessionHub
from .tools import Tool, ToolExecutor, ToolRegistry
from .usage import TokenAccountant, UsageLedger, estimate_cost, estimate_usage
from .providers import ProviderAdapter, PollingPolicy, create_adapter
from .conversation import ConversationService, TurnResult

__all__ = [
  "AgentDefinition",
  "CachedAgentDescriptor",
  "Message",
  "Role",
  "Run",
  "RunError",
  "RunResult",
  "RunStatus",
  "Thread",
  "TokenUsage",
  "ToolCall",
  "ToolOutput",
  "ConfigurationError",
  "NotFoundError",
  "OrchestrationError",
  "ProviderUnavailableError",
  "RunCancelledError",
  "RunFailedError",
  "RunTimeoutError",
  "ToolOutputMismatchError",
  "UnknownToolError",
  "EventSink",
  "QueueSink",
  "RecordingSink",
  "SessionHub",
  "Tool",
  "ToolExecutor",
  "ToolRegistry",
  "TokenAccountant",
  "UsageLedger",
  "estimate_cost",
  "estimate_usage",
  "ProviderAdapter",
  "PollingPolicy",
  "create_adapter",
  "ConversationService",
  "TurnResult",
]
