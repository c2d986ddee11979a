"""
Exception classes for run orchestration.

Fatal conditions are raised as one of the typed errors below. Each error carries
a ``context`` dictionary and a suggestion for resolving it, both rendered into
the message.

Tool failures are not fatal: they travel back to the model as ordinary tool
outputs that start with one of the ``ERROR_MARKERS`` prefixes.
"""

from typing import Optional, Dict, Any, List


# Tool outputs starting with one of these prefixes are reported as failed
ERROR_MARKERS = ("Error:", "Tool execution failed:")


def is_error_output(output: str) -> bool:
  return output.startswith(ERROR_MARKERS)


class OrchestrationError(Exception):
  """
  Base class for errors raised by the orchestration engine.

  Attributes:
    context: Additional context about the failing operation
    message: Human-readable error message
  """

  def __init__(self, message: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
    self.context = context or {}
    if message is None:
      message = self._build_message()
    self.message = message
    super().__init__(message)

  def _describe(self) -> str:
    return "Orchestration failed."

  def _build_message(self) -> str:
    """Build a helpful error message with context."""
    parts = [self._describe()]

    if self.context:
      context_parts = [f"{k}: {v}" for k, v in self.context.items() if v is not None]
      if context_parts:
        parts.append(f"Context: {', '.join(context_parts)}.")

    suggestion = self._get_suggestion()
    if suggestion:
      parts.append(suggestion)

    return " ".join(parts)

  def _get_suggestion(self) -> str:
    return ""


class ConfigurationError(OrchestrationError):
  """
  Raised when credentials or an agent identity required by a provider are missing.

  Raised before any network call is made.
  """

  def __init__(self, provider: str, missing: List[str], context: Optional[Dict[str, Any]] = None):
    self.provider = provider
    self.missing = missing
    super().__init__(context=context)

  def _describe(self) -> str:
    return f"Provider '{self.provider}' is not configured: missing {', '.join(self.missing)}."

  def _get_suggestion(self) -> str:
    return f"Set {', '.join(self.missing)} in the environment or pass them explicitly."


class ProviderUnavailableError(OrchestrationError):
  """
  Raised when a pre-flight reachability check against a provider fails.

  The message lists the steps that usually fix the problem.
  """

  def __init__(self, provider: str, reason: str, remediation: List[str], context: Optional[Dict[str, Any]] = None):
    self.provider = provider
    self.reason = reason
    self.remediation = remediation
    super().__init__(context=context)

  def _describe(self) -> str:
    return f"Provider '{self.provider}' is unavailable: {self.reason}."

  def _get_suggestion(self) -> str:
    steps = "\n".join(f"  {i}. {step}" for i, step in enumerate(self.remediation, start=1))
    return f"To fix this:\n{steps}" if steps else ""


class RunFailedError(OrchestrationError):
  """
  Raised when a run ends in a failed state.

  ``code`` and ``provider_message`` are the provider's values, unmodified.
  """

  def __init__(self, run_id: str, code: Optional[str], message: Optional[str], context: Optional[Dict[str, Any]] = None):
    self.run_id = run_id
    self.code = code
    self.provider_message = message
    super().__init__(context=context)

  def _describe(self) -> str:
    return f"Run {self.run_id} failed: {self.code or 'unknown_error'}: {self.provider_message or 'no details'}"


class RunCancelledError(OrchestrationError):
  def __init__(self, run_id: str, context: Optional[Dict[str, Any]] = None):
    self.run_id = run_id
    super().__init__(context=context)

  def _describe(self) -> str:
    return f"Run {self.run_id} was cancelled before it completed."


class RunTimeoutError(OrchestrationError, TimeoutError):
  """
  Raised when the poller runs out of iterations before the run reaches a terminal state.

  Example:
    try:
      result = await adapter.wait_for_run_completion(thread_id, run_id)
    except RunTimeoutError as e:
      print(f"Gave up after {e.iterations} polls, last status {e.last_status}")
  """

  def __init__(self, run_id: str, iterations: int, last_status: Optional[str] = None):
    self.run_id = run_id
    self.iterations = iterations
    self.last_status = last_status
    super().__init__(context={"last_status": last_status})

  def _describe(self) -> str:
    return f"Run {self.run_id} did not finish within {self.iterations} polling iterations."

  def _get_suggestion(self) -> str:
    return "Consider raising AGENTRUN_POLL_MAX_ITERATIONS or cancelling the run."


class NotFoundError(OrchestrationError):
  def __init__(self, kind: str, identifier: str, context: Optional[Dict[str, Any]] = None):
    self.kind = kind
    self.identifier = identifier
    super().__init__(context=context)

  def _describe(self) -> str:
    return f"{self.kind.capitalize()} not found: {self.identifier}"


class UnknownToolError(OrchestrationError):
  """Raised when the model asks for a function that was never registered."""

  def __init__(self, name: str, available: Optional[List[str]] = None):
    self.name = name
    self.available = available or []
    super().__init__(context={"available": ", ".join(self.available) or None})

  def _describe(self) -> str:
    return f"Unknown tool: '{self.name}'."


class ToolOutputMismatchError(OrchestrationError):
  """Raised when submitted tool outputs do not answer exactly the pending tool calls."""

  def __init__(self, run_id: str, expected: List[str], received: List[str]):
    self.run_id = run_id
    self.expected = expected
    self.received = received
    super().__init__(context={"expected": ", ".join(expected), "received": ", ".join(received)})

  def _describe(self) -> str:
    return f"Tool outputs for run {self.run_id} do not match its pending tool calls."
