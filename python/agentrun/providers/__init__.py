from .protocol import ProviderAdapter
from .poller import NO_RESPONSE_MESSAGE, PollingPolicy, RunCompletionPoller, select_response
from .local_runs import LocalRunEngine, StepResult
from .openai_adapter import OpenAIAdapter, OpenAIAssistantRegistry
from .ollama_adapter import OllamaAdapter, OllamaAPIError
from .stackspot_client import StackSpotAPIError, StackSpotClient
from .stackspot_adapter import StackSpotAdapter
from .factory import create_adapter

__all__ = [
  "ProviderAdapter",
  "NO_RESPONSE_MESSAGE",
  "PollingPolicy",
  "RunCompletionPoller",
  "select_response",
  "LocalRunEngine",
  "StepResult",
  "OpenAIAdapter",
  "OpenAIAssistantRegistry",
  "OllamaAdapter",
  "OllamaAPIError",
  "StackSpotAPIError",
  "StackSpotClient",
  "StackSpotAdapter",
  "create_adapter",
]
