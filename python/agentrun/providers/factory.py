from typing import Any, Optional

from ..config import SUPPORTED_PROVIDERS, get_llm_provider
from ..errors import ConfigurationError
from ..logs import get_logger
from ..tools.protocol import ToolExecutor
from .ollama_adapter import OllamaAdapter
from .openai_adapter import OpenAIAdapter
from .protocol import ProviderAdapter
from .stackspot_adapter import StackSpotAdapter

logger = get_logger("adapter")

ADAPTERS = {
  "openai": OpenAIAdapter,
  "ollama": OllamaAdapter,
  "stackspot": StackSpotAdapter,
}


def create_adapter(tool_executor: ToolExecutor, provider: Optional[str] = None, **options: Any) -> ProviderAdapter:
  """
  Build the adapter for ``provider``.

  :param tool_executor: Executes the function calls requested during runs
  :param provider: One of openai, ollama or stackspot; defaults to AGENTRUN_LLM_PROVIDER
  :param options: Passed to the adapter's constructor (api_key, base_url, credentials, policy, ...)
  :raises ConfigurationError: the provider is unknown or its credentials are missing
  """
  name = (provider or get_llm_provider()).strip().lower()
  adapter_class = ADAPTERS.get(name)
  if adapter_class is None:
    raise ConfigurationError(
      name,
      ["AGENTRUN_LLM_PROVIDER"],
      context={"supported": ", ".join(SUPPORTED_PROVIDERS)},
    )

  logger.info(f"Using the {name} provider")
  return adapter_class(tool_executor, **options)
