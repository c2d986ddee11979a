"""
Environment configuration for agentrun.

Every setting has a getter that reads the environment on each call, so tests and
long running processes pick up changes without a restart. Explicit arguments
passed to adapters always take precedence over these values.

Environment Variables:
- AGENTRUN_LLM_PROVIDER: Provider used by create_adapter() when none is given (default: openai)
- AGENTRUN_POLL_MAX_ITERATIONS: Polling iterations before a run is considered timed out (default: 100)
- OPENAI_API_KEY / OPENAI_API_KEY_FILE: OpenAI credentials
- OLLAMA_BASE_URL: Ollama server URL (default: http://localhost:11434)
- OLLAMA_DEFAULT_MODEL: Model used when an agent asks for an OpenAI-only model (default: llama2)
- STACKSPOT_CLIENT_ID / STACKSPOT_CLIENT_ID_FILE: StackSpot OAuth client id
- STACKSPOT_CLIENT_SECRET / STACKSPOT_CLIENT_SECRET_FILE: StackSpot OAuth client secret
- STACKSPOT_REALM: StackSpot identity realm (default: stackspot-freemium)

The *_FILE variants point at a file holding the value, for secrets mounted as volumes.
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "openai"
SUPPORTED_PROVIDERS = ("openai", "ollama", "stackspot")

DEFAULT_POLL_MAX_ITERATIONS = 100

DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llama2"

DEFAULT_STACKSPOT_REALM = "stackspot-freemium"
DEFAULT_STACKSPOT_AUTH_URL = "https://idm.stackspot.com"
DEFAULT_STACKSPOT_INFERENCE_URL = "https://genai-inference-app.stackspot.com"


@dataclass
class StackSpotCredentials:
  client_id: Optional[str]
  client_secret: Optional[str]
  realm: str = DEFAULT_STACKSPOT_REALM

  def missing(self) -> List[str]:
    names = []
    if not self.client_id:
      names.append("STACKSPOT_CLIENT_ID")
    if not self.client_secret:
      names.append("STACKSPOT_CLIENT_SECRET")
    return names


def _read_secret(name: str) -> Optional[str]:
  """
  Read a value from ``name`` or from the file named by ``name_FILE``.

  :param name: Environment variable name
  :return: The value, or None when neither is set or the file cannot be read
  """
  if value := os.environ.get(name):
    return value

  if path := os.environ.get(f"{name}_FILE"):
    try:
      with open(path, "r") as f:
        value = f.read().strip()
        if value:
          return value
        logger.warning(f"Secret file for {name} is empty: {path}")
    except (IOError, OSError) as e:
      logger.warning(f"Failed to read {name} from {path}: {e}")

  return None


def get_llm_provider() -> str:
  provider = os.environ.get("AGENTRUN_LLM_PROVIDER", DEFAULT_PROVIDER).strip().lower()
  return provider or DEFAULT_PROVIDER


def get_poll_max_iterations() -> int:
  raw = os.environ.get("AGENTRUN_POLL_MAX_ITERATIONS")
  if not raw:
    return DEFAULT_POLL_MAX_ITERATIONS
  try:
    value = int(raw)
  except ValueError:
    logger.warning(f"Ignoring invalid AGENTRUN_POLL_MAX_ITERATIONS={raw!r}")
    return DEFAULT_POLL_MAX_ITERATIONS
  if value < 1:
    logger.warning(f"Ignoring non-positive AGENTRUN_POLL_MAX_ITERATIONS={value}")
    return DEFAULT_POLL_MAX_ITERATIONS
  return value


def get_openai_api_key() -> Optional[str]:
  return _read_secret("OPENAI_API_KEY")


def get_ollama_base_url() -> str:
  return os.environ.get("OLLAMA_BASE_URL", DEFAULT_OLLAMA_BASE_URL).rstrip("/")


def get_ollama_default_model() -> str:
  return os.environ.get("OLLAMA_DEFAULT_MODEL", DEFAULT_OLLAMA_MODEL)


def get_stackspot_credentials() -> StackSpotCredentials:
  return StackSpotCredentials(
    client_id=_read_secret("STACKSPOT_CLIENT_ID"),
    client_secret=_read_secret("STACKSPOT_CLIENT_SECRET"),
    realm=os.environ.get("STACKSPOT_REALM") or DEFAULT_STACKSPOT_REALM,
  )
