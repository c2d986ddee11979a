import os
from unittest.mock import patch

import pytest

from agentrun.config import StackSpotCredentials
from agentrun.errors import ConfigurationError
from agentrun.providers import OllamaAdapter, OpenAIAdapter, ProviderAdapter, StackSpotAdapter, create_adapter
from mock_provider import StaticToolExecutor


class TestCreateAdapter:
  def test_provider_from_environment(self):
    with patch.dict(os.environ, {"AGENTRUN_LLM_PROVIDER": "ollama"}, clear=True):
      adapter = create_adapter(StaticToolExecutor({}))

    assert isinstance(adapter, OllamaAdapter)
    assert isinstance(adapter, ProviderAdapter)

  def test_explicit_provider_and_options(self):
    adapter = create_adapter(
      StaticToolExecutor({}),
      "StackSpot",
      credentials=StackSpotCredentials(client_id="id", client_secret="secret"),
    )

    assert isinstance(adapter, StackSpotAdapter)

  def test_openai_with_key(self):
    with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}, clear=True):
      adapter = create_adapter(StaticToolExecutor({}))

    assert isinstance(adapter, OpenAIAdapter)
    assert adapter.provider == "openai"

  def test_unknown_provider(self):
    with pytest.raises(ConfigurationError) as exc_info:
      create_adapter(StaticToolExecutor({}), "bedrock")

    assert exc_info.value.provider == "bedrock"
    assert exc_info.value.context == {"supported": "openai, ollama, stackspot"}

  def test_missing_credentials_surface(self):
    with patch.dict(os.environ, {}, clear=True):
      with pytest.raises(ConfigurationError) as exc_info:
        create_adapter(StaticToolExecutor({}), "stackspot")

    assert exc_info.value.missing == ["STACKSPOT_CLIENT_ID", "STACKSPOT_CLIENT_SECRET"]
