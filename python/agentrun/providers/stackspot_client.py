"""
HTTP client for the StackSpot AI APIs.

Authenticates with the OAuth client credentials grant and calls the agent chat
endpoint. The access token is cached and refreshed 5 minutes before it expires;
a request rejected with HTTP 401 refreshes the token and is retried once.
"""

import asyncio
import json
import time
from typing import Any, Dict, Optional, Union

import httpx

from ..config import DEFAULT_STACKSPOT_AUTH_URL, DEFAULT_STACKSPOT_INFERENCE_URL, StackSpotCredentials
from ..errors import OrchestrationError, ProviderUnavailableError
from ..logs import get_logger
from .shared_clients import get_shared_http_client

logger = get_logger("adapter")

DEFAULT_TIMEOUT = 30.0
# Tokens are refreshed this many seconds before they expire
TOKEN_REFRESH_MARGIN = 5 * 60
# Lifetime assumed when the token response has no expires_in
DEFAULT_TOKEN_LIFETIME = 3600
USER_AGENT = "agentrun-stackspot/0.1"


class StackSpotAPIError(OrchestrationError):
  def __init__(self, status_code: int, detail: str, url: str):
    self.status_code = status_code
    self.detail = detail
    self.url = url
    super().__init__(context={"url": url})

  def _describe(self) -> str:
    return f"StackSpot API error ({self.status_code}): {self.detail}"


def _error_detail(response: httpx.Response) -> str:
  text = response.text
  try:
    body = json.loads(text)
  except ValueError:
    return text or response.reason_phrase
  if isinstance(body, dict):
    return str(body.get("message") or body.get("error") or text)
  return text


class StackSpotClient:
  def __init__(
    self,
    credentials: StackSpotCredentials,
    http_client: Optional[httpx.AsyncClient] = None,
    auth_url: str = DEFAULT_STACKSPOT_AUTH_URL,
    inference_url: str = DEFAULT_STACKSPOT_INFERENCE_URL,
    timeout: float = DEFAULT_TIMEOUT,
    clock=time.time,
  ):
    self.credentials = credentials
    self.auth_url = auth_url.rstrip("/")
    self.inference_url = inference_url.rstrip("/")
    self.timeout = timeout
    self.clock = clock
    self._http = http_client
    self._token: Optional[str] = None
    self._token_expires_at = 0.0
    self._token_lock = asyncio.Lock()

  @property
  def token_url(self) -> str:
    return f"{self.auth_url}/{self.credentials.realm}/oidc/oauth/token"

  async def _client(self) -> httpx.AsyncClient:
    if self._http is None:
      self._http = await get_shared_http_client()
    return self._http

  def invalidate_token(self) -> None:
    self._token = None
    self._token_expires_at = 0.0

  async def get_access_token(self) -> str:
    if self._token and self._token_expires_at > self.clock() + TOKEN_REFRESH_MARGIN:
      return self._token

    async with self._token_lock:
      if self._token and self._token_expires_at > self.clock() + TOKEN_REFRESH_MARGIN:
        return self._token
      await self._refresh_token()
      return self._token

  async def _refresh_token(self) -> None:
    client = await self._client()
    logger.debug(f"Requesting StackSpot access token from {self.token_url}")
    response = await client.post(
      self.token_url,
      data={
        "grant_type": "client_credentials",
        "client_id": self.credentials.client_id,
        "client_secret": self.credentials.client_secret,
      },
      headers={"User-Agent": USER_AGENT},
      timeout=self.timeout,
    )
    if response.status_code != 200:
      logger.error(f"StackSpot authentication failed with status {response.status_code}")
      raise StackSpotAPIError(response.status_code, f"authentication failed: {_error_detail(response)}", self.token_url)

    data = response.json()
    expires_in = data.get("expires_in") or DEFAULT_TOKEN_LIFETIME
    self._token = data["access_token"]
    self._token_expires_at = self.clock() + expires_in
    logger.debug(f"Obtained StackSpot access token (expires in {expires_in}s)")

  async def request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Union[Dict[str, Any], str]:
    """
    Send an authenticated request to the inference API.

    :return: The decoded JSON body, or the raw text when the body is not JSON
    :raises StackSpotAPIError: for any non-2xx answer
    """
    url = f"{self.inference_url}{path}"
    client = await self._client()

    for attempt in (1, 2):
      token = await self.get_access_token()
      response = await client.request(
        method,
        url,
        json=body,
        headers={"Authorization": f"Bearer {token}", "User-Agent": USER_AGENT},
        timeout=self.timeout,
      )
      if response.status_code == 401 and attempt == 1:
        logger.info("StackSpot rejected the access token, refreshing it")
        self.invalidate_token()
        continue
      break

    if response.is_success:
      try:
        return response.json()
      except ValueError:
        return response.text

    detail = _error_detail(response)
    logger.error(f"StackSpot {method} {path} failed with status {response.status_code}: {detail}")
    raise StackSpotAPIError(response.status_code, detail, url)

  async def chat(self, agent_id: str, prompt: str) -> Union[Dict[str, Any], str]:
    """
    Send ``prompt`` to a StackSpot agent.

    :raises ProviderUnavailableError: when access to the agent is denied (HTTP 403)
    """
    try:
      return await self.request(
        "POST",
        f"/v1/agent/{agent_id}/chat",
        {
          "user_prompt": prompt,
          "streaming": False,
          "stackspot_knowledge": False,
          "return_ks_in_response": True,
        },
      )
    except StackSpotAPIError as e:
      if e.status_code != 403:
        raise
      raise ProviderUnavailableError(
        "stackspot",
        f'access to agent "{agent_id}" was denied (HTTP 403): {e.detail}',
        [
          f'Check that agent "{agent_id}" exists in your StackSpot workspace',
          "Check that the client credentials are allowed to use this agent",
          "Set stackspotAgentId on the agent definition to the id shown in the StackSpot console",
        ],
        context={"agent_id": agent_id},
      ) from e
