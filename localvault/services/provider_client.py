"""Authenticated HTTP client for Google data APIs.

Wraps an injected httpx.AsyncClient with:
- Bearer authentication from a token provider
- Per-request timeout
- Bounded retry with exponential backoff (timeouts, transport errors, 429, 5xx)
- Retry-After handling for rate-limited responses
- One forced token refresh when a request comes back 401
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import httpx

from localvault.exceptions import NotAuthenticated, PollingTimeout, ProviderApiError
from localvault.utils.retry import async_retry
from localvault.utils.security import redact_url, sanitize_log_message

logger = logging.getLogger(__name__)

# Called with force_refresh; returns a bearer token or None
TokenProvider = Callable[[bool], Awaitable[Optional[str]]]

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def _parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    """Extract the provider's message from a Google API error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("status") or response.reason_phrase)
    if isinstance(error, str):
        return str(body.get("error_description") or error)
    return response.reason_phrase


def _is_retryable(error: Exception) -> bool:
    return bool(getattr(error, "retryable", False))


class ProviderClient:
    """Google API client shared by all importers of one import run.

    Example:
        >>> client = ProviderClient(http, token_provider, timeout=30)
        >>> page = await client.get_json(f"{GMAIL_API}/messages", params={"maxResults": 100})
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: TokenProvider,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        access_token: Optional[str] = None,
    ):
        self.http = http_client
        self.token_provider = token_provider
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._token: Optional[str] = access_token

    async def _bearer(self, force_refresh: bool = False) -> str:
        if self._token is None or force_refresh:
            self._token = await self.token_provider(force_refresh)
        if not self._token:
            raise NotAuthenticated()
        return self._token

    async def _send_once(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]],
        json_body: Optional[dict[str, Any]],
        authenticated: bool,
    ) -> httpx.Response:
        refreshed = False
        while True:
            headers = {"Accept": "application/json"}
            if authenticated:
                headers["Authorization"] = f"Bearer {await self._bearer(force_refresh=refreshed)}"

            try:
                response = await self.http.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=headers,
                    timeout=self.timeout,
                )
            except httpx.TimeoutException as e:
                raise PollingTimeout(f"Request to {redact_url(url)} timed out") from e
            except httpx.TransportError as e:
                raise ProviderApiError(0, f"Transport error: {e}", retryable=True) from e

            if response.status_code == 401 and authenticated and not refreshed:
                logger.info("Provider rejected access token, forcing refresh")
                refreshed = True
                continue

            if response.status_code == 401 and authenticated:
                raise NotAuthenticated("Access token rejected by provider - please reconnect")

            if response.status_code >= 400:
                raise ProviderApiError(
                    response.status_code,
                    _error_message(response),
                    retryable=response.status_code in RETRYABLE_STATUS_CODES,
                    retry_after=_parse_retry_after(response),
                )

            return response

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        """Send a request with retry, returning the successful response.

        Raises:
            NotAuthenticated: If no token is available or it is rejected after refresh
            PollingTimeout: If the request timed out on every attempt
            ProviderApiError: On any other failure once retries are exhausted
        """
        send = async_retry(
            max_attempts=self.max_attempts,
            backoff_base=self.backoff_base,
            backoff_max=self.backoff_max,
            exceptions=(ProviderApiError,),
            should_retry=_is_retryable,
        )(self._send_once)
        try:
            return await send(method, url, params, json_body, authenticated)
        except ProviderApiError as e:
            logger.warning(
                "%s %s failed: %s", method, redact_url(url), sanitize_log_message(e.message)
            )
            raise

    async def get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """GET a JSON document."""
        response = await self.request("GET", url, params=params)
        return self._parse_json(response)

    async def post_json(
        self, url: str, json_body: dict[str, Any], params: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """POST a JSON body and return the JSON response."""
        response = await self.request("POST", url, params=params, json_body=json_body)
        return self._parse_json(response)

    async def get_bytes(
        self, url: str, params: Optional[dict[str, Any]] = None, authenticated: bool = True
    ) -> bytes:
        """GET raw content (downloads, exports, thumbnails)."""
        response = await self.request("GET", url, params=params, authenticated=authenticated)
        return response.content

    @staticmethod
    def _parse_json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise ProviderApiError(response.status_code, "Malformed JSON response") from e
        if not isinstance(body, dict):
            raise ProviderApiError(response.status_code, "Unexpected JSON response shape")
        return body
