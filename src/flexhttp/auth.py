"""Authentication hooks.

Authentication is expressed with the ordinary hook pipeline: a pre-request
hook injects the ``Authorization`` header, and :class:`TokenRefreshHook`
renews an expired token on a 401 and re-issues the request.
"""

import asyncio
import time
from typing import Protocol

import httpx

from .exceptions import AuthError, ConfigurationError
from .hooks import CONTINUE, PostRequestHookResult, make_new_request
from .log_config import logger
from .models import Response
from .types import RequestParameters


def bearer(token: str) -> str:
    return f"Bearer {token}"


class BearerTokenAuth:
    """Pre-request hook adding a static Bearer token.

    Suitable for APIs that use a pre-issued, long-lived API token (e.g. a
    personal access token).
    """

    def __init__(self, token: str | None):
        """Initializes BearerTokenAuth with the provided API token.

        Raises:
            ConfigurationError: If the token is None or empty.
        """
        if not token:
            raise ConfigurationError("BearerTokenAuth requires a non-empty 'token'.")
        self._token: str = token
        logger.debug("BearerTokenAuth initialized.")

    def execute(self, request_parameters: RequestParameters) -> RequestParameters:
        logger.trace("Authenticating request using BearerTokenAuth.")
        return request_parameters.with_headers({"Authorization": bearer(self._token)})


class RefreshableAuth(Protocol):
    async def refresh(self, stale_token: str | None) -> str: ...


class ClientCredentialsAuth:
    """Pre-request hook using the OAuth2 Client Credentials Grant.

    A Bearer token is fetched from ``token_url`` with the client id and
    secret, cached until shortly before its ``expires_in``, and added to
    every request. Pair it with :meth:`refresh_hook` to recover from tokens
    revoked before they expire.

    Attributes:
        _access_token: The currently active access token.
        _expires_at: ``time.monotonic()`` deadline of the token, if known.
        _token_client: Internal httpx.AsyncClient for fetching the token.
        _fetch_lock: Prevents concurrent token requests.
    """

    EXPIRY_MARGIN_SECONDS = 30.0
    """Tokens are renewed this long before their reported expiry."""

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        token_url: str | None,
        *,
        token_client: httpx.AsyncClient | None = None,
    ):
        if not all([client_id, client_secret, token_url]):
            raise ConfigurationError(
                "ClientCredentialsAuth requires 'client_id', 'client_secret', and 'token_url'."
            )
        assert client_id is not None and client_secret is not None and token_url is not None
        self._client_id: str = client_id
        self._client_secret: str = client_secret
        self._token_url: str = token_url
        self._access_token: str | None = None
        self._expires_at: float | None = None
        self._should_close_client = token_client is None
        self._token_client = token_client
        self._fetch_lock = asyncio.Lock()
        logger.debug("ClientCredentialsAuth initialized.")

    @property
    def token_valid(self) -> bool:
        if self._access_token is None:
            return False
        return self._expires_at is None or time.monotonic() < self._expires_at

    def _get_token_client(self) -> httpx.AsyncClient:
        if self._token_client is None:
            self._token_client = httpx.AsyncClient(timeout=15.0)
        return self._token_client

    async def _fetch_access_token(self) -> str:
        """Fetches a new access token. Must be called with the fetch lock held.

        Raises:
            AuthError: If the token endpoint fails or returns no token.
        """
        logger.info(f"Fetching new access token from {self._token_url}")
        client = self._get_token_client()
        try:
            response = await client.post(
                url=self._token_url,
                auth=httpx.BasicAuth(username=self._client_id, password=self._client_secret),
                data={"grant_type": "client_credentials"},
            )
            response.raise_for_status()
            token_data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"HTTP error fetching token: {e.response.status_code} - {e.response.text}"
            )
            raise AuthError(
                f"Failed to fetch access token: {e.response.status_code} - {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching token: {e}")
            raise AuthError(f"Failed to fetch access token: {e}") from e

        access_token = token_data.get("access_token") if isinstance(token_data, dict) else None
        if not access_token:
            raise AuthError("Access token not found in token response.")
        expires_in = token_data.get("expires_in")
        if isinstance(expires_in, int | float) and expires_in > 0:
            self._expires_at = time.monotonic() + max(
                expires_in - self.EXPIRY_MARGIN_SECONDS, 0.0
            )
        else:
            self._expires_at = None
        self._access_token = access_token
        logger.info("Successfully fetched new access token.")
        return access_token

    async def token(self) -> str:
        """Return a valid access token, fetching one if needed."""
        async with self._fetch_lock:
            # Another request may have fetched it while we waited for the lock
            if self.token_valid:
                assert self._access_token is not None
                return self._access_token
            return await self._fetch_access_token()

    async def refresh(self, stale_token: str | None) -> str:
        """Replace ``stale_token`` with a new token.

        If the current token already differs from ``stale_token``, another
        request refreshed it first and the current token is returned.
        """
        async with self._fetch_lock:
            current = self._access_token
            if current is not None and current != stale_token and self.token_valid:
                return current
            self._access_token = None
            return await self._fetch_access_token()

    async def execute(self, request_parameters: RequestParameters) -> RequestParameters:
        logger.trace("Authenticating request using ClientCredentialsAuth.")
        token = await self.token()
        return request_parameters.with_headers({"Authorization": bearer(token)})

    def refresh_hook(self, statuses: frozenset[int] = frozenset({401})) -> "TokenRefreshHook":
        return TokenRefreshHook(self, statuses)

    async def aclose(self) -> None:
        """Closes the internal HTTP client used for token fetching."""
        if self._should_close_client and self._token_client is not None:
            await self._token_client.aclose()
            self._token_client = None
            logger.debug("ClientCredentialsAuth internal client closed.")


class TokenRefreshHook:
    """Post-request hook that refreshes the token and repeats the request.

    On a response whose status is in ``statuses`` the hook asks ``auth`` for
    a new token and issues the same request with the new ``Authorization``
    header. The repeated request skips hooks, so it is attempted only once.
    """

    def __init__(self, auth: RefreshableAuth, statuses: frozenset[int] = frozenset({401})):
        self.auth = auth
        self.statuses = statuses

    async def execute(
        self, last_response: Response, original_request_parameters: RequestParameters
    ) -> PostRequestHookResult:
        if last_response.status not in self.statuses:
            return CONTINUE
        sent = last_response.request_parameters
        stale = sent.headers.get("Authorization", "").removeprefix("Bearer ") or None
        logger.info(
            f"Got {last_response.status} for {sent.method} {sent.path}; refreshing token"
        )
        token = await self.auth.refresh(stale)
        return make_new_request(sent.with_headers({"Authorization": bearer(token)}))
