"""Tests for the authentication hooks in flexhttp."""

import httpx
import pytest
from conftest import API

from flexhttp.auth import BearerTokenAuth, ClientCredentialsAuth, TokenRefreshHook
from flexhttp.exceptions import AuthError, ConfigurationError
from flexhttp.hooks import HookAction
from flexhttp.models import Response
from flexhttp.types import RequestParameters

TOKEN_URL = "https://auth.example.com/token"


def test_bearer_token_auth_init_no_token():
    """Test BearerTokenAuth raises ConfigurationError if no token is provided."""
    with pytest.raises(
        ConfigurationError, match="BearerTokenAuth requires a non-empty 'token'."
    ):
        BearerTokenAuth(token="")
    with pytest.raises(
        ConfigurationError, match="BearerTokenAuth requires a non-empty 'token'."
    ):
        BearerTokenAuth(token=None)


def test_bearer_token_auth_adds_header():
    """Test BearerTokenAuth adds the Authorization header to a copy."""
    params = RequestParameters(path=f"{API}/items")

    authed = BearerTokenAuth(token="test_token").execute(params)

    assert authed.headers["Authorization"] == "Bearer test_token"
    assert params.headers == {}


def test_client_credentials_auth_init_missing_params():
    """Test ClientCredentialsAuth raises ConfigurationError if params are missing."""
    with pytest.raises(ConfigurationError):
        ClientCredentialsAuth(client_id=None, client_secret="secret", token_url=TOKEN_URL)
    with pytest.raises(ConfigurationError):
        ClientCredentialsAuth(client_id="id", client_secret=None, token_url=TOKEN_URL)
    with pytest.raises(ConfigurationError):
        ClientCredentialsAuth(client_id="id", client_secret="secret", token_url=None)


@pytest.mark.asyncio
async def test_client_credentials_fetches_token_once(httpx_mock):
    """Test the token is fetched with basic auth and then cached."""
    httpx_mock.add_response(
        url=TOKEN_URL, method="POST", json={"access_token": "abc", "expires_in": 3600}
    )
    auth = ClientCredentialsAuth("id", "secret", TOKEN_URL)
    params = RequestParameters(path=f"{API}/items")

    try:
        first = await auth.execute(params)
        second = await auth.execute(params)
    finally:
        await auth.aclose()

    assert first.headers["Authorization"] == "Bearer abc"
    assert second.headers["Authorization"] == "Bearer abc"
    token_request = httpx_mock.get_request()
    assert token_request.headers["Authorization"].startswith("Basic ")
    assert token_request.content == b"grant_type=client_credentials"


@pytest.mark.asyncio
async def test_client_credentials_refetches_expired_token(httpx_mock):
    """Test a token whose lifetime is within the expiry margin is not reused."""
    httpx_mock.add_response(url=TOKEN_URL, json={"access_token": "one", "expires_in": 10})
    httpx_mock.add_response(url=TOKEN_URL, json={"access_token": "two", "expires_in": 10})
    auth = ClientCredentialsAuth("id", "secret", TOKEN_URL)

    try:
        assert await auth.token() == "one"
        assert not auth.token_valid
        assert await auth.token() == "two"
    finally:
        await auth.aclose()


@pytest.mark.asyncio
async def test_client_credentials_http_error(httpx_mock):
    """Test an error status from the token endpoint raises AuthError."""
    httpx_mock.add_response(url=TOKEN_URL, status_code=401, text="invalid_client")
    auth = ClientCredentialsAuth("id", "secret", TOKEN_URL)

    with pytest.raises(AuthError, match="401 - invalid_client"):
        await auth.token()
    await auth.aclose()


@pytest.mark.asyncio
async def test_client_credentials_missing_token(httpx_mock):
    """Test a token response without access_token raises AuthError."""
    httpx_mock.add_response(url=TOKEN_URL, json={"token_type": "bearer"})
    auth = ClientCredentialsAuth("id", "secret", TOKEN_URL)

    with pytest.raises(AuthError, match="Access token not found"):
        await auth.token()
    await auth.aclose()


@pytest.mark.asyncio
async def test_refresh_reuses_token_refreshed_by_another_request(httpx_mock):
    """Test refresh only fetches when the stale token is still the current one."""
    httpx_mock.add_response(url=TOKEN_URL, json={"access_token": "one"})
    httpx_mock.add_response(url=TOKEN_URL, json={"access_token": "two"})
    auth = ClientCredentialsAuth("id", "secret", TOKEN_URL)

    try:
        assert await auth.token() == "one"
        assert await auth.refresh("one") == "two"
        assert await auth.refresh("one") == "two"
    finally:
        await auth.aclose()
    assert len(httpx_mock.get_requests()) == 2


@pytest.mark.asyncio
async def test_token_refresh_hook_continues_on_success():
    hook = TokenRefreshHook(auth=None)
    params = RequestParameters(path=f"{API}/items")

    result = await hook.execute(Response(status=200, request_parameters=params), params)

    assert result.action is HookAction.CONTINUE


def test_token_refresh_end_to_end(make_client, httpx_mock):
    """Test a 401 refreshes the token and repeats the request once."""
    httpx_mock.add_response(url=TOKEN_URL, json={"access_token": "old"})
    httpx_mock.add_response(url=TOKEN_URL, json={"access_token": "new"})
    httpx_mock.add_response(
        url=f"{API}/items", match_headers={"Authorization": "Bearer old"}, status_code=401
    )
    httpx_mock.add_response(
        url=f"{API}/items", match_headers={"Authorization": "Bearer new"}, json=[1]
    )
    auth = ClientCredentialsAuth("id", "secret", TOKEN_URL)

    flex_client = make_client([auth], [auth.refresh_hook()])
    response = flex_client.request_sync(f"{API}/items")

    assert response.status == 200
    assert response.as_json() == [1]
    assert response.request_parameters.headers["Authorization"] == "Bearer new"
    flex_client.close()
    assert auth._token_client is None


def test_token_client_is_not_closed_when_supplied():
    token_client = httpx.AsyncClient()
    auth = ClientCredentialsAuth("id", "secret", TOKEN_URL, token_client=token_client)

    assert auth._get_token_client() is token_client
