"""Tests for request building and transport error classification."""

import asyncio
import errno
import socket

import httpx
import pytest

from flexhttp.body import FormBody, JSONBody, RawBody
from flexhttp.exceptions import (
    CancelledByCallerError,
    InvalidURLError,
    NoConnectivityError,
    RequestTimeoutError,
    TransportError,
    UnknownError,
)
from flexhttp.transport import (
    build_request,
    classify_transport_error,
    normalize_outcome,
    platform_error_code,
)
from flexhttp.types import RequestParameters

URL = "https://api.example.com/items"


@pytest.fixture
def session():
    return httpx.AsyncClient(headers={"User-Agent": "tests"})


def with_cause(error: BaseException, cause: BaseException) -> BaseException:
    error.__cause__ = cause
    return error


# --- build_request ---


def test_get_appends_query_string(session):
    params = RequestParameters(path=URL, body=FormBody(q="a b", page=2))

    request = build_request(params, session)

    assert str(request.url) == f"{URL}?q=a%20b&page=2"
    assert request.content == b""
    assert "Content-Type" not in request.headers
    assert request.headers["User-Agent"] == "tests"


def test_get_appends_to_existing_query(session):
    params = RequestParameters(path=f"{URL}?sort=asc", body={"page": 2})

    request = build_request(params, session)

    assert request.url.params["sort"] == "asc"
    assert request.url.params["page"] == "2"


def test_head_with_empty_form_body_keeps_url(session):
    params = RequestParameters(path=URL, method="HEAD", body=FormBody())

    assert str(build_request(params, session).url) == URL


def test_post_sends_body_with_content_type(session):
    params = RequestParameters(path=URL, method="POST", body=JSONBody([1, 2]))

    request = build_request(params, session)

    assert request.content == b"[1,2]"
    assert request.headers["Content-Type"] == "application/json"


def test_headers_override_body_content_type(session):
    params = RequestParameters(
        path=URL,
        method="POST",
        body=RawBody(b"<a/>", "application/xml"),
        headers={"content-type": "text/xml"},
    )

    assert build_request(params, session).headers["Content-Type"] == "text/xml"


def test_get_with_raw_body_is_type_error(session):
    params = RequestParameters(path=URL, body=JSONBody({"a": 1}))

    with pytest.raises(TypeError, match="JSONBody"):
        build_request(params, session)


@pytest.mark.parametrize(
    "path", ["", "items", "/items", "ftp://example.com/file", "https://"]
)
def test_invalid_urls(session, path):
    with pytest.raises(InvalidURLError) as exc_info:
        build_request(RequestParameters(path=path), session)

    assert exc_info.value.request_parameters.path == path
    assert str(exc_info.value).startswith("Invalid URL. Message:")


# --- classify_transport_error ---


@pytest.fixture
def params() -> RequestParameters:
    return RequestParameters(path=URL)


def test_classify_cancelled(params):
    assert isinstance(
        classify_transport_error(asyncio.CancelledError(), params), CancelledByCallerError
    )


def test_classify_timeouts(params):
    for error in (httpx.ConnectTimeout("c"), httpx.ReadTimeout("r"), httpx.PoolTimeout("p")):
        assert isinstance(classify_transport_error(error, params), RequestTimeoutError)


@pytest.mark.parametrize(
    "cause",
    [
        socket.gaierror(socket.EAI_AGAIN, "Temporary failure in name resolution"),
        OSError(errno.ENETUNREACH, "Network is unreachable"),
        OSError(errno.EHOSTUNREACH, "No route to host"),
    ],
)
def test_classify_no_connectivity(params, cause):
    error = with_cause(httpx.ConnectError("connect failed"), cause)

    classified = classify_transport_error(error, params)

    assert isinstance(classified, NoConnectivityError)
    assert classified.underlying is error


def test_classify_transport_error_with_code(params):
    error = with_cause(
        httpx.ConnectError("refused"), ConnectionRefusedError(errno.ECONNREFUSED, "refused")
    )

    classified = classify_transport_error(error, params)

    assert isinstance(classified, TransportError)
    assert classified.code == errno.ECONNREFUSED
    assert classified.underlying is error


def test_classify_unknown_host_is_transport_error(params):
    cause = socket.gaierror(socket.EAI_NONAME, "Name or service not known")
    error = with_cause(httpx.ConnectError("connect failed"), cause)

    classified = classify_transport_error(error, params)

    assert isinstance(classified, TransportError)
    assert classified.code == socket.EAI_NONAME


def test_classify_transport_error_without_code(params):
    classified = classify_transport_error(httpx.RemoteProtocolError("bad frame"), params)

    assert isinstance(classified, TransportError)
    assert classified.code is None
    assert "Underlying error code: N/A" in str(classified)


def test_classify_unsupported_protocol(params):
    classified = classify_transport_error(httpx.UnsupportedProtocol("gopher"), params)
    assert isinstance(classified, InvalidURLError)


def test_platform_error_code_follows_context():
    try:
        try:
            raise OSError(errno.ECONNRESET, "reset")
        except OSError:
            raise httpx.ReadError("read failed")  # noqa: B904
    except httpx.ReadError as e:
        assert platform_error_code(e) == errno.ECONNRESET


# --- normalize_outcome ---


def test_normalize_response(params):
    http_response = httpx.Response(404, headers={"X-Id": "1"})

    response = normalize_outcome(params, response=http_response, body=b"missing")

    assert response.status == 404
    assert response.raw_data == b"missing"
    assert response.header("x-id") == "1"
    assert response.request_parameters is params


def test_normalize_error_is_chained(params):
    error = httpx.ReadTimeout("slow")

    with pytest.raises(RequestTimeoutError) as exc_info:
        normalize_outcome(params, error=error)

    assert exc_info.value.__cause__ is error
    assert exc_info.value.request_parameters is params


def test_normalize_neither_is_unknown_error(params):
    with pytest.raises(UnknownError, match="Nil response and nil error"):
        normalize_outcome(params)
