"""Boundary between flexhttp and the httpx transport.

This module turns ``RequestParameters`` into an ``httpx.Request`` and turns
whatever the transport produced into either a ``Response`` or one classified
``RequestError``. Classification happens here and nowhere else.
"""

import asyncio
import errno
import socket
from collections.abc import Iterator

import httpx

from .body import QueryStringBody
from .exceptions import (
    CancelledByCallerError,
    InvalidURLError,
    NoConnectivityError,
    RequestError,
    RequestTimeoutError,
    TransportError,
    UnknownError,
)
from .log_config import logger
from .models import Response
from .types import RequestParameters

NO_CONNECTIVITY_ERRNOS: frozenset[int] = frozenset(
    {errno.ENETUNREACH, errno.ENETDOWN, errno.EHOSTUNREACH, errno.ENOTCONN}
)
"""OS error codes meaning the network itself is unreachable."""

NO_CONNECTIVITY_GAI_ERRORS: frozenset[int] = frozenset(
    code
    for code in (getattr(socket, "EAI_AGAIN", None), getattr(socket, "EAI_NODATA", None))
    if code is not None
)
"""Resolver codes meaning no name server could be reached.

Other resolver failures, such as ``EAI_NONAME`` for a host that does not
exist, are ordinary transport errors.
"""

TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL)
"""Exceptions raised by httpx that are classified instead of propagated."""

ALLOWED_SCHEMES = frozenset({"http", "https"})


def validate_url(path: str, request_parameters: RequestParameters) -> httpx.URL:
    """Parse ``path`` as an absolute http(s) URL.

    Raises:
        InvalidURLError: If ``path`` cannot be parsed or is not absolute.
    """
    try:
        url = httpx.URL(path)
    except (httpx.InvalidURL, TypeError) as e:
        raise InvalidURLError(
            f"Invalid URL {path} ({e})", request_parameters=request_parameters
        ) from e
    if not url.is_absolute_url or url.scheme not in ALLOWED_SCHEMES or not url.host:
        raise InvalidURLError(
            f"Invalid URL {path}", request_parameters=request_parameters
        )
    return url


def build_request(
    request_parameters: RequestParameters, session: httpx.AsyncClient
) -> httpx.Request:
    """Build the httpx request for ``request_parameters``.

    For GET and HEAD the body is appended to the URL as a query string; for
    every other method it is sent as the payload with its content type.
    Explicit headers override the body's content type.

    Raises:
        InvalidURLError: If the path, or the path plus query string, is not a
            valid absolute URL.
        TypeError: If a body without a query-string form is used with GET or
            HEAD. That is a programming error, not a request failure.
    """
    url = validate_url(request_parameters.path, request_parameters)
    body = request_parameters.body
    headers = httpx.Headers()
    content: bytes | None = None

    if request_parameters.uses_query_string:
        if body is not None:
            if not isinstance(body, QueryStringBody):
                raise TypeError(
                    f"{type(body).__name__} cannot be sent with a "
                    f"{request_parameters.method} request; use a FormBody or a mapping"
                )
            query = body.query_string()
            if query:
                separator = "&" if url.query else "?"
                url = validate_url(
                    f"{request_parameters.path}{separator}{query}", request_parameters
                )
    elif body is not None:
        content = body.http_body()
        headers["Content-Type"] = body.content_type

    headers.update(request_parameters.headers)
    return session.build_request(
        request_parameters.method.value, url, headers=headers, content=content
    )


def _cause_chain(error: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def platform_error_code(error: BaseException) -> int | None:
    """First ``errno`` found on an ``OSError`` in the exception's cause chain."""
    for exc in _cause_chain(error):
        if isinstance(exc, OSError) and exc.errno is not None:
            return exc.errno
    return None


def is_unreachable(error: BaseException) -> bool:
    """Whether the cause chain shows that the network cannot be reached."""
    for exc in _cause_chain(error):
        if isinstance(exc, socket.gaierror):
            if exc.errno in NO_CONNECTIVITY_GAI_ERRORS:
                return True
            continue
        if isinstance(exc, OSError) and exc.errno in NO_CONNECTIVITY_ERRNOS:
            return True
    return False


def classify_transport_error(
    error: BaseException, request_parameters: RequestParameters
) -> RequestError:
    """Map a transport failure to exactly one :class:`RequestError`."""
    if isinstance(error, RequestError):
        return error
    if isinstance(error, asyncio.CancelledError):
        return CancelledByCallerError(request_parameters=request_parameters)
    if isinstance(error, httpx.TimeoutException):
        return RequestTimeoutError(
            f"Request timed out ({type(error).__name__}: {error})",
            request_parameters=request_parameters,
        )
    if isinstance(error, httpx.ConnectError) and is_unreachable(error):
        return NoConnectivityError(error, request_parameters=request_parameters)
    if isinstance(error, httpx.InvalidURL | httpx.UnsupportedProtocol):
        return InvalidURLError(str(error), request_parameters=request_parameters)
    return TransportError(
        error,
        code=platform_error_code(error),
        request_parameters=request_parameters,
    )


def normalize_outcome(
    request_parameters: RequestParameters,
    *,
    response: httpx.Response | None = None,
    body: bytes | None = None,
    error: BaseException | None = None,
) -> Response:
    """Turn the terminal outcome of one transport call into a ``Response``.

    Args:
        request_parameters: The parameters that were dispatched.
        response: The httpx response, when the server answered.
        body: The body bytes read from ``response``.
        error: The transport failure, when the server did not answer.

    Raises:
        RequestError: The classified ``error``, or ``UnknownError`` when the
            transport reported neither a response nor an error.
    """
    if response is not None:
        return Response(
            status=response.status_code,
            raw_data=body,
            headers=httpx.Headers(response.headers),
            request_parameters=request_parameters,
        )
    if error is not None:
        classified = classify_transport_error(error, request_parameters)
        logger.error(
            f"{type(classified).__name__} for {request_parameters.method} "
            f"{request_parameters.path}: {error!r}"
        )
        if classified is error:
            raise classified
        raise classified from error
    logger.critical(
        f"Transport returned neither a response nor an error for "
        f"{request_parameters.method} {request_parameters.path}"
    )
    raise UnknownError(
        "Nil response and nil error from transport",
        request_parameters=request_parameters,
    )
