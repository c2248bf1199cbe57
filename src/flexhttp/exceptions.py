"""Custom exception classes for the flexhttp library.

``RequestError`` and its subclasses form the closed set of failures the
execution engine can produce. Errors raised by user hooks are never wrapped
in any of these classes.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Response
    from .types import RequestParameters


class FlexError(Exception):
    """Base exception class for all flexhttp errors."""

    def __init__(
        self,
        message: str,
        *,
        response: "Response | None" = None,
        request_parameters: "RequestParameters | None" = None,
    ):
        """Initializes the base exception.

        Args:
            message: The error message.
            response: Optional Response associated with the error.
            request_parameters: Optional parameters of the request that failed.
        """
        super().__init__(message)
        self.message = message
        self.response = response
        if request_parameters is None and response is not None:
            request_parameters = response.request_parameters
        self.request_parameters = request_parameters

    def __str__(self) -> str:
        params = self.request_parameters
        target = f"{params.method} {params.path}" if params is not None else "N/A"
        if self.response is not None:
            return f"{self.message} (Status: {self.response.status}, {target})"
        if params is not None:
            return f"{self.message} ({target})"
        return self.message


class ConfigurationError(FlexError):
    """Represents an error in the library's configuration."""

    def __init__(self, message: str):
        super().__init__(message)


class AuthError(FlexError):
    """Represents an error while obtaining credentials in an auth hook."""


class RequestError(FlexError):
    """Base class for failures classified by the execution engine."""


class NoConnectivityError(RequestError):
    """The device or the network is unreachable."""

    def __init__(
        self,
        underlying: BaseException,
        *,
        request_parameters: "RequestParameters | None" = None,
    ):
        super().__init__(
            f"No internet connection (underlying error: {underlying!r})",
            request_parameters=request_parameters,
        )
        self.underlying = underlying


class CancelledByCallerError(RequestError):
    """The caller cancelled the request. This is not a real failure."""

    def __init__(self, *, request_parameters: "RequestParameters | None" = None):
        super().__init__(
            "Request was cancelled by the caller",
            request_parameters=request_parameters,
        )


class RequestTimeoutError(RequestError):
    """The request did not complete within the configured timeout."""

    def __init__(
        self,
        message: str = "Request timed out",
        *,
        request_parameters: "RequestParameters | None" = None,
    ):
        super().__init__(message, request_parameters=request_parameters)


class TransportError(RequestError):
    """Any other transport-level failure.

    Attributes:
        code: The platform error code (an ``errno`` value) when one is known.
        underlying: The original transport exception.
    """

    def __init__(
        self,
        underlying: BaseException,
        *,
        code: int | None = None,
        request_parameters: "RequestParameters | None" = None,
    ):
        super().__init__(
            "Miscellaneous transport error. "
            f"Underlying error code: {code if code is not None else 'N/A'}\n"
            f"{type(underlying).__name__}: {underlying}",
            request_parameters=request_parameters,
        )
        self.code = code
        self.underlying = underlying


class InvalidURLError(RequestError):
    """The request path is not a valid absolute URL."""

    def __init__(
        self,
        message: str,
        *,
        request_parameters: "RequestParameters | None" = None,
    ):
        super().__init__(
            f"Invalid URL. Message: {message}", request_parameters=request_parameters
        )


class EmptyResponseError(RequestError):
    """A structured value was requested but the response had no body."""

    def __init__(self, response: "Response"):
        super().__init__(
            f"Response had no data; status was {response.status}", response=response
        )


class DecodingError(RequestError):
    """The response body could not be decoded into the requested type.

    Attributes:
        type_name: Name of the target type.
        error: The exception raised by the decoder.
        response: The full response that failed to decode.
    """

    BODY_PREVIEW_CHARS = 200

    def __init__(self, type_name: str, error: BaseException, response: "Response"):
        preview = response.text
        if preview is None:
            preview = (
                f"{len(response.raw_data)} bytes"
                if response.raw_data is not None
                else "(null body)"
            )
        elif len(preview) > self.BODY_PREVIEW_CHARS:
            preview = preview[: self.BODY_PREVIEW_CHARS] + "..."
        super().__init__(
            f"Failed to decode {type_name}: {type(error).__name__}: {error}\n"
            f"Body: {preview}",
            response=response,
        )
        self.type_name = type_name
        self.error = error


class UnknownError(RequestError):
    """The transport reported neither a response nor an error."""

    def __init__(
        self,
        message: str,
        *,
        request_parameters: "RequestParameters | None" = None,
    ):
        super().__init__(
            f"Unknown error. Message: {message}", request_parameters=request_parameters
        )
