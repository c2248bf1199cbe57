# flexhttp/models.py
"""Value types produced by the execution engine.

``Response`` is created exactly once per completed transport call, ``Result``
is what completion callbacks receive, and the event types are what a
``RequestHandle`` streams while a request is in flight.
"""

import json
from typing import Any, Generic, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import get_settings
from .types import RequestParameters

T = TypeVar("T")


class Response(BaseModel):
    """Immutable record of one completed HTTP exchange.

    Attributes:
        status: HTTP status code.
        raw_data: Response body bytes, ``None`` if the transport produced no body.
        headers: Case-insensitive response headers.
        request_parameters: The parameters that were actually dispatched to
            produce this response, after pre-request hooks.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status: int
    raw_data: bytes | None = None
    headers: httpx.Headers = Field(default_factory=httpx.Headers)
    request_parameters: RequestParameters

    @field_validator("headers", mode="before")
    @classmethod
    def _coerce_headers(cls, value: Any) -> Any:
        if value is None:
            return httpx.Headers()
        if not isinstance(value, httpx.Headers):
            return httpx.Headers(value)
        return value

    @property
    def text(self) -> str | None:
        """The body decoded as UTF-8, or ``None`` if absent or not valid UTF-8."""
        if self.raw_data is None:
            return None
        try:
            return self.raw_data.decode("utf-8")
        except UnicodeDecodeError:
            return None

    @property
    def is_success(self) -> bool:
        """True for statuses in [200, 400)."""
        return 200 <= self.status < 400

    def header(self, name: str) -> str | None:
        """Look up a header value; names are case-insensitive."""
        return self.headers.get(name)

    def as_json(self) -> Any | None:
        """The body parsed as JSON, or ``None`` if it is missing or not JSON."""
        if not self.raw_data:
            return None
        try:
            return json.loads(self.raw_data)
        except ValueError:
            return None

    def __str__(self) -> str:
        text = self.text
        if text is not None:
            limit = get_settings().response_preview_chars
            body = text[:limit] + ("..." if len(text) > limit else "")
        elif self.raw_data is not None:
            body = f"{len(self.raw_data)} bytes"
        else:
            body = "(null body)"
        return f"Response(status={self.status}):\n{body}"


class Result(BaseModel, Generic[T]):
    """Outcome of a request delivered to completion callbacks.

    Exactly one of ``value`` and ``error`` is meaningful, as given by
    ``is_success``.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    value: T | None = None
    error: BaseException | None = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "Result[T]":
        return cls(error=error)

    @property
    def is_success(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, or raise the error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def __str__(self) -> str:
        if self.error is not None:
            return f"Failure({self.error!r})"
        return f"Success({self.value})"


class ProgressEvent(BaseModel):
    """Download progress of the current transport call.

    ``fraction`` is in [0, 1], or ``None`` when the total length is unknown.
    """

    model_config = ConfigDict(frozen=True)

    fraction: float | None


class DataEvent(BaseModel):
    """A chunk of body bytes from a successful (status in [200, 400)) response."""

    model_config = ConfigDict(frozen=True)

    chunk: bytes


StreamEvent = ProgressEvent | DataEvent
