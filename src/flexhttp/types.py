# flexhttp/types.py
"""Core request types for the flexhttp library.

``RequestParameters`` is the value that flows through the pre-request hook
chain and into the transport. It is immutable: hooks return modified copies.
"""

from collections.abc import Mapping
from http import HTTPMethod
from types import MappingProxyType
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .body import FormBody, RequestBody

QUERY_METHODS: frozenset[HTTPMethod] = frozenset({HTTPMethod.GET, HTTPMethod.HEAD})
"""Methods whose body is sent as a URL query string instead of a payload."""


class RequestParameters(BaseModel):
    """Encapsulates everything needed to dispatch one HTTP request.

    Attributes:
        session: The httpx session used for the call. ``None`` selects the
            client's default session.
        path: Absolute URL of the request.
        method: HTTP verb.
        body: Optional request body. A plain mapping is converted to a
            :class:`~flexhttp.body.FormBody`.
        headers: Extra request headers, as a read-only mapping. They override
            the body's content type.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    session: httpx.AsyncClient | None = Field(default=None, repr=False)
    path: str
    method: HTTPMethod = HTTPMethod.GET
    body: RequestBody | None = None
    headers: Mapping[str, str] = Field(default_factory=dict, validate_default=True)

    @field_validator("method", mode="before")
    @classmethod
    def _normalize_method(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, HTTPMethod):
            return value.upper()
        return value

    @field_validator("body", mode="before")
    @classmethod
    def _coerce_mapping_body(cls, value: Any) -> Any:
        if isinstance(value, Mapping) and not isinstance(value, RequestBody):
            return FormBody(value)
        return value

    @field_validator("headers")
    @classmethod
    def _freeze_headers(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @property
    def uses_query_string(self) -> bool:
        """Whether the body is serialized into the URL rather than sent as a payload."""
        return self.method in QUERY_METHODS

    def replace(self, **changes: Any) -> "RequestParameters":
        """Return a validated copy with ``changes`` applied."""
        return self.model_validate({**self._fields(), **changes})

    def with_headers(self, headers: Mapping[str, str]) -> "RequestParameters":
        """Return a copy whose headers are updated with ``headers``."""
        return self.replace(headers={**self.headers, **headers})

    def _fields(self) -> dict[str, Any]:
        # model_dump would deep-copy the session and body
        return {name: getattr(self, name) for name in type(self).model_fields}
