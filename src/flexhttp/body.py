"""Request body types.

Every body can produce a byte payload and declare its content type. Only
bodies that are also ``QueryStringBody`` can be serialized into a URL query,
so raw and JSON payloads cannot end up in a GET query string by accident.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from typing import Any

from .codable import Encoder, PydanticJSONEncoder

DISALLOWED_CHARACTERS = frozenset("!*'();:@&=+$,/?%#[] <>")
"""Characters escaped by :func:`percent_encode`."""

FormValue = str | int | float | bool
"""Values accepted by :class:`FormBody`."""


def percent_encode(text: str) -> str:
    """Percent-encode the characters of ``DISALLOWED_CHARACTERS`` in ``text``.

    Every other character, including non-ASCII ones, is left as-is.
    """
    return "".join(f"%{ord(ch):02X}" if ch in DISALLOWED_CHARACTERS else ch for ch in text)


def _format_value(value: Any) -> str:
    # bool is checked first: it is a subclass of int
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str | int | float):
        return str(value)
    raise TypeError(
        f"Form values must be str, int, float or bool, got {type(value).__name__}"
    )


class RequestBody(ABC):
    """A request payload with a declared content type."""

    @property
    @abstractmethod
    def content_type(self) -> str:
        """Value sent as the ``Content-Type`` header."""

    @abstractmethod
    def http_body(self) -> bytes | None:
        """Bytes sent as the body of non-query requests."""


class QueryStringBody(RequestBody):
    """A body that can also be serialized into a URL query string."""

    @abstractmethod
    def query_string(self) -> str:
        """Serialize the body for use after the ``?`` of a URL."""


class FormBody(QueryStringBody, Mapping[str, str]):
    """Key/value body, sent as a query string for GET and as form data otherwise.

    Values are converted to strings when the body is built, so a body that
    was constructed successfully always serializes.
    """

    def __init__(self, fields: Mapping[str, FormValue] | None = None, /, **kwargs: FormValue):
        items = dict(fields or {}, **kwargs)
        self._fields: dict[str, str] = {
            str(key): _format_value(value) for key, value in items.items()
        }

    def __getitem__(self, key: str) -> str:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"FormBody({self._fields!r})"

    @property
    def content_type(self) -> str:
        return "application/x-www-form-urlencoded"

    def query_string(self) -> str:
        return "&".join(
            f"{percent_encode(key)}={percent_encode(value)}"
            for key, value in self._fields.items()
        )

    def http_body(self) -> bytes:
        return self.query_string().encode("utf-8")


class RawBody(RequestBody):
    """Arbitrary bytes with an explicit content type (multipart, binary uploads, ...)."""

    def __init__(self, data: bytes, content_type: str):
        self.data = bytes(data)
        self._content_type = content_type

    def __repr__(self) -> str:
        return f"RawBody({len(self.data)} bytes, content_type={self._content_type!r})"

    @property
    def content_type(self) -> str:
        return self._content_type

    def http_body(self) -> bytes:
        return self.data


class JSONBody(RawBody):
    """A structured value encoded eagerly, by default as JSON.

    Encoding errors surface from the constructor, before any request is made.
    """

    def __init__(
        self,
        value: Any,
        encoder: Encoder | None = None,
        content_type: str = "application/json",
    ):
        super().__init__((encoder or PydanticJSONEncoder()).encode(value), content_type)
