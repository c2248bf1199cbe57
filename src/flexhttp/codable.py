"""Structured payload encoding and decoding.

Encoders and decoders are small protocols so any serialization library can be
plugged into a client. The defaults use pydantic ``TypeAdapter`` and therefore
handle pydantic models, dataclasses, TypedDicts and plain JSON values.
"""

from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

from pydantic import TypeAdapter

from .exceptions import DecodingError, EmptyResponseError
from .log_config import logger

if TYPE_CHECKING:
    from .models import Response

T = TypeVar("T")


@runtime_checkable
class Encoder(Protocol):
    """Turns a structured value into request body bytes."""

    def encode(self, value: Any) -> bytes:
        """Encode ``value``.

        Raises:
            Exception: Any error if the value cannot be encoded.
        """
        ...


@runtime_checkable
class Decoder(Protocol):
    """Turns response body bytes into a value of a requested type."""

    def decode(self, data: bytes, target: type[T]) -> T:
        """Decode ``data`` into an instance of ``target``.

        Raises:
            Exception: Any error if the data does not fit ``target``.
        """
        ...


class PydanticJSONEncoder:
    """Encodes values as JSON through a pydantic ``TypeAdapter``."""

    def __init__(self, *, by_alias: bool = True, exclude_none: bool = False):
        self.by_alias = by_alias
        self.exclude_none = exclude_none

    def encode(self, value: Any) -> bytes:
        adapter: TypeAdapter[Any] = TypeAdapter(type(value))
        return adapter.dump_json(
            value, by_alias=self.by_alias, exclude_none=self.exclude_none
        )


class PydanticJSONDecoder:
    """Validates JSON bytes against the target type with a pydantic ``TypeAdapter``."""

    def __init__(self, *, strict: bool | None = None):
        self.strict = strict

    def decode(self, data: bytes, target: type[T]) -> T:
        return TypeAdapter(target).validate_json(data, strict=self.strict)


def type_name(target: Any) -> str:
    """Readable name for a decode target, including generic aliases like ``list[Item]``."""
    name = getattr(target, "__name__", None)
    if name is None or getattr(target, "__args__", None):
        return repr(target)
    return name


def decode_response(response: "Response", target: type[T], decoder: Decoder) -> T:
    """Decode the body of ``response`` into ``target``.

    Raises:
        EmptyResponseError: If the response has no body.
        DecodingError: If the decoder fails; carries the type name, the
            decoder's exception and the response.
    """
    if not response.raw_data:
        raise EmptyResponseError(response)
    try:
        return decoder.decode(response.raw_data, target)
    except Exception as e:
        logger.warning(
            f"Decoding {type_name(target)} failed for "
            f"{response.request_parameters.method} {response.request_parameters.path}: {e}"
        )
        raise DecodingError(type_name(target), e, response) from e
