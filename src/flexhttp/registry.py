"""Registry of in-flight transport calls.

Several requests can be in flight on one client at the same time. Each
transport call gets a fresh identifier, and everything that belongs to it
(observers, received bytes, expected length) is looked up by that
identifier. One lock serializes every access to the registry.
"""

import threading
import uuid
from collections.abc import Callable

from .log_config import logger
from .types import RequestParameters

ProgressCallback = Callable[[float | None], None]
"""Receives a fraction in [0, 1], or ``None`` when the total length is unknown."""

DataCallback = Callable[[bytes], None]
"""Receives each body chunk of a response with status in [200, 400)."""


class RequestObservers:
    """Observer callbacks attached to every transport call of one logical request."""

    __slots__ = ("on_progress", "on_data")

    def __init__(
        self,
        on_progress: ProgressCallback | None = None,
        on_data: DataCallback | None = None,
    ):
        self.on_progress = on_progress
        self.on_data = on_data


NO_OBSERVERS = RequestObservers()


class InFlightEntry:
    """State of one transport call, owned by the registry."""

    __slots__ = (
        "request_id",
        "request_parameters",
        "observers",
        "buffer",
        "expected_length",
        "status",
    )

    def __init__(
        self,
        request_id: str,
        request_parameters: RequestParameters,
        observers: RequestObservers,
    ):
        self.request_id = request_id
        self.request_parameters = request_parameters
        self.observers = observers
        self.buffer = bytearray()
        self.expected_length: int | None = None
        self.status: int | None = None


class InFlightRegistry:
    def __init__(self) -> None:
        self._entries: dict[str, InFlightEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._entries

    def register(
        self,
        request_parameters: RequestParameters,
        observers: RequestObservers = NO_OBSERVERS,
        *,
        request_id: str | None = None,
    ) -> str:
        """Create an entry for a transport call that is about to be dispatched.

        Returns:
            The identifier of the new entry.

        Raises:
            RuntimeError: If ``request_id`` belongs to a live entry.
        """
        request_id = request_id or uuid.uuid4().hex
        with self._lock:
            if request_id in self._entries:
                raise RuntimeError(f"Request id {request_id} is already in flight")
            self._entries[request_id] = InFlightEntry(
                request_id, request_parameters, observers
            )
        logger.trace(f"Registered in-flight request {request_id}")
        return request_id

    def start_response(
        self, request_id: str, status: int, expected_length: int | None
    ) -> None:
        """Record the status and ``Content-Length`` once response headers arrive."""
        with self._lock:
            entry = self._entries.get(request_id)
            if entry is None:
                return
            entry.status = status
            entry.expected_length = expected_length

    def record_chunk(self, request_id: str, chunk: bytes, bytes_received: int) -> None:
        """Append a body chunk and notify the entry's observers.

        Args:
            request_id: Identifier returned by :meth:`register`.
            chunk: Decoded body bytes.
            bytes_received: Total bytes read from the wire so far, comparable
                with the ``Content-Length`` of the response.
        """
        with self._lock:
            entry = self._entries.get(request_id)
            if entry is None:
                return
            entry.buffer.extend(chunk)
            expected = entry.expected_length
            status = entry.status
            observers = entry.observers

        if observers.on_progress is not None:
            fraction = min(bytes_received / expected, 1.0) if expected else None
            observers.on_progress(fraction)
        if (
            observers.on_data is not None
            and status is not None
            and 200 <= status < 400
        ):
            observers.on_data(chunk)

    def body(self, request_id: str) -> bytes | None:
        with self._lock:
            entry = self._entries.get(request_id)
            return bytes(entry.buffer) if entry is not None else None

    def remove(self, request_id: str) -> InFlightEntry | None:
        """Drop an entry. Removing an unknown or already removed id is a no-op."""
        with self._lock:
            entry = self._entries.pop(request_id, None)
        if entry is not None:
            logger.trace(f"Removed in-flight request {request_id}")
        return entry
