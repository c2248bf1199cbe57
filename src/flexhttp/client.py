"""The flexhttp client.

This module provides :class:`FlexClient`, which offers one request pipeline
through three consumption styles:

* blocking: :meth:`FlexClient.request_sync`
* callback: :meth:`FlexClient.request_with_callback`
* stream: :meth:`FlexClient.stream`, returning an awaitable
  :class:`RequestHandle` that also yields progress and data events

Each style, and each structured-payload variant of it, runs the same
``LogicalRequest`` on the client's engine loop. A session passed with
``session=`` is bound to one event loop: the caller's running loop when it is
first passed to :meth:`FlexClient.stream` or :meth:`FlexClient.request`, else
the engine loop. Its transport calls always run on that loop.
"""

import asyncio
import concurrent.futures
import ssl
import threading
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, ClassVar, Generic, Self, TypeVar

import certifi
import httpx

from .body import RawBody, RequestBody
from .codable import Decoder, Encoder, PydanticJSONDecoder, PydanticJSONEncoder, decode_response
from .config import FlexSettings, get_settings
from .engine import Dispatcher, EngineLoop, LogicalRequest, SessionLoops
from .exceptions import CancelledByCallerError
from .hooks import (
    PostRequestBlock,
    PostRequestHook,
    PreRequestBlock,
    PreRequestHook,
    as_post_request_hook,
    as_pre_request_hook,
    hook_name,
)
from .log_config import logger
from .models import DataEvent, ProgressEvent, Response, Result, StreamEvent
from .registry import InFlightRegistry, ProgressCallback, RequestObservers
from .types import RequestParameters

T = TypeVar("T")

Completion = Callable[[Result[Any]], None]

_UNSET: Any = object()
_END = object()


class RequestHandle(Generic[T]):
    """A request running on a client's engine loop, observed from the caller's loop.

    Await the handle for the final value. Iterate :meth:`events` for
    progress and body chunks while the request is in flight.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        request_parameters: RequestParameters,
        progress: ProgressCallback | None = None,
    ):
        self._loop = loop
        self._request_parameters = request_parameters
        self._progress = progress
        self._events: asyncio.Queue[Any] = asyncio.Queue()
        self._future: concurrent.futures.Future[T] | None = None
        self._cancel_requested = False

    @property
    def request_parameters(self) -> RequestParameters:
        """Parameters as given by the caller, before pre-request hooks."""
        return self._request_parameters

    def _post(self, item: Any) -> None:
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._events.put_nowait, item)

    def _on_progress(self, fraction: float | None) -> None:
        self._post(ProgressEvent(fraction=fraction))
        if self._progress is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._progress, fraction)

    def _on_data(self, chunk: bytes) -> None:
        self._post(DataEvent(chunk=chunk))

    def _observers(self) -> RequestObservers:
        return RequestObservers(on_progress=self._on_progress, on_data=self._on_data)

    def _attach(self, future: "concurrent.futures.Future[T]") -> None:
        self._future = future
        future.add_done_callback(lambda _: self._post(_END))

    def cancel(self) -> bool:
        """Cancel the request, including the in-flight transport call.

        Returns:
            False if the request had already finished.
        """
        assert self._future is not None
        self._cancel_requested = True
        return self._future.cancel()

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def cancelled(self) -> bool:
        return self._future is not None and self._future.cancelled()

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield progress and data events until the request reaches a terminal state."""
        while True:
            item = await self._events.get()
            if item is _END:
                return
            yield item

    async def _result(self) -> T:
        assert self._future is not None
        try:
            return await asyncio.wrap_future(self._future, loop=self._loop)
        except (asyncio.CancelledError, concurrent.futures.CancelledError):
            if self._cancel_requested:
                raise CancelledByCallerError(
                    request_parameters=self._request_parameters
                ) from None
            raise

    def __await__(self):
        return self._result().__await__()

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled() else "done" if self.done() else "pending"
        return (
            f"<RequestHandle {self._request_parameters.method} "
            f"{self._request_parameters.path} {state}>"
        )


class FlexClient:
    """HTTP client with a hook pipeline and three consumption styles.

    Pre-request hooks, post-request hooks and the default encoder and decoder
    are fixed at construction. The client owns a private event loop thread
    (the engine loop) on which every request and hook runs, plus a default
    ``httpx.AsyncClient`` created lazily on that loop.

    Attributes:
        settings: Configuration for the default session and diagnostics.
        pre_request_hooks: Hooks folded over the parameters before dispatch.
        post_request_hooks: Hooks run, in order, on each response.
        default_encoder: Encoder for ``payload`` arguments.
        default_decoder: Decoder for the ``output`` type of model requests.
    """

    _default: ClassVar["FlexClient | None"] = None
    _default_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        pre_request_hooks: Sequence[PreRequestHook | PreRequestBlock] = (),
        post_request_hooks: Sequence[PostRequestHook | PostRequestBlock] = (),
        *,
        settings: FlexSettings | None = None,
        default_encoder: Encoder | None = None,
        default_decoder: Decoder | None = None,
        callback_loop: asyncio.AbstractEventLoop | None = None,
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ):
        """Initialize the client.

        Args:
            pre_request_hooks: Hook objects or plain (async) functions taking
                ``RequestParameters``.
            post_request_hooks: Hook objects or plain (async) functions taking
                the last response and the original parameters.
            settings: Settings to use. Defaults to :func:`get_settings`.
            default_encoder: Defaults to :class:`PydanticJSONEncoder`.
            default_decoder: Defaults to :class:`PydanticJSONDecoder`.
            callback_loop: Event loop on which completion callbacks run when a
                call does not name one. Without it callbacks run on a
                dedicated callback thread.
            http_client_factory: Called once, on the engine loop, to create
                the session used when request parameters name none. Without
                it the session is created from ``settings``. Either way the
                session is owned and closed by the client.
        """
        self.settings = settings or get_settings()
        self.pre_request_hooks: tuple[PreRequestHook, ...] = tuple(
            as_pre_request_hook(hook) for hook in pre_request_hooks
        )
        self.post_request_hooks: tuple[PostRequestHook, ...] = tuple(
            as_post_request_hook(hook) for hook in post_request_hooks
        )
        self.default_encoder: Encoder = default_encoder or PydanticJSONEncoder()
        self.default_decoder: Decoder = default_decoder or PydanticJSONDecoder()
        self._callback_loop = callback_loop

        self._http_client_factory = http_client_factory or self._create_default_http_client
        self._http_client: httpx.AsyncClient | None = None

        self._registry = InFlightRegistry()
        self._session_loops = SessionLoops()
        self._engine = EngineLoop(self.settings.engine_thread_name)
        self._dispatcher = Dispatcher(
            self._registry, self._default_session, self._session_loops
        )
        self._callback_executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        self._closed = False

        logger.debug(
            f"FlexClient initialized with {len(self.pre_request_hooks)} pre-request "
            f"and {len(self.post_request_hooks)} post-request hooks."
        )

    # --- Default instance ---

    @classmethod
    def default(cls) -> "FlexClient":
        """The process-wide client, created on first use from :func:`get_settings`."""
        with cls._default_lock:
            if cls._default is None or cls._default.closed:
                cls._default = cls()
            return cls._default

    @classmethod
    def set_default(cls, client: "FlexClient") -> None:
        """Replace the process-wide client returned by :meth:`default`."""
        with cls._default_lock:
            cls._default = client

    # --- Sessions and resources ---

    def _create_default_http_client(self) -> httpx.AsyncClient:
        """Create a default httpx.AsyncClient from the client's settings.

        Returns:
            httpx.AsyncClient: Configured HTTP client with SSL verification,
                timeout settings, redirect policy and user agent header.
        """
        verify: ssl.SSLContext | bool
        if not self.settings.verify_ssl:
            verify = False
            logger.warning("TLS certificate verification is disabled.")
        else:
            try:
                verify = ssl.create_default_context(cafile=certifi.where())
                logger.debug("Using certifi SSL context.")
            except Exception:
                verify = True
                logger.warning(
                    "certifi not found or failed to load. Using default SSL verification."
                )

        return httpx.AsyncClient(
            timeout=self.settings.request_timeout,
            verify=verify,
            follow_redirects=self.settings.follow_redirects,
            headers={"User-Agent": self.settings.user_agent},
        )

    async def _default_session(self) -> httpx.AsyncClient:
        # Only ever called on the engine loop
        if self._http_client is None:
            self._http_client = self._http_client_factory()
        return self._http_client

    def _get_callback_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._callback_executor is None:
                self._callback_executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix=f"{self.settings.engine_thread_name}-callbacks"
                )
            return self._callback_executor

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_flight(self) -> int:
        """Number of transport calls currently in flight."""
        return len(self._registry)

    async def _aclose_resources(self) -> None:
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            logger.debug(f"FlexClient internal HTTP client closed. Client ID: {id(self)}.")
        for hook in (*self.pre_request_hooks, *self.post_request_hooks):
            aclose = getattr(hook, "aclose", None)
            if callable(aclose):
                try:
                    await aclose()
                except Exception:
                    logger.exception(f"Error closing hook {hook_name(hook)}")

    def close(self) -> None:
        """Close the owned session and hooks, stop the engine loop and the callback thread.

        Requests still in flight are cancelled. Calling ``close`` again does nothing.

        Raises:
            RuntimeError: If called from the engine thread, for example from a hook.
        """
        if self._engine.in_engine_thread():
            raise RuntimeError("FlexClient.close() cannot be called from the engine thread")
        with self._lock:
            if self._closed:
                return
            self._closed = True
            executor, self._callback_executor = self._callback_executor, None
        logger.info(f"FlexClient.close() called. Client ID: {id(self)}.")
        if self._engine.running:
            self._engine.submit(self._aclose_resources()).result()
        self._engine.stop()
        if executor is not None:
            executor.shutdown(wait=False)

    async def aclose(self) -> None:
        """Async variant of :meth:`close`; runs it off the caller's loop."""
        await asyncio.to_thread(self.close)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    async def __aenter__(self) -> Self:
        logger.debug(f"FlexClient.__aenter__() called. Client ID: {id(self)}.")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        await self.aclose()
        logger.debug(f"FlexClient.__aexit__() finished. Client ID: {id(self)}.")

    # --- Pipeline plumbing ---

    @staticmethod
    def _parameters(
        path: str,
        method: str,
        body: RequestBody | Mapping[str, Any] | None,
        headers: Mapping[str, str] | None,
        session: httpx.AsyncClient | None,
    ) -> RequestParameters:
        return RequestParameters(
            session=session,
            path=path,
            method=method,
            body=body,
            headers=dict(headers or {}),
        )

    def _model_body(
        self,
        body: RequestBody | Mapping[str, Any] | None,
        payload: Any,
        encoder: Encoder | None,
        content_type: str,
    ) -> RequestBody | Mapping[str, Any] | None:
        if payload is _UNSET:
            return body
        if body is not None:
            raise ValueError("Pass either body or payload, not both")
        return RawBody((encoder or self.default_encoder).encode(payload), content_type)

    def _logical_request(
        self,
        request_parameters: RequestParameters,
        observers: RequestObservers,
        skip_hooks: bool,
    ) -> LogicalRequest:
        return LogicalRequest(
            self._dispatcher,
            request_parameters,
            pre_request_hooks=() if skip_hooks else self.pre_request_hooks,
            post_request_hooks=() if skip_hooks else self.post_request_hooks,
            observers=observers,
        )

    async def _run_decoded(
        self, logical_request: LogicalRequest, output: type[T], decoder: Decoder
    ) -> T:
        response = await logical_request.run()
        return decode_response(response, output, decoder)

    def _submit(self, coro) -> concurrent.futures.Future:
        if self._closed:
            coro.close()
            raise RuntimeError("FlexClient is closed")
        return self._engine.submit(coro)

    def _check_not_engine_thread(self, name: str) -> None:
        if self._engine.in_engine_thread():
            raise RuntimeError(
                f"{name}() would deadlock when called from the engine thread "
                f"(e.g. from a hook); await request() instead"
            )

    def _check_session_loop(self, session: httpx.AsyncClient | None, name: str) -> None:
        if session is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._session_loops.owner(session) is running:
            raise RuntimeError(
                f"{name}() would deadlock: the session belongs to the running "
                f"event loop; await request() instead"
            )

    def _callback_runner(
        self, callback_loop: asyncio.AbstractEventLoop | None
    ) -> Callable[..., Any]:
        if self._closed:
            raise RuntimeError("FlexClient is closed")
        loop = callback_loop or self._callback_loop
        if loop is not None:
            return loop.call_soon_threadsafe
        return self._get_callback_executor().submit

    @staticmethod
    def _invoke_callback(callback: Callable[..., Any], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Error in callback {hook_name(callback)}")

    def _start_with_callback(
        self,
        coro,
        request_parameters: RequestParameters,
        completion: Completion,
        run: Callable[..., Any],
    ) -> None:
        def deliver(future: concurrent.futures.Future) -> None:
            if future.cancelled():
                result: Result[Any] = Result.failure(
                    CancelledByCallerError(request_parameters=request_parameters)
                )
            elif (error := future.exception()) is not None:
                result = Result.failure(error)
            else:
                result = Result.success(future.result())
            run(self._invoke_callback, completion, result)

        self._submit(coro).add_done_callback(deliver)

    def _callback_observers(
        self, progress: ProgressCallback | None, run: Callable[..., Any]
    ) -> RequestObservers:
        if progress is None:
            return RequestObservers()
        return RequestObservers(
            on_progress=lambda fraction: run(self._invoke_callback, progress, fraction)
        )

    # --- Response entry points ---

    def request_sync(
        self,
        path: str,
        method: str = "GET",
        body: RequestBody | Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        *,
        session: httpx.AsyncClient | None = None,
        progress: ProgressCallback | None = None,
        skip_hooks: bool = False,
    ) -> Response:
        """Run a request and block the calling thread until it completes.

        ``progress`` is called on the thread running the transport call: the
        engine thread, or the thread of the loop that owns ``session``.

        Raises:
            RequestError: The classified transport failure.
            RuntimeError: If called from the engine thread, or from the running
                loop that owns ``session``.
            Exception: Whatever a hook raised.
        """
        self._check_not_engine_thread("request_sync")
        self._check_session_loop(session, "request_sync")
        params = self._parameters(path, method, body, headers, session)
        logical_request = self._logical_request(
            params, RequestObservers(on_progress=progress), skip_hooks
        )
        return self._submit(logical_request.run()).result()

    def request_with_callback(
        self,
        path: str,
        method: str = "GET",
        body: RequestBody | Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        *,
        completion: Completion,
        callback_loop: asyncio.AbstractEventLoop | None = None,
        session: httpx.AsyncClient | None = None,
        progress: ProgressCallback | None = None,
        skip_hooks: bool = False,
    ) -> None:
        """Start a request and deliver its ``Result[Response]`` to ``completion``.

        ``completion`` runs exactly once, and ``progress`` runs each time,
        on ``callback_loop`` if given, else on the client's callback loop,
        else on the client's callback thread. Errors raised by callbacks are
        logged.
        """
        params = self._parameters(path, method, body, headers, session)
        run = self._callback_runner(callback_loop)
        logical_request = self._logical_request(
            params, self._callback_observers(progress, run), skip_hooks
        )
        self._start_with_callback(logical_request.run(), params, completion, run)

    def stream(
        self,
        path: str,
        method: str = "GET",
        body: RequestBody | Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        *,
        session: httpx.AsyncClient | None = None,
        progress: ProgressCallback | None = None,
        skip_hooks: bool = False,
    ) -> RequestHandle[Response]:
        """Start a request and return a handle observed from the running loop.

        Must be called with a running event loop. ``progress`` runs on that
        loop. A ``session`` not yet bound to a loop is bound to it, so the
        caller may keep using the session on its own loop too.
        """
        loop = asyncio.get_running_loop()
        if session is not None:
            self._session_loops.bind(session, loop)
        params = self._parameters(path, method, body, headers, session)
        handle: RequestHandle[Response] = RequestHandle(loop, params, progress)
        logical_request = self._logical_request(params, handle._observers(), skip_hooks)
        handle._attach(self._submit(logical_request.run()))
        return handle

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: RequestBody | Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        *,
        session: httpx.AsyncClient | None = None,
        progress: ProgressCallback | None = None,
        skip_hooks: bool = False,
    ) -> Response:
        """Run a request and await its response.

        Cancelling the awaiting task cancels the request.
        """
        return await self.stream(
            path,
            method,
            body,
            headers,
            session=session,
            progress=progress,
            skip_hooks=skip_hooks,
        )

    # --- Structured payload entry points ---

    def request_model_sync(
        self,
        path: str,
        method: str,
        output: type[T],
        *,
        body: RequestBody | Mapping[str, Any] | None = None,
        payload: Any = _UNSET,
        headers: Mapping[str, str] | None = None,
        encoder: Encoder | None = None,
        decoder: Decoder | None = None,
        content_type: str = "application/json",
        session: httpx.AsyncClient | None = None,
        progress: ProgressCallback | None = None,
        skip_hooks: bool = False,
    ) -> T:
        """Blocking request whose body is decoded into ``output``.

        ``payload``, if given, is encoded as the request body with ``encoder``
        or the client's default encoder, sent with ``content_type``.

        Raises:
            EmptyResponseError: If the response has no body.
            DecodingError: If the body does not decode into ``output``.
        """
        self._check_not_engine_thread("request_model_sync")
        self._check_session_loop(session, "request_model_sync")
        params = self._parameters(
            path,
            method,
            self._model_body(body, payload, encoder, content_type),
            headers,
            session,
        )
        logical_request = self._logical_request(
            params, RequestObservers(on_progress=progress), skip_hooks
        )
        coro = self._run_decoded(logical_request, output, decoder or self.default_decoder)
        return self._submit(coro).result()

    def request_model_with_callback(
        self,
        path: str,
        method: str,
        output: type[T],
        *,
        completion: Completion,
        body: RequestBody | Mapping[str, Any] | None = None,
        payload: Any = _UNSET,
        headers: Mapping[str, str] | None = None,
        encoder: Encoder | None = None,
        decoder: Decoder | None = None,
        content_type: str = "application/json",
        callback_loop: asyncio.AbstractEventLoop | None = None,
        session: httpx.AsyncClient | None = None,
        progress: ProgressCallback | None = None,
        skip_hooks: bool = False,
    ) -> None:
        """Callback request whose ``completion`` receives a ``Result`` of ``output``."""
        params = self._parameters(
            path,
            method,
            self._model_body(body, payload, encoder, content_type),
            headers,
            session,
        )
        run = self._callback_runner(callback_loop)
        logical_request = self._logical_request(
            params, self._callback_observers(progress, run), skip_hooks
        )
        coro = self._run_decoded(logical_request, output, decoder or self.default_decoder)
        self._start_with_callback(coro, params, completion, run)

    def stream_model(
        self,
        path: str,
        method: str,
        output: type[T],
        *,
        body: RequestBody | Mapping[str, Any] | None = None,
        payload: Any = _UNSET,
        headers: Mapping[str, str] | None = None,
        encoder: Encoder | None = None,
        decoder: Decoder | None = None,
        content_type: str = "application/json",
        session: httpx.AsyncClient | None = None,
        progress: ProgressCallback | None = None,
        skip_hooks: bool = False,
    ) -> RequestHandle[T]:
        """Stream-style request whose handle resolves to the decoded ``output``."""
        loop = asyncio.get_running_loop()
        if session is not None:
            self._session_loops.bind(session, loop)
        params = self._parameters(
            path,
            method,
            self._model_body(body, payload, encoder, content_type),
            headers,
            session,
        )
        handle: RequestHandle[T] = RequestHandle(loop, params, progress)
        logical_request = self._logical_request(params, handle._observers(), skip_hooks)
        coro = self._run_decoded(logical_request, output, decoder or self.default_decoder)
        handle._attach(self._submit(coro))
        return handle

    async def request_model(
        self,
        path: str,
        method: str,
        output: type[T],
        *,
        body: RequestBody | Mapping[str, Any] | None = None,
        payload: Any = _UNSET,
        headers: Mapping[str, str] | None = None,
        encoder: Encoder | None = None,
        decoder: Decoder | None = None,
        content_type: str = "application/json",
        session: httpx.AsyncClient | None = None,
        progress: ProgressCallback | None = None,
        skip_hooks: bool = False,
    ) -> T:
        """Await a request whose body is decoded into ``output``."""
        return await self.stream_model(
            path,
            method,
            output,
            body=body,
            payload=payload,
            headers=headers,
            encoder=encoder,
            decoder=decoder,
            content_type=content_type,
            session=session,
            progress=progress,
            skip_hooks=skip_hooks,
        )
