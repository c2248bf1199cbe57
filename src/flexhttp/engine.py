"""Request execution engine.

Every caller-initiated request becomes one :class:`LogicalRequest`, a small
state machine::

    START -> PRE_HOOKS -> DISPATCH -> POST_HOOKS -> DONE
                                   ^      |
                                   +------+  (make_new_request)

Any stage may move to FAILED. Physical transport calls are made by the
:class:`Dispatcher`, and every logical request of a client runs on that
client's :class:`EngineLoop`, a private asyncio loop on a daemon thread. The
blocking, callback and stream entry points in :mod:`flexhttp.client` all
submit the same ``LogicalRequest.run()`` coroutine to it.

httpx sessions keep connections that belong to the event loop that opened
them. A caller-supplied session is therefore bound to one loop, recorded in
:class:`SessionLoops`, and its transport calls always run on that loop.
"""

import asyncio
import concurrent.futures
import inspect
import threading
import weakref
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from enum import Enum
from typing import Any, TypeVar

import httpx

from .hooks import (
    HookAction,
    PostRequestHook,
    PostRequestHookResult,
    PreRequestHook,
    hook_name,
)
from .exceptions import TransportError
from .log_config import logger
from .models import Response
from .registry import NO_OBSERVERS, InFlightRegistry, RequestObservers
from .transport import TRANSPORT_ERRORS, build_request, normalize_outcome
from .types import RequestParameters

T = TypeVar("T")

SessionProvider = Callable[[], Awaitable[httpx.AsyncClient]]


async def _resolve(value: T | Awaitable[T]) -> T:
    if inspect.isawaitable(value):
        return await value
    return value


def _content_length(response: httpx.Response) -> int | None:
    value = response.headers.get("Content-Length")
    if value is None or not value.strip().isdigit():
        return None
    return int(value)


class EngineLoop:
    """A private asyncio event loop running on a daemon thread.

    The thread starts on the first :meth:`submit`. After :meth:`stop` the
    engine cannot be restarted.
    """

    def __init__(self, name: str = "flexhttp-engine"):
        self.name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._stopped = False

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def in_engine_thread(self) -> bool:
        """Whether the current thread is the one running this engine's loop."""
        thread = self._thread
        return thread is not None and threading.current_thread() is thread

    def _ensure_started(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._stopped:
                raise RuntimeError("Engine loop has been stopped")
            if self._loop is None:
                loop = asyncio.new_event_loop()
                started = threading.Event()
                thread = threading.Thread(
                    target=self._run, args=(loop, started), name=self.name, daemon=True
                )
                thread.start()
                started.wait()
                self._loop, self._thread = loop, thread
                logger.debug(f"Engine loop started on thread {self.name}")
            return self._loop

    @staticmethod
    def _run(loop: asyncio.AbstractEventLoop, started: threading.Event) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(started.set)
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def submit(self, coro: Coroutine[Any, Any, T]) -> "concurrent.futures.Future[T]":
        """Schedule ``coro`` on the engine loop.

        Cancelling the returned future cancels the task running ``coro``.
        """
        try:
            loop = self._ensure_started()
        except RuntimeError:
            coro.close()
            raise
        return asyncio.run_coroutine_threadsafe(coro, loop)

    def stop(self, timeout: float | None = None) -> None:
        """Stop the loop, cancel what is still running and join the thread."""
        with self._lock:
            self._stopped = True
            loop, thread = self._loop, self._thread
            self._loop = None
        if loop is None or thread is None:
            return
        if threading.current_thread() is thread:
            raise RuntimeError("The engine loop cannot be stopped from its own thread")
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        logger.debug(f"Engine loop on thread {self.name} stopped")


class SessionLoops:
    """Thread-safe record of the event loop each caller-supplied session is bound to.

    The first loop a session is bound to stays its owner for as long as the
    session is alive.
    """

    def __init__(self) -> None:
        self._loops: weakref.WeakKeyDictionary[
            httpx.AsyncClient, asyncio.AbstractEventLoop
        ] = weakref.WeakKeyDictionary()
        self._lock = threading.Lock()

    def bind(
        self, session: httpx.AsyncClient, loop: asyncio.AbstractEventLoop
    ) -> asyncio.AbstractEventLoop:
        """Bind ``session`` to ``loop`` unless it is bound already; return its owner."""
        with self._lock:
            return self._loops.setdefault(session, loop)

    def owner(self, session: httpx.AsyncClient) -> asyncio.AbstractEventLoop | None:
        with self._lock:
            return self._loops.get(session)


class Dispatcher:
    """Performs single transport calls, with hooks skipped.

    Each call is registered in the in-flight registry under a fresh id for
    as long as it runs, so progress and data from concurrent calls never mix.
    The default session is used on the engine loop. A caller-supplied session
    is used on the loop it is bound to in ``session_loops``, and is bound to
    the engine loop if it has no owner yet.
    """

    def __init__(
        self,
        registry: InFlightRegistry,
        default_session: SessionProvider,
        session_loops: SessionLoops | None = None,
    ):
        self._registry = registry
        self._default_session = default_session
        self._session_loops = session_loops or SessionLoops()

    async def dispatch(
        self,
        request_parameters: RequestParameters,
        observers: RequestObservers = NO_OBSERVERS,
    ) -> Response:
        """Send one request and read its body.

        Raises:
            InvalidURLError: If the URL is invalid; nothing is sent.
            RequestError: The classified transport failure.
        """
        session = request_parameters.session
        if session is None:
            return await self._send(request_parameters, await self._default_session(), observers)
        loop = asyncio.get_running_loop()
        owner = self._session_loops.bind(session, loop)
        if owner is loop:
            return await self._send(request_parameters, session, observers)
        return await self._send_on(owner, request_parameters, session, observers)

    async def _send_on(
        self,
        loop: asyncio.AbstractEventLoop,
        request_parameters: RequestParameters,
        session: httpx.AsyncClient,
        observers: RequestObservers,
    ) -> Response:
        """Make the transport call on ``loop``, the loop that owns ``session``.

        Cancelling the awaiting task cancels the call on ``loop``.

        Raises:
            TransportError: If ``loop`` is already closed.
        """
        coro = self._send(request_parameters, session, observers)
        try:
            future = asyncio.run_coroutine_threadsafe(coro, loop)
        except RuntimeError as e:
            coro.close()
            logger.error(
                f"Cannot send {request_parameters.method} {request_parameters.path}: "
                f"the event loop that owns its session is closed"
            )
            raise TransportError(e, request_parameters=request_parameters) from e
        return await asyncio.wrap_future(future)

    async def _send(
        self,
        request_parameters: RequestParameters,
        session: httpx.AsyncClient,
        observers: RequestObservers,
    ) -> Response:
        request = build_request(request_parameters, session)

        request_id = self._registry.register(request_parameters, observers)
        http_response: httpx.Response | None = None
        body: bytes | None = None
        error: BaseException | None = None
        logger.debug(f"Sending request [{request_id}]: {request.method} {request.url}")
        logger.trace(f"Request Headers: {request.headers}")
        try:
            http_response = await session.send(request, stream=True)
            try:
                self._registry.start_response(
                    request_id, http_response.status_code, _content_length(http_response)
                )
                async for chunk in http_response.aiter_bytes():
                    self._registry.record_chunk(
                        request_id, chunk, http_response.num_bytes_downloaded
                    )
            finally:
                await http_response.aclose()
            body = self._registry.body(request_id)
            logger.debug(
                f"Received response [{request_id}]: {http_response.status_code} "
                f"({len(body or b'')} bytes) for {request.url}"
            )
            logger.trace(f"Response Headers: {http_response.headers}")
        except TRANSPORT_ERRORS as e:
            http_response = None
            error = e
        finally:
            self._registry.remove(request_id)

        return normalize_outcome(
            request_parameters, response=http_response, body=body, error=error
        )


class RequestState(str, Enum):
    START = "start"
    PRE_HOOKS = "pre_hooks"
    DISPATCH = "dispatch"
    POST_HOOKS = "post_hooks"
    DONE = "done"
    FAILED = "failed"


class LogicalRequest:
    """One caller-initiated request, run through the hook pipeline once.

    A logical request makes one transport call, plus one more for each
    post-request hook that returns ``make_new_request``.

    Attributes:
        state: Current :class:`RequestState`.
        initial_parameters: Parameters supplied by the caller.
        final_parameters: Parameters after the pre-request hooks; these are
            what post-request hooks receive as the original parameters.
        dispatch_count: Number of transport calls made so far.
        response: The final response once DONE.
        error: The error once FAILED.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        request_parameters: RequestParameters,
        *,
        pre_request_hooks: Sequence[PreRequestHook] = (),
        post_request_hooks: Sequence[PostRequestHook] = (),
        observers: RequestObservers = NO_OBSERVERS,
    ):
        self._dispatcher = dispatcher
        self._pre_request_hooks = tuple(pre_request_hooks)
        self._post_request_hooks = tuple(post_request_hooks)
        self._observers = observers
        self.state = RequestState.START
        self.initial_parameters = request_parameters
        self.final_parameters: RequestParameters | None = None
        self.dispatch_count = 0
        self.response: Response | None = None
        self.error: BaseException | None = None

    def _transition(self, state: RequestState) -> None:
        logger.trace(
            f"{self.initial_parameters.method} {self.initial_parameters.path}: "
            f"{self.state.value} -> {state.value}"
        )
        self.state = state

    async def run(self) -> Response:
        """Run the request to completion.

        Raises:
            RequestError: For classified transport failures.
            Exception: Whatever a hook raised, unchanged.
        """
        if self.state is not RequestState.START:
            raise RuntimeError("A LogicalRequest can only be run once")
        try:
            parameters = await self._run_pre_request_hooks()
            response = await self._dispatch(parameters)
            response = await self._run_post_request_hooks(response, parameters)
        except BaseException as e:
            self.error = e
            self._transition(RequestState.FAILED)
            raise
        self.response = response
        self._transition(RequestState.DONE)
        return response

    async def _run_pre_request_hooks(self) -> RequestParameters:
        self._transition(RequestState.PRE_HOOKS)
        parameters = self.initial_parameters
        if self._pre_request_hooks:
            logger.debug(
                f"Executing {len(self._pre_request_hooks)} pre-request hooks "
                f"for {parameters.method} {parameters.path}"
            )
        for hook in self._pre_request_hooks:
            try:
                parameters = await _resolve(hook.execute(parameters))
            except Exception as e:
                logger.error(f"Error executing pre-request hook {hook_name(hook)}: {e}")
                raise
            if not isinstance(parameters, RequestParameters):
                raise TypeError(
                    f"Pre-request hook {hook_name(hook)} returned "
                    f"{type(parameters).__name__}, expected RequestParameters"
                )
        self.final_parameters = parameters
        return parameters

    async def _dispatch(self, parameters: RequestParameters) -> Response:
        self._transition(RequestState.DISPATCH)
        self.dispatch_count += 1
        return await self._dispatcher.dispatch(parameters, self._observers)

    async def _run_post_request_hooks(
        self, response: Response, original_parameters: RequestParameters
    ) -> Response:
        if self._post_request_hooks:
            logger.debug(
                f"Executing {len(self._post_request_hooks)} post-request hooks "
                f"for {original_parameters.method} {original_parameters.path}"
            )
        for hook in self._post_request_hooks:
            self._transition(RequestState.POST_HOOKS)
            try:
                result = await _resolve(hook.execute(response, original_parameters))
            except Exception as e:
                logger.error(f"Error executing post-request hook {hook_name(hook)}: {e}")
                raise
            if not isinstance(result, PostRequestHookResult):
                raise TypeError(
                    f"Post-request hook {hook_name(hook)} returned "
                    f"{type(result).__name__}, expected PostRequestHookResult"
                )
            if result.action is HookAction.COMPLETED:
                logger.debug(f"Post-request hook {hook_name(hook)} completed the chain")
                break
            if result.action is HookAction.MAKE_NEW_REQUEST:
                assert result.request_parameters is not None
                logger.debug(
                    f"Post-request hook {hook_name(hook)} requested "
                    f"{result.request_parameters.method} {result.request_parameters.path}"
                )
                response = await self._dispatch(result.request_parameters)
        return response
