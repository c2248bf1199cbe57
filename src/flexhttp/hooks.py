"""Request hook protocols and stock hooks.

Pre-request hooks fold over the request parameters before dispatch.
Post-request hooks inspect each response and decide whether the chain
continues, completes, or issues a new request. Hooks may be plain functions
or coroutines; both run on the client's engine loop, strictly in the order
they were given to the client.

A hook that asks for a new request gets it dispatched *without* hooks, so a
token-refresh hook can never re-trigger itself.
"""

from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Protocol, runtime_checkable
from urllib.parse import urljoin

import httpx
from pydantic import BaseModel, ConfigDict, model_validator

from .exceptions import ConfigurationError
from .models import Response
from .types import RequestParameters


class HookAction(str, Enum):
    """What the engine does after a post-request hook returns."""

    CONTINUE = "continue"
    """Pass the unmodified last response to the next hook."""

    COMPLETED = "completed"
    """Skip the remaining hooks; the last response becomes final."""

    MAKE_NEW_REQUEST = "make_new_request"
    """Dispatch a new request (hooks skipped) and pass its response to the next hook."""


class PostRequestHookResult(BaseModel):
    """Decision returned by a :class:`PostRequestHook`.

    Use the module-level :data:`CONTINUE` and :data:`COMPLETED` constants and
    :func:`make_new_request` rather than building instances directly.
    """

    model_config = ConfigDict(frozen=True)

    action: HookAction
    request_parameters: RequestParameters | None = None

    @model_validator(mode="after")
    def _check_parameters(self) -> "PostRequestHookResult":
        needs_parameters = self.action is HookAction.MAKE_NEW_REQUEST
        if needs_parameters != (self.request_parameters is not None):
            raise ValueError(
                "request_parameters must be given for MAKE_NEW_REQUEST and only then"
            )
        return self


CONTINUE = PostRequestHookResult(action=HookAction.CONTINUE)
COMPLETED = PostRequestHookResult(action=HookAction.COMPLETED)


def make_new_request(request_parameters: RequestParameters) -> PostRequestHookResult:
    """Ask the engine to dispatch ``request_parameters`` with hooks skipped."""
    return PostRequestHookResult(
        action=HookAction.MAKE_NEW_REQUEST, request_parameters=request_parameters
    )


@runtime_checkable
class PreRequestHook(Protocol):
    """Transforms request parameters before dispatch.

    Any exception raised aborts the request before the transport is called
    and reaches the caller unchanged.
    """

    def execute(
        self, request_parameters: RequestParameters
    ) -> RequestParameters | Awaitable[RequestParameters]: ...


@runtime_checkable
class PostRequestHook(Protocol):
    """Inspects a response and decides how the hook chain proceeds.

    Any exception raised aborts the remaining chain and reaches the caller
    unchanged.
    """

    def execute(
        self, last_response: Response, original_request_parameters: RequestParameters
    ) -> PostRequestHookResult | Awaitable[PostRequestHookResult]: ...


PreRequestBlock = Callable[
    [RequestParameters], RequestParameters | Awaitable[RequestParameters]
]
PostRequestBlock = Callable[
    [Response, RequestParameters],
    PostRequestHookResult | Awaitable[PostRequestHookResult],
]


class BlockPreRequestHook:
    """Adapts a plain function or coroutine function to :class:`PreRequestHook`."""

    def __init__(self, block: PreRequestBlock):
        self.block = block

    def execute(self, request_parameters):
        return self.block(request_parameters)

    def __repr__(self) -> str:
        return f"BlockPreRequestHook({getattr(self.block, '__name__', self.block)!s})"


class BlockPostRequestHook:
    """Adapts a plain function or coroutine function to :class:`PostRequestHook`."""

    def __init__(self, block: PostRequestBlock):
        self.block = block

    def execute(self, last_response, original_request_parameters):
        return self.block(last_response, original_request_parameters)

    def __repr__(self) -> str:
        return f"BlockPostRequestHook({getattr(self.block, '__name__', self.block)!s})"


def as_pre_request_hook(hook: PreRequestHook | PreRequestBlock) -> PreRequestHook:
    if isinstance(hook, PreRequestHook):
        return hook
    if callable(hook):
        return BlockPreRequestHook(hook)
    raise TypeError(f"Not a pre-request hook: {hook!r}")


def as_post_request_hook(hook: PostRequestHook | PostRequestBlock) -> PostRequestHook:
    if isinstance(hook, PostRequestHook):
        return hook
    if callable(hook):
        return BlockPostRequestHook(hook)
    raise TypeError(f"Not a post-request hook: {hook!r}")


def hook_name(hook: object) -> str:
    block = getattr(hook, "block", None)
    target = block if block is not None else hook
    return getattr(target, "__qualname__", None) or type(target).__name__


class BaseURLHook:
    """Resolves relative request paths against a base URL.

    Absolute paths are left untouched, so one client can still reach other
    hosts.
    """

    def __init__(self, base_url: str):
        url = httpx.URL(base_url)
        if not url.is_absolute_url:
            raise ConfigurationError(f"BaseURLHook requires an absolute URL, got {base_url!r}")
        # A trailing slash makes urljoin keep the last path segment
        self.base_url = str(url).rstrip("/") + "/"

    def execute(self, request_parameters: RequestParameters) -> RequestParameters:
        if httpx.URL(request_parameters.path).is_absolute_url:
            return request_parameters
        return request_parameters.replace(
            path=urljoin(self.base_url, request_parameters.path.lstrip("/"))
        )


class DefaultHeadersHook:
    """Adds headers that the request does not already set (case-insensitively)."""

    def __init__(self, headers: Mapping[str, str]):
        self.headers = dict(headers)

    def execute(self, request_parameters: RequestParameters) -> RequestParameters:
        present = {name.lower() for name in request_parameters.headers}
        missing = {
            name: value
            for name, value in self.headers.items()
            if name.lower() not in present
        }
        if not missing:
            return request_parameters
        return request_parameters.with_headers(missing)
