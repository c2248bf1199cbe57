"""Tests for hook results, block hooks and the stock hooks."""

import pytest
from pydantic import ValidationError

from flexhttp.exceptions import ConfigurationError
from flexhttp.hooks import (
    COMPLETED,
    CONTINUE,
    BaseURLHook,
    BlockPostRequestHook,
    BlockPreRequestHook,
    DefaultHeadersHook,
    HookAction,
    PostRequestHook,
    PostRequestHookResult,
    PreRequestHook,
    as_post_request_hook,
    as_pre_request_hook,
    hook_name,
    make_new_request,
)
from flexhttp.types import RequestParameters

URL = "https://api.example.com/v2/items"


def test_hook_result_constants():
    assert CONTINUE.action is HookAction.CONTINUE
    assert COMPLETED.action is HookAction.COMPLETED
    assert CONTINUE.request_parameters is None


def test_make_new_request_carries_parameters():
    params = RequestParameters(path=URL)

    result = make_new_request(params)

    assert result.action is HookAction.MAKE_NEW_REQUEST
    assert result.request_parameters is params


def test_hook_result_validation():
    with pytest.raises(ValidationError):
        PostRequestHookResult(action=HookAction.MAKE_NEW_REQUEST)
    with pytest.raises(ValidationError):
        PostRequestHookResult(
            action=HookAction.CONTINUE, request_parameters=RequestParameters(path=URL)
        )


def test_callables_are_wrapped():
    def add_header(params):
        return params.with_headers({"X": "1"})

    pre = as_pre_request_hook(add_header)
    post = as_post_request_hook(lambda response, original: CONTINUE)

    assert isinstance(pre, BlockPreRequestHook)
    assert isinstance(post, BlockPostRequestHook)
    assert isinstance(pre, PreRequestHook)
    assert isinstance(post, PostRequestHook)
    assert pre.execute(RequestParameters(path=URL)).headers == {"X": "1"}
    assert hook_name(pre) == "test_callables_are_wrapped.<locals>.add_header"


def test_hook_objects_are_not_wrapped():
    hook = DefaultHeadersHook({"Accept": "application/json"})

    assert as_pre_request_hook(hook) is hook
    assert hook_name(hook) == "DefaultHeadersHook"


def test_non_hooks_are_rejected():
    with pytest.raises(TypeError, match="Not a pre-request hook"):
        as_pre_request_hook("nope")
    with pytest.raises(TypeError, match="Not a post-request hook"):
        as_post_request_hook(42)


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("items", "https://api.example.com/v2/items"),
        ("/items/1", "https://api.example.com/v2/items/1"),
        ("items?page=2", "https://api.example.com/v2/items?page=2"),
        ("https://other.example.com/x", "https://other.example.com/x"),
    ],
)
def test_base_url_hook(path, expected):
    hook = BaseURLHook("https://api.example.com/v2/")

    assert hook.execute(RequestParameters(path=path)).path == expected


def test_base_url_hook_requires_absolute_url():
    with pytest.raises(ConfigurationError, match="absolute URL"):
        BaseURLHook("/v2")


def test_default_headers_hook_does_not_override():
    hook = DefaultHeadersHook({"Accept": "application/json", "X-Client": "flexhttp"})
    params = RequestParameters(path=URL, headers={"accept": "text/csv"})

    result = hook.execute(params)

    assert result.headers == {"accept": "text/csv", "X-Client": "flexhttp"}
    assert params.headers == {"accept": "text/csv"}


def test_default_headers_hook_returns_same_parameters_when_complete():
    hook = DefaultHeadersHook({"Accept": "application/json"})
    params = RequestParameters(path=URL, headers={"Accept": "*/*"})

    assert hook.execute(params) is params
