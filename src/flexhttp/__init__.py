"""flexhttp: HTTP requests through a hook pipeline, consumed three ways.

This package provides a unified request/response model, pluggable request
bodies, a closed taxonomy of classified errors and an extensible chain of
pre- and post-request hooks. One execution engine backs blocking,
callback-based and stream-based requests, and structured payloads are
encoded and decoded with pydantic.
"""

__version__ = "0.1.0"

from . import auth, body, client, codable, config, exceptions, hooks, log_config, models, types
from .body import FormBody, JSONBody, RawBody, RequestBody
from .client import FlexClient, RequestHandle
from .hooks import COMPLETED, CONTINUE, make_new_request
from .models import DataEvent, ProgressEvent, Response, Result
from .types import RequestParameters

__all__ = [
    "__version__",
    "auth",
    "body",
    "client",
    "codable",
    "config",
    "exceptions",
    "hooks",
    "log_config",
    "models",
    "types",
    "COMPLETED",
    "CONTINUE",
    "DataEvent",
    "FlexClient",
    "FormBody",
    "JSONBody",
    "ProgressEvent",
    "RawBody",
    "RequestBody",
    "RequestHandle",
    "RequestParameters",
    "Response",
    "Result",
    "make_new_request",
]
