# tests/conftest.py
import asyncio
import threading
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpx
import pytest

from flexhttp.client import FlexClient
from flexhttp.config import FlexSettings

API = "https://api.example.com"


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in fixed chunks."""

    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


def chunked_response(
    chunks: list[bytes], status_code: int = 200, *, content_length: bool = True
) -> httpx.Response:
    headers = {"Content-Length": str(sum(map(len, chunks)))} if content_length else {}
    return httpx.Response(status_code, headers=headers, stream=ChunkedStream(chunks))


def mock_session(handler: Callable) -> httpx.AsyncClient:
    """A session whose requests are answered by ``handler`` (sync or async)."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class HangingTransport:
    """Handler that never answers until cancelled; ``started`` is set on entry."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.cancelled = threading.Event()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled.set()
            raise
        return httpx.Response(200)


class PathEchoHandler(BaseHTTPRequestHandler):
    """Answers every GET with its request path, keeping the connection alive."""

    protocol_version = "HTTP/1.1"

    def do_GET(self):
        body = self.path.encode()
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def local_server():
    """Base URL of a real keep-alive HTTP server on localhost."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), PathEchoHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    yield f"http://{host}:{port}"
    server.shutdown()
    server.server_close()


@pytest.fixture
def settings() -> FlexSettings:
    return FlexSettings(engine_thread_name="test-engine", request_timeout=5.0)


@pytest.fixture
def client(settings):
    """A FlexClient without hooks, closed after the test."""
    with FlexClient(settings=settings) as flex_client:
        yield flex_client


@pytest.fixture
def make_client(settings):
    """Factory for FlexClients with hooks; every client is closed after the test."""
    created: list[FlexClient] = []

    def factory(*args, **kwargs) -> FlexClient:
        kwargs.setdefault("settings", settings)
        flex_client = FlexClient(*args, **kwargs)
        created.append(flex_client)
        return flex_client

    yield factory
    for flex_client in created:
        flex_client.close()
