"""
pytest configuration and fixtures.
"""

import asyncio
import socket
import threading
import time
from dataclasses import replace
from typing import Dict, Generator, List, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from asynchttp import HTTPServer, ServerConfig
from asynchttp.core import TransportStream
from asynchttp.handlers import hello_handler


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /abc?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: text/html\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    return (
        b"POST /api/users HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        + b"\r\n"
    ) + body


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        idle_timeout=5.0,
        workers=2,
        log_level="WARNING",
        access_log=False,
        shutdown_timeout=2.0,
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


# =============================================================================
# DIAGNOSTICS
# =============================================================================

class ErrorRecorder:
    """Error sink that remembers every (operation, error) report."""

    def __init__(self):
        self.reports: List[Tuple[str, BaseException]] = []
        self._cond = threading.Condition()

    def __call__(self, what: str, error: BaseException) -> None:
        with self._cond:
            self.reports.append((what, error))
            self._cond.notify_all()

    def operations(self) -> List[str]:
        with self._cond:
            return [what for what, _ in self.reports]

    def errors_for(self, what: str) -> List[BaseException]:
        with self._cond:
            return [error for op, error in self.reports if op == what]

    def wait_for(self, what: str, timeout: float = 5.0) -> BaseException:
        """Block until an error for ``what`` is reported."""
        deadline = time.monotonic() + timeout
        with self._cond:
            while True:
                for op, error in self.reports:
                    if op == what:
                        return error
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise AssertionError(f"no {what!r} error reported; got {self.reports}")
                self._cond.wait(remaining)


@pytest.fixture
def errors() -> ErrorRecorder:
    return ErrorRecorder()


# =============================================================================
# IN-PROCESS STREAMS
# =============================================================================

async def stream_pair(**options) -> Tuple[TransportStream, asyncio.StreamReader, asyncio.StreamWriter]:
    """
    A TransportStream connected to an asyncio client over a socketpair.

    Returns:
        (server stream, client reader, client writer)
    """
    server_sock, client_sock = socket.socketpair()
    stream = await TransportStream.from_socket(server_sock, **options)
    reader, writer = await asyncio.open_connection(sock=client_sock)
    return stream, reader, writer


# =============================================================================
# BLOCKING CLIENT
# =============================================================================

class HTTPClient:
    """Minimal blocking HTTP/1.x client over one TCP connection."""

    def __init__(self, address: Tuple[str, int], timeout: float = 5.0):
        self.sock = socket.create_connection(address, timeout=timeout)
        self._buffer = b""

    def __enter__(self) -> "HTTPClient":
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.sock.close()

    def send(self, data: bytes):
        self.sock.sendall(data)

    def request(self, method: str, target: str, version: str = "HTTP/1.1", headers: Optional[Dict[str, str]] = None):
        lines = [f"{method} {target} {version}", "Host: localhost"]
        for name, value in (headers or {}).items():
            lines.append(f"{name}: {value}")
        self.send(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1"))

    def _recv(self) -> bytes:
        chunk = self.sock.recv(4096)
        if not chunk:
            raise ConnectionError(f"connection closed; buffered {self._buffer!r}")
        return chunk

    def read_response(self, head_only: bool = False) -> Tuple[str, Dict[str, str], bytes]:
        """
        Read one response.

        Returns:
            (status line, lowercase headers, body)
        """
        while b"\r\n\r\n" not in self._buffer:
            self._buffer += self._recv()

        head, self._buffer = self._buffer.split(b"\r\n\r\n", 1)
        lines = head.decode("latin-1").split("\r\n")
        headers = {}
        for line in lines[1:]:
            name, value = line.split(":", 1)
            headers[name.strip().lower()] = value.strip()

        length = 0 if head_only else int(headers.get("content-length", "0"))
        while len(self._buffer) < length:
            self._buffer += self._recv()

        body, self._buffer = self._buffer[:length], self._buffer[length:]
        return lines[0], headers, body

    def read_until_closed(self) -> bytes:
        """Everything the server sends before it closes the connection."""
        data, self._buffer = self._buffer, b""
        while True:
            try:
                chunk = self.sock.recv(4096)
            except ConnectionResetError:
                return data
            if not chunk:
                return data
            data += chunk


# =============================================================================
# BACKGROUND SERVER
# =============================================================================

class ServerThread:
    """Runs an HTTPServer on its own event loop in a background thread."""

    def __init__(self, server: HTTPServer):
        self.server = server
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        return self.server.address

    def start(self) -> "ServerThread":
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_started(timeout=5.0):
            raise RuntimeError("Server failed to start")
        return self

    def stop(self):
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=10.0)


@pytest.fixture
def run_server(config: ServerConfig, errors: ErrorRecorder):
    """
    Factory fixture: start a server for a handler, stopped at teardown.

        srv = run_server(hello_handler, idle_timeout=0.5)
    """
    started: List[ServerThread] = []

    def start(handler=hello_handler, threaded: bool = False, **overrides) -> ServerThread:
        server_config = replace(config, **overrides)
        if threaded:
            server = HTTPServer.threaded(handler, server_config, on_error=errors)
        else:
            server = HTTPServer(handler, server_config, on_error=errors)
        thread = ServerThread(server).start()
        started.append(thread)
        return thread

    yield start

    for thread in started:
        thread.stop()


@pytest.fixture
def hello_server(run_server) -> Generator[ServerThread, None, None]:
    """A server running the hello handler."""
    yield run_server()


@pytest.fixture
def make_client():
    """Factory for blocking HTTPClient connections, closed at teardown."""
    clients: List[HTTPClient] = []

    def connect(address: Tuple[str, int], timeout: float = 5.0) -> HTTPClient:
        client = HTTPClient(address, timeout)
        clients.append(client)
        return client

    yield connect

    for client in clients:
        client.close()


@pytest.fixture
def make_stream_pair():
    """The stream_pair coroutine function, for async tests."""
    return stream_pair
