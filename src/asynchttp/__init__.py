"""
=============================================================================
ASYNCHTTP - Event-Driven HTTP/1.x Connection Server
=============================================================================

A single-process asyncio server that accepts TCP connections and runs one
session state machine per connection: read one request, hand it to a
caller-supplied handler, write the response, then keep the connection open
or close it.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   Listener ──accept──► Session ──request──► handler(req, respond)    │
    │      ▲                    │  ▲                         │             │
    │      │                    │  └──────── response ───────┘             │
    │      └── next accept      └──► write ──► READ again | CLOSE          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    asynchttp/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m asynchttp)
    ├── server.py            # HTTPServer: listener + loop + shutdown
    ├── config.py            # ServerConfig dataclass
    ├── access_log.py        # Access log and request dump
    ├── core/
    │   ├── stream.py        # Transport stream + error taxonomy
    │   ├── session.py       # Per-connection state machine
    │   ├── handler.py       # Handler contract and adapters
    │   ├── listener.py      # Accept loop
    │   ├── diagnostics.py   # Error sink
    │   └── thread_pool.py   # Workers for blocking handlers
    ├── http/
    │   ├── request.py       # HTTP/1.x request parsing
    │   ├── response.py      # Response value and serialization
    │   └── status_codes.py  # HTTP status enum
    └── handlers/
        └── hello.py         # "Hello, <target>" handler

=============================================================================
QUICK START
=============================================================================

    from asynchttp import HTTPServer, ServerConfig, sync_handler
    from asynchttp.http import make_string_response, HTTPStatus

    @sync_handler
    def hello(request):
        return make_string_response(
            HTTPStatus.OK, "Hello!", request.version, request.keep_alive
        )

    HTTPServer(hello, ServerConfig(port=8080)).run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .core import (
    Listener,
    Session,
    SessionState,
    TransportStream,
    async_handler,
    serve_http,
    sync_handler,
    threaded_handler,
)
from .server import HTTPServer

__all__ = [
    "HTTPServer",
    "ServerConfig",
    "Listener",
    "Session",
    "SessionState",
    "TransportStream",
    "sync_handler",
    "async_handler",
    "threaded_handler",
    "serve_http",
    "__version__",
]
