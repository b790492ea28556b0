"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The connection machinery, leaf first:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                            LISTENER                                  │
    │  • Owns the listening socket, one accept outstanding at a time      │
    │  • Starts one Session task per accepted connection                  │
    │  • Survives any single accept failure                               │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ one task per connection
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                            SESSION                                   │
    │  • IDLE → READING → DISPATCHING → WRITING → READING | CLOSED        │
    │  • Hands each request to the shared handler with a Responder        │
    │  • Keep-alive or close decided after every write                    │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                        TRANSPORT STREAM                              │
    │  • Buffered request reads with an idle deadline                     │
    │  • Response writes, half-close, close                               │
    └─────────────────────────────────────────────────────────────────────┘

Faults at any level go to the diagnostics sink (report_error), never up to
the event loop. Blocking handlers run on the ThreadPool.

=============================================================================
"""

from .stream import (
    TransportStream,
    StreamError,
    EndOfStream,
    StreamTimeout,
    TransportError,
    ProtocolError,
)
from .diagnostics import ErrorSink, describe, report_error
from .thread_pool import ThreadPool
from .handler import (
    RequestHandler,
    Responder,
    sync_handler,
    async_handler,
    threaded_handler,
)
from .session import Session, SessionState
from .listener import Listener, serve_http

__all__ = [
    "TransportStream",
    "StreamError",
    "EndOfStream",
    "StreamTimeout",
    "TransportError",
    "ProtocolError",
    "ErrorSink",
    "describe",
    "report_error",
    "ThreadPool",
    "RequestHandler",
    "Responder",
    "sync_handler",
    "async_handler",
    "threaded_handler",
    "Session",
    "SessionState",
    "Listener",
    "serve_http",
]
