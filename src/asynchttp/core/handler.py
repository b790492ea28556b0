"""
=============================================================================
REQUEST HANDLER BINDING
=============================================================================

The server core knows nothing about what a request means. A session hands
each parsed request to a caller-supplied handler together with a response
sink, and writes whatever the sink receives:

    handler(request, respond)
              │
              ├── respond(response) now          (synchronous handler)
              ├── respond(response) after await  (coroutine handler)
              └── respond(response) from another thread (thread pool)

CONTRACT
────────
- ``respond`` must be called exactly once; a second call raises
  RuntimeError("response already sent").
- ``respond`` may be called from any thread. The Responder marshals the
  response onto the session's event loop before the session touches its
  stream.
- A handler may return None or an awaitable. An awaitable is awaited on the
  session's own task, so the session stays strictly sequential.
- Handlers that keep state between requests synchronize it themselves;
  one handler object is shared by every session.

The adapters below turn the common handler shapes into this contract.

=============================================================================
"""

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Optional, Protocol

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, make_string_response
from ..http.status_codes import HTTPStatus
from .thread_pool import ThreadPool


logger = logging.getLogger(__name__)

Respond = Callable[[HTTPResponse], None]


class RequestHandler(Protocol):
    """Handle(request, respond) → None or awaitable."""

    def __call__(
        self, request: HTTPRequest, respond: Respond
    ) -> Optional[Awaitable[None]]:
        ...


class Responder:
    """
    The response sink a session gives to its handler.

    Callable exactly once, from any thread. Delivery resolves the session's
    pending future through ``loop.call_soon_threadsafe``, so the response
    reaches the session on the session's own loop.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, future: "asyncio.Future[HTTPResponse]"):
        self._loop = loop
        self._future = future
        self._lock = threading.Lock()
        self._called = False

    @property
    def called(self) -> bool:
        return self._called

    def __call__(self, response: HTTPResponse) -> None:
        with self._lock:
            if self._called:
                raise RuntimeError("response already sent")
            self._called = True
        self._loop.call_soon_threadsafe(self._deliver, response)

    def _deliver(self, response: HTTPResponse) -> None:
        # The session may have stopped waiting (dispatch timeout, shutdown)
        if not self._future.done():
            self._future.set_result(response)


# =============================================================================
# ADAPTERS
# =============================================================================

def sync_handler(func: Callable[[HTTPRequest], HTTPResponse]) -> RequestHandler:
    """
    Adapt ``func(request) -> HTTPResponse``.

    The function runs on the event loop, so it must not block.
    """
    def handle(request: HTTPRequest, respond: Respond) -> None:
        respond(func(request))

    handle.__name__ = getattr(func, "__name__", "handle")
    return handle


def async_handler(func: Callable[[HTTPRequest], Awaitable[HTTPResponse]]) -> RequestHandler:
    """Adapt ``async func(request) -> HTTPResponse``."""
    async def handle(request: HTTPRequest, respond: Respond) -> None:
        respond(await func(request))

    handle.__name__ = getattr(func, "__name__", "handle")
    return handle


def threaded_handler(
    func: Callable[[HTTPRequest], HTTPResponse],
    pool: ThreadPool,
) -> RequestHandler:
    """
    Run a blocking ``func(request) -> HTTPResponse`` on a pool worker.

    The worker thread calls ``respond`` itself. If the pool queue is full
    the client gets 503; if ``func`` raises, the client gets 500 and the
    connection is closed.
    """
    def handle(request: HTTPRequest, respond: Respond) -> None:
        def work() -> None:
            try:
                response = func(request)
            except Exception as e:
                logger.exception(f"Handler error for {request.method} {request.target}: {e}")
                response = make_string_response(
                    HTTPStatus.INTERNAL_SERVER_ERROR,
                    "Internal Server Error",
                    request.version,
                    keep_alive=False,
                    content_type="text/plain",
                )
            respond(response)

        if not pool.submit(work, block=False):
            logger.warning("Thread pool full, rejecting request")
            respond(make_string_response(
                HTTPStatus.SERVICE_UNAVAILABLE,
                "Server overloaded",
                request.version,
                keep_alive=False,
                content_type="text/plain",
            ))

    handle.__name__ = getattr(func, "__name__", "handle")
    return handle
