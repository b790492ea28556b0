"""
=============================================================================
SESSION - ONE CONNECTION'S REQUEST/RESPONSE LIFECYCLE
=============================================================================

A Session owns one TransportStream and drives it through an explicit state
machine. Each Session runs on its own asyncio.Task, so everything below is
strictly sequential for one connection while sessions run concurrently.

    ┌──────┐  run()   ┌─────────┐  request   ┌─────────────┐
    │ IDLE │ ───────► │ READING │ ─────────► │ DISPATCHING │
    └──────┘          └────┬────┘            └──────┬──────┘
                           │ ▲                      │ respond(response)
          EndOfStream,     │ │ keep-alive           ▼
          timeout, error   │ └─────────────── ┌─────────┐
                           │                  │ WRITING │
                           ▼                  └────┬────┘
                      ┌────────┐   need_eof /      │
                      │ CLOSED │ ◄─── write error ─┘
                      └────────┘

=============================================================================
ORDERING
=============================================================================

    read #1 ──► dispatch #1 ──► write #1 ──► read #2 ──► dispatch #2 ...

The next read is issued only after the previous response is flushed. Bytes
of request N+1 that arrived early stay in the stream's buffer; there is no
pipelining.

=============================================================================
FAILURES
=============================================================================

    EndOfStream      → close quietly
    StreamTimeout    → report ("read"), close
    ProtocolError    → report ("read"), close WITHOUT a response
    TransportError   → report ("read"/"write"), close
    handler raises   → report ("handle"), close
    no respond() in  → report ("dispatch"), close
    dispatch_timeout

Nothing escapes run(): a faulty connection never reaches the Listener.

=============================================================================
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Optional

from ..access_log import AccessLog, Exchange
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse
from .diagnostics import ErrorSink, report_error
from .handler import RequestHandler, Responder
from .stream import EndOfStream, StreamError, StreamTimeout, TransportStream


logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    READING = "reading"
    DISPATCHING = "dispatching"
    WRITING = "writing"
    CLOSED = "closed"


# Every state may also move to CLOSED
_TRANSITIONS = {
    SessionState.IDLE: {SessionState.READING},
    SessionState.READING: {SessionState.DISPATCHING},
    SessionState.DISPATCHING: {SessionState.WRITING},
    SessionState.WRITING: {SessionState.READING},
    SessionState.CLOSED: set(),
}


class Session:
    """
    Per-connection state machine.

    Args:
        stream: The accepted connection.
        handler: Shared request handler, see handler.RequestHandler.
        on_error: Diagnostics sink for connection faults.
        dispatch_timeout: Seconds to wait for respond(); None waits forever.
        server_name: Server header for responses that do not set one.
        access_log: Optional access log writer.

    Subclasses may override handle_request() to change how a request is
    turned into a response.
    """

    def __init__(
        self,
        stream: TransportStream,
        handler: RequestHandler,
        on_error: ErrorSink = report_error,
        dispatch_timeout: Optional[float] = 60.0,
        server_name: str = "asynchttp/1.0",
        access_log: Optional[AccessLog] = None,
    ):
        self.stream = stream
        self.handler = handler
        self.on_error = on_error
        self.dispatch_timeout = dispatch_timeout
        self.server_name = server_name
        self.access_log = access_log

        self.id = stream.id
        self.requests_handled = 0

        self._state = SessionState.IDLE
        self._request: Optional[HTTPRequest] = None
        self._exchange: Optional[Exchange] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is SessionState.CLOSED

    def _transition(self, new_state: SessionState) -> None:
        if new_state is not SessionState.CLOSED and new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(
                f"Illegal session transition: {self._state.value} -> {new_state.value}"
            )
        logger.debug(f"[{self.id}] {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _report(self, what: str, error: BaseException) -> None:
        self.on_error(what, error)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def run(self) -> None:
        """Serve the connection until it closes. Never raises StreamError."""
        if self._state is not SessionState.IDLE:
            raise RuntimeError("Session already started")

        logger.debug(f"[{self.id}] Session started for {self.stream.client_address}")
        self._transition(SessionState.READING)
        try:
            while self._state is SessionState.READING:
                request = await self.read()
                if request is None:
                    break

                response = await self.handle_request(request)
                if response is None:
                    break

                await self.write(response)
        finally:
            self.close()
            await self.stream.close()
            logger.debug(f"[{self.id}] Session ended after {self.requests_handled} request(s)")

    async def read(self) -> Optional[HTTPRequest]:
        """
        Read the next request and hand its ownership to the caller.

        Returns None (and closes the session) when no request follows.
        """
        self._request = None
        self._exchange = None
        self.stream.reset_timeout()

        try:
            self._request = await self.stream.read_request()
        except EndOfStream:
            self.close()
            return None
        except StreamError as e:
            self._report("read", e)
            self.close()
            return None

        self._transition(SessionState.DISPATCHING)
        request, self._request = self._request, None

        self._exchange = Exchange.from_request(self.id, request)
        if self.access_log is not None:
            self.access_log.request_received(self.id, request)
        return request

    async def handle_request(self, request: HTTPRequest) -> Optional[HTTPResponse]:
        """
        Invoke the handler and wait for its response.

        Returns None (and closes the session) if the handler raised or did
        not respond within dispatch_timeout.
        """
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[HTTPResponse]" = loop.create_future()
        respond = Responder(loop, future)

        try:
            return await asyncio.wait_for(
                self._dispatch(request, respond, future), self.dispatch_timeout
            )
        except asyncio.TimeoutError:
            self._report(
                "dispatch",
                StreamTimeout(f"dispatch: no response within {self.dispatch_timeout:g}s"),
            )
            self.close()
            return None
        except _HandlerFailed as e:
            self._report("handle", e.error)
            self.close()
            return None
        finally:
            if not future.done():
                future.cancel()

    async def _dispatch(
        self,
        request: HTTPRequest,
        respond: Responder,
        future: "asyncio.Future[HTTPResponse]",
    ) -> HTTPResponse:
        try:
            result = self.handler(request, respond)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            raise _HandlerFailed(e) from e
        return await future

    async def write(self, response: HTTPResponse) -> bool:
        """
        Write the response, then go back to READING or close.

        Returns:
            True if the connection stays open for another request.
        """
        self._transition(SessionState.WRITING)

        exchange = self._exchange
        head_only = exchange is not None and exchange.method == "HEAD"
        try:
            sent = await self.stream.write_response(
                response, head_only=head_only, server_name=self.server_name
            )
        except StreamError as e:
            self._report("write", e)
            self.close()
            return False

        self.requests_handled += 1
        if self.access_log is not None and exchange is not None:
            self.access_log.response_sent(exchange, response.status, sent)

        if response.need_eof:
            self.close()
            return False

        self._transition(SessionState.READING)
        return True

    def close(self) -> None:
        """Half-close the connection. Idempotent; never raises."""
        if self._state is SessionState.CLOSED:
            return
        self._transition(SessionState.CLOSED)
        self.stream.shutdown()


class _HandlerFailed(Exception):
    def __init__(self, error: Exception):
        super().__init__(str(error))
        self.error = error
