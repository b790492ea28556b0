"""
=============================================================================
LISTENER - THE ACCEPT LOOP
=============================================================================

The Listener owns the listening socket. It keeps exactly one accept
outstanding and starts a Session task for every accepted connection:

    ┌──────────────────────────┐
    │  Listening socket        │  bound once, SO_REUSEADDR, listen(backlog)
    └────────────┬─────────────┘
                 │ await sock_accept()     ◄─────────────┐
                 ▼                                       │
        ┌─────────────────┐   failure: report("accept") ─┤
        │   accepted fd   │                              │
        └────────┬────────┘                              │
                 │ create_task(session.run())            │
                 ▼                                       │
        ┌─────────────────┐   no waiting for the session │
        │  Session task   │ ─────────────────────────────┘
        └─────────────────┘

Connection N+1 is accepted while connection N is still being served; each
session runs on its own task.

OWNERSHIP
─────────
The Listener holds a strong reference to every session task until it
finishes (a done-callback removes it), so nothing is collected while an
operation is outstanding, and close() can drain or cancel what is left.

=============================================================================
"""

import asyncio
import logging
import socket
from typing import Optional, Set, Tuple

from ..access_log import AccessLog
from ..config import ServerConfig
from .diagnostics import ErrorSink, report_error
from .handler import RequestHandler
from .session import Session
from .stream import TransportStream


logger = logging.getLogger(__name__)


class Listener:
    """
    Accepts TCP connections and runs one Session per connection.

    Usage:
        listener = Listener(hello_handler, ServerConfig(port=8080))
        listener.open()
        await listener.run()      # until close()

    Args:
        handler: Shared handler for every session.
        config: Bind address, timeouts and limits.
        on_error: Diagnostics sink for accept and session faults.
        access_log: Optional access log passed to sessions.
    """

    session_class = Session
    ACCEPT_RETRY_DELAY = 0.01

    def __init__(
        self,
        handler: RequestHandler,
        config: Optional[ServerConfig] = None,
        on_error: ErrorSink = report_error,
        access_log: Optional[AccessLog] = None,
    ):
        self.handler = handler
        self.config = config or ServerConfig()
        self.on_error = on_error
        self.access_log = access_log

        self._socket: Optional[socket.socket] = None
        self._sessions: Set["asyncio.Task[None]"] = set()
        self._accept_task: Optional["asyncio.Task"] = None
        self._running = False
        self._closed = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the real port when port 0 was asked for."""
        if self._socket is None:
            return (self.config.host, self.config.port)
        return self._socket.getsockname()[:2]

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    # =========================================================================
    # SOCKET SETUP
    # =========================================================================

    def open(self) -> None:
        """Create, bind and listen. Raises OSError if the address is taken."""
        if self._socket is not None:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.config.host, self.config.port))
            sock.listen(self.config.backlog)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise

        self._socket = sock
        host, port = self.address
        logger.info(f"Listening on {host}:{port} (backlog={self.config.backlog})")

    # =========================================================================
    # ACCEPT LOOP
    # =========================================================================

    async def run(self) -> None:
        """Accept connections until close() is called."""
        if self._closed:
            return
        self.open()
        self._running = True
        self._accept_task = asyncio.get_running_loop().create_task(self._accept_loop())
        try:
            await self._accept_task
        except asyncio.CancelledError:
            if self._running:
                raise
        finally:
            self._accept_task = None

    async def _accept_loop(self) -> None:
        while self._running:
            try:
                client, address = await self._accept()
            except OSError as e:
                if not self._running:
                    break
                self.on_error("accept", e)
                # Back off so a persistent failure (EMFILE) does not spin
                await asyncio.sleep(self.ACCEPT_RETRY_DELAY)
                continue

            logger.debug(f"Accepted connection from {address[0]}:{address[1]}")
            self._start_session(client)

    async def _accept(self) -> Tuple[socket.socket, tuple]:
        return await asyncio.get_running_loop().sock_accept(self._socket)

    def _start_session(self, client: socket.socket) -> "asyncio.Task[None]":
        task = asyncio.get_running_loop().create_task(self._run_session(client))
        self._sessions.add(task)
        task.add_done_callback(self._sessions.discard)
        return task

    async def _run_session(self, client: socket.socket) -> None:
        config = self.config
        try:
            stream = await TransportStream.from_socket(
                client,
                idle_timeout=config.idle_timeout,
                write_timeout=config.write_timeout,
                buffer_size=config.buffer_size,
                max_header_size=config.max_header_size,
                max_request_size=config.max_request_size,
            )
        except OSError as e:
            self.on_error("accept", e)
            client.close()
            return

        session = self.session_class(
            stream,
            self.handler,
            on_error=self.on_error,
            dispatch_timeout=config.dispatch_timeout,
            server_name=config.server_name,
            access_log=self.access_log,
        )
        try:
            await session.run()
        except Exception as e:
            self.on_error("session", e)

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    async def close(self, timeout: Optional[float] = None) -> None:
        """
        Stop accepting, then let in-flight sessions finish.

        Sessions still running after ``timeout`` seconds are cancelled.
        """
        self._running = False
        self._closed = True

        task = self._accept_task
        if task is not None:
            task.cancel()
            await asyncio.wait([task])

        if self._socket is not None:
            self._socket.close()
            self._socket = None

        sessions = set(self._sessions)
        if not sessions:
            return

        logger.info(f"Waiting for {len(sessions)} active session(s)...")
        _, pending = await asyncio.wait(sessions, timeout=timeout)
        if pending:
            logger.warning(f"Cancelling {len(pending)} session(s) still running")
            for session_task in pending:
                session_task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


async def serve_http(
    handler: RequestHandler,
    host: str = "0.0.0.0",
    port: int = 8080,
    **options,
) -> None:
    """
    Serve ``handler`` on host:port until cancelled.

    Extra keyword arguments are ServerConfig fields.
    """
    config = ServerConfig(host=host, port=port, **options)
    config.validate()

    listener = Listener(handler, config)
    listener.open()
    try:
        await listener.run()
    finally:
        await listener.close(config.shutdown_timeout)
