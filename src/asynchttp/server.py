"""
=============================================================================
HTTP SERVER - MAIN ENTRY POINT
=============================================================================

Wires the pieces together:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                           HTTPServer                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ServerConfig ──► logging.basicConfig                               │
    │        │                                                             │
    │        ├──► ThreadPool   (workers for threaded handlers)             │
    │        │                                                             │
    │        └──► Listener ──► Session ──► handler(request, respond)       │
    │                 ▲                                                    │
    │                 └── asyncio event loop (one per server)              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

USAGE:
    from asynchttp import HTTPServer, ServerConfig
    from asynchttp.handlers import hello_handler

    HTTPServer(hello_handler, ServerConfig(port=8080)).run()

=============================================================================
GRACEFUL SHUTDOWN
=============================================================================

SIGINT/SIGTERM (or shutdown() from any thread):

    1. Stop accepting new connections
    2. Wait up to shutdown_timeout for in-flight sessions
    3. Cancel sessions still running
    4. Stop the thread pool

=============================================================================
"""

import asyncio
import logging
import signal
import threading
from typing import Callable, Optional, Tuple

from .access_log import AccessLog
from .config import ServerConfig
from .core.diagnostics import ErrorSink, report_error
from .core.handler import RequestHandler, threaded_handler
from .core.listener import Listener
from .core.thread_pool import ThreadPool
from .http.request import HTTPRequest
from .http.response import HTTPResponse


logger = logging.getLogger(__name__)

READY_MESSAGE = "Server has started..."


class HTTPServer:
    """
    Asynchronous HTTP/1.x server.

    Args:
        handler: Request handler shared by every connection.
        config: Server configuration; validated here.
        on_error: Diagnostics sink (defaults to logging).
        thread_pool: Pool a threaded handler submits to. Started and stopped
                     with the server; None when the handler runs on the loop.
    """

    def __init__(
        self,
        handler: RequestHandler,
        config: Optional[ServerConfig] = None,
        on_error: ErrorSink = report_error,
        thread_pool: Optional[ThreadPool] = None,
    ):
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        self.handler = handler
        self.on_error = on_error
        self.thread_pool = thread_pool

        self._listener: Optional[Listener] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._stop_requested = False
        self._started = threading.Event()
        self._stopped = threading.Event()

    @classmethod
    def threaded(
        cls,
        func: Callable[[HTTPRequest], HTTPResponse],
        config: Optional[ServerConfig] = None,
        **kwargs,
    ) -> "HTTPServer":
        """Serve a blocking ``func(request) -> HTTPResponse`` on the pool."""
        config = config or ServerConfig()
        pool = ThreadPool(min_workers=config.workers, max_workers=config.pool_max_workers)
        return cls(threaded_handler(func, pool), config, thread_pool=pool, **kwargs)

    @property
    def address(self) -> Tuple[str, int]:
        if self._listener is not None:
            return self._listener.address
        return (self.config.host, self.config.port)

    @property
    def is_running(self) -> bool:
        return self._started.is_set() and not self._stopped.is_set()

    def wait_started(self, timeout: Optional[float] = None) -> bool:
        """Block until the server is listening. False on timeout."""
        return self._started.wait(timeout)

    # =========================================================================
    # RUNNING
    # =========================================================================

    def run(self) -> None:
        """Start the server (blocking) until SIGINT/SIGTERM or shutdown()."""
        self._setup_logging()
        try:
            asyncio.run(self._main())
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")

    async def _main(self) -> None:
        self._install_signal_handlers()
        await self.serve()

    async def serve(self) -> None:
        """Bind, announce readiness, and accept until shutdown."""
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        if self._stop_requested:
            self._stop_event.set()

        access_log = AccessLog(self.config.log_format) if self.config.access_log else None
        listener = Listener(self.handler, self.config, on_error=self.on_error, access_log=access_log)
        listener.open()
        self._listener = listener

        if self.thread_pool is not None:
            self.thread_pool.start()

        host, port = listener.address
        logger.info(f"Starting HTTP server on {host}:{port}")
        print(READY_MESSAGE, flush=True)
        self._started.set()

        accept_task = self._loop.create_task(listener.run())
        stop_task = self._loop.create_task(self._stop_event.wait())
        try:
            await asyncio.wait({accept_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await self._shutdown(listener, accept_task, stop_task)

        if accept_task.done() and not accept_task.cancelled():
            error = accept_task.exception()
            if error is not None:
                raise error

    async def _shutdown(self, listener: Listener, *tasks: "asyncio.Task") -> None:
        logger.info("Shutting down server...")
        await listener.close(self.config.shutdown_timeout)
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self.thread_pool is not None:
            # ThreadPool.shutdown blocks; keep it off the event loop
            await self._loop.run_in_executor(
                None, self.thread_pool.shutdown, True, self.config.shutdown_timeout
            )
        self._stopped.set()
        logger.info("Server stopped")

    def shutdown(self) -> None:
        """Request a graceful stop. Safe to call from any thread."""
        self._stop_requested = True
        loop, event = self._loop, self._stop_event
        if loop is None or event is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(event.set)
        except RuntimeError:
            pass  # Loop closed in the meantime

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError):
                pass  # Windows, or not the main thread

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info(f"Received {signal.Signals(sig).name}, initiating shutdown...")
        self.shutdown()

    def _setup_logging(self) -> None:
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("asynchttp").setLevel(level)
