"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Everything the server needs at startup lives in one dataclass. The core
never reads the environment or the command line itself; __main__.py and
ServerConfig.from_env() translate those into a ServerConfig.

    ┌──────────────────────────────────────────────────────────────────────┐
    │  CLI flags ──┐                                                       │
    │              ├──► ServerConfig ──► HTTPServer ──► Listener ──► Session│
    │  HTTP_* env ─┘        │                                              │
    │                       └── validate() at construction (fail fast)     │
    └──────────────────────────────────────────────────────────────────────┘

=============================================================================
TIMEOUTS
=============================================================================

    idle_timeout      Rearmed at the start of every read cycle. A client
                      that does not deliver a complete request in time is
                      disconnected.

    dispatch_timeout  How long a session waits for the handler to call its
                      response sink. None waits forever.

    write_timeout     Bound on flushing one response to a slow reader.

=============================================================================
"""

import os
import socket
from dataclasses import dataclass
from typing import Optional


LOG_FORMATS = ("text", "json")


def _optional_float(value: str) -> Optional[float]:
    if value.strip().lower() in ("", "none", "off", "0"):
        return None
    return float(value)


@dataclass
class ServerConfig:
    """
    Configuration for the asynchronous HTTP server.

    Development:
        ServerConfig(host="127.0.0.1", port=8080, log_level="DEBUG")

    Production:
        ServerConfig(host="0.0.0.0", port=80, log_format="json")
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """Address to bind. "0.0.0.0" listens on every IPv4 interface."""

    port: int = 8080
    """Port to listen on. 0 lets the OS pick a free port."""

    backlog: int = socket.SOMAXCONN
    """Accept queue length; the platform maximum by default."""

    buffer_size: int = 8192
    """Bytes requested from the socket per read."""

    # ─────────────────────────────────────────────────────────────────────
    # SESSION SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    idle_timeout: float = 30.0
    dispatch_timeout: Optional[float] = 60.0
    write_timeout: float = 30.0

    max_header_size: int = 64 * 1024
    """Largest accepted request head (request line + headers)."""

    max_request_size: int = 10 * 1024 * 1024
    """Largest accepted request body."""

    shutdown_timeout: float = 10.0
    """How long shutdown waits for in-flight sessions before cancelling them."""

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL SETTINGS (threaded handlers only)
    # ─────────────────────────────────────────────────────────────────────

    workers: int = 4
    max_workers: Optional[int] = None
    """Upper bound for pool scale-up; defaults to 2 x workers."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    log_format: str = "text"
    access_log: bool = True

    # ─────────────────────────────────────────────────────────────────────
    # SERVER IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    server_name: str = "asynchttp/1.0"

    @property
    def pool_max_workers(self) -> int:
        return self.max_workers or self.workers * 2

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        HTTP_HOST              Bind address (default: 0.0.0.0)
        HTTP_PORT              Port (default: 8080)
        HTTP_IDLE_TIMEOUT      Idle read timeout seconds (default: 30)
        HTTP_DISPATCH_TIMEOUT  Handler timeout seconds, "none" to disable (default: 60)
        HTTP_WORKERS           Pool worker threads (default: 4)
        HTTP_LOG_LEVEL         Logging level (default: INFO)
        HTTP_LOG_FORMAT        "text" or "json" (default: text)
        """
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            idle_timeout=float(os.getenv("HTTP_IDLE_TIMEOUT", "30")),
            dispatch_timeout=_optional_float(os.getenv("HTTP_DISPATCH_TIMEOUT", "60")),
            workers=int(os.getenv("HTTP_WORKERS", "4")),
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO"),
            log_format=os.getenv("HTTP_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """Raise ValueError on the first invalid setting."""
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")

        if self.write_timeout <= 0:
            raise ValueError("write_timeout must be > 0")

        if self.dispatch_timeout is not None and self.dispatch_timeout <= 0:
            raise ValueError("dispatch_timeout must be > 0 or None")

        if self.max_header_size < 1024:
            raise ValueError("max_header_size must be >= 1024")

        if self.workers < 1:
            raise ValueError("workers must be >= 1")

        if self.pool_max_workers < self.workers:
            raise ValueError("max_workers must be >= workers")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}")
