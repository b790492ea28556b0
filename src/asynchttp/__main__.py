"""
=============================================================================
ASYNCHTTP CLI ENTRY POINT
=============================================================================

    # Run with defaults (0.0.0.0:8080, hello handler)
    python -m asynchttp

    # Custom address
    python -m asynchttp --host 127.0.0.1 --port 3000

    # Run the handler on worker threads instead of the event loop
    python -m asynchttp --threaded --workers 8

    # JSON access log, verbose diagnostics
    python -m asynchttp --log-format json --log-level DEBUG

Unset options fall back to the HTTP_* environment variables read by
ServerConfig.from_env(), then to the built-in defaults.

=============================================================================
"""

import argparse
import sys
from dataclasses import replace

from . import __version__
from .config import ServerConfig, LOG_FORMATS
from .handlers import hello_handler
from .handlers.hello import handle_request
from .server import HTTPServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="asynchttp",
        description="Asynchronous event-driven HTTP/1.x server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m asynchttp                          # Run with defaults
  python -m asynchttp --port 3000              # Custom port
  python -m asynchttp --idle-timeout 5         # Drop idle clients sooner
  python -m asynchttp --threaded --workers 8   # Handler on 8 worker threads
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (default: 0.0.0.0)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: 8080, 0 picks a free port)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # TIMEOUT ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=None,
        help="Seconds a connection may wait for a complete request (default: 30)"
    )

    parser.add_argument(
        "--dispatch-timeout",
        type=float,
        default=None,
        help="Seconds to wait for the handler's response, 0 disables (default: 60)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # HANDLER ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--threaded",
        action="store_true",
        help="Run the handler on the worker thread pool"
    )

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="Number of worker threads (default: 4, max will be 2x this)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=None,
        help="Access log format (default: text)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"asynchttp {__version__}"
    )

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Environment defaults, overridden by every flag that was given."""
    overrides = {
        "host": args.host,
        "port": args.port,
        "idle_timeout": args.idle_timeout,
        "workers": args.workers,
        "log_level": args.log_level,
        "log_format": args.log_format,
    }
    config = replace(
        ServerConfig.from_env(),
        **{name: value for name, value in overrides.items() if value is not None}
    )
    if args.dispatch_timeout is not None:
        config.dispatch_timeout = args.dispatch_timeout or None
    return config


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
        if args.threaded:
            server = HTTPServer.threaded(handle_request, config)
        else:
            server = HTTPServer(hello_handler, config)
        server.run()
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
