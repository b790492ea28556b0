"""
Diagnostics sink for transport-level failures.

Sessions and the listener never raise connection faults upward. They hand
them to an error sink as an (operation, error) pair and carry on:

    Session  ── report_error("read", StreamTimeout(...)) ──┐
    Session  ── report_error("write", TransportError(...)) ├──► log stream
    Listener ── report_error("accept", OSError(...)) ──────┘

The default sink writes to the ``asynchttp.core.diagnostics`` logger. Any
callable with the same signature can replace it (tests collect reports in a
list). A sink is fire-and-forget: it must not block and must not raise.
"""

import logging
from typing import Callable

from .stream import EndOfStream, StreamTimeout


logger = logging.getLogger(__name__)

ErrorSink = Callable[[str, BaseException], None]


def describe(error: BaseException) -> str:
    """Human-readable error description, never empty."""
    message = str(error)
    if not message:
        return type(error).__name__
    if isinstance(error, OSError) and error.errno is not None and error.strerror:
        return f"{error.strerror} (errno {error.errno})"
    return message


def report_error(what: str, error: BaseException) -> None:
    """
    Report a failed operation.

    Args:
        what: Operation that failed ("accept", "read", "write", "handle", ...).
        error: The exception describing the failure.
    """
    if isinstance(error, EndOfStream):
        logger.debug(f"{what}: {describe(error)}")
    elif isinstance(error, StreamTimeout):
        logger.warning(f"{what}: {describe(error)}")
    else:
        logger.error(f"{what}: {describe(error)}")
