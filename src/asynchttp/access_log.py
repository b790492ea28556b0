"""
=============================================================================
ACCESS LOG
=============================================================================

One line per completed request/response exchange, written by the session
right after the response has been flushed.

    TEXT FORMAT (Apache common style + duration):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 127.0.0.1 - - [10/Jun/2024:10:55:36 +0000] "GET /abc HTTP/1.1"      │
    │     200 140 0.41ms [3f2a9c1e]                                       │
    └─────────────────────────────────────────────────────────────────────┘

    JSON FORMAT (one object per line, for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"session_id": "3f2a9c1e", "client_ip": "127.0.0.1",               │
    │  "method": "GET", "target": "/abc", "version": "HTTP/1.1",          │
    │  "status_code": 200, "bytes_sent": 140, "duration_ms": 0.41, ...}   │
    └─────────────────────────────────────────────────────────────────────┘

Both go to the ``asynchttp.access`` logger at INFO. The request line and
every header can also be dumped to ``asynchttp.access.dump`` at DEBUG:

    logging.getLogger("asynchttp.access.dump").setLevel(logging.DEBUG)

=============================================================================
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .http.request import HTTPRequest


logger = logging.getLogger("asynchttp.access")
dump_logger = logging.getLogger("asynchttp.access.dump")


@dataclass
class Exchange:
    """
    What the access log needs to remember about a request.

    The request itself belongs to the handler once dispatched, so the
    session keeps this summary instead.
    """

    session_id: str
    client_address: Tuple[str, int]
    method: str
    target: str
    version: str
    started_at: float = field(default_factory=time.monotonic)

    @classmethod
    def from_request(cls, session_id: str, request: HTTPRequest) -> "Exchange":
        return cls(
            session_id=session_id,
            client_address=request.client_address,
            method=request.method,
            target=request.target,
            version=request.version,
        )

    @property
    def duration_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000


def dump_request(session_id: str, request: HTTPRequest) -> None:
    """Log the request line and every header field, in arrival order."""
    if not dump_logger.isEnabledFor(logging.DEBUG):
        return
    lines = [f"[{session_id}] {request.method} {request.target} {request.version}"]
    for name, value in request.header_list:
        lines.append(f"[{session_id}]   {name}: {value}")
    dump_logger.debug("\n".join(lines))


class AccessLog:
    """
    Access log writer.

    Args:
        log_format: "text" or "json".
        log_level: Level for exchange lines (INFO by default).
    """

    def __init__(self, log_format: str = "text", log_level: int = logging.INFO):
        if log_format not in ("text", "json"):
            raise ValueError(f"Unknown access log format: {log_format}")
        self.log_format = log_format
        self.log_level = log_level

    def request_received(self, session_id: str, request: HTTPRequest) -> None:
        dump_request(session_id, request)

    def response_sent(self, exchange: Exchange, status: int, bytes_sent: int) -> None:
        if not logger.isEnabledFor(self.log_level):
            return
        logger.log(self.log_level, self.format(exchange, status, bytes_sent))

    def format(self, exchange: Exchange, status: int, bytes_sent: int, timestamp: Optional[str] = None) -> str:
        timestamp = timestamp or time.strftime("%d/%b/%Y:%H:%M:%S %z")
        duration_ms = exchange.duration_ms
        client_ip = exchange.client_address[0] if exchange.client_address else "-"

        if self.log_format == "json":
            return json.dumps({
                "session_id": exchange.session_id,
                "client_ip": client_ip,
                "method": exchange.method,
                "target": exchange.target,
                "version": exchange.version,
                "status_code": int(status),
                "bytes_sent": bytes_sent,
                "duration_ms": round(duration_ms, 2),
                "timestamp": timestamp,
            })

        return (
            f'{client_ip} - - [{timestamp}] '
            f'"{exchange.method} {exchange.target} {exchange.version}" {int(status)} '
            f'{bytes_sent} {duration_ms:.2f}ms [{exchange.session_id}]'
        )
