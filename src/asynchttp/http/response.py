"""
=============================================================================
HTTP RESPONSE BUILDER
=============================================================================

The response value handlers pass to their response sink, and its wire
serialization.

    ┌─ STATUS LINE ───────────────────────────────────────────────────────┐
    │  HTTP/1.1 200 OK\r\n                                                │
    ├─ HEADERS ───────────────────────────────────────────────────────────┤
    │  Content-Type: text/html\r\n                                        │
    │  Content-Length: 10\r\n         ← set by handler, or computed       │
    │  Connection: close\r\n          ← only when keep-alive semantics    │
    │                                   need it for this version          │
    │  Date: Thu, 15 Oct 2026 ...\r\n ← added on serialization            │
    │  Server: asynchttp/1.0\r\n      ← added on serialization            │
    │  \r\n                                                               │
    ├─ BODY ──────────────────────────────────────────────────────────────┤
    │  Hello, abc                     ← omitted for HEAD                  │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
KEEP-ALIVE AND need_eof
=============================================================================

After writing a response the session asks one question: must the
connection close now? That is ``response.need_eof``:

    version    Connection header         keep_alive   need_eof
    ─────────  ────────────────────────  ──────────   ────────
    HTTP/1.1   (none)                    True         False
    HTTP/1.1   close                     False        True
    HTTP/1.0   (none)                    False        True
    HTTP/1.0   keep-alive                True         False

Handlers normally copy the request's wish with
``response.keep_alive = request.keep_alive``; the setter writes whichever
Connection header the response version needs to express it.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Union, Iterable

from .request import connection_tokens
from .status_codes import HTTPStatus


class ContentType:
    """Content-Type values used by the bundled handlers."""

    TEXT_HTML = "text/html"
    TEXT_PLAIN = "text/plain"
    APPLICATION_JSON = "application/json"


@dataclass
class HTTPResponse:
    """
    An HTTP response ready to be written by a session.

    Header names keep the casing they were set with; lookups that matter
    to the core (Connection, Content-Length) are case-insensitive.
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    # =========================================================================
    # HEADER ACCESS
    # =========================================================================

    def _header_key(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key in self.headers:
            if key.lower() == lowered:
                return key
        return None

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        key = self._header_key(name)
        return self.headers[key] if key is not None else default

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """Set a header, replacing any existing one regardless of case."""
        key = self._header_key(name)
        if key is not None:
            del self.headers[key]
        self.headers[name] = value
        return self

    def remove_header(self, name: str) -> "HTTPResponse":
        key = self._header_key(name)
        if key is not None:
            del self.headers[key]
        return self

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    # =========================================================================
    # CONNECTION SEMANTICS
    # =========================================================================

    @property
    def keep_alive(self) -> bool:
        tokens = connection_tokens(self.get_header("Connection", ""))
        if self.version == "HTTP/1.1":
            return "close" not in tokens
        return "keep-alive" in tokens

    @keep_alive.setter
    def keep_alive(self, value: bool) -> None:
        self.remove_header("Connection")
        if self.version == "HTTP/1.1":
            if not value:
                self.headers["Connection"] = "close"
        elif value:
            self.headers["Connection"] = "keep-alive"

    @property
    def need_eof(self) -> bool:
        """True when the connection must be closed after this response."""
        return not self.keep_alive

    @property
    def content_length(self) -> int:
        value = self.get_header("Content-Length")
        return int(value) if value is not None else len(self.body)

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_bytes(self, server_name: str = "asynchttp/1.0", head_only: bool = False) -> bytes:
        """
        Serialize the response for the socket.

        Args:
            server_name: Value for the Server header when none is set.
            head_only:   Write the head only (response to a HEAD request).
                         An explicit Content-Length is kept as is, so a HEAD
                         response advertises the length of the GET body.

        Returns:
            Complete response bytes.
        """
        response_headers = dict(self.headers)

        # Content-Length is auto-added only when the handler did not set one
        if self._header_key("Content-Length") is None:
            response_headers["Content-Length"] = str(len(self.body))

        if self._header_key("Date") is None:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if self._header_key("Server") is None:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        head = "\r\n".join(lines).encode("utf-8") + b"\r\n"
        if head_only:
            return head
        return head + self.body


class ResponseBuilder:
    """
    Fluent builder for HTTPResponse.

        response = (ResponseBuilder()
            .version(request.version)
            .status(HTTPStatus.OK)
            .content_type(ContentType.TEXT_HTML)
            .body("Hello")
            .keep_alive(request.keep_alive)
            .build())
    """

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body = b""
        self._version = "HTTP/1.1"
        self._keep_alive: Optional[bool] = None

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = HTTPStatus(status)
        return self

    def version(self, version: str) -> "ResponseBuilder":
        self._version = version
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "ResponseBuilder":
        self._headers.update(headers)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        self._headers["Content-Type"] = content_type
        return self

    def content_length(self, length: int) -> "ResponseBuilder":
        """Set an explicit Content-Length (e.g. a HEAD response)."""
        self._headers["Content-Length"] = str(length)
        return self

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str) -> "ResponseBuilder":
        self.content_type(f"{ContentType.TEXT_PLAIN}; charset=utf-8")
        return self.body(text)

    def html(self, html: str) -> "ResponseBuilder":
        self.content_type(ContentType.TEXT_HTML)
        return self.body(html)

    def keep_alive(self, enabled: bool = True) -> "ResponseBuilder":
        self._keep_alive = enabled
        return self

    def close_connection(self) -> "ResponseBuilder":
        """Force "the connection must close" for any version."""
        return self.keep_alive(False)

    def build(self) -> HTTPResponse:
        response = HTTPResponse(
            status=self._status,
            headers=dict(self._headers),
            body=self._body,
            version=self._version,
        )
        if self._keep_alive is not None:
            response.keep_alive = self._keep_alive
        return response


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """Format a UTC datetime as an RFC 7231 HTTP-date."""
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def make_string_response(
    status: HTTPStatus,
    body: Union[str, bytes],
    version: str = "HTTP/1.1",
    keep_alive: bool = True,
    content_type: str = ContentType.TEXT_HTML,
) -> HTTPResponse:
    """
    Create a response with a string body and an explicit Content-Length.

    Args:
        status: Response status.
        body: Response body.
        version: HTTP version, normally the request's.
        keep_alive: Whether the connection should stay open.
        content_type: Content-Type header value.
    """
    encoded = body.encode("utf-8") if isinstance(body, str) else body
    return (ResponseBuilder()
        .version(version)
        .status(status)
        .content_type(content_type)
        .body(encoded)
        .content_length(len(encoded))
        .keep_alive(keep_alive)
        .build())


def method_not_allowed(
    allowed_methods: Iterable[str],
    body: str = "Invalid method.",
    version: str = "HTTP/1.1",
    keep_alive: bool = True,
) -> HTTPResponse:
    """
    Create a 405 Method Not Allowed response.

    RFC 7231 requires the Allow header listing the methods the resource
    supports.
    """
    response = make_string_response(
        HTTPStatus.METHOD_NOT_ALLOWED, body, version, keep_alive
    )
    response.set_header("Allow", ", ".join(allowed_methods))
    return response
