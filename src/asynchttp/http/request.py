"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses HTTP/1.x request heads into HTTPRequest objects and provides the
body-framing helpers the transport stream uses to find where a request ends.

=============================================================================
WHERE DOES A REQUEST END?
=============================================================================

TCP is a byte stream, so the parser has to find message boundaries itself:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  GET /abc HTTP/1.1\r\n             ─┐                               │
    │  Host: localhost\r\n                │  HEAD (request line+headers)  │
    │  Content-Length: 5\r\n              │  ends at the first \r\n\r\n   │
    │  \r\n                              ─┘                               │
    │  hello                             ── BODY, sized by framing        │
    └─────────────────────────────────────────────────────────────────────┘

Body framing (RFC 7230 §3.3.3), in priority order:

    1. Transfer-Encoding: chunked   → read chunks until the 0-size chunk
    2. Content-Length: N            → read exactly N bytes
    3. neither                      → no body (requests are never
                                      delimited by connection close)

    Chunked body on the wire:

        5\r\n           ← chunk size in hex (extensions after ';' ignored)
        hello\r\n       ← chunk data + CRLF
        0\r\n           ← last chunk
        \r\n            ← end of (empty) trailer section

Anything that breaks this framing raises HTTPParseError. The session treats
that as an unrecoverable protocol error and closes the connection.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, List, Tuple
from urllib.parse import parse_qs, urlparse, unquote
import re


class HTTPParseError(Exception):
    """
    Raised when a request cannot be framed or parsed.

    Carries the status code a server *could* answer with. The session does
    not answer framing errors (it closes the connection), but handlers and
    tests can still inspect the code.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Attributes:
        method:         Request method exactly as sent ("GET", "HEAD", ...).
        target:         Raw request-target ("/abc?x=1"), not decoded.
        version:        "HTTP/1.0" or "HTTP/1.1".
        headers:        Header name (lowercase) → value. Insertion order is
                        the order on the wire; repeated names are joined
                        with ", ".
        header_list:    (name, value) pairs with the original name casing.
        body:           Request body after transfer decoding.
        path:           Decoded path component of the target.
        query_params:   Parsed query string, name → list of values.
        client_address: (ip, port) of the peer.
    """

    method: str
    target: str
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    header_list: List[Tuple[str, str]] = field(default_factory=list, repr=False)
    body: bytes = b""

    path: str = "/"
    query_params: Dict[str, List[str]] = field(default_factory=dict)

    client_address: Tuple[str, int] = ("", 0)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters, lowercased."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def keep_alive(self) -> bool:
        """
        Whether the client wants the connection kept open.

        HTTP/1.1 keeps alive unless "Connection: close" is sent.
        HTTP/1.0 closes unless "Connection: keep-alive" is sent.
        """
        tokens = connection_tokens(self.headers.get("connection", ""))
        if self.version == "HTTP/1.1":
            return "close" not in tokens
        return "keep-alive" in tokens

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name, [])
        return values[0] if values else default


def connection_tokens(value: str) -> set:
    """Split a Connection header into lowercase tokens."""
    return {token.strip().lower() for token in value.split(",") if token.strip()}


class RequestParser:
    """
    Parses request heads and answers framing questions about them.

    The parser is stateless; one instance is shared by every stream.

        parser = RequestParser()
        request = parser.parse_head(b"GET / HTTP/1.1\\r\\nHost: x", ("1.2.3.4", 80))
        kind, length = parser.body_framing(request)
    """

    REQUEST_LINE_PATTERN = re.compile(
        r"^([!#$%&'*+.^_`|~0-9A-Za-z-]+) ([^ ]+) (HTTP/\d\.\d)$"
    )
    HEADER_PATTERN = re.compile(r"^([!#$%&'*+.^_`|~0-9A-Za-z-]+):[ \t]*(.*?)[ \t]*$")
    SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")
    CONTENT_LENGTH_PATTERN = re.compile(r"[0-9]+")
    CHUNK_SIZE_PATTERN = re.compile(rb"[0-9A-Fa-f]+")

    FRAMING_NONE = "none"
    FRAMING_LENGTH = "length"
    FRAMING_CHUNKED = "chunked"

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    # =========================================================================
    # HEAD PARSING
    # =========================================================================

    def parse_head(
        self,
        head: bytes,
        client_address: Tuple[str, int] = ("", 0),
    ) -> HTTPRequest:
        """
        Parse the request line and headers (everything before \\r\\n\\r\\n).

        Args:
            head: Raw head bytes without the terminating blank line.
            client_address: Peer (ip, port) for the request object.

        Returns:
            HTTPRequest with an empty body.

        Raises:
            HTTPParseError: Malformed request line, header or version.
        """
        # Header bytes are ISO-8859-1 per RFC 7230; every byte maps to a char
        text = head.decode("latin-1")
        lines = text.split("\r\n")

        # RFC 7230 §3.5: ignore at least one empty line before the request line
        while lines and not lines[0]:
            lines.pop(0)
        if not lines:
            raise HTTPParseError("Empty request")

        method, target, version = self._parse_request_line(lines[0])
        headers, header_list = self._parse_headers(lines[1:])

        parsed = urlparse(target)
        return HTTPRequest(
            method=method,
            target=target,
            version=version,
            headers=headers,
            header_list=header_list,
            path=unquote(parsed.path) or "/",
            query_params=parse_qs(parsed.query, keep_blank_values=True),
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> Tuple[str, str, str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, target, version = match.groups()
        if version not in self.SUPPORTED_VERSIONS:
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )
        return method, target, version

    def _parse_headers(
        self, lines: List[str]
    ) -> Tuple[Dict[str, str], List[Tuple[str, str]]]:
        headers: Dict[str, str] = {}
        header_list: List[Tuple[str, str]] = []

        for line in lines:
            if not line:
                continue

            # Obsolete line folding is a framing hazard; refuse it
            if line[0] in (" ", "\t"):
                raise HTTPParseError("Obsolete header line folding")

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line!r}")

            name, value = match.groups()
            header_list.append((name, value))

            key = name.lower()
            if key in headers:
                headers[key] += ", " + value
            else:
                headers[key] = value

        return headers, header_list

    # =========================================================================
    # BODY FRAMING
    # =========================================================================

    def body_framing(self, request: HTTPRequest) -> Tuple[str, int]:
        """
        Decide how the body of ``request`` is delimited.

        Returns:
            (FRAMING_CHUNKED, 0), (FRAMING_LENGTH, n) or (FRAMING_NONE, 0).

        Raises:
            HTTPParseError: Unknown transfer coding, bad or conflicting
                            Content-Length, or a body over the size limit.
        """
        transfer_encoding = request.headers.get("transfer-encoding")
        if transfer_encoding is not None:
            codings = [c.strip().lower() for c in transfer_encoding.split(",")]
            if codings[-1] != "chunked":
                raise HTTPParseError(
                    f"Unsupported transfer coding: {transfer_encoding}",
                    status_code=501,
                )
            return self.FRAMING_CHUNKED, 0

        raw_length = request.headers.get("content-length")
        if raw_length is None:
            return self.FRAMING_NONE, 0

        # Repeated Content-Length headers were joined with ", "
        values = {v.strip() for v in raw_length.split(",")}
        if len(values) != 1:
            raise HTTPParseError(f"Conflicting Content-Length: {raw_length}")

        value = values.pop()
        if not self.CONTENT_LENGTH_PATTERN.fullmatch(value):
            raise HTTPParseError(f"Invalid Content-Length: {value!r}")

        length = int(value)
        if length > self.max_request_size:
            raise HTTPParseError(
                f"Request body too large: {length} bytes",
                status_code=413,
            )
        return self.FRAMING_LENGTH, length

    @staticmethod
    def parse_chunk_size(line: bytes) -> int:
        """Parse a chunk-size line (without CRLF), ignoring extensions."""
        size_part = line.split(b";", 1)[0].strip()
        # Bare hex digits only: no sign, prefix or underscores
        if not RequestParser.CHUNK_SIZE_PATTERN.fullmatch(size_part):
            raise HTTPParseError(f"Invalid chunk size: {line[:32]!r}")
        return int(size_part, 16)

    # =========================================================================
    # COMPLETE MESSAGES
    # =========================================================================

    def parse(
        self,
        data: bytes,
        client_address: Tuple[str, int] = ("", 0),
    ) -> HTTPRequest:
        """
        Parse one complete request held entirely in ``data``.

        The transport stream frames requests incrementally; this is the
        one-shot form for tests and tools. Bytes after the request are
        ignored.

        Raises:
            HTTPParseError: Malformed or incomplete request.
        """
        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        request = self.parse_head(data[:header_end], client_address)
        rest = data[header_end + 4:]

        framing, length = self.body_framing(request)
        if framing == self.FRAMING_LENGTH:
            if len(rest) < length:
                raise HTTPParseError(
                    f"Incomplete body: expected {length} bytes, got {len(rest)}"
                )
            request.body = rest[:length]
        elif framing == self.FRAMING_CHUNKED:
            request.body = self._decode_chunked(rest)
        return request

    def _decode_chunked(self, data: bytes) -> bytes:
        body = bytearray()
        pos = 0
        while True:
            line_end = data.find(b"\r\n", pos)
            if line_end == -1:
                raise HTTPParseError("Incomplete chunked body")
            size = self.parse_chunk_size(data[pos:line_end])
            pos = line_end + 2

            if size == 0:
                # Skip trailer fields up to the terminating empty line
                while True:
                    line_end = data.find(b"\r\n", pos)
                    if line_end == -1:
                        raise HTTPParseError("Incomplete chunked trailer")
                    if line_end == pos:
                        return bytes(body)
                    pos = line_end + 2

            if len(data) < pos + size + 2:
                raise HTTPParseError("Incomplete chunk data")
            if data[pos + size:pos + size + 2] != b"\r\n":
                raise HTTPParseError("Chunk data not terminated by CRLF")
            body += data[pos:pos + size]
            pos += size + 2

            if len(body) > self.max_request_size:
                raise HTTPParseError(
                    f"Request body too large: {len(body)} bytes",
                    status_code=413,
                )


def parse_request(
    data: bytes,
    client_address: Tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024,
) -> HTTPRequest:
    """Parse a complete request in one call."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
