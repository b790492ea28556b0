"""
=============================================================================
TRANSPORT STREAM
=============================================================================

Wraps one accepted connection (an asyncio StreamReader/StreamWriter pair)
with an HTTP-aware API:

    read_request()    → suspend until ONE complete request is buffered
    write_response()  → serialize a response and wait until it is flushed
    reset_timeout()   → rearm the idle deadline before a read
    shutdown()        → half-close (stop sending), never blocks
    close()           → release the socket

=============================================================================
BUFFERED READING
=============================================================================

TCP delivers bytes in arbitrary chunks. The stream keeps a per-connection
bytearray and pulls from the socket until the buffer holds a whole request:

    socket chunks:   "GET /ab" | "c HTTP/1.1\r\nHo" | "st: x\r\n\r\nGET /d"
                                                              ─────────┬──
    buffer after read_request():  "GET /d"  ◄─────────────────────────┘
                                  kept for the next read cycle

Nothing is ever read ahead on purpose: a session issues the next read only
after its previous response was written, so leftovers simply wait.

=============================================================================
FAILURE TAXONOMY
=============================================================================

    StreamError
     ├── EndOfStream        peer closed cleanly between requests (not a fault)
     ├── StreamTimeout      idle deadline or write timeout expired
     └── TransportError     reset, broken pipe, close mid-request, ...
          └── ProtocolError framing the stream cannot recover from

There are no retries at this layer: every StreamError ends the connection.

=============================================================================
"""

import asyncio
import logging
import socket
import time
import uuid
from typing import Optional, Tuple

from ..http.request import HTTPRequest, RequestParser, HTTPParseError
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS
# =============================================================================

class StreamError(Exception):
    """Base class for per-connection transport faults."""


class EndOfStream(StreamError):
    """The peer closed the connection before sending another request."""


class StreamTimeout(StreamError, TimeoutError):
    """The idle deadline (or a write timeout) expired."""


class TransportError(StreamError):
    """Any other read/write failure."""


class ProtocolError(TransportError):
    """The byte stream is not valid HTTP/1.x framing."""


# =============================================================================
# STREAM
# =============================================================================

class TransportStream:
    """
    An accepted connection with buffered, deadline-bounded HTTP I/O.

    Attributes:
        id: Short connection identifier for logs.
        client_address: Peer (ip, port).
        idle_timeout: Seconds allowed for a complete request after
                      reset_timeout().
        write_timeout: Seconds allowed to flush one response.
    """

    LINGER_TIMEOUT = 0.5

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        idle_timeout: float = 30.0,
        write_timeout: float = 30.0,
        buffer_size: int = 8192,
        max_header_size: int = 64 * 1024,
        max_request_size: int = 10 * 1024 * 1024,
        parser: Optional[RequestParser] = None,
    ):
        self._reader = reader
        self._writer = writer

        self.idle_timeout = idle_timeout
        self.write_timeout = write_timeout
        self.buffer_size = buffer_size
        self.max_header_size = max_header_size
        self.max_request_size = max_request_size
        self._parser = parser or RequestParser(max_request_size=max_request_size)

        self.id = uuid.uuid4().hex[:8]
        self.created_at = time.time()

        peer = writer.get_extra_info("peername")
        self.client_address: Tuple[str, int] = tuple(peer[:2]) if peer else ("", 0)

        # Reused across every request on this connection
        self._buffer = bytearray()
        self._deadline: Optional[float] = None
        self._shut_down = False
        self._closed = False

    @classmethod
    async def from_socket(cls, sock: socket.socket, **options) -> "TransportStream":
        """Wrap an accepted, connected socket."""
        reader, writer = await asyncio.open_connection(sock=sock)
        return cls(reader, writer, **options)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def buffered(self) -> int:
        """Bytes received but not yet consumed by a request."""
        return len(self._buffer)

    # =========================================================================
    # TIMEOUT
    # =========================================================================

    def reset_timeout(self) -> None:
        """Rearm the idle deadline: the next request must arrive in time."""
        self._deadline = asyncio.get_running_loop().time() + self.idle_timeout

    def _remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return self._deadline - asyncio.get_running_loop().time()

    # =========================================================================
    # READING
    # =========================================================================

    async def read_request(self) -> HTTPRequest:
        """
        Read exactly one request: head plus body per its framing.

        Raises:
            EndOfStream: Peer closed cleanly with nothing buffered.
            StreamTimeout: Idle deadline expired first.
            ProtocolError: Malformed or oversized request.
            TransportError: Socket failure or close mid-request.
        """
        remaining = self._remaining()
        if remaining is not None and remaining <= 0:
            raise StreamTimeout(f"no request within {self.idle_timeout:g}s")

        try:
            return await asyncio.wait_for(self._read_message(), remaining)
        except asyncio.TimeoutError:
            raise StreamTimeout(f"no complete request within {self.idle_timeout:g}s") from None

    async def _read_message(self) -> HTTPRequest:
        head = await self._read_head()
        try:
            request = self._parser.parse_head(head, self.client_address)
            framing, length = self._parser.body_framing(request)
        except HTTPParseError as e:
            raise ProtocolError(str(e)) from e

        if framing == RequestParser.FRAMING_LENGTH:
            request.body = await self._read_exact(length)
        elif framing == RequestParser.FRAMING_CHUNKED:
            request.body = await self._read_chunked()
        return request

    async def _fill(self) -> bool:
        """Pull one chunk from the socket. False means the peer closed."""
        try:
            chunk = await self._reader.read(self.buffer_size)
        except OSError as e:
            raise TransportError(f"read failed: {e}") from e
        if not chunk:
            return False
        self._buffer += chunk
        return True

    def _partial(self) -> TransportError:
        return TransportError("peer closed the connection mid-request (partial message)")

    async def _read_head(self) -> bytes:
        while True:
            # Stray CRLFs between requests are allowed (RFC 7230 §3.5)
            while self._buffer[:2] == b"\r\n":
                del self._buffer[:2]

            end = self._buffer.find(b"\r\n\r\n")
            if end != -1:
                if end > self.max_header_size:
                    raise ProtocolError(f"request head too large: {end} bytes")
                head = bytes(self._buffer[:end])
                del self._buffer[:end + 4]
                return head

            if len(self._buffer) > self.max_header_size:
                raise ProtocolError(f"request head too large: {len(self._buffer)} bytes")

            if not await self._fill():
                if not self._buffer:
                    raise EndOfStream("peer closed the connection")
                raise self._partial()

    async def _read_exact(self, size: int) -> bytes:
        while len(self._buffer) < size:
            if not await self._fill():
                raise self._partial()
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    async def _read_line(self) -> bytes:
        while True:
            end = self._buffer.find(b"\r\n")
            if end != -1:
                line = bytes(self._buffer[:end])
                del self._buffer[:end + 2]
                return line
            if len(self._buffer) > self.max_header_size:
                raise ProtocolError("chunk line too long")
            if not await self._fill():
                raise self._partial()

    async def _read_chunked(self) -> bytes:
        body = bytearray()
        while True:
            try:
                size = RequestParser.parse_chunk_size(await self._read_line())
            except HTTPParseError as e:
                raise ProtocolError(str(e)) from e

            if size == 0:
                # Trailer fields are read and dropped
                while await self._read_line():
                    pass
                return bytes(body)

            if len(body) + size > self.max_request_size:
                raise ProtocolError(f"request body too large: over {self.max_request_size} bytes")

            data = await self._read_exact(size + 2)
            if data[-2:] != b"\r\n":
                raise ProtocolError("chunk data not terminated by CRLF")
            body += data[:-2]

    # =========================================================================
    # WRITING
    # =========================================================================

    async def write_response(
        self,
        response: HTTPResponse,
        head_only: bool = False,
        server_name: str = "asynchttp/1.0",
    ) -> int:
        """
        Serialize ``response`` and wait until it is handed to the kernel.

        Returns:
            Number of bytes written.

        Raises:
            StreamTimeout: The peer did not drain within write_timeout.
            TransportError: The connection failed or is already closed.
        """
        if self._closed or self._shut_down:
            raise TransportError("write on a closed connection")

        data = response.to_bytes(server_name, head_only=head_only)
        try:
            self._writer.write(data)
            await asyncio.wait_for(self._writer.drain(), self.write_timeout)
        except asyncio.TimeoutError:
            raise StreamTimeout(f"write not flushed within {self.write_timeout:g}s") from None
        except (OSError, RuntimeError) as e:
            raise TransportError(f"write failed: {e}") from e
        return len(data)

    # =========================================================================
    # CLOSING
    # =========================================================================

    def shutdown(self) -> None:
        """
        Half-close: send FIN, keep receiving. Errors are ignored.

        Server                              Client
           │   FIN ──────────────────────────► │   (shutdown)
           │ ◄──────────────────────────  FIN  │   (client closes)
        (close)                             (close)
        """
        if self._shut_down or self._closed:
            return
        self._shut_down = True
        try:
            if self._writer.can_write_eof():
                self._writer.write_eof()
        except (OSError, RuntimeError):
            pass  # Already disconnected

    async def close(self) -> None:
        """
        Release the connection. Safe to call more than once.

        After a half-close, unread input is drained for a moment so the
        kernel does not answer it with RST while the peer still reads the
        last response.
        """
        if self._closed:
            return
        self._closed = True

        if self._shut_down:
            try:
                await asyncio.wait_for(self._discard_input(), self.LINGER_TIMEOUT)
            except (asyncio.TimeoutError, OSError):
                pass

        self._buffer.clear()
        self._writer.close()
        try:
            await asyncio.wait_for(self._writer.wait_closed(), self.LINGER_TIMEOUT)
        except (asyncio.TimeoutError, OSError):
            pass

        logger.debug(f"[{self.id}] Connection closed after {time.time() - self.created_at:.3f}s")

    async def _discard_input(self) -> None:
        while await self._reader.read(self.buffer_size):
            pass
