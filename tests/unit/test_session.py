"""
Unit tests for the per-connection session state machine.
"""

import asyncio
import logging
import threading

import pytest

from asynchttp.access_log import AccessLog
from asynchttp.core.handler import async_handler, sync_handler
from asynchttp.core.session import Session, SessionState
from asynchttp.core.stream import ProtocolError, StreamTimeout
from asynchttp.handlers import hello_handler
from asynchttp.http import HTTPStatus, make_string_response


pytestmark = pytest.mark.asyncio


async def read_response(reader: asyncio.StreamReader):
    """Read one response: (status line, lowercase headers, body)."""
    head = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), 2.0)
    lines = head[:-4].decode("latin-1").split("\r\n")
    headers = {}
    for line in lines[1:]:
        name, value = line.split(":", 1)
        headers[name.strip().lower()] = value.strip()
    body = await reader.readexactly(int(headers.get("content-length", "0")))
    return lines[0], headers, body


async def finish(task: "asyncio.Task", writer: asyncio.StreamWriter):
    writer.close()
    await asyncio.wait_for(task, 5.0)


class TestStateMachine:

    async def test_starts_idle(self, make_stream_pair):
        stream, _, writer = await make_stream_pair()
        session = Session(stream, hello_handler)

        assert session.state is SessionState.IDLE
        assert session.id == stream.id
        await stream.close()
        writer.close()

    async def test_illegal_transition(self, make_stream_pair):
        stream, _, writer = await make_stream_pair()
        session = Session(stream, hello_handler)

        with pytest.raises(RuntimeError, match="Illegal session transition"):
            session._transition(SessionState.WRITING)

        session._transition(SessionState.CLOSED)  # always allowed
        assert session.closed
        await stream.close()
        writer.close()

    async def test_close_is_idempotent(self, make_stream_pair):
        stream, reader, writer = await make_stream_pair()
        session = Session(stream, hello_handler)

        session.close()
        session.close()

        assert session.state is SessionState.CLOSED
        assert await asyncio.wait_for(reader.read(), 2.0) == b""
        await stream.close()
        writer.close()

    async def test_run_twice_fails(self, make_stream_pair, errors):
        stream, _, writer = await make_stream_pair()
        session = Session(stream, hello_handler, on_error=errors)
        writer.close()

        await asyncio.wait_for(session.run(), 5.0)

        with pytest.raises(RuntimeError):
            await session.run()


class TestKeepAlive:

    async def test_two_requests_then_eof(self, make_stream_pair, errors):
        stream, reader, writer = await make_stream_pair()
        session = Session(stream, hello_handler, on_error=errors)
        task = asyncio.ensure_future(session.run())

        writer.write(b"GET /one HTTP/1.1\r\n\r\nGET /two HTTP/1.1\r\n\r\n")
        first = await read_response(reader)
        second = await read_response(reader)
        await finish(task, writer)

        assert first[2] == b"Hello, one"
        assert second[2] == b"Hello, two"
        assert session.requests_handled == 2
        assert session.state is SessionState.CLOSED
        assert errors.reports == []

    async def test_http10_closes_after_one_response(self, make_stream_pair, errors):
        stream, reader, writer = await make_stream_pair()
        session = Session(stream, hello_handler, on_error=errors)
        task = asyncio.ensure_future(session.run())

        writer.write(b"GET /a HTTP/1.0\r\n\r\nGET /b HTTP/1.1\r\n\r\n")
        data = await asyncio.wait_for(reader.read(), 2.0)
        await finish(task, writer)

        assert data.startswith(b"HTTP/1.0 200 OK\r\n")
        assert data.endswith(b"Hello, a")
        assert data.count(b"HTTP/1.") == 1
        assert session.requests_handled == 1

    async def test_connection_close_honoured(self, make_stream_pair, errors):
        stream, reader, writer = await make_stream_pair()
        session = Session(stream, hello_handler, on_error=errors)
        task = asyncio.ensure_future(session.run())

        writer.write(b"GET /x HTTP/1.1\r\nConnection: close\r\n\r\n")
        data = await asyncio.wait_for(reader.read(), 2.0)
        await finish(task, writer)

        assert b"Connection: close\r\n" in data
        assert session.closed

    async def test_responses_follow_request_order(self, make_stream_pair, errors):
        events = []

        async def slow_then_fast(request):
            events.append(f"start {request.target}")
            await asyncio.sleep(0.1 if request.target == "/slow" else 0)
            events.append(f"end {request.target}")
            return make_string_response(HTTPStatus.OK, request.target)

        stream, reader, writer = await make_stream_pair()
        session = Session(stream, async_handler(slow_then_fast), on_error=errors)
        task = asyncio.ensure_future(session.run())

        writer.write(b"GET /slow HTTP/1.1\r\n\r\nGET /fast HTTP/1.1\r\n\r\n")
        first = await read_response(reader)
        second = await read_response(reader)
        await finish(task, writer)

        assert (first[2], second[2]) == (b"/slow", b"/fast")
        assert events == ["start /slow", "end /slow", "start /fast", "end /fast"]

    async def test_head_written_without_body(self, make_stream_pair, errors):
        def with_body(request):
            return make_string_response(HTTPStatus.OK, "xyz", request.version, keep_alive=False)

        stream, reader, writer = await make_stream_pair()
        session = Session(stream, sync_handler(with_body), on_error=errors)
        task = asyncio.ensure_future(session.run())

        writer.write(b"HEAD /x HTTP/1.1\r\n\r\n")
        data = await asyncio.wait_for(reader.read(), 2.0)
        await finish(task, writer)

        assert b"Content-Length: 3\r\n" in data
        assert data.endswith(b"\r\n\r\n")


class TestDispatch:

    async def test_respond_from_another_thread(self, make_stream_pair, errors):
        threads = []

        def handler(request, respond):
            thread = threading.Thread(
                target=respond,
                args=(make_string_response(HTTPStatus.OK, "from thread"),),
            )
            threads.append(thread)
            thread.start()

        stream, reader, writer = await make_stream_pair()
        session = Session(stream, handler, on_error=errors)
        task = asyncio.ensure_future(session.run())

        writer.write(b"GET / HTTP/1.1\r\n\r\n")
        _, _, body = await read_response(reader)
        await finish(task, writer)
        for thread in threads:
            thread.join()

        assert body == b"from thread"
        assert errors.reports == []

    async def test_dispatch_timeout(self, make_stream_pair, errors):
        def never_responds(request, respond):
            pass

        stream, reader, writer = await make_stream_pair()
        session = Session(stream, never_responds, on_error=errors, dispatch_timeout=0.1)
        task = asyncio.ensure_future(session.run())

        writer.write(b"GET / HTTP/1.1\r\n\r\n")
        data = await asyncio.wait_for(reader.read(), 2.0)
        await finish(task, writer)

        assert data == b""
        assert errors.operations() == ["dispatch"]
        assert isinstance(errors.errors_for("dispatch")[0], StreamTimeout)
        assert session.requests_handled == 0

    async def test_handler_exception(self, make_stream_pair, errors):
        def broken(request, respond):
            raise ValueError("boom")

        stream, reader, writer = await make_stream_pair()
        session = Session(stream, broken, on_error=errors)
        task = asyncio.ensure_future(session.run())

        writer.write(b"GET / HTTP/1.1\r\n\r\n")
        data = await asyncio.wait_for(reader.read(), 2.0)
        await finish(task, writer)

        assert data == b""
        [error] = errors.errors_for("handle")
        assert isinstance(error, ValueError)
        assert str(error) == "boom"

    async def test_async_handler_exception(self, make_stream_pair, errors):
        async def broken(request, respond):
            await asyncio.sleep(0)
            raise KeyError("missing")

        stream, reader, writer = await make_stream_pair()
        session = Session(stream, broken, on_error=errors)
        task = asyncio.ensure_future(session.run())

        writer.write(b"GET / HTTP/1.1\r\n\r\n")
        data = await asyncio.wait_for(reader.read(), 2.0)
        await finish(task, writer)

        assert data == b""
        assert isinstance(errors.errors_for("handle")[0], KeyError)


class TestReadFailures:

    async def test_protocol_error_gets_no_response(self, make_stream_pair, errors):
        stream, reader, writer = await make_stream_pair()
        session = Session(stream, hello_handler, on_error=errors)
        task = asyncio.ensure_future(session.run())

        writer.write(b"NOT A REQUEST\r\n\r\n")
        data = await asyncio.wait_for(reader.read(), 2.0)
        await finish(task, writer)

        assert data == b""
        assert isinstance(errors.errors_for("read")[0], ProtocolError)

    async def test_idle_timeout_reported(self, make_stream_pair, errors):
        stream, reader, writer = await make_stream_pair(idle_timeout=0.1)
        session = Session(stream, hello_handler, on_error=errors)
        task = asyncio.ensure_future(session.run())

        data = await asyncio.wait_for(reader.read(), 2.0)
        await finish(task, writer)

        assert data == b""
        assert isinstance(errors.errors_for("read")[0], StreamTimeout)

    async def test_clean_eof_is_not_reported(self, make_stream_pair, errors):
        stream, _, writer = await make_stream_pair()
        session = Session(stream, hello_handler, on_error=errors)
        task = asyncio.ensure_future(session.run())

        await finish(task, writer)

        assert errors.reports == []
        assert session.closed


class TestAccessLogging:

    async def test_exchange_logged(self, make_stream_pair, errors, caplog):
        stream, reader, writer = await make_stream_pair()
        session = Session(stream, hello_handler, on_error=errors, access_log=AccessLog())
        task = asyncio.ensure_future(session.run())

        with caplog.at_level(logging.INFO, logger="asynchttp.access"):
            writer.write(b"GET /abc HTTP/1.1\r\n\r\n")
            await read_response(reader)
            await finish(task, writer)

        lines = [r.getMessage() for r in caplog.records if r.name == "asynchttp.access"]
        assert len(lines) == 1
        assert '"GET /abc HTTP/1.1" 200' in lines[0]
        assert f"[{session.id}]" in lines[0]
