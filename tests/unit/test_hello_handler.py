"""
Unit tests for the greeting handler.
"""

import pytest

from asynchttp.handlers.hello import handle_request, hello_handler, greeting
from asynchttp.http import HTTPStatus, parse_request


def request_for(method: str, target: str = "/abc", version: str = "HTTP/1.1", extra: bytes = b""):
    return parse_request(f"{method} {target} {version}\r\nHost: test\r\n".encode() + extra + b"\r\n")


class TestHelloHandler:
    """GET/HEAD greet the target, everything else is 405."""

    def test_get(self):
        response = handle_request(request_for("GET"))

        assert response.status == HTTPStatus.OK
        assert response.body == b"Hello, abc"
        assert response.headers["Content-Type"] == "text/html"
        assert response.headers["Content-Length"] == "10"

    def test_head_matches_get_headers(self):
        get = handle_request(request_for("GET"))
        head = handle_request(request_for("HEAD"))

        assert head.status == HTTPStatus.OK
        assert head.body == b""
        assert head.headers == get.headers

    @pytest.mark.parametrize("method", ["PUT", "POST", "DELETE", "OPTIONS"])
    def test_other_methods_not_allowed(self, method: str):
        response = handle_request(request_for(method))

        assert response.status == HTTPStatus.METHOD_NOT_ALLOWED
        assert response.headers["Allow"] == "GET, HEAD"
        assert response.body == b"Invalid method."

    def test_only_one_leading_slash_stripped(self):
        assert greeting("/abc") == "Hello, abc"
        assert greeting("//abc") == "Hello, /abc"
        assert greeting("abc") == "Hello, abc"
        assert greeting("/") == "Hello, "

    def test_raw_target_used(self):
        response = handle_request(request_for("GET", "/a%20b?x=1"))
        assert response.body == b"Hello, a%20b?x=1"

    def test_mirrors_http10_close(self):
        response = handle_request(request_for("GET", version="HTTP/1.0"))

        assert response.version == "HTTP/1.0"
        assert response.need_eof is True

    def test_mirrors_http10_keep_alive(self):
        response = handle_request(
            request_for("GET", version="HTTP/1.0", extra=b"Connection: keep-alive\r\n")
        )

        assert response.need_eof is False
        assert response.headers["Connection"] == "keep-alive"

    def test_mirrors_http11_close(self):
        response = handle_request(request_for("PUT", extra=b"Connection: close\r\n"))

        assert response.status == HTTPStatus.METHOD_NOT_ALLOWED
        assert response.need_eof is True

    def test_wrapped_handler_responds_synchronously(self):
        responses = []
        result = hello_handler(request_for("GET"), responses.append)

        assert result is None
        assert [r.body for r in responses] == [b"Hello, abc"]
