"""
Greeting handler.

    GET  /abc   →  200 text/html  "Hello, abc"
    HEAD /abc   →  200 with the same headers and Content-Length, no body
    PUT  /abc   →  405 Allow: GET, HEAD  "Invalid method."

Every response uses the request's HTTP version and keep-alive choice.
"""

from ..core.handler import sync_handler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, make_string_response, method_not_allowed
from ..http.status_codes import HTTPStatus


ALLOWED_METHODS = ("GET", "HEAD")


def greeting(target: str) -> str:
    """Body for ``target`` with one leading slash dropped."""
    if target.startswith("/"):
        target = target[1:]
    return "Hello, " + target


def handle_request(request: HTTPRequest) -> HTTPResponse:
    if request.method not in ALLOWED_METHODS:
        return method_not_allowed(
            ALLOWED_METHODS,
            version=request.version,
            keep_alive=request.keep_alive,
        )

    response = make_string_response(
        HTTPStatus.OK,
        greeting(request.target),
        request.version,
        request.keep_alive,
    )
    if request.method == "HEAD":
        # Content-Length stays the length of the GET body
        response.body = b""
    return response


hello_handler = sync_handler(handle_request)
