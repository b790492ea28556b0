"""
HTTP message types: request parsing, response building and status codes.

These are the values that flow through a session:

    bytes ──RequestParser──► HTTPRequest ──handler──► HTTPResponse ──to_bytes──► bytes
"""

from .request import (
    HTTPRequest,
    RequestParser,
    HTTPParseError,
    parse_request,
)
from .response import (
    HTTPResponse,
    ResponseBuilder,
    ContentType,
    format_http_date,
    make_string_response,
    method_not_allowed,
)
from .status_codes import HTTPStatus

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",
    "HTTPResponse",
    "ResponseBuilder",
    "ContentType",
    "format_http_date",
    "make_string_response",
    "method_not_allowed",
    "HTTPStatus",
]
