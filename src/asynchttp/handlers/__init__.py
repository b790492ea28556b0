"""
=============================================================================
HANDLERS MODULE
=============================================================================

Request handlers: the application side of the handler contract.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    REQUEST → HANDLER → RESPONSE                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    Request                 Handler                 Response         │
    │   ┌─────────┐           ┌─────────┐           ┌──────────────┐     │
    │   │ GET     │           │         │           │ 200 OK       │     │
    │   │ /abc    │ ────────▶ │ Logic   │ ────────▶ │              │     │
    │   │         │           │         │           │ Hello, abc   │     │
    │   └─────────┘           └─────────┘           └──────────────┘     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A handler turns failures it understands into error responses (405, 400,
...) instead of raising; the server core never invents a response.

=============================================================================
"""

from .hello import handle_request, hello_handler, ALLOWED_METHODS

__all__ = [
    "handle_request",
    "hello_handler",
    "ALLOWED_METHODS",
]
