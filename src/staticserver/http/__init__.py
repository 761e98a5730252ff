"""
HTTP protocol components: request parsing, response building, routing,
status codes and MIME types.
"""

from .request import HTTPRequest, RequestParser, HTTPParseError
from .response import (
    HTTPResponse,
    ResponseBuilder,
    redirect,
    error_response,
    forbidden,
    not_found,
    internal_error,
)
from .router import Router, Route
from .status_codes import HTTPStatus
from .mime_types import get_mime_type, get_content_type

__all__ = [
    # Request parsing
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",

    # Response building
    "HTTPResponse",
    "ResponseBuilder",
    "redirect",
    "error_response",
    "forbidden",
    "not_found",
    "internal_error",

    # Routing
    "Router",
    "Route",

    # Status codes
    "HTTPStatus",

    # MIME types
    "get_mime_type",
    "get_content_type",
]
