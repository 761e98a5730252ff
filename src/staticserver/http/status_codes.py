"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The status codes a static file server actually produces, with their
reason phrases (RFC 7231).

    ┌────────┬───────────────────────────────────────────────────────────┐
    │  2xx   │ 200 OK              - File served                        │
    │        │ 204 No Content      - Never compressed                   │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  3xx   │ 301 Moved Permanently - /dir → /dir/                     │
    │        │ 304 Not Modified    - ETag matched If-None-Match         │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  4xx   │ 400 Bad Request     - Malformed request                  │
    │        │ 403 Forbidden       - File exists but is unreadable      │
    │        │ 404 Not Found       - No such asset                      │
    │        │ 405 Method Not Allowed - Unknown method token            │
    │        │ 408 Request Timeout - Client too slow                    │
    │        │ 413 Payload Too Large                                    │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  5xx   │ 500 Internal Server Error                                │
    │        │ 503 Service Unavailable - Worker queue full              │
    │        │ 505 HTTP Version Not Supported                           │
    └────────┴───────────────────────────────────────────────────────────┘

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes as an integer enum.

    IntEnum keeps comparisons with plain ints working:

        HTTPStatus.NOT_FOUND == 404        # True
        f"{HTTPStatus.OK}"                 # "200"
    """

    OK = 200
    NO_CONTENT = 204

    MOVED_PERMANENTLY = 301
    FOUND = 302
    NOT_MODIFIED = 304

    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    REQUEST_TIMEOUT = 408
    PAYLOAD_TOO_LARGE = 413

    INTERNAL_SERVER_ERROR = 500
    SERVICE_UNAVAILABLE = 503
    HTTP_VERSION_NOT_SUPPORTED = 505

    def __str__(self) -> str:
        return str(self.value)

    @property
    def phrase(self) -> str:
        """Reason phrase for the status line, e.g. "Not Found"."""
        return _STATUS_PHRASES.get(self, "Unknown")

    @property
    def is_success(self) -> bool:
        return 200 <= self < 300

    @property
    def is_redirect(self) -> bool:
        return 300 <= self < 400

    @property
    def is_client_error(self) -> bool:
        return 400 <= self < 500

    @property
    def is_server_error(self) -> bool:
        return 500 <= self < 600

    @property
    def is_error(self) -> bool:
        return self >= 400

    @property
    def allows_body(self) -> bool:
        """204 and 304 responses never carry a body (RFC 7230 §3.3.3)."""
        return self not in (HTTPStatus.NO_CONTENT, HTTPStatus.NOT_MODIFIED)


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.NO_CONTENT: "No Content",
    HTTPStatus.MOVED_PERMANENTLY: "Moved Permanently",
    HTTPStatus.FOUND: "Found",
    HTTPStatus.NOT_MODIFIED: "Not Modified",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.FORBIDDEN: "Forbidden",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.METHOD_NOT_ALLOWED: "Method Not Allowed",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
    HTTPStatus.HTTP_VERSION_NOT_SUPPORTED: "HTTP Version Not Supported",
}
