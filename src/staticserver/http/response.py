"""
=============================================================================
HTTP RESPONSE BUILDER
=============================================================================

Builds HTTP/1.1 responses with proper formatting per RFC 7230.

    HTTP/1.1 200 OK\r\n                       ← status line
    Content-Type: text/html; charset=utf-8\r\n
    Content-Length: 512\r\n                   ← auto-added
    Date: Sun, 18 Oct 2026 12:00:00 GMT\r\n   ← auto-added
    Server: staticserver/1.0\r\n              ← auto-added
    \r\n
    <!DOCTYPE html>...                        ← body bytes

=============================================================================
HEAD AND BODYLESS STATUSES
=============================================================================

A HEAD response carries the same headers as the GET would, including the
Content-Length of the body that is NOT sent. 204 and 304 responses never
carry a body at all. Both rules are applied at serialization time, so
handlers and middleware can treat every response the same way.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Union
import json

from .status_codes import HTTPStatus


@dataclass
class HTTPResponse:
    """
    An HTTP response to be sent to the client.

    Use ResponseBuilder (or the helpers at the bottom of this module)
    for a more convenient way to construct one.
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """Status line, e.g. "HTTP/1.1 200 OK"."""
        return f"{self.version} {int(self.status)} {HTTPStatus(self.status).phrase}"

    def get_header(self, name: str, default: str = "") -> str:
        """Get a header value, matching the name case-insensitively."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """
        Set a response header, replacing any differently-cased duplicate.

        Returns self for chaining.
        """
        lowered = name.lower()
        for key in [key for key in self.headers if key.lower() == lowered]:
            del self.headers[key]
        self.headers[name] = value
        return self

    def to_bytes(self, server_name: str = "staticserver/1.0", include_body: bool = True) -> bytes:
        """
        Serialize the response for socket.sendall().

        Args:
            server_name: Value for the Server header when not already set.
            include_body: False for HEAD requests. Headers are unchanged.

        Returns:
            Complete HTTP response as bytes.
        """
        response_headers = dict(self.headers)
        status = HTTPStatus(self.status)
        body = self.body if status.allows_body else b""

        if status.allows_body and "Content-Length" not in response_headers:
            response_headers["Content-Length"] = str(len(body))

        if "Date" not in response_headers:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if "Server" not in response_headers:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        header_bytes = "\r\n".join(lines).encode("latin-1") + b"\r\n"

        if not include_body:
            return header_bytes
        return header_bytes + body


class ResponseBuilder:
    """
    Fluent builder for constructing HTTP responses.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .header("ETag", '"1700000000-512"')
            .html("<h1>Hello</h1>")
            .build())

    Every method except build() returns self.
    """

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: bytes = b""

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        """Set a raw body. Strings are encoded as UTF-8."""
        if isinstance(body, str):
            self._body = body.encode("utf-8")
        else:
            self._body = body
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        self._body = text.encode("utf-8")
        self._headers["Content-Type"] = content_type
        return self

    def html(self, html: str) -> "ResponseBuilder":
        self._body = html.encode("utf-8")
        self._headers["Content-Type"] = "text/html; charset=utf-8"
        return self

    def json(self, data: Any) -> "ResponseBuilder":
        self._body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self._headers["Content-Type"] = "application/json; charset=utf-8"
        return self

    def redirect(self, location: str, permanent: bool = False) -> "ResponseBuilder":
        """301 when permanent, otherwise 302, with a Location header."""
        self._status = HTTPStatus.MOVED_PERMANENTLY if permanent else HTTPStatus.FOUND
        self._headers["Location"] = location
        return self

    def cache(self, max_age: int = 0) -> "ResponseBuilder":
        """
        Add Cache-Control.

        max_age=0 lets browsers store the file but forces revalidation
        (If-None-Match) on every use.
        """
        self._headers["Cache-Control"] = f"public, max-age={max_age}"
        return self

    def close_connection(self) -> "ResponseBuilder":
        self._headers["Connection"] = "close"
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Format: Day, DD Mon YYYY HH:MM:SS GMT
    Example: Sun, 18 Oct 2026 12:00:00 GMT

    HTTP dates are always GMT; aware datetimes are converted to UTC first.
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)

    return (
        f"{_DAYS[dt.weekday()]}, "
        f"{dt.day:02d} {_MONTHS[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def redirect(location: str, permanent: bool = False) -> HTTPResponse:
    return ResponseBuilder().redirect(location, permanent).build()


def error_response(status: HTTPStatus, message: Optional[str] = None) -> HTTPResponse:
    """
    Create a JSON error response.

        error_response(HTTPStatus.NOT_FOUND)
        → 404, {"error": "Not Found"}
    """
    status = HTTPStatus(status)
    return (ResponseBuilder()
        .status(status)
        .json({"error": message or status.phrase})
        .build())


def forbidden(message: str = "Forbidden") -> HTTPResponse:
    return error_response(HTTPStatus.FORBIDDEN, message)


def not_found(message: str = "Not Found") -> HTTPResponse:
    return error_response(HTTPStatus.NOT_FOUND, message)


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    """500 response. Keep the message generic: it reaches the client."""
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, message)
