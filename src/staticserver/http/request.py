"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes of one HTTP/1.x request into an HTTPRequest.

    GET /css/site.css?v=3 HTTP/1.1\r\n        ← request line
    Host: localhost:3000\r\n                  ← headers
    Accept-Encoding: gzip, deflate\r\n
    \r\n                                      ← end of headers
    (body, if Content-Length > 0)

Framing (finding where one request ends) is done by Connection; this
module only parses a complete request.

=============================================================================
PATHS ARE DECODED, NOT TRUSTED
=============================================================================

The path is percent-decoded ("/a%20b" → "/a b") but otherwise left alone.
Containment inside the public directory is enforced by the static file
handler, which resolves the final filesystem path and refuses anything that
lands outside the root. Doing it there also catches symlinks and encoded
traversal ("/%2e%2e/etc/passwd"), which a string check here would miss.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Dict
from urllib.parse import parse_qs, urlparse, unquote
import re


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the HTTP status code that should be returned to the client:

        400 Bad Request                - Malformed request syntax
        405 Method Not Allowed         - Unknown method token
        413 Payload Too Large          - Request exceeds size limit
        505 HTTP Version Not Supported - Not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """A parsed HTTP request. Header names are lower-cased."""

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    body: bytes = b""
    path_params: Dict[str, str] = field(default_factory=dict)
    client_address: tuple[str, int] = ("", 0)

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def accept_encoding(self) -> str:
        return self.headers.get("accept-encoding", "")

    @property
    def is_head(self) -> bool:
        return self.method == "HEAD"

    @property
    def is_keep_alive(self) -> bool:
        """
        Check whether the client wants the connection kept open.

        HTTP/1.1 defaults to persistent connections unless the client sends
        "Connection: close". HTTP/1.0 defaults to closing unless the client
        sends "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()

        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        """Get a header value (case-insensitive)."""
        return self.headers.get(name.lower(), default)


class RequestParser:
    """
    HTTP/1.x request parser.

    Usage:
        parser = RequestParser(max_request_size=1024 * 1024)
        request = parser.parse(raw_bytes, ("127.0.0.1", 54321))
    """

    VALID_METHODS = {
        "GET", "HEAD", "POST", "PUT", "DELETE",
        "PATCH", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0)
    ) -> HTTPRequest:
        """
        Parse raw HTTP request bytes.

        Raises:
            HTTPParseError: If the request is malformed or too large.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(data)} bytes",
                status_code=413
            )

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        # latin-1 maps every byte, so decoding can never fail
        header_section = data[:header_end].decode("latin-1")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        if not lines[0]:
            raise HTTPParseError("Empty request")

        method, path, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length header")

        if content_length < 0:
            raise HTTPParseError("Invalid Content-Length header")

        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:content_length],
            client_address=client_address,
        )

    def _parse_request_line(
        self,
        line: str
    ) -> tuple[str, str, Dict[str, list[str]], str]:
        """Parse "METHOD URI VERSION" into its parts."""
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, uri, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505
            )

        parsed = urlparse(uri)
        path = unquote(parsed.path) or "/"
        query_params = parse_qs(parsed.query, keep_blank_values=True)

        if not path.startswith("/"):
            raise HTTPParseError(f"Invalid request target: {uri!r}")

        return method, path, query_params, version

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """
        Parse header lines into a dict with lower-cased names.

        Repeated headers are joined with ", " (RFC 7230 §3.2.2).
        Malformed lines are skipped.
        """
        headers: Dict[str, str] = {}

        for line in lines:
            if not line:
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


def parse_request(
    data: bytes,
    client_address: tuple[str, int] = ("", 0),
    max_size: int = 1024 * 1024
) -> HTTPRequest:
    """Parse an HTTP request with a throwaway parser."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
