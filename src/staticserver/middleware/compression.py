"""
=============================================================================
COMPRESSION MIDDLEWARE
=============================================================================

Compresses every response body with gzip or deflate, tuned for the lowest
CPU cost rather than the best ratio.

=============================================================================
TUNING: FAST OVER SMALL
=============================================================================

    ┌──────────────────┬─────────┬──────────────────────────────────────┐
    │ zlib parameter   │ Value   │ Effect                               │
    ├──────────────────┼─────────┼──────────────────────────────────────┤
    │ level            │ 1       │ Fastest compression level            │
    │ memLevel         │ 1       │ Smallest internal state              │
    │ windowBits       │ 9       │ 512-byte window (smallest allowed)   │
    │ strategy         │ 1       │ Z_FILTERED                           │
    │ threshold        │ 0       │ Compress every body, even empty ones │
    │ filter           │ all     │ Every Content-Type is compressed     │
    └──────────────────┴─────────┴──────────────────────────────────────┘

Bandwidth saving is traded for latency: a response spends as little time
as possible in the compressor. An empty body still becomes a valid (about
20-byte) gzip stream.

=============================================================================
CONTENT NEGOTIATION
=============================================================================

    Accept-Encoding: gzip, deflate          → gzip
    Accept-Encoding: deflate                → deflate
    Accept-Encoding: gzip;q=0, deflate      → deflate
    Accept-Encoding: br                     → (identity)
    Accept-Encoding: *                      → gzip
    (no header)                             → (identity)

Highest q-value wins; on a tie gzip is preferred over deflate. Every
response gets "Vary: Accept-Encoding" so caches keep the variants apart.

=============================================================================
HEAD
=============================================================================

HEAD is negotiated exactly like GET: the handler builds the full body, it
is compressed here, and the server leaves it off the wire. The headers a
client sees for HEAD (Content-Encoding, Content-Length) are therefore the
ones it would get for GET.

=============================================================================
WHEN WE DON'T COMPRESS
=============================================================================

- 204/304 responses (there is no body to encode)
- Responses that already have a Content-Encoding
- Responses marked "Cache-Control: no-transform"
- The compressor itself fails: the body goes out uncompressed

=============================================================================
"""

import logging
import re
import zlib
from typing import Callable, Optional

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse
from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


# Decides per request/response whether compression may be applied
CompressionFilter = Callable[[HTTPRequest, HTTPResponse], bool]

# Preference order on equal q-values
SUPPORTED_ENCODINGS = ("gzip", "deflate")

_Q_PATTERN = re.compile(r"^\s*q\s*=\s*([0-9.]+)\s*$", re.IGNORECASE)


def accept_all(request: HTTPRequest, response: HTTPResponse) -> bool:
    """Compression filter that accepts every content type."""
    return True


def negotiate_encoding(accept_encoding: str) -> Optional[str]:
    """
    Pick a content-coding from an Accept-Encoding header.

    Args:
        accept_encoding: Raw header value, e.g. "gzip;q=0.8, deflate".

    Returns:
        "gzip", "deflate", or None for identity (no compression).
    """
    preferences = {}

    for part in accept_encoding.split(","):
        coding, _, params = part.partition(";")
        coding = coding.strip().lower()
        if not coding:
            continue

        q = 1.0
        if params:
            match = _Q_PATTERN.match(params)
            if not match:
                continue
            try:
                q = float(match.group(1))
            except ValueError:
                continue

        preferences[coding] = q

    wildcard = preferences.get("*", 0.0)

    best, best_q = None, 0.0
    for coding in SUPPORTED_ENCODINGS:
        q = preferences.get(coding, wildcard)
        if q > best_q:
            best, best_q = coding, q

    # The client explicitly prefers the raw body
    if best is not None and preferences.get("identity", 0.0) > best_q:
        return None

    return best


class CompressionMiddleware(Middleware):
    """
    Compression middleware.

    =========================================================================
    USAGE
    =========================================================================

        # Fastest settings, every response (the server's default)
        pipeline.add(CompressionMiddleware())

        # Only compress text and bodies of 1 KB or more
        pipeline.add(CompressionMiddleware(
            threshold=1024,
            filter=lambda req, resp: resp.get_header("Content-Type").startswith("text/"),
        ))

    Place it last (closest to the router) so it compresses the final body
    while outer middleware such as access logging still see the response.

    =========================================================================
    """

    def __init__(
        self,
        level: int = 1,
        mem_level: int = 1,
        window_bits: int = 9,
        strategy: int = zlib.Z_FILTERED,
        threshold: int = 0,
        filter: Optional[CompressionFilter] = None,
        chunk_size: int = 16 * 1024,
    ):
        """
        Args:
            level: zlib compression level (1 = fastest, 9 = smallest).
            mem_level: zlib memory level (1 = least memory, 9 = most).
            window_bits: Base-2 log of the window size (9-15).
            strategy: zlib strategy constant.
            threshold: Minimum body size in bytes to compress.
            filter: Callable deciding whether a response may be compressed.
            chunk_size: Bytes fed to the compressor per step.
        """
        self.level = level
        self.mem_level = mem_level
        self.window_bits = window_bits
        self.strategy = strategy
        self.threshold = threshold
        self.filter = filter or accept_all
        self.chunk_size = chunk_size

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        response = next(request)

        self._add_vary(response)

        if not self._should_compress(request, response):
            return response

        encoding = negotiate_encoding(request.accept_encoding)
        if encoding is None:
            return response

        try:
            compressed_body = self._compress(response.body, encoding)
        except zlib.error as e:
            # Fail open: the uncompressed response is still correct
            logger.warning(f"Compression failed for {request.path}, sending identity: {e}")
            return response

        response.body = compressed_body
        response.set_header("Content-Encoding", encoding)
        response.set_header("Content-Length", str(len(compressed_body)))

        return response

    def _should_compress(self, request: HTTPRequest, response: HTTPResponse) -> bool:
        if not HTTPStatus(response.status).allows_body:
            return False

        # Don't double-compress
        if response.get_header("Content-Encoding"):
            return False

        if "no-transform" in response.get_header("Cache-Control").lower():
            return False

        if len(response.body) < self.threshold:
            return False

        return self.filter(request, response)

    def _compress(self, body: bytes, encoding: str) -> bytes:
        """
        Run the body through a streaming zlib compressor.

        gzip uses the gzip container (wbits + 16); HTTP "deflate" is the
        zlib container (plain wbits).
        """
        wbits = self.window_bits + 16 if encoding == "gzip" else self.window_bits

        compressor = zlib.compressobj(
            self.level,
            zlib.DEFLATED,
            wbits,
            self.mem_level,
            self.strategy,
        )

        view = memoryview(body)
        parts = []
        for start in range(0, len(view), self.chunk_size):
            parts.append(compressor.compress(view[start:start + self.chunk_size]))
        parts.append(compressor.flush())

        return b"".join(parts)

    @staticmethod
    def _add_vary(response: HTTPResponse) -> None:
        vary = response.get_header("Vary")
        if "accept-encoding" in vary.lower() or vary.strip() == "*":
            return
        response.set_header("Vary", f"{vary}, Accept-Encoding".lstrip(", "))
