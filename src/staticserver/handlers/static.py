"""
=============================================================================
STATIC FILE HANDLER
=============================================================================

Serves files from the public directory.

    GET /css/site.css      → <public>/css/site.css
    GET /docs              → 301 Location: /docs/
    GET /docs/             → <public>/docs/index.html
    GET /missing.png       → 404
    GET /../etc/passwd     → 404  (outside the public directory)
    GET /.env              → 404  (dot-files are never served)

=============================================================================
SECURITY: PATH TRAVERSAL
=============================================================================

    GET /%2e%2e/%2e%2e/etc/passwd HTTP/1.1

After percent-decoding this is "/../../etc/passwd". Instead of trying to
spot every spelling of "..", we resolve the final filesystem path (which
also follows symlinks) and require it to still be inside the root:

    full_path = (root_dir / user_input).resolve()
    full_path.relative_to(root_dir)  # Raises if outside root!

Anything outside is answered with the same 404 as a missing file, so the
response does not reveal what exists elsewhere on disk.

=============================================================================
CACHING
=============================================================================

    ETag: "1760788800-5120"             mtime-size fingerprint
    Last-Modified: Sun, 18 Oct 2026 ...
    Cache-Control: public, max-age=0    store, but revalidate every time

    Request:  If-None-Match: "1760788800-5120"
    Response: 304 Not Modified (no body)

=============================================================================
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote
from datetime import datetime, timezone

from ..http.request import HTTPRequest
from ..http.response import (
    HTTPResponse, ResponseBuilder, HTTPStatus,
    format_http_date, redirect, forbidden, not_found, internal_error,
)
from ..http.mime_types import get_content_type


logger = logging.getLogger(__name__)


class StaticFileHandler:
    """
    Handler for serving files from a public directory.

    Usage:
        static = StaticFileHandler("/srv/site/public")

        router.get("/*path")(static.handle)

        @router.get("/")
        def index(request):
            return static.send_file(static.root_dir / "index.html", request)
    """

    def __init__(
        self,
        root_dir: str | Path,
        index_file: str = "index.html",
        cache_max_age: int = 0,
    ):
        """
        Args:
            root_dir: Directory to serve. All served files MUST be inside it.
            index_file: File served for a directory request ("/docs/").
            cache_max_age: Cache-Control max-age in seconds.
        """
        self.root_dir = Path(root_dir).resolve()
        self.index_file = index_file
        self.cache_max_age = cache_max_age

        # Not fatal: every lookup simply misses until the directory appears
        if not self.root_dir.is_dir():
            logger.warning(f"Public directory does not exist: {self.root_dir}")

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Resolve the request path against the public directory."""
        file_path = request.path_params.get("path", request.path).lstrip("/")

        full_path = self._resolve(file_path)
        if full_path is None:
            return not_found()

        if full_path.is_dir():
            # Relative links inside an index page need the trailing slash
            if not request.path.endswith("/"):
                return redirect(quote(request.path + "/"), permanent=True)

            full_path = full_path / self.index_file

        if not full_path.is_file():
            return not_found()

        return self._serve_file(full_path, request)

    def send_file(self, path: str | Path, request: HTTPRequest) -> HTTPResponse:
        """
        Serve one known file, e.g. the index page for GET /.

        The path comes from configuration, not from the client, so it is
        not subject to the root containment check.
        """
        path = Path(path)
        if not path.is_file():
            logger.warning(f"File not found: {path}")
            return not_found()

        return self._serve_file(path, request)

    def _resolve(self, file_path: str) -> Optional[Path]:
        """
        Map a URL path to a filesystem path inside root_dir.

        Returns:
            The resolved path, or None if it escapes the root, names a
            dot-file, or cannot be represented on this filesystem.
        """
        try:
            full_path = (self.root_dir / file_path).resolve()
            relative = full_path.relative_to(self.root_dir)
        except ValueError:
            # Outside the root, or an embedded NUL byte
            logger.warning(f"Path traversal attempt: {file_path!r}")
            return None
        except OSError as e:
            logger.debug(f"Cannot resolve {file_path!r}: {e}")
            return None

        if any(part.startswith(".") for part in relative.parts):
            return None

        return full_path

    def _serve_file(self, path: Path, request: HTTPRequest) -> HTTPResponse:
        """Serve a single file with caching headers, or 304 on ETag match."""
        try:
            stat = path.stat()
            size = stat.st_size
            mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
            etag = f'"{int(stat.st_mtime)}-{size}"'

            if self._etag_matches(request.get_header("if-none-match"), etag):
                return (ResponseBuilder()
                    .status(HTTPStatus.NOT_MODIFIED)
                    .header("ETag", etag)
                    .cache(self.cache_max_age)
                    .build())

            # Read for HEAD too: compression must see the same entity as GET.
            # The server leaves the body off the wire.
            content = path.read_bytes()

            return (ResponseBuilder()
                .status(HTTPStatus.OK)
                .header("Content-Type", get_content_type(path))
                .header("Content-Length", str(size))
                .header("ETag", etag)
                .header("Last-Modified", format_http_date(mtime))
                .cache(self.cache_max_age)
                .body(content)
                .build())

        except PermissionError:
            return forbidden("Permission denied")
        except FileNotFoundError:
            # Deleted between the is_file() check and the read
            return not_found()
        except OSError as e:
            logger.error(f"Error serving file {path}: {e}")
            return internal_error("Failed to read file")

    @staticmethod
    def _etag_matches(if_none_match: str, etag: str) -> bool:
        """Check an If-None-Match header ("*" or a comma-separated list)."""
        if not if_none_match:
            return False

        if if_none_match.strip() == "*":
            return True

        candidates = [tag.strip() for tag in if_none_match.split(",")]
        # Weak comparison (RFC 7232 §2.3.2): W/"x" matches "x"
        return any(tag.removeprefix("W/") == etag for tag in candidates)
