"""
Route table for the site.

    GET /        → the configured index file (public/index.html)
    GET /*path   → any other file under the public directory

Everything else (other methods, unmatched paths) is a 404 from the router.
"""

from .config import ServerConfig
from .handlers import StaticFileHandler
from .http import HTTPRequest, HTTPResponse, Router


def register_routes(router: Router, config: ServerConfig) -> StaticFileHandler:
    """Register the index route and the static fallback on `router`."""
    static = StaticFileHandler(config.public_dir, index_file=config.index_file)
    index_path = config.index_path

    @router.get("/")
    def index(request: HTTPRequest) -> HTTPResponse:
        return static.send_file(index_path, request)

    router.get("/*path")(static.handle)

    return static
