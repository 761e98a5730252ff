"""
=============================================================================
STATICSERVER - Static Site Server on Raw Sockets
=============================================================================

Serves a public directory over HTTP/1.1:

    GET /          → public/index.html
    GET /<asset>   → public/<asset>, or 404

Every response goes through a gzip/deflate middleware tuned for speed, and
SIGINT/SIGTERM trigger a graceful drain with a meaningful exit status.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    staticserver/
    ├── __init__.py          # Package exports
    ├── __main__.py          # CLI entry point (python -m staticserver)
    ├── server.py            # HTTPServer, create_app()
    ├── shutdown.py          # ShutdownCoordinator (signals → exit code)
    ├── startup.py           # StartupReport printed on bind
    ├── routes.py            # GET / and the static fallback
    ├── config.py            # ServerConfig + environment parsing
    ├── core/
    │   ├── socket_server.py # Listening socket, accept loop
    │   ├── connection.py    # Per-client buffered I/O
    │   └── thread_pool.py   # Worker pool with draining shutdown
    ├── http/
    │   ├── request.py       # Request parsing
    │   ├── response.py      # Response building
    │   ├── router.py        # Route matching
    │   ├── status_codes.py  # HTTPStatus enum
    │   └── mime_types.py    # Content-Type detection
    ├── middleware/
    │   ├── base.py          # Middleware + pipeline
    │   ├── logging.py       # Access log
    │   └── compression.py   # gzip/deflate
    └── handlers/
        └── static.py        # Files from the public directory

=============================================================================
QUICK START
=============================================================================

    from staticserver import ServerConfig, create_app

    server = create_app(ServerConfig(port=0, public_dir="./public"))
    server.start()
    threading.Thread(target=server.serve_forever).start()
    host, port = server.address

    ...

    server.close().result(timeout=10)

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .core import BindError, ServerError, ServerNotRunningError
from .server import HTTPServer, create_app
from .shutdown import ShutdownCoordinator, ShutdownState

__all__ = [
    "HTTPServer",
    "ServerConfig",
    "create_app",
    "ShutdownCoordinator",
    "ShutdownState",
    "ServerError",
    "BindError",
    "ServerNotRunningError",
    "__version__",
]
