"""
pytest configuration and fixtures.
"""

import socket
import threading
from pathlib import Path
from typing import Generator, Optional

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from staticserver import HTTPServer, ServerConfig, create_app


INDEX_HTML = "<!DOCTYPE html><html><body><h1>Home</h1></body></html>"
APP_JS = "console.log('hello');\n" * 200


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request for an asset."""
    return (
        b"GET /css/site.css?v=3&theme=dark HTTP/1.1\r\n"
        b"Host: localhost:3000\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: text/css\r\n"
        b"Accept-Encoding: gzip, deflate\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def public_dir(tmp_path: Path) -> Path:
    """A small public directory with an index page, assets and a hidden file."""
    root = tmp_path / "public"
    root.mkdir()

    (root / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    (root / "app.js").write_text(APP_JS, encoding="utf-8")
    (root / "empty.txt").write_bytes(b"")
    (root / ".env").write_text("SECRET=1\n", encoding="utf-8")

    docs = root / "docs"
    docs.mkdir()
    (docs / "index.html").write_text("<h1>Docs</h1>", encoding="utf-8")

    # Outside the public directory: must never be served
    (tmp_path / "secret.txt").write_text("top secret", encoding="utf-8")

    return root


@pytest.fixture
def config(public_dir: Path) -> ServerConfig:
    """Test configuration: loopback, OS-picked port, small pool."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        min_workers=2,
        max_workers=4,
        timeout=5.0,
        keep_alive_timeout=2.0,
        public_dir=public_dir,
        shutdown_timeout=5.0,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class RunningServer:
    """Test server helper: start() binds, the accept loop runs in a thread."""

    def __init__(self, server: HTTPServer):
        self.server = server
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self) -> "RunningServer":
        self.server.start()
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self._thread.start()
        return self

    def stop(self):
        if self.server.is_listening:
            self.server.close().result(timeout=10.0)

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    def connect(self) -> socket.socket:
        sock = socket.create_connection(("127.0.0.1", self.port), timeout=5.0)
        return sock


@pytest.fixture
def running_server(config: ServerConfig) -> Generator[RunningServer, None, None]:
    """The real application, listening on 127.0.0.1 with an ephemeral port."""
    test_srv = RunningServer(create_app(config)).start()

    yield test_srv

    test_srv.stop()
