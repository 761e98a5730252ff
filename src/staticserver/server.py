"""
=============================================================================
MAIN HTTP SERVER
=============================================================================

Ties the components together:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          HTTPServer                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    SocketServer ──► ThreadPool ──► _process_connection()            │
    │    (accept loop)    (workers)          │                             │
    │                                        ▼                             │
    │                     Logging → Compression → Router → handler         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
REQUEST LIFECYCLE
=============================================================================

    1. SocketServer accepts the TCP connection (main thread)
    2. The connection is queued in the ThreadPool (503 if the queue is full)
    3. A worker reads and parses the request
    4. Middleware + router produce the HTTPResponse
    5. The response is serialized (no body for HEAD) and sent
    6. Keep-alive: loop for the next request, otherwise close

=============================================================================
GRACEFUL CLOSE
=============================================================================

close() returns a concurrent.futures.Future right away and drains in the
background:

    close()
      ├─► mark draining            new requests get "Connection: close"
      ├─► close listening socket   new TCP connections are refused
      ├─► interrupt idle sockets   connected, no request in progress
      └─► drain thread
            └─► ThreadPool.shutdown(wait=True)
                  └─► future.set_result(None)   (or set_exception)

Busy connections finish the response they are producing, then close.
Nothing in flight is cancelled; bounding the wait is the caller's job
(see ShutdownCoordinator).

=============================================================================
"""

import logging
import threading
from concurrent.futures import Future
from typing import Optional, Callable, Tuple

from .config import ServerConfig, parse_log_level
from .core import (
    SocketServer, Connection, ThreadPool,
    ServerNotRunningError,
)
from .http import (
    HTTPRequest, RequestParser, HTTPParseError,
    HTTPResponse, HTTPStatus, Router,
    error_response, internal_error,
)
from .middleware import (
    MiddlewarePipeline, Middleware,
    LoggingMiddleware, CompressionMiddleware,
)
from .routes import register_routes
from .startup import StartupReport


logger = logging.getLogger(__name__)
access_logger = logging.getLogger("staticserver.access")


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class HTTPServer:
    """
    Threaded HTTP/1.1 server.

    =========================================================================
    USAGE
    =========================================================================

        server = HTTPServer(ServerConfig(port=3000))
        server.use(LoggingMiddleware(log_format="dev"))
        server.use(CompressionMiddleware())

        @server.get("/")
        def index(request):
            return ResponseBuilder().html("<h1>Hello</h1>").build()

        server.start()           # bind + startup report, raises BindError
        server.serve_forever()   # blocks until close()

        # elsewhere, e.g. a signal handler
        server.close().result(timeout=10)

    =========================================================================
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()

        # ─────────────────────────────────────────────────────────────────
        # CORE COMPONENTS
        # ─────────────────────────────────────────────────────────────────

        self._socket_server = SocketServer(self.config)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
        )
        self._parser = RequestParser(max_request_size=self.config.max_request_size)

        # ─────────────────────────────────────────────────────────────────
        # APPLICATION COMPONENTS
        # ─────────────────────────────────────────────────────────────────

        self._router = Router()
        self._middleware = MiddlewarePipeline()

        # Built in start(): middleware.wrap(router.handle)
        self._handler: Optional[Callable[[HTTPRequest], HTTPResponse]] = None

        # ─────────────────────────────────────────────────────────────────
        # RUNTIME STATE
        # ─────────────────────────────────────────────────────────────────

        self._draining = threading.Event()
        self._connections: set[Connection] = set()
        self._connections_lock = threading.Lock()

        self._started = False

        self.startup_report: Optional[StartupReport] = None

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def use(self, middleware: Middleware) -> "HTTPServer":
        """
        Add middleware. The first one added is the outermost layer.

        Returns self for chaining.
        """
        self._middleware.add(middleware)
        return self

    @property
    def router(self) -> Router:
        return self._router

    def route(self, path: str, method: Optional[str] = None):
        return self._router.route(path, method)

    def get(self, path: str):
        return self._router.get(path)

    @property
    def address(self) -> Tuple[str, int]:
        """The (host, port) actually bound. With port 0, the OS-chosen port."""
        return self._socket_server.address

    @property
    def is_listening(self) -> bool:
        return self._socket_server.is_listening

    @property
    def is_draining(self) -> bool:
        return self._draining.is_set()

    @property
    def open_connections(self) -> int:
        with self._connections_lock:
            return len(self._connections)

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def start(self) -> StartupReport:
        """
        Bind, listen, start the workers and print the startup report.

        Raises:
            BindError: The port could not be bound. Nothing is left running.
            ServerError: The server is already listening.
        """
        self._handler = self._middleware.wrap(self._router.handle)
        self._draining.clear()

        self._socket_server.listen()
        self._thread_pool.start()
        self._started = True

        host, port = self.address
        logger.info(f"Serving {self.config.public_dir} on {host}:{port}")

        self.startup_report = StartupReport.capture(self.address)
        print(self.startup_report.render(), flush=True)

        return self.startup_report

    def serve_forever(self):
        """
        Run the accept loop. Returns once the listening socket is closed.

        If close() already ran (a signal between start() and this call),
        returns at once.

        Raises:
            ServerNotRunningError: start() was never called.
        """
        if not self._started:
            raise ServerNotRunningError("serve_forever() called before start()")

        self._socket_server.serve(self._handle_connection)

    def run(self):
        """start() then serve_forever()."""
        self.start()
        self.serve_forever()

    def close(self) -> "Future[None]":
        """
        Stop accepting connections and drain the in-flight ones.

        Returns:
            A Future that resolves to None once every connection has
            finished, or fails with ServerNotRunningError (not listening)
            or the OSError raised while closing the listening socket.
        """
        future: "Future[None]" = Future()

        if not self._socket_server.is_listening:
            future.set_exception(ServerNotRunningError())
            return future

        self._draining.set()

        close_error: Optional[BaseException] = None
        try:
            self._socket_server.close()
        except ServerNotRunningError as e:
            # Lost a race with another close()
            future.set_exception(e)
            return future
        except OSError as e:
            logger.error(f"Error closing listening socket: {e}")
            close_error = e

        interrupted = self._interrupt_idle_connections()
        logger.info(
            f"Draining {self.open_connections} connections "
            f"({interrupted} idle closed, {self._thread_pool.pending} queued)"
        )

        drain_thread = threading.Thread(
            target=self._drain,
            args=(future, close_error),
            name="http-drain",
            daemon=True,
        )
        drain_thread.start()

        return future

    def _drain(self, future: "Future[None]", close_error: Optional[BaseException]):
        try:
            self._thread_pool.shutdown(wait=True)
        except Exception as e:
            logger.exception(f"Error draining worker pool: {e}")
            future.set_exception(e)
            return

        if close_error is not None:
            future.set_exception(close_error)
        else:
            logger.info("Server stopped")
            future.set_result(None)

    def _interrupt_idle_connections(self) -> int:
        with self._connections_lock:
            connections = list(self._connections)

        return sum(1 for conn in connections if conn.interrupt_if_idle())

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Queue an accepted connection for a worker (runs on the accept thread)."""
        if self._draining.is_set():
            conn.close()
            return

        try:
            submitted = self._thread_pool.submit(
                self._process_connection,
                args=(conn,),
                block=False,
            )
        except RuntimeError:
            # Pool already shutting down
            conn.close()
            return

        if not submitted:
            logger.warning(f"[{conn.id}] Thread pool full, rejecting connection")
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            conn.close()

    def _process_connection(self, conn: Connection):
        """
        Serve requests on one connection until it closes (worker thread).

        Keep-alive loop: read → parse → dispatch → send → repeat. Once the
        server is draining, the current response carries
        "Connection: close" and the loop ends after sending it.
        """
        with conn:
            with self._connections_lock:
                self._connections.add(conn)
            try:
                # Queued before close() began but picked up after its
                # idle sweep: nothing was read yet, so just close
                if self._draining.is_set():
                    return
                self._serve_connection(conn)
            finally:
                with self._connections_lock:
                    self._connections.discard(conn)

    def _serve_connection(self, conn: Connection):
        while True:
            try:
                raw_request = conn.read_request()
            except TimeoutError:
                self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                break
            except ValueError as e:
                logger.warning(f"[{conn.id}] {e}")
                self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE, "Request too large")
                break

            if raw_request is None:
                break  # Client closed, idle timeout, or interrupted

            try:
                try:
                    request = self._parser.parse(raw_request, conn.address)
                except HTTPParseError as e:
                    self._send_error(conn, e.status_code, str(e))
                    break

                conn.set_processing()
                response = self._dispatch(conn, request)

                keep_alive = (
                    request.is_keep_alive
                    and self.config.keep_alive
                    and not self._draining.is_set()
                )

                if keep_alive:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault(
                        "Keep-Alive",
                        f"timeout={int(self.config.keep_alive_timeout)}"
                    )
                else:
                    response.set_header("Connection", "close")

                response_bytes = response.to_bytes(
                    self.config.server_name,
                    include_body=not request.is_head,
                )
                if not conn.send_response(response_bytes):
                    break

                if not keep_alive:
                    break

                # Mark idle before checking: close() sets draining before it
                # interrupts idle connections, so one of the two sees the other
                conn.set_keep_alive()
                if self._draining.is_set():
                    break

            except Exception as e:
                logger.exception(f"[{conn.id}] Connection error: {e}")
                break

    def _dispatch(self, conn: Connection, request: HTTPRequest) -> HTTPResponse:
        try:
            return self._handler(request)
        except Exception as e:
            logger.exception(f"[{conn.id}] Handler error on {request.method} {request.path}: {e}")
            return internal_error()

    def _send_error(self, conn: Connection, status: HTTPStatus, message: str):
        """
        Send an error for failures outside the handler chain (parse,
        timeout, size, overload).

        These bypass the middleware: there is no parsed request, so no
        Accept-Encoding to negotiate and the body goes out uncompressed.
        The access log still gets a line for them.
        """
        response = error_response(status, message)
        response.set_header("Connection", "close")
        conn.send_response(response.to_bytes(self.config.server_name))

        access_logger.info(
            f"{conn.client_ip} - {int(status)} {message} (rejected before routing)"
        )


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def setup_logging(level: Optional[str] = None):
    """
    Configure root logging for the process.

    The level name goes through parse_log_level(), so an unknown name falls
    back to INFO with a warning. Calling it again only changes the level.
    """
    level = parse_log_level(level)

    logging.basicConfig(format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    logging.getLogger().setLevel(level)
    logging.getLogger("staticserver").setLevel(level)


def create_app(config: Optional[ServerConfig] = None) -> HTTPServer:
    """
    Build the static site server.

    Middleware order: access log outermost (times and logs everything),
    compression innermost (compresses what the router produced).

    Args:
        config: Server configuration. Read from the environment when omitted.

    Returns:
        A configured, not yet started, HTTPServer.
    """
    config = config or ServerConfig.from_env()

    server = HTTPServer(config)
    server.use(LoggingMiddleware(log_format="dev"))
    server.use(CompressionMiddleware())

    register_routes(server.router, config)

    return server
