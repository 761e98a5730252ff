"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

Owns the listening socket: bind, listen, accept, close. Everything above
TCP (parsing, routing, the worker pool) lives in HTTPServer.

    listen()   socket() → setsockopt() → bind() → listen()
    serve()    accept loop, one Connection per client, until close()
    close()    stop accepting; the port is released immediately

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR:
    Rebind right after a restart instead of waiting out TIME_WAIT.
    SO_REUSEPORT is deliberately NOT set: a second instance on the same
    port must fail to bind rather than silently share it.

TCP_NODELAY:
    Disable Nagle's algorithm so small responses go out immediately.

=============================================================================
INTERRUPTING accept()
=============================================================================

Closing a listening socket from another thread does not reliably wake a
thread blocked in accept(). close() therefore shuts the socket down first
(which does wake it on Linux), and accept() also uses a short timeout so
the loop notices the closed flag on every platform.

=============================================================================
"""

import socket
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


# Seconds accept() blocks before re-checking whether the server was closed
ACCEPT_POLL_INTERVAL = 0.5


class ServerError(Exception):
    """Base class for server lifecycle errors."""


class BindError(ServerError):
    """The listening socket could not be bound to the requested address."""

    def __init__(self, host: str, port: int, error: OSError):
        self.host = host
        self.port = port
        self.error = error
        super().__init__(f"Failed to bind to {host}:{port}: {error}")


class ServerNotRunningError(ServerError):
    """close() was called on a server that is not listening."""

    def __init__(self, message: str = "Server is not running"):
        super().__init__(message)


class SocketServer:
    """
    Low-level TCP socket server.

    Usage:
        server = SocketServer(config)
        server.listen()                  # raises BindError
        server.serve(handle_connection)  # blocks until close()

        # from any other thread
        server.close()
    """

    def __init__(self, config: ServerConfig):
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._listening = False
        self._lock = threading.Lock()
        self._closed = threading.Event()

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (host, port).

        Reads the real address from the socket, so with port 0 this is the
        port the OS picked. Falls back to the configured address before
        listen().
        """
        sock = self._socket
        if sock is not None:
            try:
                host, port = sock.getsockname()[:2]
                return (host, port)
            except OSError:
                pass
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        return sock

    def listen(self):
        """
        Bind and start listening.

        Raises:
            BindError: The address is in use, not permitted, or invalid.
            ServerError: Already listening.
        """
        with self._lock:
            if self._listening:
                raise ServerError("Server is already listening")

            sock = self._create_socket()
            try:
                sock.bind((self.config.host, self.config.port))
                sock.listen(self.config.backlog)
            except OSError as e:
                sock.close()
                raise BindError(self.config.host, self.config.port, e) from e
            except OverflowError as e:
                # Port outside 0-65535
                sock.close()
                raise BindError(self.config.host, self.config.port, OSError(str(e))) from e

            self._socket = sock
            self._listening = True
            self._closed.clear()

        host, port = self.address
        logger.info(f"Server listening on {host}:{port}")

    def serve(self, connection_handler: Callable[[Connection], None]):
        """
        Accept connections until close() is called.

        Each accepted client is wrapped in a Connection and handed to
        connection_handler on this thread; the handler is expected to
        hand it off quickly (HTTPServer submits it to the thread pool).
        """
        sock = self._socket
        if sock is None:
            if self._closed.is_set():
                return  # close() won the race; nothing to accept
            raise ServerNotRunningError("serve() called before listen()")

        while not self._closed.is_set():
            try:
                client_socket, client_address = sock.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self._closed.is_set():
                    logger.error(f"Accept error: {e}")
                break

            if self._closed.is_set():
                # Raced with close(): refuse rather than start new work
                client_socket.close()
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_request_size=self.config.max_request_size,
            )
            connection_handler(conn)

        logger.debug("Accept loop exited")

    def close(self):
        """
        Stop accepting connections and release the port.

        Raises:
            ServerNotRunningError: The server is not listening.
            OSError: The listening socket failed to close.
        """
        with self._lock:
            if not self._listening:
                raise ServerNotRunningError()

            self._listening = False
            self._closed.set()
            sock, self._socket = self._socket, None

        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Not connected; some platforms refuse this on listeners

        sock.close()
        logger.info("Socket server stopped")
