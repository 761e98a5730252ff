"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket with buffered, request-oriented I/O.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

One recv() may return half a request, or one and a half. We buffer until
the header terminator (\\r\\n\\r\\n) arrives, then read exactly
Content-Length more bytes. Anything left over belongs to the next
(pipelined) request and stays in the buffer.

=============================================================================
CONNECTION LIFECYCLE
=============================================================================

    NEW ──► READING ──► PROCESSING ──► WRITING ──┬──► KEEP_ALIVE ──► READING ...
                                                 │
                                                 └──► CLOSING ──► CLOSED

A connection is idle while nothing of a request has arrived: freshly
accepted (NEW), between requests (KEEP_ALIVE), or READING with an empty
buffer. During a drain these are the connections that can be closed right
away without losing any work.

Connections compare by identity (eq=False) so the server can keep the
open ones in a set.

=============================================================================
"""

import socket
import time
import logging
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    NEW = "new"                # Just accepted, nothing read yet
    READING = "reading"        # Reading request data
    PROCESSING = "processing"  # Handler is executing
    WRITING = "writing"        # Sending response data
    KEEP_ALIVE = "keep_alive"  # Response sent, waiting for next request
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    """
    A client connection.

    Usage:
        with Connection(socket=client_sock, address=addr) as conn:
            raw = conn.read_request()
            conn.send_response(b"HTTP/1.1 200 OK\\r\\n...")
    """

    socket: socket.socket
    address: tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0      # Timeout for the first request
    keep_alive_timeout: float = 5.0      # Timeout while idle between requests
    max_request_size: int = 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def is_idle(self) -> bool:
        """
        True when the connection holds no unfinished work.

        That is: accepted but not read from yet, between requests on a
        keep-alive connection, or waiting for a request of which nothing
        has been received. Pre-connected sockets that never send anything
        count as idle too.
        """
        if self.state in (ConnectionState.NEW, ConnectionState.KEEP_ALIVE):
            return True
        return self.state == ConnectionState.READING and not self._buffer

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request.

        Returns:
            The raw request bytes, or None if the client closed the
            connection (or went quiet on a keep-alive connection).

        Raises:
            TimeoutError: The first request did not arrive in time.
            ValueError: The request exceeds max_request_size.
        """
        with self._lock:
            self.state = ConnectionState.READING
        self.last_activity = time.time()

        # Subsequent requests on a keep-alive connection get less patience
        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk

                if len(self._buffer) > self.max_request_size:
                    raise ValueError(f"Request too large: {len(self._buffer)} bytes")

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._parse_content_length(self._buffer[:header_end])

            if body_start + content_length > self.max_request_size:
                raise ValueError(f"Request too large: {body_start + content_length} bytes")

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break  # Connection closed mid-request; parser reports it
                self._buffer += chunk

            # Keep leftovers for the next pipelined request
            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            self.last_activity = time.time()

            return request_data

        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            try:
                self.socket.settimeout(self.timeout)
            except OSError:
                pass  # Socket was shut down underneath us

    def _recv(self) -> bytes:
        try:
            data = self.socket.recv(self.buffer_size)
            self.last_activity = time.time()
            return data
        except (ConnectionResetError, BrokenPipeError):
            return b""

    @staticmethod
    def _parse_content_length(headers: bytes) -> int:
        header_str = headers.decode("latin-1").lower()
        for line in header_str.split("\r\n"):
            if line.startswith("content-length:"):
                try:
                    return max(int(line.split(":", 1)[1].strip()), 0)
                except ValueError:
                    return 0
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send a complete response.

        Returns:
            True if everything was sent, False if the client went away.
        """
        with self._lock:
            self.state = ConnectionState.WRITING
        self.last_activity = time.time()

        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    def set_processing(self):
        with self._lock:
            self.state = ConnectionState.PROCESSING

    def set_keep_alive(self):
        with self._lock:
            self.state = ConnectionState.KEEP_ALIVE

    # =========================================================================
    # CLOSING
    # =========================================================================

    def interrupt_if_idle(self) -> bool:
        """
        Stop an idle connection from waiting for another request.

        Shutting down the read side makes the blocked recv() return b"",
        so the worker sees an orderly close and releases the connection.
        Busy connections are left alone to finish their response.

        Returns:
            True if the connection was idle and has been interrupted.
        """
        with self._lock:
            if not self.is_idle:
                return False
            try:
                self.socket.shutdown(socket.SHUT_RD)
            except OSError:
                pass  # Already gone
            return True

    def close(self):
        """Close the connection: FIN, drain unread input, release the fd."""
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
