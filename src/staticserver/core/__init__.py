"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking layer underneath HTTPServer:

    ┌───────────────────────────────────────────────────────────────┐
    │  SOCKET SERVER   bind / listen / accept / close               │
    └───────────────────────────────┬───────────────────────────────┘
                                    │ one Connection per client
                                    ▼
    ┌───────────────────────────────────────────────────────────────┐
    │  THREAD POOL     bounded queue + workers, drains on shutdown  │
    └───────────────────────────────┬───────────────────────────────┘
                                    │ worker runs the request loop
                                    ▼
    ┌───────────────────────────────────────────────────────────────┐
    │  CONNECTION      buffered request I/O, keep-alive state       │
    └───────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import (
    SocketServer,
    ServerError,
    BindError,
    ServerNotRunningError,
)
from .connection import Connection, ConnectionState
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "ServerError",
    "BindError",
    "ServerNotRunningError",
    "Connection",
    "ConnectionState",
    "ThreadPool",
]
