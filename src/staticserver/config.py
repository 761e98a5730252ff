"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the static file server.

All runtime settings live in one dataclass, ServerConfig. Values come from
keyword arguments (tests, embedding) or from environment variables through
ServerConfig.from_env() (the normal 12-factor entry point).

=============================================================================
ENVIRONMENT VARIABLES
=============================================================================

    PORT              Port to listen on            (default: 3000)
    HOST              Address to bind to           (default: 0.0.0.0)
    PUBLIC_DIR        Directory served over HTTP   (default: ./public)
    LOG_LEVEL         DEBUG, INFO, WARNING, ERROR  (default: INFO)
    SHUTDOWN_TIMEOUT  Seconds allowed for drain    (default: 10)

=============================================================================
PARSE WITH FALLBACK
=============================================================================

Environment values are strings typed by humans. A typo in PORT must not
stop the server from starting, so every value goes through a small parser
that returns either a validated value or the named default:

    PORT=8080     → 8080
    PORT=         → 3000  (unset / empty)
    PORT=http     → 3000  (not a number)
    PORT=99999    → 3000  (out of range)

The fallback is logged as a warning so an operator can still spot it.

=============================================================================
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional


logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────
# DEFAULTS
# ─────────────────────────────────────────────────────────────────────────

DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PUBLIC_DIR = "public"
DEFAULT_INDEX_FILE = "index.html"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_SHUTDOWN_TIMEOUT = 10.0

MAX_PORT = 65535
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def parse_port(value: Optional[str], default: int = DEFAULT_PORT) -> int:
    """
    Parse a port number, falling back to `default` on anything invalid.

    Only plain decimal strings in 0-65535 are accepted. Port 0 asks the OS
    for a free ephemeral port.

    Args:
        value: Raw string (usually from the environment), or None.
        default: Port returned when value is missing or invalid.

    Returns:
        A port number in 0-65535.
    """
    if value is None:
        return default

    text = value.strip()
    if not text:
        return default

    # ASCII only: isdigit() alone also admits "²" and "٣", which int() rejects
    # or reads as a different number
    if not (text.isascii() and text.isdigit()):
        logger.warning(f"Invalid port {value!r}, falling back to {default}")
        return default

    port = int(text)
    if port > MAX_PORT:
        logger.warning(f"Port {port} out of range, falling back to {default}")
        return default

    return port


def parse_timeout(value: Optional[str], default: float = DEFAULT_SHUTDOWN_TIMEOUT) -> float:
    """Parse a positive number of seconds, falling back to `default`."""
    if value is None or not value.strip():
        return default

    try:
        seconds = float(value)
    except ValueError:
        logger.warning(f"Invalid timeout {value!r}, falling back to {default}")
        return default

    # Rejects NaN as well: NaN > 0 is False
    if not seconds > 0:
        logger.warning(f"Timeout must be positive, got {value!r}, falling back to {default}")
        return default

    return seconds


def parse_log_level(value: Optional[str], default: str = DEFAULT_LOG_LEVEL) -> str:
    """Normalize a log level name, falling back to `default`."""
    if value is None or not value.strip():
        return default

    level = value.strip().upper()
    if level not in LOG_LEVELS:
        logger.warning(f"Unknown log level {value!r}, falling back to {default}")
        return default

    return level


@dataclass
class ServerConfig:
    """
    Configuration for the static file server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK
    - host, port, backlog, buffer_size, timeout

    HTTP
    - keep_alive, keep_alive_timeout, max_request_size

    THREADING
    - min_workers, max_workers

    CONTENT
    - public_dir, index_file

    LIFECYCLE / LOGGING
    - shutdown_timeout, log_level, server_name

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = DEFAULT_HOST
    """Address to bind to. 0.0.0.0 listens on every IPv4 interface."""

    port: int = DEFAULT_PORT
    """Port to listen on. 0 lets the OS pick a free port."""

    backlog: int = 128
    """Maximum number of connections queued by the kernel before accept()."""

    buffer_size: int = 8192
    """Bytes read from a client socket per recv() call."""

    timeout: Optional[float] = 30.0
    """Socket timeout for reading the first request on a connection."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_request_size: int = 1024 * 1024  # 1 MB, requests carry no uploads

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    max_workers: int = 16

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────

    public_dir: Path = field(default_factory=lambda: Path.cwd() / DEFAULT_PUBLIC_DIR)
    """
    Directory whose contents are served verbatim.
    Relative paths are resolved against the current working directory.
    """

    index_file: str = DEFAULT_INDEX_FILE
    """File inside public_dir returned for GET /."""

    # ─────────────────────────────────────────────────────────────────────
    # LIFECYCLE / LOGGING
    # ─────────────────────────────────────────────────────────────────────

    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    """
    Upper bound on the drain after SIGINT/SIGTERM.
    If in-flight connections have not finished by then, the process exits
    with status 1 instead of hanging forever.
    """

    log_level: str = DEFAULT_LOG_LEVEL
    server_name: str = "staticserver/1.0"

    def __post_init__(self):
        self.public_dir = Path(self.public_dir)

    @property
    def index_path(self) -> Path:
        """Absolute path of the file served for GET /."""
        return self.public_dir / self.index_file

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Create configuration from environment variables.

        Invalid values never raise: each one falls back to its default.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Usage:
            PORT=8080 python -m staticserver
        """
        env = os.environ if environ is None else environ

        public_dir = env.get("PUBLIC_DIR") or DEFAULT_PUBLIC_DIR

        return cls(
            host=env.get("HOST") or DEFAULT_HOST,
            port=parse_port(env.get("PORT")),
            public_dir=Path(public_dir).resolve(),
            shutdown_timeout=parse_timeout(env.get("SHUTDOWN_TIMEOUT")),
            log_level=parse_log_level(env.get("LOG_LEVEL")),
        )

    def validate(self) -> None:
        """
        Validate configuration values (fail-fast).

        Only settings that cannot come from the environment are checked
        here; environment values have already been through the parsers.
        """
        if not 0 <= self.port <= MAX_PORT:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-{MAX_PORT}.")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.shutdown_timeout <= 0:
            raise ValueError("shutdown_timeout must be > 0")
