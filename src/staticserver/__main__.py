"""
=============================================================================
STATIC SERVER CLI ENTRY POINT
=============================================================================

    python -m staticserver
    PORT=8080 PUBLIC_DIR=./site python -m staticserver
    staticserver --version

All settings come from the environment (see staticserver.config); the
command line only offers --help and --version.

=============================================================================
PROCESS LIFECYCLE
=============================================================================

    load config ──► build app ──► bind + report ──► install signal handlers
        ──► serve ──► SIGINT/SIGTERM ──► drain ──► exit 0 / 1

Exit status:
    0   clean shutdown
    1   bind failure, error while closing, or drain timeout

=============================================================================
"""

import argparse
import logging
import sys
from typing import Optional, Sequence

from . import __version__
from .config import ServerConfig
from .core import BindError
from .server import create_app, setup_logging
from .shutdown import EXIT_FAILURE, ShutdownCoordinator, ShutdownState


logger = logging.getLogger("staticserver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="staticserver",
        description="Serve a public directory over HTTP with compression and graceful shutdown",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  PORT              Port to listen on (default: 3000)
  HOST              Address to bind to (default: 0.0.0.0)
  PUBLIC_DIR        Directory to serve (default: ./public)
  LOG_LEVEL         DEBUG, INFO, WARNING or ERROR (default: INFO)
  SHUTDOWN_TIMEOUT  Seconds allowed for a graceful drain (default: 10)
        """
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"staticserver {__version__}"
    )

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the server until it is signalled. Returns the exit status."""
    build_parser().parse_args(argv)

    # Default level first so config fallbacks are reported, then LOG_LEVEL
    setup_logging()
    config = ServerConfig.from_env()
    setup_logging(config.log_level)

    server = create_app(config)

    try:
        server.start()
    except BindError as e:
        logger.error(f"Server failed to start: {e}")
        return EXIT_FAILURE

    coordinator = ShutdownCoordinator(server, timeout=config.shutdown_timeout)
    coordinator.install()

    # A signal may already have arrived; then close() has run
    if coordinator.state is ShutdownState.RUNNING:
        server.serve_forever()

    # The accept loop only returns on its own if the socket failed
    if coordinator.state is ShutdownState.RUNNING:
        coordinator.begin("Accept loop exited")

    return coordinator.wait()


if __name__ == "__main__":
    sys.exit(main())
