"""
=============================================================================
SHUTDOWN COORDINATOR
=============================================================================

Turns SIGINT/SIGTERM into a graceful close and a process exit status.

=============================================================================
STATE MACHINE
=============================================================================

    RUNNING ──signal──► DRAINING ──close future resolves──► STOPPED  (exit 0)
                            │
                            ├──close future raises──────► FAILED   (exit 1)
                            └──drain exceeds timeout────► FAILED   (exit 1)

- Entering DRAINING logs "<SIGNAL> received. Shutting down..." and calls
  server.close(), which returns a Future.
- A second signal while DRAINING (or later) is logged and ignored: the
  state and the eventual exit code do not change.

=============================================================================
WHY THE SIGNAL HANDLER DOES SO LITTLE
=============================================================================

Python runs signal handlers on the main thread, between bytecodes of
whatever the main thread was doing (usually the accept loop). The handler
therefore only starts the close. Waiting on the Future and choosing the
exit code happen in wait(), called from main() once the accept loop has
returned:

    server.start()
    coordinator.install()
    server.serve_forever()      ◄── returns after close() shuts the socket
    return coordinator.wait()   ◄── 0 or 1

=============================================================================
"""

import logging
import signal
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Protocol

from .config import DEFAULT_SHUTDOWN_TIMEOUT


logger = logging.getLogger(__name__)


EXIT_OK = 0
EXIT_FAILURE = 1

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Closable(Protocol):
    def close(self) -> "Future[None]":
        ...


class ShutdownState(Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"
    FAILED = "failed"


class ShutdownCoordinator:
    """
    Owns the graceful shutdown of one server.

    Usage:
        coordinator = ShutdownCoordinator(server, timeout=10.0)
        coordinator.install()          # SIGINT/SIGTERM → begin()
        ...
        exit_code = coordinator.wait()

    Args:
        server: Anything with close() -> Future[None] (an HTTPServer).
        timeout: Seconds wait() allows the drain before giving up.
        name: Used in log messages ("HTTP server closed.").
    """

    def __init__(
        self,
        server: Closable,
        timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        name: str = "HTTP server",
    ):
        self.server = server
        self.timeout = timeout
        self.name = name

        self._state = ShutdownState.RUNNING
        # Reentrant: a signal can arrive while the main thread is in begin()
        self._lock = threading.RLock()
        self._draining = threading.Event()
        self._closing: Optional["Future[None]"] = None
        self._original_handlers: Dict[int, Callable] = {}

    @property
    def state(self) -> ShutdownState:
        return self._state

    # =========================================================================
    # SIGNALS
    # =========================================================================

    def install(self, signals: Iterable[signal.Signals] = DEFAULT_SIGNALS):
        """
        Route the given signals to this coordinator.

        Must be called from the main thread. The previous handlers are
        kept and put back by restore().
        """
        for sig in signals:
            self._original_handlers[sig] = signal.signal(sig, self.handle_signal)

        names = ", ".join(signal.Signals(sig).name for sig in self._original_handlers)
        logger.info(f"Waiting for {names} to shut down")

    def restore(self):
        """Put back the signal handlers that were active before install()."""
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def handle_signal(self, signum, frame):
        self.begin(signal.Signals(signum).name)

    # =========================================================================
    # SHUTDOWN FLOW
    # =========================================================================

    def begin(self, reason: str) -> bool:
        """
        RUNNING → DRAINING: start closing the server.

        Args:
            reason: What triggered the shutdown, e.g. "SIGTERM".

        Returns:
            True if this call started the shutdown, False if one was
            already under way (the call is then ignored).
        """
        with self._lock:
            if self._state is not ShutdownState.RUNNING:
                logger.warning(f"{reason} received while {self._state.value}, ignoring")
                return False
            self._state = ShutdownState.DRAINING

        logger.info(f"{reason} received. Shutting down...")

        try:
            self._closing = self.server.close()
        except Exception as e:
            failed: "Future[None]" = Future()
            failed.set_exception(e)
            self._closing = failed

        self._draining.set()
        return True

    def wait(self) -> int:
        """
        Block until shutdown completes and return the process exit code.

        Waits for begin() to be called (by a signal or by the caller),
        then for the close future, bounded by self.timeout.

        Returns:
            EXIT_OK after a clean drain, EXIT_FAILURE otherwise.
        """
        try:
            self._draining.wait()

            try:
                self._closing.result(timeout=self.timeout)
            except FutureTimeoutError:
                logger.error(
                    f"{self.name} did not finish draining within "
                    f"{self.timeout:g}s, forcing exit"
                )
                return self._finish(ShutdownState.FAILED)
            except Exception as e:
                logger.error(f"Error closing {self.name}: {e}")
                logger.error(f"Error during shutdown: {e}")
                return self._finish(ShutdownState.FAILED)

            logger.info(f"{self.name} closed.")
            logger.info("All servers shut down successfully.")
            return self._finish(ShutdownState.STOPPED)

        finally:
            self.restore()

    def _finish(self, state: ShutdownState) -> int:
        with self._lock:
            self._state = state
        return EXIT_OK if state is ShutdownState.STOPPED else EXIT_FAILURE
