"""
Unit tests for the shutdown coordinator.

A fake server stands in for HTTPServer: its close() hands back a Future
that the test resolves (or never resolves) by hand.
"""

import logging
import signal
import threading
from concurrent.futures import Future

import pytest

from staticserver.core import ServerNotRunningError
from staticserver.shutdown import (
    EXIT_FAILURE,
    EXIT_OK,
    ShutdownCoordinator,
    ShutdownState,
)


class FakeServer:
    def __init__(self, future: Future = None, error: Exception = None):
        self.future = future if future is not None else Future()
        self.error = error
        self.close_calls = 0

    def close(self) -> Future:
        self.close_calls += 1
        if self.error is not None:
            raise self.error
        return self.future


def resolved(result=None, exception: Exception = None) -> Future:
    future = Future()
    if exception is not None:
        future.set_exception(exception)
    else:
        future.set_result(result)
    return future


class TestShutdownCoordinator:
    """Tests for ShutdownCoordinator."""

    def test_starts_running(self):
        assert ShutdownCoordinator(FakeServer()).state is ShutdownState.RUNNING

    def test_clean_shutdown(self, caplog):
        server = FakeServer(resolved())
        coordinator = ShutdownCoordinator(server, timeout=1.0)

        with caplog.at_level(logging.INFO, logger="staticserver.shutdown"):
            assert coordinator.begin("SIGTERM") is True
            assert coordinator.state is ShutdownState.DRAINING
            exit_code = coordinator.wait()

        assert exit_code == EXIT_OK == 0
        assert coordinator.state is ShutdownState.STOPPED
        assert server.close_calls == 1

        messages = [r.getMessage() for r in caplog.records]
        assert "SIGTERM received. Shutting down..." in messages
        assert "HTTP server closed." in messages
        assert "All servers shut down successfully." in messages

    def test_close_error_fails(self, caplog):
        server = FakeServer(resolved(exception=OSError("bad file descriptor")))
        coordinator = ShutdownCoordinator(server, timeout=1.0)

        with caplog.at_level(logging.ERROR, logger="staticserver.shutdown"):
            coordinator.begin("SIGINT")
            exit_code = coordinator.wait()

        assert exit_code == EXIT_FAILURE == 1
        assert coordinator.state is ShutdownState.FAILED
        assert "Error during shutdown: bad file descriptor" in caplog.text

    def test_not_running_fails(self):
        server = FakeServer(resolved(exception=ServerNotRunningError()))
        coordinator = ShutdownCoordinator(server, timeout=1.0)

        coordinator.begin("SIGTERM")

        assert coordinator.wait() == EXIT_FAILURE

    def test_close_raising_directly_fails(self):
        coordinator = ShutdownCoordinator(FakeServer(error=RuntimeError("boom")), timeout=1.0)

        coordinator.begin("SIGTERM")

        assert coordinator.wait() == EXIT_FAILURE
        assert coordinator.state is ShutdownState.FAILED

    def test_drain_timeout_fails(self, caplog):
        coordinator = ShutdownCoordinator(FakeServer(Future()), timeout=0.1)

        with caplog.at_level(logging.ERROR, logger="staticserver.shutdown"):
            coordinator.begin("SIGTERM")
            exit_code = coordinator.wait()

        assert exit_code == EXIT_FAILURE
        assert coordinator.state is ShutdownState.FAILED
        assert "forcing exit" in caplog.text

    def test_second_signal_ignored(self, caplog):
        server = FakeServer()
        coordinator = ShutdownCoordinator(server, timeout=1.0)

        assert coordinator.begin("SIGTERM") is True
        with caplog.at_level(logging.WARNING, logger="staticserver.shutdown"):
            assert coordinator.begin("SIGINT") is False

        assert server.close_calls == 1
        assert coordinator.state is ShutdownState.DRAINING
        assert "SIGINT received while draining, ignoring" in caplog.text

        server.future.set_result(None)
        assert coordinator.wait() == EXIT_OK

    def test_signal_after_stop_does_not_change_outcome(self):
        coordinator = ShutdownCoordinator(FakeServer(resolved()), timeout=1.0)
        coordinator.begin("SIGTERM")
        assert coordinator.wait() == EXIT_OK

        assert coordinator.begin("SIGTERM") is False
        assert coordinator.state is ShutdownState.STOPPED

    def test_wait_blocks_until_begin(self):
        coordinator = ShutdownCoordinator(FakeServer(resolved()), timeout=1.0)
        result = []

        waiter = threading.Thread(target=lambda: result.append(coordinator.wait()))
        waiter.start()
        waiter.join(timeout=0.2)
        assert waiter.is_alive()

        coordinator.begin("SIGTERM")
        waiter.join(timeout=2.0)
        assert result == [EXIT_OK]

    def test_handle_signal_uses_signal_name(self, caplog):
        coordinator = ShutdownCoordinator(FakeServer(resolved()), timeout=1.0)

        with caplog.at_level(logging.INFO, logger="staticserver.shutdown"):
            coordinator.handle_signal(signal.SIGINT, None)

        assert "SIGINT received. Shutting down..." in caplog.text
        assert coordinator.state is ShutdownState.DRAINING


class TestSignalInstallation:
    """install()/restore() must leave the process as they found it."""

    def test_install_and_restore(self):
        before = signal.getsignal(signal.SIGINT)
        coordinator = ShutdownCoordinator(FakeServer(resolved()))

        coordinator.install([signal.SIGINT])
        try:
            assert signal.getsignal(signal.SIGINT) == coordinator.handle_signal
        finally:
            coordinator.restore()

        assert signal.getsignal(signal.SIGINT) == before

    def test_wait_restores_handlers(self):
        before = signal.getsignal(signal.SIGINT)
        coordinator = ShutdownCoordinator(FakeServer(resolved()), timeout=1.0)
        coordinator.install([signal.SIGINT])

        coordinator.begin("SIGINT")
        coordinator.wait()

        assert signal.getsignal(signal.SIGINT) == before

    def test_real_signal_starts_shutdown(self):
        coordinator = ShutdownCoordinator(FakeServer(resolved()), timeout=1.0)
        coordinator.install([signal.SIGINT])
        try:
            signal.raise_signal(signal.SIGINT)
        finally:
            exit_code = coordinator.wait()

        assert exit_code == EXIT_OK
        assert coordinator.state is ShutdownState.STOPPED
