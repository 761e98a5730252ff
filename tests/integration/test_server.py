"""
Integration tests: the real application over real sockets.
"""

import dataclasses
import gzip
import http.client
import json
import logging
import socket
import threading
import time

import pytest

from staticserver import BindError, HTTPServer, ServerConfig, ServerNotRunningError
from staticserver.http import HTTPRequest, ResponseBuilder

from conftest import APP_JS, INDEX_HTML, RunningServer


def request(port: int, method: str = "GET", path: str = "/", **headers):
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5.0)
    try:
        conn.request(method, path, headers=headers)
        response = conn.getresponse()
        return response, response.read()
    finally:
        conn.close()


def raw_request(port: int, data: bytes) -> bytes:
    with socket.create_connection(("127.0.0.1", port), timeout=5.0) as sock:
        sock.sendall(data)
        chunks = []
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


class TestServing:
    """GET / and static files through the full middleware stack."""

    def test_index(self, running_server: RunningServer):
        response, body = request(running_server.port)

        assert response.status == 200
        assert response.getheader("Content-Type") == "text/html; charset=utf-8"
        assert body.decode() == INDEX_HTML

    def test_static_asset(self, running_server: RunningServer):
        response, body = request(running_server.port, path="/app.js")

        assert response.status == 200
        assert body.decode() == APP_JS

    def test_missing_file(self, running_server: RunningServer):
        response, _ = request(running_server.port, path="/missing.css")

        assert response.status == 404

    def test_encoded_traversal_is_not_found(self, running_server: RunningServer):
        raw = raw_request(
            running_server.port,
            b"GET /%2e%2e/secret.txt HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n",
        )

        assert raw.startswith(b"HTTP/1.1 404")
        assert b"top secret" not in raw

    def test_malformed_request(self, running_server: RunningServer):
        raw = raw_request(running_server.port, b"NONSENSE\r\n\r\n")

        assert raw.startswith(b"HTTP/1.1 400")

    def test_rejected_request_is_access_logged(self, running_server: RunningServer, caplog):
        with caplog.at_level(logging.INFO, logger="staticserver.access"):
            raw_request(running_server.port, b"NONSENSE\r\n\r\n")

        lines = [r.getMessage() for r in caplog.records if r.name == "staticserver.access"]
        assert any(" 400 " in line and "rejected before routing" in line for line in lines)

    def test_post_not_found(self, running_server: RunningServer):
        response, _ = request(running_server.port, method="POST", path="/")

        assert response.status == 404

    def test_head(self, running_server: RunningServer):
        response, body = request(running_server.port, method="HEAD", path="/app.js")

        assert response.status == 200
        assert body == b""
        assert response.getheader("Content-Length") == str(len(APP_JS))


class TestCompression:
    """Every response is compressed when the client allows it."""

    def test_gzip(self, running_server: RunningServer):
        response, body = request(running_server.port, path="/app.js", **{"Accept-Encoding": "gzip"})

        assert response.getheader("Content-Encoding") == "gzip"
        assert response.getheader("Vary") == "Accept-Encoding"
        assert gzip.decompress(body).decode() == APP_JS
        assert int(response.getheader("Content-Length")) == len(body)

    def test_not_found_is_compressed_too(self, running_server: RunningServer):
        response, body = request(running_server.port, path="/nope", **{"Accept-Encoding": "gzip"})

        assert response.status == 404
        assert response.getheader("Content-Encoding") == "gzip"
        assert "error" in json.loads(gzip.decompress(body))

    def test_head_headers_match_get(self, running_server: RunningServer):
        accept = {"Accept-Encoding": "gzip"}
        get, get_body = request(running_server.port, path="/app.js", **accept)
        head, head_body = request(running_server.port, method="HEAD", path="/app.js", **accept)

        assert head_body == b""
        assert head.getheader("Content-Encoding") == "gzip"
        assert head.getheader("Content-Length") == get.getheader("Content-Length")
        assert int(get.getheader("Content-Length")) == len(get_body)

    def test_identity_without_accept_encoding(self, running_server: RunningServer):
        response, body = request(running_server.port, **{"Accept-Encoding": "identity"})

        assert response.getheader("Content-Encoding") is None
        assert body.decode() == INDEX_HTML


class TestKeepAlive:
    """Connection reuse."""

    def test_two_requests_one_socket(self, running_server: RunningServer):
        conn = http.client.HTTPConnection("127.0.0.1", running_server.port, timeout=5.0)
        try:
            conn.request("GET", "/")
            first = conn.getresponse()
            first.read()
            sock = conn.sock

            conn.request("GET", "/app.js")
            second = conn.getresponse()
            second.read()

            assert first.status == second.status == 200
            assert first.getheader("Connection") == "keep-alive"
            assert conn.sock is sock
        finally:
            conn.close()


class TestLifecycle:
    """Binding, graceful close and the close() future."""

    def test_port_zero_binds_ephemeral_port(self, running_server: RunningServer):
        host, port = running_server.server.address

        assert host == "127.0.0.1"
        assert port > 0
        assert running_server.server.startup_report.port == port

    def test_startup_report_printed(self, config: ServerConfig, capsys):
        server = RunningServer(HTTPServer(config)).start()
        try:
            out = capsys.readouterr().out
            assert "🟢 Server started successfully!" in out
            assert f"🔗 LocalHost: http://localhost:{server.port}" in out
        finally:
            server.stop()

    def test_bind_conflict(self, config: ServerConfig):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen(1)
            port = blocker.getsockname()[1]

            server = HTTPServer(dataclasses.replace(config, port=port))
            with pytest.raises(BindError) as exc_info:
                server.start()

        assert f"127.0.0.1:{port}" in str(exc_info.value)
        assert not server.is_listening

    def test_close_resolves_and_refuses_new_connections(self, running_server: RunningServer):
        port = running_server.port
        request(port)

        assert running_server.server.close().result(timeout=5.0) is None
        assert not running_server.server.is_listening

        with pytest.raises(OSError):
            socket.create_connection(("127.0.0.1", port), timeout=1.0)

    def test_close_twice(self, running_server: RunningServer):
        running_server.server.close().result(timeout=5.0)

        second = running_server.server.close()

        assert isinstance(second.exception(timeout=1.0), ServerNotRunningError)

    def test_close_before_start(self, config: ServerConfig):
        future = HTTPServer(config).close()

        assert isinstance(future.exception(timeout=1.0), ServerNotRunningError)

    def test_serve_forever_before_start(self, config: ServerConfig):
        with pytest.raises(ServerNotRunningError):
            HTTPServer(config).serve_forever()

    def test_idle_keep_alive_does_not_delay_close(self, running_server: RunningServer):
        conn = http.client.HTTPConnection("127.0.0.1", running_server.port, timeout=5.0)
        try:
            conn.request("GET", "/")
            conn.getresponse().read()

            started = time.monotonic()
            running_server.server.close().result(timeout=5.0)

            # keep_alive_timeout is 2s; an interrupted idle socket is released at once
            assert time.monotonic() - started < 1.5
        finally:
            conn.close()

    def test_serve_forever_after_close_returns(self, config: ServerConfig):
        server = HTTPServer(config)
        server.start()
        server.close().result(timeout=5.0)

        # A signal handled between start() and the accept loop ends up here
        server.serve_forever()

        assert not server.is_listening

    def test_silent_client_does_not_delay_close(self, running_server: RunningServer):
        server = running_server.server
        with running_server.connect():
            deadline = time.monotonic() + 5.0
            while server.open_connections == 0 and time.monotonic() < deadline:
                time.sleep(0.02)
            assert server.open_connections == 1

            started = time.monotonic()
            # The first-request timeout is 5s; a request-less socket is idle
            server.close().result(timeout=3.0)

            assert time.monotonic() - started < 1.5
            assert server.open_connections == 0

    def test_in_flight_request_completes(self, config: ServerConfig):
        entered = threading.Event()
        server = HTTPServer(config)

        @server.get("/slow")
        def slow(request: HTTPRequest):
            entered.set()
            time.sleep(0.5)
            return ResponseBuilder().text("done").build()

        running = RunningServer(server).start()
        result = {}

        def client():
            response, body = request(running.port, path="/slow")
            result["status"] = response.status
            result["body"] = body
            result["connection"] = response.getheader("Connection")

        thread = threading.Thread(target=client)
        thread.start()
        try:
            assert entered.wait(timeout=5.0)

            closing = server.close()
            assert server.is_draining
            assert not closing.done()

            assert closing.result(timeout=5.0) is None
            thread.join(timeout=5.0)
        finally:
            running.stop()

        assert result == {"status": 200, "body": b"done", "connection": "close"}
