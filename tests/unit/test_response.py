"""
Unit tests for HTTP response building.
"""

import json
from datetime import datetime, timezone, timedelta

import pytest

from staticserver.http.response import (
    HTTPResponse,
    ResponseBuilder,
    not_found,
    forbidden,
    internal_error,
    error_response,
    redirect,
    format_http_date,
)
from staticserver.http.status_codes import HTTPStatus


class TestHTTPResponse:
    """Tests for HTTPResponse class."""

    def test_status_line(self):
        """Test status line generation."""
        response = HTTPResponse(status=HTTPStatus.OK)
        assert response.status_line == "HTTP/1.1 200 OK"

        response = HTTPResponse(status=HTTPStatus.NOT_FOUND)
        assert response.status_line == "HTTP/1.1 404 Not Found"

    def test_to_bytes_includes_headers(self):
        """Test that to_bytes includes all headers."""
        response = HTTPResponse(
            status=HTTPStatus.OK,
            headers={"X-Custom": "value"},
            body=b"test",
        )

        result = response.to_bytes()

        assert result.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"X-Custom: value\r\n" in result
        assert b"Content-Length: 4\r\n" in result
        assert b"Date: " in result
        assert b"Server: staticserver/1.0\r\n" in result
        assert result.endswith(b"\r\n\r\ntest")

    def test_to_bytes_keeps_explicit_headers(self):
        response = HTTPResponse(headers={"Server": "custom", "Content-Length": "99"}, body=b"x")
        result = response.to_bytes(server_name="other/2.0")

        assert b"Server: custom\r\n" in result
        assert b"Content-Length: 99\r\n" in result
        assert b"other/2.0" not in result

    def test_head_omits_body_but_keeps_length(self):
        response = HTTPResponse(body=b"hello world")
        result = response.to_bytes(include_body=False)

        assert b"Content-Length: 11\r\n" in result
        assert result.endswith(b"\r\n\r\n")
        assert b"hello world" not in result

    @pytest.mark.parametrize("status", [HTTPStatus.NO_CONTENT, HTTPStatus.NOT_MODIFIED])
    def test_bodyless_statuses(self, status: HTTPStatus):
        response = HTTPResponse(status=status, body=b"ignored")
        result = response.to_bytes()

        assert result.endswith(b"\r\n\r\n")
        assert b"ignored" not in result
        assert b"Content-Length" not in result

    def test_set_header_replaces_any_case(self):
        response = HTTPResponse(headers={"content-type": "text/plain"})
        response.set_header("Content-Type", "text/html")

        assert response.headers == {"Content-Type": "text/html"}
        assert response.get_header("CONTENT-TYPE") == "text/html"

    def test_set_header_chaining(self):
        """Test method chaining for headers."""
        response = (HTTPResponse()
            .set_header("X-One", "1")
            .set_header("X-Two", "2"))

        assert response.headers["X-One"] == "1"
        assert response.headers["X-Two"] == "2"

    def test_get_header_default(self):
        assert HTTPResponse().get_header("Vary") == ""
        assert HTTPResponse().get_header("Vary", "none") == "none"


class TestResponseBuilder:
    """Tests for ResponseBuilder class."""

    def test_status(self):
        """Test setting status code."""
        response = ResponseBuilder().status(HTTPStatus.NOT_MODIFIED).build()

        assert response.status == HTTPStatus.NOT_MODIFIED

    def test_json_body(self):
        response = ResponseBuilder().json({"key": "value"}).build()

        assert response.headers["Content-Type"] == "application/json; charset=utf-8"
        assert json.loads(response.body) == {"key": "value"}

    def test_html_body(self):
        response = ResponseBuilder().html("<h1>Hi</h1>").build()

        assert response.headers["Content-Type"] == "text/html; charset=utf-8"
        assert response.body == b"<h1>Hi</h1>"

    def test_text_body(self):
        response = ResponseBuilder().text("héllo").build()

        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
        assert response.body == "héllo".encode("utf-8")

    def test_raw_body(self):
        response = ResponseBuilder().content_type("image/png").body(b"\x89PNG").build()

        assert response.headers["Content-Type"] == "image/png"
        assert response.body == b"\x89PNG"

    def test_redirect(self):
        response = ResponseBuilder().redirect("/new").build()

        assert response.status == HTTPStatus.FOUND
        assert response.headers["Location"] == "/new"

    def test_redirect_permanent(self):
        response = redirect("/docs/", permanent=True)

        assert response.status == HTTPStatus.MOVED_PERMANENTLY
        assert response.headers["Location"] == "/docs/"

    def test_cache_headers(self):
        response = ResponseBuilder().cache().build()
        assert response.headers["Cache-Control"] == "public, max-age=0"

        response = ResponseBuilder().cache(max_age=3600).build()
        assert response.headers["Cache-Control"] == "public, max-age=3600"

    def test_close_connection(self):
        response = ResponseBuilder().close_connection().build()

        assert response.headers["Connection"] == "close"

    def test_method_chaining(self):
        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .header("ETag", '"1-2"')
            .cache()
            .html("<p>ok</p>")
            .build())

        assert response.status == HTTPStatus.OK
        assert response.headers["ETag"] == '"1-2"'
        assert response.body == b"<p>ok</p>"


class TestConvenienceFunctions:
    """Tests for convenience response functions."""

    def test_not_found(self):
        response = not_found()
        assert response.status == HTTPStatus.NOT_FOUND
        assert json.loads(response.body) == {"error": "Not Found"}

    def test_not_found_message(self):
        response = not_found("Cannot GET /missing")
        assert json.loads(response.body) == {"error": "Cannot GET /missing"}

    def test_forbidden(self):
        assert forbidden().status == HTTPStatus.FORBIDDEN

    def test_internal_error(self):
        response = internal_error()
        assert response.status == HTTPStatus.INTERNAL_SERVER_ERROR
        assert json.loads(response.body) == {"error": "Internal Server Error"}

    def test_error_response_accepts_int(self):
        response = error_response(505)
        assert response.status == HTTPStatus.HTTP_VERSION_NOT_SUPPORTED
        assert json.loads(response.body) == {"error": "HTTP Version Not Supported"}


class TestHTTPStatus:
    """Tests for HTTPStatus enum."""

    def test_status_phrases(self):
        assert HTTPStatus.OK.phrase == "OK"
        assert HTTPStatus.NOT_FOUND.phrase == "Not Found"
        assert HTTPStatus.INTERNAL_SERVER_ERROR.phrase == "Internal Server Error"

    def test_str_is_code(self):
        assert str(HTTPStatus.OK) == "200"
        assert f"{HTTPStatus.NOT_FOUND}" == "404"

    def test_status_categories(self):
        assert HTTPStatus.OK.is_success
        assert HTTPStatus.FOUND.is_redirect
        assert HTTPStatus.NOT_FOUND.is_client_error
        assert HTTPStatus.INTERNAL_SERVER_ERROR.is_server_error

        assert HTTPStatus.NOT_FOUND.is_error
        assert HTTPStatus.INTERNAL_SERVER_ERROR.is_error
        assert not HTTPStatus.OK.is_error

    def test_allows_body(self):
        assert HTTPStatus.OK.allows_body
        assert not HTTPStatus.NO_CONTENT.allows_body
        assert not HTTPStatus.NOT_MODIFIED.allows_body


class TestFormatHTTPDate:
    """Tests for HTTP date formatting."""

    def test_format(self):
        dt = datetime(2026, 1, 15, 12, 30, 45, tzinfo=timezone.utc)

        assert format_http_date(dt) == "Thu, 15 Jan 2026 12:30:45 GMT"

    def test_converts_to_gmt(self):
        dt = datetime(2026, 1, 15, 14, 30, 45, tzinfo=timezone(timedelta(hours=2)))

        assert format_http_date(dt) == "Thu, 15 Jan 2026 12:30:45 GMT"
