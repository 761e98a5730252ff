"""
=============================================================================
ACCESS LOGGING MIDDLEWARE
=============================================================================

Logs one line per request with timing, status and size.

    text:  127.0.0.1 - - [18/Oct/2026:12:00:00 +0000] "GET /app.js" 200 1843 0.41ms
    dev:   GET /app.js 200 0.41 ms - 1843
    json:  {"request_id": "3f2a9c1e", "method": "GET", "path": "/app.js", ...}

Access lines go to the "staticserver.access" logger so they can be routed
or silenced independently of the server's own diagnostics:

    logging.getLogger("staticserver.access").setLevel(logging.WARNING)

=============================================================================
"""

import time
import json
import uuid
import logging
from typing import Optional
from dataclasses import dataclass, asdict

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger("staticserver.access")


@dataclass
class RequestLog:
    """Structured log entry for one request."""

    request_id: str
    method: str
    path: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        entry = asdict(self)
        entry["duration_ms"] = round(self.duration_ms, 2)
        return entry

    def to_dev(self) -> str:
        """Short development line: method, path, status, time, size."""
        return (
            f"{self.method} {self.path} {self.status_code} "
            f"{self.duration_ms:.2f} ms - {self.content_length}"
        )

    def to_text(self) -> str:
        """Apache-style access log line."""
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.path}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )


class LoggingMiddleware(Middleware):
    """
    Request logging middleware.

    Should be FIRST in the pipeline so that timing covers the whole
    request, including compression, and failed requests are logged too.

    Usage:
        pipeline.add(LoggingMiddleware())                  # text lines
        pipeline.add(LoggingMiddleware(log_format="json"))  # for aggregators
        pipeline.add(LoggingMiddleware(log_format="dev"))   # terse, for local runs
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[list[str]] = None,
    ):
        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = set(skip_paths or [])

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        request_id = str(uuid.uuid4())[:8]
        start_time = time.perf_counter()

        try:
            response = next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.path} "
                f"- {type(e).__name__}: {e} ({duration_ms:.2f}ms)"
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000

        if self.include_request_id:
            response.set_header("X-Request-ID", request_id)

        if request.path in self.skip_paths:
            return response

        log_entry = RequestLog(
            request_id=request_id,
            method=request.method,
            path=request.path,
            client_ip=request.client_address[0] or "-",
            user_agent=request.user_agent or "-",
            status_code=int(response.status),
            content_length=len(response.body),
            duration_ms=duration_ms,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(log_entry.to_dict()))
        elif self.log_format == "dev":
            logger.log(self.log_level, log_entry.to_dev())
        else:
            logger.log(self.log_level, log_entry.to_text())

        return response
