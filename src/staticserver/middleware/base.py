"""
=============================================================================
MIDDLEWARE BASE CLASSES
=============================================================================

Middleware wraps the router to handle cross-cutting concerns (access
logging, compression) without touching the handlers.

=============================================================================
CHAIN OF RESPONSIBILITY
=============================================================================

Each middleware receives the request and a `next` callable. It may act
before calling next, after it, or both:

    Request ──► Logging ──► Compression ──► Router ──┐
                                                      │
    Response ◄── Logging ◄── Compression ◄────────────┘
                 (log line)  (gzip body)

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Callable, List
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


# The next handler in the chain: another middleware or the router itself
NextHandler = Callable[[HTTPRequest], HTTPResponse]


class Middleware(ABC):
    """
    Abstract base class for middleware.

    Every middleware implements __call__(request, next) and returns the
    response, normally the one produced by next(request).
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        """
        Process the request.

        Args:
            request: The incoming HTTP request
            next: The next handler in the chain (call this to continue!)

        Returns:
            HTTP response (either from next() or short-circuited)
        """

    @property
    def name(self) -> str:
        return self.__class__.__name__


class MiddlewarePipeline:
    """
    Chains middleware around a final handler.

    The first middleware added is the outermost layer:

        pipeline.add(LoggingMiddleware())       # sees the final response
        pipeline.add(CompressionMiddleware())   # closest to the router

        handler = pipeline.wrap(router.handle)
        response = handler(request)
    """

    def __init__(self):
        self._middleware: List[Middleware] = []

    def add(self, middleware: Middleware) -> "MiddlewarePipeline":
        """Append middleware. Returns self for chaining."""
        self._middleware.append(middleware)
        logger.debug(f"Added middleware: {middleware.name}")
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        """
        Wrap a handler with all middleware in the pipeline.

        Wrapping happens in reverse so the first-added middleware ends up
        outermost:

            [MW1, MW2] + handler  →  MW1 → MW2 → handler
        """
        current = handler

        for middleware in reversed(self._middleware):
            current = self._create_wrapped_handler(middleware, current)

        return current

    def _create_wrapped_handler(
        self,
        middleware: Middleware,
        next_handler: NextHandler
    ) -> NextHandler:
        def wrapped(request: HTTPRequest) -> HTTPResponse:
            return middleware(request, next_handler)

        return wrapped

    def __len__(self) -> int:
        return len(self._middleware)

    def __iter__(self):
        return iter(self._middleware)
