from .base import Middleware, MiddlewarePipeline, NextHandler
from .logging import LoggingMiddleware
from .compression import CompressionMiddleware, negotiate_encoding

__all__ = [
    # Base classes
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",

    # Built-in middleware
    "LoggingMiddleware",
    "CompressionMiddleware",
    "negotiate_encoding",
]
