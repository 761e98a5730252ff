"""
=============================================================================
URL ROUTER
=============================================================================

Maps (method, path) to a handler function.

=============================================================================
ROUTE PATTERNS
=============================================================================

    ┌──────────────┬───────────────────┬─────────────────────────────────┐
    │ Pattern      │ Matches           │ path_params                     │
    ├──────────────┼───────────────────┼─────────────────────────────────┤
    │ /            │ /                 │ {}                              │
    │ /about       │ /about            │ {}                              │
    │ /*path       │ /css/site.css     │ {"path": "css/site.css"}        │
    └──────────────┴───────────────────┴─────────────────────────────────┘

Routes are tried in registration order; the first match wins. Register
exact routes before a catch-all wildcard.

=============================================================================
METHODS
=============================================================================

A GET route also answers HEAD (the server drops the body when sending).
A request that matches no route gets 404, whatever its method: for a static
site, "POST /index.html" is simply a resource that does not exist.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Callable, Optional, Dict, List
import re

from .request import HTTPRequest
from .response import HTTPResponse, not_found


Handler = Callable[[HTTPRequest], HTTPResponse]


@dataclass
class Route:
    """A registered route: pattern, method (None = any) and handler."""

    path: str
    method: Optional[str]
    handler: Handler
    _pattern: Optional[re.Pattern] = field(default=None, repr=False)

    def accepts(self, method: str) -> bool:
        if self.method is None:
            return True
        method = method.upper()
        return self.method == method or (self.method == "GET" and method == "HEAD")


@dataclass
class RouteMatch:
    route: Route
    params: Dict[str, str]


class Router:
    """
    URL router with exact and wildcard segments.

    Usage:
        router = Router()

        @router.get("/")
        def index(request):
            ...

        router.get("/*path")(static.handle)

        response = router.handle(request)
    """

    def __init__(self):
        self._routes: List[Route] = []

    def add_route(
        self,
        path: str,
        handler: Handler,
        method: Optional[str] = None,
    ) -> Route:
        route = Route(
            path=path,
            method=method.upper() if method else None,
            handler=handler,
            _pattern=self._compile_pattern(path),
        )
        self._routes.append(route)
        return route

    def _compile_pattern(self, path: str) -> re.Pattern:
        """
        Compile a route pattern to a regex.

            /            → ^/$
            /about       → ^/about$
            /*path       → ^/(?P<path>.*)$
        """
        regex_parts = ["^"]

        for segment in path.split("/"):
            if not segment:
                continue

            regex_parts.append("/")

            if segment.startswith("*"):
                param_name = segment[1:] or "wildcard"
                regex_parts.append(f"(?P<{param_name}>.*)")
                break  # Wildcard consumes everything
            regex_parts.append(re.escape(segment))

        if len(regex_parts) == 1:
            regex_parts.append("/")

        regex_parts.append("$")
        return re.compile("".join(regex_parts))

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        """Find the first route matching method and path."""
        for route in self._routes:
            if not route.accepts(method):
                continue

            match = route._pattern.match(path)
            if match:
                return RouteMatch(route=route, params=match.groupdict())

        return None

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Dispatch a request to its handler, or return 404."""
        match = self.match(request.method, request.path)
        if match is None:
            return not_found(f"Cannot {request.method} {request.path}")

        request.path_params = match.params
        return match.route.handler(request)

    # =========================================================================
    # DECORATOR-STYLE ROUTE REGISTRATION
    # =========================================================================

    def route(self, path: str, method: Optional[str] = None) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add_route(path, handler, method)
            return handler
        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, "GET")

    def routes(self) -> List[Route]:
        return list(self._routes)
