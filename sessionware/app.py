"""
Application - ASGI application with middleware, routes and events.

Bridges the ASGI protocol to Request/RequestCtx/Response:
- Signing ``keys`` for signed cookies (first key signs, all verify)
- MiddlewareStack with an outermost ExceptionMiddleware
- Exact-match routing table
- ``context_extensions`` where middleware installs per-request features
- App-level event hub (``on_event`` / ``emit_event``)
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .context import RequestCtx
from .cookies import CookieSigner
from .middleware import ExceptionMiddleware, Handler, Middleware, MiddlewareStack
from .request import Request
from .response import NotFound, Response


EventHandler = Callable[[Dict[str, Any]], Any]


class Application:
    """
    ASGI application.

    Example:
        >>> app = Application(keys=["s3cret"])
        >>> app.use(create_session(app, {"max_age": 86400000}))
        >>>
        >>> @app.get("/")
        ... async def index(request, ctx):
        ...     ctx.session["views"] = ctx.session.get("views", 0) + 1
        ...     return Response.json({"views": ctx.session["views"]})
        >>>
        >>> app.run(port=8000)
    """

    def __init__(
        self,
        keys: Optional[Sequence[Union[str, bytes]]] = None,
        *,
        debug: bool = False,
    ):
        self.debug = debug
        self.logger = logging.getLogger("sessionware.asgi")

        self.middleware_stack = MiddlewareStack()
        self.middleware_stack.add(ExceptionMiddleware(debug=debug), priority=0, name="exceptions")

        self.context_extensions: Dict[str, Any] = {}

        self._keys: List[Union[str, bytes]] = []
        self._signer: Optional[CookieSigner] = None
        self.keys = keys or []

        self._routes: Dict[Tuple[str, str], Handler] = {}
        self._event_handlers: List[EventHandler] = []
        self._startup_hooks: List[Callable[[], Any]] = []
        self._shutdown_hooks: List[Callable[[], Any]] = []
        self._cached_middleware_chain: Optional[Handler] = None

    # ========================================================================
    # Configuration
    # ========================================================================

    @property
    def keys(self) -> List[Union[str, bytes]]:
        return self._keys

    @keys.setter
    def keys(self, keys: Sequence[Union[str, bytes]]) -> None:
        if isinstance(keys, (str, bytes)):
            keys = [keys]
        self._keys = list(keys)
        self._signer = CookieSigner(self._keys) if self._keys else None

    @property
    def signer(self) -> Optional[CookieSigner]:
        return self._signer

    def use(self, middleware: Middleware, priority: int = 50, name: Optional[str] = None) -> "Application":
        """Add middleware. Lower priority runs first."""
        self.middleware_stack.add(middleware, priority=priority, name=name)
        self._cached_middleware_chain = None
        return self

    def route(self, path: str, methods: Sequence[str] = ("GET",)):
        """Register a handler ``handler(request, ctx) -> Response``."""
        def decorator(handler: Handler) -> Handler:
            for method in methods:
                self._routes[(method.upper(), path)] = handler
            return handler
        return decorator

    def get(self, path: str):
        return self.route(path, methods=("GET",))

    def post(self, path: str):
        return self.route(path, methods=("POST",))

    def on_startup(self, hook: Callable[[], Any]) -> Callable[[], Any]:
        self._startup_hooks.append(hook)
        return hook

    def on_shutdown(self, hook: Callable[[], Any]) -> Callable[[], Any]:
        self._shutdown_hooks.append(hook)
        return hook

    # ========================================================================
    # Events
    # ========================================================================

    def on_event(self, handler: EventHandler) -> EventHandler:
        """Subscribe ``handler`` to app events (usable as a decorator)."""
        self._event_handlers.append(handler)
        return handler

    def emit_event(self, event_data: Dict[str, Any]) -> None:
        """Deliver an event to every handler. A failing handler is logged and skipped."""
        for handler in self._event_handlers:
            try:
                handler(event_data)
            except Exception:
                self.logger.exception("Event handler %r failed", handler)

    # ========================================================================
    # ASGI
    # ========================================================================

    async def _dispatch(self, request: Request, ctx: RequestCtx) -> Response:
        handler = self._routes.get((request.method, request.path))
        if handler is None:
            return NotFound(f"No route for {request.method} {request.path}")
        return await handler(request, ctx)

    def _build_cached_chain(self) -> Handler:
        self._cached_middleware_chain = self.middleware_stack.build_handler(self._dispatch)
        return self._cached_middleware_chain

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        kind = scope["type"]
        if kind == "http":
            await self.handle_http(scope, receive, send)
        elif kind == "lifespan":
            await self.handle_lifespan(receive, send)
        else:
            self.logger.warning("Ignoring ASGI scope type %r", kind)

    async def handle_http(self, scope: dict, receive: Callable, send: Callable):
        chain = self._cached_middleware_chain or self._build_cached_chain()

        request = Request(scope, receive)
        ctx = RequestCtx(request, app=self)

        try:
            response = await chain(request, ctx)
        except Exception:
            self.logger.exception("Request pipeline failed for %s %s", request.method, request.path)
            response = Response.json({"error": "Internal server error"}, status=500)

        # Error responses carry session cookies too
        ctx.flush(response)
        await response.send_asgi(send)

    async def handle_lifespan(self, receive: Callable, send: Callable):
        phases = {
            "lifespan.startup": (self._startup_hooks, "lifespan.startup"),
            "lifespan.shutdown": (self._shutdown_hooks, "lifespan.shutdown"),
        }
        while True:
            message = await receive()
            hooks, prefix = phases.get(message["type"], (None, None))
            if hooks is None:
                continue
            try:
                await self._run_hooks(hooks)
            except Exception as exc:
                self.logger.exception("%s hooks failed", prefix)
                await send({"type": f"{prefix}.failed", "message": str(exc)})
                if prefix == "lifespan.startup":
                    raise
            else:
                await send({"type": f"{prefix}.complete"})
            if prefix == "lifespan.shutdown":
                return

    @staticmethod
    async def _run_hooks(hooks: List[Callable[[], Any]]) -> None:
        for hook in hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    def run(self, host: str = "127.0.0.1", port: int = 8000, **kwargs) -> None:
        """Serve the application with uvicorn."""
        import uvicorn

        uvicorn.run(self, host=host, port=port, **kwargs)
