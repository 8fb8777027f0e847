"""
Middleware stack plus the two general-purpose middlewares.

A middleware is ``async (request, ctx, next_handler) -> Response``.
"""

from __future__ import annotations

import logging
import time
import traceback
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from .faults import Fault, FaultDomain
from .request import Request
from .response import Response

if TYPE_CHECKING:
    from .context import RequestCtx

Handler = Callable[[Request, "RequestCtx"], Awaitable[Response]]
Middleware = Callable[[Request, "RequestCtx", Handler], Awaitable[Response]]


@dataclass
class MiddlewareDescriptor:
    middleware: Middleware
    priority: int
    name: str


class MiddlewareStack:
    """
    Ordered middleware registry.

    Lower priority values wrap outermost. Equal priorities keep the order in
    which they were added.
    """

    def __init__(self):
        self.middlewares: List[MiddlewareDescriptor] = []

    def add(self, middleware: Middleware, priority: int = 50, name: Optional[str] = None) -> None:
        name = name or getattr(middleware, "__name__", type(middleware).__name__)
        self.middlewares.append(MiddlewareDescriptor(middleware, priority, name))

    def __contains__(self, middleware: object) -> bool:
        return any(d.middleware is middleware for d in self.middlewares)

    def __len__(self) -> int:
        return len(self.middlewares)

    def build_handler(self, final_handler: Handler) -> Handler:
        """Compose the stack around ``final_handler``."""
        handler = final_handler
        for desc in reversed(sorted(self.middlewares, key=lambda d: d.priority)):
            handler = _bind(desc.middleware, handler)
        return handler


def _bind(middleware: Middleware, next_handler: Handler) -> Handler:
    async def call(request: Request, ctx: RequestCtx) -> Response:
        return await middleware(request, ctx, next_handler)
    return call


class ExceptionMiddleware:
    """Turns exceptions raised further in into JSON error responses."""

    DOMAIN_STATUS = {
        FaultDomain.SECURITY: 403,
        FaultDomain.IO: 502,
    }

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.logger = logging.getLogger("sessionware.exceptions")

    def status_for(self, fault: Fault) -> int:
        code = fault.code or ""
        if code == "SESSION_STORE_UNAVAILABLE":
            return 503
        if "NOT_FOUND" in code or "MISSING" in code:
            return 404
        if "BAD_REQUEST" in code or code.startswith("INVALID"):
            return 400
        return self.DOMAIN_STATUS.get(fault.domain, 500)

    async def __call__(self, request: Request, ctx: RequestCtx, next: Handler) -> Response:
        try:
            return await next(request, ctx)
        except Fault as fault:
            status = self.status_for(fault)
            log = self.logger.error if status >= 500 else self.logger.warning
            log("Fault %s: %s", fault.code, fault.message)

            shown = fault.message if (fault.public or self.debug) else "Internal server error"
            return Response.json(
                {"error": {"code": fault.code, "message": shown, "domain": fault.domain.value}},
                status=status,
            )
        except ValueError as exc:
            self.logger.warning("ValueError: %s", exc)
            return Response.json({"error": str(exc)}, status=400)
        except Exception as exc:
            self.logger.error("Unhandled exception: %s", exc, exc_info=True)
            payload = {"error": "Internal server error"}
            if self.debug:
                payload["detail"] = str(exc)
                payload["traceback"] = traceback.format_exc()
            return Response.json(payload, status=500)


class LoggingMiddleware:
    """One INFO line per request with status and duration."""

    def __init__(self):
        self.logger = logging.getLogger("sessionware.requests")

    async def __call__(self, request: Request, ctx: RequestCtx, next: Handler) -> Response:
        if not self.logger.isEnabledFor(logging.INFO):
            return await next(request, ctx)

        started = time.monotonic()
        response = await next(request, ctx)
        self.logger.info(
            "%s %s - %d (%.1fms)",
            request.method, request.path, response.status, (time.monotonic() - started) * 1000.0,
        )
        return response
