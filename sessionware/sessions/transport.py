"""
Sessionware Sessions - External key transports.

An external key resolver moves the store identifier outside of cookies:
- ExternalKey: Protocol (get/set against the request context)
- HeaderExternalKey: identifier read from a request header and echoed in
  a response header (APIs, mobile apps)
"""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from sessionware.context import RequestCtx


class ExternalKey(Protocol):
    """
    Identifier transport used instead of the session cookie.

    Either method may be a coroutine function.
    """

    def get(self, ctx: RequestCtx) -> str | None:
        """Extract the identifier from the request, None if absent."""
        ...

    def set(self, ctx: RequestCtx, identifier: str) -> None:
        """Hand the (possibly new) identifier back to the client."""
        ...


class HeaderExternalKey:
    """
    Header-based identifier transport.

    Example:
        >>> app.use(create_session(app, {
        ...     "store": redis_store,
        ...     "external_key": HeaderExternalKey("X-Session-ID"),
        ... }))
    """

    def __init__(self, header_name: str = "X-Session-Id"):
        self.header_name = header_name

    def get(self, ctx: RequestCtx) -> str | None:
        """Extract identifier from header."""
        return ctx.request.header(self.header_name)

    def set(self, ctx: RequestCtx, identifier: str) -> None:
        """Echo identifier as response header."""
        ctx.set_header(self.header_name, identifier)

    def __repr__(self) -> str:
        return f"HeaderExternalKey({self.header_name!r})"
