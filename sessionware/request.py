"""
Incoming HTTP request built from an ASGI scope and receive callable.

Headers and cookies are parsed once on first access. The body is read once
and cached, so handlers and middleware may both call ``body()``.
"""

from __future__ import annotations

import json
from http.cookies import CookieError, SimpleCookie
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .faults import Fault, FaultDomain, Severity


class RequestFault(Fault):
    domain = FaultDomain.IO
    severity = Severity.ERROR
    public = True


class BadRequest(RequestFault):
    """Client sent something we cannot use (400)."""
    code = "BAD_REQUEST"
    message = "Bad request"

    def __init__(self, message: str = None, **metadata):
        super().__init__(message=message or self.message, metadata=metadata)


class Request:
    """
    ASGI HTTP request.

    Header names are lower-cased. Repeated headers are joined with ", ",
    except ``cookie`` which is joined with "; " so it stays parseable.
    """

    def __init__(
        self,
        scope: Mapping[str, Any],
        receive: Optional[Callable[..., Awaitable[dict]]] = None,
        *,
        max_body_size: int = 10 * 1024 * 1024,
    ):
        self.scope = scope
        self._receive = receive
        self.max_body_size = max_body_size

        self._body: Optional[bytes] = None
        self._headers: Optional[Dict[str, str]] = None
        self._cookies: Optional[Dict[str, str]] = None

    @property
    def method(self) -> str:
        return self.scope.get("method", "GET")

    @property
    def path(self) -> str:
        return self.scope.get("path", "/")

    # ------------------------------------------------------------------------
    # Headers and cookies
    # ------------------------------------------------------------------------

    @property
    def headers(self) -> Dict[str, str]:
        if self._headers is None:
            parsed: Dict[str, str] = {}
            for raw_name, raw_value in self.scope.get("headers", []):
                name = raw_name.decode("latin1").lower()
                value = raw_value.decode("latin1")
                previous = parsed.get(name)
                if previous is None:
                    parsed[name] = value
                else:
                    joiner = "; " if name == "cookie" else ", "
                    parsed[name] = previous + joiner + value
            self._headers = parsed
        return self._headers

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    def has_header(self, name: str) -> bool:
        return name.lower() in self.headers

    @property
    def cookies(self) -> Mapping[str, str]:
        """Cookies from the Cookie header. A malformed header yields none."""
        if self._cookies is None:
            jar: Dict[str, str] = {}
            raw = self.header("cookie")
            if raw:
                parsed = SimpleCookie()
                try:
                    parsed.load(raw)
                except CookieError:
                    parsed = SimpleCookie()
                jar = {name: morsel.value for name, morsel in parsed.items()}
            self._cookies = jar
        return self._cookies

    def cookie(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.cookies.get(name, default)

    # ------------------------------------------------------------------------
    # Body
    # ------------------------------------------------------------------------

    async def body(self) -> bytes:
        """
        Read the whole body.

        Raises:
            BadRequest: the body is larger than ``max_body_size``.
        """
        if self._body is None:
            self._body = await self._read_body()
        return self._body

    async def _read_body(self) -> bytes:
        if self._receive is None:
            return b""

        chunks = []
        size = 0
        more = True
        while more:
            message = await self._receive()
            if message["type"] != "http.request":
                break
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.max_body_size:
                raise BadRequest("Request body exceeds maximum size", max_allowed=self.max_body_size)
            chunks.append(chunk)
            more = message.get("more_body", False)
        return b"".join(chunks)

    async def json(self) -> Any:
        """Body parsed as JSON, or ``None`` for an empty body."""
        raw = await self.body()
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise BadRequest(f"Invalid JSON: {exc}")
