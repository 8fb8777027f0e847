"""
Factories for ASGI scopes, receive callables, requests and contexts.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sessionware.context import RequestCtx
from sessionware.request import Request


def _latin1(value) -> bytes:
    return value.encode("latin-1") if isinstance(value, str) else value


def make_test_scope(
    method: str = "GET",
    path: str = "/",
    query_string: str = "",
    headers: Optional[List[tuple]] = None,
    scheme: str = "http",
    client: Optional[tuple] = None,
    server: Optional[tuple] = None,
    http_version: str = "1.1",
    scope_type: str = "http",
) -> dict:
    """
    Minimal ASGI scope.

    ``headers`` is a list of ``(name, value)`` pairs given as str or bytes.
    """
    return {
        "type": scope_type,
        "asgi": {"version": "3.0"},
        "http_version": http_version,
        "method": method,
        "scheme": scheme,
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": query_string.encode("utf-8") if isinstance(query_string, str) else query_string,
        "headers": [(_latin1(n), _latin1(v)) for n, v in headers or []],
        "client": client or ("127.0.0.1", 12345),
        "server": server or ("127.0.0.1", 8000),
    }


def make_test_receive(body: bytes = b""):
    """ASGI receive that yields ``body`` once, then disconnects."""
    pending = [{"type": "http.request", "body": body, "more_body": False}]

    async def receive():
        if pending:
            return pending.pop()
        return {"type": "http.disconnect"}

    return receive


def make_test_request(
    method: str = "GET",
    path: str = "/",
    headers: Optional[List[tuple]] = None,
    body: bytes = b"",
    cookies: Optional[Dict[str, str]] = None,
) -> Request:
    headers = list(headers or [])
    if cookies:
        headers.append(("cookie", "; ".join(f"{k}={v}" for k, v in cookies.items())))
    return Request(make_test_scope(method=method, path=path, headers=headers), make_test_receive(body))


def make_test_ctx(app: Any = None, **request_kwargs) -> RequestCtx:
    """RequestCtx for ``app`` around ``make_test_request(**request_kwargs)``."""
    return RequestCtx(make_test_request(**request_kwargs), app=app)
