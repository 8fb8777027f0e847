"""
Response - Outgoing HTTP response.

Holds status, headers and body until the ASGI layer sends it. Headers are
kept lower-cased and a header can carry several values, which is how one
response sets several cookies.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from email.utils import formatdate
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from .faults import Fault, FaultDomain, Severity


HeaderValue = Union[str, List[str]]

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class InvalidHeaderError(Fault):
    """Header name or value would split the response (CR/LF injection)."""
    code = "INVALID_HEADER"
    domain = FaultDomain.SECURITY
    severity = Severity.WARN


def _to_json(obj: Any) -> str:
    def fallback(o):
        if isinstance(o, (set, frozenset, tuple)):
            return list(o)
        if isinstance(o, datetime):
            return o.isoformat()
        return str(o)

    return json.dumps(obj, default=fallback)


def build_set_cookie(
    name: str,
    value: str,
    *,
    max_age: Optional[int] = None,
    expires: Optional[datetime] = None,
    path: Optional[str] = "/",
    domain: Optional[str] = None,
    secure: bool = False,
    httponly: bool = True,
    samesite: Optional[str] = None,
) -> str:
    """
    Render one Set-Cookie header value.

    Attributes are emitted in a fixed order: Max-Age, Expires, Path,
    Domain, Secure, HttpOnly, SameSite.
    """
    parts = [f"{name}={value}"]
    if max_age is not None:
        parts.append(f"Max-Age={max_age}")
    if expires is not None:
        parts.append(f"Expires={formatdate(expires.timestamp(), usegmt=True)}")
    if path:
        parts.append(f"Path={path}")
    if domain:
        parts.append(f"Domain={domain}")
    if secure:
        parts.append("Secure")
    if httponly:
        parts.append("HttpOnly")
    if samesite:
        parts.append(f"SameSite={samesite}")
    return "; ".join(parts)


class Response:
    """
    HTTP response.

    Example:
        >>> response = Response.json({"ok": True}, status=201)
        >>> response.set_cookie("theme", "dark", max_age=3600)
        >>> await response.send_asgi(send)
    """

    def __init__(
        self,
        content: Union[bytes, str, Mapping, list] = b"",
        status: int = 200,
        headers: Optional[Mapping[str, HeaderValue]] = None,
        media_type: Optional[str] = None,
    ):
        self.status = status
        self._content = content
        self._headers: Dict[str, HeaderValue] = {}

        for name, value in (headers or {}).items():
            self._headers[name.lower()] = list(value) if isinstance(value, (list, tuple)) else value

        if media_type is None and "content-type" not in self._headers:
            if isinstance(content, (dict, list)):
                media_type = "application/json; charset=utf-8"
            elif isinstance(content, str):
                media_type = "text/plain; charset=utf-8"
            else:
                media_type = "application/octet-stream"
        if media_type is not None:
            self._headers["content-type"] = media_type

    @classmethod
    def json(cls, obj: Any, status: int = 200, *, headers: Optional[Mapping[str, str]] = None) -> Response:
        return cls(_to_json(obj), status=status, headers=headers, media_type="application/json; charset=utf-8")

    @classmethod
    def text(cls, content: str, status: int = 200, *, headers: Optional[Mapping[str, str]] = None) -> Response:
        return cls(content, status=status, headers=headers, media_type="text/plain; charset=utf-8")

    @property
    def headers(self) -> Dict[str, HeaderValue]:
        return self._headers

    @property
    def body(self) -> bytes:
        content = self._content
        if isinstance(content, bytes):
            return content
        if isinstance(content, str):
            return content.encode("utf-8")
        return _to_json(content).encode("utf-8")

    # ========================================================================
    # Headers
    # ========================================================================

    def set_header(self, name: str, value: str) -> None:
        """Set ``name``, replacing any previous values."""
        self._check_header(name, value)
        self._headers[name.lower()] = value

    def add_header(self, name: str, value: str) -> None:
        """Append a value to ``name``, keeping previous ones."""
        self._check_header(name, value)
        key = name.lower()
        current = self._headers.get(key)
        if current is None:
            self._headers[key] = value
        elif isinstance(current, list):
            current.append(value)
        else:
            self._headers[key] = [current, value]

    def unset_header(self, name: str) -> None:
        self._headers.pop(name.lower(), None)

    @staticmethod
    def _check_header(name: str, value: str) -> None:
        if any(ord(c) < 32 for c in name) or "\r" in value or "\n" in value:
            raise InvalidHeaderError(
                message=f"Invalid header {name!r}",
                metadata={"header_name": name},
            )

    # ========================================================================
    # Cookies
    # ========================================================================

    def set_cookie(
        self,
        name: str,
        value: str,
        *,
        max_age: Optional[int] = None,
        expires: Optional[datetime] = None,
        path: str = "/",
        domain: Optional[str] = None,
        secure: bool = True,
        httponly: bool = True,
        samesite: Optional[str] = "Lax",
    ) -> None:
        """
        Add a Set-Cookie header.

        Handler-set cookies default to Secure and SameSite=Lax; ``max_age``
        is in seconds.
        """
        self.add_header("set-cookie", build_set_cookie(
            name,
            value,
            max_age=max_age,
            expires=expires,
            path=path,
            domain=domain,
            secure=secure,
            httponly=httponly,
            samesite=samesite,
        ))

    def delete_cookie(self, name: str, path: str = "/", domain: Optional[str] = None) -> None:
        """Expire ``name`` on the client."""
        self.add_header("set-cookie", build_set_cookie(
            name, "", max_age=0, expires=_EPOCH, path=path, domain=domain, httponly=False,
        ))

    def get_cookie_headers(self) -> List[str]:
        """Set-Cookie values added so far, in order."""
        value = self._headers.get("set-cookie")
        if value is None:
            return []
        return list(value) if isinstance(value, list) else [value]

    # ========================================================================
    # ASGI
    # ========================================================================

    async def send_asgi(self, send: Callable[[dict], Awaitable[None]]) -> None:
        body = self.body
        self._headers.setdefault("content-length", str(len(body)))

        raw_headers = []
        for name, value in self._headers.items():
            for item in (value if isinstance(value, list) else [value]):
                raw_headers.append((name.encode("latin-1"), item.encode("latin-1")))

        await send({"type": "http.response.start", "status": self.status, "headers": raw_headers})
        await send({"type": "http.response.body", "body": body, "more_body": False})


def NotFound(message: str = "Not Found") -> Response:
    """404 JSON response."""
    return Response.json({"error": "NOT_FOUND", "message": message}, status=404)
