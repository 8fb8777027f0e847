"""
Cookies - Signed cookie jar for one request.

Provides:
- CookieSigner: HMAC signing with key rotation
- Cookies: read request cookies (optionally verified) and queue outgoing
  Set-Cookie values until they are flushed onto a Response
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from base64 import urlsafe_b64decode, urlsafe_b64encode
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple, Union, TYPE_CHECKING

from .response import build_set_cookie

if TYPE_CHECKING:
    from .request import Request
    from .response import Response


logger = logging.getLogger("sessionware.cookies")

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _b64(raw: bytes) -> str:
    return urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _unb64(text: str) -> bytes:
    return urlsafe_b64decode(text + "=" * (-len(text) % 4))


class CookieSigner:
    """
    HMAC signer over a keyring.

    The first key signs; every key verifies, so prepending a new key rotates
    secrets without logging anyone out. Signed values look like
    ``<signature>.<value>`` with both halves unpadded URL-safe base64.
    """

    def __init__(
        self,
        keys: Union[str, bytes, Sequence[Union[str, bytes]]],
        algorithm: str = "sha256",
    ):
        if isinstance(keys, (str, bytes)):
            keys = [keys]
        self.keys: List[bytes] = [k.encode("utf-8") if isinstance(k, str) else k for k in keys]
        if not self.keys:
            raise ValueError("CookieSigner requires at least one key")
        self.algorithm = algorithm
        self._digestmod = getattr(hashlib, algorithm)

    def _mac(self, key: bytes, payload: bytes) -> bytes:
        return hmac.new(key, payload, self._digestmod).digest()

    def sign(self, value: str) -> str:
        payload = value.encode("utf-8")
        return f"{_b64(self._mac(self.keys[0], payload))}.{_b64(payload)}"

    def unsign(self, signed_value: str) -> Optional[str]:
        """The original value, or ``None`` if no key produced the signature."""
        sig_part, sep, value_part = signed_value.partition(".")
        if not sep:
            return None
        try:
            signature = _unb64(sig_part)
            payload = _unb64(value_part)
        except (ValueError, TypeError):
            return None

        if not any(hmac.compare_digest(signature, self._mac(k, payload)) for k in self.keys):
            return None
        try:
            return payload.decode("utf-8")
        except UnicodeDecodeError:
            return None


class Cookies:
    """
    Per-request cookie jar.

    Reads come from the request's Cookie header. Writes are queued and
    only reach the client once ``flush`` copies them onto a Response.

    Example:
        >>> jar = Cookies(request, signer)
        >>> jar.set("theme", "dark", max_age=3600, signed=True)
        >>> jar.get("theme", signed=True)  # reads the request, not the queue
        >>> jar.flush(response)
    """

    def __init__(self, request: Request, signer: Optional[CookieSigner] = None):
        self.request = request
        self.signer = signer
        # (name, header value, overwrite)
        self._pending: List[Tuple[str, str, bool]] = []

    def get(self, name: str, *, signed: bool = False) -> Optional[str]:
        """
        Read a request cookie.

        Args:
            name: Cookie name
            signed: Verify the signature; tampered or unsigned values
                read as missing
        """
        value = self.request.cookie(name)
        if value is None or not signed:
            return value

        if self.signer is None:
            raise ValueError("signed cookies require signing keys")

        unsigned = self.signer.unsign(value)
        if unsigned is None:
            logger.debug(f"Rejected cookie '{name}' with invalid signature")
        return unsigned

    def set(
        self,
        name: str,
        value: Optional[str],
        *,
        max_age: Optional[int] = None,
        expires: Optional[datetime] = None,
        path: Optional[str] = "/",
        domain: Optional[str] = None,
        secure: bool = False,
        httponly: bool = True,
        samesite: Optional[str] = None,
        signed: bool = False,
        overwrite: bool = False,
    ) -> None:
        """
        Queue a cookie.

        Args:
            name: Cookie name
            value: Cookie value; None deletes the cookie
            max_age: Max age in seconds
            expires: Expiration datetime
            path: Cookie path
            domain: Cookie domain
            secure: Secure flag
            httponly: HttpOnly flag
            samesite: SameSite policy (Strict, Lax, None)
            signed: Sign the value with the first key
            overwrite: Drop earlier queued cookies with the same name
        """
        if value is None:
            value = ""
            max_age = 0
            expires = _EPOCH
        elif signed:
            if self.signer is None:
                raise ValueError("signed cookies require signing keys")
            value = self.signer.sign(value)

        header = build_set_cookie(
            name,
            value,
            max_age=max_age,
            expires=expires,
            path=path,
            domain=domain,
            secure=secure,
            httponly=httponly,
            samesite=samesite,
        )

        if overwrite:
            self._pending = [p for p in self._pending if p[0] != name]
        self._pending.append((name, header, overwrite))

    @property
    def pending(self) -> List[str]:
        """Queued Set-Cookie values, in order."""
        return [header for _, header, _ in self._pending]

    def flush(self, response: Response) -> None:
        """Copy queued cookies onto ``response`` and empty the queue."""
        for name, header, overwrite in self._pending:
            if overwrite:
                kept = [
                    h for h in response.get_cookie_headers()
                    if not h.startswith(f"{name}=")
                ]
                response.unset_header("set-cookie")
                for h in kept:
                    response.add_header("set-cookie", h)
            response.add_header("set-cookie", header)
        self._pending = []
