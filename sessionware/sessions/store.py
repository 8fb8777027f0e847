"""
Sessionware Sessions - Persistence backends.

Defines the SessionBackend protocol and its two implementations:
- CookieBackend: the encoded session is the cookie value itself
- ExternalStoreBackend: a caller-supplied store holds the session, the
  cookie (or an external-key resolver) carries only its identifier

Backends are selected once by ``format_options``; the engine only ever
talks to the protocol.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Protocol, TYPE_CHECKING

from .faults import SessionStoreUnavailableFault, hash_identifier

if TYPE_CHECKING:
    from sessionware.context import RequestCtx
    from .policy import SessionOptions


logger = logging.getLogger("sessionware.sessions")

# Errors a store raises for infrastructure trouble (recovered on load)
TRANSIENT_ERRORS = (SessionStoreUnavailableFault, ConnectionError, TimeoutError)


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if a sync-or-async collaborator returned an awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


# ============================================================================
# SessionBackend Protocol
# ============================================================================

@dataclass(frozen=True)
class LoadResult:
    """
    What a backend found for the current request.

    Attributes:
        record: Decoded record (data plus metadata), None if absent
        identifier: Store identifier the record was found under
    """

    record: dict[str, Any] | None = None
    identifier: str | None = None

    @property
    def found(self) -> bool:
        return self.record is not None


class SessionBackend(Protocol):
    """
    Persistence contract used by the lifecycle engine.

    ``load`` never raises for "not found"; transient infrastructure
    failures are raised and the engine recovers from them. ``save`` and
    ``destroy`` propagate every failure.
    Concurrent writes to one identifier are not coordinated; the last
    write wins.
    """

    async def load(self, ctx: RequestCtx) -> LoadResult:
        """Read the session for this request."""
        ...

    async def save(
        self,
        ctx: RequestCtx,
        identifier: str | None,
        record: Mapping[str, Any],
        max_age: int | None,
        *,
        regenerate: bool = False,
    ) -> str | None:
        """
        Persist ``record`` and write it (or its identifier) outward.

        Returns:
            Identifier actually used (None for inline sessions)
        """
        ...

    async def destroy(self, ctx: RequestCtx, identifier: str | None) -> None:
        """Remove the session and clear outward state. Idempotent."""
        ...


def cookie_attributes(options: SessionOptions, max_age: int | None) -> dict[str, Any]:
    """
    Cookie attributes for ``jar.set``.

    Args:
        options: Session options
        max_age: Lifetime in milliseconds; None gives a browser-session cookie
    """
    attrs = {
        "path": options.path,
        "domain": options.domain,
        "secure": options.secure,
        "httponly": options.http_only,
        "samesite": options.same_site,
        "signed": options.signed,
        "overwrite": options.overwrite,
    }
    if max_age is not None:
        # seconds, rounded up
        attrs["max_age"] = -(-max_age // 1000)
        attrs["expires"] = datetime.now(timezone.utc) + timedelta(milliseconds=max_age)
    return attrs


def _clear_cookie(ctx: RequestCtx, options: SessionOptions) -> None:
    ctx.cookies.set(
        options.key,
        None,
        path=options.path,
        domain=options.domain,
        secure=options.secure,
        httponly=options.http_only,
        samesite=options.same_site,
        overwrite=options.overwrite,
    )


# ============================================================================
# CookieBackend - Inline
# ============================================================================

class CookieBackend:
    """
    Inline backend: the cookie value is the encoded session.

    The identifier argument is ignored on every operation.
    """

    def __init__(self, options: SessionOptions):
        self.options = options

    async def load(self, ctx: RequestCtx) -> LoadResult:
        value = ctx.cookies.get(self.options.key, signed=self.options.signed)
        if not value:
            return LoadResult()

        try:
            record = self.options.decode(value)
        except Exception as e:
            # Custom decoders may raise; that is still a decode failure
            logger.debug(f"Session cookie '{self.options.key}' failed to decode: {e}")
            return LoadResult()

        if not isinstance(record, dict):
            logger.debug(f"Session cookie '{self.options.key}' is not a valid session")
            return LoadResult()

        return LoadResult(record=record)

    async def save(
        self,
        ctx: RequestCtx,
        identifier: str | None,
        record: Mapping[str, Any],
        max_age: int | None,
        *,
        regenerate: bool = False,
    ) -> str | None:
        value = self.options.encode(record)
        ctx.cookies.set(self.options.key, value, **cookie_attributes(self.options, max_age))
        return None

    async def destroy(self, ctx: RequestCtx, identifier: str | None) -> None:
        _clear_cookie(ctx, self.options)


# ============================================================================
# ExternalStoreBackend
# ============================================================================

class ExternalStoreBackend:
    """
    External backend over a caller-supplied store.

    Store contract (each method may be sync or async):
        get(identifier) -> dict | None
        set(identifier, record, max_age)
        destroy(identifier)

    The identifier travels through ``options.external_key`` when one is
    configured, else through the ``options.key`` cookie.

    There is no locking: two requests writing the same identifier at once
    are last-write-wins at the store.

    Example:
        >>> backend = ExternalStoreBackend(options, RedisSessionStore(redis))
        >>> result = await backend.load(ctx)
    """

    def __init__(self, options: SessionOptions, store: Any):
        self.options = options
        self.store = store

    @property
    def store_name(self) -> str:
        return type(self.store).__name__

    async def _read_identifier(self, ctx: RequestCtx) -> str | None:
        if self.options.external_key is not None:
            identifier = await maybe_await(self.options.external_key.get(ctx))
        else:
            identifier = ctx.cookies.get(self.options.key, signed=self.options.signed)
        return identifier or None

    async def _write_identifier(self, ctx: RequestCtx, identifier: str, max_age: int | None) -> None:
        if self.options.external_key is not None:
            await maybe_await(self.options.external_key.set(ctx, identifier))
        else:
            ctx.cookies.set(self.options.key, identifier, **cookie_attributes(self.options, max_age))

    async def load(self, ctx: RequestCtx) -> LoadResult:
        identifier = await self._read_identifier(ctx)
        if identifier is None:
            return LoadResult()

        record = await maybe_await(self.store.get(identifier))

        if record is None:
            # Unknown identifiers are never adopted
            logger.debug(f"No stored session for {hash_identifier(identifier)}")
            return LoadResult()

        if not isinstance(record, dict):
            logger.debug(
                f"Store {self.store_name} returned {type(record).__name__} "
                f"for {hash_identifier(identifier)}, ignoring"
            )
            return LoadResult()

        return LoadResult(record=record, identifier=identifier)

    async def save(
        self,
        ctx: RequestCtx,
        identifier: str | None,
        record: Mapping[str, Any],
        max_age: int | None,
        *,
        regenerate: bool = False,
    ) -> str | None:
        if regenerate and identifier:
            # The old record must be gone before the new id exists
            await maybe_await(self.store.destroy(identifier))
            logger.debug(f"Rotated away {hash_identifier(identifier)}")
            identifier = None

        if not identifier:
            identifier = self.options.genid()

        await maybe_await(self.store.set(identifier, dict(record), max_age))
        await self._write_identifier(ctx, identifier, max_age)
        return identifier

    async def destroy(self, ctx: RequestCtx, identifier: str | None) -> None:
        if identifier:
            await maybe_await(self.store.destroy(identifier))

        if self.options.external_key is None:
            _clear_cookie(ctx, self.options)
