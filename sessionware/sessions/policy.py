"""
Sessionware Sessions - Options.

Defines the options that govern one installed session middleware:
- SessionOptions: cookie attributes, lifetime, persistence and hooks
- format_options: defaults, normalization and fail-fast validation
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Mapping, Optional, Union, TYPE_CHECKING

from . import codec
from .faults import SessionConfigFault
from .store import CookieBackend, ExternalStoreBackend

if TYPE_CHECKING:
    from sessionware.context import RequestCtx
    from .store import SessionBackend


logger = logging.getLogger("sessionware.sessions")

MaxAge = Union[int, str, timedelta, None]

SESSION_LIFETIME = "session"

# config name -> field name
OPTION_ALIASES = {
    "maxAge": "max_age",
    "httpOnly": "http_only",
    "autoCommit": "auto_commit",
    "externalKey": "external_key",
    "ContextStore": "context_store",
    "beforeSave": "before_save",
    "sameSite": "same_site",
}

_SAME_SITE = {"strict": "Strict", "lax": "Lax", "none": "None"}


@dataclass
class SessionOptions:
    """
    Options for the session middleware.

    Attributes:
        key: Cookie name holding the session (or its identifier)
        max_age: Lifetime in milliseconds, a timedelta, "session" for a
            browser-session cookie, or None for no expiry
        overwrite: Replace earlier Set-Cookie headers for ``key``
        http_only: HttpOnly cookie flag
        signed: Sign the cookie with the application keys
        auto_commit: Commit after every request
        store: External store exposing get/set/destroy (sync or async)
        external_key: Identifier transport exposing get(ctx)/set(ctx, id)
        context_store: Store class instantiated once per request with ctx
        genid: Identifier generator
        prefix: Prefix for generated identifiers (default genid only)
        encode: Cookie codec encoder override
        decode: Cookie codec decoder override
        rolling: Re-save on every request, refreshing the expiry
        renew: Re-save when less than half the lifetime is left
        valid: Hook ``valid(ctx, record) -> bool`` rejecting loaded records
        before_save: Hook ``before_save(ctx, session)`` called before saves

    Example:
        >>> options = SessionOptions(key="sid", max_age=timedelta(days=1))
        >>> options = format_options(options)
        >>> options.max_age
        86400000
    """

    key: str = "koa:sess"
    max_age: MaxAge = None
    overwrite: bool = True
    http_only: bool = True
    signed: bool = True
    auto_commit: bool = True

    store: Any = None
    external_key: Any = None
    context_store: Optional[type] = None
    genid: Optional[Callable[[], str]] = None
    prefix: Optional[str] = None
    encode: Optional[Callable[[Mapping[str, Any]], str]] = None
    decode: Optional[Callable[[str], Optional[dict]]] = None

    rolling: bool = False
    renew: bool = False
    valid: Optional[Callable[..., bool]] = None
    before_save: Optional[Callable[..., Any]] = None

    path: Optional[str] = "/"
    domain: Optional[str] = None
    secure: bool = False
    same_site: Optional[str] = None

    backend_factory: Optional[Callable[[RequestCtx, SessionOptions], SessionBackend]] = field(
        default=None, repr=False, compare=False
    )

    @property
    def is_external(self) -> bool:
        """Sessions live in a store, the cookie carries an identifier."""
        return self.store is not None or self.context_store is not None

    @property
    def is_session_lifetime(self) -> bool:
        return self.max_age == SESSION_LIFETIME

    def copy(self) -> SessionOptions:
        """Shallow per-request copy."""
        return dataclasses.replace(self)

    def create_backend(self, ctx: RequestCtx) -> SessionBackend:
        if self.backend_factory is None:
            raise SessionConfigFault("options were not formatted")
        return self.backend_factory(ctx, self)

    @classmethod
    def from_dict(cls, config: Mapping[str, Any] | None) -> SessionOptions:
        """
        Create options from a configuration dictionary.

        Accepts field names and their camelCase forms (``maxAge``,
        ``httpOnly``, ...). ``maxage`` is honoured when ``maxAge`` is absent.

        Raises:
            SessionConfigFault: On unknown option names
        """
        config = dict(config or {})

        if "maxAge" not in config and "max_age" not in config and "maxage" in config:
            config["maxAge"] = config.pop("maxage")
        config.pop("maxage", None)

        names = {f.name for f in dataclasses.fields(cls)}
        kwargs = {}
        for raw_name, value in config.items():
            name = OPTION_ALIASES.get(raw_name, raw_name)
            if name not in names or name == "backend_factory":
                raise SessionConfigFault(f"unknown option '{raw_name}'")
            kwargs[name] = value

        return cls(**kwargs)


def normalize_max_age(value: MaxAge) -> int | str | None:
    """
    Normalize a lifetime to milliseconds, "session" or None.

    Raises:
        SessionConfigFault: For negative, boolean or unparseable values
    """
    if value is None or value == SESSION_LIFETIME:
        return value

    if isinstance(value, timedelta):
        value = int(value.total_seconds() * 1000)
    elif isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SessionConfigFault(f"max_age must be milliseconds, a timedelta or 'session', got {value!r}")

    if value < 0:
        raise SessionConfigFault("max_age must not be negative")

    return int(value)


def _require_methods(obj: Any, owner: str, methods: tuple[str, ...]) -> None:
    for method in methods:
        if not callable(getattr(obj, method, None)):
            raise SessionConfigFault(f"{owner}.{method} must be callable")


def _default_genid(prefix: Optional[str]) -> Callable[[], str]:
    if prefix:
        return lambda: f"{prefix}{uuid.uuid4()}"
    return lambda: str(uuid.uuid4())


def format_options(options: SessionOptions | Mapping[str, Any] | None = None) -> SessionOptions:
    """
    Apply defaults to ``options`` and validate them.

    Returns a new SessionOptions; the argument is never modified. The
    persistence backend is chosen here, once.

    Raises:
        SessionConfigFault: If any option is malformed
    """
    if options is None:
        options = SessionOptions()
    elif isinstance(options, Mapping):
        options = SessionOptions.from_dict(options)
    elif isinstance(options, SessionOptions):
        options = options.copy()
    else:
        raise SessionConfigFault(f"options must be a mapping or SessionOptions, got {type(options).__name__}")

    if not options.key or not isinstance(options.key, str):
        raise SessionConfigFault("key must be a non-empty string")

    options.max_age = normalize_max_age(options.max_age)

    if options.encode is None:
        options.encode = codec.encode
    if options.decode is None:
        options.decode = codec.decode

    for name in ("encode", "decode", "genid", "valid", "before_save"):
        value = getattr(options, name)
        if value is not None and not callable(value):
            raise SessionConfigFault(f"{name} must be callable")

    if options.store is not None:
        _require_methods(options.store, "store", ("get", "set", "destroy"))

    if options.external_key is not None:
        _require_methods(options.external_key, "external_key", ("get", "set"))

    if options.context_store is not None:
        if not inspect.isclass(options.context_store):
            raise SessionConfigFault("context_store must be a class")
        _require_methods(options.context_store, "context_store", ("get", "set", "destroy"))

    if options.genid is None:
        options.genid = _default_genid(options.prefix)

    if options.same_site is not None:
        same_site = _SAME_SITE.get(str(options.same_site).lower())
        if same_site is None:
            raise SessionConfigFault(f"same_site must be strict, lax or none, got {options.same_site!r}")
        options.same_site = same_site

    if options.context_store is not None:
        options.backend_factory = _context_store_backend
    elif options.store is not None:
        options.backend_factory = _store_backend
    else:
        options.backend_factory = _cookie_backend

    logger.debug(f"Session options: {options!r}")

    return options


def _cookie_backend(ctx: RequestCtx, options: SessionOptions) -> SessionBackend:
    return CookieBackend(options)


def _store_backend(ctx: RequestCtx, options: SessionOptions) -> SessionBackend:
    return ExternalStoreBackend(options, options.store)


def _context_store_backend(ctx: RequestCtx, options: SessionOptions) -> SessionBackend:
    return ExternalStoreBackend(options, options.context_store(ctx))
