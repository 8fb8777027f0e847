"""
Sessionware Sessions - Per-request session lifecycle.

This package provides the session engine behind ``ctx.session``:
- Inline sessions encoded into a signed cookie
- External sessions in a caller-supplied store keyed by an identifier
- Snapshot-based dirty tracking (no per-mutation bookkeeping)
- Identifier regeneration and explicit invalidation
- Rolling and renewing expiry

Philosophy:
- Sessions are request-scoped (one per request, never shared)
- Sessions are written only when something changed
- Loading fails open, committing fails loudly
"""

from .core import (
    Session,
    Snapshot,
    CommitDecision,
    LifecycleState,
)

from .codec import encode, decode, fingerprint

from .policy import (
    SessionOptions,
    format_options,
)

from .store import (
    SessionBackend,
    LoadResult,
    CookieBackend,
    ExternalStoreBackend,
)

from .transport import (
    ExternalKey,
    HeaderExternalKey,
)

from .engine import ContextSession

from .faults import (
    SessionFault,
    SessionConfigFault,
    SessionNotLoadedFault,
    SessionStoreUnavailableFault,
)

__all__ = [
    # Core types
    "Session",
    "Snapshot",
    "CommitDecision",
    "LifecycleState",
    # Codec
    "encode",
    "decode",
    "fingerprint",
    # Options
    "SessionOptions",
    "format_options",
    # Backends
    "SessionBackend",
    "LoadResult",
    "CookieBackend",
    "ExternalStoreBackend",
    # Transport
    "ExternalKey",
    "HeaderExternalKey",
    # Engine
    "ContextSession",
    # Faults
    "SessionFault",
    "SessionConfigFault",
    "SessionNotLoadedFault",
    "SessionStoreUnavailableFault",
]
