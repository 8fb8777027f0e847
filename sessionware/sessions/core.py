"""
Sessionware Sessions - Core types.

Defines fundamental session data structures:
- Session: Mutable, mapping-like state container for one request
- Snapshot: Immutable fingerprint of the data as loaded
- CommitDecision: What commit should do (nothing, write, delete)
- LifecycleState: Where the per-request engine is in its lifecycle
"""

from __future__ import annotations

import time
from collections.abc import MutableMapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Mapping, TYPE_CHECKING

from .codec import fingerprint

if TYPE_CHECKING:
    from .engine import ContextSession


# Metadata keys carried inside persisted records, never exposed as data
EXPIRE_KEY = "_expire"
MAX_AGE_KEY = "_maxAge"
SESSION_COOKIE_KEY = "_session"
RESERVED_KEYS = frozenset({EXPIRE_KEY, MAX_AGE_KEY, SESSION_COOKIE_KEY})


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def has_expired(expire: int | float | None, now: int | None = None) -> bool:
    """True once ``now`` reaches ``expire`` (both epoch milliseconds)."""
    if expire is None:
        return False
    if now is None:
        now = now_ms()
    return expire <= now


# ============================================================================
# Enums
# ============================================================================

class CommitDecision(str, Enum):
    """
    Outcome of the dirty check at commit time.

    - NONE: Nothing to write, outward state stays as is
    - SAVE: Persist data (and write identifier / cookie)
    - DESTROY: Remove backend record and clear outward state
    """

    NONE = "none"
    SAVE = "save"
    DESTROY = "destroy"


class LifecycleState(str, Enum):
    """Per-request engine state."""

    UNLOADED = "unloaded"
    LOADED = "loaded"
    COMMITTED = "committed"


# ============================================================================
# Snapshot
# ============================================================================

@dataclass(frozen=True)
class Snapshot:
    """
    Immutable record of a session's data at load (or last commit) time.

    Only the canonical fingerprint is kept; the dirty check compares
    fingerprints, never object identity.

    Example:
        >>> snap = Snapshot.capture({"views": 1})
        >>> snap.differs_from({"views": 1})
        False
        >>> Snapshot.absent().is_absent
        True
    """

    fingerprint: str | None = None

    @classmethod
    def absent(cls) -> Snapshot:
        """Marker for "no prior session existed"."""
        return cls(None)

    @classmethod
    def capture(cls, data: Mapping[str, Any]) -> Snapshot:
        """Take a snapshot of ``data``."""
        return cls(fingerprint(data))

    @property
    def is_absent(self) -> bool:
        return self.fingerprint is None

    def differs_from(self, data: Mapping[str, Any]) -> bool:
        """Check whether ``data`` differs from the snapshotted state."""
        if self.fingerprint is None:
            return True
        return fingerprint(data) != self.fingerprint


# ============================================================================
# Session - Core Data Object
# ============================================================================

class Session(MutableMapping):
    """
    Session data for one request.

    Behaves like a dict of JSON-representable values. Change tracking is
    not done per mutation: ``is_changed`` compares the current content with
    the snapshot taken at load time.

    Attributes:
        is_new: True if no prior session existed when loaded
        invalidated: mark_invalidate() was called
        regenerate_requested: mark_regenerate() was called

    Example:
        >>> session["views"] = session.get("views", 0) + 1
        >>> session.is_changed
        True
        >>> session.mark_regenerate()  # new identifier on next save
    """

    def __init__(
        self,
        context: ContextSession | None = None,
        data: Mapping[str, Any] | None = None,
        snapshot: Snapshot | None = None,
        *,
        expire: int | None = None,
    ):
        """
        Create session.

        Args:
            context: Owning per-request engine (None for detached sessions)
            data: Initial data (metadata keys are dropped)
            snapshot: State as loaded; absent marker for fresh sessions
            expire: Loaded expiry in epoch milliseconds
        """
        self._context = context
        self._data: dict[str, Any] = {}
        if data:
            self._data.update((k, v) for k, v in data.items() if k not in RESERVED_KEYS)
        self._snapshot = snapshot if snapshot is not None else Snapshot.absent()
        self._expire = expire

        self._cleared = False
        self._invalidated = False
        self._regenerate = False
        self._require_save = False

    # ========================================================================
    # Mapping protocol
    # ========================================================================

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if key in RESERVED_KEYS:
            raise KeyError(f"'{key}' is reserved for session metadata")
        self._data[key] = value
        self._cleared = False

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Session(new={self.is_new}, data={self._data!r})"

    def set(self, key: str, value: Any) -> None:
        """Set data value."""
        self[key] = value

    def delete(self, key: str) -> None:
        """Delete data key (no-op if missing)."""
        self._data.pop(key, None)

    def replace(self, data: Mapping[str, Any] | None) -> None:
        """
        Replace the whole session content.

        Args:
            data: New content, or None to clear the session. A cleared
                session that existed before is destroyed on commit.
        """
        if data is None:
            self._data = {}
            self._cleared = True
            return

        if not isinstance(data, Mapping):
            raise TypeError("session can only be replaced by None or a mapping")

        self._data = {k: v for k, v in data.items() if k not in RESERVED_KEYS}
        self._cleared = False

    def to_dict(self) -> dict[str, Any]:
        """Plain copy of the session data (without metadata)."""
        return dict(self._data)

    # ========================================================================
    # State
    # ========================================================================

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def is_new(self) -> bool:
        """True iff no prior session existed when this one was loaded."""
        return self._snapshot.is_absent

    @property
    def is_changed(self) -> bool:
        """Computed on access by comparing against the snapshot."""
        return self._snapshot.differs_from(self._data)

    @property
    def is_cleared(self) -> bool:
        """Session was replaced by None."""
        return self._cleared

    @property
    def populated(self) -> bool:
        return bool(self._data)

    @property
    def invalidated(self) -> bool:
        return self._invalidated

    @property
    def regenerate_requested(self) -> bool:
        return self._regenerate

    @property
    def save_requested(self) -> bool:
        return self._require_save or self._regenerate

    def mark_invalidate(self) -> None:
        """Destroy this session on commit, whatever happens to the data."""
        self._invalidated = True

    def mark_regenerate(self) -> None:
        """Persist under a fresh identifier on commit, keeping the data."""
        self._regenerate = True

    def save(self) -> None:
        """Force a write on commit even if nothing changed."""
        self._require_save = True

    # ========================================================================
    # Expiry
    # ========================================================================

    @property
    def expire(self) -> int | None:
        """Expiry in epoch milliseconds (None = no expiry)."""
        return self._expire

    @property
    def expires_at(self) -> datetime | None:
        if self._expire is None:
            return None
        return datetime.fromtimestamp(self._expire / 1000, tz=timezone.utc)

    def is_expired(self, now: int | None = None) -> bool:
        """
        Check if session has passed expiry.

        Args:
            now: Current time in epoch milliseconds (defaults to now)
        """
        return has_expired(self._expire, now)

    @property
    def max_age(self) -> int | str | None:
        """Lifetime in milliseconds, "session", or None."""
        if self._context is None:
            return None
        return self._context.options.max_age

    @max_age.setter
    def max_age(self, value: int | str | None) -> None:
        if self._context is None:
            raise RuntimeError("max_age requires a session bound to a request")
        self._context.set_max_age(value)
        self._require_save = True

    @property
    def external_key(self) -> str | None:
        """Store identifier (external-store mode only)."""
        if self._context is None:
            return None
        return self._context.external_key

    async def manually_commit(self):
        """Commit now (required when auto_commit is disabled)."""
        if self._context is None:
            raise RuntimeError("Detached session cannot be committed")
        return await self._context.commit()

    # ========================================================================
    # Engine hooks
    # ========================================================================

    def _committed(self, snapshot: Snapshot, expire: int | None) -> None:
        """Reset tracking after a successful write."""
        self._snapshot = snapshot
        self._expire = expire
        self._cleared = False
        self._regenerate = False
        self._require_save = False

    def _reset(self) -> None:
        """Become an empty, new session after a destroy."""
        self._data = {}
        self._snapshot = Snapshot.absent()
        self._expire = None
        self._cleared = False
        self._invalidated = False
        self._regenerate = False
        self._require_save = False
