"""
Sessionware Sessions - Lifecycle engine.

A ContextSession owns the session of exactly one request:

1. Load - ask the backend, validate expiry and the ``valid`` hook
2. Expose - handlers read and mutate the Session freely
3. Decide - compare against the snapshot: nothing, save or destroy
4. Commit - execute the decision through the backend
5. Emit - report lifecycle events to the application

ContextSession is request-scoped; it is created lazily by RequestCtx and
cached there for the lifetime of the request.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, TYPE_CHECKING

from .core import (
    CommitDecision,
    LifecycleState,
    Session,
    Snapshot,
    EXPIRE_KEY,
    MAX_AGE_KEY,
    SESSION_COOKIE_KEY,
    has_expired,
    now_ms,
)
from .faults import SessionConfigFault, SessionNotLoadedFault, hash_identifier
from .policy import SESSION_LIFETIME, normalize_max_age
from .store import LoadResult, TRANSIENT_ERRORS, maybe_await

if TYPE_CHECKING:
    from sessionware.context import RequestCtx
    from .policy import SessionOptions


logger = logging.getLogger("sessionware.sessions")


class ContextSession:
    """
    Per-request session lifecycle orchestrator.

    Example:
        >>> context_session = ContextSession(ctx, options)
        >>> session = await context_session.load()
        >>> session["user"] = "alice"
        >>> await context_session.commit()
        <CommitDecision.SAVE: 'save'>
    """

    def __init__(self, ctx: RequestCtx, options: SessionOptions):
        """
        Initialize per-request engine.

        Args:
            ctx: Request context the session belongs to
            options: Formatted options; copied so per-request changes
                (stored lifetime, max_age setter) never leak
        """
        self.ctx = ctx
        self.options = options.copy()
        self.backend = self.options.create_backend(ctx)

        self.state = LifecycleState.UNLOADED
        self.session: Session | None = None
        self.external_key: str | None = None

    # ========================================================================
    # Load
    # ========================================================================

    @property
    def loaded(self) -> bool:
        return self.state is not LifecycleState.UNLOADED

    async def load(self) -> Session:
        """
        Materialize the session (idempotent).

        Missing, undecodable, expired and rejected records all yield a
        fresh empty session. Transient store failures are logged and
        treated as missing.
        """
        if self.session is not None:
            return self.session

        try:
            result = await self.backend.load(self.ctx)
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Session store unavailable, starting fresh session: {e}")
            result = LoadResult()

        record = result.record
        if record is None:
            self._emit_event("session:missed")
            return self._create()

        if not await self._valid(record, result.identifier):
            return self._create()

        self._restore_max_age(record)

        expire = record.get(EXPIRE_KEY)
        data = {k: v for k, v in record.items() if k not in (EXPIRE_KEY, MAX_AGE_KEY, SESSION_COOKIE_KEY)}

        self.external_key = result.identifier
        self.session = Session(
            self,
            data,
            Snapshot.capture(data),
            expire=expire if isinstance(expire, (int, float)) else None,
        )
        self.state = LifecycleState.LOADED
        return self.session

    def _create(self) -> Session:
        self.external_key = None
        self.session = Session(self)
        self.state = LifecycleState.LOADED
        return self.session

    async def _valid(self, record: Mapping[str, Any], identifier: str | None) -> bool:
        expire = record.get(EXPIRE_KEY)
        if isinstance(expire, (int, float)) and has_expired(expire):
            logger.debug(f"Session {hash_identifier(identifier) or self.options.key} expired")
            self._emit_event("session:expired", identifier)
            return False

        if self.options.valid is not None:
            if not await maybe_await(self.options.valid(self.ctx, record)):
                logger.debug(f"Session {hash_identifier(identifier) or self.options.key} rejected by valid hook")
                self._emit_event("session:invalid", identifier)
                return False

        return True

    def _restore_max_age(self, record: Mapping[str, Any]) -> None:
        """A stored lifetime wins over the configured one for this request."""
        if record.get(SESSION_COOKIE_KEY):
            self.options.max_age = SESSION_LIFETIME
            return

        if MAX_AGE_KEY in record:
            try:
                self.options.max_age = normalize_max_age(record[MAX_AGE_KEY])
            except SessionConfigFault:
                logger.debug(f"Ignoring malformed stored max age {record[MAX_AGE_KEY]!r}")

    # ========================================================================
    # Accessors (back ctx.session)
    # ========================================================================

    def get(self) -> Session | None:
        """Current session; None once it was set to None."""
        if self.session is None:
            raise SessionNotLoadedFault()
        if self.session.is_cleared:
            return None
        return self.session

    def set(self, value: Mapping[str, Any] | None) -> None:
        """
        Replace the session wholesale.

        Raises:
            TypeError: If value is neither None nor a mapping
        """
        if self.session is None:
            raise SessionNotLoadedFault()
        if value is not None and not isinstance(value, Mapping):
            raise TypeError(f"ctx.session can only be set to None or a mapping, not {type(value).__name__}")
        self.session.replace(value)

    def set_max_age(self, value: Any) -> None:
        self.options.max_age = normalize_max_age(value)

    # ========================================================================
    # Decide
    # ========================================================================

    def decide(self) -> CommitDecision:
        """
        Compute what commit would do right now.

        Order matters: invalidation beats everything, an empty or expired
        session is never written, forced saves beat the dirty check.
        """
        session = self.session
        if session is None:
            return CommitDecision.NONE

        if session.invalidated:
            return CommitDecision.DESTROY

        if session.is_cleared or not session.populated:
            return CommitDecision.NONE if session.is_new else CommitDecision.DESTROY

        if session.is_expired():
            return CommitDecision.NONE if session.is_new else CommitDecision.DESTROY

        if session.save_requested:
            return CommitDecision.SAVE

        if session.is_new or session.is_changed:
            return CommitDecision.SAVE

        if self.options.rolling:
            return CommitDecision.SAVE

        if self.options.renew and self._needs_renewal(session):
            return CommitDecision.SAVE

        return CommitDecision.NONE

    def _needs_renewal(self, session: Session) -> bool:
        max_age = self.options.max_age
        if session.expire is None or not isinstance(max_age, int) or not max_age:
            return False
        return session.expire - now_ms() < max_age / 2

    # ========================================================================
    # Commit
    # ========================================================================

    async def commit(self) -> CommitDecision:
        """
        Execute the commit decision.

        Backend failures propagate unchanged. Safe to call more than once;
        each call is decided against the last committed state.
        """
        decision = self.decide()
        session = self.session

        if decision is CommitDecision.SAVE:
            if self.options.before_save is not None:
                await maybe_await(self.options.before_save(self.ctx, session))

            record, expire, max_age = self._build_record(session)
            identifier = await self.backend.save(
                self.ctx,
                self.external_key,
                record,
                max_age,
                regenerate=session.regenerate_requested,
            )
            if identifier is not None:
                self.external_key = identifier

            session._committed(Snapshot.capture(session.to_dict()), expire)
            self._emit_event("session:saved", self.external_key)

        elif decision is CommitDecision.DESTROY:
            identifier = self.external_key
            await self.backend.destroy(self.ctx, identifier)
            self.external_key = None
            session._reset()
            self._emit_event("session:destroyed", identifier)

        if self.session is not None:
            self.state = LifecycleState.COMMITTED
        return decision

    def _build_record(self, session: Session) -> tuple[dict[str, Any], int | None, int | None]:
        """
        Session data plus lifetime metadata.

        Returns:
            (record, expire in epoch ms, max age in ms for the backend)
        """
        record = session.to_dict()
        max_age = self.options.max_age

        if max_age == SESSION_LIFETIME:
            record[SESSION_COOKIE_KEY] = True
            return record, None, None

        if max_age is None:
            return record, None, None

        expire = now_ms() + max_age
        record[EXPIRE_KEY] = expire
        record[MAX_AGE_KEY] = max_age
        return record, expire, max_age

    # ========================================================================
    # Event Emission
    # ========================================================================

    def _emit_event(self, event_name: str, identifier: str | None = None) -> None:
        """
        Emit session event for observability.

        Args:
            event_name: Event name (session:missed, session:saved, ...)
            identifier: Store identifier, only ever reported hashed
        """
        event_data = {
            "event": event_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "key": self.options.key,
        }

        if identifier:
            event_data["session_id_hash"] = hash_identifier(identifier)

        request = getattr(self.ctx, "request", None)
        if request is not None:
            event_data["request_path"] = request.path
            event_data["request_method"] = request.method

        app = getattr(self.ctx, "app", None)
        if app is not None:
            app.emit_event(event_data)

        logger.debug(f"Session event: {event_name}")
