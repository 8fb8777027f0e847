"""
Sessionware Sessions - Fault definitions.

All session errors are structured Faults, not bare exceptions.
"""

from __future__ import annotations

import hashlib

from sessionware.faults.core import Fault, Severity, FaultDomain


def hash_identifier(identifier: str | None) -> str | None:
    """Hash a session identifier for logging (privacy)."""
    if not identifier:
        return None
    return f"sha256:{hashlib.sha256(identifier.encode()).hexdigest()[:16]}"


# ============================================================================
# Session Fault Base
# ============================================================================

class SessionFault(Fault):
    """Base class for session-related faults."""

    domain = FaultDomain.SESSION


# ============================================================================
# Configuration Faults
# ============================================================================

class SessionConfigFault(SessionFault):
    """
    Session options are malformed.

    Raised while installing the middleware, before any request is served.
    """

    code = "SESSION_CONFIG_INVALID"
    message = "Invalid session configuration"
    domain = FaultDomain.CONFIG
    severity = Severity.FATAL
    public = False
    retryable = False

    def __init__(self, reason: str, **kwargs):
        super().__init__(message=f"Invalid session configuration: {reason}", **kwargs)
        self.reason = reason


# ============================================================================
# Lifecycle Faults
# ============================================================================

class SessionNotLoadedFault(SessionFault):
    """
    Session was accessed before the session middleware loaded it.

    Usually means the session middleware is not installed on the app,
    or the handler runs outside of it.
    """

    code = "SESSION_NOT_LOADED"
    message = "Session accessed before it was loaded; is the session middleware installed?"
    severity = Severity.ERROR
    public = False
    retryable = False


# ============================================================================
# Storage Faults
# ============================================================================

class SessionStoreUnavailableFault(SessionFault):
    """
    Session store is unavailable.

    This is a transient error - retry may succeed.
    Examples: Redis connection failure, file system error.
    """

    code = "SESSION_STORE_UNAVAILABLE"
    message = "Session storage unavailable"
    domain = FaultDomain.IO
    severity = Severity.ERROR
    public = False
    retryable = True

    def __init__(self, store_name: str, cause: str | None = None, **kwargs):
        if cause:
            message = f"Session store '{store_name}' unavailable: {cause}"
        else:
            message = f"Session store '{store_name}' unavailable"
        super().__init__(message=message, **kwargs)
        self.store_name = store_name
        self.cause = cause
