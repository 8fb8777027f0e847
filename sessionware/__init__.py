"""
Sessionware - Per-request session lifecycle for async Python web apps

Complete integration of:
- Sessions: Cookie-inline or store-backed sessions with dirty tracking
- Cookies: Signed cookie jar with key rotation
- Middleware: Composable async middleware stack
- Faults: Structured error handling with fault domains
- Config: Layered JSON/YAML/.env/environment configuration
"""

__version__ = "0.2.0"

# ============================================================================
# Core Framework
# ============================================================================

from .app import Application
from .config import ConfigLoader, ConfigError
from .context import RequestCtx
from .cookies import Cookies, CookieSigner
from .request import Request
from .response import Response

# ============================================================================
# Middleware
# ============================================================================

from .middleware import (
    MiddlewareStack,
    ExceptionMiddleware,
    LoggingMiddleware,
)

from .middleware_ext import (
    SessionMiddleware,
    create_session,
)

# ============================================================================
# Sessions
# ============================================================================

from .sessions import (
    Session,
    SessionOptions,
    format_options,
    CommitDecision,
    ContextSession,
    HeaderExternalKey,
    SessionFault,
    SessionConfigFault,
    SessionNotLoadedFault,
    SessionStoreUnavailableFault,
)

# ============================================================================
# Faults
# ============================================================================

from .faults import (
    Fault,
    FaultDomain,
    Severity,
)

__all__ = [
    "__version__",
    # Core
    "Application",
    "ConfigLoader",
    "ConfigError",
    "RequestCtx",
    "Cookies",
    "CookieSigner",
    "Request",
    "Response",
    # Middleware
    "MiddlewareStack",
    "ExceptionMiddleware",
    "LoggingMiddleware",
    "SessionMiddleware",
    "create_session",
    # Sessions
    "Session",
    "SessionOptions",
    "format_options",
    "CommitDecision",
    "ContextSession",
    "HeaderExternalKey",
    "SessionFault",
    "SessionConfigFault",
    "SessionNotLoadedFault",
    "SessionStoreUnavailableFault",
    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
]
