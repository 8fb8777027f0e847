"""
Context - Per-request context handed to middleware and handlers.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple, TYPE_CHECKING

from .cookies import Cookies
from .sessions.engine import ContextSession
from .sessions.faults import SessionNotLoadedFault

if TYPE_CHECKING:
    from .app import Application
    from .request import Request
    from .response import Response
    from .sessions.core import Session
    from .sessions.policy import SessionOptions


# Slot in Application.context_extensions holding the installed session options
SESSION_EXTENSION = "session"


class RequestCtx:
    """
    Request context with cookies, state and the request's session.

    Attributes:
        request: The HTTP request
        app: Owning application (signing keys, extensions, events)
        cookies: Cookie jar for this request
        state: Additional state dictionary
    """

    def __init__(self, request: Request, app: Optional[Application] = None):
        self.request = request
        self.app = app
        self.state: Dict[str, Any] = {}
        self.cookies = Cookies(request, app.signer if app is not None else None)

        self._context_session: Optional[ContextSession] = None
        self._pending_headers: List[Tuple[str, str]] = []

    @property
    def path(self) -> str:
        """Request path."""
        return self.request.path

    @property
    def method(self) -> str:
        """Request method."""
        return self.request.method

    # ========================================================================
    # Session
    # ========================================================================

    @property
    def context_session(self) -> ContextSession:
        """Session engine for this request, created on first access."""
        if self._context_session is None:
            options = None
            if self.app is not None:
                options = self.app.context_extensions.get(SESSION_EXTENSION)
            if options is None:
                raise SessionNotLoadedFault()
            self._context_session = ContextSession(self, options)
        return self._context_session

    @property
    def session(self) -> Optional[Session]:
        return self.context_session.get()

    @session.setter
    def session(self, value: Optional[Mapping[str, Any]]) -> None:
        self.context_session.set(value)

    @property
    def session_options(self) -> SessionOptions:
        """Options in effect for this request (read-only)."""
        return self.context_session.options

    # ========================================================================
    # Response plumbing
    # ========================================================================

    def set_header(self, name: str, value: str) -> None:
        """Queue a response header until flush."""
        self._pending_headers.append((name, value))

    def flush(self, response: Response) -> Response:
        """Apply queued cookies and headers to ``response``."""
        self.cookies.flush(response)
        for name, value in self._pending_headers:
            response.set_header(name, value)
        self._pending_headers = []
        return response
