"""
Session Middleware - Integrates the session engine with the request lifecycle.

This middleware orchestrates the per-request session lifecycle:
1. Load the session before the downstream chain runs
2. Let handlers read and mutate ``ctx.session``
3. Commit at request end, on success and on error (auto_commit)
4. Flush the session cookie / identifier onto the response
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union, TYPE_CHECKING

from sessionware.context import SESSION_EXTENSION
from sessionware.middleware import Handler
from sessionware.request import Request
from sessionware.response import Response
from sessionware.sessions.faults import SessionConfigFault
from sessionware.sessions.policy import SessionOptions, format_options

if TYPE_CHECKING:
    from sessionware.context import RequestCtx


logger = logging.getLogger("sessionware.middleware.session")

OptionsLike = Union[SessionOptions, Mapping[str, Any], None]


class SessionMiddleware:
    """
    Middleware that runs the session lifecycle around each request.

    Architecture:
        Request -> SessionMiddleware -> [load] -> Handler -> [commit] -> Response

    With ``auto_commit`` disabled nothing is written unless the handler
    awaits ``ctx.session.manually_commit()``; pending mutations are
    otherwise dropped.

    Example:
        >>> app.use(create_session(app, {"key": "sid", "max_age": 3600_000}))
    """

    def __init__(self, options: SessionOptions):
        """
        Initialize session middleware.

        Args:
            options: Formatted session options (as installed on the app)
        """
        self.options = options
        self.logger = logger

    async def __call__(
        self,
        request: Request,
        ctx: RequestCtx,
        next_handler: Handler,
    ) -> Response:
        """
        Process request with session management.

        Commit errors propagate; a failed write must be visible to the
        caller. When the handler raised, including cancellation, the
        session is still committed and the handler's exception wins.
        """
        context_session = ctx.context_session
        await context_session.load()

        try:
            response = await next_handler(request, ctx)
        except BaseException:
            if self.options.auto_commit:
                try:
                    await context_session.commit()
                except Exception as commit_error:
                    self.logger.error(
                        f"Session commit failed after handler error: {commit_error}",
                        exc_info=True,
                    )
            raise

        if self.options.auto_commit:
            await context_session.commit()

        return ctx.flush(response)


def create_session(app: Any = None, options: OptionsLike = None) -> SessionMiddleware:
    """
    Install sessions on ``app`` and return the middleware to ``use``.

    Both ``create_session(app, options)`` and ``create_session(options, app)``
    are accepted. Installing twice keeps the first options.

    Args:
        app: Application (anything with a callable ``use``)
        options: SessionOptions, a configuration mapping, or None

    Raises:
        TypeError: If no application is given
        SessionConfigFault: If options are malformed, or cookies are
            signed while the application has no keys

    Example:
        >>> app = Application(keys=["s3cret"])
        >>> app.use(create_session(app, {"max_age": 86400000}))
    """
    if options is not None and callable(getattr(options, "use", None)):
        app, options = options, app

    if app is None or not callable(getattr(app, "use", None)):
        raise TypeError("app instance required: create_session(app, options)")

    if getattr(app, "context_extensions", None) is None:
        app.context_extensions = {}

    installed: Optional[SessionOptions] = app.context_extensions.get(SESSION_EXTENSION)
    if installed is not None:
        logger.debug("Sessions already installed on this application, keeping the first options")
        return SessionMiddleware(installed)

    options = format_options(options)

    if options.signed and not getattr(app, "keys", None):
        raise SessionConfigFault("signed cookies require app.keys to be set")

    app.context_extensions[SESSION_EXTENSION] = options
    logger.debug(
        f"Sessions installed: key={options.key!r}, "
        f"backend={'external' if options.is_external else 'cookie'}"
    )
    return SessionMiddleware(options)


__all__ = [
    "SessionMiddleware",
    "create_session",
]
