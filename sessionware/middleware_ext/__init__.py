"""
Extended middleware components for sessionware.

This module provides middleware beyond the core middleware.py:

- SessionMiddleware: Per-request session lifecycle (load, commit, flush)
- create_session: Install sessions on an application
"""

from .session_middleware import SessionMiddleware, create_session

__all__ = [
    "SessionMiddleware",
    "create_session",
]
