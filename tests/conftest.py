"""
Shared test fixtures and helpers for the Sessionware test suite.
"""

import pytest
from typing import Any, Dict, Optional

from sessionware.app import Application
from sessionware.middleware_ext import create_session
from sessionware.response import Response
from sessionware.sessions.faults import SessionStoreUnavailableFault
from sessionware.testing import TestClient


KEYS = ["test-secret-key"]


# ============================================================================
# Store doubles
# ============================================================================


class MemoryStore:
    """Synchronous in-memory store recording every call."""

    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.calls: list = []

    def get(self, identifier: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("get", identifier))
        record = self.sessions.get(identifier)
        return dict(record) if record is not None else None

    def set(self, identifier: str, record: Dict[str, Any], max_age: Optional[int]) -> None:
        self.calls.append(("set", identifier, dict(record), max_age))
        self.sessions[identifier] = dict(record)

    def destroy(self, identifier: str) -> None:
        self.calls.append(("destroy", identifier))
        self.sessions.pop(identifier, None)

    def calls_named(self, name: str) -> list:
        return [call for call in self.calls if call[0] == name]


class AsyncMemoryStore(MemoryStore):
    """Same as MemoryStore with coroutine methods."""

    async def get(self, identifier):
        return super().get(identifier)

    async def set(self, identifier, record, max_age):
        super().set(identifier, record, max_age)

    async def destroy(self, identifier):
        super().destroy(identifier)


class UnavailableStore(MemoryStore):
    """Store whose backing service is down."""

    def __init__(self, fail_get: bool = True, fail_set: bool = True):
        super().__init__()
        self.fail_get = fail_get
        self.fail_set = fail_set

    def get(self, identifier):
        if self.fail_get:
            raise SessionStoreUnavailableFault("memory", "connection refused")
        return super().get(identifier)

    def set(self, identifier, record, max_age):
        if self.fail_set:
            raise SessionStoreUnavailableFault("memory", "connection refused")
        super().set(identifier, record, max_age)


# ============================================================================
# Application helpers
# ============================================================================


def make_app(options: Optional[Dict[str, Any]] = None, keys=KEYS) -> Application:
    """Application with sessions installed and a few session routes."""
    app = Application(keys=keys)
    app.use(create_session(app, options))

    @app.get("/views")
    async def views(request, ctx):
        ctx.session["views"] = ctx.session.get("views", 0) + 1
        return Response.json({"views": ctx.session["views"], "new": ctx.session.is_new})

    @app.get("/read")
    async def read(request, ctx):
        session = ctx.session
        if session is None:
            return Response.json({"session": None})
        return Response.json({"session": session.to_dict(), "new": session.is_new})

    @app.post("/login")
    async def login(request, ctx):
        body = await request.json()
        ctx.session["user"] = body["user"]
        return Response.json({"ok": True})

    @app.post("/logout")
    async def logout(request, ctx):
        ctx.session = None
        return Response.json({"ok": True})

    @app.post("/rotate")
    async def rotate(request, ctx):
        ctx.session.mark_regenerate()
        return Response.json({"ok": True})

    @app.get("/boom")
    async def boom(request, ctx):
        ctx.session["before_error"] = True
        raise RuntimeError("handler failed")

    return app


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def async_store():
    return AsyncMemoryStore()


@pytest.fixture
def app():
    return make_app()


@pytest.fixture
def client(app):
    return TestClient(app)
