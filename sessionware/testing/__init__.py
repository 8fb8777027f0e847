"""
Sessionware Testing - In-process test helpers.

Usage:
    from sessionware.testing import TestClient

    async def test_index():
        client = TestClient(app)
        response = await client.get("/")
        assert response.status_code == 200

Components:
    - TestClient:   In-process ASGI client with a cookie jar
    - TestResponse: Captured response with assertion helpers
    - make_test_*:  Scope, receive, request and context factories
"""

from .client import TestClient, TestResponse
from .utils import (
    make_test_scope,
    make_test_receive,
    make_test_request,
    make_test_ctx,
)

__all__ = [
    "TestClient",
    "TestResponse",
    "make_test_scope",
    "make_test_receive",
    "make_test_request",
    "make_test_ctx",
]
