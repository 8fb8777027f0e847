"""
Tests for CookieSigner and the per-request cookie jar (cookies.py).
"""

from datetime import datetime, timezone

import pytest

from sessionware.cookies import Cookies, CookieSigner
from sessionware.response import Response, build_set_cookie
from sessionware.testing import make_test_request


# ============================================================================
# CookieSigner
# ============================================================================

class TestCookieSigner:

    def test_sign_unsign(self):
        signer = CookieSigner("secret")
        signed = signer.sign("value")
        assert signed != "value"
        assert signer.unsign(signed) == "value"

    def test_wrong_key(self):
        signed = CookieSigner("one").sign("value")
        assert CookieSigner("two").unsign(signed) is None

    def test_key_rotation(self):
        signed = CookieSigner(["old"]).sign("value")
        rotated = CookieSigner(["new", "old"])
        assert rotated.unsign(signed) == "value"
        assert CookieSigner(["old"]).unsign(rotated.sign("value")) is None

    @pytest.mark.parametrize("value", ["", "nodot", "!!!.???", "a.b.c"])
    def test_malformed(self, value):
        assert CookieSigner("secret").unsign(value) is None

    def test_tampered_value(self):
        signer = CookieSigner("secret")
        sig, val = signer.sign("user=alice").split(".", 1)
        forged = CookieSigner("other").sign("user=admin").split(".", 1)[1]
        assert signer.unsign(f"{sig}.{forged}") is None

    def test_requires_key(self):
        with pytest.raises(ValueError):
            CookieSigner([])

    def test_bytes_key(self):
        signer = CookieSigner(b"secret")
        assert CookieSigner("secret").unsign(signer.sign("v")) == "v"


# ============================================================================
# Cookies jar
# ============================================================================

class TestCookiesRead:

    def test_plain(self):
        jar = Cookies(make_test_request(cookies={"theme": "dark"}))
        assert jar.get("theme") == "dark"
        assert jar.get("missing") is None

    def test_signed(self):
        signer = CookieSigner("secret")
        jar = Cookies(make_test_request(cookies={"sid": signer.sign("abc")}), signer)
        assert jar.get("sid", signed=True) == "abc"

    def test_unsigned_value_rejected_when_signed(self):
        signer = CookieSigner("secret")
        jar = Cookies(make_test_request(cookies={"sid": "abc"}), signer)
        assert jar.get("sid", signed=True) is None

    def test_signed_without_signer(self):
        jar = Cookies(make_test_request(cookies={"sid": "abc"}))
        with pytest.raises(ValueError):
            jar.get("sid", signed=True)

    def test_malformed_cookie_header(self):
        request = make_test_request(headers=[("cookie", 'bad"cookie; =;')])
        assert Cookies(request).get("bad") is None


class TestCookiesWrite:

    def test_set_queues_header(self):
        jar = Cookies(make_test_request())
        jar.set("theme", "dark", max_age=60, samesite="Lax")
        assert jar.pending == ["theme=dark; Max-Age=60; Path=/; HttpOnly; SameSite=Lax"]

    def test_signed_set(self):
        signer = CookieSigner("secret")
        jar = Cookies(make_test_request(), signer)
        jar.set("sid", "abc", signed=True)
        value = jar.pending[0].split(";", 1)[0].split("=", 1)[1]
        assert signer.unsign(value) == "abc"

    def test_signed_set_without_signer(self):
        with pytest.raises(ValueError):
            Cookies(make_test_request()).set("sid", "abc", signed=True)

    def test_delete(self):
        jar = Cookies(make_test_request())
        jar.set("sid", None, signed=True)
        header = jar.pending[0]
        assert header.startswith("sid=;")
        assert "Max-Age=0" in header
        assert "Expires=Thu, 01 Jan 1970 00:00:00 GMT" in header

    def test_overwrite_replaces_queued(self):
        jar = Cookies(make_test_request())
        jar.set("sid", "one")
        jar.set("other", "x")
        jar.set("sid", "two", overwrite=True)
        assert jar.pending == [
            "other=x; Path=/; HttpOnly",
            "sid=two; Path=/; HttpOnly",
        ]

    def test_without_overwrite_both_kept(self):
        jar = Cookies(make_test_request())
        jar.set("sid", "one")
        jar.set("sid", "two")
        assert len(jar.pending) == 2

    def test_flush(self):
        jar = Cookies(make_test_request())
        jar.set("a", "1")
        jar.set("b", "2")
        response = Response.json({})

        jar.flush(response)

        assert response.get_cookie_headers() == ["a=1; Path=/; HttpOnly", "b=2; Path=/; HttpOnly"]
        assert jar.pending == []

    def test_flush_overwrites_response_cookie(self):
        response = Response.json({})
        response.set_cookie("sid", "from-handler")
        response.set_cookie("theme", "dark")

        jar = Cookies(make_test_request())
        jar.set("sid", "from-session", overwrite=True)
        jar.flush(response)

        headers = response.get_cookie_headers()
        assert not any(h.startswith("sid=from-handler") for h in headers)
        assert any(h.startswith("theme=dark") for h in headers)
        assert headers[-1] == "sid=from-session; Path=/; HttpOnly"


class TestBuildSetCookie:

    def test_all_attributes(self):
        header = build_set_cookie(
            "sid",
            "v",
            max_age=10,
            expires=datetime(2030, 1, 1, tzinfo=timezone.utc),
            path="/app",
            domain="example.com",
            secure=True,
            httponly=True,
            samesite="None",
        )
        assert header == (
            "sid=v; Max-Age=10; Expires=Tue, 01 Jan 2030 00:00:00 GMT; "
            "Path=/app; Domain=example.com; Secure; HttpOnly; SameSite=None"
        )

    def test_minimal(self):
        assert build_set_cookie("sid", "v", path=None, httponly=False) == "sid=v"
