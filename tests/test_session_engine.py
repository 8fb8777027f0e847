"""
Tests for the per-request lifecycle engine (sessions/engine.py).
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from sessionware.app import Application
from sessionware.sessions import core
from sessionware.sessions.codec import encode, decode
from sessionware.sessions.core import CommitDecision, LifecycleState, now_ms
from sessionware.sessions.engine import ContextSession
from sessionware.sessions.faults import SessionNotLoadedFault
from sessionware.sessions.policy import format_options
from sessionware.testing import make_test_ctx

from conftest import KEYS


KEY = "koa:sess"


def make_engine(options=None, record=None, *, raw_cookie=None, app=None):
    """ContextSession over a request carrying ``record`` as a signed cookie."""
    app = app or Application(keys=KEYS)
    cookies = {}
    if record is not None:
        cookies[KEY] = app.signer.sign(encode(record))
    if raw_cookie is not None:
        cookies[KEY] = raw_cookie
    ctx = make_test_ctx(app=app, cookies=cookies or None)
    return ContextSession(ctx, format_options(options)), ctx


def written_record(ctx):
    """Decode the last queued session cookie."""
    header = ctx.cookies.pending[-1]
    value = header.split(";", 1)[0].split("=", 1)[1]
    return decode(ctx.app.signer.unsign(value))


class TestLoad:

    @pytest.mark.asyncio
    async def test_get_before_load(self):
        engine, _ = make_engine()
        assert engine.state is LifecycleState.UNLOADED
        with pytest.raises(SessionNotLoadedFault):
            engine.get()
        with pytest.raises(SessionNotLoadedFault):
            engine.set({"a": 1})

    @pytest.mark.asyncio
    async def test_missing_cookie_gives_new_session(self):
        events = []
        app = Application(keys=KEYS)
        app.on_event(events.append)
        engine, _ = make_engine(app=app)

        session = await engine.load()

        assert session.is_new
        assert not session.populated
        assert engine.state is LifecycleState.LOADED
        assert [e["event"] for e in events] == ["session:missed"]
        assert events[0]["key"] == KEY
        assert events[0]["request_path"] == "/"

    @pytest.mark.asyncio
    async def test_load_is_idempotent(self):
        engine, _ = make_engine(record={"a": 1})
        first = await engine.load()
        assert await engine.load() is first

    @pytest.mark.asyncio
    async def test_existing_cookie(self):
        engine, _ = make_engine(record={"views": 3})
        session = await engine.load()
        assert session["views"] == 3
        assert not session.is_new
        assert not session.is_changed

    @pytest.mark.asyncio
    async def test_tampered_cookie_gives_new_session(self):
        app = Application(keys=KEYS)
        signed = app.signer.sign(encode({"user": "alice"}))
        forged = signed[:-2] + ("AA" if not signed.endswith("AA") else "BB")
        engine, _ = make_engine(raw_cookie=forged, app=app)
        session = await engine.load()
        assert session.is_new

    @pytest.mark.asyncio
    async def test_undecodable_cookie_gives_new_session(self):
        app = Application(keys=KEYS)
        engine, _ = make_engine(raw_cookie=app.signer.sign("garbage"), app=app)
        assert (await engine.load()).is_new

    @pytest.mark.asyncio
    async def test_raising_custom_decoder(self):
        def decode_strict(value):
            raise ValueError("bad cookie")

        engine, _ = make_engine({"decode": decode_strict}, record={"a": 1})
        assert (await engine.load()).is_new

    @pytest.mark.asyncio
    async def test_expired_record(self):
        events = []
        app = Application(keys=KEYS)
        app.on_event(events.append)
        engine, _ = make_engine(
            record={"a": 1, "_expire": now_ms() - 1000, "_maxAge": 1000},
            app=app,
        )

        session = await engine.load()

        assert session.is_new
        assert "a" not in session
        assert [e["event"] for e in events] == ["session:expired"]

    @pytest.mark.asyncio
    async def test_record_expiring_now_is_expired(self, monkeypatch):
        instant = now_ms() + 60_000
        monkeypatch.setattr(core, "now_ms", lambda: instant)
        engine, _ = make_engine(record={"a": 1, "_expire": instant, "_maxAge": 60_000})

        session = await engine.load()

        assert session.is_new
        assert "a" not in session

    def test_load_and_session_agree_on_boundary(self):
        assert core.has_expired(1000, now=1000)
        assert not core.has_expired(1001, now=1000)
        assert not core.has_expired(None, now=1000)

    @pytest.mark.asyncio
    async def test_valid_hook_rejects(self):
        events = []
        app = Application(keys=KEYS)
        app.on_event(events.append)
        valid = MagicMock(return_value=False)
        engine, ctx = make_engine({"valid": valid}, record={"a": 1}, app=app)

        session = await engine.load()

        assert session.is_new
        valid.assert_called_once_with(ctx, {"a": 1})
        assert [e["event"] for e in events] == ["session:invalid"]

    @pytest.mark.asyncio
    async def test_async_valid_hook_accepts(self):
        valid = AsyncMock(return_value=True)
        engine, _ = make_engine({"valid": valid}, record={"a": 1})
        session = await engine.load()
        assert session["a"] == 1
        valid.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_metadata_not_exposed(self):
        engine, _ = make_engine(record={"a": 1, "_expire": now_ms() + 60_000, "_maxAge": 60_000})
        session = await engine.load()
        assert session.to_dict() == {"a": 1}
        assert session.expire is not None

    @pytest.mark.asyncio
    async def test_stored_max_age_restored(self):
        engine, _ = make_engine(record={"a": 1, "_expire": now_ms() + 5000, "_maxAge": 5000})
        await engine.load()
        assert engine.options.max_age == 5000

    @pytest.mark.asyncio
    async def test_stored_session_lifetime_restored(self):
        engine, _ = make_engine({"max_age": 60_000}, record={"a": 1, "_session": True})
        await engine.load()
        assert engine.options.max_age == "session"

    @pytest.mark.asyncio
    async def test_malformed_stored_max_age_ignored(self):
        engine, _ = make_engine({"max_age": 60_000}, record={"a": 1, "_maxAge": "forever"})
        await engine.load()
        assert engine.options.max_age == 60_000

    @pytest.mark.asyncio
    async def test_request_options_do_not_leak(self):
        options = format_options()
        app = Application(keys=KEYS)
        ctx = make_test_ctx(app=app, cookies={KEY: app.signer.sign(encode({"a": 1, "_maxAge": 5000, "_expire": now_ms() + 5000}))})
        engine = ContextSession(ctx, options)
        await engine.load()
        assert engine.options.max_age == 5000
        assert options.max_age is None


class TestDecide:

    @pytest.mark.asyncio
    async def test_never_loaded(self):
        engine, _ = make_engine()
        assert engine.decide() is CommitDecision.NONE

    @pytest.mark.asyncio
    async def test_untouched_existing(self):
        engine, _ = make_engine(record={"a": 1})
        await engine.load()
        assert engine.decide() is CommitDecision.NONE

    @pytest.mark.asyncio
    async def test_untouched_new(self):
        engine, _ = make_engine()
        await engine.load()
        assert engine.decide() is CommitDecision.NONE

    @pytest.mark.asyncio
    async def test_populated_new(self):
        engine, _ = make_engine()
        session = await engine.load()
        session["a"] = 1
        assert engine.decide() is CommitDecision.SAVE

    @pytest.mark.asyncio
    async def test_changed(self):
        engine, _ = make_engine(record={"a": 1})
        session = await engine.load()
        session["a"] = 2
        assert engine.decide() is CommitDecision.SAVE

    @pytest.mark.asyncio
    async def test_set_none_on_existing(self):
        engine, _ = make_engine(record={"a": 1})
        await engine.load()
        engine.set(None)
        assert engine.get() is None
        assert engine.decide() is CommitDecision.DESTROY

    @pytest.mark.asyncio
    async def test_set_none_on_new(self):
        engine, _ = make_engine()
        session = await engine.load()
        session["a"] = 1
        engine.set(None)
        assert engine.decide() is CommitDecision.NONE

    @pytest.mark.asyncio
    async def test_all_keys_deleted(self):
        engine, _ = make_engine(record={"a": 1, "b": 2})
        session = await engine.load()
        session.clear()
        assert engine.decide() is CommitDecision.DESTROY

    @pytest.mark.asyncio
    async def test_invalidate_beats_mutation(self):
        engine, _ = make_engine(record={"a": 1})
        session = await engine.load()
        session.mark_invalidate()
        session["b"] = 2
        session.save()
        assert engine.decide() is CommitDecision.DESTROY

    @pytest.mark.asyncio
    async def test_expired_during_request(self, monkeypatch):
        engine, _ = make_engine(record={"a": 1, "_expire": now_ms() + 60_000, "_maxAge": 60_000})
        session = await engine.load()
        session["a"] = 2
        later = now_ms() + 120_000
        monkeypatch.setattr(core, "now_ms", lambda: later)
        assert engine.decide() is CommitDecision.DESTROY

    @pytest.mark.asyncio
    async def test_forced_save(self):
        engine, _ = make_engine(record={"a": 1})
        session = await engine.load()
        session.save()
        assert engine.decide() is CommitDecision.SAVE

    @pytest.mark.asyncio
    async def test_regenerate_forces_save(self):
        engine, _ = make_engine(record={"a": 1})
        session = await engine.load()
        session.mark_regenerate()
        assert engine.decide() is CommitDecision.SAVE

    @pytest.mark.asyncio
    async def test_rolling(self):
        engine, _ = make_engine({"rolling": True, "max_age": 60_000}, record={"a": 1})
        await engine.load()
        assert engine.decide() is CommitDecision.SAVE

    @pytest.mark.asyncio
    async def test_renew_near_expiry(self):
        engine, _ = make_engine(
            {"renew": True},
            record={"a": 1, "_expire": now_ms() + 10_000, "_maxAge": 60_000},
        )
        await engine.load()
        assert engine.decide() is CommitDecision.SAVE

    @pytest.mark.asyncio
    async def test_renew_not_needed(self):
        engine, _ = make_engine(
            {"renew": True},
            record={"a": 1, "_expire": now_ms() + 50_000, "_maxAge": 60_000},
        )
        await engine.load()
        assert engine.decide() is CommitDecision.NONE

    @pytest.mark.asyncio
    async def test_set_rejects_non_mapping(self):
        engine, _ = make_engine()
        await engine.load()
        with pytest.raises(TypeError):
            engine.set("user=alice")


class TestCommit:

    @pytest.mark.asyncio
    async def test_no_op_writes_nothing(self):
        engine, ctx = make_engine(record={"a": 1})
        await engine.load()
        assert await engine.commit() is CommitDecision.NONE
        assert ctx.cookies.pending == []
        assert engine.state is LifecycleState.COMMITTED

    @pytest.mark.asyncio
    async def test_save_without_max_age(self):
        engine, ctx = make_engine()
        session = await engine.load()
        session["views"] = 1

        assert await engine.commit() is CommitDecision.SAVE

        assert written_record(ctx) == {"views": 1}
        header = ctx.cookies.pending[-1]
        assert "Max-Age" not in header
        assert "HttpOnly" in header
        assert "Path=/" in header

    @pytest.mark.asyncio
    async def test_save_stamps_expiry(self):
        engine, ctx = make_engine({"max_age": 60_000})
        session = await engine.load()
        session["views"] = 1
        before = now_ms()

        await engine.commit()

        record = written_record(ctx)
        assert record["views"] == 1
        assert record["_maxAge"] == 60_000
        assert before + 60_000 <= record["_expire"] <= now_ms() + 60_000
        assert "Max-Age=60" in ctx.cookies.pending[-1]
        assert session.expire == record["_expire"]

    @pytest.mark.asyncio
    async def test_save_session_lifetime(self):
        engine, ctx = make_engine({"max_age": "session"})
        session = await engine.load()
        session["a"] = 1
        await engine.commit()
        assert written_record(ctx) == {"a": 1, "_session": True}
        assert "Max-Age" not in ctx.cookies.pending[-1]

    @pytest.mark.asyncio
    async def test_max_age_setter(self):
        engine, ctx = make_engine(record={"a": 1})
        session = await engine.load()
        session.max_age = 30_000

        assert await engine.commit() is CommitDecision.SAVE
        assert written_record(ctx)["_maxAge"] == 30_000

    @pytest.mark.asyncio
    async def test_second_commit_uses_new_snapshot(self):
        engine, ctx = make_engine()
        session = await engine.load()
        session["a"] = 1
        assert await engine.commit() is CommitDecision.SAVE
        assert await engine.commit() is CommitDecision.NONE
        session["a"] = 2
        assert await engine.commit() is CommitDecision.SAVE

    @pytest.mark.asyncio
    async def test_destroy_clears_cookie(self):
        events = []
        app = Application(keys=KEYS)
        app.on_event(events.append)
        engine, ctx = make_engine(record={"a": 1}, app=app)
        await engine.load()
        engine.set(None)

        assert await engine.commit() is CommitDecision.DESTROY

        header = ctx.cookies.pending[-1]
        assert header.startswith(f"{KEY}=;")
        assert "Max-Age=0" in header
        assert engine.session.is_new
        assert "session:destroyed" in [e["event"] for e in events]

    @pytest.mark.asyncio
    async def test_before_save_hook(self):
        def stamp(ctx, session):
            session["stamped"] = True

        hook = MagicMock(side_effect=stamp)
        engine, ctx = make_engine({"before_save": hook})
        session = await engine.load()
        session["a"] = 1

        await engine.commit()

        hook.assert_called_once_with(ctx, session)
        assert written_record(ctx) == {"a": 1, "stamped": True}

    @pytest.mark.asyncio
    async def test_async_before_save_hook(self):
        hook = AsyncMock()
        engine, _ = make_engine({"before_save": hook})
        session = await engine.load()
        session["a"] = 1
        await engine.commit()
        hook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_before_save_not_called_on_no_op(self):
        hook = MagicMock()
        engine, _ = make_engine({"before_save": hook}, record={"a": 1})
        await engine.load()
        await engine.commit()
        hook.assert_not_called()

    @pytest.mark.asyncio
    async def test_saved_event_has_no_identifier_in_clear(self):
        events = []
        app = Application(keys=KEYS)
        app.on_event(events.append)
        engine, _ = make_engine(app=app)
        session = await engine.load()
        session["a"] = 1
        await engine.commit()
        saved = [e for e in events if e["event"] == "session:saved"]
        assert len(saved) == 1
        assert "session_id_hash" not in saved[0]

    @pytest.mark.asyncio
    async def test_event_handler_errors_swallowed(self):
        app = Application(keys=KEYS)

        @app.on_event
        def broken(event):
            raise RuntimeError("observer down")

        engine, _ = make_engine(app=app)
        session = await engine.load()
        session["a"] = 1
        assert await engine.commit() is CommitDecision.SAVE
