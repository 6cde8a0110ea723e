"""
Session store tests: ordering under concurrency, lifecycle, titles.

Usage:
    python3 -m pytest tests/test_session_store.py -v
"""

from __future__ import annotations

import asyncio

import pytest


# ============================================================================
# 1. ORDERING
# ============================================================================

class TestAppendOrdering:

    def test_concurrent_appends_keep_call_order(self, store):
        from chat_orchestrator.models import NewMessage, Role
        from chat_orchestrator.shell.sessions import SessionStore

        async def scenario():
            sessions = SessionStore(store)
            sid = await sessions.create_session("u1")
            await asyncio.gather(*(
                sessions.append(sid, NewMessage(Role.USER, f"m{i}", user_id="u1")) for i in range(20)
            ))
            return await sessions.get_history(sid)

        history = asyncio.run(scenario())
        assert [m.content for m in history] == [f"m{i}" for i in range(20)]
        assert [m.seq for m in history] == list(range(20))
        stamps = [m.timestamp for m in history]
        assert stamps == sorted(stamps)

    def test_sessions_are_independent(self, store):
        from chat_orchestrator.models import NewMessage, Role
        from chat_orchestrator.shell.sessions import SessionStore

        async def scenario():
            sessions = SessionStore(store)
            a = await sessions.create_session("u1")
            b = await sessions.create_session("u2")
            appends = []
            for i in range(10):
                appends.append(sessions.append(a, NewMessage(Role.USER, f"a{i}", user_id="u1")))
                appends.append(sessions.append(b, NewMessage(Role.USER, f"b{i}", user_id="u2")))
            await asyncio.gather(*appends)
            return await sessions.get_history(a), await sessions.get_history(b)

        history_a, history_b = asyncio.run(scenario())
        assert [m.content for m in history_a] == [f"a{i}" for i in range(10)]
        assert [m.content for m in history_b] == [f"b{i}" for i in range(10)]

    def test_history_limit_returns_most_recent_oldest_first(self, store):
        from chat_orchestrator.models import NewMessage, Role
        from chat_orchestrator.shell.sessions import SessionStore

        async def scenario():
            sessions = SessionStore(store)
            sid = await sessions.create_session("u1")
            for i in range(5):
                await sessions.append(sid, NewMessage(Role.USER, f"m{i}", user_id="u1"))
            return await sessions.get_history(sid, limit=2), await sessions.get_history(sid, limit=0)

        last_two, none = asyncio.run(scenario())
        assert [m.content for m in last_two] == ["m3", "m4"]
        assert none == []

    def test_tool_calls_round_trip(self, store):
        from chat_orchestrator.models import NewMessage, Role, ToolCall, freeze
        from chat_orchestrator.shell.sessions import SessionStore

        call = ToolCall("create_workout", freeze({"muscle_groups": ["back"]}), "req-1")

        async def scenario():
            sessions = SessionStore(store)
            sid = await sessions.create_session("u1")
            await sessions.append(sid, NewMessage(Role.ASSISTANT, "done", tool_calls=(call,)))
            return await sessions.get_history(sid)

        (message,) = asyncio.run(scenario())
        assert message.role is Role.ASSISTANT
        assert message.tool_calls == (call,)

    def test_cancelled_append_lands_before_the_next_one(self):
        from conftest import SlowCommitStore
        from chat_orchestrator.models import NewMessage, Role
        from chat_orchestrator.shell.sessions import SessionStore

        sessions = SessionStore(SlowCommitStore(delay=0.3))

        async def scenario():
            sid = await sessions.create_session("u1")
            first = asyncio.ensure_future(sessions.append(sid, NewMessage(Role.USER, "one", user_id="u1")))
            await asyncio.sleep(0.05)
            first.cancel()
            with pytest.raises(asyncio.CancelledError):
                await first
            await sessions.append(sid, NewMessage(Role.USER, "two", user_id="u1"))
            return await sessions.get_history(sid), await sessions.get_session(sid)

        history, session = asyncio.run(scenario())
        assert [(m.seq, m.content) for m in history] == [(0, "one"), (1, "two")]
        assert session.message_count == 2

    def test_locks_are_released_after_use(self, store):
        import gc
        from chat_orchestrator.models import NewMessage, Role
        from chat_orchestrator.shell.sessions import SessionStore

        sessions = SessionStore(store)

        async def scenario():
            kept = await sessions.create_session("u1")
            dropped = await sessions.create_session("u1")
            for sid in (kept, dropped):
                await sessions.append(sid, NewMessage(Role.USER, "hi", user_id="u1"))
            await sessions.rename_session(kept, "Renamed")
            await sessions.delete_session(dropped)

        asyncio.run(scenario())
        gc.collect()
        assert len(sessions._locks) == 0


# ============================================================================
# 2. LIFECYCLE
# ============================================================================

class TestSessionLifecycle:

    def test_append_to_missing_session_raises(self, store):
        from chat_orchestrator.errors import SessionNotFound
        from chat_orchestrator.models import NewMessage, Role
        from chat_orchestrator.shell.sessions import SessionStore

        with pytest.raises(SessionNotFound):
            asyncio.run(SessionStore(store).append("missing", NewMessage(Role.USER, "hi", user_id="u1")))

    def test_auto_create(self, store):
        from chat_orchestrator.models import NewMessage, Role
        from chat_orchestrator.shell.sessions import SessionStore

        async def scenario():
            sessions = SessionStore(store, auto_create=True)
            message = await sessions.append("s-auto", NewMessage(Role.USER, "Plan my week", user_id="u1"))
            return message, await sessions.get_session("s-auto")

        message, session = asyncio.run(scenario())
        assert message.seq == 0
        assert session.user_id == "u1"
        assert session.title == "Plan my week"
        assert session.message_count == 1

    def test_create_requires_user(self, store):
        from chat_orchestrator.errors import InputValidationError
        from chat_orchestrator.shell.sessions import SessionStore

        with pytest.raises(InputValidationError):
            asyncio.run(SessionStore(store).create_session(""))

    def test_summary_fields_follow_appends(self, store):
        from chat_orchestrator.models import NewMessage, Role
        from chat_orchestrator.shell.sessions import SessionStore

        async def scenario():
            sessions = SessionStore(store)
            sid = await sessions.create_session("u1")
            await sessions.append(sid, NewMessage(Role.USER, "first", user_id="u1"))
            await sessions.append(sid, NewMessage(Role.ASSISTANT, "second"))
            return await sessions.get_session(sid)

        session = asyncio.run(scenario())
        assert session.message_count == 2
        assert session.last_message == "second"

    def test_list_most_recent_first(self, store):
        from chat_orchestrator.models import NewMessage, Role
        from chat_orchestrator.shell.sessions import SessionStore

        async def scenario():
            sessions = SessionStore(store)
            old = await sessions.create_session("u1", seed_title="old")
            new = await sessions.create_session("u1", seed_title="new")
            await sessions.create_session("u2")
            await sessions.append(old, NewMessage(Role.USER, "bump", user_id="u1"))
            return old, new, await sessions.list_sessions("u1")

        old, new, listed = asyncio.run(scenario())
        assert [s.id for s in listed] == [old, new]

    def test_rename(self, store):
        from chat_orchestrator.errors import InputValidationError, SessionNotFound
        from chat_orchestrator.shell.sessions import SessionStore

        async def scenario():
            sessions = SessionStore(store)
            sid = await sessions.create_session("u1")
            await sessions.rename_session(sid, "  Leg   day ")
            return await sessions.get_session(sid)

        assert asyncio.run(scenario()).title == "Leg day"
        with pytest.raises(SessionNotFound):
            asyncio.run(SessionStore(store).rename_session("missing", "x"))
        with pytest.raises(InputValidationError):
            asyncio.run(SessionStore(store).rename_session("missing", "   "))

    def test_delete_removes_messages(self, store):
        from chat_orchestrator.errors import SessionNotFound
        from chat_orchestrator.models import NewMessage, Role
        from chat_orchestrator.shell.sessions import MESSAGES_COLLECTION, SessionStore

        async def scenario():
            sessions = SessionStore(store)
            sid = await sessions.create_session("u1")
            await sessions.append(sid, NewMessage(Role.USER, "hello", user_id="u1"))
            await sessions.delete_session(sid)
            return sid

        sid = asyncio.run(scenario())
        assert store.query(MESSAGES_COLLECTION, [("sessionId", "==", sid)]) == []
        with pytest.raises(SessionNotFound):
            asyncio.run(SessionStore(store).get_session(sid))


# ============================================================================
# 3. TITLES
# ============================================================================

class TestDeriveTitle:

    def test_default(self):
        from chat_orchestrator.shell.sessions import DEFAULT_TITLE, derive_title
        assert derive_title(None) == DEFAULT_TITLE
        assert derive_title("   ") == DEFAULT_TITLE

    def test_truncates(self):
        from chat_orchestrator.shell.sessions import TITLE_MAX_CHARS, derive_title
        title = derive_title("x" * 50)
        assert title == "x" * TITLE_MAX_CHARS + "..."
