"""
Chat agent tests: the full generation cycle with offline providers.

Usage:
    python3 -m pytest tests/test_agent.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import FailingProvider, ScriptedProvider, make_runtime


def _request(message, session_id=None, user_id="u1", **kwargs):
    from chat_orchestrator.shell.agent import ChatRequest
    return ChatRequest(user_id=user_id, message=message, session_id=session_id, **kwargs)


# ============================================================================
# 1. NON-STREAMING CYCLE
# ============================================================================

class TestHandleMessage:

    def test_greeting_creates_nothing(self, runtime):
        from chat_orchestrator.skills.workout_skills import WORKOUTS_COLLECTION
        response = asyncio.run(runtime.agent.handle_message(_request("Hey there!")))
        assert response.success
        assert response.message
        assert [c for c in response.function_calls if c["name"] == "create_workout"] == []
        assert response.actions == []
        assert runtime.store.query(WORKOUTS_COLLECTION) == []

    def test_create_back_workout(self, runtime):
        delivered = []
        runtime.bridge.subscribe(delivered.append)
        response = asyncio.run(runtime.agent.handle_message(_request("Create a back workout")))

        calls = [c for c in response.function_calls if c["name"] == "create_workout"]
        assert len(calls) == 1
        assert calls[0]["args"] == {"muscle_groups": ["back"]}
        assert calls[0]["result"]["success"] is True
        assert response.actions
        assert {a.type for a in response.actions} == {"update-data", "navigate", "show-notification"}
        assert [a.id for a in delivered] == [a.id for a in response.actions]
        assert "Back Workout" in response.message

    def test_history_records_both_turns(self, runtime):
        from chat_orchestrator.models import Role

        async def scenario():
            response = await runtime.agent.handle_message(_request("Create a back workout"))
            return response, await runtime.sessions.get_history(response.session_id)

        response, history = asyncio.run(scenario())
        assert [m.role for m in history] == [Role.USER, Role.ASSISTANT]
        assert history[0].content == "Create a back workout"
        assert [c.name for c in history[1].tool_calls] == ["create_workout"]
        assert history[1].content == response.message

    def test_new_session_is_titled_from_message(self, runtime):
        async def scenario():
            response = await runtime.agent.handle_message(_request("Hey there!"))
            return await runtime.sessions.get_session(response.session_id)

        assert asyncio.run(scenario()).title == "Hey there!"

    def test_follow_up_in_same_session(self, runtime):
        async def scenario():
            first = await runtime.agent.handle_message(_request("Create a back workout"))
            second = await runtime.agent.handle_message(_request("start my workout", session_id=first.session_id))
            return first, second, await runtime.sessions.get_history(first.session_id)

        first, second, history = asyncio.run(scenario())
        assert second.session_id == first.session_id
        assert [c["name"] for c in second.function_calls] == ["start_workout"]
        assert [m.seq for m in history] == [0, 1, 2, 3]

    def test_unmatched_exercise_is_reported_not_raised(self, runtime):
        async def scenario():
            first = await runtime.agent.handle_message(_request("Create a back workout"))
            await runtime.agent.handle_message(_request("start my workout", session_id=first.session_id))
            return await runtime.agent.handle_message(_request("log 5 reps of xyzzy", session_id=first.session_id))

        response = asyncio.run(scenario())
        (call,) = response.function_calls
        assert call["result"]["success"] is False
        assert call["result"]["error"]["code"] == "EXECUTION_FAILED"
        assert "couldn't complete log_set" in response.message
        assert response.actions == []

    def test_replay_of_same_message_does_not_duplicate_actions(self):
        from chat_orchestrator.models import derive_request_id
        runtime = make_runtime(provider=ScriptedProvider(calls=[]))
        try:
            delivered = []
            runtime.bridge.subscribe(delivered.append)
            rid = derive_request_id("s", "m", 0, 0, "navigate_to", {"page": "stats"})

            from chat_orchestrator.models import ToolCall, freeze
            from chat_orchestrator.shell.dispatcher import ToolContext
            call = ToolCall("navigate_to", freeze({"page": "stats"}), rid)

            async def scenario():
                for _ in range(2):
                    result = await runtime.dispatcher.dispatch(call, ToolContext(rid, "u1"))
                    await runtime.bridge.dispatch_many(result.side_effects)

            asyncio.run(scenario())
            assert len(delivered) == 1
        finally:
            runtime.close()


    def test_resubmitted_message_gets_new_request_ids(self, runtime):
        from chat_orchestrator.models import derive_request_id

        async def scenario():
            first = await runtime.agent.handle_message(_request("open the feed"))
            await runtime.agent.handle_message(_request("open the feed", session_id=first.session_id))
            return first.session_id, await runtime.sessions.get_history(first.session_id)

        sid, (user_1, reply_1, user_2, reply_2) = asyncio.run(scenario())
        (call_1,), (call_2,) = reply_1.tool_calls, reply_2.tool_calls
        assert call_1.request_id == derive_request_id(sid, user_1.id, 0, 0, "navigate_to", {"page": "feed"})
        assert call_2.request_id == derive_request_id(sid, user_2.id, 0, 0, "navigate_to", {"page": "feed"})
        assert call_1.request_id != call_2.request_id

# ============================================================================
# 2. VALIDATION & FAILURES
# ============================================================================

class TestFailures:

    @pytest.mark.parametrize("message", [None, "", "   ", 42, "x" * 10_001])
    def test_bad_message_rejected_before_model(self, message):
        from chat_orchestrator.errors import InputValidationError
        provider = ScriptedProvider()
        runtime = make_runtime(provider=provider)
        try:
            with pytest.raises(InputValidationError):
                asyncio.run(runtime.agent.handle_message(_request(message)))
            assert provider.requests == []
        finally:
            runtime.close()

    def test_missing_user_rejected(self, runtime):
        from chat_orchestrator.errors import InputValidationError
        with pytest.raises(InputValidationError):
            asyncio.run(runtime.agent.handle_message(_request("hi", user_id="")))

    def test_unknown_session(self, runtime):
        from chat_orchestrator.errors import SessionNotFound
        with pytest.raises(SessionNotFound):
            asyncio.run(runtime.agent.handle_message(_request("hi", session_id="missing")))

    def test_other_users_session_looks_missing(self, runtime):
        from chat_orchestrator.errors import SessionNotFound

        async def scenario():
            sid = await runtime.sessions.create_session("owner")
            await runtime.agent.handle_message(_request("hi", session_id=sid, user_id="intruder"))

        with pytest.raises(SessionNotFound):
            asyncio.run(scenario())

    def test_provider_failure(self):
        from chat_orchestrator.errors import ProviderFailure
        runtime = make_runtime(provider=FailingProvider())
        try:
            with pytest.raises(ProviderFailure):
                asyncio.run(runtime.agent.handle_message(_request("hi")))
        finally:
            runtime.close()

    def test_generation_timeout(self):
        from chat_orchestrator.errors import GenerationTimeout
        runtime = make_runtime(provider=ScriptedProvider(chunks=["slow "] * 50, delay=0.05), generation_timeout=0.1)
        try:
            with pytest.raises(GenerationTimeout):
                asyncio.run(runtime.agent.handle_message(_request("hi")))
        finally:
            runtime.close()

    def test_tool_turn_budget(self):
        from chat_orchestrator.shell.providers import FunctionCallRequest, ModelChunk, ModelProvider

        class Looping(ModelProvider):
            name = "looping"

            def __init__(self):
                self.turns = []

            async def generate(self, request):
                self.turns.append((request.turn, len(request.tools)))
                if request.tools:
                    yield ModelChunk(function_calls=(FunctionCallRequest("navigate_to", {"page": "home"}),))
                else:
                    yield ModelChunk(text="done")

        provider = Looping()
        runtime = make_runtime(provider=provider, max_tool_turns=2)
        try:
            response = asyncio.run(runtime.agent.handle_message(_request("loop")))
            assert [t for t, _ in provider.turns] == [0, 1, 2]
            assert provider.turns[-1][1] == 0
            assert len(response.function_calls) == 2
            assert response.message == "done"
        finally:
            runtime.close()

    @pytest.mark.parametrize("ui_state", [
        {"visibleElements": 5},
        {"visible_elements": "start-btn"},
        {"availableActions": [1, 2]},
        {"currentPage": 3},
        ["not", "a", "mapping"],
    ])
    def test_bad_ui_state_rejected_before_model(self, ui_state):
        from chat_orchestrator.errors import InputValidationError
        provider = ScriptedProvider()
        runtime = make_runtime(provider=provider)
        try:
            with pytest.raises(InputValidationError):
                asyncio.run(runtime.agent.handle_message(_request("hi", ui_state=ui_state)))
            assert provider.requests == []
        finally:
            runtime.close()

    def test_ui_state_accepts_both_key_styles(self):
        provider = ScriptedProvider()
        runtime = make_runtime(provider=provider)
        try:
            ui_state = {"visible_elements": ["start-btn"], "currentPage": "home"}
            asyncio.run(runtime.agent.handle_message(_request("hi", ui_state=ui_state)))
            snapshot = provider.requests[0].snapshot
            assert snapshot.visible_ui_elements == frozenset({"start-btn"})
            assert snapshot.current_page == "home"
        finally:
            runtime.close()

    def test_timeout_while_storing_reply_keeps_one_reply(self):
        from conftest import SlowCommitStore
        from chat_orchestrator.errors import GenerationTimeout
        # First commit (user message) is fast; the reply's commit outlives the timeout.
        runtime = make_runtime(
            provider=ScriptedProvider(chunks=["a ", "b"]),
            store=SlowCommitStore(delay=0.4, fast=1),
            generation_timeout=0.2,
        )
        try:
            async def scenario():
                sid = await runtime.sessions.create_session("u1")
                with pytest.raises(GenerationTimeout):
                    await runtime.agent.handle_message(_request("hi", session_id=sid))
                return await runtime.sessions.get_history(sid), await runtime.sessions.get_session(sid)

            history, session = asyncio.run(scenario())
            assert [(m.seq, m.role.value, m.content, m.interrupted) for m in history] == [
                (0, "user", "hi", False),
                (1, "assistant", "a b", False),
            ]
            assert session.message_count == 2
        finally:
            runtime.close()


# ============================================================================
# 3. STREAMING
# ============================================================================

class TestStreamMessage:

    def test_stream_chunks_then_done(self):
        from chat_orchestrator.shell.streaming import StreamEventType
        runtime = make_runtime(provider=ScriptedProvider(chunks=["a ", "b ", "c"]))
        try:
            async def scenario():
                stream = await runtime.agent.stream_message(_request("hi"))
                events = await stream.collect()
                history = await runtime.sessions.get_history(events[-1].data["sessionId"])
                return events, history

            events, history = asyncio.run(scenario())
            assert [e.type for e in events] == [StreamEventType.CHUNK] * 3 + [StreamEventType.DONE]
            assert "".join(e.text for e in events[:3]) == "a b c"
            assert history[-1].content == "a b c"
            assert not history[-1].interrupted
        finally:
            runtime.close()

    def test_stream_provider_failure_is_one_error_event(self):
        from chat_orchestrator.shell.streaming import StreamEventType
        runtime = make_runtime(provider=FailingProvider(after=2))
        try:
            events = asyncio.run(self._collect(runtime, "hi"))
            assert [e.type for e in events] == [StreamEventType.CHUNK] * 2 + [StreamEventType.ERROR]
            assert events[-1].error.code == "PROVIDER_FAILURE"
        finally:
            runtime.close()

    def test_cancel_stores_partial_reply(self):
        from chat_orchestrator.models import Role
        from chat_orchestrator.shell.providers import FunctionCallRequest
        from chat_orchestrator.skills.workout_skills import WORKOUTS_COLLECTION

        provider = ScriptedProvider(
            chunks=[f"w{i} " for i in range(100)],
            calls=[FunctionCallRequest("create_workout", {"muscle_groups": ["back"]})],
            delay=0.01,
        )
        runtime = make_runtime(provider=provider)
        delivered = []
        runtime.bridge.subscribe(delivered.append)
        try:
            async def scenario():
                stream = await runtime.agent.stream_message(_request("make it"))
                first = await stream.__anext__()
                await stream.aclose()
                rest = await stream.collect()
                (session,) = await runtime.sessions.list_sessions("u1")
                return first, rest, await runtime.sessions.get_history(session.id)

            first, rest, history = asyncio.run(scenario())
            assert rest == []
            reply = history[-1]
            assert reply.role is Role.ASSISTANT
            assert reply.interrupted
            assert reply.content.startswith(first.text)
            assert [c.name for c in reply.tool_calls] == ["create_workout"]
            # The tool still ran and was recorded; its actions were withheld.
            assert len(runtime.store.query(WORKOUTS_COLLECTION)) == 1
            assert runtime.dispatcher.cached_result(reply.tool_calls[0].request_id).success
            assert delivered == []
        finally:
            runtime.close()

    def test_cancel_while_storing_reply_keeps_one_reply(self):
        from conftest import SlowCommitStore
        runtime = make_runtime(
            provider=ScriptedProvider(chunks=["a ", "b ", "c"]),
            store=SlowCommitStore(delay=0.3, fast=1),
        )
        try:
            async def scenario():
                sid = await runtime.sessions.create_session("u1")
                stream = await runtime.agent.stream_message(_request("hi", session_id=sid))
                for _ in range(3):
                    await stream.__anext__()
                await asyncio.sleep(0.05)
                await stream.aclose()
                return await runtime.sessions.get_history(sid), await runtime.sessions.get_session(sid)

            history, session = asyncio.run(scenario())
            assert [(m.seq, m.role.value, m.content, m.interrupted) for m in history] == [
                (0, "user", "hi", False),
                (1, "assistant", "a b c", False),
            ]
            assert session.message_count == 2
        finally:
            runtime.close()

    def test_cancel_while_tool_runs(self):
        from pydantic import BaseModel
        from chat_orchestrator.shell.dispatcher import ActionSpec, ToolOutcome
        from chat_orchestrator.shell.providers import FunctionCallRequest

        class NoArgs(BaseModel):
            pass

        ran = []

        async def slow_tool(args, ctx):
            await asyncio.sleep(0.2)
            ran.append(ctx.request_id)
            return ToolOutcome(payload={"message": "done"}, actions=[ActionSpec("show-notification", {"text": "done"})])

        runtime = make_runtime(provider=ScriptedProvider(calls=[FunctionCallRequest("slow_tool", {})]))
        runtime.dispatcher.register_tool("slow_tool", NoArgs, slow_tool, description="Takes a while")
        delivered = []
        runtime.bridge.subscribe(delivered.append)
        try:
            async def scenario():
                sid = await runtime.sessions.create_session("u1")
                stream = await runtime.agent.stream_message(_request("go", session_id=sid))
                await asyncio.sleep(0.05)
                await stream.aclose()
                (reply,) = [m for m in await runtime.sessions.get_history(sid) if m.role.value == "assistant"]
                request_id = reply.tool_calls[0].request_id
                for _ in range(100):
                    if runtime.dispatcher.cached_result(request_id) is not None:
                        break
                    await asyncio.sleep(0.01)
                return reply, request_id

            reply, request_id = asyncio.run(scenario())
            assert reply.interrupted
            assert [c.name for c in reply.tool_calls] == ["slow_tool"]
            assert ran == [request_id]
            assert runtime.dispatcher.cached_result(request_id).success
            assert delivered == []
        finally:
            runtime.close()

    @staticmethod
    async def _collect(runtime, message):
        stream = await runtime.agent.stream_message(_request(message))
        return await stream.collect()


# ============================================================================
# 4. CONCURRENCY
# ============================================================================

class TestSessionSerialization:

    def test_same_session_messages_never_interleave(self):
        provider = ScriptedProvider(chunks=["r "] * 5, delay=0.02)
        runtime = make_runtime(provider=provider)
        try:
            async def scenario():
                sid = await runtime.sessions.create_session("u1")
                first = asyncio.ensure_future(runtime.agent.handle_message(_request("first", session_id=sid)))
                await asyncio.sleep(0.03)
                second = asyncio.ensure_future(runtime.agent.handle_message(_request("second", session_id=sid)))
                await asyncio.gather(first, second)
                return await runtime.sessions.get_history(sid)

            history = asyncio.run(scenario())
            assert [(m.seq, m.role.value, m.content) for m in history] == [
                (0, "user", "first"),
                (1, "assistant", "r r r r r"),
                (2, "user", "second"),
                (3, "assistant", "r r r r r"),
            ]
            # The second cycle saw the whole first exchange.
            assert [m.content for m in provider.requests[1].history] == ["first", "r r r r r", "second"]
        finally:
            runtime.close()

    def test_session_locks_are_released(self, runtime):
        import gc

        async def scenario():
            for _ in range(3):
                await runtime.agent.handle_message(_request("Hey there!"))

        asyncio.run(scenario())
        gc.collect()
        assert len(runtime.agent._locks) == 0
        assert len(runtime.sessions._locks) == 0
