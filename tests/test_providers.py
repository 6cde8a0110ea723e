"""
Model provider tests: rules provider behavior and Gemini wiring with a fake client.

Usage:
    python3 -m pytest tests/test_providers.py -v
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest


def _part(text=None, function_call=None, thought=None):
    return SimpleNamespace(text=text, function_call=function_call, thought=thought)


def _response(*parts, usage=None):
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))], usage_metadata=usage)


class _FakeModels:
    def __init__(self, responses=(), error=None):
        self.responses = list(responses)
        self.error = error
        self.calls = []

    async def generate_content_stream(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error

        async def _stream():
            for r in self.responses:
                yield r

        return _stream()


def _fake_client(models):
    return SimpleNamespace(aio=SimpleNamespace(models=models))


async def _drain(provider, request):
    return [chunk async for chunk in provider.generate(request)]


# ============================================================================
# 1. RULES
# ============================================================================

class TestRuleBasedProvider:

    def test_split_chunks_rejoins(self):
        from chat_orchestrator.shell.providers import split_chunks
        text = "one two  three four five"
        pieces = split_chunks(text, 2)
        assert "".join(pieces) == text
        assert len(pieces) == 3

    def test_only_offered_tools_are_called(self):
        from chat_orchestrator.shell.providers import FALLBACK_REPLY, ModelRequest, RuleBasedProvider
        chunks = asyncio.run(_drain(RuleBasedProvider(), ModelRequest(prompt="Create a back workout")))
        assert all(not c.function_calls for c in chunks)
        assert "".join(c.text for c in chunks) == FALLBACK_REPLY

    def test_calls_tool_when_offered(self):
        from chat_orchestrator.shell.providers import ModelRequest, RuleBasedProvider
        request = ModelRequest(prompt="open the feed", tools=({"name": "navigate_to"},))
        (chunk,) = asyncio.run(_drain(RuleBasedProvider(), request))
        (call,) = chunk.function_calls
        assert call.name == "navigate_to"
        assert dict(call.arguments) == {"page": "feed"}


# ============================================================================
# 2. GEMINI (fake client)
# ============================================================================

class TestGeminiProvider:

    def test_text_and_function_calls_are_parsed(self):
        from chat_orchestrator.shell.providers import GeminiProvider, ModelRequest
        fc = SimpleNamespace(name="navigate_to", args={"page": "home"}, id="call-1")
        models = _FakeModels([
            _response(_part(text="thinking...", thought=True), _part(text="Sure. ")),
            _response(_part(function_call=fc)),
        ])
        provider = GeminiProvider(client=_fake_client(models))
        request = ModelRequest(prompt="go home", tools=({"name": "navigate_to", "description": "nav", "parameters": {"type": "object"}},))
        chunks = asyncio.run(_drain(provider, request))

        assert chunks[0].text == "Sure. "
        (call,) = chunks[1].function_calls
        assert (call.name, dict(call.arguments), call.call_id) == ("navigate_to", {"page": "home"}, "call-1")
        config = models.calls[0]["config"]
        assert config.tools[0].function_declarations[0].name == "navigate_to"
        assert config.automatic_function_calling.disable is True

    def test_request_error_is_provider_failure(self):
        from chat_orchestrator.errors import ProviderFailure
        from chat_orchestrator.shell.providers import GeminiProvider, ModelRequest
        provider = GeminiProvider(client=_fake_client(_FakeModels(error=ConnectionError("refused"))))
        with pytest.raises(ProviderFailure):
            asyncio.run(_drain(provider, ModelRequest(prompt="hi")))

    def test_exchanges_echo_provider_ids_only(self):
        from chat_orchestrator.models import ToolCall, ToolResult, freeze
        from chat_orchestrator.shell.providers import GeminiProvider, ModelRequest, ToolExchange
        call = ToolCall("navigate_to", freeze({"page": "home"}), "derived-id")
        result = ToolResult("derived-id", "navigate_to", True, payload=freeze({"message": "ok"}))
        request = ModelRequest(prompt="go", exchanges=(ToolExchange(0, call, result),), turn=1)

        contents = GeminiProvider(client=_fake_client(_FakeModels()))._contents(request)
        assert [c.role for c in contents] == ["user", "model", "user"]
        assert contents[1].parts[0].function_call.id is None
        assert contents[2].parts[0].function_response.response == {"message": "ok"}

    def test_usage_is_tracked(self, store):
        from chat_orchestrator.libs.usage_tracker import USAGE_COLLECTION, UsageTracker
        from chat_orchestrator.shell.providers import GeminiProvider, ModelRequest
        usage = SimpleNamespace(prompt_token_count=10, candidates_token_count=5, total_token_count=15, thoughts_token_count=None)
        models = _FakeModels([_response(_part(text="hi"), usage=usage)])
        provider = GeminiProvider(client=_fake_client(models), usage_tracker=UsageTracker(store, enabled=True))

        async def scenario():
            await _drain(provider, ModelRequest(prompt="hi"))
            # Let the executor write land.
            for _ in range(50):
                if store.query(USAGE_COLLECTION):
                    break
                await asyncio.sleep(0.01)

        asyncio.run(scenario())
        (doc,) = store.query(USAGE_COLLECTION)
        assert doc.data["total_tokens"] == 15
        assert doc.data["feature"] == "chat"
