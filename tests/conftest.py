"""Shared fixtures: in-memory store, offline runtime, scripted providers."""

from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterator, List, Sequence

import pytest

from chat_orchestrator.config import Settings
from chat_orchestrator.libs.store import InMemoryDocumentStore
from chat_orchestrator.runtime import Runtime
from chat_orchestrator.shell.providers import FunctionCallRequest, ModelChunk, ModelProvider, ModelRequest


class ScriptedProvider(ModelProvider):
    """
    Turn 0: the scripted function calls (if any, and if offered as tools).
    Later turns, or no calls: the scripted text chunks, `delay` seconds apart.
    """

    name = "scripted"
    model = "scripted-v1"

    def __init__(self, chunks: Sequence[str] = ("one ", "two ", "three"), calls: Sequence[FunctionCallRequest] = (), delay: float = 0.0):
        self.chunks = list(chunks)
        self.calls = list(calls)
        self.delay = delay
        self.requests: List[ModelRequest] = []

    async def generate(self, request: ModelRequest) -> AsyncIterator[ModelChunk]:
        self.requests.append(request)
        offered = [c for c in self.calls if c.name in request.tool_names]
        if request.turn == 0 and offered:
            yield ModelChunk(function_calls=tuple(offered))
            return
        for chunk in self.chunks:
            await asyncio.sleep(self.delay)
            yield ModelChunk(text=chunk)


class FailingProvider(ModelProvider):
    name = "failing"

    def __init__(self, after: int = 0):
        self.after = after

    async def generate(self, request: ModelRequest) -> AsyncIterator[ModelChunk]:
        for i in range(self.after):
            yield ModelChunk(text=f"part{i} ")
        raise RuntimeError("backend unavailable")


class SlowCommitStore(InMemoryDocumentStore):
    """In-memory store whose commits (after the first `fast` ones) take `delay` seconds."""

    def __init__(self, delay: float = 0.2, fast: int = 0):
        super().__init__()
        self.delay = delay
        self.fast = fast
        self.commits = 0

    def commit(self, batch) -> None:
        self.commits += 1
        if self.commits > self.fast:
            time.sleep(self.delay)
        super().commit(batch)


def make_runtime(provider: Any = None, store: Any = None, **overrides: Any) -> Runtime:
    settings = Settings(**overrides)
    return Runtime(settings, store=store or InMemoryDocumentStore(), provider=provider)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def runtime():
    rt = make_runtime()
    yield rt
    rt.close()
