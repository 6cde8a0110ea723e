"""
Runtime - builds every component once per process and owns the event loop.

No module-level singletons: Runtime constructs the store, matcher, skills,
dispatcher, bridge, aggregator, sessions, provider, pipeline and agent, and
passes them to each other by reference. close() tears them down.

The asyncio loop runs in a background thread so sync callers (Flask, click)
can submit coroutines with run() and consume async streams with iterate().
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Any, AsyncIterator, Awaitable, Iterator, List, Optional, TypeVar

from chat_orchestrator.catalog.matcher import ExerciseMatcher
from chat_orchestrator.config import Settings
from chat_orchestrator.libs.store import DocumentStore, FirestoreDocumentStore, InMemoryDocumentStore
from chat_orchestrator.libs.tools_functions.client import FunctionsClient
from chat_orchestrator.libs.usage_tracker import UsageTracker
from chat_orchestrator.shell.agent import ChatAgent
from chat_orchestrator.shell.bridge import ActionBridge
from chat_orchestrator.shell.context import (
    ContextAggregator,
    ContextSource,
    FunctionsProfileSource,
    FunctionsWorkoutSource,
    StoreProfileSource,
    StoreWorkoutSource,
)
from chat_orchestrator.shell.dispatcher import ToolDispatcher
from chat_orchestrator.shell.providers import GeminiProvider, ModelProvider, RuleBasedProvider
from chat_orchestrator.shell.sessions import SessionStore
from chat_orchestrator.shell.streaming import StreamingPipeline
from chat_orchestrator.shell.tools import BuiltinTools, register_builtin_tools
from chat_orchestrator.skills.coach_skills import CoachSkills
from chat_orchestrator.skills.workout_skills import WorkoutSkills

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "firestore":
        return FirestoreDocumentStore(project=settings.google_project)
    if settings.store_backend != "memory":
        raise ValueError(f"Unknown STORE_BACKEND: {settings.store_backend}")
    return InMemoryDocumentStore()


def build_provider(settings: Settings, usage: Optional[UsageTracker] = None) -> ModelProvider:
    if settings.model_provider == "gemini":
        return GeminiProvider(
            model=settings.gemini_model,
            api_key=settings.google_api_key,
            vertexai=settings.use_vertexai,
            project=settings.google_project,
            location=settings.google_location,
            usage_tracker=usage,
        )
    if settings.model_provider != "rules":
        raise ValueError(f"Unknown MODEL_PROVIDER: {settings.model_provider}")
    return RuleBasedProvider()


class Runtime:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[DocumentStore] = None,
        provider: Optional[ModelProvider] = None,
    ):
        self.settings = settings or Settings.from_env()
        s = self.settings

        self.store = store or build_store(s)
        self.usage = UsageTracker(self.store, enabled=s.enable_usage_tracking)
        self.provider = provider or build_provider(s, self.usage)
        self.matcher = ExerciseMatcher()

        self.dispatcher = ToolDispatcher(timeout=s.tool_timeout, cache_size=s.tool_result_cache_size)
        register_builtin_tools(
            self.dispatcher,
            BuiltinTools(WorkoutSkills(self.store, self.matcher), CoachSkills(self.store, self.matcher)),
        )

        self.functions: Optional[FunctionsClient] = None
        sources: List[ContextSource]
        if s.functions_base_url:
            self.functions = FunctionsClient(
                base_url=s.functions_base_url,
                api_key=s.functions_api_key,
                timeout_seconds=s.context_source_timeout,
            )
            sources = [
                FunctionsProfileSource(self.functions, timeout=s.context_source_timeout),
                FunctionsWorkoutSource(self.functions, limit=s.recent_workouts_limit, timeout=s.context_source_timeout),
            ]
        else:
            sources = [StoreProfileSource(self.store), StoreWorkoutSource(self.store, limit=s.recent_workouts_limit)]
        self.aggregator = ContextAggregator(
            sources,
            timeout=s.context_source_timeout,
            recent_workouts_limit=s.recent_workouts_limit,
            default_actions=self.dispatcher.tool_names(),
        )

        self.sessions = SessionStore(self.store, auto_create=s.session_auto_create)
        self.bridge = ActionBridge(dedup_size=s.action_dedup_size)
        self.pipeline = StreamingPipeline(self.provider, buffer_size=s.stream_buffer_size, timeout=s.generation_timeout)
        self.agent = ChatAgent(
            sessions=self.sessions,
            aggregator=self.aggregator,
            dispatcher=self.dispatcher,
            bridge=self.bridge,
            provider=self.provider,
            pipeline=self.pipeline,
            max_tool_turns=s.max_tool_turns,
            history_limit=s.history_limit,
            generation_timeout=s.generation_timeout,
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        logger.info(
            "Runtime ready provider=%s store=%s tools=%d",
            self.provider.name, type(self.store).__name__, len(self.dispatcher.tool_names()),
        )

    # ------------------------------------------------------------------
    # Loop thread
    # ------------------------------------------------------------------

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self.start()
        return self._loop

    def start(self) -> "Runtime":
        if self._loop is not None:
            return self
        if self._closed:
            raise RuntimeError("Runtime is closed")
        loop = asyncio.new_event_loop()
        ready = threading.Event()

        def _run() -> None:
            asyncio.set_event_loop(loop)
            loop.call_soon(ready.set)
            loop.run_forever()

        self._thread = threading.Thread(target=_run, name="chat-orchestrator-loop", daemon=True)
        self._thread.start()
        ready.wait()
        self._loop = loop
        return self

    def submit(self, coro: Awaitable[T]) -> "Future[T]":
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def run(self, coro: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Run a coroutine on the runtime loop and block for its result."""
        return self.submit(coro).result(timeout)

    def iterate(self, stream: AsyncIterator[T]) -> Iterator[T]:
        """
        Consume an async iterator from a sync thread.

        Closing the returned generator early (client disconnect) closes the
        stream on the loop, which cancels it.
        """
        exhausted = False
        try:
            while True:
                item = self.run(_next_or_sentinel(stream))
                if item is _END:
                    exhausted = True
                    return
                yield item
        finally:
            if not exhausted:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None and not self.loop.is_closed():
                    self.run(aclose())

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.bridge.close()
        if self._loop is not None:
            try:
                self.run(self.provider.aclose(), timeout=5)
            except Exception as e:
                logger.warning("Provider close failed: %s", e)
            self._loop.call_soon_threadsafe(self._loop.stop)
            if self._thread is not None:
                self._thread.join(timeout=5)
            self._loop.close()
        if self.functions is not None:
            self.functions.close()
        self.store.close()
        logger.info("Runtime closed")

    def __enter__(self) -> "Runtime":
        return self.start()

    def __exit__(self, *exc: Any) -> None:
        self.close()


_END = object()


async def _next_or_sentinel(stream: AsyncIterator[Any]) -> Any:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return _END
