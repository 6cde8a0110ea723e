"""
ChatAgent - one generation cycle per user message.

Cycle (under a per-session FIFO lock, so messages of one session never
interleave):
  1. build the ContextSnapshot
  2. append the user message
  3. up to max_tool_turns model turns; every requested call is dispatched
     (request_id from the provider, or derived from session/message/turn/index)
  4. append the assistant message with its tool calls
  5. emit each result's actions on the ActionBridge

handle_message() runs the cycle to completion and returns a ChatResponse.
stream_message() returns a ResponseStream of the reply text. When that stream
is cancelled the partial reply is stored with interrupted=True, dispatched
tools still finish (and are cached), and their actions are not emitted. A
cancel that lands while the complete reply is being stored keeps that reply
as the only assistant message.

Each cycle runs in its own task, so the RequestContext it sets never leaks
into the caller.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from chat_orchestrator.errors import GenerationTimeout, InputValidationError, ProviderFailure, SessionNotFound
from chat_orchestrator.models import (
    Action,
    ContextSnapshot,
    Message,
    NewMessage,
    Role,
    ToolCall,
    derive_request_id,
    freeze,
)
from chat_orchestrator.shell.bridge import ActionBridge
from chat_orchestrator.shell.context import ContextAggregator, RequestContext, check_ui_state, set_request_context
from chat_orchestrator.shell.dispatcher import ToolContext, ToolDispatcher
from chat_orchestrator.shell.providers import FunctionCallRequest, ModelChunk, ModelProvider, ModelRequest, ToolExchange
from chat_orchestrator.shell.router import route_message
from chat_orchestrator.shell.sessions import SessionStore
from chat_orchestrator.shell.streaming import CancellationToken, ResponseStream, StreamingPipeline

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 10_000


@dataclass
class ChatRequest:
    user_id: str
    message: Any
    session_id: Optional[str] = None
    streaming: bool = False
    ui_state: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChatRequest":
        return cls(
            user_id=data.get("userId"),
            message=data.get("message"),
            session_id=data.get("sessionId"),
            streaming=bool(data.get("streaming", False)),
            ui_state=data.get("uiState") or {},
        )


@dataclass
class ChatResponse:
    success: bool
    message: str
    session_id: str
    function_calls: List[Dict[str, Any]] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "sessionId": self.session_id,
            "functionCalls": self.function_calls,
            "actions": [a.to_dict() for a in self.actions],
        }


@dataclass
class _Cycle:
    request: ChatRequest
    session_id: str
    context: RequestContext
    snapshot: Optional[ContextSnapshot] = None
    user_message: Optional[Message] = None
    assistant_message: Optional[Message] = None
    finishing: Optional["asyncio.Future[Message]"] = None
    text: List[str] = field(default_factory=list)
    calls: List[ToolCall] = field(default_factory=list)
    exchanges: List[ToolExchange] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)

    def response(self) -> ChatResponse:
        return ChatResponse(
            success=True,
            message="".join(self.text).strip(),
            session_id=self.session_id,
            function_calls=[
                {"name": e.call.name, "args": dict(e.call.to_dict()["arguments"]), "result": e.result.to_dict()}
                for e in self.exchanges
            ],
            actions=list(self.actions),
        )


def validate_request(request: ChatRequest) -> None:
    if not isinstance(request.user_id, str) or not request.user_id.strip():
        raise InputValidationError("userId is required", {"field": "userId"})
    if not isinstance(request.message, str):
        raise InputValidationError("message must be a string", {"field": "message"})
    if not request.message.strip():
        raise InputValidationError("message must not be empty", {"field": "message"})
    if len(request.message) > MAX_MESSAGE_CHARS:
        raise InputValidationError(
            f"message exceeds {MAX_MESSAGE_CHARS} characters",
            {"field": "message", "max_length": MAX_MESSAGE_CHARS},
        )
    if request.session_id is not None and not isinstance(request.session_id, str):
        raise InputValidationError("sessionId must be a string", {"field": "sessionId"})
    check_ui_state(request.ui_state)


class ChatAgent:
    def __init__(
        self,
        sessions: SessionStore,
        aggregator: ContextAggregator,
        dispatcher: ToolDispatcher,
        bridge: ActionBridge,
        provider: ModelProvider,
        pipeline: StreamingPipeline,
        max_tool_turns: int = 5,
        history_limit: int = 20,
        generation_timeout: float = 120.0,
    ):
        self.sessions = sessions
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.bridge = bridge
        self.provider = provider
        self.pipeline = pipeline
        self.max_tool_turns = max_tool_turns
        self.history_limit = history_limit
        self.generation_timeout = generation_timeout
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_message(self, request: ChatRequest) -> ChatResponse:
        cycle = await self._prepare(request)
        task = asyncio.ensure_future(self._drain(cycle))
        try:
            await asyncio.wait_for(task, timeout=self.generation_timeout)
        except asyncio.TimeoutError:
            raise GenerationTimeout(f"Generation exceeded {self.generation_timeout:g}s") from None
        return cycle.response()

    async def stream_message(self, request: ChatRequest) -> ResponseStream:
        """Validates and resolves the session up front; errors after that arrive as an error event."""
        cycle = await self._prepare(request)
        token = CancellationToken()
        return self.pipeline.open(
            self._run(cycle, token),
            token=token,
            done_data={"sessionId": cycle.session_id},
        )

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _prepare(self, request: ChatRequest) -> _Cycle:
        validate_request(request)
        session_id = await self._resolve_session(request)
        return _Cycle(
            request=request,
            session_id=session_id,
            context=RequestContext.new(request.user_id, session_id),
        )

    async def _resolve_session(self, request: ChatRequest) -> str:
        if not request.session_id:
            return await self.sessions.create_session(request.user_id, seed_title=request.message)
        try:
            session = await self.sessions.get_session(request.session_id)
        except SessionNotFound:
            if self.sessions.auto_create:
                return request.session_id
            raise
        if session.user_id != request.user_id:
            # Someone else's session looks exactly like a missing one.
            raise SessionNotFound(request.session_id)
        return request.session_id

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def _drain(self, cycle: _Cycle) -> None:
        async for _ in self._run(cycle):
            pass

    async def _run(self, cycle: _Cycle, token: Optional[CancellationToken] = None) -> AsyncIterator[str]:
        set_request_context(cycle.context)
        request = cycle.request
        async with self._lock(cycle.session_id):
            route = route_message(request.message)
            logger.info(
                "Cycle start session=%s user=%s corr=%s intent=%s signals=%s",
                cycle.session_id, request.user_id, cycle.context.correlation_id,
                route.intent.value, route.signals,
            )
            try:
                cycle.snapshot = await self.aggregator.build_snapshot(request.user_id, request.ui_state)
                cycle.user_message = await self.sessions.append(
                    cycle.session_id,
                    NewMessage(Role.USER, request.message, user_id=request.user_id),
                )
                turns = self._turns(cycle)
                try:
                    async for text in turns:
                        yield text
                finally:
                    await turns.aclose()
                await self._finish(cycle, token)
            except (asyncio.CancelledError, GeneratorExit):
                await self._store_interrupted(cycle)
                raise

    async def _turns(self, cycle: _Cycle) -> AsyncIterator[str]:
        history = tuple(await self.sessions.get_history(cycle.session_id, limit=self.history_limit))
        tools = tuple(self.dispatcher.tool_schemas())

        for turn in range(self.max_tool_turns + 1):
            final_turn = turn == self.max_tool_turns
            model_request = ModelRequest(
                history=history,
                snapshot=cycle.snapshot,
                tools=() if final_turn else tools,
                exchanges=tuple(cycle.exchanges),
                turn=turn,
            )
            calls: List[FunctionCallRequest] = []
            chunks = self._generate(model_request)
            try:
                async for chunk in chunks:
                    if chunk.text:
                        cycle.text.append(chunk.text)
                        yield chunk.text
                    calls.extend(chunk.function_calls)
            finally:
                await chunks.aclose()

            if not calls:
                return
            if final_turn:
                logger.warning("Tool turn budget (%d) exhausted; ignoring %d calls", self.max_tool_turns, len(calls))
                return
            await self._dispatch_calls(cycle, turn, calls)

    async def _generate(self, model_request: ModelRequest) -> AsyncIterator[ModelChunk]:
        stream = self.provider.generate(model_request)
        try:
            async for chunk in stream:
                yield chunk
        except ProviderFailure:
            raise
        except Exception as e:
            logger.exception("Provider %s failed", self.provider.name)
            raise ProviderFailure(f"Model provider error: {e}") from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _dispatch_calls(self, cycle: _Cycle, turn: int, calls: List[FunctionCallRequest]) -> None:
        for index, requested in enumerate(calls):
            request_id = requested.call_id or derive_request_id(
                cycle.session_id,
                cycle.user_message.id,
                turn,
                index,
                requested.name,
                requested.arguments,
            )
            call = ToolCall(name=requested.name, arguments=freeze(dict(requested.arguments)), request_id=request_id)
            cycle.calls.append(call)
            result = await self.dispatcher.dispatch(
                call,
                ToolContext(
                    request_id=request_id,
                    user_id=cycle.request.user_id,
                    session_id=cycle.session_id,
                    snapshot=cycle.snapshot,
                ),
            )
            logger.info(
                "Tool %s (%s) -> %s",
                call.name, request_id, "ok" if result.success else result.error_code,
            )
            cycle.exchanges.append(ToolExchange(turn=turn, call=call, result=result, call_id=requested.call_id))

    async def _finish(self, cycle: _Cycle, token: Optional[CancellationToken]) -> None:
        # Once started, the complete reply is stored even if the cycle is cancelled.
        cycle.finishing = asyncio.ensure_future(self.sessions.append(
            cycle.session_id,
            NewMessage(
                Role.ASSISTANT,
                "".join(cycle.text).strip(),
                tool_calls=tuple(cycle.calls),
                user_id=cycle.request.user_id,
            ),
        ))
        cycle.assistant_message = await asyncio.shield(cycle.finishing)
        for exchange in cycle.exchanges:
            cycle.actions.extend(exchange.result.side_effects)
        if token is not None and token.cancelled:
            return
        delivered = await self.bridge.dispatch_many(cycle.actions)
        logger.info("Cycle done session=%s actions=%d delivered=%d", cycle.session_id, len(cycle.actions), delivered)

    async def _store_interrupted(self, cycle: _Cycle) -> None:
        if cycle.user_message is None or cycle.assistant_message is not None:
            return
        if cycle.finishing is not None:
            try:
                cycle.assistant_message = await asyncio.shield(cycle.finishing)
            except Exception:
                logger.exception("Could not store reply for session=%s", cycle.session_id)
            return
        try:
            cycle.assistant_message = await self.sessions.append(
                cycle.session_id,
                NewMessage(
                    Role.ASSISTANT,
                    "".join(cycle.text),
                    tool_calls=tuple(cycle.calls),
                    user_id=cycle.request.user_id,
                    interrupted=True,
                ),
            )
            logger.info("Stored interrupted reply for session=%s (%d chars)", cycle.session_id, len(cycle.assistant_message.content))
        except Exception:
            logger.exception("Could not store interrupted reply for session=%s", cycle.session_id)
