"""
Streaming Response Pipeline.

open(source) wraps an async iterator of text chunks into a ResponseStream: an
async iterator of StreamEvent ("chunk", "done", "error") with an explicit
CancellationToken.

Guarantees:
- chunks arrive in source order
- exactly one terminal event: done XOR error
- after cancel() nothing more is delivered, not even a terminal event
- cancellation closes the source (aclose), releasing the provider connection
- chunks already delivered stay delivered

A producer task pumps the source into a bounded asyncio.Queue, so a slow
consumer blocks the producer instead of buffering without limit. The whole
stream is bounded by a generation timeout.

stream(prompt, snapshot, on_chunk, on_done, on_error) keeps the callback form
on top of the same machinery.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

from chat_orchestrator.errors import GenerationTimeout, OrchestratorError, ProviderFailure
from chat_orchestrator.models import ContextSnapshot

logger = logging.getLogger(__name__)


class StreamEventType(str, Enum):
    CHUNK = "chunk"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    type: StreamEventType
    text: str = ""
    error: Optional[OrchestratorError] = None
    data: Mapping[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.type is not StreamEventType.CHUNK

    def to_dict(self) -> Dict[str, Any]:
        if self.type is StreamEventType.CHUNK:
            return {"chunk": self.text}
        if self.type is StreamEventType.DONE:
            return dict(self.data, done=True)
        return {"error": self.error.message if self.error else "Unknown error", "code": self.error.code if self.error else None}

    def to_sse(self) -> str:
        """One server-sent event; each line is independently parseable JSON."""
        return f"data: {json.dumps(self.to_dict())}\n\n"


class CancellationToken:
    """Cooperative cancellation flag with callbacks. Loop-thread only."""

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)


class ResponseStream:
    def __init__(
        self,
        source: AsyncIterator[str],
        buffer_size: int = 64,
        timeout: Optional[float] = None,
        token: Optional[CancellationToken] = None,
        done_data: Optional[Mapping[str, Any]] = None,
    ):
        self._source = source
        self._timeout = timeout
        self._done_data = dict(done_data or {})
        self.token = token or CancellationToken()
        self._queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue(maxsize=max(1, buffer_size))
        self._cancel_event = asyncio.Event()
        self._finished = False
        self._producer = asyncio.ensure_future(self._produce())
        self.token.add_callback(self._on_cancel)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def cancel(self) -> None:
        self.token.cancel()

    async def aclose(self) -> None:
        """Cancel and wait until the producer (and its source cleanup) has finished."""
        self.cancel()
        await asyncio.gather(self._producer, return_exceptions=True)

    async def wait_closed(self) -> None:
        await asyncio.gather(self._producer, return_exceptions=True)

    def __aiter__(self) -> "ResponseStream":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished or self.cancelled:
            raise StopAsyncIteration
        getter = asyncio.ensure_future(self._queue.get())
        stopper = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not getter.done():
                getter.cancel()
        if self.cancelled or not getter.done() or getter.cancelled():
            self._finished = True
            raise StopAsyncIteration
        event = getter.result()
        if event.terminal:
            self._finished = True
        return event

    async def collect(self) -> List[StreamEvent]:
        return [event async for event in self]

    # ------------------------------------------------------------------

    def _on_cancel(self) -> None:
        self._cancel_event.set()
        if not self._producer.done():
            self._producer.cancel()

    async def _produce(self) -> None:
        try:
            try:
                await asyncio.wait_for(self._pump(), timeout=self._timeout)
            except asyncio.TimeoutError:
                await self._emit(StreamEvent(
                    StreamEventType.ERROR,
                    error=GenerationTimeout(f"Generation exceeded {self._timeout:g}s"),
                ))
            except OrchestratorError as e:
                await self._emit(StreamEvent(StreamEventType.ERROR, error=e))
            except Exception as e:
                logger.exception("Stream source failed")
                await self._emit(StreamEvent(StreamEventType.ERROR, error=ProviderFailure(str(e) or type(e).__name__)))
            else:
                await self._emit(StreamEvent(StreamEventType.DONE, data=self._done_data))
        finally:
            await self._close_source()

    async def _pump(self) -> None:
        async for chunk in self._source:
            if chunk:
                await self._emit(StreamEvent(StreamEventType.CHUNK, text=chunk))

    async def _emit(self, event: StreamEvent) -> None:
        if not self.cancelled:
            await self._queue.put(event)

    async def _close_source(self) -> None:
        aclose = getattr(self._source, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            logger.debug("Closing stream source failed: %s", e)


@dataclass
class StreamHandle:
    """Returned by StreamingPipeline.stream(); cancel() stops delivery promptly."""

    stream: ResponseStream
    task: "asyncio.Future[None]"

    def cancel(self) -> None:
        self.stream.cancel()

    @property
    def cancelled(self) -> bool:
        return self.stream.cancelled

    async def wait(self) -> None:
        await asyncio.gather(self.task, return_exceptions=True)
        await self.stream.wait_closed()


class StreamingPipeline:
    def __init__(self, provider: Any = None, buffer_size: int = 64, timeout: Optional[float] = 120.0):
        self.provider = provider
        self.buffer_size = buffer_size
        self.timeout = timeout

    def open(
        self,
        source: AsyncIterator[str],
        token: Optional[CancellationToken] = None,
        done_data: Optional[Mapping[str, Any]] = None,
    ) -> ResponseStream:
        """Must be called on the event loop that will consume the stream."""
        return ResponseStream(source, self.buffer_size, self.timeout, token, done_data)

    def open_prompt(self, prompt: str, snapshot: Optional[ContextSnapshot] = None) -> ResponseStream:
        """Raw provider text for a single prompt. No tools, no session."""
        if self.provider is None:
            raise ProviderFailure("No model provider configured")
        return self.open(self.provider.stream_text(prompt, snapshot))

    def stream(
        self,
        prompt: str,
        snapshot: Optional[ContextSnapshot],
        on_chunk: Callable[[str], Any],
        on_done: Callable[[], Any],
        on_error: Callable[[OrchestratorError], Any],
    ) -> StreamHandle:
        response = self.open_prompt(prompt, snapshot)
        return self.deliver(response, on_chunk, on_done, on_error)

    def deliver(
        self,
        response: ResponseStream,
        on_chunk: Callable[[str], Any],
        on_done: Callable[[], Any],
        on_error: Callable[[OrchestratorError], Any],
    ) -> StreamHandle:
        """Drive callbacks from a ResponseStream. A raising on_chunk cancels the stream."""

        async def _call(callback: Callable[..., Any], *args: Any) -> None:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result

        async def _run() -> None:
            async for event in response:
                if event.type is StreamEventType.CHUNK:
                    try:
                        await _call(on_chunk, event.text)
                    except Exception:
                        logger.exception("on_chunk raised; cancelling stream")
                        response.cancel()
                        return
                elif event.type is StreamEventType.DONE:
                    await _call(on_done)
                else:
                    await _call(on_error, event.error)

        return StreamHandle(stream=response, task=asyncio.ensure_future(_run()))
