"""
Model providers.

A provider turns a ModelRequest (history, snapshot, tool declarations and the
tool exchanges of this cycle) into an async stream of ModelChunks carrying
text and/or function calls.

- RuleBasedProvider: deterministic, offline, regex routed. Used by tests and
  local runs without credentials.
- GeminiProvider: google-genai async streaming with manual function calling.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

from chat_orchestrator.errors import ProviderFailure
from chat_orchestrator.libs.usage_tracker import UsageTracker, extract_usage_from_genai_response
from chat_orchestrator.models import ContextSnapshot, Message, Role, ToolCall, ToolResult, thaw
from chat_orchestrator.shell.context import get_request_context
from chat_orchestrator.shell.dispatcher import result_for_model
from chat_orchestrator.shell.instruction import CHAT_INSTRUCTION, build_system_instruction
from chat_orchestrator.shell.router import Intent, RoutingResult, extract_muscles, route_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunctionCallRequest:
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None


@dataclass(frozen=True)
class ModelChunk:
    text: str = ""
    function_calls: Tuple[FunctionCallRequest, ...] = ()
    usage: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolExchange:
    """One dispatched call and its result, tagged with the model turn that asked for it."""
    turn: int
    call: ToolCall
    result: ToolResult
    call_id: Optional[str] = None  # provider-issued id, echoed back as-is


@dataclass(frozen=True)
class ModelRequest:
    history: Tuple[Message, ...] = ()
    snapshot: Optional[ContextSnapshot] = None
    tools: Tuple[Mapping[str, Any], ...] = ()
    exchanges: Tuple[ToolExchange, ...] = ()
    turn: int = 0
    prompt: Optional[str] = None
    system_instruction: str = CHAT_INSTRUCTION

    @property
    def user_text(self) -> str:
        """The prompt, or the latest user message in history."""
        if self.prompt is not None:
            return self.prompt
        for message in reversed(self.history):
            if message.role is Role.USER:
                return message.content
        return ""

    @property
    def tool_names(self) -> List[str]:
        return [t.get("name") for t in self.tools]

    def last_turn_exchanges(self) -> List[ToolExchange]:
        return [e for e in self.exchanges if e.turn == self.turn - 1]


class ModelProvider(ABC):
    name = "base"
    model = ""

    @abstractmethod
    def generate(self, request: ModelRequest) -> AsyncIterator[ModelChunk]:
        ...

    async def stream_text(self, prompt: str, snapshot: Optional[ContextSnapshot] = None) -> AsyncIterator[str]:
        request = ModelRequest(snapshot=snapshot, prompt=prompt)
        async for chunk in self.generate(request):
            if chunk.text:
                yield chunk.text

    async def aclose(self) -> None:
        pass


def split_chunks(text: str, words_per_chunk: int = 3) -> List[str]:
    """Split text into word groups; joining the pieces gives back the text."""
    tokens = re.findall(r"\S+\s*", text)
    return ["".join(tokens[i:i + words_per_chunk]) for i in range(0, len(tokens), words_per_chunk)]


# =============================================================================
# RULE-BASED
# =============================================================================

GREETING_REPLY = "Hey! I can build you a workout or log your sets. What are we training today?"
FALLBACK_REPLY = "I'm not sure how to help with that yet. Try asking me to create a workout or log a set."


class RuleBasedProvider(ModelProvider):
    name = "rules"
    model = "rules-v1"

    def __init__(self, words_per_chunk: int = 3, delay: float = 0.0):
        self.words_per_chunk = words_per_chunk
        self.delay = delay

    async def generate(self, request: ModelRequest) -> AsyncIterator[ModelChunk]:
        previous = request.last_turn_exchanges()
        if previous:
            text = self._summarize(previous)
        else:
            route = route_message(request.user_text)
            calls = self._calls_for(route, request)
            if calls:
                yield ModelChunk(function_calls=tuple(calls))
                return
            text = GREETING_REPLY if route.intent is Intent.GREETING else FALLBACK_REPLY

        for piece in split_chunks(text, self.words_per_chunk):
            await asyncio.sleep(self.delay)
            yield ModelChunk(text=piece)

    @staticmethod
    def _calls_for(route: RoutingResult, request: ModelRequest) -> List[FunctionCallRequest]:
        slots = route.slots
        if route.intent is Intent.CREATE_WORKOUT:
            args: Dict[str, Any] = {}
            if slots.get("muscle_groups"):
                args["muscle_groups"] = slots["muscle_groups"]
            call = FunctionCallRequest("create_workout", args)
        elif route.intent is Intent.START_WORKOUT:
            call = FunctionCallRequest("start_workout", {})
        elif route.intent is Intent.FINISH_WORKOUT:
            call = FunctionCallRequest("finish_workout", {})
        elif route.intent is Intent.LOG_SET:
            args = {"exercise": slots["exercise"], "reps": slots["reps"]}
            for key in ("weight", "unit"):
                if key in slots:
                    args[key] = slots[key]
            call = FunctionCallRequest("log_set", args)
        elif route.intent is Intent.SHOW_STATS:
            call = FunctionCallRequest("show_stats", {})
        elif route.intent is Intent.RECOMMEND:
            muscles = extract_muscles(request.user_text)
            call = FunctionCallRequest("get_recommendations", {"focus": muscles[0]} if muscles else {})
        elif route.intent is Intent.HISTORY:
            call = FunctionCallRequest("get_workout_history", {})
        elif route.intent is Intent.LOOKUP:
            call = FunctionCallRequest("lookup_exercise", {"name": slots["exercise"]})
        elif route.intent is Intent.HIGHLIGHT:
            call = FunctionCallRequest("highlight_element", {"element_id": slots["element"]})
        elif route.intent is Intent.NAVIGATE:
            call = FunctionCallRequest("navigate_to", {"page": slots["page"]})
        else:
            return []
        if call.name not in request.tool_names:
            return []
        return [call]

    @staticmethod
    def _summarize(exchanges: Sequence[ToolExchange]) -> str:
        sentences = []
        for exchange in exchanges:
            result = exchange.result
            if result.success:
                payload = thaw(result.payload) or {}
                sentences.append(payload.get("message") or f"Done: {exchange.call.name}.")
                continue
            error = thaw(result.error) or {}
            sentence = f"I couldn't complete {exchange.call.name}: {error.get('message', 'unknown error')}"
            suggestions = (error.get("details") or {}).get("suggestions")
            if suggestions:
                sentence += f" Did you mean {' or '.join(suggestions)}?"
            sentences.append(sentence)
        return " ".join(s if s.endswith((".", "?", "!")) else s + "." for s in sentences)


# =============================================================================
# GEMINI
# =============================================================================

class GeminiProvider(ModelProvider):
    name = "gemini"

    def __init__(
        self,
        model: str = "gemini-2.5-flash",
        client: Any = None,
        api_key: Optional[str] = None,
        vertexai: bool = False,
        project: Optional[str] = None,
        location: Optional[str] = None,
        temperature: float = 0.4,
        usage_tracker: Optional[UsageTracker] = None,
    ):
        from google import genai

        if client is None:
            if vertexai:
                client = genai.Client(vertexai=True, project=project, location=location)
            else:
                client = genai.Client(api_key=api_key)
        self.client = client
        self.model = model
        self.temperature = temperature
        self.usage_tracker = usage_tracker

    async def generate(self, request: ModelRequest) -> AsyncIterator[ModelChunk]:
        from google.genai import types

        config = types.GenerateContentConfig(
            system_instruction=build_system_instruction(request.snapshot, request.system_instruction),
            temperature=self.temperature,
            tools=[types.Tool(function_declarations=[
                types.FunctionDeclaration(
                    name=tool["name"],
                    description=tool.get("description", ""),
                    parameters_json_schema=tool.get("parameters"),
                )
                for tool in request.tools
            ])] if request.tools else None,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )
        try:
            stream = await self.client.aio.models.generate_content_stream(
                model=self.model,
                contents=self._contents(request),
                config=config,
            )
        except Exception as e:
            raise ProviderFailure(f"Gemini request failed: {e}") from e

        usage: Dict[str, Any] = {}
        try:
            async for response in stream:
                texts: List[str] = []
                calls: List[FunctionCallRequest] = []
                for candidate in response.candidates or []:
                    parts = candidate.content.parts if candidate.content else None
                    for part in parts or []:
                        if part.function_call:
                            fc = part.function_call
                            calls.append(FunctionCallRequest(fc.name, dict(fc.args or {}), fc.id or None))
                        elif part.text and not part.thought:
                            texts.append(part.text)
                usage = extract_usage_from_genai_response(response) or usage
                if texts or calls:
                    yield ModelChunk(text="".join(texts), function_calls=tuple(calls))
        except ProviderFailure:
            raise
        except Exception as e:
            raise ProviderFailure(f"Gemini stream failed: {e}") from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
            self._track(usage)

    def _contents(self, request: ModelRequest) -> List[Any]:
        from google.genai import types

        contents: List[Any] = []
        for message in request.history:
            role = "user" if message.role is Role.USER else "model"
            if message.content:
                contents.append(types.Content(role=role, parts=[types.Part(text=message.content)]))
        if request.prompt is not None:
            contents.append(types.Content(role="user", parts=[types.Part(text=request.prompt)]))

        for turn in sorted({e.turn for e in request.exchanges}):
            exchanges = [e for e in request.exchanges if e.turn == turn]
            contents.append(types.Content(role="model", parts=[
                types.Part(function_call=types.FunctionCall(
                    id=e.call_id, name=e.call.name, args=thaw(e.call.arguments),
                ))
                for e in exchanges
            ]))
            contents.append(types.Content(role="user", parts=[
                types.Part(function_response=types.FunctionResponse(
                    id=e.call_id, name=e.call.name, response=result_for_model(e.result),
                ))
                for e in exchanges
            ]))
        return contents

    def _track(self, usage: Mapping[str, Any]) -> None:
        if self.usage_tracker is None or not usage:
            return
        ctx = get_request_context()
        # Fire-and-forget; failures are logged by the tracker.
        asyncio.get_running_loop().run_in_executor(None, functools.partial(
            self.usage_tracker.track,
            user_id=ctx.user_id if ctx else None,
            feature="chat",
            model=self.model,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            thinking_tokens=usage.get("thinking_tokens"),
        ))
