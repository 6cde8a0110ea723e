"""
ToolDispatcher - explicit, schema-guarded tool registry.

A tool is a ToolSpec: name, pydantic argument model, handler, description and
a registration version. New tools are added with register_tool(); the
dispatcher itself never changes.

dispatch() never raises for tool problems. Every outcome is a ToolResult:
- UNKNOWN_TOOL       name not registered (lists the available tools)
- VALIDATION_ERROR   arguments rejected by the schema; handler not invoked
- EXECUTION_FAILED   handler raised
- TIMEOUT            handler exceeded the per-call timeout

Idempotency: a request_id executes at most once. A finished result is served
from a bounded LRU cache; a concurrent dispatch of an in-flight request_id
awaits the same task. Executions are shielded from caller cancellation so a
dispatched tool always runs to completion and its result is still recorded.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Type, Union

from pydantic import BaseModel, ValidationError

from chat_orchestrator.errors import ToolErrorCode, ToolFailure
from chat_orchestrator.libs.tools_common.response_helpers import format_tool_error_for_model
from chat_orchestrator.models import (
    Action,
    ContextSnapshot,
    ToolCall,
    ToolResult,
    derive_action_id,
    freeze,
    thaw,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionSpec:
    """An Action without an id. The dispatcher assigns a deterministic one."""
    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class ToolOutcome:
    payload: Dict[str, Any] = field(default_factory=dict)
    actions: List[ActionSpec] = field(default_factory=list)


@dataclass(frozen=True)
class ToolContext:
    """What a handler knows about the call besides its arguments. Never model-supplied."""
    request_id: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    snapshot: Optional[ContextSnapshot] = None


HandlerOutput = Union[ToolOutcome, Mapping[str, Any], None]
Handler = Callable[[BaseModel, ToolContext], Union[HandlerOutput, Awaitable[HandlerOutput]]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    schema: Type[BaseModel]
    handler: Handler
    description: str = ""
    version: int = 1

    def declaration(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.schema.model_json_schema(),
            "version": self.version,
        }


class ToolDispatcher:
    def __init__(self, timeout: float = 15.0, cache_size: int = 10_000):
        self.timeout = timeout
        self.cache_size = cache_size
        self._tools: Dict[str, ToolSpec] = {}
        self._results: "OrderedDict[str, ToolResult]" = OrderedDict()
        self._inflight: Dict[str, "asyncio.Future[ToolResult]"] = {}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_tool(
        self,
        name: str,
        schema: Type[BaseModel],
        handler: Handler,
        description: str = "",
        replace: bool = False,
    ) -> ToolSpec:
        if not name or not name.replace("_", "").isalnum():
            raise ValueError(f"Invalid tool name: {name!r}")
        if not (isinstance(schema, type) and issubclass(schema, BaseModel)):
            raise TypeError(f"Tool {name} schema must be a pydantic model class")
        if not callable(handler):
            raise TypeError(f"Tool {name} handler is not callable")

        existing = self._tools.get(name)
        if existing is not None and not replace:
            raise ValueError(f"Tool already registered: {name}")
        version = existing.version + 1 if existing is not None else 1
        spec = ToolSpec(name=name, schema=schema, handler=handler, description=description, version=version)
        self._tools[name] = spec
        logger.debug("Registered tool %s v%d", name, version)
        return spec

    def get_tool(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def tool_names(self) -> List[str]:
        return sorted(self._tools)

    def tool_schemas(self) -> List[Dict[str, Any]]:
        return [spec.declaration() for spec in self._tools.values()]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, call: ToolCall, context: Optional[ToolContext] = None) -> ToolResult:
        request_id = call.request_id
        cached = self._results.get(request_id)
        if cached is not None:
            self._results.move_to_end(request_id)
            logger.info("Replay of %s (%s): returning cached result", call.name, request_id)
            return cached

        task = self._inflight.get(request_id)
        if task is None:
            ctx = context or ToolContext(request_id=request_id)
            if ctx.request_id != request_id:
                ctx = ToolContext(request_id, ctx.user_id, ctx.session_id, ctx.snapshot)
            task = asyncio.ensure_future(self._execute(call, ctx))
            self._inflight[request_id] = task
            task.add_done_callback(lambda t, rid=request_id: self._settle(rid, t))
        else:
            logger.info("Dispatch of %s (%s) joined in-flight execution", call.name, request_id)
        return await asyncio.shield(task)

    async def dispatch_many(self, calls: Sequence[ToolCall], context: Optional[ToolContext] = None) -> List[ToolResult]:
        """Sequential, in call order. Later calls may depend on earlier side effects."""
        results = []
        for call in calls:
            ctx = None
            if context is not None:
                ctx = ToolContext(call.request_id, context.user_id, context.session_id, context.snapshot)
            results.append(await self.dispatch(call, ctx))
        return results

    def cached_result(self, request_id: str) -> Optional[ToolResult]:
        return self._results.get(request_id)

    def _settle(self, request_id: str, task: "asyncio.Future[ToolResult]") -> None:
        self._inflight.pop(request_id, None)
        if task.cancelled() or task.exception() is not None:
            return
        self._results[request_id] = task.result()
        self._results.move_to_end(request_id)
        while len(self._results) > self.cache_size:
            self._results.popitem(last=False)

    async def _execute(self, call: ToolCall, ctx: ToolContext) -> ToolResult:
        spec = self._tools.get(call.name)
        if spec is None:
            logger.warning("Unknown tool requested: %s", call.name)
            return _failure(
                call,
                ToolErrorCode.UNKNOWN_TOOL,
                f"Unknown tool: {call.name}",
                {"available_tools": self.tool_names()},
            )

        raw_args = thaw(call.arguments)
        try:
            args = spec.schema.model_validate(raw_args)
        except ValidationError as e:
            errors = [
                {"path": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
                for err in e.errors()
            ]
            logger.info("Validation failed for %s: %s", call.name, errors)
            return _failure(
                call,
                ToolErrorCode.VALIDATION_ERROR,
                f"Invalid arguments for {call.name}",
                {"errors": errors, "expected_schema": spec.schema.model_json_schema()},
                attempted=raw_args,
            )

        try:
            output = await asyncio.wait_for(self._invoke(spec, args, ctx), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Tool %s (%s) timed out after %.1fs", call.name, call.request_id, self.timeout)
            return _failure(
                call,
                ToolErrorCode.TIMEOUT,
                f"{call.name} timed out after {self.timeout:g}s",
                {"timeout_seconds": self.timeout},
            )
        except ToolFailure as e:
            logger.info("Tool %s failed: %s", call.name, e.message)
            return _failure(call, ToolErrorCode.EXECUTION_FAILED, e.message, e.details)
        except Exception as e:
            logger.exception("Tool %s (%s) raised", call.name, call.request_id)
            return _failure(
                call,
                ToolErrorCode.EXECUTION_FAILED,
                f"{call.name} failed: {e}",
                {"exception": type(e).__name__, "reason": str(e)[:500]},
            )

        try:
            return _success(call, output)
        except TypeError as e:
            logger.error("Tool %s returned an unusable result: %s", call.name, e)
            return _failure(call, ToolErrorCode.EXECUTION_FAILED, str(e), {"exception": "TypeError"})

    @staticmethod
    async def _invoke(spec: ToolSpec, args: BaseModel, ctx: ToolContext) -> HandlerOutput:
        if inspect.iscoroutinefunction(spec.handler):
            return await spec.handler(args, ctx)
        output = await asyncio.to_thread(spec.handler, args, ctx)
        if inspect.isawaitable(output):
            output = await output
        return output


def _success(call: ToolCall, output: HandlerOutput) -> ToolResult:
    if output is None:
        output = ToolOutcome()
    elif isinstance(output, Mapping):
        output = ToolOutcome(payload=dict(output))
    elif not isinstance(output, ToolOutcome):
        raise TypeError(f"Tool {call.name} returned unsupported type {type(output).__name__}")

    actions = tuple(
        Action(
            id=derive_action_id(call.request_id, index, spec.type),
            type=spec.type,
            payload=freeze(dict(spec.payload)),
        )
        for index, spec in enumerate(output.actions)
    )
    return ToolResult(
        request_id=call.request_id,
        name=call.name,
        success=True,
        payload=freeze(output.payload),
        side_effects=actions,
    )


def _failure(
    call: ToolCall,
    code: ToolErrorCode,
    message: str,
    details: Optional[Mapping[str, Any]] = None,
    attempted: Any = None,
) -> ToolResult:
    error = {"code": code.value, "message": message, "details": dict(details or {})}
    if attempted is not None:
        error["details"]["attempted"] = attempted
    return ToolResult(
        request_id=call.request_id,
        name=call.name,
        success=False,
        error=freeze(error),
    )


def result_for_model(result: ToolResult) -> Dict[str, Any]:
    """What the model sees as the function response for one call."""
    if result.success:
        return thaw(result.payload) or {}
    error = thaw(result.error) or {}
    return format_tool_error_for_model(error, attempted=(error.get("details") or {}).get("attempted"))
