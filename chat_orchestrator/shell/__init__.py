"""
Shell - the conversational orchestration layer.

Modules:
- context: RequestContext (contextvars) and the ContextAggregator
- sessions: ordered chat history (SessionStore)
- dispatcher: schema-guarded tool registry with idempotent dispatch
- tools: built-in tool schemas and handlers
- streaming: cancellable ResponseStream and the StreamingPipeline
- bridge: exactly-once UI action delivery (ActionBridge)
- router: regex intent routing
- instruction: model instruction and snapshot rendering
- providers: model providers (rules, Gemini)
- agent: the generation cycle (ChatAgent)
"""

from chat_orchestrator.shell.agent import ChatAgent, ChatRequest, ChatResponse
from chat_orchestrator.shell.bridge import ActionBridge
from chat_orchestrator.shell.context import ContextAggregator, RequestContext, get_request_context
from chat_orchestrator.shell.dispatcher import ActionSpec, ToolContext, ToolDispatcher, ToolOutcome, ToolSpec
from chat_orchestrator.shell.providers import GeminiProvider, ModelProvider, RuleBasedProvider
from chat_orchestrator.shell.router import Intent, RoutingResult, route_message
from chat_orchestrator.shell.sessions import SessionStore
from chat_orchestrator.shell.streaming import (
    CancellationToken,
    ResponseStream,
    StreamEvent,
    StreamEventType,
    StreamHandle,
    StreamingPipeline,
)

__all__ = [
    "ActionBridge",
    "ActionSpec",
    "CancellationToken",
    "ChatAgent",
    "ChatRequest",
    "ChatResponse",
    "ContextAggregator",
    "GeminiProvider",
    "Intent",
    "ModelProvider",
    "RequestContext",
    "ResponseStream",
    "RoutingResult",
    "RuleBasedProvider",
    "SessionStore",
    "StreamEvent",
    "StreamEventType",
    "StreamHandle",
    "StreamingPipeline",
    "ToolContext",
    "ToolDispatcher",
    "ToolOutcome",
    "ToolSpec",
    "get_request_context",
    "route_message",
]
