"""
HTTP surface - Flask app factory.

POST /api/ai/chat returns JSON, or text/event-stream when streaming=true.
Each SSE line is `data: {json}\n\n`: {"chunk": ...} until {"done": true,
"sessionId": ...} or {"error": ...}.

Run locally:
    chat-orchestrator serve --port 8080
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional

from flask import Flask, Response, jsonify, request, stream_with_context
from flask_cors import CORS
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chat_orchestrator.errors import InputValidationError, OrchestratorError, ProviderFailure, SessionNotFound
from chat_orchestrator.runtime import Runtime
from chat_orchestrator.shell.agent import ChatRequest
from chat_orchestrator.shell.streaming import ResponseStream

logger = logging.getLogger(__name__)

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


# =============================================================================
# REQUEST BODIES
# =============================================================================

class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore")


class UiStateBody(_Body):
    """Accepts camelCase (wire) or snake_case keys."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    visible_elements: Optional[List[str]] = Field(default=None, alias="visibleElements")
    # None means "every registered tool".
    available_actions: Optional[List[str]] = Field(default=None, alias="availableActions")
    current_page: Optional[str] = Field(default=None, alias="currentPage")


class ChatBody(_Body):
    userId: str = Field(min_length=1)
    # Message content rules (type, blank, length) are enforced by the agent.
    message: Any = None
    sessionId: Optional[str] = None
    streaming: bool = False
    uiState: Optional[UiStateBody] = None


class PromptBody(_Body):
    prompt: str = Field(min_length=1)


class CreateSessionBody(_Body):
    userId: str = Field(min_length=1)
    initialMessage: Optional[str] = None


class RenameSessionBody(_Body):
    title: str = Field(min_length=1, max_length=200)


def _parse(model: type, allow_empty: bool = False) -> Any:
    data = request.get_json(silent=True)
    if data is None and allow_empty:
        data = {}
    if not isinstance(data, dict):
        raise InputValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InputValidationError(
            "Invalid request body",
            {"errors": [
                {"path": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
                for err in e.errors()
            ]},
        ) from None


def _error(status: int, e: OrchestratorError):
    body: Dict[str, Any] = {"success": False, "error": e.message, "code": e.code}
    if e.details:
        body["details"] = e.details
    return jsonify(body), status


def _sse(runtime: Runtime, stream: ResponseStream) -> Response:
    def generate() -> Iterator[str]:
        # Closing this generator (client disconnect) cancels the stream.
        for event in runtime.iterate(stream):
            yield event.to_sse()

    return Response(stream_with_context(generate()), mimetype="text/event-stream", headers=SSE_HEADERS)


# =============================================================================
# APP
# =============================================================================

def create_app(runtime: Runtime) -> Flask:
    app = Flask(__name__)
    CORS(app)
    app.config["RUNTIME"] = runtime

    @app.errorhandler(InputValidationError)
    def _bad_request(e: InputValidationError):
        return _error(400, e)

    @app.errorhandler(SessionNotFound)
    def _not_found(e: SessionNotFound):
        return _error(404, e)

    @app.errorhandler(ProviderFailure)
    def _bad_gateway(e: ProviderFailure):
        logger.error("Provider failure: %s", e.message)
        return _error(502, e)

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok", "provider": runtime.provider.name})

    @app.route("/api/ai/chat", methods=["POST"])
    def chat():
        body = _parse(ChatBody)
        chat_request = ChatRequest(
            user_id=body.userId,
            message=body.message,
            session_id=body.sessionId,
            streaming=body.streaming,
            ui_state=body.uiState.model_dump(exclude_none=True) if body.uiState else {},
        )
        if chat_request.streaming:
            return _sse(runtime, runtime.run(runtime.agent.stream_message(chat_request)))
        response = runtime.run(runtime.agent.handle_message(chat_request))
        return jsonify(response.to_dict())

    @app.route("/api/ai/stream", methods=["POST"])
    def stream_prompt():
        body = _parse(PromptBody)

        async def _open() -> ResponseStream:
            return runtime.pipeline.open_prompt(body.prompt)

        return _sse(runtime, runtime.run(_open()))

    @app.route("/api/chat/sessions", methods=["POST"])
    def create_session():
        body = _parse(CreateSessionBody)
        session_id = runtime.run(runtime.sessions.create_session(body.userId, seed_title=body.initialMessage))
        return jsonify({"sessionId": session_id}), 201

    @app.route("/api/chat/sessions", methods=["GET"])
    def list_sessions():
        user_id = request.args.get("userId", "").strip()
        if not user_id:
            raise InputValidationError("userId query parameter is required", {"field": "userId"})
        sessions = runtime.run(runtime.sessions.list_sessions(user_id))
        return jsonify({"sessions": [s.to_dict() for s in sessions]})

    @app.route("/api/chat/sessions/<session_id>/messages", methods=["GET"])
    def session_messages(session_id: str):
        limit = request.args.get("limit", type=int)
        runtime.run(runtime.sessions.get_session(session_id))
        messages = runtime.run(runtime.sessions.get_history(session_id, limit=limit))
        return jsonify({"messages": [m.to_dict() for m in messages]})

    @app.route("/api/chat/sessions/<session_id>", methods=["PATCH"])
    def rename_session(session_id: str):
        body = _parse(RenameSessionBody)
        runtime.run(runtime.sessions.rename_session(session_id, body.title))
        return jsonify({"success": True})

    @app.route("/api/chat/sessions/<session_id>", methods=["DELETE"])
    def delete_session(session_id: str):
        runtime.run(runtime.sessions.delete_session(session_id))
        return jsonify({"success": True})

    return app
