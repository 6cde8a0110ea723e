"""
Error taxonomy for the chat orchestrator.

Only InputValidationError and ProviderFailure are meant to reach the user.
Tool problems are never raised: they travel back to the model as failed
ToolResult values (see shell/dispatcher.py).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ToolErrorCode(str, Enum):
    """Codes carried in ToolResult.error["code"]."""
    UNKNOWN_TOOL = "UNKNOWN_TOOL"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    TIMEOUT = "TIMEOUT"


class OrchestratorError(Exception):
    """Base class. `code` is stable and safe to put on the wire."""

    code = "ORCHESTRATOR_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"code": self.code, "error": self.message}
        if self.details:
            result["details"] = self.details
        return result


class InputValidationError(OrchestratorError):
    """Malformed request body. Rejected before any model call."""
    code = "INPUT_VALIDATION"


class SessionNotFound(OrchestratorError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}", {"session_id": session_id})
        self.session_id = session_id


class ContextSourceFailure(OrchestratorError):
    """One aggregator source timed out or errored. Absorbed into the snapshot."""
    code = "CONTEXT_SOURCE_FAILURE"

    def __init__(self, source: str, reason: str):
        super().__init__(f"Context source '{source}' failed: {reason}", {"source": source, "reason": reason})
        self.source = source
        self.reason = reason


class ProviderFailure(OrchestratorError):
    """Model backend unreachable or errored."""
    code = "PROVIDER_FAILURE"


class GenerationTimeout(ProviderFailure):
    code = "GENERATION_TIMEOUT"


class StreamInterrupted(OrchestratorError):
    """Client went away or cancelled. Never surfaced to anyone."""
    code = "STREAM_INTERRUPTED"


class ToolFailure(OrchestratorError):
    """
    Raised by a tool handler for an expected domain failure (unknown exercise,
    no active workout). The dispatcher turns it into an EXECUTION_FAILED result
    carrying `details`, so the model can see suggestions and recover.
    """
    code = ToolErrorCode.EXECUTION_FAILED.value


__all__ = [
    "ToolErrorCode",
    "OrchestratorError",
    "InputValidationError",
    "SessionNotFound",
    "ContextSourceFailure",
    "ProviderFailure",
    "GenerationTimeout",
    "StreamInterrupted",
    "ToolFailure",
]
