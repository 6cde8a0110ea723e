"""
Helpers for turning backend responses and tool failures into model-readable data.

Failed tool calls are handed back to the model in a self-healing shape: a
short hint, the first few validation errors and, when it is small enough, the
expected argument schema, so the model can correct its arguments and retry.
"""

from typing import Any, Dict, Mapping, Optional, Tuple

MAX_ERRORS = 5
MAX_SCHEMA_CHARS = 2000

_HINTS = {
    "UNKNOWN_TOOL": "Pick one of the available tools or answer without a tool.",
    "VALIDATION_ERROR": "Fix the listed arguments and call the tool again.",
    "EXECUTION_FAILED": "The tool failed. Tell the user or try a different approach.",
    "TIMEOUT": "The tool took too long. Do not retry immediately.",
}


def parse_api_response(resp: Any) -> Tuple[bool, Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """
    Split a backend response into (success, data, error_details).

    Responses without an explicit `success` flag count as successful.
    """
    if not isinstance(resp, dict):
        return False, None, {"error": "Invalid response format", "raw": str(resp)[:500]}

    if not resp.get("success", True):
        error_details = {"error": resp.get("error", "Unknown error"), "code": resp.get("code")}
        details = resp.get("details")
        if isinstance(details, dict):
            error_details["hint"] = details.get("hint")
            error_details["validation_errors"] = details.get("errors")
        return False, None, error_details

    data = resp.get("data")
    return True, data if isinstance(data, dict) else resp, None


def format_tool_error_for_model(error: Mapping[str, Any], attempted: Any = None) -> Dict[str, Any]:
    code = error.get("code", "EXECUTION_FAILED")
    result: Dict[str, Any] = {
        "status": "error",
        "code": code,
        "retryable": code in ("VALIDATION_ERROR", "UNKNOWN_TOOL"),
        "message": error.get("message", "Tool failed"),
    }
    hint = _HINTS.get(code)
    if hint:
        result["hint"] = hint

    details = error.get("details") or {}
    errors = details.get("errors")
    if errors:
        result["errors"] = [
            {"path": e.get("path", ""), "message": e.get("message", "")}
            for e in list(errors)[:MAX_ERRORS]
        ]
    if details.get("available_tools"):
        result["available_tools"] = list(details["available_tools"])
    if details.get("suggestions"):
        result["suggestions"] = list(details["suggestions"])

    schema = details.get("expected_schema")
    if schema:
        if len(str(schema)) > MAX_SCHEMA_CHARS:
            result["expected_schema_summary"] = "Schema too large. See the hint and errors."
        else:
            result["expected_schema"] = schema

    if attempted is not None:
        result["attempted_summary"] = summarize_attempted(attempted)
    return result


def summarize_attempted(attempted: Any) -> Dict[str, Any]:
    """Small summary of the arguments that were tried."""
    if not isinstance(attempted, Mapping):
        return {"type": type(attempted).__name__}
    summary: Dict[str, Any] = {"keys": list(attempted.keys())[:10]}
    exercises = attempted.get("exercises")
    if isinstance(exercises, (list, tuple)):
        summary["exercises"] = len(exercises)
    return summary
