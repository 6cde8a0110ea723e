from chat_orchestrator.libs.tools_common.http import HttpClient
from chat_orchestrator.libs.tools_common.response_helpers import (
    format_tool_error_for_model,
    parse_api_response,
    summarize_attempted,
)

__all__ = [
    "HttpClient",
    "format_tool_error_for_model",
    "parse_api_response",
    "summarize_attempted",
]
