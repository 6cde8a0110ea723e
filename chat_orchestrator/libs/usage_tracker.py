"""LLM usage tracking for cost attribution.

Token counts from google-genai responses are written to the ``llm_usage``
collection of the configured DocumentStore. Writes are fire-and-forget:
failures are logged, never raised.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from chat_orchestrator.libs.store import DocumentStore
from chat_orchestrator.models import now

logger = logging.getLogger(__name__)

USAGE_COLLECTION = "llm_usage"


class UsageTracker:
    def __init__(self, store: DocumentStore, enabled: bool = False, system: str = "chat_orchestrator"):
        self.store = store
        self.enabled = enabled
        self.system = system

    def track(
        self,
        *,
        user_id: Optional[str],
        feature: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        total_tokens: int,
        thinking_tokens: Optional[int] = None,
    ) -> None:
        if not self.enabled or total_tokens <= 0:
            return
        try:
            self.store.set(USAGE_COLLECTION, uuid.uuid4().hex, {
                "user_id": user_id,
                "category": "user_initiated",
                "system": self.system,
                "feature": feature,
                "model": model,
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "thinking_tokens": thinking_tokens,
                "total_tokens": total_tokens,
                "created_at": now(),
            })
        except Exception as e:
            logger.warning("Usage tracking write failed (non-fatal): %s", e)


def extract_usage_from_genai_response(response: Any) -> Dict[str, Any]:
    """Token counts from a ``google.genai`` response or stream chunk."""
    meta = getattr(response, "usage_metadata", None)
    if not meta:
        return {}
    return {
        "prompt_tokens": getattr(meta, "prompt_token_count", 0) or 0,
        "completion_tokens": getattr(meta, "candidates_token_count", 0) or 0,
        "total_tokens": getattr(meta, "total_token_count", 0) or 0,
        "thinking_tokens": getattr(meta, "thoughts_token_count", None),
    }
