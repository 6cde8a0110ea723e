"""
Settings - environment-driven configuration.

Every knob has a default that works for local development with the
deterministic rules provider and the in-memory store.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass
class Settings:
    # Model
    model_provider: str = "rules"  # rules | gemini
    gemini_model: str = "gemini-2.5-flash"
    google_api_key: Optional[str] = None
    use_vertexai: bool = False
    google_project: Optional[str] = None
    google_location: str = "us-central1"

    # Storage / remote functions
    store_backend: str = "memory"  # memory | firestore
    functions_base_url: Optional[str] = None
    functions_api_key: Optional[str] = None

    # Timeouts (seconds): short / medium / long
    context_source_timeout: float = 2.0
    tool_timeout: float = 15.0
    generation_timeout: float = 120.0

    # Bounds
    recent_workouts_limit: int = 5
    history_limit: int = 20
    max_tool_turns: int = 5
    stream_buffer_size: int = 64
    action_dedup_size: int = 1000
    tool_result_cache_size: int = 10_000
    session_auto_create: bool = False

    # Observability
    log_level: str = "INFO"
    enable_cloud_logging: bool = False
    enable_usage_tracking: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            model_provider=os.getenv("MODEL_PROVIDER", "rules").lower(),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            google_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            use_vertexai=_env_bool("GOOGLE_GENAI_USE_VERTEXAI"),
            google_project=os.getenv("GOOGLE_CLOUD_PROJECT") or os.getenv("GCP_PROJECT"),
            google_location=os.getenv("GOOGLE_LOCATION", "us-central1"),
            store_backend=os.getenv("STORE_BACKEND", "memory").lower(),
            functions_base_url=os.getenv("FUNCTIONS_BASE_URL") or None,
            functions_api_key=os.getenv("FUNCTIONS_API_KEY") or None,
            context_source_timeout=_env_float("CONTEXT_SOURCE_TIMEOUT", 2.0),
            tool_timeout=_env_float("TOOL_TIMEOUT", 15.0),
            generation_timeout=_env_float("GENERATION_TIMEOUT", 120.0),
            recent_workouts_limit=_env_int("RECENT_WORKOUTS_LIMIT", 5),
            history_limit=_env_int("HISTORY_LIMIT", 20),
            max_tool_turns=_env_int("MAX_TOOL_TURNS", 5),
            stream_buffer_size=_env_int("STREAM_BUFFER_SIZE", 64),
            action_dedup_size=_env_int("ACTION_DEDUP_SIZE", 1000),
            tool_result_cache_size=_env_int("TOOL_RESULT_CACHE_SIZE", 10_000),
            session_auto_create=_env_bool("SESSION_AUTO_CREATE"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            enable_cloud_logging=_env_bool("ENABLE_CLOUD_LOGGING"),
            enable_usage_tracking=_env_bool("ENABLE_USAGE_TRACKING"),
        )
