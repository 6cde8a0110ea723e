"""
Core records shared by every component.

Wire/store shape is camelCase (to_dict / from_dict); attributes are snake_case.

Idempotency keys:
  ToolCall.request_id  - provider call id, or derive_request_id(...) when absent
  Action.id            - derive_action_id(request_id, index, type)
Both are the first 32 hex chars of SHA-256 over canonical JSON, so the same
input always produces the same key. A derived request_id is tied to the stored
user message id: it repeats only for the same turn and index of that message.
A resubmitted message gets a fresh id and therefore fresh keys.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ActionType(str, Enum):
    """Built-in UI action types. Action.type is an open string; these are the known ones."""
    NAVIGATE = "navigate"
    HIGHLIGHT = "highlight"
    UPDATE_DATA = "update-data"
    SHOW_NOTIFICATION = "show-notification"
    TRIGGER_ACTION = "trigger-action"


# =============================================================================
# KEYS
# =============================================================================

def compute_hash(payload: Any) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def derive_request_id(
    session_id: str,
    message_id: str,
    turn: int,
    index: int,
    name: str,
    arguments: Mapping[str, Any],
) -> str:
    material = {
        "session_id": session_id,
        "message_id": message_id,
        "turn": turn,
        "index": index,
        "name": name,
        "arguments": thaw(arguments),
    }
    return compute_hash(material)[:32]


def derive_action_id(request_id: str, index: int, action_type: str) -> str:
    return compute_hash({"request_id": request_id, "index": index, "type": action_type})[:32]


# =============================================================================
# FREEZING
# =============================================================================

def freeze(value: Any) -> Any:
    """Deep-copy into read-only containers (mapping proxy / tuple / frozenset)."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze(); produces plain JSON-friendly containers."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(thaw(v) for v in value)
    return value


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: Mapping[str, Any]
    request_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "arguments": thaw(self.arguments), "requestId": self.request_id}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ToolCall":
        return cls(
            name=data["name"],
            arguments=freeze(data.get("arguments") or {}),
            request_id=data["requestId"],
        )


@dataclass(frozen=True)
class Action:
    id: str
    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type, "payload": thaw(self.payload)}


@dataclass(frozen=True)
class ToolResult:
    """One per ToolCall. Exactly one of payload / error is meaningful."""

    request_id: str
    name: str
    success: bool
    payload: Optional[Mapping[str, Any]] = None
    error: Optional[Mapping[str, Any]] = None
    side_effects: Tuple[Action, ...] = ()

    @property
    def error_code(self) -> Optional[str]:
        return self.error.get("code") if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "requestId": self.request_id,
            "name": self.name,
            "success": self.success,
        }
        if self.payload is not None:
            result["payload"] = thaw(self.payload)
        if self.error is not None:
            result["error"] = thaw(self.error)
        if self.side_effects:
            result["sideEffects"] = [a.to_dict() for a in self.side_effects]
        return result


@dataclass(frozen=True)
class Message:
    id: str
    session_id: str
    role: Role
    content: str
    timestamp: float
    seq: int
    tool_calls: Tuple[ToolCall, ...] = ()
    user_id: Optional[str] = None
    interrupted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "sessionId": self.session_id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "seq": self.seq,
        }
        if self.tool_calls:
            result["toolCalls"] = [c.to_dict() for c in self.tool_calls]
        if self.user_id:
            result["userId"] = self.user_id
        if self.interrupted:
            result["interrupted"] = True
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            session_id=data["sessionId"],
            role=Role(data["role"]),
            content=data.get("content", ""),
            timestamp=float(data.get("timestamp") or 0.0),
            seq=int(data.get("seq", 0)),
            tool_calls=tuple(ToolCall.from_dict(c) for c in data.get("toolCalls") or ()),
            user_id=data.get("userId"),
            interrupted=bool(data.get("interrupted", False)),
        )


@dataclass
class NewMessage:
    """What callers hand to SessionStore.append; the store assigns id/seq/timestamp."""

    role: Role
    content: str
    tool_calls: Tuple[ToolCall, ...] = ()
    user_id: Optional[str] = None
    interrupted: bool = False


@dataclass
class Session:
    id: str
    user_id: str
    title: str
    created_at: float
    updated_at: float
    last_message: str = ""
    message_count: int = 0
    messages: List[Message] = field(default_factory=list)

    def to_dict(self, include_messages: bool = False) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "lastMessage": self.last_message,
            "messageCount": self.message_count,
        }
        if include_messages:
            result["messages"] = [m.to_dict() for m in self.messages]
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Session":
        return cls(
            id=data["id"],
            user_id=data["userId"],
            title=data.get("title", ""),
            created_at=float(data.get("createdAt") or 0.0),
            updated_at=float(data.get("updatedAt") or 0.0),
            last_message=data.get("lastMessage", ""),
            message_count=int(data.get("messageCount", 0)),
        )


@dataclass(frozen=True)
class ContextSnapshot:
    """
    Point-in-time bundle injected into one generation request.

    Everything inside is frozen at capture. A source listed in failed_sources
    was unavailable ("timeout" or "error"); a field that is None/empty while its
    source is NOT listed simply had no data.
    """

    user_id: str
    captured_at: float
    profile: Optional[Mapping[str, Any]] = None
    recent_workouts: Tuple[Mapping[str, Any], ...] = ()
    visible_ui_elements: FrozenSet[str] = frozenset()
    available_actions: FrozenSet[str] = frozenset()
    current_page: Optional[str] = None
    failed_sources: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def source_failed(self, source: str) -> bool:
        return source in self.failed_sources

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "capturedAt": self.captured_at,
            "profile": thaw(self.profile),
            "recentWorkouts": thaw(self.recent_workouts),
            "visibleUIElements": sorted(self.visible_ui_elements),
            "availableActions": sorted(self.available_actions),
            "currentPage": self.current_page,
            "failedSources": thaw(self.failed_sources),
        }


@dataclass(frozen=True)
class ExerciseCatalogEntry:
    id: str
    name: str
    aliases: Tuple[str, ...] = ()
    muscle_groups: Tuple[str, ...] = ()
    equipment: str = "bodyweight"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "aliases": list(self.aliases),
            "muscleGroups": list(self.muscle_groups),
            "equipment": self.equipment,
        }


@dataclass(frozen=True)
class MatchResult:
    entry: ExerciseCatalogEntry
    confidence: float
    match_type: str = "exact"  # exact | alias | fuzzy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exercise": self.entry.to_dict(),
            "confidence": round(self.confidence, 3),
            "matchType": self.match_type,
        }


def now() -> float:
    return time.time()


__all__ = [
    "Role",
    "ActionType",
    "compute_hash",
    "derive_request_id",
    "derive_action_id",
    "freeze",
    "thaw",
    "ToolCall",
    "Action",
    "ToolResult",
    "Message",
    "NewMessage",
    "Session",
    "ContextSnapshot",
    "ExerciseCatalogEntry",
    "MatchResult",
    "now",
]
