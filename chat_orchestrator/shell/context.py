"""
Request context and the Context Aggregator.

RequestContext lives in a ContextVar so tool handlers and log lines can read
the current user/session without it being threaded through every call. Never
use module-level globals for request state.

ContextAggregator builds the ContextSnapshot injected into one generation
request. Each source is fetched concurrently under its own timeout; a slow or
failing source only drops its own field and is recorded in
snapshot.failed_sources.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from chat_orchestrator.errors import ContextSourceFailure, InputValidationError
from chat_orchestrator.libs.store import DocumentStore
from chat_orchestrator.libs.tools_common.response_helpers import parse_api_response
from chat_orchestrator.libs.tools_functions.client import FunctionsClient
from chat_orchestrator.models import ContextSnapshot, freeze, now

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"
ONBOARDING_COLLECTION = "user_onboarding"
WORKOUTS_COLLECTION = "workouts"


# =============================================================================
# REQUEST CONTEXT (ContextVar)
# =============================================================================

@dataclass(frozen=True)
class RequestContext:
    user_id: str
    session_id: Optional[str] = None
    correlation_id: Optional[str] = None

    @classmethod
    def new(cls, user_id: str, session_id: Optional[str] = None) -> "RequestContext":
        return cls(user_id=user_id, session_id=session_id, correlation_id=uuid.uuid4().hex[:12])


_request_context_var: ContextVar[Optional[RequestContext]] = ContextVar("request_context", default=None)


def set_request_context(ctx: RequestContext) -> Token:
    return _request_context_var.set(ctx)


def reset_request_context(token: Token) -> None:
    _request_context_var.reset(token)


def get_request_context() -> Optional[RequestContext]:
    """The context of the generation cycle running in this task, or None."""
    return _request_context_var.get()


@contextmanager
def request_context(ctx: RequestContext) -> Iterator[RequestContext]:
    token = set_request_context(ctx)
    try:
        yield ctx
    finally:
        reset_request_context(token)


# =============================================================================
# SOURCES
# =============================================================================

class ContextSource(ABC):
    """
    One volatile input to the snapshot.

    `name` is what shows up in failed_sources; `field` is the snapshot field it
    fills. fetch() may be sync (run in a worker thread) or async.
    """

    name: str = ""
    field: str = ""

    @abstractmethod
    def fetch(self, user_id: str) -> Any:
        ...


class StoreProfileSource(ContextSource):
    name = "profile"
    field = "profile"

    def __init__(self, store: DocumentStore):
        self.store = store

    def fetch(self, user_id: str) -> Optional[Dict[str, Any]]:
        profile = self.store.get(USERS_COLLECTION, user_id)
        onboarding = self.store.get(ONBOARDING_COLLECTION, user_id)
        if profile is None and onboarding is None:
            return None
        result = dict(profile or {})
        if onboarding:
            result["onboarding"] = onboarding
        return result


class StoreWorkoutSource(ContextSource):
    name = "recent_workouts"
    field = "recent_workouts"

    def __init__(self, store: DocumentStore, limit: int = 5):
        self.store = store
        self.limit = limit

    def fetch(self, user_id: str) -> List[Dict[str, Any]]:
        docs = self.store.query(
            WORKOUTS_COLLECTION,
            filters=[("user_id", "==", user_id), ("status", "==", "completed")],
            order_by="completed_at",
            descending=True,
            limit=self.limit,
        )
        return [dict(doc.data, id=doc.id) for doc in docs]


class FunctionsProfileSource(ContextSource):
    name = "profile"
    field = "profile"

    def __init__(self, client: FunctionsClient, timeout: float = 2.0):
        self.client = client
        self.timeout = timeout

    def fetch(self, user_id: str) -> Optional[Dict[str, Any]]:
        success, data, error = parse_api_response(self.client.get_user(user_id, timeout=self.timeout))
        if not success:
            raise ContextSourceFailure(self.name, str((error or {}).get("error")))
        return (data or {}).get("user") or data or None


class FunctionsWorkoutSource(ContextSource):
    name = "recent_workouts"
    field = "recent_workouts"

    def __init__(self, client: FunctionsClient, limit: int = 5, timeout: float = 2.0):
        self.client = client
        self.limit = limit
        self.timeout = timeout

    def fetch(self, user_id: str) -> List[Dict[str, Any]]:
        resp = self.client.get_user_workouts(user_id, limit=self.limit, timeout=self.timeout)
        success, data, error = parse_api_response(resp)
        if not success:
            raise ContextSourceFailure(self.name, str((error or {}).get("error")))
        workouts = (data or {}).get("workouts") or (data or {}).get("items") or []
        return list(workouts)[: self.limit]


# =============================================================================
# AGGREGATOR
# =============================================================================

def _string_set(value: Any) -> frozenset:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset([value])
    return frozenset(str(v) for v in value if v is not None)


def _ui_value(ui_state: Mapping[str, Any], snake: str, camel: str) -> Any:
    if snake in ui_state:
        return ui_state[snake]
    return ui_state.get(camel)


UI_LIST_FIELDS = (("visible_elements", "visibleElements"), ("available_actions", "availableActions"))
UI_TEXT_FIELDS = (("current_page", "currentPage"),)


def check_ui_state(ui_state: Any) -> None:
    """Reject ui_state values build_snapshot cannot use."""
    if ui_state is None:
        return
    if not isinstance(ui_state, Mapping):
        raise InputValidationError("uiState must be an object", {"field": "uiState"})
    for snake, camel in UI_LIST_FIELDS:
        value = _ui_value(ui_state, snake, camel)
        if value is None:
            continue
        if not isinstance(value, (list, tuple, set, frozenset)) or not all(isinstance(v, str) for v in value):
            raise InputValidationError(f"uiState.{camel} must be a list of strings", {"field": f"uiState.{camel}"})
    for snake, camel in UI_TEXT_FIELDS:
        value = _ui_value(ui_state, snake, camel)
        if value is not None and not isinstance(value, str):
            raise InputValidationError(f"uiState.{camel} must be a string", {"field": f"uiState.{camel}"})


class ContextAggregator:
    def __init__(
        self,
        sources: Sequence[ContextSource],
        timeout: float = 2.0,
        recent_workouts_limit: int = 5,
        default_actions: Iterable[str] = (),
    ):
        self.sources = list(sources)
        self.timeout = timeout
        self.recent_workouts_limit = recent_workouts_limit
        self.default_actions = frozenset(default_actions)

    async def build_snapshot(self, user_id: str, ui_state: Optional[Mapping[str, Any]] = None) -> ContextSnapshot:
        ui_state = ui_state or {}
        captured_at = now()
        outcomes = await asyncio.gather(*(self._fetch(source, user_id) for source in self.sources))

        fields: Dict[str, Any] = {}
        failed: Dict[str, str] = {}
        for source, (value, failure) in zip(self.sources, outcomes):
            if failure:
                failed[source.name] = failure
                continue
            # Freezing builds new containers, so the snapshot shares nothing with the source.
            fields[source.field] = freeze(value)

        recent = fields.get("recent_workouts") or ()
        available = _ui_value(ui_state, "available_actions", "availableActions")
        snapshot = ContextSnapshot(
            user_id=user_id,
            captured_at=captured_at,
            profile=fields.get("profile"),
            recent_workouts=tuple(recent)[: self.recent_workouts_limit],
            visible_ui_elements=_string_set(_ui_value(ui_state, "visible_elements", "visibleElements")),
            available_actions=_string_set(available) if available is not None else self.default_actions,
            current_page=_ui_value(ui_state, "current_page", "currentPage"),
            failed_sources=MappingProxyType(failed),
        )
        if failed:
            logger.warning("Degraded snapshot for user=%s failed_sources=%s", user_id, failed)
        return snapshot

    async def _fetch(self, source: ContextSource, user_id: str) -> Tuple[Any, Optional[str]]:
        try:
            if inspect.iscoroutinefunction(source.fetch):
                value = await asyncio.wait_for(source.fetch(user_id), timeout=self.timeout)
            else:
                value = await asyncio.wait_for(asyncio.to_thread(source.fetch, user_id), timeout=self.timeout)
            return value, None
        except asyncio.TimeoutError:
            logger.warning("Context source '%s' timed out after %.1fs", source.name, self.timeout)
            return None, "timeout"
        except Exception as e:
            logger.warning("Context source '%s' failed: %s", source.name, e)
            return None, "error"
