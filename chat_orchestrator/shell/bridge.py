"""
ActionBridge - exactly-once delivery of UI actions to subscribers.

A bounded LRU set of seen action ids drops replays (log-only). The
check-and-insert happens before the first await, so within one event loop it
is atomic per action id. Subscribers run in subscription order; one failing
subscriber never stops delivery to the rest.
"""

from __future__ import annotations

import inspect
import itertools
import logging
from collections import OrderedDict, deque
from typing import Any, Callable, Deque, Iterable, List, Tuple

from chat_orchestrator.models import Action

logger = logging.getLogger(__name__)

Subscriber = Callable[[Action], Any]


class ActionBridge:
    def __init__(self, dedup_size: int = 1000, recent_size: int = 10):
        self.dedup_size = dedup_size
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._subscribers: List[Tuple[int, Subscriber]] = []
        self._ids = itertools.count()
        self._recent: Deque[Action] = deque(maxlen=recent_size)

    def subscribe(self, handler: Subscriber) -> Callable[[], None]:
        token = next(self._ids)
        self._subscribers.append((token, handler))

        def unsubscribe() -> None:
            self._subscribers = [(t, h) for t, h in self._subscribers if t != token]

        return unsubscribe

    def seen(self, action_id: str) -> bool:
        return action_id in self._seen

    async def dispatch(self, action: Action) -> bool:
        """True when delivered, False when dropped as a duplicate."""
        if action.id in self._seen:
            self._seen.move_to_end(action.id)
            logger.info("Dropping duplicate action %s (%s)", action.id, action.type)
            return False
        self._seen[action.id] = None
        while len(self._seen) > self.dedup_size:
            self._seen.popitem(last=False)
        self._recent.append(action)

        for _, handler in list(self._subscribers):
            try:
                result = handler(action)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Action subscriber failed for %s (%s)", action.id, action.type)
        return True

    async def dispatch_many(self, actions: Iterable[Action]) -> int:
        delivered = 0
        for action in actions:
            if await self.dispatch(action):
                delivered += 1
        return delivered

    def recent_actions(self, limit: int = 10) -> List[Action]:
        """Last delivered actions, newest first."""
        return list(reversed(self._recent))[:limit]

    def close(self) -> None:
        self._subscribers = []
