"""
Action bridge tests: exactly-once delivery and subscriber isolation.

Usage:
    python3 -m pytest tests/test_action_bridge.py -v
"""

from __future__ import annotations

import asyncio


def _action(action_id="a1", type="navigate"):
    from chat_orchestrator.models import Action, freeze
    return Action(id=action_id, type=type, payload=freeze({"page": "stats"}))


class TestActionBridge:

    def test_duplicate_is_dropped(self):
        from chat_orchestrator.shell.bridge import ActionBridge
        bridge = ActionBridge()
        seen = []
        bridge.subscribe(seen.append)

        async def scenario():
            return await bridge.dispatch(_action()), await bridge.dispatch(_action())

        assert asyncio.run(scenario()) == (True, False)
        assert [a.id for a in seen] == ["a1"]

    def test_concurrent_duplicates_deliver_once(self):
        from chat_orchestrator.shell.bridge import ActionBridge
        bridge = ActionBridge()
        seen = []

        async def slow_subscriber(action):
            await asyncio.sleep(0.01)
            seen.append(action.id)

        bridge.subscribe(slow_subscriber)

        async def scenario():
            return await asyncio.gather(*(bridge.dispatch(_action()) for _ in range(5)))

        assert sorted(asyncio.run(scenario())) == [False] * 4 + [True]
        assert seen == ["a1"]

    def test_failing_subscriber_does_not_block_others(self):
        from chat_orchestrator.shell.bridge import ActionBridge
        bridge = ActionBridge()
        seen = []

        def broken(action):
            raise RuntimeError("ui gone")

        bridge.subscribe(broken)
        bridge.subscribe(seen.append)
        assert asyncio.run(bridge.dispatch(_action())) is True
        assert len(seen) == 1

    def test_unsubscribe(self):
        from chat_orchestrator.shell.bridge import ActionBridge
        bridge = ActionBridge()
        seen = []
        unsubscribe = bridge.subscribe(seen.append)
        unsubscribe()
        asyncio.run(bridge.dispatch(_action()))
        assert seen == []

    def test_dispatch_many_counts_delivered(self):
        from chat_orchestrator.shell.bridge import ActionBridge
        bridge = ActionBridge()
        actions = [_action("a1"), _action("a2"), _action("a1")]
        assert asyncio.run(bridge.dispatch_many(actions)) == 2
        assert [a.id for a in bridge.recent_actions()] == ["a2", "a1"]

    def test_dedup_window_is_bounded(self):
        from chat_orchestrator.shell.bridge import ActionBridge
        bridge = ActionBridge(dedup_size=2)

        async def scenario():
            for i in range(3):
                await bridge.dispatch(_action(f"a{i}"))

        asyncio.run(scenario())
        assert not bridge.seen("a0")
        assert bridge.seen("a2")
