"""
Unit tests for the connection tracker: bindings and the reconnect grace period.
"""
import sys
import os
import asyncio

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from connection_tracker import ConnectionTracker


GRACE = 0.05


def make_tracker():
    return ConnectionTracker(grace_seconds=GRACE)


# =====================================================================
# Bindings
# =====================================================================

class TestBindings:
    def test_bind_and_lookup(self):
        tracker = make_tracker()
        assert tracker.bind("c1", "den", "p1") is None
        binding = tracker.lookup("c1")
        assert binding.room_id == "den"
        assert binding.player_id == "p1"
        assert tracker.connection_for("den", "p1") == "c1"

    def test_rebind_returns_previous_connection(self):
        tracker = make_tracker()
        tracker.bind("c1", "den", "p1")
        assert tracker.bind("c2", "den", "p1") == "c1"
        assert tracker.lookup("c1") is None
        assert tracker.connection_for("den", "p1") == "c2"

    def test_rebind_same_connection(self):
        tracker = make_tracker()
        tracker.bind("c1", "den", "p1")
        assert tracker.bind("c1", "den", "p1") is None

    def test_unbind_stale_connection_keeps_new_one(self):
        tracker = make_tracker()
        tracker.bind("c1", "den", "p1")
        tracker.bind("c2", "den", "p1")
        assert tracker.unbind("c1") is None
        assert tracker.is_connected("den", "p1")

    def test_unbind(self):
        tracker = make_tracker()
        tracker.bind("c1", "den", "p1")
        binding = tracker.unbind("c1")
        assert binding.player_id == "p1"
        assert not tracker.is_connected("den", "p1")

    def test_connections_in_room(self):
        tracker = make_tracker()
        tracker.bind("c1", "den", "p1")
        tracker.bind("c2", "den", "p2")
        tracker.bind("c3", "attic", "p3")
        assert sorted(tracker.connections_in("den")) == ["c1", "c2"]
        assert tracker.live_room_ids() == {"den", "attic"}

    def test_binding_to_another_room_drops_old_binding(self):
        tracker = make_tracker()
        tracker.bind("c1", "den", "p1")
        tracker.bind("c1", "attic", "p1")
        assert not tracker.is_connected("den", "p1")
        assert tracker.connections_in("den") == []


# =====================================================================
# Grace period
# =====================================================================

class TestGracePeriod:
    def test_removal_fires_after_grace(self):
        fired = []

        async def scenario():
            tracker = make_tracker()

            async def remove():
                fired.append("p1")

            tracker.schedule_removal("den", "p1", remove)
            assert tracker.has_pending_removal("den", "p1")
            await asyncio.sleep(GRACE * 4)
            assert not tracker.has_pending_removal("den", "p1")

        asyncio.run(scenario())
        assert fired == ["p1"]

    def test_rebind_cancels_removal(self):
        fired = []

        async def scenario():
            tracker = make_tracker()

            async def remove():
                fired.append("p1")

            tracker.schedule_removal("den", "p1", remove)
            tracker.bind("c2", "den", "p1")
            await asyncio.sleep(GRACE * 4)

        asyncio.run(scenario())
        assert fired == []

    def test_second_disconnect_restarts_timer(self):
        fired = []

        async def scenario():
            tracker = make_tracker()

            async def remove():
                fired.append(asyncio.get_running_loop().time())

            tracker.schedule_removal("den", "p1", remove)
            await asyncio.sleep(GRACE / 2)
            tracker.schedule_removal("den", "p1", remove)
            await asyncio.sleep(GRACE * 4)

        asyncio.run(scenario())
        assert len(fired) == 1

    def test_cancel_room(self):
        fired = []

        async def scenario():
            tracker = make_tracker()

            async def remove():
                fired.append(True)

            tracker.schedule_removal("den", "p1", remove)
            tracker.schedule_removal("den", "p2", remove)
            tracker.schedule_removal("attic", "p3", remove)
            assert tracker.cancel_room("den") == 2
            await asyncio.sleep(GRACE * 4)

        asyncio.run(scenario())
        assert fired == [True]

    def test_failing_callback_is_contained(self):
        async def scenario():
            tracker = make_tracker()

            async def remove():
                raise RuntimeError("boom")

            task = tracker.schedule_removal("den", "p1", remove)
            await asyncio.sleep(GRACE * 4)
            assert task.done()
            assert task.exception() is None

        asyncio.run(scenario())
