"""Which connection speaks for which player, and delayed removal of lobby players who drop."""

from typing import Awaitable, Callable, Dict, List, NamedTuple, Optional, Tuple
import asyncio
import logging

import config

logger = logging.getLogger(__name__)


class Binding(NamedTuple):
    connection_id: str
    room_id: str
    player_id: str


RemovalCallback = Callable[[], Awaitable[None]]


class ConnectionTracker:
    def __init__(self, grace_seconds: float = config.RECONNECT_GRACE_SECONDS):
        self.grace_seconds = grace_seconds
        self._by_connection: Dict[str, Binding] = {}
        self._by_player: Dict[Tuple[str, str], str] = {}  # (room_id, player_id) -> connection_id
        self._pending: Dict[Tuple[str, str], asyncio.Task] = {}

    def bind(self, connection_id: str, room_id: str, player_id: str) -> Optional[str]:
        """Bind a connection to a player, cancelling any pending removal.

        Returns the connection previously bound to this player, if it differs.
        That connection loses its binding.
        """
        key = (room_id, player_id)
        self.cancel_removal(room_id, player_id)

        stale = self._by_connection.get(connection_id)
        if stale and (stale.room_id, stale.player_id) != key:
            self._drop(stale)

        previous = self._by_player.get(key)
        if previous and previous != connection_id:
            self._by_connection.pop(previous, None)
        else:
            previous = None

        self._by_connection[connection_id] = Binding(connection_id, room_id, player_id)
        self._by_player[key] = connection_id
        return previous

    def lookup(self, connection_id: str) -> Optional[Binding]:
        return self._by_connection.get(connection_id)

    def connection_for(self, room_id: str, player_id: str) -> Optional[str]:
        return self._by_player.get((room_id, player_id))

    def is_connected(self, room_id: str, player_id: str) -> bool:
        return (room_id, player_id) in self._by_player

    def connections_in(self, room_id: str) -> List[str]:
        return [b.connection_id for b in self._by_connection.values() if b.room_id == room_id]

    def live_room_ids(self) -> set:
        return {b.room_id for b in self._by_connection.values()}

    def unbind(self, connection_id: str) -> Optional[Binding]:
        binding = self._by_connection.pop(connection_id, None)
        if binding:
            self._drop(binding)
        return binding

    def _drop(self, binding: Binding):
        self._by_connection.pop(binding.connection_id, None)
        key = (binding.room_id, binding.player_id)
        if self._by_player.get(key) == binding.connection_id:
            del self._by_player[key]

    # --- Grace period ---

    def schedule_removal(self, room_id: str, player_id: str, callback: RemovalCallback) -> asyncio.Task:
        """Run ``callback`` after the grace period unless the player rebinds first.

        A second disconnect restarts the countdown rather than stacking timers.
        """
        key = (room_id, player_id)
        self.cancel_removal(room_id, player_id)
        task = asyncio.create_task(self._expire(key, callback))
        self._pending[key] = task
        return task

    def cancel_removal(self, room_id: str, player_id: str) -> bool:
        task = self._pending.pop((room_id, player_id), None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_room(self, room_id: str) -> int:
        keys = [k for k in self._pending if k[0] == room_id]
        for room, player in keys:
            self.cancel_removal(room, player)
        return len(keys)

    def has_pending_removal(self, room_id: str, player_id: str) -> bool:
        return (room_id, player_id) in self._pending

    def cancel_all(self):
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()

    async def _expire(self, key: Tuple[str, str], callback: RemovalCallback):
        try:
            await asyncio.sleep(self.grace_seconds)
        except asyncio.CancelledError:
            return
        if self._pending.get(key) is asyncio.current_task():
            del self._pending[key]
        if key in self._by_player:
            return
        try:
            await callback()
        except Exception:
            logger.exception("Removal callback failed for player %s in room %s", key[1], key[0])
