"""In-memory rooms, keyed by normalized room id. A room is a Lobby or an ActiveGame, never both."""

from typing import Dict, List, Optional, Union
import random
import re
import time
import logging

import config
from game_state import ActiveGame, Lobby

logger = logging.getLogger(__name__)

Room = Union[Lobby, ActiveGame]

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_room_id(raw: str) -> str:
    """'My  Room ' -> 'my-room'."""
    return _WHITESPACE_RE.sub("-", raw.strip().lower())


def is_new_room_request(raw: str) -> bool:
    return raw.strip().lower() == config.NEW_ROOM_SENTINEL


class RoomRegistry:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        self._rooms: Dict[str, Room] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return normalize_room_id(room_id) in self._rooms

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(normalize_room_id(room_id))

    def generate_room_id(self) -> str:
        for _ in range(config.MAX_ROOM_ID_ATTEMPTS):
            room_id = ''.join(self.rng.choices(config.ROOM_ID_ALPHABET, k=config.ROOM_ID_LENGTH))
            if room_id not in self._rooms and room_id != config.NEW_ROOM_SENTINEL:
                return room_id
        raise RuntimeError("Failed to generate unique room id")

    def resolve_room_id(self, raw: str) -> str:
        """Normalize a client-supplied id, allocating a fresh one for the 'new' sentinel."""
        if is_new_room_request(raw):
            return self.generate_room_id()
        return normalize_room_id(raw)

    def create_lobby(self, room_id: str) -> Lobby:
        room_id = normalize_room_id(room_id)
        if room_id in self._rooms:
            raise ValueError(f"Room {room_id} already exists")
        lobby = Lobby(room_id)
        self._rooms[room_id] = lobby
        logger.info("Lobby created: %s", room_id)
        return lobby

    def promote(self, room_id: str) -> ActiveGame:
        """Replace the lobby for ``room_id`` with a freshly dealt game.

        Raises LookupError if the room is not a lobby and ValueError if the
        lobby cannot start; in both cases nothing changes.
        """
        room_id = normalize_room_id(room_id)
        lobby = self._rooms.get(room_id)
        if not isinstance(lobby, Lobby):
            raise LookupError(f"No lobby {room_id} to promote")
        game = ActiveGame.from_lobby(lobby, self.rng)
        self._rooms[room_id] = game
        logger.info("Room %s promoted to active game with %d players", room_id, len(game.players))
        return game

    def remove_if_empty_lobby(self, room_id: str) -> bool:
        room_id = normalize_room_id(room_id)
        room = self._rooms.get(room_id)
        if isinstance(room, Lobby) and room.is_empty:
            del self._rooms[room_id]
            logger.info("Lobby %s removed (empty)", room_id)
            return True
        return False

    def remove(self, room_id: str) -> Optional[Room]:
        return self._rooms.pop(normalize_room_id(room_id), None)

    def expired_room_ids(self, live_room_ids, now: Optional[float] = None) -> List[str]:
        """Finished games past their short TTL, plus rooms nobody is connected to that sat idle too long."""
        now = now if now is not None else time.time()
        expired = []
        for room_id, room in self._rooms.items():
            idle = room.idle_seconds(now)
            if isinstance(room, ActiveGame) and room.is_finished and idle > config.FINISHED_ROOM_TTL_SECONDS:
                expired.append(room_id)
            elif room_id not in live_room_ids and idle > config.ROOM_TTL_SECONDS:
                expired.append(room_id)
        return expired
