"""Room state for the couch game: the lobby roster and the in-game seating circle."""

from enum import Enum
from typing import List, Optional, Tuple
import random
import time
import logging

import config

logger = logging.getLogger(__name__)


class Team(str, Enum):
    A = "A"
    B = "B"
    UNASSIGNED = "unassigned"


class GameStatus(str, Enum):
    STARTED = "started"
    FINISHED = "finished"


class InvariantViolation(RuntimeError):
    """Seating state is inconsistent. Always a programming error, never bad input."""


def couch_size(player_count: int) -> int:
    return max(config.MIN_COUCH_SEATS, player_count // config.COUCH_DIVISOR)


class Player:
    def __init__(self, player_id: str, display_name: str = "", avatar: Optional[str] = None):
        self.id = player_id
        self.display_name = display_name
        self.avatar = avatar
        self.team = Team.UNASSIGNED
        self.seat_position: Optional[int] = None
        self.secret_name: Optional[str] = None

    def public_info(self) -> dict:
        return {"id": self.id, "name": self.display_name, "avatar": self.avatar}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.display_name,
            "avatar": self.avatar,
            "team": self.team.value,
            "seatPosition": self.seat_position,
        }


class _RoomBase:
    def __init__(self, room_id: str):
        self.room_id = room_id
        self.players: List[Player] = []
        self.last_activity = time.time()

    def touch(self):
        self.last_activity = time.time()

    def idle_seconds(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.last_activity

    def find(self, player_id: str) -> Optional[Player]:
        for p in self.players:
            if p.id == player_id:
                return p
        return None

    def has_player(self, player_id: str) -> bool:
        return self.find(player_id) is not None


class Lobby(_RoomBase):
    """Pre-game roster. List order is the seat-preference order."""

    phase = "setup"

    def index_of(self, player_id: str) -> int:
        for i, p in enumerate(self.players):
            if p.id == player_id:
                return i
        return -1

    def add_player(self, player_id: str, display_name: str, avatar: Optional[str] = None) -> Player:
        """Append a new player. An identity already on the roster is returned as-is."""
        existing = self.find(player_id)
        if existing:
            return existing
        player = Player(player_id, display_name, avatar)
        self.players.append(player)
        self.touch()
        return player

    def remove_player(self, player_id: str) -> bool:
        idx = self.index_of(player_id)
        if idx < 0:
            return False
        del self.players[idx]
        self.touch()
        return True

    @property
    def is_empty(self) -> bool:
        return not self.players

    def swap_seats(self, player_id: str, target_index: int) -> bool:
        current = self.index_of(player_id)
        if current < 0:
            return False
        if target_index < 0 or target_index >= len(self.players):
            return False
        if target_index == current:
            return False
        self.players[current], self.players[target_index] = (
            self.players[target_index], self.players[current])
        self.touch()
        return True

    def set_display_name(self, player_id: str, name: str) -> bool:
        player = self.find(player_id)
        if not player or not name or not name.strip():
            return False
        player.display_name = name.strip()
        self.touch()
        return True

    def set_avatar(self, player_id: str, avatar: str) -> bool:
        player = self.find(player_id)
        if not player or not avatar:
            return False
        player.avatar = avatar
        self.touch()
        return True

    def provisional_teams(self) -> Tuple[List[str], List[str]]:
        # Advisory only; ActiveGame.from_lobby reshuffles before assigning.
        team_a = [p.id for i, p in enumerate(self.players) if i % 2 == 0]
        team_b = [p.id for i, p in enumerate(self.players) if i % 2 == 1]
        return team_a, team_b

    def start_problem(self) -> Optional[str]:
        """Return why the game cannot start yet, or None if it can."""
        if len(self.players) < config.MIN_PLAYERS:
            return f"Need at least {config.MIN_PLAYERS} players to start ({len(self.players)}/{config.MIN_PLAYERS})"
        if any(not p.display_name for p in self.players):
            return "Every player needs a name"
        if any(not p.avatar for p in self.players):
            return "Every player needs to pick an avatar"
        team_a, team_b = self.provisional_teams()
        if min(len(team_a), len(team_b)) < config.MIN_TEAM_SIZE:
            return f"Each team needs at least {config.MIN_TEAM_SIZE} players"
        return None

    def can_start(self) -> bool:
        return self.start_problem() is None

    def snapshot(self) -> dict:
        team_a, team_b = self.provisional_teams()
        return {
            "id": self.room_id,
            "phase": self.phase,
            "seats": [p.public_info() for p in self.players],
            "teams": {"A": team_a, "B": team_b},
            "couchSeats": list(range(couch_size(len(self.players)))),
            "emptySeat": None,
            "currentTurnSeat": None,
            "players": [p.to_dict() for p in self.players],
            "canStart": self.can_start(),
        }


class ActiveGame(_RoomBase):
    """In-game state: N = players + 1 seats around a circle, exactly one of them empty."""

    def __init__(self, room_id: str):
        super().__init__(room_id)
        self.team_a: List[str] = []
        self.team_b: List[str] = []
        self.seats: List[Optional[str]] = []
        self.couch_seats: List[int] = []
        self.empty_seat = 0
        self.current_turn_seat = 0
        self.status = GameStatus.STARTED
        self.winner: Optional[Team] = None
        self.last_called_name: Optional[str] = None
        self.call_history: List[dict] = []

    @classmethod
    def from_lobby(cls, lobby: Lobby, rng: Optional[random.Random] = None) -> "ActiveGame":
        problem = lobby.start_problem()
        if problem:
            raise ValueError(f"Lobby {lobby.room_id} cannot start: {problem}")
        rng = rng or random.Random()

        order = list(lobby.players)
        rng.shuffle(order)
        secret_names = [p.display_name for p in order]
        rng.shuffle(secret_names)

        game = cls(lobby.room_id)
        count = len(order)
        game.seats = [None] * (count + 1)
        for seat, (src, secret) in enumerate(zip(order, secret_names)):
            player = Player(src.id, src.display_name, src.avatar)
            player.team = Team.A if seat % 2 == 0 else Team.B
            player.seat_position = seat
            player.secret_name = secret
            game.players.append(player)
            game.seats[seat] = player.id
            (game.team_a if player.team == Team.A else game.team_b).append(player.id)

        game.empty_seat = count
        game.couch_seats = list(range(couch_size(count)))
        game.current_turn_seat = (game.empty_seat + 1) % len(game.seats)
        game.validate()
        logger.debug("Room %s dealt: %d players, couch seats %s", game.room_id, count, game.couch_seats)
        return game

    @property
    def seat_count(self) -> int:
        return len(self.seats)

    @property
    def is_finished(self) -> bool:
        return self.status == GameStatus.FINISHED

    @property
    def phase(self) -> str:
        return "finished" if self.is_finished else "playing"

    def holder_of(self, secret_name: str) -> Optional[Player]:
        # Seating order, so duplicate display names resolve to the first holder around the circle.
        by_seat = sorted(
            (p for p in self.players if p.secret_name == secret_name and p.seat_position is not None),
            key=lambda p: p.seat_position)
        return by_seat[0] if by_seat else None

    def occupant(self, seat: int) -> Optional[Player]:
        player_id = self.seats[seat]
        return self.find(player_id) if player_id is not None else None

    def validate(self):
        """Raise InvariantViolation unless the seating circle is consistent."""
        empty = [i for i, s in enumerate(self.seats) if s is None]
        if len(empty) != 1:
            raise InvariantViolation(
                f"Room {self.room_id}: expected 1 empty seat, found {len(empty)}")
        if empty[0] != self.empty_seat:
            raise InvariantViolation(
                f"Room {self.room_id}: empty seat is {empty[0]}, tracked as {self.empty_seat}")
        occupants = [s for s in self.seats if s is not None]
        if len(set(occupants)) != len(occupants) or len(occupants) != len(self.players):
            raise InvariantViolation(f"Room {self.room_id}: seats and roster disagree")
        for p in self.players:
            if p.seat_position is None or self.seats[p.seat_position] != p.id:
                raise InvariantViolation(
                    f"Room {self.room_id}: player {p.id} thinks they sit at {p.seat_position}")
        if self.current_turn_seat != (self.empty_seat + 1) % self.seat_count:
            raise InvariantViolation(
                f"Room {self.room_id}: turn seat {self.current_turn_seat} is not right of empty seat {self.empty_seat}")
        if sorted(p.secret_name or "" for p in self.players) != sorted(p.display_name for p in self.players):
            raise InvariantViolation(f"Room {self.room_id}: secret names are not a permutation of names")

    def record_call(self, caller: Player, called_name: str, mover: Player, from_seat: int):
        self.call_history.append({
            "callerId": caller.id,
            "callerName": caller.display_name,
            "calledName": called_name,
            "moverId": mover.id,
            "fromSeat": from_seat,
            "toSeat": mover.seat_position,
        })
        del self.call_history[:-config.CALL_HISTORY_LIMIT]
        self.touch()

    def snapshot(self) -> dict:
        seats: List[Optional[dict]] = []
        for i in range(self.seat_count):
            occupant = self.occupant(i)
            seats.append(occupant.public_info() if occupant else None)
        return {
            "id": self.room_id,
            "phase": self.phase,
            "status": self.status.value,
            "seats": seats,
            "teams": {"A": list(self.team_a), "B": list(self.team_b)},
            "couchSeats": list(self.couch_seats),
            "emptySeat": self.empty_seat,
            "currentTurnSeat": self.current_turn_seat,
            "secretNames": [{"playerId": p.id, "secretName": p.secret_name} for p in self.players],
            "players": [p.to_dict() for p in self.players],
            "winner": self.winner.value if self.winner else None,
            "lastCalledName": self.last_called_name,
            "callHistory": list(self.call_history),
        }

