"""Move resolution for an active game.

A call names a secret name. Whoever holds it walks into the empty seat, the
seat they leave becomes the new empty seat, and the turn passes to the player
sitting to the right of it. The caller and the mover then trade secret names,
so the caller now holds the name that was just called.

Calls that match nobody are ignored, and so is a call for the name that was
just called: it cannot be called straight back. Two players racing to call
the same name is normal, and the loser's call is simply stale.
"""

from typing import Optional
import logging

from game_state import ActiveGame, GameStatus, Player, Team

logger = logging.getLogger(__name__)


class MoveResult:
    def __init__(self, moved: bool = False, mover: Optional[Player] = None,
                 from_seat: Optional[int] = None, winning_team: Optional[Team] = None):
        self.moved = moved
        self.mover = mover
        self.from_seat = from_seat
        self.winning_team = winning_team

    def __repr__(self):
        return (f"MoveResult(moved={self.moved}, from_seat={self.from_seat}, "
                f"winning_team={self.winning_team})")


NO_MOVE = MoveResult()


def caller_seat(game: ActiveGame) -> int:
    return (game.empty_seat + 1) % game.seat_count


def couch_winner(game: ActiveGame) -> Optional[Team]:
    """Team holding every occupied couch seat, if there is exactly one."""
    teams = set()
    for seat in game.couch_seats:
        occupant = game.occupant(seat)
        if occupant is None:
            # Only the empty seat can be vacant; it does not count for anyone.
            continue
        teams.add(occupant.team)
    if len(teams) == 1:
        team = teams.pop()
        if team in (Team.A, Team.B):
            return team
    return None


def resolve_move(game: ActiveGame, called_name: str, caller: Optional[Player] = None) -> MoveResult:
    """Apply one call to ``game``.

    ``caller`` is the player making the call. Without one, the player right of
    the empty seat is taken as the caller.

    Returns NO_MOVE, leaving the game untouched, when the game is over, no
    seated player holds ``called_name``, or ``called_name`` is the name the
    previous call used. Raises InvariantViolation if the circle is
    inconsistent after the move.
    """
    if game.status != GameStatus.STARTED or not isinstance(called_name, str):
        return NO_MOVE

    if called_name == game.last_called_name:
        logger.debug("Room %s: %r was just called, ignoring call", game.room_id, called_name)
        return NO_MOVE

    mover = game.holder_of(called_name)
    if mover is None or mover.seat_position is None:
        logger.debug("Room %s: nobody holds %r, ignoring call", game.room_id, called_name)
        return NO_MOVE

    if caller is None:
        caller = game.occupant(caller_seat(game))

    empty = game.empty_seat
    from_seat = mover.seat_position
    logger.debug("Room %s: %s called %r, seat %d moves to %d",
                 game.room_id, caller.id if caller else "nobody", called_name, from_seat, empty)
    if from_seat != empty:
        game.seats[from_seat] = None
    game.seats[empty] = mover.id
    mover.seat_position = empty

    if caller is not None and caller is not mover:
        caller.secret_name, mover.secret_name = mover.secret_name, caller.secret_name

    game.empty_seat = from_seat
    game.current_turn_seat = (from_seat + 1) % game.seat_count
    game.last_called_name = called_name

    game.validate()
    game.touch()

    winner = couch_winner(game)
    if winner:
        game.status = GameStatus.FINISHED
        game.winner = winner
        logger.info("Room %s: team %s holds the couch", game.room_id, winner.value)

    return MoveResult(moved=True, mover=mover, from_seat=from_seat, winning_team=winner)
