"""WebSocket game engine for the couch game."""

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing import Dict, List, Optional
import json
import time
import uuid
import random
import asyncio
import logging

import config
from connection_tracker import Binding, ConnectionTracker
from game_state import ActiveGame, InvariantViolation, Lobby
from messages import (
    CallName, EmojiChanged, Error, GameFinished, GameStarted, JoinRoom, Kicked,
    LeaveRoom, MoveMade, NameCalled, Outbound, PlayerJoined, PlayerLeft,
    PlayerNameChanged, RoomUpdate, SeatTaken, SetAvatar, SetPlayerName,
    StartGame, TakeSeat, parse_inbound,
)
from room_registry import RoomRegistry
from turn_resolver import resolve_move

logger = logging.getLogger(__name__)


class SocketManager:
    def __init__(self, registry: Optional[RoomRegistry] = None,
                 grace_seconds: float = config.RECONNECT_GRACE_SECONDS,
                 rng: Optional[random.Random] = None):
        self.registry = registry or RoomRegistry(rng)
        self.tracker = ConnectionTracker(grace_seconds)
        self.connections: Dict[str, WebSocket] = {}
        self.msg_timestamps: Dict[str, list] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    # --- Lifecycle ---

    def start_cleanup_loop(self):
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_expired_rooms())

    async def shutdown(self):
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None
        self.tracker.cancel_all()

    async def _cleanup_expired_rooms(self):
        while True:
            try:
                await asyncio.sleep(config.CLEANUP_INTERVAL_SECONDS)
                await self.evict_expired_rooms()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in room cleanup loop")

    async def evict_expired_rooms(self, now: Optional[float] = None) -> List[str]:
        expired = self.registry.expired_room_ids(self.tracker.live_room_ids(), now)
        for room_id in expired:
            self.registry.remove(room_id)
            self.tracker.cancel_room(room_id)
            for connection_id in self.tracker.connections_in(room_id):
                await self.send(connection_id, Kicked(message="Room closed after inactivity"))
                self.tracker.unbind(connection_id)
            logger.info("Cleaned up expired room %s", room_id)
        return expired

    # --- Transport ---

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.connections[connection_id] = websocket

        try:
            while True:
                data = await websocket.receive_text()

                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    await websocket.send_json(Error(message="Message too large").dump())
                    continue

                now = time.time()
                timestamps = self.msg_timestamps.setdefault(connection_id, [])
                timestamps[:] = [t for t in timestamps if now - t < 1.0]
                if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
                    await websocket.send_json(Error(message="Too many messages").dump())
                    continue
                timestamps.append(now)

                try:
                    message = parse_inbound(json.loads(data))
                except (json.JSONDecodeError, ValidationError):
                    await websocket.send_json(Error(message="Invalid message format").dump())
                    continue

                await self.handle_message(connection_id, message)
        except WebSocketDisconnect:
            logger.info("Connection %s closed", connection_id)
        except Exception:
            logger.exception("WebSocket error for connection %s", connection_id)
        finally:
            await self.handle_disconnect(connection_id)

    async def send(self, connection_id: str, message: Outbound) -> bool:
        ws = self.connections.get(connection_id)
        if not ws:
            return False
        try:
            await ws.send_json(message.dump())
            return True
        except Exception:
            logger.debug("Send to connection %s failed", connection_id)
            self.connections.pop(connection_id, None)
            return False

    async def broadcast(self, room_id: str, message: Outbound, exclude: Optional[str] = None):
        payload = message.dump()
        disconnected = []
        for connection_id in self.tracker.connections_in(room_id):
            if connection_id == exclude:
                continue
            ws = self.connections.get(connection_id)
            if not ws:
                continue
            try:
                await ws.send_json(payload)
            except Exception:
                disconnected.append(connection_id)
        for connection_id in disconnected:
            self.connections.pop(connection_id, None)

    # --- Dispatch ---

    async def handle_message(self, connection_id: str, message):
        try:
            if isinstance(message, JoinRoom):
                await self._handle_join(connection_id, message)
            elif isinstance(message, SetPlayerName):
                await self._handle_set_name(connection_id, message)
            elif isinstance(message, SetAvatar):
                await self._handle_set_avatar(connection_id, message)
            elif isinstance(message, TakeSeat):
                await self._handle_take_seat(connection_id, message)
            elif isinstance(message, StartGame):
                await self._handle_start_game(connection_id, message)
            elif isinstance(message, CallName):
                await self._handle_call_name(connection_id, message)
            elif isinstance(message, LeaveRoom):
                await self._handle_leave(connection_id)
        except InvariantViolation:
            logger.critical("Game state corrupted while handling %s from %s",
                            type(message).__name__, connection_id, exc_info=True)

    def _lobby_for(self, connection_id: str):
        binding = self.tracker.lookup(connection_id)
        if not binding:
            return None, None
        room = self.registry.get(binding.room_id)
        if not isinstance(room, Lobby):
            return binding, None
        return binding, room

    async def _handle_join(self, connection_id: str, message: JoinRoom):
        try:
            room_id = self.registry.resolve_room_id(message.room_id)
        except RuntimeError:
            logger.exception("Could not allocate a room id")
            await self.send(connection_id, Error(message="Could not create a room, try again"))
            return

        identity = message.persistent_identity or uuid.uuid4().hex

        current = self.tracker.lookup(connection_id)
        if current and (current.room_id, current.player_id) != (room_id, identity):
            await self._leave(current)

        room = self.registry.get(room_id)

        # Reconnection: same identity already on the roster
        if room is not None and room.has_player(identity):
            await self._rebind(connection_id, room_id, identity)
            # The old socket's close may have let another handler promote or drop the room
            room = self.registry.get(room_id)
            player = room.find(identity) if room is not None else None
            if player is None:
                self.tracker.unbind(connection_id)
                await self.send(connection_id, Error(message="Room no longer exists"))
                return
            room.touch()
            await self.send(connection_id, PlayerJoined(room=room.snapshot(), player=player.public_info()))
            logger.info("Player '%s' reconnected to room %s (%s)",
                        player.display_name, room_id, "game" if isinstance(room, ActiveGame) else "lobby")
            return

        if isinstance(room, ActiveGame):
            await self.send(connection_id, Error(message="Game already in progress"))
            return

        if room is None:
            if len(self.registry) >= config.MAX_ROOMS:
                await self.send(connection_id, Error(message="Too many active rooms. Try again later."))
                return
            room = self.registry.create_lobby(room_id)

        player = room.add_player(identity, message.display_name)
        await self._rebind(connection_id, room_id, identity)

        snapshot = room.snapshot()
        joined = PlayerJoined(room=snapshot, player=player.public_info())
        await self.send(connection_id, joined)
        await self.broadcast(room_id, joined, exclude=connection_id)
        await self.broadcast(room_id, RoomUpdate(room=snapshot))
        logger.info("Player '%s' joined room %s", player.display_name, room_id)

    async def _rebind(self, connection_id: str, room_id: str, player_id: str):
        previous = self.tracker.bind(connection_id, room_id, player_id)
        if not previous:
            return
        old_ws = self.connections.pop(previous, None)
        if old_ws:
            try:
                await old_ws.send_json(Kicked(message="You joined from another device").dump())
                await old_ws.close()
            except Exception:
                logger.debug("Previous connection %s already gone", previous)

    async def _handle_set_name(self, connection_id: str, message: SetPlayerName):
        binding, lobby = self._lobby_for(connection_id)
        if not lobby or not lobby.set_display_name(binding.player_id, message.name):
            return
        snapshot = lobby.snapshot()
        await self.broadcast(binding.room_id, PlayerNameChanged(
            room=snapshot, player_id=binding.player_id, name=message.name))
        await self.broadcast(binding.room_id, RoomUpdate(room=snapshot))

    async def _handle_set_avatar(self, connection_id: str, message: SetAvatar):
        binding, lobby = self._lobby_for(connection_id)
        if not lobby or not lobby.set_avatar(binding.player_id, message.avatar):
            return
        snapshot = lobby.snapshot()
        await self.broadcast(binding.room_id, EmojiChanged(
            room=snapshot, player_id=binding.player_id, avatar=message.avatar))
        await self.broadcast(binding.room_id, RoomUpdate(room=snapshot))

    async def _handle_take_seat(self, connection_id: str, message: TakeSeat):
        binding, lobby = self._lobby_for(connection_id)
        if not lobby or not lobby.swap_seats(binding.player_id, message.seat_index):
            return
        snapshot = lobby.snapshot()
        await self.broadcast(binding.room_id, SeatTaken(room=snapshot))
        await self.broadcast(binding.room_id, RoomUpdate(room=snapshot))

    async def _handle_start_game(self, connection_id: str, message: StartGame):
        binding, lobby = self._lobby_for(connection_id)
        if not lobby:
            return
        problem = lobby.start_problem()
        if problem:
            await self.send(connection_id, Error(message=problem))
            return

        game = self.registry.promote(binding.room_id)
        self.tracker.cancel_room(binding.room_id)

        snapshot = game.snapshot()
        await self.broadcast(binding.room_id, GameStarted(room=snapshot))
        await self.broadcast(binding.room_id, RoomUpdate(room=snapshot))
        logger.info("Game started in room %s with %d players", binding.room_id, len(game.players))

    async def _handle_call_name(self, connection_id: str, message: CallName):
        binding = self.tracker.lookup(connection_id)
        if not binding:
            return
        game = self.registry.get(binding.room_id)
        if not isinstance(game, ActiveGame) or game.is_finished:
            return
        caller = game.find(binding.player_id)
        if not caller:
            return

        result = resolve_move(game, message.name, caller)
        if not result.moved:
            return
        game.record_call(caller, message.name, result.mover, result.from_seat)

        await self.broadcast(binding.room_id, NameCalled(
            caller_name=caller.display_name, called_name=message.name))
        snapshot = game.snapshot()
        if result.winning_team:
            await self.broadcast(binding.room_id, GameFinished(
                winner=result.winning_team.value, room=snapshot))
            logger.info("Game finished in room %s, team %s wins",
                        binding.room_id, result.winning_team.value)
        else:
            await self.broadcast(binding.room_id, MoveMade(room=snapshot))
        logger.info("Move in room %s: %s called %r, seat %d -> %d", binding.room_id,
                    caller.display_name, message.name, result.from_seat, result.mover.seat_position)

    async def _handle_leave(self, connection_id: str):
        binding = self.tracker.unbind(connection_id)
        if binding:
            await self._leave(binding)

    async def _leave(self, binding: Binding):
        self.tracker.unbind(binding.connection_id)
        room = self.registry.get(binding.room_id)
        if isinstance(room, ActiveGame):
            # Seating is fixed once the game starts; the player stays seated.
            logger.info("Player %s left active game %s (seat kept)", binding.player_id, binding.room_id)
            return
        if isinstance(room, Lobby):
            self.tracker.cancel_removal(binding.room_id, binding.player_id)
            await self._remove_from_lobby(room, binding.player_id)

    async def _remove_from_lobby(self, lobby: Lobby, player_id: str):
        if not lobby.remove_player(player_id):
            return
        logger.info("Player %s left room %s", player_id, lobby.room_id)
        if self.registry.remove_if_empty_lobby(lobby.room_id):
            return
        snapshot = lobby.snapshot()
        await self.broadcast(lobby.room_id, PlayerLeft(room=snapshot, player_id=player_id))
        await self.broadcast(lobby.room_id, RoomUpdate(room=snapshot))

    async def handle_disconnect(self, connection_id: str):
        self.connections.pop(connection_id, None)
        self.msg_timestamps.pop(connection_id, None)
        binding = self.tracker.unbind(connection_id)
        if not binding:
            return
        if self.tracker.is_connected(binding.room_id, binding.player_id):
            # Already rebound on a newer connection
            return

        room = self.registry.get(binding.room_id)
        if isinstance(room, ActiveGame):
            logger.info("Player %s disconnected from active game %s (data preserved)",
                        binding.player_id, binding.room_id)
        elif isinstance(room, Lobby):
            logger.info("Player %s disconnected from lobby %s, removing in %ss unless they return",
                        binding.player_id, binding.room_id, self.tracker.grace_seconds)
            self.tracker.schedule_removal(
                binding.room_id, binding.player_id,
                lambda: self._expire_lobby_player(binding.room_id, binding.player_id))

    async def _expire_lobby_player(self, room_id: str, player_id: str):
        room = self.registry.get(room_id)
        if not isinstance(room, Lobby):
            return
        logger.info("Grace period expired for player %s in room %s", player_id, room_id)
        await self._remove_from_lobby(room, player_id)
