"""
WebSocket integration tests using FastAPI TestClient.
Tests: joining, lobby setup, game start, calling names, reconnection, grace period.
"""
import sys
import os
import random
from contextlib import ExitStack

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient
from main import create_app
from socket_manager import SocketManager
import config


GRACE = 0.2


@pytest.fixture
def manager():
    return SocketManager(grace_seconds=GRACE, rng=random.Random(5))


@pytest.fixture
def client(manager):
    with TestClient(create_app(manager)) as c:
        yield c


def recv_until(ws, msg_type, max_messages=50, where=None):
    """Receive WS messages until we get the expected type."""
    for _ in range(max_messages):
        data = ws.receive_json()
        if data.get("type") == msg_type and (where is None or where(data)):
            return data
    raise TimeoutError(f"Never received {msg_type} after {max_messages} messages")


def join(ws, room_id, name, identity):
    ws.send_json({
        "type": "joinRoom", "roomId": room_id,
        "displayName": name, "persistentIdentity": identity,
    })
    return recv_until(ws, "playerJoined")


def pick_avatar(ws, identity, avatar="🐱"):
    ws.send_json({"type": "setAvatar", "avatar": avatar})
    return recv_until(ws, "emojiChanged", where=lambda m: m["playerId"] == identity)


def seat_players(client, stack, count, room_id="new", first=0):
    """Open ``count`` ready players in one room; returns (room_id, [(identity, ws)])."""
    players = []
    for i in range(first, first + count):
        identity = f"player-{i}"
        ws = stack.enter_context(client.websocket_connect("/ws"))
        joined = join(ws, room_id, f"Player{i}", identity)
        room_id = joined["room"]["id"]
        pick_avatar(ws, identity)
        players.append((identity, ws))
    return room_id, players


# =====================================================================
# Joining
# =====================================================================

class TestJoin:
    def test_join_new_room(self, client, manager):
        with client.websocket_connect("/ws") as ws:
            joined = join(ws, "new", "Alice", "alice-id")
            assert joined["player"]["name"] == "Alice"
            assert joined["room"]["phase"] == "setup"
            room_id = joined["room"]["id"]
            assert room_id != config.NEW_ROOM_SENTINEL
            update = recv_until(ws, "roomUpdate")
            assert update["room"]["players"][0]["id"] == "alice-id"
            assert manager.registry.get(room_id) is not None

    def test_room_names_are_normalized(self, client):
        with client.websocket_connect("/ws") as ws:
            joined = join(ws, "Friday  Night", "Alice", "alice-id")
            assert joined["room"]["id"] == "friday-night"

    def test_second_player_is_announced(self, client):
        with client.websocket_connect("/ws") as ws1:
            room_id = join(ws1, "new", "Alice", "alice-id")["room"]["id"]
            with client.websocket_connect("/ws") as ws2:
                join(ws2, room_id, "Bob", "bob-id")
                announced = recv_until(ws1, "playerJoined")
                assert announced["player"]["id"] == "bob-id"
                update = recv_until(ws1, "roomUpdate", where=lambda m: len(m["room"]["players"]) == 2)
                assert [s["name"] for s in update["room"]["seats"]] == ["Alice", "Bob"]


# =====================================================================
# Malformed input
# =====================================================================

class TestMalformedInput:
    def test_invalid_json(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            msg = ws.receive_json()
            assert msg["type"] == "error"
            assert msg["message"] == "Invalid message format"

    def test_unknown_type(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "teleport"})
            assert ws.receive_json()["type"] == "error"

    def test_bad_field_type(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "takeSeat", "seatIndex": "front row"})
            assert ws.receive_json()["message"] == "Invalid message format"

    def test_name_too_long(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "joinRoom", "roomId": "den",
                          "displayName": "x" * (config.MAX_NAME_LENGTH + 1)})
            assert ws.receive_json()["type"] == "error"

    def test_message_too_large(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("x" * (config.MAX_WS_MESSAGE_SIZE + 1))
            assert ws.receive_json()["message"] == "Message too large"


# =====================================================================
# Game flow
# =====================================================================

class TestGameFlow:
    def test_start_with_too_few_players(self, client, manager):
        with ExitStack() as stack:
            room_id, players = seat_players(client, stack, 3)
            _, host = players[0]
            host.send_json({"type": "startGame", "roomId": room_id})
            error = recv_until(host, "error")
            assert "6" in error["message"]
            assert manager.registry.get(room_id).phase == "setup"

    def test_full_game_round(self, client):
        with ExitStack() as stack:
            room_id, players = seat_players(client, stack, 6)
            _, host = players[0]
            host.send_json({"type": "startGame", "roomId": room_id})
            started = [recv_until(ws, "gameStarted") for _, ws in players]
            room = started[0]["room"]
            assert all(s["room"] == room for s in started)
            assert len(room["seats"]) == 7
            assert room["emptySeat"] == 6
            assert room["currentTurnSeat"] == 0
            assert room["couchSeats"] == [0, 1]

            target_id = room["seats"][2]["id"]
            secret = next(s["secretName"] for s in room["secretNames"] if s["playerId"] == target_id)
            _, caller = players[1]
            caller.send_json({"type": "callName", "name": secret})
            for _, ws in players:
                called = recv_until(ws, "nameCalled")
                assert called["calledName"] == secret
                assert called["callerName"] == "Player1"
                moved = recv_until(ws, "moveMade")
                assert moved["room"]["emptySeat"] == 2
                assert moved["room"]["seats"][6]["id"] == target_id

    def test_reconnect_mid_game(self, client, manager):
        with ExitStack() as stack:
            room_id, players = seat_players(client, stack, 5)
            _, host = players[0]
            with client.websocket_connect("/ws") as ws:
                join(ws, room_id, "Player5", "player-5")
                pick_avatar(ws, "player-5")
                host.send_json({"type": "startGame", "roomId": room_id})
                started = recv_until(ws, "gameStarted")

            back = stack.enter_context(client.websocket_connect("/ws"))
            rejoined = join(back, room_id, "whatever", "player-5")
            assert rejoined["room"] == started["room"]
            assert rejoined["player"]["name"] == "Player5"
            ids = [p["id"] for p in rejoined["room"]["players"]]
            assert sorted(ids) == sorted(set(ids))
            assert len(ids) == 6

    def test_lobby_grace_period_expiry(self, client, manager):
        with client.websocket_connect("/ws") as host:
            room_id = join(host, "new", "Host", "host-id")["room"]["id"]
            with client.websocket_connect("/ws") as guest:
                join(guest, room_id, "Guest", "guest-id")
                recv_until(host, "roomUpdate", where=lambda m: len(m["room"]["players"]) == 2)
            left = recv_until(host, "playerLeft")
            assert left["playerId"] == "guest-id"
            assert [p["id"] for p in left["room"]["players"]] == ["host-id"]
            assert not manager.registry.get(room_id).has_player("guest-id")

    def test_explicit_leave(self, client, manager):
        with client.websocket_connect("/ws") as host:
            room_id = join(host, "new", "Host", "host-id")["room"]["id"]
            with client.websocket_connect("/ws") as guest:
                join(guest, room_id, "Guest", "guest-id")
                guest.send_json({"type": "leaveRoom"})
                left = recv_until(host, "playerLeft")
                assert left["playerId"] == "guest-id"
