"""Websocket and HTTP surface tests against the FastAPI app."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

import main
from room import RoomPhase


@pytest.fixture()
def client():
    saved = (main.config.countdown_interval, main.config.tick_rate)
    main.config.countdown_interval = 0.01
    main.config.tick_rate = 0.001
    main.room_manager.clear_all_rooms()
    with TestClient(main.app) as c:
        yield c
    main.room_manager.clear_all_rooms()
    main.config.countdown_interval, main.config.tick_rate = saved


def receive_until(ws, msg_type: str, limit: int = 500) -> list[dict]:
    """Collect messages up to and including the first one of ``msg_type``."""
    received = []
    for _ in range(limit):
        message = ws.receive_json()
        received.append(message)
        if message["type"] == msg_type:
            return received
    raise AssertionError(f"never received {msg_type}")


def test_root_and_params(client):
    assert client.get("/").json() == {"name": "FlapDuel Server", "status": "running"}
    params = client.get("/params").json()
    assert params["gravity"] == 0.4
    assert params["jump_impulse"] == -9.0
    assert params["field_width"] == 800.0
    assert params["bird_size"] == 24.0


def test_join_assigns_slots_and_rejects_third(client):
    with client.websocket_connect("/ws") as ws1:
        assert ws1.receive_json()["player_id"] == 1
        with client.websocket_connect("/ws") as ws2:
            assert ws2.receive_json()["player_id"] == 2
            assert ws2.receive_json() == {"type": "room_ready"}
            assert ws1.receive_json() == {"type": "room_ready"}

            with client.websocket_connect("/ws") as ws3:
                assert ws3.receive_json() == {"type": "room_full"}
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws3.receive_json()
                assert exc_info.value.code == 4002

            status = client.get("/status").json()
            main_room = status["rooms"][0]
            assert main_room["room_id"] == "main"
            assert main_room["phase"] == "lobby"
            assert [p["player_id"] for p in main_room["players"]] == [1, 2]

        players = client.get("/status").json()["rooms"][0]["players"]
        assert [p["player_id"] for p in players] == [1]


def test_malformed_frames_are_dropped(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("{not json")
        ws.send_text("[1, 2, 3]")
        ws.send_bytes(b"\xff\xfe")
        ws.send_json({"type": "set_name", "name": "Alice"})
        assert ws.receive_json() == {"type": "lobby_name_update", "player_id": 1, "name": "Alice"}


def test_invalid_color_leaves_default(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "set_color", "color": "red"})
        ws.send_json({"type": "set_name", "name": "Probe"})
        assert ws.receive_json()["type"] == "lobby_name_update"
        players = client.get("/status").json()["rooms"][0]["players"]
        assert players[0]["color"] == "#FFD700"


def test_full_match_over_websockets(client):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        ws1.receive_json()
        ws1.receive_json()
        ws2.receive_json()
        ws2.receive_json()

        ws1.send_json({"type": "set_name", "name": "Alice"})
        assert ws1.receive_json()["name"] == "Alice"
        ws1.send_json({"type": "ready"})
        assert ws1.receive_json() == {"type": "player_ready", "player_id": 1}
        ws2.send_json({"type": "ready"})

        messages = receive_until(ws1, "game_over")
        types = [m["type"] for m in messages]
        assert types[:5] == ["player_ready", "countdown", "countdown", "countdown", "start"]
        assert [m["value"] for m in messages if m["type"] == "countdown"] == [3, 2, 1]
        start = messages[4]
        assert start["params"]["gap_height"] == 150.0

        states = [m["state"] for m in messages if m["type"] == "state"]
        assert states[0]["score"] == 0
        assert states[0]["names"] == ["Alice", "Player 2"]
        assert messages[-1] == {"type": "game_over", "winner": 1, "winner_name": "Alice", "score": 0}

        room = main.room_manager.get_room("main")
        assert room.phase == RoomPhase.FINISHED

        ws2.send_json({"type": "back_to_lobby"})
        receive_until(ws1, "lobby_reset")
        assert room.phase == RoomPhase.LOBBY


def test_named_rooms_are_independent(client):
    with client.websocket_connect("/ws/side") as ws:
        joined = ws.receive_json()
        assert joined["room_id"] == "side"
        assert joined["player_id"] == 1
        rooms = {r["room_id"] for r in client.get("/status").json()["rooms"]}
        assert rooms == {"main", "side"}
    assert "side" not in main.room_manager.rooms
