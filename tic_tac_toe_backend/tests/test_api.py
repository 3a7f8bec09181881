import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from src.arena.config import Settings
from src.arena.database import MemoryRoomStore
from src.arena.local import AIGameRegistry
from src.arena.main import _purge_loop, create_app

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}
CAROL = {"X-User-Id": "carol"}


@pytest.fixture
def store():
    return MemoryRoomStore()


@pytest.fixture
def client(store):
    app = create_app(Settings(ai_move_delay=0.0), store=store)
    with TestClient(app) as client:
        yield client


def create_room(client):
    response = client.post("/rooms", headers=ALICE)
    assert response.status_code == 201
    return response.json()["room_code"]


def move(client, code, headers, index):
    return client.post(f"/rooms/{code}/moves", headers=headers, json={"index": index})


def test_health_check(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Healthy"}


def test_requires_user_header(client):
    assert client.post("/rooms").status_code == 401


def test_room_flow(client, store):
    code = create_room(client)
    assert len(code) == 6

    joined = client.post(f"/rooms/{code.lower()}/join", headers=BOB)
    assert joined.status_code == 200
    assert joined.json()["status"] == "playing"
    assert joined.json()["player2_id"] == "bob"

    for headers, index in [(ALICE, 0), (BOB, 3), (ALICE, 1), (BOB, 4)]:
        assert move(client, code, headers, index).status_code == 200
    final = move(client, code, ALICE, 2).json()
    assert final["status"] == "completed"
    assert final["winner_id"] == "alice"
    assert final["result"] == "win"
    assert final["winning_line"] == [0, 1, 2]
    assert store.games[0].outcome == "win"

    reset = client.post(f"/rooms/{code}/reset", headers=ALICE).json()
    assert reset["status"] == "playing"
    assert reset["board"] == [None] * 9

    fetched = client.get(f"/rooms/{code}").json()
    assert fetched["version"] == reset["version"]


def test_room_errors(client):
    code = create_room(client)

    response = move(client, code, ALICE, 0)
    assert response.status_code == 400
    assert response.json()["code"] == "game_not_active"

    client.post(f"/rooms/{code}/join", headers=BOB)
    response = client.post(f"/rooms/{code}/join", headers=CAROL)
    assert response.status_code == 409
    assert response.json()["code"] == "room_full"

    response = move(client, code, BOB, 0)
    assert response.status_code == 403
    assert response.json()["code"] == "not_your_turn"

    response = move(client, code, CAROL, 0)
    assert response.status_code == 403
    assert response.json()["code"] == "not_a_player"

    move(client, code, ALICE, 4)
    response = move(client, code, BOB, 4)
    assert response.status_code == 400
    assert response.json()["code"] == "cell_occupied"

    response = client.post(f"/rooms/{code}/reset", headers=BOB)
    assert response.status_code == 403

    response = client.get("/rooms/NOPE00")
    assert response.status_code == 404
    assert response.json()["code"] == "room_not_found"


def test_websocket_receives_snapshots(client):
    code = create_room(client)
    with client.websocket_connect(f"/ws/rooms/{code}") as websocket:
        initial = websocket.receive_json()
        assert initial["type"] == "room:update"
        assert initial["data"]["status"] == "waiting"

        client.post(f"/rooms/{code}/join", headers=BOB)
        update = websocket.receive_json()
        assert update["data"]["status"] == "playing"
        assert update["data"]["version"] > initial["data"]["version"]

        move(client, code, ALICE, 4)
        update = websocket.receive_json()
        assert update["data"]["board"][4] == "X"
        assert update["data"]["current_player"] == "O"

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}


def test_websocket_unknown_room(client):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws/rooms/NOPE00") as websocket:
            websocket.receive_json()
    assert excinfo.value.code == 4404


def test_ai_game_flow(client):
    started = client.post("/ai-games", headers=ALICE, json={"difficulty": "medium"})
    assert started.status_code == 201
    game = started.json()
    assert game["board"] == [None] * 9
    assert game["current_player"] == "X"

    played = client.post(f"/ai-games/{game['id']}/moves", headers=ALICE, json={"index": 0}).json()
    assert played["board"][0] == "X"
    assert played["last_ai_move"] == 4
    assert played["board"][4] == "O"

    response = client.post(f"/ai-games/{game['id']}/moves", headers=ALICE, json={"index": 4})
    assert response.status_code == 400
    assert response.json()["code"] == "cell_occupied"

    response = client.get(f"/ai-games/{game['id']}", headers=BOB)
    assert response.status_code == 404

    reset = client.post(f"/ai-games/{game['id']}/reset", headers=ALICE).json()
    assert reset["board"] == [None] * 9
    assert reset["result"] == "ongoing"

    assert client.delete(f"/ai-games/{game['id']}", headers=ALICE).status_code == 204
    assert client.get(f"/ai-games/{game['id']}", headers=ALICE).status_code == 404


def test_ai_opens_when_human_picks_o(client):
    game = client.post("/ai-games", headers=ALICE, json={"difficulty": "hard", "symbol": "O"}).json()
    assert game["human_symbol"] == "O"
    assert game["board"][0] == "X"
    assert game["last_ai_move"] == 0
    assert game["current_player"] == "O"

    reset = client.post(f"/ai-games/{game['id']}/reset", headers=ALICE).json()
    assert reset["board"].count("X") == 1
    assert reset["current_player"] == "O"


@pytest.mark.parametrize("frame", ["hello", "[1, 2]", '"ping"', '{"type": "chat"}'])
def test_websocket_ignores_unexpected_frames(client, frame):
    code = create_room(client)
    with client.websocket_connect(f"/ws/rooms/{code}") as websocket:
        websocket.receive_json()
        websocket.send_text(frame)
        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}


def test_purge_loop_survives_unexpected_errors():
    calls = []

    class FlakyRooms:
        async def purge_expired(self):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return 0

    registry = AIGameRegistry()

    async def scenario():
        task = asyncio.ensure_future(_purge_loop(FlakyRooms(), registry, 0, timedelta(hours=1)))
        while len(calls) < 3:
            await asyncio.sleep(0)
        task.cancel()

    asyncio.run(asyncio.wait_for(scenario(), timeout=5))
    assert len(calls) >= 3
