import random
from contextlib import ExitStack

import pytest
from fastapi.testclient import TestClient

from main import app
from agents.game_master import game_master
from agents.phase_timer import PhaseTimer
from services.session_store import SessionStore
from helpers import FakeGenerator, LONG_DURATIONS, MURDERER_ID


@pytest.fixture
def client(monkeypatch):
    # Fresh state on the app singleton; locks must belong to this client's loop.
    monkeypatch.setattr(game_master, "store", SessionStore())
    monkeypatch.setattr(game_master, "generator", FakeGenerator())
    monkeypatch.setattr(game_master, "timer", PhaseTimer(tick_seconds=0.01))
    monkeypatch.setattr(game_master, "rng", random.Random(3))
    monkeypatch.setattr(game_master, "durations", dict(LONG_DURATIONS))
    monkeypatch.setattr(game_master, "discovery_chance", 1.0)
    monkeypatch.setattr(game_master, "_locks", {})
    monkeypatch.setattr(game_master, "_starting", set())
    with TestClient(app) as c:
        yield c


def _create(client, user_id="u1", username="Alice"):
    resp = client.post("/api/games/create", json={"userId": user_id, "username": username})
    assert resp.status_code == 200
    return resp.json()


def _auth(ws, user_id, username):
    ws.send_json({"type": "authenticate", "userId": user_id, "username": username})
    assert ws.receive_json() == {"type": "authenticated", "success": True}


def _until(ws, predicate, limit=200):
    """Read messages until one matches; return it."""
    for _ in range(limit):
        msg = ws.receive_json()
        if predicate(msg):
            return msg
    raise AssertionError("expected message never arrived")


def _phase_is(phase):
    return lambda msg: (msg.get("gameState") or {}).get("phase") == phase


def _lobby(client, ws1, ws2):
    """Host u1 on ws1 and player u2 on ws2 in the same lobby, both ready."""
    game = _create(client)
    _auth(ws1, "u1", "Alice")
    ws1.send_json({"type": "join-game", "roomCode": game["roomCode"]})
    attached = ws1.receive_json()
    assert attached["type"] == "game-state-updated"

    _auth(ws2, "u2", "Bob")
    ws2.send_json({"type": "join-game", "data": {"roomCode": game["roomCode"].lower()}})
    for ws in (ws1, ws2):
        msg = ws.receive_json()
        assert msg["type"] == "game-state-updated"
        assert [p["username"] for p in msg["gameState"]["participants"]] == ["Alice", "Bob"]

    for ws in (ws1, ws2):
        ws.send_json({"type": "set-ready", "isReady": True})
        ws1.receive_json()
        ws2.receive_json()
    return game


def test_full_investigation_flow(client):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        game = _lobby(client, ws1, ws2)

        ws1.send_json({"type": "start-game", "difficulty": "easy"})
        for ws in (ws1, ws2):
            msg = ws.receive_json()
            assert msg["type"] == "game-started"
            state = msg["gameState"]
            assert state["phase"] == "investigation"
            assert state["timeRemaining"] == 600
            assert len(state["mystery"]["suspects"]) >= 4
            assert "murderer" not in state["mystery"]

        ws2.send_json({"type": "explore-room", "roomId": "terrace"})
        explored = ws2.receive_json()
        assert explored["type"] == "room-explored"
        assert explored["roomId"] == "terrace"
        assert explored["description"] == "You look around the terrace."
        assert explored["evidence"]["id"] == "evidence-4"
        for ws in (ws1, ws2):
            found = ws.receive_json()
            assert found["type"] == "evidence-discovered"
            assert found["discoveredBy"] == "Bob"
            assert found["gameState"]["discoveredEvidence"][0]["evidenceId"] == "evidence-4"

        ws1.send_json({"type": "send-message", "message": "  Footprints!  "})
        for ws in (ws1, ws2):
            msg = ws.receive_json()
            assert msg["type"] == "message-sent"
            assert msg["gameState"]["messages"][-1]["message"] == "Footprints!"

        ws1.send_json({"type": "analyze-evidence", "evidenceId": "evidence-4"})
        assert ws1.receive_json() == {
            "type": "evidence-analyzed",
            "evidenceId": "evidence-4",
            "analysis": "Forensics on evidence-4.",
        }

    # The REST view agrees with what the sockets saw
    state = client.get(f"/api/games/{game['id']}").json()
    assert state["phase"] == "investigation"
    assert len(state["messages"]) == 1


def test_timed_phases_and_vote_reveal(client, monkeypatch):
    monkeypatch.setattr(
        game_master, "durations", {"investigation": 1, "discussion": 1, "voting": 1000}
    )
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        _lobby(client, ws1, ws2)
        ws1.send_json({"type": "start-game"})

        for ws in (ws1, ws2):
            assert _until(ws, _phase_is("discussion"))["type"] == "game-state-updated"
            voting = _until(ws, _phase_is("voting"))
            assert voting["gameState"]["timeRemaining"] == 1000

        def _u1_voted(suspect_id):
            return lambda m: (m.get("gameState") or {}).get("votes", {}).get("u1") == suspect_id

        # Changing a vote before everyone has voted overwrites it
        ws1.send_json({"type": "cast-vote", "suspectId": "suspect-1"})
        _until(ws1, _u1_voted("suspect-1"))
        ws1.send_json({"type": "cast-vote", "suspectId": MURDERER_ID})
        _until(ws1, _u1_voted(MURDERER_ID))
        ws2.send_json({"type": "cast-vote", "suspectId": MURDERER_ID})

        revealed = _until(ws1, _phase_is("reveal"))
        assert revealed["type"] == "vote-cast"
        state = revealed["gameState"]
        assert state["mystery"]["murderer"]["suspectId"] == MURDERER_ID
        assert state["timeRemaining"] is None
        assert [p["score"] for p in state["participants"]] == [100, 100]

        ws2.send_json({"type": "cast-vote", "suspectId": MURDERER_ID})
        error = _until(ws2, lambda m: m["type"] == "error")
        assert error["code"] == "INVALID_PHASE"


def test_dropped_player_reattaches_mid_game(client):
    with client.websocket_connect("/ws") as ws1:
        with client.websocket_connect("/ws") as ws2:
            game = _lobby(client, ws1, ws2)
            ws1.send_json({"type": "start-game"})
            for ws in (ws1, ws2):
                assert ws.receive_json()["type"] == "game-started"

        with client.websocket_connect("/ws") as ws2:
            _auth(ws2, "u2", "Bob")
            ws2.send_json({"type": "join-game", "roomCode": game["roomCode"]})
            attached = ws2.receive_json()
            assert attached["type"] == "game-state-updated"
            assert attached["gameState"]["phase"] == "investigation"
            assert len(attached["gameState"]["participants"]) == 2

            ws2.send_json({"type": "explore-room", "roomId": "terrace"})
            assert ws2.receive_json()["type"] == "room-explored"
            for ws in (ws1, ws2):
                assert ws.receive_json()["type"] == "evidence-discovered"

        # Newcomers are still kept out once the game is running
        with client.websocket_connect("/ws") as ws3:
            _auth(ws3, "u3", "Carol")
            ws3.send_json({"type": "join-game", "roomCode": game["roomCode"]})
            assert ws3.receive_json()["code"] == "INVALID_PHASE"


def test_creator_attaches_to_full_lobby(client):
    game = _create(client)
    with ExitStack() as stack:
        for i in range(2, 7):
            ws = stack.enter_context(client.websocket_connect("/ws"))
            _auth(ws, f"u{i}", f"Player{i}")
            ws.send_json({"type": "join-game", "roomCode": game["roomCode"]})
            assert ws.receive_json()["type"] == "game-state-updated"

        host = stack.enter_context(client.websocket_connect("/ws"))
        _auth(host, "u1", "Alice")
        host.send_json({"type": "join-game", "roomCode": game["roomCode"]})
        attached = host.receive_json()
        assert attached["type"] == "game-state-updated"
        assert len(attached["gameState"]["participants"]) == 6

        host.send_json({"type": "set-ready", "isReady": True})
        assert host.receive_json()["gameState"]["participants"][0]["isReady"] is True


@pytest.mark.parametrize("payload", [
    {"type": "set-ready", "isReady": "false"},
    {"type": "set-ready", "isReady": 1},
    {"type": "set-ready"},
])
def test_set_ready_requires_a_boolean(client, payload):
    game = _create(client)
    with client.websocket_connect("/ws") as ws:
        _auth(ws, "u1", "Alice")
        ws.send_json({"type": "join-game", "roomCode": game["roomCode"]})
        ws.receive_json()

        ws.send_json(payload)
        assert ws.receive_json() == {
            "type": "error", "message": "isReady must be a boolean", "code": "VALIDATION_ERROR",
        }

    state = client.get(f"/api/games/{game['id']}").json()
    assert state["participants"][0]["isReady"] is False


def test_deleted_game_releases_bound_sockets(client):
    game = _create(client)
    with client.websocket_connect("/ws") as ws:
        _auth(ws, "u1", "Alice")
        ws.send_json({"type": "join-game", "roomCode": game["roomCode"]})
        ws.receive_json()

        assert client.delete(f"/api/games/{game['id']}").status_code == 204
        assert ws.receive_json() == {"type": "game-deleted", "gameId": game["id"]}

        ws.send_json({"type": "send-message", "message": "anyone?"})
        assert ws.receive_json()["code"] == "NOT_IN_GAME"


def test_actions_require_authentication(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "set-ready", "isReady": True})
        assert ws.receive_json() == {
            "type": "error", "message": "Not authenticated", "code": "NOT_AUTHENTICATED",
        }


def test_actions_require_a_joined_game(client):
    with client.websocket_connect("/ws") as ws:
        _auth(ws, "u1", "Alice")
        ws.send_json({"type": "send-message", "message": "hello?"})
        assert ws.receive_json()["code"] == "NOT_IN_GAME"


def test_malformed_and_unknown_messages(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("{not json")
        assert ws.receive_json() == {
            "type": "error", "message": "Invalid message format", "code": "PARSE_ERROR",
        }
        ws.send_text("[]")
        assert ws.receive_json()["code"] == "PARSE_ERROR"

        ws.send_json({"type": "teleport"})
        assert ws.receive_json()["code"] == "UNKNOWN_TYPE"

        # The connection survives bad input
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_authenticate_requires_identity(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "authenticate", "userId": "u1"})
        assert ws.receive_json()["code"] == "VALIDATION_ERROR"


def test_join_unknown_room_is_not_found(client):
    with client.websocket_connect("/ws") as ws:
        _auth(ws, "u1", "Alice")
        ws.send_json({"type": "join-game", "roomCode": "ZZZZZZ"})
        assert ws.receive_json()["code"] == "NOT_FOUND"


def test_errors_go_only_to_the_sender(client):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        _lobby(client, ws1, ws2)

        ws2.send_json({"type": "start-game"})
        assert ws2.receive_json()["code"] == "FORBIDDEN"

        # ws1's next message is the reply to its own ping, not ws2's error
        ws1.send_json({"type": "ping"})
        assert ws1.receive_json() == {"type": "pong"}


def test_start_failure_keeps_lobby(client):
    game_master.generator.fail_mystery = True
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        game = _lobby(client, ws1, ws2)

        ws1.send_json({"type": "start-game"})
        assert ws1.receive_json()["code"] == "GENERATION_FAILED"

    assert client.get(f"/api/games/{game['id']}").json()["phase"] == "lobby"
