"""
WebSocket Hub — real-time fan-out for game sessions.

URL: /ws

Connection flow:
  1. Accept connection (anonymous)
  2. Client sends "authenticate" with userId + username
  3. Client sends "join-game" with a room code → connection is bound to that game
     (a user who is already a participant, e.g. the creator or a player whose
     socket dropped mid-game, is simply attached in any phase)
  4. Action messages are dispatched to the game master
  5. On disconnect: connection is unbound; the participant stays in the game

Client → server message types:
  authenticate      {userId, username}
  join-game         {roomCode}
  set-ready         {isReady}
  start-game        {difficulty}
  explore-room      {roomId}
  send-message      {message}
  cast-vote         {suspectId}
  analyze-evidence  {evidenceId}
  ping

Fields may be sent flat ({type, roomCode}) or wrapped ({type, data: {roomCode}}).

Server → client:
  broadcast: game-state-updated, game-started, message-sent, vote-cast,
             evidence-discovered, game-deleted
  unicast:   authenticated, room-explored, evidence-analyzed, pong, error

Errors are only ever sent to the originating connection.
"""
import json
import logging
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from models.errors import GameError, NotAuthenticated, NotInGame, ValidationError
from models.game import GameState
from agents.game_master import game_master

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


class ClientConnection:
    """One live socket plus its authentication state and bound game."""

    def __init__(self, ws: WebSocket):
        self.ws = ws
        self.user_id: Optional[str] = None
        self.username: Optional[str] = None
        self.game_id: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return bool(self.user_id and self.username)


# ── Connection Manager ─────────────────────────────────────────────────────────

class ConnectionManager:
    """
    Tracks live connections per game.
    Safe for the asyncio single-threaded event loop: registry changes never
    span an await, and sends iterate over a snapshot.
    """

    def __init__(self):
        # {game_id: {ClientConnection, ...}}
        self._games: Dict[str, Set[ClientConnection]] = {}

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    def bind(self, game_id: str, conn: ClientConnection) -> None:
        if conn.game_id and conn.game_id != game_id:
            self.unbind(conn)
        conn.game_id = game_id
        self._games.setdefault(game_id, set()).add(conn)
        logger.debug(f"[{game_id}] {conn.user_id} bound ({self.count(game_id)} total)")

    def unbind(self, conn: ClientConnection) -> None:
        if not conn.game_id:
            return
        game_conns = self._games.get(conn.game_id)
        if game_conns is not None:
            game_conns.discard(conn)
            if not game_conns:
                self._games.pop(conn.game_id, None)
        conn.game_id = None

    def count(self, game_id: str) -> int:
        return len(self._games.get(game_id, ()))

    # ── Sending ────────────────────────────────────────────────────────────────

    async def send_to(self, conn: ClientConnection, message: Dict[str, Any]) -> None:
        """Send a private message to a single connection."""
        try:
            await conn.ws.send_json(message)
        except Exception as exc:
            logger.warning(f"[{conn.game_id}] send_to {conn.user_id} failed: {exc}")
            self.unbind(conn)

    async def broadcast(self, game_id: str, message: Dict[str, Any]) -> None:
        """Broadcast a message to every connection bound to a game."""
        for conn in list(self._games.get(game_id, ())):
            try:
                await conn.ws.send_json(message)
            except Exception as exc:
                logger.warning(f"[{game_id}] broadcast to {conn.user_id} failed: {exc}")
                self.unbind(conn)

    async def close_game(self, game_id: str) -> None:
        """Game was deleted or reaped: tell its sockets and drop the registry entry."""
        conns = self._games.pop(game_id, set())
        for conn in conns:
            conn.game_id = None
        for conn in conns:
            await self.send_to(conn, {"type": "game-deleted", "gameId": game_id})
        if conns:
            logger.info(f"[{game_id}] Released {len(conns)} connection(s) after deletion")

    async def send_error(self, conn: ClientConnection, message: str, code: str) -> None:
        await self.send_to(conn, {"type": "error", "message": message, "code": code})

    # ── High-level game event helpers ──────────────────────────────────────────

    async def broadcast_state(self, state: GameState, event_type: str = "game-state-updated") -> None:
        await self.broadcast(state.id, {"type": event_type, "gameState": state.to_public()})


# Module-level singleton
manager = ConnectionManager()

# Timer-driven phase changes (and the timeout reveal) reach clients through here.
game_master.add_listener(manager.broadcast_state)
game_master.add_removal_listener(manager.close_game)


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    conn = ClientConnection(ws)
    logger.debug("WebSocket connection established")

    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
                if not isinstance(data, dict):
                    raise ValueError("message must be a JSON object")
            except ValueError:
                await manager.send_error(conn, "Invalid message format", "PARSE_ERROR")
                continue

            msg_type = str(data.get("type", ""))
            inner_data = data.get("data") if isinstance(data.get("data"), dict) else data
            await _handle_message(conn, msg_type, inner_data)

    except WebSocketDisconnect:
        pass
    finally:
        game_id = conn.game_id
        manager.unbind(conn)
        logger.debug(f"[{game_id}] WebSocket closed for {conn.user_id}")


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(conn: ClientConnection, msg_type: str, data: Dict) -> None:
    try:
        await _dispatch_message(conn, msg_type, data)
    except WebSocketDisconnect:
        raise
    except GameError as exc:
        logger.info(f"[{conn.game_id}] {msg_type} rejected for {conn.user_id}: {exc.message}")
        await manager.send_error(conn, exc.message, exc.code)
    except Exception:
        logger.exception("[%s] Unhandled error in _handle_message (type=%s)", conn.game_id, msg_type)
        await manager.send_error(conn, "Internal server error", "SERVER_ERROR")


async def _dispatch_message(conn: ClientConnection, msg_type: str, data: Dict) -> None:
    if msg_type == "ping":
        await manager.send_to(conn, {"type": "pong"})

    elif msg_type == "authenticate":
        await _on_authenticate(conn, data)

    elif msg_type == "join-game":
        await _on_join(conn, data)

    elif msg_type == "set-ready":
        await _on_ready(conn, data)

    elif msg_type == "start-game":
        await _on_start(conn, data)

    elif msg_type == "explore-room":
        await _on_explore(conn, data)

    elif msg_type == "send-message":
        await _on_chat(conn, data)

    elif msg_type == "cast-vote":
        await _on_vote(conn, data)

    elif msg_type == "analyze-evidence":
        await _on_analyze(conn, data)

    else:
        await manager.send_error(conn, f"Unknown message type: '{msg_type}'", "UNKNOWN_TYPE")


def _required(data: Dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required")
    return value.strip()


def _require_auth(conn: ClientConnection) -> None:
    if not conn.authenticated:
        raise NotAuthenticated("Not authenticated")


def _require_game(conn: ClientConnection) -> str:
    _require_auth(conn)
    if not conn.game_id:
        raise NotInGame("Not in game")
    return conn.game_id


# ── Handlers ──────────────────────────────────────────────────────────────────

async def _on_authenticate(conn: ClientConnection, data: Dict) -> None:
    conn.user_id = _required(data, "userId")
    conn.username = _required(data, "username")
    await manager.send_to(conn, {"type": "authenticated", "success": True})


async def _on_join(conn: ClientConnection, data: Dict) -> None:
    _require_auth(conn)
    room_code = _required(data, "roomCode")
    state = await game_master.get_game_state_by_room_code(room_code)
    if state.participant(conn.user_id):
        # Creator or reconnecting player: attach in any phase
        manager.bind(state.id, conn)
        await manager.send_to(conn, {"type": "game-state-updated", "gameState": state.to_public()})
        return
    state = await game_master.join_game(room_code, conn.user_id, conn.username)
    manager.bind(state.id, conn)
    await manager.broadcast_state(state)


async def _on_ready(conn: ClientConnection, data: Dict) -> None:
    game_id = _require_game(conn)
    is_ready = data.get("isReady")
    if not isinstance(is_ready, bool):
        raise ValidationError("isReady must be a boolean")
    state = await game_master.set_ready(game_id, conn.user_id, is_ready)
    await manager.broadcast_state(state)


async def _on_start(conn: ClientConnection, data: Dict) -> None:
    game_id = _require_game(conn)
    state = await game_master.start_game(game_id, conn.user_id, data.get("difficulty") or "medium")
    await manager.broadcast_state(state, "game-started")


async def _on_explore(conn: ClientConnection, data: Dict) -> None:
    game_id = _require_game(conn)
    room_id = _required(data, "roomId")
    result = await game_master.explore_room(game_id, conn.user_id, room_id)
    evidence = result.evidence.to_wire() if result.evidence else None

    await manager.send_to(conn, {
        "type": "room-explored",
        "roomId": room_id,
        "description": result.narration,
        "evidence": evidence,
    })
    if evidence:
        await manager.broadcast(game_id, {
            "type": "evidence-discovered",
            "evidence": evidence,
            "discoveredBy": conn.username,
            "gameState": result.game_state.to_public(),
        })


async def _on_chat(conn: ClientConnection, data: Dict) -> None:
    game_id = _require_game(conn)
    text = data.get("message")
    state = await game_master.send_message(
        game_id, conn.user_id, conn.username, text if isinstance(text, str) else ""
    )
    await manager.broadcast_state(state, "message-sent")


async def _on_vote(conn: ClientConnection, data: Dict) -> None:
    game_id = _require_game(conn)
    suspect_id = _required(data, "suspectId")
    state = await game_master.cast_vote(game_id, conn.user_id, suspect_id)
    await manager.broadcast_state(state, "vote-cast")


async def _on_analyze(conn: ClientConnection, data: Dict) -> None:
    game_id = _require_game(conn)
    evidence_id = _required(data, "evidenceId")
    result = await game_master.analyze_evidence(game_id, conn.user_id, evidence_id)
    await manager.send_to(conn, {
        "type": "evidence-analyzed",
        "evidenceId": result.evidence_id,
        "analysis": result.analysis,
    })
