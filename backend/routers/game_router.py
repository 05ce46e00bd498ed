"""
Game HTTP endpoints.

Routes:
  POST   /api/games/create               — Create game + register host as first participant
  GET    /api/games/{game_id}            — Game state (murderer hidden until reveal)
  GET    /api/games/room/{room_code}     — Game state looked up by room code
  DELETE /api/games/{game_id}            — Delete a game and all of its records

Everything else (joining, readying, playing) happens over the WebSocket hub.
"""
import logging

from fastapi import APIRouter, HTTPException, Response

from models.errors import GameError
from models.game import CreateGameRequest
from agents.game_master import game_master

logger = logging.getLogger(__name__)

router = APIRouter(tags=["games"])


def _http_error(exc: GameError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


@router.post("/games/create", status_code=200)
async def create_game(body: CreateGameRequest):
    """Create a new game. The creator is already a participant; they attach via join-game."""
    try:
        state = await game_master.create_game(body.user_id, body.username)
    except GameError as exc:
        raise _http_error(exc)
    return state.to_public()


@router.get("/games/room/{room_code}")
async def get_game_by_room_code(room_code: str):
    try:
        state = await game_master.get_game_state_by_room_code(room_code)
    except GameError as exc:
        raise _http_error(exc)
    return state.to_public()


@router.get("/games/{game_id}")
async def get_game(game_id: str):
    try:
        state = await game_master.get_game_state(game_id)
    except GameError as exc:
        raise _http_error(exc)
    return state.to_public()


@router.delete("/games/{game_id}", status_code=204)
async def delete_game(game_id: str):
    try:
        await game_master.delete_game(game_id)
    except GameError as exc:
        raise _http_error(exc)
    return Response(status_code=204)
