from typing import Optional, List, Dict, Any

from models.game import (
    Game, Participant, ChatMessage, DiscoveredEvidence, GameState,
)


class SessionStore:
    """
    Memory-resident store for games and their child records.

    Methods are async so a networked backend can be dropped in without
    touching callers. Each method completes without awaiting, so every call is
    atomic with respect to other coroutines on the event loop. Returned models
    are copies: callers change state only through the update methods.
    """

    def __init__(self):
        self._games: Dict[str, Game] = {}
        self._room_codes: Dict[str, str] = {}  # ROOM CODE → game_id
        self._participants: Dict[str, List[Participant]] = {}
        self._messages: Dict[str, List[ChatMessage]] = {}
        self._evidence: Dict[str, List[DiscoveredEvidence]] = {}

    # ── Game CRUD ─────────────────────────────────────────────────────────────

    async def create_game(self, game: Game) -> Game:
        code = game.room_code.upper()
        if code in self._room_codes:
            raise ValueError(f"Room code {code} already in use")
        self._games[game.id] = game
        self._room_codes[code] = game.id
        self._participants[game.id] = []
        self._messages[game.id] = []
        self._evidence[game.id] = []
        return game.model_copy(deep=True)

    async def get_game(self, game_id: str) -> Optional[Game]:
        game = self._games.get(game_id)
        return game.model_copy(deep=True) if game else None

    async def get_game_by_room_code(self, room_code: str) -> Optional[Game]:
        game_id = self._room_codes.get((room_code or "").strip().upper())
        if not game_id:
            return None
        return await self.get_game(game_id)

    async def room_code_in_use(self, room_code: str) -> bool:
        return room_code.upper() in self._room_codes

    async def list_games(self) -> List[Game]:
        return [g.model_copy(deep=True) for g in self._games.values()]

    async def update_game(self, game_id: str, updates: Dict[str, Any]) -> Optional[Game]:
        game = self._games.get(game_id)
        if not game:
            return None
        updated = game.model_copy(update=updates)
        self._games[game_id] = updated
        return updated.model_copy(deep=True)

    async def delete_game(self, game_id: str) -> None:
        game = self._games.pop(game_id, None)
        if game:
            self._room_codes.pop(game.room_code.upper(), None)
        self._participants.pop(game_id, None)
        self._messages.pop(game_id, None)
        self._evidence.pop(game_id, None)

    # ── Participants ──────────────────────────────────────────────────────────

    async def add_participant(self, participant: Participant) -> Participant:
        bucket = self._participants.setdefault(participant.game_id, [])
        if any(p.user_id == participant.user_id for p in bucket):
            raise ValueError(
                f"User {participant.user_id} already in game {participant.game_id}"
            )
        bucket.append(participant)
        return participant.model_copy()

    async def get_participants(self, game_id: str) -> List[Participant]:
        return [p.model_copy() for p in self._participants.get(game_id, [])]

    async def get_participant(self, game_id: str, user_id: str) -> Optional[Participant]:
        for p in self._participants.get(game_id, []):
            if p.user_id == user_id:
                return p.model_copy()
        return None

    async def update_participant(
        self, game_id: str, user_id: str, updates: Dict[str, Any]
    ) -> Optional[Participant]:
        bucket = self._participants.get(game_id, [])
        for i, p in enumerate(bucket):
            if p.user_id == user_id:
                bucket[i] = p.model_copy(update=updates)
                return bucket[i].model_copy()
        return None

    # ── Chat messages (append-only) ───────────────────────────────────────────

    async def add_chat_message(self, message: ChatMessage) -> ChatMessage:
        self._messages.setdefault(message.game_id, []).append(message)
        return message.model_copy()

    async def get_chat_messages(self, game_id: str) -> List[ChatMessage]:
        return [m.model_copy() for m in self._messages.get(game_id, [])]

    # ── Discovered evidence (append-only, one record per evidence id) ────────

    async def add_discovered_evidence(
        self, record: DiscoveredEvidence
    ) -> Optional[DiscoveredEvidence]:
        """Record a discovery. Returns None if that clue was already found."""
        bucket = self._evidence.setdefault(record.game_id, [])
        if any(r.evidence_id == record.evidence_id for r in bucket):
            return None
        bucket.append(record)
        return record.model_copy()

    async def get_discovered_evidence(self, game_id: str) -> List[DiscoveredEvidence]:
        return [r.model_copy() for r in self._evidence.get(game_id, [])]

    # ── Read model ────────────────────────────────────────────────────────────

    async def get_game_state(self, game_id: str) -> Optional[GameState]:
        game = await self.get_game(game_id)
        if not game:
            return None
        participants = await self.get_participants(game_id)
        return GameState(
            id=game.id,
            room_code=game.room_code,
            host_id=game.host_id,
            phase=game.phase,
            mystery=game.mystery,
            participants=participants,
            messages=await self.get_chat_messages(game_id),
            discovered_evidence=await self.get_discovered_evidence(game_id),
            time_remaining=game.time_remaining,
            votes={p.user_id: p.vote for p in participants if p.vote},
            created_at=game.created_at,
        )


_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Lazy singleton. Use as a FastAPI dependency: Depends(get_session_store)"""
    global _session_store
    if _session_store is None:
        _session_store = SessionStore()
    return _session_store
