"""
Game Master — the session state machine. Pure deterministic Python apart from
the content generator calls and the seeded discovery roll.

Responsibilities:
- Game creation (unique room codes), lobby admission, ready flags
- Phase transitions: lobby → investigation → discussion → voting → reveal
- Room exploration with probabilistic, exactly-once evidence discovery
- Chat, votes, reveal scoring
- Phase countdowns (via PhaseTimer) and session reaping

Concurrency: every mutation of a game runs under that game's asyncio.Lock, so
two last votes, or a last vote racing the voting timeout, cannot apply the
reveal twice. Locks are per game; different games never block each other.
Content generator calls run outside the lock and the result is committed
after re-checking the phase.
"""
import asyncio
import logging
import random
import string
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Set, Union

from config import settings
from models.errors import (
    AlreadyJoined, Forbidden, GameFull, GenerationFailed, InvalidPhase,
    InvalidSuspect, NotAllReady, NotEnoughPlayers, NotFound, ValidationError,
)
from models.game import (
    AnalysisResult, ChatMessage, DiscoveredEvidence, Difficulty, ExploreResult,
    Game, GameState, NEXT_PHASE, Participant, Phase,
)
from services.session_store import SessionStore, get_session_store
from agents.mystery_generator import ContentGenerator, content_generator, room_fallback_narration
from agents.phase_timer import PhaseTimer

logger = logging.getLogger(__name__)

StateListener = Callable[[GameState], Awaitable[None]]
RemovalListener = Callable[[str], Awaitable[None]]

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6


class GameMaster:

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        generator: Optional[ContentGenerator] = None,
        timer: Optional[PhaseTimer] = None,
        rng: Optional[random.Random] = None,
        durations: Optional[Dict[str, int]] = None,
        discovery_chance: Optional[float] = None,
    ):
        self.store = store or get_session_store()
        self.generator = generator or content_generator
        self.timer = timer or PhaseTimer()
        self.rng = rng or random.Random()
        self.durations: Dict[str, int] = durations or settings.phase_durations
        self.discovery_chance = (
            settings.discovery_chance if discovery_chance is None else discovery_chance
        )
        self._locks: Dict[str, asyncio.Lock] = {}
        # Games whose mystery is being generated; blocks joins and double starts.
        self._starting: Set[str] = set()
        self._listeners: List[StateListener] = []
        self._removal_listeners: List[RemovalListener] = []

    # ── Plumbing ───────────────────────────────────────────────────────────────

    def _lock(self, game_id: str) -> asyncio.Lock:
        # Locks live exactly as long as their game: made in create_game, dropped in delete_game.
        lock = self._locks.get(game_id)
        if lock is None:
            raise NotFound("Game not found")
        return lock

    def add_listener(self, listener: StateListener) -> None:
        """Register a coroutine called with the new state after timer-driven transitions."""
        self._listeners.append(listener)

    def add_removal_listener(self, listener: RemovalListener) -> None:
        """Register a coroutine called with the game id after a game is deleted or reaped."""
        self._removal_listeners.append(listener)

    async def _notify(self, game_id: str) -> None:
        state = await self.store.get_game_state(game_id)
        if not state:
            return
        for listener in list(self._listeners):
            try:
                await listener(state)
            except Exception:
                logger.exception("[%s] State listener failed", game_id)

    async def _require_state(self, game_id: str) -> GameState:
        state = await self.store.get_game_state(game_id)
        if not state:
            raise NotFound("Game not found")
        return state

    def _duration(self, phase: Phase) -> int:
        return self.durations[phase.value]

    def _generate_room_code(self) -> str:
        return "".join(self.rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))

    async def get_game_state(self, game_id: str) -> GameState:
        return await self._require_state(game_id)

    async def get_game_state_by_room_code(self, room_code: str) -> GameState:
        game = await self.store.get_game_by_room_code(room_code)
        if not game:
            raise NotFound("Game not found")
        return await self._require_state(game.id)

    # ── Lobby ──────────────────────────────────────────────────────────────────

    async def create_game(self, host_user_id: str, host_username: str) -> GameState:
        host_user_id = (host_user_id or "").strip()
        host_username = (host_username or "").strip()
        if not host_user_id or not host_username:
            raise ValidationError("userId and username required")

        while True:
            code = self._generate_room_code()
            if await self.store.room_code_in_use(code):
                continue
            try:
                game = await self.store.create_game(Game(room_code=code, host_id=host_user_id))
                break
            except ValueError:
                # Lost a race for this code; draw another.
                continue
        self._locks[game.id] = asyncio.Lock()

        await self.store.add_participant(Participant(
            game_id=game.id, user_id=host_user_id, username=host_username,
        ))
        logger.info("[%s] Game created (room %s) by %s", game.id, game.room_code, host_username)
        return await self._require_state(game.id)

    async def join_game(self, room_code: str, user_id: str, username: str) -> GameState:
        game = await self.store.get_game_by_room_code(room_code)
        if not game:
            raise NotFound("Game not found")

        async with self._lock(game.id):
            state = await self._require_state(game.id)
            if state.phase != Phase.LOBBY or game.id in self._starting:
                raise InvalidPhase("Game already in progress")
            if len(state.participants) >= settings.max_players:
                raise GameFull("Game is full")
            if state.participant(user_id):
                raise AlreadyJoined("Already in this game")
            await self.store.add_participant(Participant(
                game_id=game.id, user_id=user_id, username=username,
            ))
            logger.info("[%s] %s joined (%d players)", game.id, username, len(state.participants) + 1)
            return await self._require_state(game.id)

    async def set_ready(self, game_id: str, user_id: str, is_ready: bool) -> GameState:
        async with self._lock(game_id):
            updated = await self.store.update_participant(game_id, user_id, {"is_ready": bool(is_ready)})
            if not updated:
                raise NotFound("Player not found in this game")
            return await self._require_state(game_id)

    def _check_startable(self, state: GameState, host_user_id: str) -> None:
        if state.host_id != host_user_id:
            raise Forbidden("Only the host can start the game")
        if state.phase != Phase.LOBBY:
            raise InvalidPhase("Game already started")
        if len(state.participants) < settings.min_players:
            raise NotEnoughPlayers(f"Need at least {settings.min_players} players")
        if not all(p.is_ready for p in state.participants):
            raise NotAllReady("Not all players are ready")

    async def start_game(
        self,
        game_id: str,
        host_user_id: str,
        difficulty: Union[Difficulty, str, None] = Difficulty.MEDIUM,
    ) -> GameState:
        try:
            level = Difficulty(difficulty or Difficulty.MEDIUM)
        except ValueError:
            raise ValidationError(f"Unknown difficulty: {difficulty}")

        async with self._lock(game_id):
            state = await self._require_state(game_id)
            if game_id in self._starting:
                raise InvalidPhase("Game is already starting")
            self._check_startable(state, host_user_id)
            self._starting.add(game_id)

        try:
            # Slow call: runs without the lock so chat and ready toggles keep flowing.
            try:
                mystery = await self.generator.generate_mystery(level)
            except GenerationFailed:
                raise
            except Exception as exc:
                raise GenerationFailed(f"Failed to generate mystery: {exc}") from exc

            async with self._lock(game_id):
                state = await self._require_state(game_id)
                self._check_startable(state, host_user_id)
                duration = self._duration(Phase.INVESTIGATION)
                await self.store.update_game(game_id, {
                    "phase": Phase.INVESTIGATION,
                    "mystery": mystery,
                    "time_remaining": duration,
                })
                self.timer.start(game_id, Phase.INVESTIGATION, duration, self._on_tick, self._on_phase_timeout)
                logger.info(
                    "[%s] Phase: lobby → investigation (%s, %d players)",
                    game_id, level.value, len(state.participants),
                )
                return await self._require_state(game_id)
        except GenerationFailed as exc:
            logger.warning("[%s] Start failed, staying in lobby: %s", game_id, exc.message)
            raise
        finally:
            self._starting.discard(game_id)

    # ── Investigation ──────────────────────────────────────────────────────────

    async def explore_room(self, game_id: str, user_id: str, room_id: str) -> ExploreResult:
        async with self._lock(game_id):
            state = await self._require_state(game_id)
            if state.phase != Phase.INVESTIGATION or not state.mystery:
                raise InvalidPhase("Can only explore rooms during investigation phase")
            if not state.participant(user_id):
                raise NotFound("Player not found in this game")
            room = state.mystery.find_room(room_id)
            if not room:
                raise NotFound("Room not found")
            mystery = state.mystery
            player_names = state.player_names()

        try:
            narration = await self.generator.generate_room_narration(mystery, room_id, player_names)
        except Exception as exc:
            logger.warning("[%s] Narration failed for room %s: %s", game_id, room_id, exc)
            narration = None
        narration = narration or room_fallback_narration(room)

        async with self._lock(game_id):
            state = await self._require_state(game_id)
            found = None
            if state.phase == Phase.INVESTIGATION:
                discovered = state.discovered_ids()
                candidates = [eid for eid in room.evidence if eid not in discovered]
                if candidates and self.rng.random() < self.discovery_chance:
                    evidence_id = self.rng.choice(candidates)
                    record = await self.store.add_discovered_evidence(DiscoveredEvidence(
                        game_id=game_id, user_id=user_id, evidence_id=evidence_id, room=room_id,
                    ))
                    if record:
                        found = mystery.find_evidence(evidence_id)
                        logger.info("[%s] %s discovered %s in %s", game_id, user_id, evidence_id, room_id)
            return ExploreResult(
                room_id=room_id,
                narration=narration,
                evidence=found,
                game_state=await self._require_state(game_id),
            )

    async def analyze_evidence(self, game_id: str, user_id: str, evidence_id: str) -> AnalysisResult:
        async with self._lock(game_id):
            state = await self._require_state(game_id)
            if state.phase == Phase.LOBBY or not state.mystery:
                raise InvalidPhase("Nothing to analyze before the game starts")
            if evidence_id not in state.discovered_ids():
                raise NotFound("Evidence has not been discovered")
            mystery = state.mystery

        try:
            analysis = await self.generator.analyze_evidence(mystery, evidence_id)
        except Exception as exc:
            logger.warning("[%s] Analysis failed for %s: %s", game_id, evidence_id, exc)
            evidence = mystery.find_evidence(evidence_id)
            analysis = f"Analysis of {evidence.title}: This evidence may provide important clues about the murder."
        return AnalysisResult(evidence_id=evidence_id, analysis=analysis)

    # ── Chat ───────────────────────────────────────────────────────────────────

    async def send_message(self, game_id: str, user_id: str, username: str, text: str) -> GameState:
        text = str(text or "").strip()[:settings.max_message_length]
        if not text:
            raise ValidationError("Message cannot be empty")
        async with self._lock(game_id):
            await self._require_state(game_id)
            await self.store.add_chat_message(ChatMessage(
                game_id=game_id, user_id=user_id, username=username, message=text,
            ))
            return await self._require_state(game_id)

    # ── Voting & reveal ────────────────────────────────────────────────────────

    async def cast_vote(self, game_id: str, user_id: str, suspect_id: str) -> GameState:
        async with self._lock(game_id):
            state = await self._require_state(game_id)
            if state.phase != Phase.VOTING or not state.mystery:
                raise InvalidPhase("Not in voting phase")
            if not state.mystery.has_suspect(suspect_id):
                raise InvalidSuspect("Invalid suspect")
            # Last write wins until the reveal.
            if not await self.store.update_participant(game_id, user_id, {"vote": suspect_id}):
                raise NotFound("Player not found in this game")

            participants = await self.store.get_participants(game_id)
            if participants and all(p.vote for p in participants):
                logger.info("[%s] All %d players voted — revealing early", game_id, len(participants))
                await self._reveal(game_id)
            return await self._require_state(game_id)

    async def _reveal(self, game_id: str) -> bool:
        """
        Score correct votes and enter REVEAL. Caller holds the game lock.
        Applies at most once per game: anything but VOTING is a no-op.
        """
        state = await self.store.get_game_state(game_id)
        if not state or state.phase != Phase.VOTING or not state.mystery:
            return False

        self.timer.cancel(game_id)
        murderer_id = state.mystery.murderer.suspect_id
        winners = [p for p in state.participants if p.vote == murderer_id]
        for p in winners:
            await self.store.update_participant(
                game_id, p.user_id, {"score": p.score + settings.correct_vote_points}
            )
        await self.store.update_game(game_id, {"phase": Phase.REVEAL, "time_remaining": None})
        logger.info(
            "[%s] Phase: voting → reveal. Murderer %s; %d/%d correct",
            game_id, murderer_id, len(winners), len(state.participants),
        )
        return True

    # ── Timer callbacks ────────────────────────────────────────────────────────

    async def _on_tick(self, game_id: str, phase: Phase, remaining: int) -> bool:
        lock = self._locks.get(game_id)
        if lock is None:
            return False
        async with lock:
            game = await self.store.get_game(game_id)
            if not game or game.phase != phase:
                return False
            await self.store.update_game(game_id, {"time_remaining": remaining})
            return True

    async def _on_phase_timeout(self, game_id: str, phase: Phase) -> None:
        lock = self._locks.get(game_id)
        if lock is None:
            logger.debug("[%s] Timeout for deleted game ignored", game_id)
            return
        async with lock:
            game = await self.store.get_game(game_id)
            if not game or game.phase != phase:
                logger.debug("[%s] Stale %s timeout ignored", game_id, phase.value)
                return
            if phase == Phase.VOTING:
                changed = await self._reveal(game_id)
            else:
                next_phase = NEXT_PHASE[phase]
                duration = self._duration(next_phase)
                await self.store.update_game(game_id, {"phase": next_phase, "time_remaining": duration})
                self.timer.start(game_id, next_phase, duration, self._on_tick, self._on_phase_timeout)
                logger.info("[%s] Phase: %s → %s", game_id, phase.value, next_phase.value)
                changed = True
        if changed:
            await self._notify(game_id)

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def delete_game(self, game_id: str) -> None:
        if not await self.store.get_game(game_id):
            raise NotFound("Game not found")
        self.timer.cancel(game_id)
        await self.store.delete_game(game_id)
        self._locks.pop(game_id, None)
        self._starting.discard(game_id)
        logger.info("[%s] Game deleted", game_id)
        for listener in list(self._removal_listeners):
            try:
                await listener(game_id)
            except Exception:
                logger.exception("[%s] Removal listener failed", game_id)

    async def reap_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Delete games older than the session TTL. Returns the reaped ids."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=settings.session_ttl_seconds)
        reaped = []
        for game in await self.store.list_games():
            if game.created_at < cutoff:
                await self.delete_game(game.id)
                reaped.append(game.id)
        if reaped:
            logger.info("Reaped %d expired game(s)", len(reaped))
        return reaped

    def shutdown(self) -> None:
        self.timer.cancel_all()


# Module-level singleton
game_master = GameMaster()
