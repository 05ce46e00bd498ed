from agents.fallback_mystery import fallback_mystery
from models.errors import GenerationFailed
from models.game import Difficulty, Phase


class FakeGenerator:
    """Stands in for the Gemini gateway: deterministic, no network."""

    def __init__(self):
        self.fail_mystery = False
        self.fail_narration = False
        self.mystery_calls = 0
        self.narration_calls = []

    async def generate_mystery(self, difficulty=Difficulty.MEDIUM):
        self.mystery_calls += 1
        if self.fail_mystery:
            raise GenerationFailed("Failed to generate mystery: model unavailable")
        return fallback_mystery(difficulty)

    async def generate_room_narration(self, mystery, room_id, player_names):
        self.narration_calls.append((room_id, list(player_names)))
        if self.fail_narration:
            raise RuntimeError("narration service down")
        return f"You look around the {room_id}."

    async def analyze_evidence(self, mystery, evidence_id):
        return f"Forensics on {evidence_id}."


LONG_DURATIONS = {"investigation": 600, "discussion": 300, "voting": 120}

MURDERER_ID = "suspect-3"  # built-in case
INNOCENT_ID = "suspect-1"


async def lobby_with_players(master, count=2, ready=True):
    """Create a game hosted by u1 with `count` participants (u1..uN)."""
    state = await master.create_game("u1", "Alice")
    for i in range(2, count + 1):
        state = await master.join_game(state.room_code, f"u{i}", f"Player{i}")
    if ready:
        for p in state.participants:
            state = await master.set_ready(state.id, p.user_id, True)
    return state


async def started_game(master, count=2):
    state = await lobby_with_players(master, count)
    return await master.start_game(state.id, "u1", "easy")


async def voting_game(master, count=2):
    """Drive a started game to VOTING through the timeout handler."""
    state = await started_game(master, count)
    await master._on_phase_timeout(state.id, Phase.INVESTIGATION)
    await master._on_phase_timeout(state.id, Phase.DISCUSSION)
    return await master.get_game_state(state.id)
