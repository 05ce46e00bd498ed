import random

import pytest

from agents.game_master import GameMaster
from agents.phase_timer import PhaseTimer
from services.session_store import SessionStore
from helpers import FakeGenerator, LONG_DURATIONS


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
async def master(store, generator):
    gm = GameMaster(
        store=store,
        generator=generator,
        timer=PhaseTimer(tick_seconds=0.01),
        rng=random.Random(7),
        durations=dict(LONG_DURATIONS),
        discovery_chance=1.0,
    )
    yield gm
    gm.shutdown()
