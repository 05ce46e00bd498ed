from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, timezone
import uuid


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class WireModel(BaseModel):
    """snake_case attributes, camelCase JSON (matches the web client)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Phase(str, Enum):
    LOBBY = "lobby"
    INVESTIGATION = "investigation"
    DISCUSSION = "discussion"
    VOTING = "voting"
    REVEAL = "reveal"


# Forward-only lifecycle. REVEAL is terminal.
PHASE_ORDER: List[Phase] = [
    Phase.LOBBY,
    Phase.INVESTIGATION,
    Phase.DISCUSSION,
    Phase.VOTING,
    Phase.REVEAL,
]

NEXT_PHASE: Dict[Phase, Phase] = {
    Phase.INVESTIGATION: Phase.DISCUSSION,
    Phase.DISCUSSION: Phase.VOTING,
    Phase.VOTING: Phase.REVEAL,
}


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Significance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ── Mystery (generated content, immutable once attached) ─────────────────────

class MysteryPart(WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class Victim(MysteryPart):
    name: str
    description: str = ""
    background: str = ""


class Suspect(MysteryPart):
    id: str
    name: str
    role: str = ""
    description: str = ""
    motive: str = ""
    alibi: str = ""
    image_url: Optional[str] = None


class Evidence(MysteryPart):
    id: str
    title: str = ""
    description: str = ""
    room: str = ""  # free-text location as written by the generator
    significance: Significance = Significance.MEDIUM
    is_red_herring: bool = False


class Room(MysteryPart):
    id: str
    name: str = ""
    description: str = ""
    evidence: List[str] = []


class Murderer(MysteryPart):
    suspect_id: str
    method: str = ""
    confession: str = ""
    alternate_ending: str = ""


class Mystery(MysteryPart):
    id: str = Field(default_factory=_new_id)
    title: str = ""
    setting: str = ""
    victim: Victim
    crime_scene: str = ""
    suspects: List[Suspect]
    evidence: List[Evidence]
    rooms: List[Room]
    murderer: Murderer
    difficulty: Difficulty = Difficulty.MEDIUM

    @model_validator(mode="after")
    def _check_references(self) -> "Mystery":
        if not self.suspects:
            raise ValueError("mystery has no suspects")
        if not self.evidence:
            raise ValueError("mystery has no evidence")
        if not self.rooms:
            raise ValueError("mystery has no rooms")
        suspect_ids = {s.id for s in self.suspects}
        if self.murderer.suspect_id not in suspect_ids:
            raise ValueError(
                f"murderer '{self.murderer.suspect_id}' is not among the suspects"
            )
        evidence_ids = {e.id for e in self.evidence}
        for room in self.rooms:
            missing = [eid for eid in room.evidence if eid not in evidence_ids]
            if missing:
                raise ValueError(f"room '{room.id}' references unknown evidence {missing}")
        return self

    def find_room(self, room_id: str) -> Optional[Room]:
        return next((r for r in self.rooms if r.id == room_id), None)

    def find_evidence(self, evidence_id: str) -> Optional[Evidence]:
        return next((e for e in self.evidence if e.id == evidence_id), None)

    def has_suspect(self, suspect_id: str) -> bool:
        return any(s.id == suspect_id for s in self.suspects)


# ── Stored entities ──────────────────────────────────────────────────────────

class Game(WireModel):
    id: str = Field(default_factory=_new_id)
    room_code: str
    host_id: str
    phase: Phase = Phase.LOBBY
    mystery: Optional[Mystery] = None
    time_remaining: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)


class Participant(WireModel):
    id: str = Field(default_factory=_new_id)
    game_id: str
    user_id: str
    username: str
    is_ready: bool = False
    vote: Optional[str] = None  # suspect id
    score: int = Field(default=0, ge=0)


class ChatMessage(WireModel):
    id: str = Field(default_factory=_new_id)
    game_id: str
    user_id: str
    username: str
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)


class DiscoveredEvidence(WireModel):
    id: str = Field(default_factory=_new_id)
    game_id: str
    user_id: str
    evidence_id: str
    room: str  # room id it was found in
    discovered_at: datetime = Field(default_factory=_utcnow)


# ── Read model ───────────────────────────────────────────────────────────────

class GameState(WireModel):
    """Game + all of its child records, rebuilt wholly from the store."""

    id: str
    room_code: str
    host_id: str
    phase: Phase
    mystery: Optional[Mystery] = None
    participants: List[Participant] = []
    messages: List[ChatMessage] = []
    discovered_evidence: List[DiscoveredEvidence] = []
    time_remaining: Optional[int] = None
    votes: Dict[str, str] = {}  # user_id → suspect_id
    created_at: datetime

    def participant(self, user_id: str) -> Optional[Participant]:
        return next((p for p in self.participants if p.user_id == user_id), None)

    def player_names(self) -> List[str]:
        return [p.username for p in self.participants]

    def discovered_ids(self) -> set:
        return {d.evidence_id for d in self.discovered_evidence}

    def to_public(self) -> Dict[str, Any]:
        """Wire representation — the murderer stays hidden until the reveal."""
        data = self.to_wire()
        if data.get("mystery") and self.phase != Phase.REVEAL:
            data["mystery"].pop("murderer", None)
        return data


class ExploreResult(WireModel):
    room_id: str
    narration: str
    evidence: Optional[Evidence] = None
    game_state: GameState


class AnalysisResult(WireModel):
    evidence_id: str
    analysis: str


# ── HTTP request models ──────────────────────────────────────────────────────

class CreateGameRequest(WireModel):
    user_id: str
    username: str
