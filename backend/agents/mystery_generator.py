"""
Content Generator Gateway — thin adapter over Gemini.

Exposes three calls used by the game master:
- generate_mystery(difficulty)          → validated Mystery, or GenerationFailed
- generate_room_narration(mystery, ...) → text, never raises
- analyze_evidence(mystery, ...)        → text, never raises

Mystery output is parsed and checked against the Mystery invariants before
it is accepted (murderer must be a suspect, room evidence ids must exist).
Malformed output is retried up to `generation_attempts` times; after that the
built-in case is used when `mystery_fallback_enabled` is on.
"""
import asyncio
import json
import logging
import re
from typing import List, Optional

import pydantic
from google import genai
from google.genai import types

from config import settings
from models.errors import GenerationFailed
from models.game import Difficulty, Mystery, Room
from agents.fallback_mystery import fallback_mystery

logger = logging.getLogger(__name__)


_MYSTERY_SYSTEM = (
    "You are a master mystery writer creating detective games. Generate compelling, "
    "logical mysteries with well-developed characters and intricate plots. "
    "Always respond with valid JSON."
)

_MYSTERY_PROMPT = """Generate a murder mystery for a multiplayer detective game with the following structure:

REQUIREMENTS:
- Difficulty level: {difficulty}
- 4-6 suspects with distinct personalities, motives, and alibis
- 6-10 pieces of evidence (mix of real clues and red herrings)
- 5-8 explorable rooms/locations
- One clear murderer with logical method and confession
- Victorian or modern noir setting

OUTPUT FORMAT (JSON):
{{
  "id": "unique-mystery-id",
  "title": "Mystery Title",
  "setting": "Location description",
  "victim": {{"name": "Victim Name", "description": "Physical description", "background": "Background story"}},
  "crimeScene": "Primary crime scene description",
  "suspects": [
    {{"id": "suspect-1", "name": "Full Name", "role": "Relationship to victim",
      "description": "Physical and personality description",
      "motive": "Why they might kill the victim", "alibi": "Their claimed whereabouts"}}
  ],
  "evidence": [
    {{"id": "evidence-1", "title": "Evidence Name", "description": "Detailed description",
      "room": "Where it's found", "significance": "low|medium|high|critical", "isRedHerring": false}}
  ],
  "rooms": [
    {{"id": "room-1", "name": "Room Name", "description": "Room description and atmosphere",
      "evidence": ["evidence-1", "evidence-2"]}}
  ],
  "murderer": {{"suspectId": "suspect-id", "method": "How the murder was committed",
    "confession": "Full confession when revealed", "alternateEnding": "What happens if players guess wrong"}},
  "difficulty": "{difficulty}"
}}

Every evidence id listed in a room must appear in "evidence", and murderer.suspectId must
be one of the suspect ids. Create an engaging, logical mystery with interconnected clues
that lead to the murderer."""


def room_fallback_narration(room: Room) -> str:
    """Deterministic narration built from the room's static text."""
    return f"You enter the {room.name}. {room.description}".strip()


def _strip_fences(raw: str) -> str:
    """Strip optional markdown code fences (```json or ``` with any language tag)."""
    text = raw.strip()
    if text.startswith("```"):
        text = re.sub(r"^```[a-zA-Z]*\n?", "", text)
        text = re.sub(r"\n?```$", "", text.strip())
    return text


class ContentGenerator:
    """Gemini-backed generator. One client per process, created on first use."""

    def __init__(self):
        self._client: Optional[genai.Client] = None

    @property
    def available(self) -> bool:
        return bool(settings.gemini_api_key)

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=settings.gemini_api_key)
        return self._client

    async def _generate_text(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_output_tokens: int,
        system_instruction: Optional[str] = None,
        json_output: bool = False,
    ) -> Optional[str]:
        response = await self._get_client().aio.models.generate_content(
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=temperature,
                max_output_tokens=max_output_tokens,
                system_instruction=system_instruction,
                response_mime_type="application/json" if json_output else None,
            ),
        )
        return response.text.strip() if response.text else None

    # ── Mystery ───────────────────────────────────────────────────────────────

    @staticmethod
    def parse_mystery(raw: Optional[str], difficulty: Difficulty) -> Mystery:
        """Parse and validate generator output. Raises GenerationFailed."""
        if not raw:
            raise GenerationFailed("Generator returned an empty mystery")
        try:
            data = json.loads(_strip_fences(raw))
        except json.JSONDecodeError as exc:
            raise GenerationFailed(f"Mystery is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise GenerationFailed("Mystery JSON must be an object")
        data.setdefault("difficulty", difficulty.value)
        try:
            return Mystery.model_validate(data)
        except pydantic.ValidationError as exc:
            raise GenerationFailed(
                f"Mystery failed validation: {exc.error_count()} error(s)"
            ) from exc

    async def generate_mystery(self, difficulty: Difficulty = Difficulty.MEDIUM) -> Mystery:
        last_error = "content generator not configured (GEMINI_API_KEY unset)"
        if self.available:
            prompt = _MYSTERY_PROMPT.format(difficulty=difficulty.value)
            attempts = max(1, settings.generation_attempts)
            for attempt in range(attempts):
                try:
                    raw = await self._generate_text(
                        prompt,
                        model=settings.mystery_model,
                        temperature=0.8,
                        max_output_tokens=4000,
                        system_instruction=_MYSTERY_SYSTEM,
                        json_output=True,
                    )
                    mystery = self.parse_mystery(raw, difficulty)
                    logger.info(
                        "[mystery] Generated '%s' (%d suspects, %d evidence, %d rooms)",
                        mystery.title, len(mystery.suspects),
                        len(mystery.evidence), len(mystery.rooms),
                    )
                    return mystery
                except GenerationFailed as exc:
                    last_error = exc.message
                except Exception as exc:
                    last_error = str(exc)
                logger.warning(
                    "[mystery] Attempt %d/%d failed: %s", attempt + 1, attempts, last_error
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(settings.generation_retry_delay)

        if settings.mystery_fallback_enabled:
            logger.warning("[mystery] Using built-in case (%s)", last_error)
            return fallback_mystery(difficulty)
        raise GenerationFailed(f"Failed to generate mystery: {last_error}")

    # ── Narration ─────────────────────────────────────────────────────────────

    async def generate_room_narration(
        self, mystery: Mystery, room_id: str, player_names: List[str]
    ) -> str:
        room = mystery.find_room(room_id)
        if room is None:
            return "You find yourself in a dimly lit room with an air of mystery."
        fallback = room_fallback_narration(room)
        if not self.available:
            return fallback

        clues = []
        for evidence_id in room.evidence:
            evidence = mystery.find_evidence(evidence_id)
            clues.append(f"{evidence.title} - {evidence.description}" if evidence else evidence_id)

        prompt = (
            f'You are the game master for "{mystery.title}". A player is investigating the {room.name}.\n\n'
            f"CONTEXT:\n"
            f"- Setting: {mystery.setting}\n"
            f"- Crime: Murder of {mystery.victim.name}\n"
            f"- Room: {room.name}\n"
            f"- Room Description: {room.description}\n"
            f"- Available Evidence: {', '.join(clues) or 'none'}\n"
            f"- Investigators present: {', '.join(player_names) or 'unknown'}\n\n"
            f"Provide an atmospheric description of what the player sees when entering this room. "
            f"Be immersive and hint at clues without being too obvious. Keep it under 200 words."
        )
        try:
            text = await self._generate_text(
                prompt, model=settings.narration_model, temperature=0.7, max_output_tokens=300
            )
        except Exception as exc:
            logger.warning("[narration] Room '%s' generation failed: %s", room_id, exc)
            return fallback
        return text or fallback

    async def analyze_evidence(self, mystery: Mystery, evidence_id: str) -> str:
        evidence = mystery.find_evidence(evidence_id)
        if evidence is None:
            return "There is nothing here to analyze."
        fallback = (
            f"Analysis of {evidence.title}: This evidence may provide important "
            f"clues about the murder."
        )
        if not self.available:
            return fallback

        prompt = (
            f'As an AI forensic analyst in "{mystery.title}", analyze this evidence:\n\n'
            f"EVIDENCE: {evidence.title}\n"
            f"DESCRIPTION: {evidence.description}\n"
            f"LOCATION: Found in {evidence.room}\n"
            f"SIGNIFICANCE: {evidence.significance.value}\n\n"
            f"Provide a detailed forensic analysis explaining what this evidence reveals about "
            f"the crime. Consider fingerprints, DNA, timeline, motive, etc. Be scientific but "
            f"accessible. Keep under 150 words."
        )
        try:
            text = await self._generate_text(
                prompt, model=settings.narration_model, temperature=0.6, max_output_tokens=200
            )
        except Exception as exc:
            logger.warning("[analysis] Evidence '%s' analysis failed: %s", evidence_id, exc)
            return fallback
        return text or fallback


# Module-level singleton
content_generator = ContentGenerator()
