"""
Static murder mystery used when LLM generation is unavailable.

Five suspects, seven evidence items (two red herrings), five rooms.
Keys are camelCase, exactly what the generator prompt asks the model for,
so this doubles as a reference payload for Mystery.model_validate().
"""
from typing import Any, Dict

from models.game import Difficulty, Mystery


_FALLBACK_CASE: Dict[str, Any] = {
    "id": "blackwood-manor",
    "title": "Death at Blackwood Manor",
    "setting": "A rain-lashed country manor on the Yorkshire moors, autumn 1923.",
    "victim": {
        "name": "Lord Edmund Blackwood",
        "description": "A silver-haired aristocrat in his sixties, found slumped over his desk.",
        "background": "Wealthy, secretive, and about to rewrite his will.",
    },
    "crimeScene": (
        "The study door was locked from the inside. A half-finished glass of brandy "
        "sits beside an overturned inkwell, and the fire has burned down to embers."
    ),
    "suspects": [
        {
            "id": "suspect-1",
            "name": "Lady Margaret Blackwood",
            "role": "Wife of the victim",
            "description": "Composed and elegant, her gloves never leave her hands.",
            "motive": "The new will would have left her nothing.",
            "alibi": "Claims she was playing patience in the drawing room all evening.",
        },
        {
            "id": "suspect-2",
            "name": "Thomas Reed",
            "role": "Butler",
            "description": "Thirty years of service and a perfectly pressed collar.",
            "motive": "Lord Blackwood had discovered his gambling debts.",
            "alibi": "Says he was polishing silver in the pantry.",
        },
        {
            "id": "suspect-3",
            "name": "Dr. Alistair Finch",
            "role": "Family physician",
            "description": "Nervous hands, smells faintly of carbolic.",
            "motive": "The victim threatened to expose his forged prescriptions.",
            "alibi": "Insists he was reading in the library.",
        },
        {
            "id": "suspect-4",
            "name": "Clara Blackwood",
            "role": "Estranged daughter",
            "description": "Returned from Paris only yesterday, restless and sharp-tongued.",
            "motive": "Her father cut off her allowance last spring.",
            "alibi": "Walking in the conservatory, alone.",
        },
        {
            "id": "suspect-5",
            "name": "Victor Hale",
            "role": "Business partner",
            "description": "Broad-shouldered, loud laugh, expensive cufflinks.",
            "motive": "The partnership was about to be dissolved at a heavy loss to him.",
            "alibi": "Says he was smoking on the terrace despite the rain.",
        },
    ],
    "evidence": [
        {
            "id": "evidence-1",
            "title": "Brandy glass",
            "description": "A faint bitter-almond smell clings to the rim.",
            "room": "Study",
            "significance": "critical",
            "isRedHerring": False,
        },
        {
            "id": "evidence-2",
            "title": "Empty medicine vial",
            "description": "A small brown vial with the label scraped off, hidden behind the sherry decanter.",
            "room": "Library",
            "significance": "high",
            "isRedHerring": False,
        },
        {
            "id": "evidence-3",
            "title": "Torn prescription pad",
            "description": "The top sheets are missing; the impression of a signature remains.",
            "room": "Library",
            "significance": "high",
            "isRedHerring": False,
        },
        {
            "id": "evidence-4",
            "title": "Muddy footprints",
            "description": "Large boot prints leading from the terrace doors, still damp.",
            "room": "Terrace",
            "significance": "medium",
            "isRedHerring": True,
        },
        {
            "id": "evidence-5",
            "title": "Pawn ticket",
            "description": "A ticket for a silver candelabrum, pawned in York last week.",
            "room": "Pantry",
            "significance": "low",
            "isRedHerring": True,
        },
        {
            "id": "evidence-6",
            "title": "Draft of the new will",
            "description": "Names Clara as sole heir and mentions 'the doctor's deceit'.",
            "room": "Study",
            "significance": "high",
            "isRedHerring": False,
        },
        {
            "id": "evidence-7",
            "title": "Crushed orchid",
            "description": "A trampled bloom near the conservatory's side door.",
            "room": "Conservatory",
            "significance": "low",
            "isRedHerring": False,
        },
    ],
    "rooms": [
        {
            "id": "study",
            "name": "Study",
            "description": "Oak panelling, a heavy desk, and the smell of cold smoke.",
            "evidence": ["evidence-1", "evidence-6"],
        },
        {
            "id": "library",
            "name": "Library",
            "description": "Floor-to-ceiling shelves and a reading chair still warm.",
            "evidence": ["evidence-2", "evidence-3"],
        },
        {
            "id": "terrace",
            "name": "Terrace",
            "description": "Rain hammers the flagstones; a cigar stub floats in a puddle.",
            "evidence": ["evidence-4"],
        },
        {
            "id": "pantry",
            "name": "Butler's Pantry",
            "description": "Rows of gleaming silver and one conspicuously empty shelf.",
            "evidence": ["evidence-5"],
        },
        {
            "id": "conservatory",
            "name": "Conservatory",
            "description": "Humid glasshouse air, orchids in every shade of violet.",
            "evidence": ["evidence-7"],
        },
    ],
    "murderer": {
        "suspectId": "suspect-3",
        "method": "Cyanide dissolved in the evening brandy, slipped in while the victim read the will.",
        "confession": (
            "He would have ruined me. Thirty years of practice, gone over a few "
            "signatures. I only meant to buy time, and then there was no time left."
        ),
        "alternateEnding": (
            "Dr. Finch signs the death certificate himself: heart failure. "
            "By spring he has left for the continent, and the case is never reopened."
        ),
    },
    "difficulty": "medium",
}


def fallback_mystery(difficulty: Difficulty = Difficulty.MEDIUM) -> Mystery:
    """Return a fresh copy of the built-in case tagged with the requested difficulty."""
    data = dict(_FALLBACK_CASE, difficulty=difficulty.value)
    return Mystery.model_validate(data)
