"""Prompt composition for story sessions.

Turns a topic (or an interruption of a running story) plus the user's story
options into the instruction and greeting text sent to the session backend.

Composition is a pure function of its inputs: the same topic, options and
interruption text always yield byte-identical output, and nothing here does
I/O. The safety clause is a module constant and is always emitted first, so
no user input can alter or displace it.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from storyteller.schemas.story import StoryOptions, StorySetting, StoryTone

SAFETY_CLAUSE = (
    "You are StoryTeller: 100% G-rated, child-safe. "
    "No violence, politics, medical or financial advice. "
    "Speak in short sentences designed for TTS."
)

TONE_CLAUSES: Dict[StoryTone, str] = {
    StoryTone.KINDERGARTEN: "Use a playful, gentle storytelling voice with fun sounds and friendly repetition.",
    StoryTone.ELEMENTARY: "Use an engaging, adventurous storytelling voice with vivid descriptions.",
    StoryTone.MIDDLE: "Use a detailed storytelling voice with a richer plot and deeper character development.",
    StoryTone.LECTURE: "Use an educational, lecture-like voice that weaves in interesting facts along the way.",
}

# (inclusive upper age, band label)
COMPLEXITY_BANDS: Tuple[Tuple[int, str], ...] = (
    (8, "very simple"),
    (12, "moderately simple"),
    (16, "more detailed"),
)
TOP_COMPLEXITY_BAND = "sophisticated but clear"

SETTING_CLAUSES: Dict[StorySetting, str] = {
    StorySetting.FANTASY: "Set the story in a magical fantasy world full of wonder.",
    StorySetting.SPACE: "Set the story in outer space among stars, planets and rockets.",
    StorySetting.MODERN: "Set the story in the modern day, in a world much like ours.",
    StorySetting.HISTORY: "Set the story in an interesting period of history, with accurate details.",
    StorySetting.RELIGIOUS: "Set the story around well-known religious events, told respectfully and gently.",
    StorySetting.LEADERS: "Draw on the lives of inspiring world leaders and the lessons they teach.",
    StorySetting.UNDERWATER: "Set the story deep under the sea among coral reefs and ocean creatures.",
    StorySetting.FOREST: "Set the story in a lush forest full of nature and wildlife.",
    StorySetting.CITY: "Set the story in a busy, lively city.",
}

# Checked in order; the first category with a keyword in the topic wins.
CHARACTER_ARCHETYPES: List[Tuple[str, Tuple[str, ...], str]] = [
    (
        "astronaut",
        ("space", "astronaut", "moon", "rocket", "planet", "star", "galaxy", "alien", "mars"),
        "a curious young astronaut",
    ),
    (
        "animal",
        ("animal", "forest", "fox", "bear", "rabbit", "bunny", "owl", "wolf", "deer", "squirrel", "mouse", "cat", "dog"),
        "a clever little forest animal",
    ),
    (
        "magic",
        ("magic", "fairy", "wizard", "witch", "unicorn", "spell", "enchanted"),
        "a kind young fairy with a touch of magic",
    ),
]
DEFAULT_CHARACTER = "a brave, curious child"

SUMMARY_CLAUSE = "When the story ends, finish with a short, simple summary of what happened."

CONTINUE_GREETING = "Continue the story with the user's input."


@dataclass(frozen=True)
class ComposedInstructions:
    instruction_text: str
    greeting_text: str


def complexity_band(audience_age: int) -> str:
    """Language band for a listener age. Band upper bounds are inclusive."""
    for upper, label in COMPLEXITY_BANDS:
        if audience_age <= upper:
            return label
    return TOP_COMPLEXITY_BAND


def _keyword_pattern(keywords: Tuple[str, ...]) -> "re.Pattern[str]":
    alternatives = "|".join(re.escape(k) for k in keywords)
    return re.compile(rf"\b(?:{alternatives})(?:s|es)?\b", re.IGNORECASE)


_ARCHETYPE_PATTERNS = [(name, _keyword_pattern(keywords), text) for name, keywords, text in CHARACTER_ARCHETYPES]


def infer_character(topic: str) -> str:
    """Pick a character archetype from topic keywords, or the generic fallback."""
    for _name, pattern, character in _ARCHETYPE_PATTERNS:
        if pattern.search(topic or ""):
            return character
    return DEFAULT_CHARACTER


def _format_minutes(minutes: float) -> str:
    return f"{minutes:g}"


def _tone_clauses(options: StoryOptions) -> List[str]:
    band = complexity_band(options.audience_age)
    return [
        TONE_CLAUSES[options.tone],
        f"Keep the language {band} for a {options.audience_age}-year-old listener.",
    ]


def compose_instructions(
    topic: str,
    options: Optional[StoryOptions] = None,
    interruption_text: Optional[str] = None,
) -> ComposedInstructions:
    """Build instruction and greeting text for a fresh story or a continuation.

    Args:
        topic: What the story is about. Ignored for continuations.
        options: Story shaping options; defaults apply when omitted.
        interruption_text: User input to weave into the story already being told.

    Returns:
        ComposedInstructions with the full instruction text and greeting text.
    """
    options = options or StoryOptions()
    clauses: List[str] = [SAFETY_CLAUSE]
    clauses.extend(_tone_clauses(options))

    continuation = (interruption_text or "").strip()
    if continuation:
        clauses.append(
            "Continue the SAME story naturally, acknowledging and incorporating this user input: "
            f'"{continuation}". Keep the same setting, main character and tone.'
        )
        greeting = CONTINUE_GREETING
    else:
        minutes = _format_minutes(options.duration_minutes)
        character = options.main_character.strip() or infer_character(topic)
        clauses.append(
            f'You will immediately start telling a story about "{topic}". '
            "Begin speaking as soon as you connect. Do not wait for user input."
        )
        clauses.append(SETTING_CLAUSES.get(options.setting, SETTING_CLAUSES[StorySetting.FANTASY]))
        clauses.append(f"The main character is {character}.")
        clauses.append(f"The story should take about {minutes} minutes to tell aloud.")
        greeting = f'Start telling the story about "{topic}" immediately.'

    if options.include_summary:
        clauses.append(SUMMARY_CLAUSE)

    return ComposedInstructions(instruction_text=" ".join(clauses), greeting_text=greeting)
