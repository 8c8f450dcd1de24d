"""Reader input interpretation and collaborator tag parsing.

Quick keyword heuristics only; anything subtler is expected to arrive as the
interpretation tag the generation collaborator returns with its text.
"""

from __future__ import annotations

import json
import logging
import re

from pydantic import ValidationError

from pacing_engine.models import Character, Interpretation

logger = logging.getLogger(__name__)

QUESTION_RE = re.compile(r"\?$|^(what|who|where|when|why|how|is|are|do|does|can|could|would|will|did)\b", re.I)
ACTION_RE = re.compile(
    r"^\*|^I\s+(walk|go|move|run|take|grab|look|turn|open|close|push|pull|pick|put|touch|reach|"
    r"stand|sit|leave|enter|follow|approach|examine)",
    re.I,
)
DIALOGUE_RE = re.compile(r"^[\"']|^I\s+(say|tell|ask|reply|respond|answer|whisper|shout|mutter)", re.I)
EMOTION_RE = re.compile(
    r"^I\s+(feel|am\s+feeling)|^\*?(nervous|scared|happy|sad|angry|confused|worried|relieved|excited)\*?$",
    re.I,
)
DECISION_RE = re.compile(r"^(let's|we should|I choose|I'll|I decide|okay|yes|no|agreed|fine|alright)\b", re.I)
OBSERVE_RE = re.compile(r"^\*?(I\s+)?(watch|wait|listen|observe|stay quiet|say nothing)", re.I)
SILENT_RE = re.compile(r"^\s*(\.{2,}|…|\*?silence\*?)?\s*$", re.I)

# Checked in order, first match wins
TONE_MARKERS: list[tuple[str, re.Pattern[str]]] = [
    ("angry", re.compile(r"angry|furious|\bmad\b|pissed|\bhate|damn|\bhell\b")),
    ("sad", re.compile(r"\bsad|\bcry|tears|sorry|\bmiss|regret|\blost\b")),
    ("excited", re.compile(r"!{2,}|excited|amazing|\bwow\b|can't believe")),
    ("fearful", re.compile(r"scared|afraid|terrified|nervous|worried|danger")),
    ("curious", re.compile(r"wonder|curious|interesting|tell me|explain|\bwhy\b|\bhow\b")),
    ("playful", re.compile(r"haha|\blol\b|joke|tease|wink|;-?\)|:p")),
    ("warm", re.compile(r"thank|\blove|\bcare|friend|together|\btrust")),
    ("cold", re.compile(r"whatever|okay i guess|don't care|doesn't matter")),
    ("defiant", re.compile(r"no way|refuse|never|won't|can't make me|over my dead")),
    ("vulnerable", re.compile(r"i don't know|\bhelp|please|\balone|\bneed")),
    ("determined", re.compile(r"i will|\bmust\b|have to|going to|nothing will stop")),
]

TONE_TENSION_EVENTS: dict[str, str] = {
    "neutral": "dialogue",
    "warm": "bonding_moment",
    "cold": "dialogue",
    "angry": "conflict_escalates",
    "sad": "reflection",
    "excited": "stakes_raised",
    "fearful": "deadline_approaches",
    "curious": "exploration",
    "playful": "comic_relief",
    "defiant": "conflict_escalates",
    "vulnerable": "intimate_moment",
    "determined": "stakes_raised",
}

TONE_RESONANCE: dict[str, str] = {
    "neutral": "anticipation",
    "warm": "belonging",
    "cold": "ambivalence",
    "angry": "anger",
    "sad": "sadness",
    "excited": "joy",
    "fearful": "fear",
    "curious": "curiosity",
    "playful": "joy",
    "defiant": "anger",
    "vulnerable": "longing",
    "determined": "hope",
}

FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.I)


def detect_tone(text: str) -> str:
    lower = text.lower()
    for tone, pattern in TONE_MARKERS:
        if pattern.search(lower):
            return tone
    return "neutral"


def _intensity(text: str, tone: str) -> int:
    letters = [c for c in text if c.isalpha()]
    shouting = len(letters) >= 8 and sum(c.isupper() for c in letters) / len(letters) > 0.7
    if shouting or "!!" in text:
        return 4
    if tone in ("neutral", "curious", "cold"):
        return 2
    return 3


def _target(text: str, characters: list[Character]) -> str | None:
    lower = text.lower()
    for character in characters:
        if re.search(rf"\b{re.escape(character.name.lower())}\b", lower):
            return character.id
    return None


def interpret_input(text: str, characters: list[Character] | None = None) -> Interpretation:
    """Classify reader input with keyword patterns."""
    stripped = text.strip()
    if SILENT_RE.match(stripped):
        return Interpretation(input_type="observation", intensity=1, reader_silent=True)

    input_type = "dialogue"
    if QUESTION_RE.search(stripped):
        input_type = "question"
    if ACTION_RE.search(stripped):
        input_type = "action"
    if DIALOGUE_RE.search(stripped):
        input_type = "dialogue"
    if EMOTION_RE.search(stripped):
        input_type = "emotion"
    if DECISION_RE.search(stripped):
        input_type = "decision"
    observing = bool(OBSERVE_RE.search(stripped))
    if observing:
        input_type = "observation"

    tone = detect_tone(stripped)
    return Interpretation(
        input_type=input_type,
        tone=tone,
        intensity=_intensity(stripped, tone),
        target_character=_target(stripped, characters or []),
        reader_observing=observing,
        exit_intent=bool(re.search(r"\b(goodbye|i have to go|stop here|end (the|this) story)\b", stripped, re.I)),
    )


def tension_event_for(interpretation: Interpretation) -> str:
    if interpretation.tension_event:
        return interpretation.tension_event
    if interpretation.revelation:
        return "revelation"
    if interpretation.reader_silent or interpretation.reader_observing:
        return "steady"
    if interpretation.input_type == "action" and interpretation.tone == "neutral":
        return "exploration"
    return TONE_TENSION_EVENTS.get(interpretation.tone, "dialogue")


def resonance_tone_for(interpretation: Interpretation) -> str:
    return interpretation.emotional_tone or TONE_RESONANCE.get(interpretation.tone, "anticipation")


def detect_catalyst(interpretation: Interpretation) -> tuple[str, int, str] | None:
    """(dimension, magnitude, catalyst) a reader's turn pushes the target toward, if any."""
    if interpretation.input_type == "action" and interpretation.tone == "determined":
        return ("courage", 5, "challenge")
    if interpretation.tone in ("vulnerable", "sad"):
        return ("vulnerability", 8, "reader_influence")
    if interpretation.tone == "warm":
        return ("trust", 5, "connection")
    return None


def parse_interpretation_tag(raw: str | dict | None) -> Interpretation | None:
    """Parse the collaborator's interpretation tag; None when it is unusable."""
    if raw is None:
        return None
    try:
        if isinstance(raw, str):
            data = json.loads(FENCE_RE.sub("", raw.strip()))
        else:
            data = raw
        return Interpretation.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Ignoring unparsable interpretation tag: %s", e)
        return None
