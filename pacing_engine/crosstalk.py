"""Cross-talk scheduler: characters talking to each other while the reader watches."""

from __future__ import annotations

import logging
import random
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

CrossTalkType = Literal[
    "banter",
    "debate",
    "planning",
    "reminiscing",
    "comfort",
    "tension",
    "flirtation",
    "confession",
    "exposition",
    "gossip",
    "lore",
    "secrets",
    "foreshadowing",
    "subplot",
]

Dynamic = Literal[
    "allies",
    "rivals",
    "mentor_student",
    "romantic",
    "siblings",
    "strangers",
    "former_friends",
    "coworkers",
    "nemeses",
]

TRIGGERS = (
    "reader_silent",
    "natural_pause",
    "tension_release",
    "scene_transition",
    "new_information",
    "character_arrival",
    "reader_observing",
)

INTERESTING_DYNAMICS = frozenset({"rivals", "romantic", "mentor_student"})

CROSSTALK_GUIDANCE: dict[str, list[str]] = {
    "banter": [
        "Keep it light and quick",
        "Show their rapport through verbal sparring",
    ],
    "comfort": [
        "One notices the other needs support",
        "Actions can say more than words",
        "Don't solve the problem, just be present",
    ],
    "tension": [
        "Let subtext do the heavy lifting",
        "Interrupted sentences and loaded pauses",
    ],
    "planning": [
        "They discuss next steps naturally",
        "Disagreements reveal character",
        "Let the reader overhear something useful",
    ],
    "reminiscing": [
        "Reference a shared past",
        "Show how the relationship has changed",
    ],
    "gossip": [
        "They discuss others, possibly the reader",
        "Different perspectives on the same events",
    ],
    "exposition": [
        "Information through disagreement or teaching",
        "One asks what the reader might be wondering",
    ],
    "confession": [
        "One trusts the other with something personal",
        "The reader feels privileged to witness it",
    ],
}
DEFAULT_GUIDANCE = [
    "Let the characters have their own moment",
    "Reveal something about their relationship",
]

DYNAMIC_NOTES = {
    "rivals": "Competitive edge even in friendly moments",
    "mentor_student": "Teaching moments, but the student can surprise the mentor",
    "romantic": "Subtext, stolen glances, things almost said",
}

MAX_PAIR_HISTORY = 10
TRIM_PAIR_HISTORY = 8
MAX_HISTORY = 30
TRIM_HISTORY = 25
MAX_TOPICS = 10
TRIM_TOPICS = 8


def pair_key(a: str, b: str) -> str:
    return ":".join(sorted((a, b)))


class PairRelationship(BaseModel):
    dynamic: Dynamic = "strangers"
    tension: int = 30
    affection: int = 50
    history: list[dict] = Field(default_factory=list)
    shared_secrets: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)


class CrossTalkRecord(BaseModel):
    participants: list[str]
    type: str
    summary: str = ""
    turn: int = 0


class CrossTalkScheduler(BaseModel):
    relationships: dict[str, PairRelationship] = Field(default_factory=dict)
    history: list[CrossTalkRecord] = Field(default_factory=list)
    exchanges_since: int = 0
    min_exchanges: int = 4
    by_type: dict[str, int] = Field(default_factory=dict)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def get_relationship(self, a: str, b: str) -> PairRelationship | None:
        return self.relationships.get(pair_key(a, b))

    def set_relationship(self, a: str, b: str, **fields: Any) -> PairRelationship:
        rel = PairRelationship(**fields)
        self.relationships[pair_key(a, b)] = rel
        return rel

    def _ensure(self, a: str, b: str) -> PairRelationship:
        return self.get_relationship(a, b) or self.set_relationship(a, b)

    def add_topic(self, a: str, b: str, topic: str) -> None:
        rel = self._ensure(a, b)
        if topic in rel.topics:
            return
        rel.topics.append(topic)
        if len(rel.topics) > MAX_TOPICS:
            rel.topics = rel.topics[-TRIM_TOPICS:]

    def share_secret(self, a: str, b: str, secret: str) -> None:
        rel = self._ensure(a, b)
        rel.shared_secrets.append(secret)
        rel.affection = min(100, rel.affection + 5)

    def update_tension(self, a: str, b: str, delta: int) -> int:
        rel = self._ensure(a, b)
        rel.tension = max(0, min(100, rel.tension + delta))
        return rel.tension

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def increment_exchanges(self) -> None:
        self.exchanges_since += 1

    def should_cross_talk(self, context: dict[str, Any], rng: random.Random) -> dict[str, Any]:
        """Decide whether present characters should talk among themselves.

        Context keys: reader_silent, silent_exchanges, natural_pause,
        tension_just_dropped, scene_transition, new_information,
        character_arrived, reader_observing, characters.
        """
        if self.exchanges_since < self.min_exchanges:
            return {"should": False, "triggers": [], "suggested_type": None, "reason": "too_soon"}

        triggers = []
        if context.get("reader_silent") and context.get("silent_exchanges", 0) >= 2:
            triggers.append("reader_silent")
        if context.get("natural_pause"):
            triggers.append("natural_pause")
        if context.get("tension_just_dropped"):
            triggers.append("tension_release")
        if context.get("scene_transition"):
            triggers.append("scene_transition")
        if context.get("new_information"):
            triggers.append("new_information")
        if context.get("character_arrived"):
            triggers.append("character_arrival")
        if context.get("reader_observing"):
            triggers.append("reader_observing")

        if not triggers:
            return {"should": False, "triggers": [], "suggested_type": None, "reason": "no_triggers"}
        if len(context.get("characters") or []) < 2:
            return {"should": False, "triggers": triggers, "suggested_type": None,
                    "reason": "need_multiple_characters"}
        return {
            "should": True,
            "triggers": triggers,
            "suggested_type": _suggest_type(triggers, rng),
            "reason": ", ".join(triggers),
        }

    def select_participants(self, characters: list[str]) -> dict[str, Any] | None:
        """Pick the most promising pair; earlier pairs win ties."""
        if len(characters) < 2:
            return None
        paired = {tuple(sorted(r.participants[:2])) for r in self.history if len(r.participants) >= 2}
        best: tuple[int, tuple[str, str]] | None = None
        for i, a in enumerate(characters):
            for b in characters[i + 1:]:
                rel = self.get_relationship(a, b)
                tension = rel.tension if rel else 30
                dynamic = rel.dynamic if rel else "strangers"
                score = 0
                if rel:
                    score += 30
                if tension > 60:
                    score += 20
                if tension < 30:
                    score += 10
                if dynamic in INTERESTING_DYNAMICS:
                    score += 25
                if tuple(sorted((a, b))) not in paired:
                    score += 15
                if best is None or score > best[0]:
                    best = (score, (a, b))
        score, (a, b) = best
        rel = self.get_relationship(a, b)
        return {
            "characters": [a, b],
            "dynamic": rel.dynamic if rel else "strangers",
            "relationship": rel,
            "score": score,
        }

    def guidance(self, participants: dict[str, Any], talk_type: str) -> dict[str, Any]:
        first, second = participants["characters"]
        rel: PairRelationship | None = participants.get("relationship")
        suggestions = list(CROSSTALK_GUIDANCE.get(talk_type, DEFAULT_GUIDANCE))
        note = DYNAMIC_NOTES.get(participants.get("dynamic", "strangers"))
        if note:
            suggestions.append(note)
        return {
            "speakers": [first, second],
            "type": talk_type,
            "dynamic": participants.get("dynamic", "strangers"),
            "relationship": {
                "tension": rel.tension,
                "affection": rel.affection,
                "topics": rel.topics[:3],
            } if rel else None,
            "suggestions": suggestions,
        }

    def record_cross_talk(self, a: str, b: str, talk_type: str, summary: str = "", turn: int = 0) -> CrossTalkRecord:
        record = CrossTalkRecord(participants=[a, b], type=talk_type, summary=summary, turn=turn)
        self.history.append(record)
        if len(self.history) > MAX_HISTORY:
            self.history = self.history[-TRIM_HISTORY:]
        self.exchanges_since = 0

        rel = self.get_relationship(a, b)
        if rel is not None:
            rel.history.append({"type": talk_type, "turn": turn})
            if len(rel.history) > MAX_PAIR_HISTORY:
                rel.history = rel.history[-TRIM_PAIR_HISTORY:]
        self.by_type[talk_type] = self.by_type.get(talk_type, 0) + 1
        return record

    def context(self, characters: list[str]) -> dict[str, Any]:
        dynamics = []
        for i, a in enumerate(characters):
            for b in characters[i + 1:]:
                rel = self.get_relationship(a, b)
                if rel:
                    dynamics.append({
                        "pair": [a, b],
                        "dynamic": rel.dynamic,
                        "tension": rel.tension,
                        "affection": rel.affection,
                    })
        return {
            "exchanges_since": self.exchanges_since,
            "recent": [r.model_dump() for r in self.history[-3:]],
            "dynamics": dynamics,
        }

    def serialize(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def deserialize(cls, data: Any) -> CrossTalkScheduler | None:
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None


def _suggest_type(triggers: list[str], rng: random.Random) -> str:
    if "tension_release" in triggers:
        return rng.choice(["banter", "comfort"])
    if "new_information" in triggers:
        return "debate"
    if "character_arrival" in triggers:
        return "reminiscing"
    if "reader_silent" in triggers:
        return rng.choice(["planning", "gossip"])
    if "natural_pause" in triggers:
        return rng.choice(["banter", "exposition", "lore"])
    return "banter"
