"""Adventure state: the canonical snapshot of where the story is.

Every tracker reads from it and proposes mutations to it. It is the only
piece of engine state the generation collaborator sees directly, via
context_window().

Bounded buffers:
  recent_events          10
  conversation_history   20  (each add bumps total_exchanges)
  relationship.history   10

Relationships start at trust 50 / affection 50 / tension 0 / familiarity 0
and every dimension is clamped to 0-100 at the point of mutation.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from pacing_engine.models import Character, EmotionalBeat, SceneType

logger = logging.getLogger(__name__)

MAX_RECENT_EVENTS = 10
MAX_CONVERSATION = 20
MAX_RELATIONSHIP_HISTORY = 10
CONTEXT_WINDOW_EXCHANGES = 6
MAX_PENDING_THREADS = 10

RELATIONSHIP_DIMENSIONS = ("trust", "affection", "tension", "familiarity")


def _clamp(value: float, low: int = 0, high: int = 100) -> int:
    return int(max(low, min(high, round(value))))


class Scene(BaseModel):
    location: str = ""
    time_of_day: str = ""
    weather: str = ""
    ambiance: str = ""
    type: SceneType = "dialogue"


class Relationship(BaseModel):
    trust: int = 50
    affection: int = 50
    tension: int = 0
    familiarity: int = 0
    history: list[dict] = Field(default_factory=list)


class StoryEvent(BaseModel):
    kind: str
    description: str = ""
    turn: int = 0
    data: dict[str, Any] = Field(default_factory=dict)


class Exchange(BaseModel):
    speaker: str  # "reader" | "narrator" | <character id>
    content: str
    turn: int = 0


class AdventureState(BaseModel):
    session_id: str = ""
    scene: Scene = Field(default_factory=Scene)
    present_characters: list[Character] = Field(default_factory=list)
    speaking_character: str | None = None
    tension: int = 30
    emotional_beat: EmotionalBeat = "wonder"
    chapter: int = 1
    scene_number: int = 1
    recent_events: list[StoryEvent] = Field(default_factory=list)
    conversation_history: list[Exchange] = Field(default_factory=list)
    total_exchanges: int = 0
    relationships: dict[str, Relationship] = Field(default_factory=dict)
    pending_threads: list[dict] = Field(default_factory=list)
    foreshadowing: list[dict] = Field(default_factory=list)
    secrets_unlocked: list[dict] = Field(default_factory=list)
    emotional_milestones: list[dict] = Field(default_factory=list)
    awaiting_response: bool = False

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    def get_character(self, character_id: str) -> Character | None:
        for char in self.present_characters:
            if char.id == character_id:
                return char
        return None

    def add_character(self, character: Character, turn: int = 0) -> None:
        """Add a character to the scene; first appearance seeds a relationship."""
        if self.get_character(character.id) is not None:
            return
        self.present_characters.append(character)
        self.relationships.setdefault(character.id, Relationship())
        self.record_event("character_arrival", f"{character.name} arrives", turn,
                          character_id=character.id)

    def remove_character(self, character_id: str, turn: int = 0) -> bool:
        char = self.get_character(character_id)
        if char is None:
            return False
        self.present_characters = [c for c in self.present_characters if c.id != character_id]
        if self.speaking_character == character_id:
            self.speaking_character = None
        self.record_event("character_departure", f"{char.name} leaves", turn,
                          character_id=character_id)
        return True

    def set_speaker(self, character_id: str | None) -> None:
        self.speaking_character = character_id

    # ------------------------------------------------------------------
    # Tension, beat, events
    # ------------------------------------------------------------------

    def update_tension(self, delta: int, reason: str = "", turn: int = 0) -> int:
        """Shift tension by delta (clamped) and log a tension_change event."""
        previous = self.tension
        self.tension = _clamp(self.tension + delta)
        self.record_event(
            "tension_change", reason, turn,
            previous=previous, new=self.tension, delta=self.tension - previous,
        )
        return self.tension

    def set_beat(self, beat: EmotionalBeat) -> None:
        self.emotional_beat = beat

    def record_event(self, kind: str, description: str = "", turn: int = 0, **data: Any) -> StoryEvent:
        event = StoryEvent(kind=kind, description=description, turn=turn, data=data)
        self.recent_events.append(event)
        if len(self.recent_events) > MAX_RECENT_EVENTS:
            self.recent_events = self.recent_events[-MAX_RECENT_EVENTS:]
        return event

    def add_exchange(self, speaker: str, content: str, turn: int = 0) -> None:
        self.conversation_history.append(Exchange(speaker=speaker, content=content, turn=turn))
        if len(self.conversation_history) > MAX_CONVERSATION:
            self.conversation_history = self.conversation_history[-MAX_CONVERSATION:]
        self.total_exchanges += 1

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def update_relationship(
        self, character_id: str, reason: str = "", turn: int = 0, **deltas: int
    ) -> Relationship:
        """Apply signed deltas to trust/affection/tension/familiarity.

        Unknown dimension names are ignored.
        """
        rel = self.relationships.setdefault(character_id, Relationship())
        applied: dict[str, int] = {}
        for dim, delta in deltas.items():
            if dim not in RELATIONSHIP_DIMENSIONS:
                logger.debug("Ignoring unknown relationship dimension %r", dim)
                continue
            setattr(rel, dim, _clamp(getattr(rel, dim) + delta))
            applied[dim] = delta
        if applied:
            rel.history.append({"turn": turn, "reason": reason, "changes": applied})
            if len(rel.history) > MAX_RELATIONSHIP_HISTORY:
                rel.history = rel.history[-MAX_RELATIONSHIP_HISTORY:]
        return rel

    # ------------------------------------------------------------------
    # Threads, foreshadowing, secrets, milestones
    # ------------------------------------------------------------------

    def add_pending_thread(self, thread_id: str, content: str, turn: int = 0) -> None:
        if any(t["id"] == thread_id for t in self.pending_threads):
            return
        self.pending_threads.append({"id": thread_id, "content": content, "turn": turn})
        if len(self.pending_threads) > MAX_PENDING_THREADS:
            self.pending_threads = self.pending_threads[-MAX_PENDING_THREADS:]

    def discard_pending_thread(self, thread_id: str) -> bool:
        """Drop a thread that no longer needs tending (revealed or abandoned)."""
        before = len(self.pending_threads)
        self.pending_threads = [t for t in self.pending_threads if t["id"] != thread_id]
        return len(self.pending_threads) < before

    def resolve_pending_thread(self, thread_id: str, resolution: str = "", turn: int = 0) -> bool:
        if not self.discard_pending_thread(thread_id):
            return False
        self.record_event("thread_resolved", resolution, turn, thread_id=thread_id)
        return True

    def plant_foreshadowing(self, hint: str, payoff: str = "", turn: int = 0) -> dict:
        entry = {
            "id": f"fs-{len(self.foreshadowing) + 1}",
            "hint": hint,
            "payoff": payoff,
            "planted_turn": turn,
            "triggered": False,
        }
        self.foreshadowing.append(entry)
        return entry

    def trigger_foreshadowing(self, foreshadow_id: str, turn: int = 0) -> dict | None:
        for entry in self.foreshadowing:
            if entry["id"] == foreshadow_id and not entry["triggered"]:
                entry["triggered"] = True
                entry["triggered_turn"] = turn
                self.record_event("foreshadowing_paid_off", entry["payoff"], turn,
                                  foreshadow_id=foreshadow_id)
                return entry
        return None

    def set_awaiting_response(self, awaiting: bool) -> None:
        self.awaiting_response = awaiting

    def record_milestone(self, kind: str, description: str, turn: int = 0, **data: Any) -> None:
        self.emotional_milestones.append(
            {"kind": kind, "description": description, "turn": turn, **data}
        )

    def unlock_secret(self, secret_id: str, content: str, turn: int = 0) -> bool:
        """Record a revealed secret once; returns False if already unlocked."""
        if any(s["id"] == secret_id for s in self.secrets_unlocked):
            return False
        self.secrets_unlocked.append({"id": secret_id, "content": content, "turn": turn})
        self.record_event("secret_unlocked", content, turn, secret_id=secret_id)
        return True

    # ------------------------------------------------------------------
    # Scenes and chapters
    # ------------------------------------------------------------------

    def advance_scene(self, turn: int = 0, **scene_fields: Any) -> Scene:
        self.scene_number += 1
        self.scene = self.scene.model_copy(update=scene_fields)
        self.record_event("scene_change", self.scene.location, turn,
                          scene_number=self.scene_number)
        return self.scene

    def advance_chapter(self, turn: int = 0) -> int:
        self.chapter += 1
        self.scene_number = 1
        self.record_event("chapter_change", f"Chapter {self.chapter}", turn, chapter=self.chapter)
        return self.chapter

    # ------------------------------------------------------------------
    # Prompt context
    # ------------------------------------------------------------------

    def relationship_summary(self) -> list[str]:
        """One line per present character describing notable feelings."""
        lines = []
        for char in self.present_characters:
            rel = self.relationships.get(char.id)
            if rel is None:
                continue
            notes = []
            if rel.trust > 70:
                notes.append("trusts deeply")
            elif rel.trust < 30:
                notes.append("distrusts")
            if rel.affection > 70:
                notes.append("cares for")
            if rel.tension > 50:
                notes.append("tension with")
            if notes:
                lines.append(f"{char.name}: {', '.join(notes)} the reader")
        return lines

    def context_window(self) -> dict[str, Any]:
        return {
            "scene": self.scene.model_dump(),
            "chapter": self.chapter,
            "scene_number": self.scene_number,
            "present_characters": [c.name for c in self.present_characters],
            "speaking_character": self.speaking_character,
            "tension": self.tension,
            "emotional_beat": self.emotional_beat,
            "recent_exchanges": [
                e.model_dump() for e in self.conversation_history[-CONTEXT_WINDOW_EXCHANGES:]
            ],
            "relationships": self.relationship_summary(),
            "pending_threads": [t["content"] for t in self.pending_threads],
            "awaiting_response": self.awaiting_response,
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def deserialize(cls, data: Any) -> AdventureState | None:
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            logger.warning("Adventure state blob is corrupt: %s", e)
            return None
