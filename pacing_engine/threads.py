"""Hidden threads: narrative setups tracked toward their payoff.

Lifecycle (forward only):

  dormant → active → building → ripe → revealed → resolved
                                   └─────────────→ resolved
  any state except resolved ──→ abandoned (terminal)

touch(): +25 build progress for a significant mention, +10 otherwise
(capped at 100). First touch wakes a dormant thread, progress >= 75 moves it
to building, and it ripens only when progress is 100 AND at least
`patience` turns have passed since it was created.

Chekhov threads register each named element in a shared ledger. Elements
left unused for longer than unused_element_max_age turns surface as
foreshadowing opportunities.

Revelation timing score (ready at >= revelation_threshold, default 70):
  +40 ripe, +0.3 x significance, +0.2 x progress,
  +10 age > 10 turns, +10 more at > 30,
  +15 high tension, +20 emotional peak, +25 climax, -20 during a breath
"""

from __future__ import annotations

import logging
import re
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

ThreadType = Literal[
    "mystery",
    "chekhov",
    "foreshadowing",
    "parallel",
    "irony",
    "secret",
    "unspoken",
    "pattern",
    "growth",
    "relationship",
    "motif",
    "theme",
    "contrast",
]

ThreadState = Literal["dormant", "active", "building", "ripe", "revealed", "resolved", "abandoned"]

RevelationStyle = Literal["sudden", "gradual", "callback", "echo", "inversion", "confirmation"]

STATE_ORDER: dict[str, int] = {
    "dormant": 0,
    "active": 1,
    "building": 2,
    "ripe": 3,
    "revealed": 4,
    "resolved": 5,
}
OPEN_STATES = frozenset({"dormant", "active", "building", "ripe"})

SIGNIFICANT_TOUCH = 25
MINOR_TOUCH = 10
BUILDING_AT = 75

# (pattern, thread type, significance)
DETECTION_PATTERNS: list[tuple[re.Pattern[str], str, int]] = [
    (re.compile(r"\b(who|what|why) (was|is|did)\b.*\?|\bmyster(y|ious)\b|\bstrange(ly)?\b", re.I),
     "mystery", 60),
    (re.compile(r"\b(someday|one day|mark my words|before (this|it) is over|omen)\b", re.I),
     "foreshadowing", 55),
    (re.compile(r"\b(pistol|gun|dagger|knife|sword|key|locket|letter|map|vial|rope)\b", re.I),
     "chekhov", 50),
    (re.compile(r"\b(hesitat\w*|looks? away|falls? silent|trails? off|almost said)\b", re.I),
     "unspoken", 45),
    (re.compile(r"\b(again|always|every time|once more)\b", re.I),
     "pattern", 40),
]
CHEKHOV_OBJECT = DETECTION_PATTERNS[2][0]


class ChekhovElement(BaseModel):
    name: str
    thread_id: str
    introduced_turn: int = 0
    used: bool = False
    used_turn: int | None = None


class Thread(BaseModel):
    id: str = ""
    type: ThreadType = "mystery"
    content: str
    elements: list[str] = Field(default_factory=list)
    characters: list[str] = Field(default_factory=list)
    significance: int = Field(default=50, ge=0, le=100)
    patience: int = Field(default=5, ge=0)
    state: ThreadState = "dormant"
    build_progress: int = Field(default=0, ge=0, le=100)
    mention_count: int = 0
    created_turn: int = 0
    last_touched_turn: int = 0
    revelation_style: RevelationStyle | None = None
    resolution: str | None = None
    connections: list[dict] = Field(default_factory=list)
    buildup_id: str | None = None

    def age(self, turn: int) -> int:
        return max(0, turn - self.created_turn)


class ThreadTracker(BaseModel):
    threads: dict[str, Thread] = Field(default_factory=dict)
    elements: dict[str, ChekhovElement] = Field(default_factory=dict)
    ripe_queue: list[str] = Field(default_factory=list)
    revealed: list[dict] = Field(default_factory=list)
    next_id: int = 1
    revelation_threshold: int = 70
    unused_element_max_age: int = 20
    dormant_abandon_after: int = 60

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _advance(self, thread: Thread, new_state: str) -> bool:
        """Move a thread forward; regressions and moves out of terminal states are refused."""
        if thread.state in ("abandoned", "resolved"):
            return False
        if STATE_ORDER[new_state] <= STATE_ORDER[thread.state]:
            return False
        if thread.state == "ripe" and thread.id in self.ripe_queue:
            self.ripe_queue.remove(thread.id)
        thread.state = new_state
        if new_state == "ripe":
            self.ripe_queue.append(thread.id)
            logger.info("thread ripe id=%s type=%s", thread.id, thread.type)
        return True

    def _check_ripe(self, thread: Thread, turn: int) -> None:
        if (
            thread.state == "building"
            and thread.build_progress >= 100
            and thread.age(turn) >= thread.patience
        ):
            self._advance(thread, "ripe")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def add(self, thread: Thread, turn: int = 0) -> Thread:
        added = thread.model_copy(deep=True)
        if not added.id:
            added.id = f"thread-{self.next_id}"
            self.next_id += 1
        added.created_turn = turn
        added.last_touched_turn = turn
        added.state = "dormant"
        self.threads[added.id] = added
        if added.type == "chekhov":
            for name in added.elements:
                self.elements.setdefault(
                    name.lower(),
                    ChekhovElement(name=name, thread_id=added.id, introduced_turn=turn),
                )
        return added

    def get(self, thread_id: str) -> Thread | None:
        return self.threads.get(thread_id)

    def touch(self, thread_id: str, turn: int, significant: bool = False) -> Thread | None:
        thread = self.threads.get(thread_id)
        if thread is None:
            logger.debug("touch: unknown thread %r", thread_id)
            return None
        if thread.state not in OPEN_STATES:
            return thread

        thread.mention_count += 1
        thread.last_touched_turn = turn
        gain = SIGNIFICANT_TOUCH if significant else MINOR_TOUCH
        thread.build_progress = min(100, thread.build_progress + gain)

        if thread.state == "dormant":
            self._advance(thread, "active")
        if thread.build_progress >= BUILDING_AT and thread.state == "active":
            self._advance(thread, "building")
        self._check_ripe(thread, turn)
        return thread

    def update_ripeness(self, turn: int) -> list[Thread]:
        """Ripen building threads whose patience has run out since their last touch."""
        newly = []
        for thread in self.threads.values():
            before = thread.state
            self._check_ripe(thread, turn)
            if before != thread.state:
                newly.append(thread)
        return newly

    def reveal(self, thread_id: str, style: RevelationStyle = "gradual", turn: int = 0) -> Thread | None:
        thread = self.threads.get(thread_id)
        if thread is None or not self._advance(thread, "revealed"):
            return None
        thread.revelation_style = style
        self.revealed.append({"id": thread.id, "turn": turn, "style": style})
        if len(self.revealed) > 30:
            self.revealed = self.revealed[-25:]
        return thread

    def resolve(self, thread_id: str, resolution: str = "", turn: int = 0) -> Thread | None:
        thread = self.threads.get(thread_id)
        if thread is None or not self._advance(thread, "resolved"):
            return None
        thread.resolution = resolution
        for name in thread.elements:
            self.mark_element_used(name, turn)
        return thread

    def abandon(self, thread_id: str, turn: int = 0) -> Thread | None:
        thread = self.threads.get(thread_id)
        if thread is None or thread.state in ("resolved", "abandoned"):
            return None
        if thread.id in self.ripe_queue:
            self.ripe_queue.remove(thread.id)
        thread.state = "abandoned"
        thread.last_touched_turn = turn
        return thread

    def connect(self, thread_a: str, thread_b: str, kind: str = "related", turn: int = 0) -> bool:
        a, b = self.threads.get(thread_a), self.threads.get(thread_b)
        if a is None or b is None or a.id == b.id:
            return False
        a.connections.append({"thread_id": b.id, "kind": kind, "turn": turn})
        b.connections.append({"thread_id": a.id, "kind": kind, "turn": turn})
        self.touch(a.id, turn, significant=True)
        self.touch(b.id, turn, significant=True)
        return True

    # ------------------------------------------------------------------
    # Chekhov ledger
    # ------------------------------------------------------------------

    def mark_element_used(self, name: str, turn: int = 0) -> bool:
        element = self.elements.get(name.lower())
        if element is None or element.used:
            return False
        element.used = True
        element.used_turn = turn
        return True

    def get_unused_elements(self) -> list[ChekhovElement]:
        return [e for e in self.elements.values() if not e.used]

    def foreshadowing_opportunities(self, turn: int) -> list[dict[str, Any]]:
        """Unused elements that have waited too long for their payoff."""
        result = []
        for element in self.get_unused_elements():
            age = turn - element.introduced_turn
            if age > self.unused_element_max_age:
                result.append({
                    "element": element.name,
                    "thread_id": element.thread_id,
                    "age": age,
                    "suggestion": f"Bring the {element.name} back into play",
                })
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_ripe_threads(self) -> list[Thread]:
        return [self.threads[i] for i in self.ripe_queue if i in self.threads]

    def threads_in_state(self, state: ThreadState) -> list[Thread]:
        return [t for t in self.threads.values() if t.state == state]

    def revelation_timing(self, thread_id: str, context: dict[str, Any], turn: int) -> dict[str, Any]:
        """Score how well now suits revealing this thread.

        context keys: high_tension, emotional_peak, climax, in_breath (bools).
        """
        thread = self.threads.get(thread_id)
        if thread is None or thread.state not in OPEN_STATES:
            return {"score": 0, "ready": False, "style": None}

        score = 0.0
        if thread.state == "ripe":
            score += 40
        score += thread.significance * 0.3
        score += thread.build_progress * 0.2
        age = thread.age(turn)
        if age > 10:
            score += 10
        if age > 30:
            score += 10
        if context.get("high_tension"):
            score += 15
        if context.get("emotional_peak"):
            score += 20
        if context.get("climax"):
            score += 25
        if context.get("in_breath"):
            score -= 20

        if score >= 90:
            style = "sudden"
        elif score >= 80:
            style = "confirmation"
        else:
            style = "gradual"
        return {
            "score": round(score, 1),
            "ready": score >= self.revelation_threshold,
            "style": style,
        }

    def detect_potential_threads(self, text: str) -> list[dict[str, Any]]:
        """Heuristic scan of generated text for setups worth tracking."""
        found = []
        for pattern, thread_type, significance in DETECTION_PATTERNS:
            match = pattern.search(text)
            if match is None:
                continue
            candidate: dict[str, Any] = {
                "type": thread_type,
                "content": _sentence_around(text, match.start()),
                "significance": significance,
            }
            if thread_type == "chekhov":
                candidate["elements"] = sorted({m.lower() for m in CHEKHOV_OBJECT.findall(text)})
            found.append(candidate)
        return found

    def cleanup(self, turn: int) -> list[str]:
        """Abandon dormant threads nobody has mentioned for a long while."""
        abandoned = []
        for thread in self.threads.values():
            if thread.state == "dormant" and turn - thread.last_touched_turn >= self.dormant_abandon_after:
                thread.state = "abandoned"
                abandoned.append(thread.id)
        return abandoned

    def summary(self, turn: int) -> dict[str, Any]:
        counts: dict[str, int] = {}
        for thread in self.threads.values():
            counts[thread.state] = counts.get(thread.state, 0) + 1
        return {
            "counts": counts,
            "ripe": [{"id": t.id, "content": t.content, "type": t.type} for t in self.get_ripe_threads()],
            "unused_elements": [e.name for e in self.get_unused_elements()],
            "foreshadowing_due": self.foreshadowing_opportunities(turn),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def deserialize(cls, data: Any) -> ThreadTracker | None:
        try:
            tracker = cls.model_validate(data)
        except ValidationError:
            return None
        tracker.ripe_queue = [t.id for t in tracker.threads.values() if t.state == "ripe"]
        return tracker


def _sentence_around(text: str, index: int) -> str:
    start = max(text.rfind(".", 0, index), text.rfind("!", 0, index), text.rfind("?", 0, index)) + 1
    ends = [i for i in (text.find(".", index), text.find("!", index), text.find("?", index)) if i != -1]
    end = min(ends) + 1 if ends else len(text)
    return text[start:end].strip()
