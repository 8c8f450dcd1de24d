"""Orchestrator — turns tracker summaries into one ranked recommendation.

Recommendation rules (checked every turn from fresh summaries):

  Tier       Action               When
  ---------  -------------------  ----------------------------------------------
  CRITICAL   decrease_tension     catharsis debt >= debt_release_threshold
  HIGH       decrease_tension     reader left during high tension before, tension >= 70
  HIGH       breath_moment        >= breath_overdue_exchanges, or breath urgency high
  HIGH       milestone_scene      a growth milestone is pending
  MEDIUM     reveal_thread        a thread is ripe
  MEDIUM     trigger_emergence    an emergent moment candidate exists
  MEDIUM     cross_talk           >= crosstalk_due_exchanges, or scheduler says yes
  LOW        increase/decrease    tension drifts more than tension_drift from target
  LOW        callback_moment      a memory callback is available
  LOW        deepen_bond          a bond is near its threshold
  LOW        show_growth          a character is close to a breakthrough
  LOW        vulnerability_moment debt building while characters are alone

Actions still on cooldown are skipped. Conflict resolution is a pure function
of the recommendation list; ordering uses the comparable Priority value
(tier, urgency, source rank, sequence) so ties are always broken the same way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from pacing_engine.config import Tunables
from pacing_engine.models import ReaderProfileSummary, Urgency

logger = logging.getLogger(__name__)


class Action(str, Enum):
    CHARACTER_SPEAKS = "character_speaks"
    NARRATOR_DESCRIBES = "narrator_describes"
    BREATH_MOMENT = "breath_moment"
    CROSS_TALK = "cross_talk"
    REVEAL_THREAD = "reveal_thread"
    TRIGGER_EMERGENCE = "trigger_emergence"
    CALLBACK_MOMENT = "callback_moment"
    MILESTONE_SCENE = "milestone_scene"
    INCREASE_TENSION = "increase_tension"
    DECREASE_TENSION = "decrease_tension"
    CHANGE_SCENE = "change_scene"
    DEEPEN_BOND = "deepen_bond"
    SHOW_GROWTH = "show_growth"
    VULNERABILITY_MOMENT = "vulnerability_moment"


CRITICAL = 100
HIGH = 80
MEDIUM = 50
LOW = 20
BACKGROUND = 0

URGENCY_SCORES: dict[str, int] = {
    "immediate": 3,
    "soon": 2,
    "when_appropriate": 1,
    "gradual": 0,
}

SOURCE_ORDER = ("safety", "pacing", "emotional", "narrative", "character")

# Lose to an immediate breath
ACTION_ORIENTED = frozenset({Action.TRIGGER_EMERGENCE, Action.REVEAL_THREAD})

MAX_HISTORY = 50
TRIM_HISTORY = 40
SCENE_COOLDOWN_REDUCTION = 3


def source_rank(source: str) -> int:
    try:
        return SOURCE_ORDER.index(source)
    except ValueError:
        return len(SOURCE_ORDER)


@total_ordering
@dataclass(frozen=True)
class Priority:
    """Comparable priority: greater means more important.

    Compares tier, then urgency, then source (safety first), then the order
    the recommendation was generated in (earlier first).
    """

    tier: int
    urgency: int
    source_rank: int
    sequence: int

    def _key(self) -> tuple[int, int, int, int]:
        return (self.tier, self.urgency, -self.source_rank, -self.sequence)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: Priority) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())


class Recommendation(BaseModel):
    action: Action
    tier: int
    urgency: Urgency
    source: str
    reason: str
    payload: dict[str, Any] = Field(default_factory=dict)
    sequence: int = 0

    @property
    def priority(self) -> Priority:
        return Priority(self.tier, URGENCY_SCORES[self.urgency], source_rank(self.source), self.sequence)


class TrackerSummaries(BaseModel):
    """Read-only snapshot of every tracker, rebuilt each turn."""

    tension: int = 30
    target_tension: int | None = None
    breath_urgency: str = "none"
    breath_reasons: list[str] = Field(default_factory=list)
    exchanges_since_breath: int = 0
    emotional_intensity: int = 2
    catharsis_debt: int = 0
    exchanges_since_cross_talk: int = 0
    cross_talk: dict[str, Any] | None = None
    ripe_threads: list[str] = Field(default_factory=list)
    emergent: dict[str, Any] | None = None
    pending_milestones: list[dict] = Field(default_factory=list)
    callback: dict[str, Any] | None = None
    bonds_near_threshold: list[dict] = Field(default_factory=list)
    growth_near: list[dict] = Field(default_factory=list)
    characters_alone: bool = False
    reader: ReaderProfileSummary | None = None


def resolve_conflicts(recommendations: list[Recommendation]) -> list[Recommendation]:
    """Drop duplicates and losing sides of conflicts, then rank.

    - one recommendation per action, the highest priority one
    - increase vs decrease tension: higher urgency wins, decrease on a tie
    - an immediate breath removes action-oriented recommendations
    """
    best: dict[Action, Recommendation] = {}
    for rec in recommendations:
        current = best.get(rec.action)
        if current is None or rec.priority > current.priority:
            best[rec.action] = rec

    up = best.get(Action.INCREASE_TENSION)
    down = best.get(Action.DECREASE_TENSION)
    if up is not None and down is not None:
        if URGENCY_SCORES[up.urgency] > URGENCY_SCORES[down.urgency]:
            del best[Action.DECREASE_TENSION]
        else:
            del best[Action.INCREASE_TENSION]

    breath = best.get(Action.BREATH_MOMENT)
    if breath is not None and breath.urgency == "immediate":
        for action in ACTION_ORIENTED:
            best.pop(action, None)

    return sorted(best.values(), key=lambda r: r.priority, reverse=True)


class Orchestrator(BaseModel):
    summaries: TrackerSummaries = Field(default_factory=TrackerSummaries)
    cooldown_until: dict[str, int] = Field(default_factory=dict)
    history: list[dict] = Field(default_factory=list)
    tunables: Tunables = Field(default_factory=Tunables, exclude=True)

    def update_states(self, summaries: TrackerSummaries) -> None:
        self.summaries = summaries

    def cooldown_remaining(self, action: Action | str, turn: int) -> int:
        key = Action(action).value
        return max(0, self.cooldown_until.get(key, 0) - turn)

    def on_cooldown(self, action: Action | str, turn: int) -> bool:
        return self.cooldown_remaining(action, turn) > 0

    def generate_recommendations(self, turn: int) -> list[Recommendation]:
        s = self.summaries
        t = self.tunables
        raw: list[Recommendation] = []

        def add(action: Action, tier: int, urgency: Urgency, source: str, reason: str,
                payload: dict[str, Any] | None = None) -> None:
            if self.on_cooldown(action, turn):
                logger.debug("skipping %s, on cooldown for %d turns",
                             action.value, self.cooldown_remaining(action, turn))
                return
            raw.append(Recommendation(
                action=action,
                tier=tier,
                urgency=urgency,
                source=source,
                reason=reason,
                payload=dict(payload or {}),
                sequence=len(raw),
            ))

        if s.catharsis_debt >= t.debt_release_threshold:
            add(Action.DECREASE_TENSION, CRITICAL, "immediate", "emotional",
                f"Catharsis debt at {s.catharsis_debt}, the reader needs release")

        if s.reader and s.reader.exited_during_high_tension and s.tension >= 70:
            add(Action.DECREASE_TENSION, HIGH, "soon", "safety",
                "Reader has left during high tension before")

        if s.exchanges_since_breath >= t.breath_overdue_exchanges or s.breath_urgency == "high":
            urgency: Urgency = "immediate" if s.breath_urgency == "high" else "soon"
            add(Action.BREATH_MOMENT, HIGH, urgency, "pacing",
                f"No breath for {s.exchanges_since_breath} exchanges",
                {"reasons": list(s.breath_reasons)})

        if s.pending_milestones:
            milestone = s.pending_milestones[0]
            add(Action.MILESTONE_SCENE, HIGH, "soon", "character",
                f"{milestone.get('milestone', 'growth')} milestone ready", milestone)

        if s.ripe_threads:
            add(Action.REVEAL_THREAD, MEDIUM, "when_appropriate", "narrative",
                "Thread ready for revelation", {"thread_id": s.ripe_threads[0]})

        if s.emergent:
            add(Action.TRIGGER_EMERGENCE, MEDIUM, "when_appropriate", "narrative",
                f"Conditions align for {s.emergent.get('moment_type', 'a special moment')}",
                s.emergent)

        cross_talk_ready = bool(s.cross_talk and s.cross_talk.get("should"))
        if s.exchanges_since_cross_talk >= t.crosstalk_due_exchanges or cross_talk_ready:
            add(Action.CROSS_TALK, MEDIUM, "when_appropriate", "character",
                "Characters could talk among themselves", s.cross_talk)

        if s.target_tension is not None:
            diff = s.tension - s.target_tension
            if abs(diff) > t.tension_drift:
                action = Action.DECREASE_TENSION if diff > 0 else Action.INCREASE_TENSION
                add(action, LOW, "gradual", "pacing",
                    f"Tension {s.tension} far from target {s.target_tension}")

        if s.callback:
            add(Action.CALLBACK_MOMENT, LOW, "when_appropriate", "narrative",
                "A memory is ready to resurface", s.callback)

        if s.bonds_near_threshold:
            add(Action.DEEPEN_BOND, LOW, "when_appropriate", "character",
                "Close to a bond milestone", s.bonds_near_threshold[0])

        if s.growth_near:
            add(Action.SHOW_GROWTH, LOW, "when_appropriate", "character",
                "A character is close to a breakthrough", s.growth_near[0])

        if s.characters_alone and 50 <= s.catharsis_debt < t.debt_release_threshold:
            add(Action.VULNERABILITY_MOMENT, LOW, "when_appropriate", "emotional",
                "Unspoken weight and a private moment")

        if s.reader and s.reader.tension_preference == "low-tension":
            raw = [_cap_increase(r) for r in raw]

        return resolve_conflicts(raw)

    def record_action(self, action: Action | str, turn: int, result: dict | None = None) -> None:
        action = Action(action)
        self.history.append({"action": action.value, "turn": turn, "result": result or {}})
        if len(self.history) > MAX_HISTORY:
            self.history = self.history[-TRIM_HISTORY:]
        self.cooldown_until[action.value] = turn + self.tunables.cooldown_for(action.value)

    def reset_for_new_scene(self) -> None:
        self.cooldown_until = {
            action: until - SCENE_COOLDOWN_REDUCTION
            for action, until in self.cooldown_until.items()
        }

    def status(self, turn: int) -> dict[str, Any]:
        recs = self.generate_recommendations(turn)
        return {
            "states": self.summaries.model_dump(mode="json", exclude={"reader"}),
            "top": recs[0].model_dump(mode="json") if recs else None,
            "cooldowns": [
                {"action": action, "remaining": self.cooldown_remaining(action, turn)}
                for action in sorted(self.cooldown_until)
                if self.cooldown_remaining(action, turn)
            ],
            "recent_actions": [h["action"] for h in self.history[-5:]],
        }

    def serialize(self) -> dict[str, Any]:
        return self.model_dump(mode="json", include={"cooldown_until", "history"})

    @classmethod
    def deserialize(cls, data: Any, tunables: Tunables | None = None) -> Orchestrator | None:
        try:
            orchestrator = cls.model_validate(data)
        except ValidationError:
            return None
        if tunables is not None:
            orchestrator.tunables = tunables
        return orchestrator


def _cap_increase(rec: Recommendation) -> Recommendation:
    if rec.action != Action.INCREASE_TENSION:
        return rec
    return rec.model_copy(update={"tier": min(rec.tier, LOW), "urgency": "gradual"})
