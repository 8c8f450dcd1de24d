"""Character evolution: per-dimension growth with resistance and arc detection.

Each character carries 16 growth dimensions, each with:
  level       0-100 (default 50)
  velocity    smoothed recent change (0.7 old + 0.3 new)
  resistance  1-5, "open" → "entrenched" (default 3)

Applied change for a growth moment of `magnitude`:
  positive   magnitude / resistance
  negative   magnitude x (1 + 0.1 x resistance)
Guarded characters grow slowly and slip easily.

Milestones fire once per dimension when the level crosses a threshold in the
matching direction, and stay pending until the orchestrator stages them.

Arc detection looks at the dimensions touched by the last 15 growth moments
(at least 3 needed) and scores redemption, healing, coming-of-age and fall
patterns. The best score at or above the confidence threshold becomes the
active arc.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from pacing_engine.models import Character

logger = logging.getLogger(__name__)

GROWTH_DIMENSIONS = (
    "courage",
    "compassion",
    "wisdom",
    "honesty",
    "humility",
    "trust",
    "self_worth",
    "emotional_openness",
    "vulnerability",
    "hope",
    "forgiveness",
    "willingness_to_connect",
    "letting_go",
    "accepting_help",
    "skill_confidence",
    "leadership",
)

ArcPattern = Literal[
    "redemption",
    "fall",
    "corruption",
    "coming_of_age",
    "healing",
    "unmasking",
    "disillusionment",
    "reconnection",
    "empowerment",
    "acceptance",
    "transformation",
]

CATALYSTS = (
    "challenge",
    "failure",
    "success",
    "loss",
    "connection",
    "betrayal",
    "sacrifice",
    "mentorship",
    "revelation",
    "confrontation",
    "forgiveness_received",
    "reader_influence",
)

RESISTANCE_LABELS = {1: "open", 2: "receptive", 3: "neutral", 4: "guarded", 5: "entrenched"}

DEFAULT_LEVEL = 50
DEFAULT_RESISTANCE = 3

# (name, threshold, direction)
MILESTONES = [
    ("first_growth", 55, "up"),
    ("significant_growth", 70, "up"),
    ("breakthrough", 85, "up"),
    ("first_setback", 45, "down"),
    ("significant_regression", 30, "down"),
    ("crisis_point", 15, "down"),
]

# dimension → catalysts that tend to move it
GROWTH_CATALYSTS: dict[str, list[str]] = {
    "courage": ["challenge", "confrontation"],
    "compassion": ["loss", "connection"],
    "wisdom": ["failure", "mentorship"],
    "honesty": ["revelation", "confrontation"],
    "humility": ["failure", "mentorship"],
    "trust": ["connection", "forgiveness_received"],
    "self_worth": ["success", "reader_influence"],
    "emotional_openness": ["connection", "reader_influence"],
    "vulnerability": ["connection", "sacrifice"],
    "hope": ["success", "reader_influence"],
    "forgiveness": ["forgiveness_received", "revelation"],
    "willingness_to_connect": ["connection", "mentorship"],
    "letting_go": ["loss", "sacrifice"],
    "accepting_help": ["failure", "connection"],
    "skill_confidence": ["success", "challenge"],
    "leadership": ["challenge", "success"],
}

MAX_HISTORY = 20
TRIM_HISTORY = 15
ARC_WINDOW = 15
MIN_ARC_MOMENTS = 3
POTENTIAL_ARC_SCORE = 20
HEALING_DIMENSIONS = ("trust", "vulnerability", "emotional_openness")
COMING_OF_AGE_DIMENSIONS = ("wisdom", "courage", "self_worth")


def _clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def apply_resistance(magnitude: float, resistance: int) -> float:
    if magnitude >= 0:
        return magnitude / resistance
    return magnitude * (1 + 0.1 * resistance)


class DimensionState(BaseModel):
    level: float = DEFAULT_LEVEL
    velocity: float = 0.0
    resistance: int = Field(default=DEFAULT_RESISTANCE, ge=1, le=5)
    history: list[dict] = Field(default_factory=list)
    milestones: list[str] = Field(default_factory=list)


class GrowthMoment(BaseModel):
    dimension: str
    magnitude: float
    actual_change: float
    catalyst: str | None = None
    turn: int = 0


class CharacterEvolution(BaseModel):
    character_id: str
    dimensions: dict[str, DimensionState] = Field(
        default_factory=lambda: {d: DimensionState() for d in GROWTH_DIMENSIONS}
    )
    growth_log: list[GrowthMoment] = Field(default_factory=list)
    active_arc: str | None = None
    arc_confidence: int = 0
    potential_arcs: list[dict] = Field(default_factory=list)
    pending_milestones: list[dict] = Field(default_factory=list)

    @classmethod
    def for_character(cls, character: Character) -> CharacterEvolution:
        """Seed dimension levels and resistances from the character's psychology."""
        evo = cls(character_id=character.id)
        wound = character.wound.lower()
        if "abandon" in wound or "betray" in wound:
            evo._seed("trust", 25, 5)
        if "reject" in wound or "worth" in wound:
            evo._seed("self_worth", 30, 4)
        if "fail" in wound or "disappoint" in wound:
            evo._seed("courage", 35, 4)
        if character.attachment_style == "avoidant":
            evo._seed("vulnerability", 20, 5)
            evo._seed("willingness_to_connect", 35)
        elif character.attachment_style == "anxious":
            evo._seed("self_worth", 30)
            evo._seed("letting_go", 25)
        return evo

    def _seed(self, dimension: str, level: float, resistance: int | None = None) -> None:
        state = self.dimensions[dimension]
        state.level = level
        if resistance is not None:
            state.resistance = resistance

    # ------------------------------------------------------------------
    # Growth
    # ------------------------------------------------------------------

    def record_growth(
        self,
        dimension: str,
        magnitude: float,
        catalyst: str | None = None,
        turn: int = 0,
        arc_threshold: int = 40,
    ) -> dict[str, Any]:
        state = self.dimensions.get(dimension)
        if state is None:
            logger.debug("record_growth: unknown dimension %r", dimension)
            return {"applied": False, "actual_change": 0.0, "milestones": []}
        if catalyst is not None and catalyst not in CATALYSTS:
            logger.debug("record_growth: unknown catalyst %r", catalyst)

        old = state.level
        actual = apply_resistance(magnitude, state.resistance)
        state.level = _clamp(old + actual)
        applied = state.level - old
        state.velocity = state.velocity * 0.7 + applied * 0.3

        state.history.append({"turn": turn, "from": old, "to": state.level, "catalyst": catalyst})
        if len(state.history) > MAX_HISTORY:
            state.history = state.history[-TRIM_HISTORY:]

        self.growth_log.append(GrowthMoment(
            dimension=dimension,
            magnitude=magnitude,
            actual_change=actual,
            catalyst=catalyst,
            turn=turn,
        ))
        if len(self.growth_log) > MAX_HISTORY:
            self.growth_log = self.growth_log[-TRIM_HISTORY:]

        reached = self._check_milestones(dimension, state, old, turn)
        self.detect_arc(arc_threshold)
        return {
            "applied": True,
            "dimension": dimension,
            "previous": old,
            "level": state.level,
            "actual_change": actual,
            "milestones": reached,
        }

    def _check_milestones(self, dimension: str, state: DimensionState, old: float, turn: int) -> list[str]:
        reached = []
        for name, threshold, direction in MILESTONES:
            if name in state.milestones:
                continue
            crossed = (
                old < threshold <= state.level if direction == "up"
                else old > threshold >= state.level
            )
            if crossed:
                state.milestones.append(name)
                reached.append(name)
                self.pending_milestones.append({
                    "character_id": self.character_id,
                    "dimension": dimension,
                    "milestone": name,
                    "turn": turn,
                })
                logger.info("growth milestone character=%s %s/%s", self.character_id, dimension, name)
        return reached

    def acknowledge_milestones(self) -> list[dict]:
        """Hand pending milestones to the caller and clear them."""
        pending, self.pending_milestones = self.pending_milestones, []
        return pending

    # ------------------------------------------------------------------
    # Arcs
    # ------------------------------------------------------------------

    def detect_arc(self, threshold: int = 40) -> str | None:
        recent = self.growth_log[-ARC_WINDOW:]
        if len(recent) < MIN_ARC_MOMENTS:
            return self.active_arc
        touched = {m.dimension for m in recent}
        dims = {d: self.dimensions[d] for d in touched}
        scores: dict[str, int] = {}

        redeemed = [
            d for d, s in dims.items()
            if s.level >= 60 and any(h["from"] < 40 for h in s.history)
        ]
        if len(redeemed) >= 2:
            scores["redemption"] = len(redeemed) * 20

        healing = [
            d for d in HEALING_DIMENSIONS
            if d in dims and dims[d].velocity > 0 and dims[d].level > 50
        ]
        if len(healing) >= 2:
            scores["healing"] = len(healing) * 25

        maturing = [d for d in COMING_OF_AGE_DIMENSIONS if d in dims and dims[d].velocity > 0]
        if len(maturing) >= 2:
            scores["coming_of_age"] = len(maturing) * 20

        falling = [d for d, s in dims.items() if s.velocity < -2]
        if len(falling) >= 2:
            scores["fall"] = len(falling) * 20

        self.potential_arcs = [
            {"arc": arc, "score": score}
            for arc, score in sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))
            if score >= POTENTIAL_ARC_SCORE
        ]
        if self.potential_arcs and self.potential_arcs[0]["score"] >= threshold:
            best = self.potential_arcs[0]
            if best["arc"] != self.active_arc:
                logger.info("arc detected character=%s arc=%s score=%d",
                            self.character_id, best["arc"], best["score"])
            self.active_arc = best["arc"]
            self.arc_confidence = min(100, best["score"])
        return self.active_arc

    # ------------------------------------------------------------------
    # Resistance
    # ------------------------------------------------------------------

    def reduce_resistance(self, dimension: str, amount: int = 1) -> int | None:
        state = self.dimensions.get(dimension)
        if state is None:
            return None
        state.resistance = max(1, state.resistance - amount)
        return state.resistance

    def increase_resistance(self, dimension: str, amount: int = 1) -> int | None:
        state = self.dimensions.get(dimension)
        if state is None:
            return None
        state.resistance = min(5, state.resistance + amount)
        return state.resistance

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def most_active_dimension(self) -> str | None:
        moving = [(abs(s.velocity), d) for d, s in self.dimensions.items() if s.velocity]
        if not moving:
            return None
        return max(moving)[1]

    def is_breakthrough_near(self, dimension: str) -> bool:
        state = self.dimensions.get(dimension)
        return state is not None and 75 <= state.level < 85 and "breakthrough" not in state.milestones

    def is_crisis_near(self, dimension: str) -> bool:
        state = self.dimensions.get(dimension)
        return state is not None and 15 < state.level <= 25 and "crisis_point" not in state.milestones

    def growth_suggestions(self, limit: int = 3) -> list[dict[str, Any]]:
        """Lowest, least entrenched dimensions first: where growth would show."""
        ranked = sorted(
            self.dimensions.items(),
            key=lambda kv: (kv[1].level + kv[1].resistance * 5, kv[0]),
        )
        return [
            {
                "dimension": d,
                "level": round(s.level),
                "resistance": RESISTANCE_LABELS[s.resistance],
                "catalysts": GROWTH_CATALYSTS[d],
            }
            for d, s in ranked[:limit]
        ]

    def context(self) -> dict[str, Any]:
        notable = {
            d: round(s.level)
            for d, s in self.dimensions.items()
            if s.level <= 35 or s.level >= 65
        }
        return {
            "character_id": self.character_id,
            "active_arc": self.active_arc,
            "arc_confidence": self.arc_confidence,
            "most_active": self.most_active_dimension(),
            "notable_dimensions": notable,
            "pending_milestones": [m["milestone"] for m in self.pending_milestones],
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def deserialize(cls, data: Any) -> CharacterEvolution | None:
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None
