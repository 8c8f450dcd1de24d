"""Emotional resonance: current tone, intensity, and catharsis debt.

Catharsis debt is unresolved emotional weight the story owes the reader:

  debt-adding tones   += intensity x weight   (weight 2, betrayal 5)
  releasing tones     -= intensity x 3
  catharsis           debt = 0

Debt is clamped to [0, 100] after every moment. Any other tone is recorded
in the arc but leaves the debt alone.

Buildups are explicit multi-phase setups toward a payoff tone. The payoff is
only emitted once every phase has been advanced.
"""

from __future__ import annotations

import logging
from statistics import mean
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

POSITIVE_TONES = frozenset({
    "joy", "hope", "wonder", "love", "pride", "relief", "gratitude", "belonging", "triumph",
})
NEGATIVE_TONES = frozenset({
    "sadness", "fear", "anger", "grief", "loneliness", "shame", "anxiety", "dread", "loss",
    "betrayal",
})
COMPLEX_TONES = frozenset({
    "bittersweetness", "nostalgia", "melancholy", "longing", "ambivalence", "catharsis",
})
NEUTRAL_TONES = frozenset({"curiosity", "anticipation", "tension", "stillness"})
ALL_TONES = POSITIVE_TONES | NEGATIVE_TONES | COMPLEX_TONES | NEUTRAL_TONES

TECHNIQUES = (
    "contrast",
    "callback",
    "sensory_anchor",
    "silence",
    "understatement",
    "parallel",
    "revelation",
    "accumulation",
    "defamiliarization",
)

SUBTLE = 2
MODERATE = 3
STRONG = 4
OVERWHELMING = 5

DEBT_TONES = frozenset({
    "sadness", "fear", "anger", "grief", "anxiety", "dread", "tension", "loneliness", "loss",
    "betrayal",
})
DEBT_WEIGHTS = {"betrayal": 5}
DEFAULT_DEBT_WEIGHT = 2
RELEASE_TONES = frozenset({"joy", "relief", "triumph", "hope", "belonging"})
RELEASE_WEIGHT = 3

CONTRASTING_TONES: dict[str, list[str]] = {
    "joy": ["melancholy", "longing"],
    "sadness": ["hope", "joy"],
    "fear": ["triumph", "relief"],
    "anger": ["stillness", "gratitude"],
    "tension": ["relief", "stillness"],
    "wonder": ["dread", "loneliness"],
    "love": ["loss", "longing"],
    "betrayal": ["gratitude", "belonging"],
}

MAX_ARC = 50
TRIM_ARC = 40
MAX_PEAKS = 10
TRIM_PEAKS = 8
MAX_CALLBACKS = 15
TRIM_CALLBACKS = 10


def _clamp(value: float, low: int = 0, high: int = 100) -> int:
    return int(max(low, min(high, round(value))))


def valence(tone: str) -> str:
    if tone in POSITIVE_TONES:
        return "positive"
    if tone in NEGATIVE_TONES:
        return "negative"
    if tone in COMPLEX_TONES:
        return "complex"
    return "neutral"


def emotional_distance(tone_a: str, tone_b: str) -> float:
    """How far apart two tones sit: 1.0 opposite valence, 0.3 same, 0.6 otherwise."""
    va, vb = valence(tone_a), valence(tone_b)
    if {va, vb} == {"positive", "negative"}:
        return 1.0
    if va == vb:
        return 0.3
    return 0.6


class EmotionalMoment(BaseModel):
    tone: str
    intensity: int
    technique: str | None = None
    summary: str = ""
    turn: int = 0


class Buildup(BaseModel):
    id: str
    target_tone: str
    phases: int = 3
    current_phase: int = 0
    intensity: float = 0.0
    started_turn: int = 0


class EmotionalResonance(BaseModel):
    current_tone: str = "anticipation"
    current_intensity: int = SUBTLE
    catharsis_debt: int = 0
    arc: list[EmotionalMoment] = Field(default_factory=list)
    peaks: list[EmotionalMoment] = Field(default_factory=list)
    callbacks: list[EmotionalMoment] = Field(default_factory=list)
    buildups: dict[str, Buildup] = Field(default_factory=dict)
    technique_usage: dict[str, int] = Field(default_factory=dict)
    next_buildup: int = 1

    # ------------------------------------------------------------------
    # Moments and debt
    # ------------------------------------------------------------------

    def record_moment(
        self,
        tone: str,
        intensity: int,
        technique: str | None = None,
        summary: str = "",
        turn: int = 0,
    ) -> EmotionalMoment:
        if tone not in ALL_TONES:
            logger.debug("Unknown emotional tone %r, recording without debt effect", tone)
        if technique is not None and technique not in TECHNIQUES:
            logger.debug("Unknown technique %r dropped", technique)
            technique = None
        moment = EmotionalMoment(
            tone=tone,
            intensity=_clamp(intensity, 1, 5),
            technique=technique,
            summary=summary,
            turn=turn,
        )
        self.current_tone = moment.tone
        self.current_intensity = moment.intensity
        self._update_debt(moment)

        self.arc.append(moment)
        if len(self.arc) > MAX_ARC:
            self.arc = self.arc[-TRIM_ARC:]
        if moment.intensity >= STRONG:
            self.peaks.append(moment)
            if len(self.peaks) > MAX_PEAKS:
                self.peaks = self.peaks[-TRIM_PEAKS:]
        if moment.intensity >= MODERATE:
            self.callbacks.append(moment)
            if len(self.callbacks) > MAX_CALLBACKS:
                self.callbacks = self.callbacks[-TRIM_CALLBACKS:]
        if moment.technique:
            self.technique_usage[moment.technique] = self.technique_usage.get(moment.technique, 0) + 1
        return moment

    def _update_debt(self, moment: EmotionalMoment) -> None:
        if moment.tone == "catharsis":
            self.catharsis_debt = 0
            return
        if moment.tone in DEBT_TONES:
            weight = DEBT_WEIGHTS.get(moment.tone, DEFAULT_DEBT_WEIGHT)
            self.catharsis_debt = _clamp(self.catharsis_debt + moment.intensity * weight)
        elif moment.tone in RELEASE_TONES:
            self.catharsis_debt = _clamp(self.catharsis_debt - moment.intensity * RELEASE_WEIGHT)

    # ------------------------------------------------------------------
    # Buildups
    # ------------------------------------------------------------------

    def start_buildup(self, target_tone: str, phases: int = 3, turn: int = 0) -> Buildup:
        buildup = Buildup(
            id=f"buildup-{self.next_buildup}",
            target_tone=target_tone,
            phases=max(1, phases),
            started_turn=turn,
        )
        self.next_buildup += 1
        self.buildups[buildup.id] = buildup
        return buildup

    def advance_buildup(self, buildup_id: str) -> Buildup | None:
        buildup = self.buildups.get(buildup_id)
        if buildup is None:
            logger.debug("advance_buildup: no buildup %r", buildup_id)
            return None
        if buildup.current_phase < buildup.phases:
            buildup.current_phase += 1
        buildup.intensity = buildup.current_phase / buildup.phases * STRONG
        return buildup

    def is_payoff_ready(self, buildup_id: str) -> bool:
        buildup = self.buildups.get(buildup_id)
        return buildup is not None and buildup.current_phase >= buildup.phases

    def trigger_payoff(self, buildup_id: str, summary: str = "", turn: int = 0) -> EmotionalMoment | None:
        """Emit the payoff moment, or None while phases remain."""
        if not self.is_payoff_ready(buildup_id):
            return None
        buildup = self.buildups.pop(buildup_id)
        return self.record_moment(
            buildup.target_tone,
            OVERWHELMING,
            technique="revelation",
            summary=summary or f"Payoff for {buildup.target_tone}",
            turn=turn,
        )

    def cancel_buildup(self, buildup_id: str) -> bool:
        return self.buildups.pop(buildup_id, None) is not None

    # ------------------------------------------------------------------
    # Direction
    # ------------------------------------------------------------------

    def suggest_direction(self) -> list[dict[str, Any]]:
        suggestions: list[dict[str, Any]] = []

        if self.catharsis_debt >= 60:
            suggestions.append({
                "direction": "release",
                "reason": "Emotional tension needs release",
                "suggested_tones": ["relief", "catharsis", "hope"],
                "urgency": "high",
            })

        recent = self.arc[-5:]
        if recent and len({m.tone for m in recent}) <= 2:
            suggestions.append({
                "direction": "variety",
                "reason": "Emotional palette needs variety",
                "suggested_tones": CONTRASTING_TONES.get(self.current_tone, ["stillness"]),
                "urgency": "medium",
            })

        if recent and mean(m.intensity for m in recent) >= STRONG:
            suggestions.append({
                "direction": "breathe",
                "reason": "Need emotional breathing room",
                "suggested_tones": ["stillness", "nostalgia"],
                "suggested_intensity": SUBTLE,
                "urgency": "medium",
            })

        for buildup in self.buildups.values():
            if buildup.current_phase >= buildup.phases:
                suggestions.append({
                    "direction": "payoff",
                    "reason": f"Buildup for {buildup.target_tone} is ready",
                    "suggested_tones": [buildup.target_tone],
                    "buildup_id": buildup.id,
                    "urgency": "high",
                })

        return suggestions

    def recommend_technique(self, target_intensity: int) -> str:
        if target_intensity >= STRONG:
            if self.current_intensity <= SUBTLE:
                return "contrast"
            if self.callbacks:
                return "callback"
            return "accumulation"
        if self.current_intensity >= STRONG and target_intensity <= MODERATE:
            return "silence"
        if target_intensity <= SUBTLE:
            return "understatement"
        return "sensory_anchor"

    def context(self) -> dict[str, Any]:
        suggestions = self.suggest_direction()
        return {
            "tone": self.current_tone,
            "intensity": self.current_intensity,
            "catharsis_debt": self.catharsis_debt,
            "needs_release": self.catharsis_debt >= 50,
            "recent_peaks": [m.tone for m in self.peaks[-3:]],
            "suggestions": suggestions[:2],
        }

    def reset_for_new_scene(self) -> None:
        self.catharsis_debt = _clamp(self.catharsis_debt - 10)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def deserialize(cls, data: Any) -> EmotionalResonance | None:
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None
