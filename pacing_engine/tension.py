"""Tension controller — the 0-100 pacing value and its genre-shaped targets.

Every story event maps to a fixed signed delta (TENSION_EVENTS). Applying one
clamps tension into [0, 100], derives the pacing mode from the delta, and
updates the counters that feed breath detection:

  exchanges_since_breath   +1 per event, reset by record_breath()
  exchanges_since_peak     +1 per event, reset while tension >= HIGH
  sustained_high_count     +1 per event at >= TENSE, reset below it

Breath is owed when any of these hold (urgency in brackets):
  too_long_since_breath   exchanges >= genre cadence             [low]
  reader_fatigued         tension >= HIGH for 3+ events          [medium]
  sustained_high          5+ events at >= TENSE, genre forbids   [high]
  after_peak              tension >= PEAK                        [high]

Pacing recommendation, first match wins:
  1. high-urgency breath
  2. outside the genre's preferred range → release / build
  3. more than 15 away from the genre target → release / build
  4. any other breath need
  5. sustain
"""

from __future__ import annotations

import logging
from statistics import mean, pstdev
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from pacing_engine.models import ReaderProfileSummary

logger = logging.getLogger(__name__)

PacingMode = Literal["breath", "building", "sustaining", "releasing", "spiking", "crashing"]
BreathCadence = Literal["short", "medium", "long"]

PEACEFUL = 10
RELAXED = 25
MODERATE = 40
ELEVATED = 55
TENSE = 70
HIGH = 85
PEAK = 95

# (floor, label); first floor the value reaches wins
TENSION_LABELS = [
    (PEAK, "peak"),
    (HIGH, "high"),
    (TENSE, "tense"),
    (ELEVATED, "elevated"),
    (MODERATE, "moderate"),
    (RELAXED, "relaxed"),
    (0, "peaceful"),
]

TENSION_EVENTS: dict[str, int] = {
    # rising
    "threat_introduced": 15,
    "conflict_escalates": 10,
    "revelation": 12,
    "betrayal": 20,
    "deadline_approaches": 8,
    "danger_imminent": 15,
    "secret_discovered": 10,
    "stakes_raised": 12,
    # falling
    "threat_resolved": -20,
    "moment_of_peace": -15,
    "comic_relief": -10,
    "intimate_moment": -12,
    "victory": -18,
    "safe_haven": -15,
    "bonding_moment": -8,
    "breath_moment": -15,
    # neutral / slight
    "dialogue": 2,
    "exploration": 3,
    "reflection": -5,
    "steady": 0,
}

BREATH_CADENCE: dict[str, int] = {"short": 12, "medium": 8, "long": 5}

MAX_EVENT_HISTORY = 100
TRIM_EVENT_HISTORY = 80
MAX_TENSION_HISTORY = 200
TRIM_TENSION_HISTORY = 150
SERIALIZED_TENSION_ENTRIES = 50
SERIALIZED_EVENTS = 30
SUSTAINED_HIGH_LIMIT = 5
FATIGUE_LIMIT = 3


class GenreProfile(BaseModel):
    genre: str
    target: int
    breath_cadence: BreathCadence
    sustained_high_ok: bool
    preferred_min: int
    preferred_max: int


GENRE_PROFILES: dict[str, GenreProfile] = {
    p.genre: p
    for p in (
        GenreProfile(genre="thriller", target=65, breath_cadence="short", sustained_high_ok=True,
                     preferred_min=50, preferred_max=90),
        GenreProfile(genre="romance", target=45, breath_cadence="medium", sustained_high_ok=False,
                     preferred_min=25, preferred_max=70),
        GenreProfile(genre="horror", target=55, breath_cadence="long", sustained_high_ok=False,
                     preferred_min=30, preferred_max=85),
        GenreProfile(genre="fantasy", target=50, breath_cadence="medium", sustained_high_ok=False,
                     preferred_min=20, preferred_max=80),
        GenreProfile(genre="mystery", target=55, breath_cadence="long", sustained_high_ok=True,
                     preferred_min=35, preferred_max=75),
        GenreProfile(genre="action", target=60, breath_cadence="short", sustained_high_ok=True,
                     preferred_min=40, preferred_max=90),
        GenreProfile(genre="literary", target=40, breath_cadence="long", sustained_high_ok=False,
                     preferred_min=20, preferred_max=65),
        GenreProfile(genre="comedy", target=35, breath_cadence="short", sustained_high_ok=False,
                     preferred_min=15, preferred_max=60),
    )
}

DEFAULT_GENRE = "fantasy"


def genre_profile(genre: str) -> GenreProfile:
    """Return a copy of the profile for genre, falling back to fantasy."""
    profile = GENRE_PROFILES.get(genre)
    if profile is None:
        logger.debug("Unknown genre %r, using %s profile", genre, DEFAULT_GENRE)
        profile = GENRE_PROFILES[DEFAULT_GENRE]
    return profile.model_copy()


def mode_for_delta(delta: int) -> PacingMode:
    if delta >= 15:
        return "spiking"
    if delta >= 5:
        return "building"
    if delta <= -15:
        return "crashing"
    if delta <= -5:
        return "releasing"
    if delta < 0:
        return "breath"
    return "sustaining"


def tension_label(value: int) -> str:
    for floor, label in TENSION_LABELS:
        if value >= floor:
            return label
    return "peaceful"


def _clamp(value: float) -> int:
    return int(max(0, min(100, round(value))))


class TensionManager(BaseModel):
    current: int = 30
    mode: PacingMode = "sustaining"
    profile: GenreProfile = Field(default_factory=lambda: genre_profile(DEFAULT_GENRE))
    tension_history: list[dict] = Field(default_factory=list)
    event_history: list[dict] = Field(default_factory=list)
    peak_history: list[dict] = Field(default_factory=list)
    exchanges_since_breath: int = 0
    exchanges_since_peak: int = 0
    sustained_high_count: int = 0
    reader_tolerance: int = 50

    @classmethod
    def for_genre(cls, genre: str, initial: int = 30) -> TensionManager:
        return cls(current=_clamp(initial), profile=genre_profile(genre))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def apply_event(self, kind: str, turn: int = 0) -> dict[str, Any]:
        """Apply a named story event. Unknown kinds are a zero-delta no-op."""
        delta = TENSION_EVENTS.get(kind)
        if delta is None:
            logger.debug("Unknown tension event %r, treating as zero delta", kind)
            delta = 0
        return self.apply_delta(delta, kind, turn)

    def apply_delta(self, delta: int, kind: str = "custom", turn: int = 0) -> dict[str, Any]:
        previous = self.current
        self.current = _clamp(previous + delta)
        actual = self.current - previous
        self.mode = mode_for_delta(delta)

        if self.current >= HIGH:
            self.exchanges_since_peak = 0
            if self.current >= PEAK:
                self.peak_history.append({"turn": turn, "value": self.current, "event": kind})
                if len(self.peak_history) > 10:
                    self.peak_history = self.peak_history[-10:]
        if self.current >= TENSE:
            self.sustained_high_count += 1
        else:
            self.sustained_high_count = 0
        self.exchanges_since_breath += 1
        self.exchanges_since_peak += 1

        self.event_history.append({"turn": turn, "event": kind, "delta": actual})
        if len(self.event_history) > MAX_EVENT_HISTORY:
            self.event_history = self.event_history[-TRIM_EVENT_HISTORY:]
        self.tension_history.append({"turn": turn, "value": self.current, "mode": self.mode})
        if len(self.tension_history) > MAX_TENSION_HISTORY:
            self.tension_history = self.tension_history[-TRIM_TENSION_HISTORY:]

        return {
            "previous": previous,
            "new": self.current,
            "delta": actual,
            "mode": self.mode,
            "event": kind,
        }

    # ------------------------------------------------------------------
    # Breath
    # ------------------------------------------------------------------

    def needs_breath(self) -> dict[str, Any]:
        reasons: list[str] = []
        if self.exchanges_since_breath >= BREATH_CADENCE[self.profile.breath_cadence]:
            reasons.append("too_long_since_breath")
        if self.sustained_high_count >= SUSTAINED_HIGH_LIMIT and not self.profile.sustained_high_ok:
            reasons.append("sustained_high")
        if self.current >= HIGH and self.sustained_high_count >= FATIGUE_LIMIT:
            reasons.append("reader_fatigued")
        if self.current >= PEAK:
            reasons.append("after_peak")

        if not reasons:
            return {"needed": False, "urgency": None, "reasons": []}
        if "after_peak" in reasons or "sustained_high" in reasons:
            urgency = "high"
        elif "reader_fatigued" in reasons:
            urgency = "medium"
        else:
            urgency = "low"
        return {"needed": True, "urgency": urgency, "reasons": reasons}

    def record_breath(self, turn: int = 0) -> dict[str, Any]:
        result = self.apply_event("breath_moment", turn)
        # the breath itself is not an exchange
        self.exchanges_since_breath = 0
        self.sustained_high_count = 0
        return result

    # ------------------------------------------------------------------
    # Pacing
    # ------------------------------------------------------------------

    def recommend_pacing(self) -> dict[str, Any]:
        breath = self.needs_breath()
        profile = self.profile

        if breath["needed"] and breath["urgency"] == "high":
            return {
                "action": "breath",
                "urgency": "high",
                "reason": f"Breath overdue: {', '.join(breath['reasons'])}",
                "suggested_event": "moment_of_peace",
            }

        if self.current > profile.preferred_max:
            return {
                "action": "release",
                "urgency": "medium",
                "reason": f"Tension {self.current} above the {profile.genre} range",
                "suggested_event": "threat_resolved" if self.current >= HIGH else "comic_relief",
            }
        if self.current < profile.preferred_min:
            return {
                "action": "build",
                "urgency": "medium",
                "reason": f"Tension {self.current} below the {profile.genre} range",
                "suggested_event": "conflict_escalates",
            }

        gap = self.current - profile.target
        if abs(gap) > 15:
            if gap > 0:
                return {
                    "action": "release",
                    "urgency": "low",
                    "reason": f"Drifting {gap} above target {profile.target}",
                    "suggested_event": "bonding_moment",
                }
            return {
                "action": "build",
                "urgency": "low",
                "reason": f"Drifting {-gap} below target {profile.target}",
                "suggested_event": "stakes_raised",
            }

        if breath["needed"]:
            return {
                "action": "breath",
                "urgency": breath["urgency"],
                "reason": f"Breath would help: {', '.join(breath['reasons'])}",
                "suggested_event": "intimate_moment",
            }

        return {
            "action": "sustain",
            "urgency": "low",
            "reason": "Tension is where the genre wants it",
            "suggested_event": "dialogue",
        }

    def tension_goal(self) -> dict[str, Any]:
        return {
            "target": self.profile.target,
            "range": [self.profile.preferred_min, self.profile.preferred_max],
            "distance": self.current - self.profile.target,
        }

    # ------------------------------------------------------------------
    # History analysis
    # ------------------------------------------------------------------

    def _recent_values(self, window: int) -> list[int]:
        return [entry["value"] for entry in self.tension_history[-window:]]

    def average_tension(self, window: int = 10) -> float:
        values = self._recent_values(window)
        return float(mean(values)) if values else float(self.current)

    def volatility(self, window: int = 10) -> float:
        values = self._recent_values(window)
        return float(pstdev(values)) if len(values) > 1 else 0.0

    def is_in_spike(self) -> bool:
        return self.mode == "spiking" or (self.current >= HIGH and self.exchanges_since_peak <= 1)

    def is_in_lull(self, window: int = 5) -> bool:
        values = self._recent_values(window)
        return len(values) >= window and max(values) <= RELAXED

    # ------------------------------------------------------------------
    # Reader adaptation
    # ------------------------------------------------------------------

    def adapt_to_reader(self, reader: ReaderProfileSummary | None) -> None:
        """Nudge the genre profile toward what this reader tolerates."""
        if reader is None:
            return
        if reader.exited_during_high_tension:
            self.reader_tolerance = max(20, self.reader_tolerance - 5)
        else:
            self.reader_tolerance = min(80, self.reader_tolerance + 2)

        base = genre_profile(self.profile.genre)
        profile = base.model_copy()
        if self.reader_tolerance < 40:
            profile.preferred_max = min(profile.preferred_max, TENSE)
        elif self.reader_tolerance > 60:
            profile.sustained_high_ok = True
        if reader.tension_preference == "high-tension":
            profile.target = min(profile.preferred_max, base.target + 5)
        elif reader.tension_preference == "low-tension":
            profile.target = max(profile.preferred_min, base.target - 5)
        self.profile = profile

    def reset_for_new_scene(self) -> None:
        self.current = _clamp(self.current * 0.7 + self.profile.target * 0.3)
        self.sustained_high_count = 0

    # ------------------------------------------------------------------
    # Summary and persistence
    # ------------------------------------------------------------------

    def summary(self) -> dict[str, Any]:
        return {
            "value": self.current,
            "label": tension_label(self.current),
            "mode": self.mode,
            "genre": self.profile.genre,
            "target": self.profile.target,
            "range": [self.profile.preferred_min, self.profile.preferred_max],
            "exchanges_since_breath": self.exchanges_since_breath,
            "breath": self.needs_breath(),
        }

    def serialize(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["tension_history"] = data["tension_history"][-SERIALIZED_TENSION_ENTRIES:]
        data["event_history"] = data["event_history"][-SERIALIZED_EVENTS:]
        return data

    @classmethod
    def deserialize(cls, data: Any) -> TensionManager | None:
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None
