"""Breath scheduler. Deliberate pauses after intensity.

A breath is owed when (checked in this order, later matches set the type):

  exchanges since breath >= max            rhythm_break, high
  peak intensity >= recovery threshold     recovery, long (needs >= 2 exchanges)
  previous beat was a revelation/peak      landing, high
  scene ending or location change          transitional, medium
  characters alone, tension low            intimacy, low (needs min spacing)

Fewer than `min_exchanges` since the last breath cancels everything except a
landing. Urgency only ever rises across the checks.

Intensity is on the tension scale (0-100). Channel choice avoids the three
most recently used sensory channels whenever another is left.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

BreathType = Literal[
    "recovery",
    "landing",
    "processing",
    "sensory",
    "ambient",
    "transitional",
    "intimacy",
    "solitude",
    "contemplation",
    "chapter_end",
    "scene_shift",
    "rhythm_break",
]

BreathDuration = Literal["beat", "short", "medium", "long", "lingering"]

SENSORY_CHANNELS = ("visual", "auditory", "tactile", "olfactory", "kinesthetic")

URGENCY_RANK = {"none": 0, "low": 1, "medium": 2, "high": 3}

# type → (suggestions, avoid)
BREATH_GUIDANCE: dict[str, tuple[list[str], list[str]]] = {
    "recovery": (
        ["Let characters catch their breath", "Show the physical aftermath", "A moment of safety"],
        ["New information", "Action", "Complex dialogue"],
    ),
    "landing": (
        ["Let the previous moment echo", "Characters absorb what just happened", "Simple grounded details"],
        ["Moving on too quickly", "Explaining", "New plot"],
    ),
    "sensory": (
        ["Anchor the reader in the physical world", "Small specific observations"],
        ["Abstract thoughts", "Backstory", "Heavy dialogue"],
    ),
    "intimacy": (
        ["Quiet closeness between characters", "Unspoken understanding", "Small gestures"],
        ["Big declarations", "Conflict", "Exposition"],
    ),
    "contemplation": (
        ["A character reflects on meaning", "Tie the moment to larger themes", "Leave room for the reader"],
        ["Action", "Rushing forward", "Too much dialogue"],
    ),
    "ambient": (
        ["The world carries on around the characters", "Background details that feel alive"],
        ["Plot-heavy content", "Character deep dives"],
    ),
    "transitional": (
        ["Move smoothly between scenes", "Let time pass naturally", "Set the new mood"],
        ["Jarring jumps", "Too much happening in transit"],
    ),
    "solitude": (
        ["A character alone with their thoughts", "Interior moment without narration dumps"],
        ["Other characters", "Dialogue", "External action"],
    ),
}
DEFAULT_GUIDANCE = (["A simple pause", "Sensory grounding", "Let the reader breathe"], [])

DURATION_NOTES = {
    "beat": "Very brief, a sentence or two",
    "lingering": "Take your time and let it settle",
}

CHANNEL_NOTES = {
    "visual": "What catches the eye, light and shadow",
    "auditory": "Sounds present or notably absent",
    "tactile": "Textures, temperature, physical sensation",
    "olfactory": "Scents that pull at memory or mood",
    "kinesthetic": "Body awareness, posture, breathing",
}

SENSORY_PROMPTS: dict[str, list[str]] = {
    "visual": ["The way light falls", "Colors that stand out", "Movement or stillness", "Shadows and shapes"],
    "auditory": ["Background sounds", "Silence that speaks", "Rhythm or pattern", "Voice qualities"],
    "tactile": ["Temperature on skin", "Textures touched", "Weight and pressure", "Ground beneath feet"],
    "olfactory": ["Dominant scent", "Triggered memories", "Layers of smell", "An expected scent missing"],
    "kinesthetic": ["Posture and stance", "Tension in muscles", "Breathing pattern", "Heartbeat"],
}

MAX_HISTORY = 30
TRIM_HISTORY = 25
MAX_INTENSITIES = 10


class BreathConfig(BaseModel):
    min_exchanges: int = 4
    max_exchanges: int = 12
    recovery_threshold: int = 70
    channels: list[str] = Field(default_factory=lambda: list(SENSORY_CHANNELS))


class BreathGuidance(BaseModel):
    type: str
    duration: str
    channel: str
    suggestions: list[str] = Field(default_factory=list)
    avoid: list[str] = Field(default_factory=list)


class BreathMoment(BaseModel):
    type: str
    duration: BreathDuration = "medium"
    channel: str = "visual"
    focus: str | None = None
    characters: list[str] = Field(default_factory=list)
    turn: int = 0
    guidance: BreathGuidance | None = None


class PendingBreath(BaseModel):
    moment: BreathMoment
    after: int = 0
    waited: int = 0


def breath_guidance(breath_type: str, duration: str, channel: str) -> BreathGuidance:
    suggestions, avoid = BREATH_GUIDANCE.get(breath_type, DEFAULT_GUIDANCE)
    guidance = BreathGuidance(
        type=breath_type,
        duration=duration,
        channel=channel,
        suggestions=list(suggestions),
        avoid=list(avoid),
    )
    if breath_type == "sensory":
        guidance.suggestions.insert(0, f"Focus on {channel} details")
    if duration in DURATION_NOTES:
        guidance.suggestions.append(DURATION_NOTES[duration])
    if channel in CHANNEL_NOTES:
        guidance.suggestions.append(CHANNEL_NOTES[channel])
    return guidance


def sensory_prompts(channel: str, after_action: bool = False, emotional: bool = False) -> list[str]:
    prompts = list(SENSORY_PROMPTS.get(channel, SENSORY_PROMPTS["visual"]))
    if after_action:
        prompts[:0] = ["Physical aftermath", "Catching breath"]
    if emotional:
        prompts.insert(0, "Physical manifestation of feeling")
    return prompts


class BreathScheduler(BaseModel):
    config: BreathConfig = Field(default_factory=BreathConfig)
    exchanges_since_breath: int = 0
    breaths_this_scene: int = 0
    recent_intensity: list[int] = Field(default_factory=list)
    peak_intensity: int = 0
    history: list[BreathMoment] = Field(default_factory=list)
    pending: list[PendingBreath] = Field(default_factory=list)
    in_breath: bool = False
    current_type: str | None = None
    by_type: dict[str, int] = Field(default_factory=dict)

    def configure(self, **fields: Any) -> None:
        self.config = self.config.model_copy(update=fields)

    def record_intensity(self, intensity: int) -> None:
        """Log one exchange at the given intensity."""
        level = max(0, min(100, int(intensity)))
        self.recent_intensity.append(level)
        if len(self.recent_intensity) > MAX_INTENSITIES:
            self.recent_intensity = self.recent_intensity[-MAX_INTENSITIES:]
        self.peak_intensity = max(self.peak_intensity, level)
        self.exchanges_since_breath += 1

    def increment_exchanges(self) -> None:
        self.exchanges_since_breath += 1

    def needs_breath(self, context: dict[str, Any] | None = None) -> dict[str, Any]:
        context = context or {}
        cfg = self.config
        result: dict[str, Any] = {
            "needed": False,
            "urgency": "none",
            "reasons": [],
            "suggested_type": None,
            "suggested_duration": "medium",
        }

        def flag(reason: str, breath_type: str, urgency: str, duration: str | None = None) -> None:
            result["needed"] = True
            result["reasons"].append(reason)
            result["suggested_type"] = breath_type
            if URGENCY_RANK[urgency] > URGENCY_RANK[result["urgency"]]:
                result["urgency"] = urgency
            if duration:
                result["suggested_duration"] = duration

        if self.exchanges_since_breath >= cfg.max_exchanges:
            flag("max_exchanges_reached", "rhythm_break", "high")
        if self.peak_intensity >= cfg.recovery_threshold and self.exchanges_since_breath >= 2:
            flag("recovery_needed", "recovery", "medium", "long")
        if context.get("just_had_revelation") or context.get("emotional_peak"):
            flag("landing_needed", "landing", "high", "medium")
        if context.get("scene_ending") or context.get("location_change"):
            flag("scene_transition", "transitional", "medium")
        if (
            context.get("characters_alone")
            and context.get("tension_low")
            and not context.get("action_needed")
            and self.exchanges_since_breath >= cfg.min_exchanges
        ):
            flag("intimacy_opportunity", "intimacy", "low")

        if self.exchanges_since_breath < cfg.min_exchanges and "landing_needed" not in result["reasons"]:
            result["needed"] = False
            result["urgency"] = "none"
        return result

    def select_channel(self, rng: random.Random) -> str:
        recent = {m.channel for m in self.history[-3:]}
        available = [c for c in self.config.channels if c not in recent]
        return rng.choice(available or self.config.channels)

    def create_moment(
        self,
        breath_type: str,
        rng: random.Random,
        duration: BreathDuration = "medium",
        channel: str | None = None,
        focus: str | None = None,
        characters: list[str] | None = None,
        turn: int = 0,
    ) -> BreathMoment:
        channel = channel or self.select_channel(rng)
        return BreathMoment(
            type=breath_type,
            duration=duration,
            channel=channel,
            focus=focus,
            characters=characters or [],
            turn=turn,
            guidance=breath_guidance(breath_type, duration, channel),
        )

    def record_moment(self, moment: BreathMoment, turn: int = 0) -> BreathMoment:
        moment.turn = turn
        self.history.append(moment)
        if len(self.history) > MAX_HISTORY:
            self.history = self.history[-TRIM_HISTORY:]
        self.exchanges_since_breath = 0
        self.peak_intensity = 0
        self.breaths_this_scene += 1
        self.by_type[moment.type] = self.by_type.get(moment.type, 0) + 1
        return moment

    def start_breath(self, breath_type: str) -> None:
        self.in_breath = True
        self.current_type = breath_type

    def end_breath(self) -> None:
        self.in_breath = False
        self.current_type = None

    def queue_breath(self, moment: BreathMoment, after: int = 0) -> None:
        self.pending.append(PendingBreath(moment=moment, after=after))

    def pop_pending(self) -> list[BreathMoment]:
        """Count one exchange against every queued breath and return the due ones."""
        ready, waiting = [], []
        for entry in self.pending:
            entry.waited += 1
            if entry.waited >= entry.after:
                ready.append(entry.moment)
            else:
                waiting.append(entry)
        self.pending = waiting
        return ready

    def reset_for_new_scene(self) -> None:
        self.breaths_this_scene = 0
        self.peak_intensity = 0
        self.recent_intensity = []

    def context(self) -> dict[str, Any]:
        return {
            "exchanges_since_breath": self.exchanges_since_breath,
            "breaths_this_scene": self.breaths_this_scene,
            "in_breath": self.in_breath,
            "current_type": self.current_type,
            "recent_types": [m.type for m in self.history[-3:]],
            "recent_channels": [m.channel for m in self.history[-3:]],
            "peak_intensity": self.peak_intensity,
            "pending": len(self.pending),
        }

    def serialize(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def deserialize(cls, data: Any) -> BreathScheduler | None:
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None
