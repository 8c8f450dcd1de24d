"""Emergent moments are story beats that only exist when signals line up.

Conditions are a closed vocabulary recomputed fresh every turn from the other
trackers; they are never persisted. A recipe matches when all of its required
conditions are active and the number of required + optional conditions met
reaches its minimum. Matching is a pure function over a frozenset.

Candidate priority = 10 x conditions met + tier bonus + 2 x cooldown, so
rarer recipes rank higher when they are available.

Cooldowns are turn-based:
  per recipe   blocked while turn < triggered_turn + recipe.cooldown
  global       no candidates at all while turn < last trigger + global_cooldown
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class Condition(str, Enum):
    HIGH_TENSION = "high_tension"
    LOW_TENSION = "low_tension"
    TENSION_SHIFT = "tension_shift"
    EMOTIONAL_PEAK = "emotional_peak"
    VULNERABILITY_PRESENT = "vulnerability_present"
    CATHARSIS_NEAR = "catharsis_near"
    CHARACTERS_ALONE = "characters_alone"
    NEW_CHARACTER_PRESENT = "new_character_present"
    ANTAGONIST_PRESENT = "antagonist_present"
    BOND_THRESHOLD = "bond_threshold"
    CALLBACK_AVAILABLE = "callback_available"
    THREAD_RIPE = "thread_ripe"
    PATTERN_DETECTED = "pattern_detected"
    CHEKHOV_READY = "chekhov_ready"
    READER_ENGAGED = "reader_engaged"
    READER_SURPRISED = "reader_surprised"
    READER_CHOICE_UNUSUAL = "reader_choice_unusual"


class MomentType(str, Enum):
    UNEXPECTED_UNDERSTANDING = "unexpected_understanding"
    ROLE_REVERSAL = "role_reversal"
    SHARED_VULNERABILITY = "shared_vulnerability"
    SERENDIPITOUS_DISCOVERY = "serendipitous_discovery"
    CALLBACK_CONVERGENCE = "callback_convergence"
    IRONIC_TWIST = "ironic_twist"
    OUT_OF_CHARACTER_GROWTH = "out_of_character_growth"
    HIDDEN_DEPTH_REVEAL = "hidden_depth_reveal"
    MIRROR_MOMENT = "mirror_moment"
    PERFECT_SILENCE = "perfect_silence"
    TIMING_MAGIC = "timing_magic"
    ACCIDENTAL_INTIMACY = "accidental_intimacy"
    SURPRISING_ALLIANCE = "surprising_alliance"
    WEAKNESS_BECOMES_STRENGTH = "weakness_becomes_strength"


TIER_BONUS: dict[str, int] = {
    "subtle": 5,
    "notable": 15,
    "significant": 25,
    "transcendent": 40,
}
DEFAULT_TIER_BONUS = 10

C = Condition


class Recipe(BaseModel):
    model_config = ConfigDict(frozen=True)

    moment_type: str
    required: frozenset[Condition]
    optional: frozenset[Condition] = frozenset()
    min_conditions: int = 2
    tier: str = "notable"
    cooldown: int = 5
    guidance: str = ""


RECIPES: dict[str, Recipe] = {
    r.moment_type: r
    for r in (
        Recipe(moment_type=MomentType.UNEXPECTED_UNDERSTANDING.value,
               required=frozenset({C.VULNERABILITY_PRESENT, C.CHARACTERS_ALONE}),
               optional=frozenset({C.LOW_TENSION, C.BOND_THRESHOLD}),
               min_conditions=2, tier="significant", cooldown=8,
               guidance="A character understands something about the reader nobody said aloud"),
        Recipe(moment_type=MomentType.ROLE_REVERSAL.value,
               required=frozenset({C.TENSION_SHIFT}),
               optional=frozenset({C.HIGH_TENSION, C.PATTERN_DETECTED}),
               min_conditions=2, tier="notable", cooldown=6,
               guidance="The protector needs protecting, the student teaches"),
        Recipe(moment_type=MomentType.SHARED_VULNERABILITY.value,
               required=frozenset({C.VULNERABILITY_PRESENT}),
               optional=frozenset({C.EMOTIONAL_PEAK, C.CATHARSIS_NEAR, C.LOW_TENSION}),
               min_conditions=3, tier="significant", cooldown=10,
               guidance="A character answers openness with openness of their own"),
        Recipe(moment_type=MomentType.SERENDIPITOUS_DISCOVERY.value,
               required=frozenset({C.READER_CHOICE_UNUSUAL}),
               optional=frozenset({C.THREAD_RIPE, C.CHEKHOV_READY}),
               min_conditions=2, tier="notable", cooldown=5,
               guidance="The reader's odd choice uncovers something that was always there"),
        Recipe(moment_type=MomentType.CALLBACK_CONVERGENCE.value,
               required=frozenset({C.CALLBACK_AVAILABLE}),
               optional=frozenset({C.EMOTIONAL_PEAK, C.PATTERN_DETECTED, C.BOND_THRESHOLD}),
               min_conditions=2, tier="significant", cooldown=8,
               guidance="An old moment returns and means something new"),
        Recipe(moment_type=MomentType.IRONIC_TWIST.value,
               required=frozenset({C.PATTERN_DETECTED, C.THREAD_RIPE}),
               optional=frozenset({C.HIGH_TENSION, C.READER_SURPRISED}),
               min_conditions=2, tier="significant", cooldown=12,
               guidance="The expected outcome turns over on itself"),
        Recipe(moment_type=MomentType.OUT_OF_CHARACTER_GROWTH.value,
               required=frozenset({C.HIGH_TENSION}),
               optional=frozenset({C.VULNERABILITY_PRESENT, C.CATHARSIS_NEAR}),
               min_conditions=2, tier="notable", cooldown=7,
               guidance="Pressure pushes a character past their usual limits"),
        Recipe(moment_type=MomentType.HIDDEN_DEPTH_REVEAL.value,
               required=frozenset({C.CHARACTERS_ALONE}),
               optional=frozenset({C.VULNERABILITY_PRESENT, C.LOW_TENSION, C.READER_ENGAGED}),
               min_conditions=2, tier="notable", cooldown=6,
               guidance="A quiet aside shows a side of a character not seen before"),
        Recipe(moment_type=MomentType.MIRROR_MOMENT.value,
               required=frozenset({C.PATTERN_DETECTED}),
               optional=frozenset({C.EMOTIONAL_PEAK, C.CALLBACK_AVAILABLE}),
               min_conditions=2, tier="subtle", cooldown=5,
               guidance="A scene echoes an earlier one with the roles shifted"),
        Recipe(moment_type=MomentType.PERFECT_SILENCE.value,
               required=frozenset({C.EMOTIONAL_PEAK}),
               optional=frozenset({C.LOW_TENSION, C.VULNERABILITY_PRESENT}),
               min_conditions=2, tier="notable", cooldown=8,
               guidance="Nobody speaks, and that says everything"),
        Recipe(moment_type=MomentType.TIMING_MAGIC.value,
               required=frozenset({C.TENSION_SHIFT, C.CALLBACK_AVAILABLE}),
               optional=frozenset({C.NEW_CHARACTER_PRESENT, C.READER_SURPRISED}),
               min_conditions=2, tier="notable", cooldown=6,
               guidance="Something arrives at exactly the right moment"),
        Recipe(moment_type=MomentType.ACCIDENTAL_INTIMACY.value,
               required=frozenset({C.LOW_TENSION, C.CHARACTERS_ALONE}),
               optional=frozenset({C.VULNERABILITY_PRESENT, C.BOND_THRESHOLD}),
               min_conditions=3, tier="notable", cooldown=8,
               guidance="An unplanned closeness neither side quite intended"),
        Recipe(moment_type=MomentType.SURPRISING_ALLIANCE.value,
               required=frozenset({C.HIGH_TENSION}),
               optional=frozenset({C.ANTAGONIST_PRESENT, C.THREAD_RIPE}),
               min_conditions=2, tier="significant", cooldown=10,
               guidance="An unlikely ally steps forward"),
        Recipe(moment_type=MomentType.WEAKNESS_BECOMES_STRENGTH.value,
               required=frozenset({C.HIGH_TENSION, C.PATTERN_DETECTED}),
               optional=frozenset({C.READER_CHOICE_UNUSUAL, C.CATHARSIS_NEAR}),
               min_conditions=2, tier="significant", cooldown=10,
               guidance="The flaw everyone noticed turns out to be the answer"),
    )
}


def match_recipe(recipe: Recipe, active: frozenset[Condition]) -> int | None:
    """Return the number of conditions met, or None if the recipe does not match."""
    if not recipe.required <= active:
        return None
    met = len(recipe.required) + len(recipe.optional & active)
    if met < recipe.min_conditions:
        return None
    return met


def recipe_priority(recipe: Recipe, met: int) -> int:
    return met * 10 + TIER_BONUS.get(recipe.tier, DEFAULT_TIER_BONUS) + recipe.cooldown * 2


def parse_conditions(names: Iterable[str | Condition]) -> frozenset[Condition]:
    """Turn loose names into Conditions; unknown names are dropped."""
    result = set()
    for name in names:
        try:
            result.add(Condition(name))
        except ValueError:
            logger.debug("Ignoring unknown condition %r", name)
    return frozenset(result)


def conditions_from_signals(
    *,
    tension: int | None = None,
    previous_tension: int | None = None,
    emotional_intensity: int | None = None,
    catharsis_debt: int | None = None,
    present_characters: int | None = None,
    reader_engagement: int | None = None,
    vulnerability_present: bool = False,
    new_character_present: bool = False,
    antagonist_present: bool = False,
    bond_threshold: bool = False,
    callback_available: bool = False,
    thread_ripe: bool = False,
    pattern_detected: bool = False,
    chekhov_ready: bool = False,
    reader_surprised: bool = False,
    reader_choice_unusual: bool = False,
) -> frozenset[Condition]:
    active: set[Condition] = set()
    if tension is not None:
        if tension >= 70:
            active.add(C.HIGH_TENSION)
        elif tension <= 30:
            active.add(C.LOW_TENSION)
        if previous_tension is not None and abs(tension - previous_tension) >= 15:
            active.add(C.TENSION_SHIFT)
    if emotional_intensity is not None and emotional_intensity >= 4:
        active.add(C.EMOTIONAL_PEAK)
    if catharsis_debt is not None and catharsis_debt >= 50:
        active.add(C.CATHARSIS_NEAR)
    if present_characters == 1:
        active.add(C.CHARACTERS_ALONE)
    if reader_engagement is not None and reader_engagement >= 70:
        active.add(C.READER_ENGAGED)

    flags = {
        C.VULNERABILITY_PRESENT: vulnerability_present,
        C.NEW_CHARACTER_PRESENT: new_character_present,
        C.ANTAGONIST_PRESENT: antagonist_present,
        C.BOND_THRESHOLD: bond_threshold,
        C.CALLBACK_AVAILABLE: callback_available,
        C.THREAD_RIPE: thread_ripe,
        C.PATTERN_DETECTED: pattern_detected,
        C.CHEKHOV_READY: chekhov_ready,
        C.READER_SURPRISED: reader_surprised,
        C.READER_CHOICE_UNUSUAL: reader_choice_unusual,
    }
    active.update(cond for cond, on in flags.items() if on)
    return frozenset(active)


class MomentCandidate(BaseModel):
    moment_type: str
    priority: int
    conditions_met: int
    tier: str
    guidance: str


class EmergentMatcher(BaseModel):
    active_conditions: frozenset[Condition] = Field(default=frozenset(), exclude=True)
    cooldown_until: dict[str, int] = Field(default_factory=dict)
    global_cooldown_until: int = 0
    global_cooldown: int = 3
    trigger_priority: int = 60
    custom_recipes: list[Recipe] = Field(default_factory=list)
    history: list[dict] = Field(default_factory=list)

    def recipes(self) -> dict[str, Recipe]:
        merged = dict(RECIPES)
        for recipe in self.custom_recipes:
            merged[recipe.moment_type] = recipe
        return merged

    def set_conditions(self, active: Iterable[str | Condition]) -> frozenset[Condition]:
        self.active_conditions = parse_conditions(active)
        return self.active_conditions

    def add_recipe(self, recipe: Recipe) -> None:
        self.custom_recipes = [r for r in self.custom_recipes if r.moment_type != recipe.moment_type]
        self.custom_recipes.append(recipe)

    def on_cooldown(self, moment_type: str, turn: int) -> bool:
        return turn < self.cooldown_until.get(moment_type, 0)

    def in_global_cooldown(self, turn: int) -> bool:
        return turn < self.global_cooldown_until

    def check_for_moments(self, turn: int) -> list[MomentCandidate]:
        if self.in_global_cooldown(turn):
            return []
        candidates = []
        for moment_type, recipe in self.recipes().items():
            if self.on_cooldown(moment_type, turn):
                continue
            met = match_recipe(recipe, self.active_conditions)
            if met is None:
                continue
            candidates.append(MomentCandidate(
                moment_type=moment_type,
                priority=recipe_priority(recipe, met),
                conditions_met=met,
                tier=recipe.tier,
                guidance=recipe.guidance,
            ))
        candidates.sort(key=lambda c: (-c.priority, c.moment_type))
        return candidates

    def is_moment_possible(self, moment_type: str, turn: int) -> bool:
        recipe = self.recipes().get(moment_type)
        if recipe is None or self.on_cooldown(moment_type, turn) or self.in_global_cooldown(turn):
            return False
        return match_recipe(recipe, self.active_conditions) is not None

    def best_opportunity(self, turn: int) -> dict[str, Any] | None:
        candidates = self.check_for_moments(turn)
        if not candidates:
            return None
        best = candidates[0]
        return {
            "candidate": best,
            "should_trigger": best.priority >= self.trigger_priority,
        }

    def trigger(self, moment_type: str, turn: int) -> dict[str, Any] | None:
        recipe = self.recipes().get(moment_type)
        if recipe is None:
            logger.debug("trigger: unknown moment type %r", moment_type)
            return None
        if self.on_cooldown(moment_type, turn) or self.in_global_cooldown(turn):
            return None
        self.cooldown_until[moment_type] = turn + recipe.cooldown
        self.global_cooldown_until = turn + self.global_cooldown
        record = {
            "moment_type": moment_type,
            "turn": turn,
            "conditions": sorted(c.value for c in self.active_conditions),
        }
        self.history.append(record)
        if len(self.history) > 30:
            self.history = self.history[-25:]
        logger.info("emergent moment triggered type=%s turn=%d", moment_type, turn)
        return record

    def reset_cooldown(self, moment_type: str) -> None:
        self.cooldown_until.pop(moment_type, None)

    def summary(self, turn: int) -> dict[str, Any]:
        candidates = self.check_for_moments(turn)
        return {
            "active_conditions": sorted(c.value for c in self.active_conditions),
            "candidates": [c.model_dump() for c in candidates[:3]],
            "recent": [h["moment_type"] for h in self.history[-3:]],
        }

    def serialize(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def deserialize(cls, data: Any) -> EmergentMatcher | None:
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None
