"""Tests for pacing_engine.emergent: recipe matching and cooldowns."""

from pacing_engine.emergent import (
    RECIPES,
    Condition,
    EmergentMatcher,
    MomentType,
    Recipe,
    conditions_from_signals,
    match_recipe,
    parse_conditions,
    recipe_priority,
)

QUIET_ALONE = ["vulnerability_present", "characters_alone", "low_tension"]


# ── Pure matching ───────────────────────────────────────


def test_match_recipe_requires_all_required():
    recipe = RECIPES[MomentType.IRONIC_TWIST.value]
    assert match_recipe(recipe, frozenset({Condition.PATTERN_DETECTED})) is None
    active = frozenset({Condition.PATTERN_DETECTED, Condition.THREAD_RIPE, Condition.HIGH_TENSION})
    assert match_recipe(recipe, active) == 3


def test_match_recipe_respects_minimum():
    recipe = RECIPES[MomentType.SHARED_VULNERABILITY.value]
    active = frozenset({Condition.VULNERABILITY_PRESENT, Condition.LOW_TENSION})
    assert match_recipe(recipe, active) is None
    assert match_recipe(recipe, active | {Condition.EMOTIONAL_PEAK}) == 3


def test_recipe_priority():
    recipe = Recipe(moment_type="x", required=frozenset(), tier="transcendent", cooldown=4)
    assert recipe_priority(recipe, 3) == 30 + 40 + 8
    odd = Recipe(moment_type="y", required=frozenset(), tier="mythic", cooldown=1)
    assert recipe_priority(odd, 1) == 10 + 10 + 2


def test_parse_conditions_drops_unknown():
    parsed = parse_conditions(["high_tension", "moon_is_full", Condition.THREAD_RIPE])
    assert parsed == frozenset({Condition.HIGH_TENSION, Condition.THREAD_RIPE})


def test_conditions_from_signals():
    active = conditions_from_signals(
        tension=75, previous_tension=55, emotional_intensity=4, catharsis_debt=50,
        present_characters=1, reader_engagement=80, callback_available=True,
    )
    assert active == frozenset({
        Condition.HIGH_TENSION,
        Condition.TENSION_SHIFT,
        Condition.EMOTIONAL_PEAK,
        Condition.CATHARSIS_NEAR,
        Condition.CHARACTERS_ALONE,
        Condition.READER_ENGAGED,
        Condition.CALLBACK_AVAILABLE,
    })


def test_conditions_from_signals_low_tension():
    active = conditions_from_signals(tension=20, present_characters=3)
    assert active == frozenset({Condition.LOW_TENSION})


# ── Matcher ─────────────────────────────────────────────


def test_candidates_ranked_by_priority():
    matcher = EmergentMatcher()
    matcher.set_conditions(QUIET_ALONE)
    candidates = matcher.check_for_moments(turn=1)
    assert [c.moment_type for c in candidates] == [
        "unexpected_understanding",
        "accidental_intimacy",
        "hidden_depth_reveal",
    ]
    assert candidates[0].priority == 71


def test_best_opportunity_should_trigger():
    matcher = EmergentMatcher()
    matcher.set_conditions(QUIET_ALONE)
    best = matcher.best_opportunity(turn=1)
    assert best["candidate"].moment_type == "unexpected_understanding"
    assert best["should_trigger"] is True
    matcher.set_conditions([])
    assert matcher.best_opportunity(turn=1) is None


def test_trigger_enforces_recipe_and_global_cooldown():
    matcher = EmergentMatcher()
    matcher.set_conditions(QUIET_ALONE)
    record = matcher.trigger("unexpected_understanding", turn=10)
    assert record["conditions"] == ["characters_alone", "low_tension", "vulnerability_present"]

    assert matcher.check_for_moments(12) == []
    assert matcher.trigger("hidden_depth_reveal", 12) is None

    at_13 = [c.moment_type for c in matcher.check_for_moments(13)]
    assert "unexpected_understanding" not in at_13
    assert "accidental_intimacy" in at_13
    assert not matcher.is_moment_possible("unexpected_understanding", 17)
    assert matcher.is_moment_possible("unexpected_understanding", 18)


def test_reset_cooldown():
    matcher = EmergentMatcher(global_cooldown=0)
    matcher.set_conditions(QUIET_ALONE)
    matcher.trigger("unexpected_understanding", turn=1)
    assert not matcher.is_moment_possible("unexpected_understanding", 2)
    matcher.reset_cooldown("unexpected_understanding")
    assert matcher.is_moment_possible("unexpected_understanding", 2)


def test_trigger_unknown_type():
    assert EmergentMatcher().trigger("spontaneous_musical_number", 1) is None


def test_custom_recipe_overrides():
    matcher = EmergentMatcher()
    matcher.add_recipe(Recipe(
        moment_type="perfect_silence",
        required=frozenset({Condition.LOW_TENSION}),
        min_conditions=1,
        tier="subtle",
        cooldown=2,
    ))
    matcher.set_conditions(["low_tension"])
    assert [c.moment_type for c in matcher.check_for_moments(1)] == ["perfect_silence"]


def test_conditions_not_persisted():
    matcher = EmergentMatcher()
    matcher.set_conditions(QUIET_ALONE)
    matcher.trigger("hidden_depth_reveal", 4)
    data = matcher.serialize()
    assert "active_conditions" not in data
    restored = EmergentMatcher.deserialize(data)
    assert restored.active_conditions == frozenset()
    assert restored.cooldown_until == {"hidden_depth_reveal": 10}
    assert restored.global_cooldown_until == 7


def test_summary():
    matcher = EmergentMatcher()
    matcher.set_conditions(QUIET_ALONE)
    summary = matcher.summary(1)
    assert summary["active_conditions"] == sorted(QUIET_ALONE)
    assert len(summary["candidates"]) == 3
    assert summary["recent"] == []
