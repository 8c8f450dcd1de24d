"""Tests for pacing_engine.resonance: catharsis debt and buildups."""

from pacing_engine.resonance import EmotionalResonance, emotional_distance, valence


# ── Catharsis debt ──────────────────────────────────────


def test_betrayal_builds_debt_and_catharsis_clears_it():
    er = EmotionalResonance()
    for turn in range(3):
        er.record_moment("betrayal", 5, turn=turn)
    assert er.catharsis_debt == 75
    er.record_moment("catharsis", 3, turn=4)
    assert er.catharsis_debt == 0


def test_debt_tones_use_default_weight():
    er = EmotionalResonance()
    er.record_moment("fear", 4)
    assert er.catharsis_debt == 8


def test_release_tones_pay_down_debt():
    er = EmotionalResonance(catharsis_debt=20)
    er.record_moment("relief", 4)
    assert er.catharsis_debt == 8


def test_debt_clamped():
    er = EmotionalResonance()
    for _ in range(6):
        er.record_moment("betrayal", 5)
    assert er.catharsis_debt == 100
    er.record_moment("joy", 5)
    er.record_moment("joy", 5)
    er.record_moment("triumph", 5)
    assert er.catharsis_debt == 55
    for _ in range(5):
        er.record_moment("joy", 5)
    assert er.catharsis_debt == 0


def test_other_tones_leave_debt_alone():
    er = EmotionalResonance(catharsis_debt=30)
    er.record_moment("wonder", 5)
    er.record_moment("nostalgia", 3)
    assert er.catharsis_debt == 30


def test_intensity_clamped_and_unknown_technique_dropped():
    er = EmotionalResonance()
    moment = er.record_moment("grief", 9, technique="jazz_hands")
    assert moment.intensity == 5
    assert moment.technique is None
    assert er.technique_usage == {}


def test_peaks_and_callbacks_tracked():
    er = EmotionalResonance()
    er.record_moment("hope", 2)
    er.record_moment("sadness", 3, technique="silence")
    er.record_moment("love", 4)
    assert [m.tone for m in er.peaks] == ["love"]
    assert [m.tone for m in er.callbacks] == ["sadness", "love"]
    assert er.technique_usage == {"silence": 1}


# ── Buildups ────────────────────────────────────────────


def test_payoff_only_after_all_phases():
    er = EmotionalResonance()
    buildup = er.start_buildup("triumph", phases=2, turn=1)
    assert er.trigger_payoff(buildup.id) is None
    er.advance_buildup(buildup.id)
    assert not er.is_payoff_ready(buildup.id)
    assert er.trigger_payoff(buildup.id) is None
    er.advance_buildup(buildup.id)
    assert er.is_payoff_ready(buildup.id)

    moment = er.trigger_payoff(buildup.id, turn=5)
    assert moment.tone == "triumph"
    assert moment.intensity == 5
    assert buildup.id not in er.buildups


def test_advance_missing_buildup():
    er = EmotionalResonance()
    assert er.advance_buildup("buildup-9") is None
    assert not er.is_payoff_ready("buildup-9")


def test_buildup_ids_increment():
    er = EmotionalResonance()
    assert er.start_buildup("joy").id == "buildup-1"
    assert er.start_buildup("grief").id == "buildup-2"


# ── Direction ───────────────────────────────────────────


def test_high_debt_suggests_release():
    er = EmotionalResonance(catharsis_debt=65)
    directions = [s["direction"] for s in er.suggest_direction()]
    assert directions[0] == "release"


def test_monotone_arc_suggests_variety():
    er = EmotionalResonance()
    for _ in range(3):
        er.record_moment("fear", 2)
    suggestions = er.suggest_direction()
    variety = [s for s in suggestions if s["direction"] == "variety"]
    assert variety
    assert variety[0]["suggested_tones"] == ["triumph", "relief"]


def test_intense_arc_suggests_breathing_room():
    er = EmotionalResonance()
    er.record_moment("fear", 5)
    er.record_moment("anger", 4)
    er.record_moment("grief", 5)
    directions = [s["direction"] for s in er.suggest_direction()]
    assert "breathe" in directions


def test_ready_buildup_suggests_payoff():
    er = EmotionalResonance()
    buildup = er.start_buildup("love", phases=1)
    er.advance_buildup(buildup.id)
    payoff = [s for s in er.suggest_direction() if s["direction"] == "payoff"]
    assert payoff[0]["buildup_id"] == buildup.id


def test_recommend_technique():
    er = EmotionalResonance()
    assert er.recommend_technique(5) == "contrast"
    er.record_moment("fear", 5)
    assert er.recommend_technique(2) == "silence"
    assert er.recommend_technique(5) == "callback"


def test_context_shape():
    er = EmotionalResonance(catharsis_debt=55)
    ctx = er.context()
    assert ctx["needs_release"] is True
    assert set(ctx) == {
        "tone", "intensity", "catharsis_debt", "needs_release", "recent_peaks", "suggestions",
    }
    assert len(ctx["suggestions"]) <= 2


def test_valence_and_distance():
    assert valence("joy") == "positive"
    assert valence("dread") == "negative"
    assert valence("whatever") == "neutral"
    assert emotional_distance("joy", "grief") == 1.0
    assert emotional_distance("joy", "hope") == 0.3
    assert emotional_distance("joy", "nostalgia") == 0.6


def test_reset_for_new_scene_eases_debt():
    er = EmotionalResonance(catharsis_debt=5)
    er.reset_for_new_scene()
    assert er.catharsis_debt == 0


def test_deserialize_garbage_returns_none():
    assert EmotionalResonance.deserialize({"catharsis_debt": "lots"}) is None


def test_cancel_buildup():
    er = EmotionalResonance()
    buildup = er.start_buildup("dread", turn=1)
    assert er.cancel_buildup(buildup.id)
    assert not er.cancel_buildup(buildup.id)
    assert er.buildups == {}
    assert er.arc == []
