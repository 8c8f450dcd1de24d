"""Tests for pacing_engine.breath: when to pause and how."""

import random

import pytest

from pacing_engine.breath import (
    BreathMoment,
    BreathScheduler,
    breath_guidance,
    sensory_prompts,
)


@pytest.fixture
def scheduler() -> BreathScheduler:
    return BreathScheduler()


def _exchanges(scheduler: BreathScheduler, count: int, intensity: int = 40) -> None:
    for _ in range(count):
        scheduler.record_intensity(intensity)


# ── needs_breath ────────────────────────────────────────


def test_no_breath_when_fresh(scheduler):
    result = scheduler.needs_breath()
    assert result["needed"] is False
    assert result["urgency"] == "none"


def test_max_exchanges_forces_rhythm_break(scheduler):
    _exchanges(scheduler, 12)
    result = scheduler.needs_breath()
    assert result["needed"] is True
    assert result["urgency"] == "high"
    assert result["suggested_type"] == "rhythm_break"


def test_recovery_after_intense_exchanges(scheduler):
    _exchanges(scheduler, 4, intensity=80)
    result = scheduler.needs_breath()
    assert result["reasons"] == ["recovery_needed"]
    assert result["suggested_type"] == "recovery"
    assert result["suggested_duration"] == "long"
    assert result["urgency"] == "medium"


def test_min_spacing_cancels_everything_but_landing(scheduler):
    _exchanges(scheduler, 2, intensity=90)
    assert scheduler.needs_breath({"scene_ending": True})["needed"] is False
    landing = scheduler.needs_breath({"just_had_revelation": True})
    assert landing["needed"] is True
    assert landing["suggested_type"] == "landing"
    assert landing["urgency"] == "high"


def test_urgency_only_rises(scheduler):
    _exchanges(scheduler, 12)
    result = scheduler.needs_breath({
        "scene_ending": True,
        "characters_alone": True,
        "tension_low": True,
    })
    assert result["urgency"] == "high"
    assert result["suggested_type"] == "intimacy"
    assert result["reasons"] == ["max_exchanges_reached", "scene_transition", "intimacy_opportunity"]


def test_intimacy_blocked_when_action_needed(scheduler):
    _exchanges(scheduler, 5)
    context = {"characters_alone": True, "tension_low": True, "action_needed": True}
    assert scheduler.needs_breath(context)["needed"] is False


def test_configure_thresholds(scheduler):
    scheduler.configure(max_exchanges=5)
    _exchanges(scheduler, 5)
    assert scheduler.needs_breath()["suggested_type"] == "rhythm_break"


# ── Moments ─────────────────────────────────────────────


def test_channel_avoids_recent(scheduler):
    rng = random.Random("seed:1")
    for channel in ("visual", "auditory", "tactile"):
        scheduler.record_moment(BreathMoment(type="sensory", channel=channel))
    for _ in range(20):
        assert scheduler.select_channel(rng) in ("olfactory", "kinesthetic")


def test_channel_selection_deterministic(scheduler):
    first = scheduler.select_channel(random.Random("7:3"))
    second = scheduler.select_channel(random.Random("7:3"))
    assert first == second


def test_create_moment_attaches_guidance(scheduler):
    moment = scheduler.create_moment("sensory", random.Random(1), duration="beat", channel="olfactory")
    assert moment.guidance.suggestions[0] == "Focus on olfactory details"
    assert "Very brief, a sentence or two" in moment.guidance.suggestions
    assert moment.guidance.avoid == ["Abstract thoughts", "Backstory", "Heavy dialogue"]


def test_record_moment_resets_counters(scheduler):
    _exchanges(scheduler, 8, intensity=90)
    scheduler.record_moment(BreathMoment(type="recovery"), turn=9)
    assert scheduler.exchanges_since_breath == 0
    assert scheduler.peak_intensity == 0
    assert scheduler.by_type == {"recovery": 1}
    assert scheduler.history[-1].turn == 9


def test_pending_breaths(scheduler):
    scheduler.queue_breath(BreathMoment(type="landing"), after=0)
    scheduler.queue_breath(BreathMoment(type="ambient"), after=2)
    assert [m.type for m in scheduler.pop_pending()] == ["landing"]
    assert [m.type for m in scheduler.pop_pending()] == ["ambient"]
    assert scheduler.pop_pending() == []
    assert scheduler.pending == []


def test_guidance_defaults_for_unlisted_type():
    guidance = breath_guidance("chapter_end", "lingering", "auditory")
    assert guidance.suggestions[:3] == ["A simple pause", "Sensory grounding", "Let the reader breathe"]
    assert guidance.suggestions[-1] == "Sounds present or notably absent"


def test_sensory_prompts():
    prompts = sensory_prompts("tactile", after_action=True, emotional=True)
    assert prompts[:3] == ["Physical manifestation of feeling", "Physical aftermath", "Catching breath"]
    assert sensory_prompts("smell")[0] == "The way light falls"


def test_context_and_scene_reset(scheduler):
    _exchanges(scheduler, 3, intensity=60)
    scheduler.start_breath("ambient")
    ctx = scheduler.context()
    assert ctx["in_breath"] is True
    assert ctx["current_type"] == "ambient"
    assert ctx["peak_intensity"] == 60
    scheduler.end_breath()
    scheduler.reset_for_new_scene()
    assert scheduler.context()["peak_intensity"] == 0
    assert scheduler.exchanges_since_breath == 3
