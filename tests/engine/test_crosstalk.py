"""Tests for pacing_engine.crosstalk: when characters talk among themselves."""

import random

import pytest

from pacing_engine.crosstalk import CrossTalkScheduler, pair_key


@pytest.fixture
def scheduler() -> CrossTalkScheduler:
    sched = CrossTalkScheduler()
    for _ in range(4):
        sched.increment_exchanges()
    return sched


def test_pair_key_is_order_free():
    assert pair_key("tobin", "mara") == pair_key("mara", "tobin") == "mara:tobin"


# ── should_cross_talk ───────────────────────────────────


def test_too_soon():
    sched = CrossTalkScheduler()
    result = sched.should_cross_talk({"natural_pause": True, "characters": ["a", "b"]}, random.Random(1))
    assert result["should"] is False
    assert result["reason"] == "too_soon"


def test_no_triggers(scheduler):
    result = scheduler.should_cross_talk({"characters": ["a", "b"]}, random.Random(1))
    assert result["reason"] == "no_triggers"


def test_needs_two_characters(scheduler):
    result = scheduler.should_cross_talk({"natural_pause": True, "characters": ["a"]}, random.Random(1))
    assert result["should"] is False
    assert result["triggers"] == ["natural_pause"]
    assert result["reason"] == "need_multiple_characters"


def test_reader_silent_needs_two_silent_exchanges(scheduler):
    context = {"reader_silent": True, "silent_exchanges": 1, "characters": ["a", "b"]}
    assert scheduler.should_cross_talk(context, random.Random(1))["should"] is False
    context["silent_exchanges"] = 2
    result = scheduler.should_cross_talk(context, random.Random(1))
    assert result["should"] is True
    assert result["suggested_type"] in ("planning", "gossip")


def test_new_information_suggests_debate(scheduler):
    context = {"new_information": True, "natural_pause": True, "characters": ["a", "b"]}
    result = scheduler.should_cross_talk(context, random.Random(1))
    assert result["suggested_type"] == "debate"
    assert result["triggers"] == ["natural_pause", "new_information"]


def test_suggested_type_deterministic_for_seed(scheduler):
    context = {"tension_just_dropped": True, "characters": ["a", "b"]}
    first = scheduler.should_cross_talk(context, random.Random("3:9"))["suggested_type"]
    second = scheduler.should_cross_talk(context, random.Random("3:9"))["suggested_type"]
    assert first == second
    assert first in ("banter", "comfort")


# ── Participants ────────────────────────────────────────


def test_select_participants_prefers_interesting_pair(scheduler):
    scheduler.set_relationship("mara", "lysander", dynamic="rivals", tension=70)
    chosen = scheduler.select_participants(["mara", "tobin", "lysander"])
    assert chosen["characters"] == ["mara", "lysander"]
    assert chosen["dynamic"] == "rivals"
    assert chosen["score"] == 90


def test_select_participants_prefers_novel_pair(scheduler):
    scheduler.record_cross_talk("tobin", "mara", "banter", turn=1)
    chosen = scheduler.select_participants(["mara", "tobin", "lysander"])
    assert chosen["characters"] == ["mara", "lysander"]


def test_select_participants_needs_two(scheduler):
    assert scheduler.select_participants(["mara"]) is None


def test_guidance_includes_dynamic_note(scheduler):
    scheduler.set_relationship("mara", "tobin", dynamic="mentor_student", tension=20)
    scheduler.add_topic("mara", "tobin", "the lens")
    participants = scheduler.select_participants(["mara", "tobin"])
    guidance = scheduler.guidance(participants, "planning")
    assert guidance["speakers"] == ["mara", "tobin"]
    assert guidance["suggestions"][-1].startswith("Teaching moments")
    assert guidance["relationship"]["topics"] == ["the lens"]


def test_guidance_default_for_unlisted_type(scheduler):
    guidance = scheduler.guidance({"characters": ["a", "b"]}, "lore")
    assert guidance["suggestions"][0] == "Let the characters have their own moment"
    assert guidance["relationship"] is None


# ── Recording and relationships ─────────────────────────


def test_record_resets_spacing(scheduler):
    scheduler.set_relationship("mara", "tobin")
    scheduler.record_cross_talk("mara", "tobin", "banter", "About the fog", turn=6)
    assert scheduler.exchanges_since == 0
    assert scheduler.get_relationship("tobin", "mara").history == [{"type": "banter", "turn": 6}]
    assert scheduler.by_type == {"banter": 1}


def test_share_secret_and_tension(scheduler):
    scheduler.share_secret("mara", "tobin", "The painted room")
    rel = scheduler.get_relationship("mara", "tobin")
    assert rel.affection == 55
    assert scheduler.update_tension("mara", "tobin", 90) == 100
    assert scheduler.update_tension("mara", "tobin", -200) == 0


def test_topics_are_deduplicated(scheduler):
    scheduler.add_topic("a", "b", "fog")
    scheduler.add_topic("b", "a", "fog")
    assert scheduler.get_relationship("a", "b").topics == ["fog"]


def test_context_lists_known_dynamics(scheduler):
    scheduler.set_relationship("mara", "tobin", dynamic="allies")
    ctx = scheduler.context(["mara", "tobin", "lysander"])
    assert ctx["dynamics"] == [{"pair": ["mara", "tobin"], "dynamic": "allies", "tension": 30, "affection": 50}]
    assert ctx["exchanges_since"] == 4
