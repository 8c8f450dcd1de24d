"""Tests for pacing_engine.interpret: keyword interpretation and tag parsing."""

import pytest

from pacing_engine.interpret import (
    detect_catalyst,
    detect_tone,
    interpret_input,
    parse_interpretation_tag,
    resonance_tone_for,
    tension_event_for,
)
from pacing_engine.models import Character, Interpretation

CAST = [
    Character(id="mara", name="Mara"),
    Character(id="tobin", name="Tobin"),
]


# ── interpret_input ─────────────────────────────────────


@pytest.mark.parametrize("text", ["", "...", "…", "*silence*", "   "])
def test_silence(text):
    result = interpret_input(text)
    assert result.reader_silent is True
    assert result.input_type == "observation"
    assert result.intensity == 1


def test_action():
    result = interpret_input("I walk to the window")
    assert result.input_type == "action"
    assert result.tone == "neutral"
    assert result.intensity == 2
    assert tension_event_for(result) == "exploration"


def test_dialogue_with_target():
    result = interpret_input('"Thank you, Mara."', CAST)
    assert result.input_type == "dialogue"
    assert result.tone == "warm"
    assert result.target_character == "mara"


def test_question():
    result = interpret_input("Why did you lie to me?", CAST)
    assert result.input_type == "question"
    assert result.tone == "curious"
    assert result.target_character is None


def test_observing():
    result = interpret_input("I watch them argue")
    assert result.input_type == "observation"
    assert result.reader_observing is True
    assert tension_event_for(result) == "steady"


def test_shouting_raises_intensity():
    result = interpret_input("I HATE THIS PLACE")
    assert result.tone == "angry"
    assert result.intensity == 4


def test_exit_intent():
    assert interpret_input("Goodbye for now").exit_intent is True
    assert interpret_input("Tell me about the tower").exit_intent is False


def test_detect_tone_first_match_wins():
    assert detect_tone("I'm so sorry, I hate this") == "angry"
    assert detect_tone("The sea is grey") == "neutral"


# ── Mappings ────────────────────────────────────────────


def test_tension_event_precedence():
    assert tension_event_for(Interpretation(tension_event="betrayal", revelation=True)) == "betrayal"
    assert tension_event_for(Interpretation(revelation=True, tone="warm")) == "revelation"
    assert tension_event_for(Interpretation(tone="defiant")) == "conflict_escalates"


def test_resonance_tone():
    assert resonance_tone_for(Interpretation(tone="fearful")) == "fear"
    assert resonance_tone_for(Interpretation(tone="fearful", emotional_tone="dread")) == "dread"


def test_detect_catalyst():
    assert detect_catalyst(Interpretation(input_type="action", tone="determined")) == (
        "courage", 5, "challenge",
    )
    assert detect_catalyst(Interpretation(tone="sad")) == ("vulnerability", 8, "reader_influence")
    assert detect_catalyst(Interpretation(tone="warm")) == ("trust", 5, "connection")
    assert detect_catalyst(Interpretation(tone="neutral")) is None


# ── Tag parsing ─────────────────────────────────────────


def test_parse_fenced_tag():
    raw = '```json\n{"input_type": "action", "tone": "angry", "intensity": 5, "revelation": true}\n```'
    tag = parse_interpretation_tag(raw)
    assert tag.tone == "angry"
    assert tag.intensity == 5
    assert tag.revelation is True


def test_parse_dict_tag():
    tag = parse_interpretation_tag({"tension_event": "victory"})
    assert tag.tension_event == "victory"
    assert tag.input_type == "dialogue"


@pytest.mark.parametrize("raw", [None, "not json", '{"intensity": 9}', '{"tone": "smug"}'])
def test_unusable_tags(raw):
    assert parse_interpretation_tag(raw) is None
