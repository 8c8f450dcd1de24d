"""Tests for Handlebars prompt rendering: template compilation, context building,
custom helpers (take, last), narrator direction notes and error handling."""

import pytest

from backend.prompts import (
    DEFAULT_NARRATOR_PROMPT,
    PromptError,
    _direction,
    build_context,
    render_prompt,
)
from pacing_engine.models import Character
from pacing_engine.session import new_session, process_turn


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    result = render_prompt("Hello {{name}}!", {"name": "World"})
    assert result == "Hello World!"


def test_render_each_loop():
    tpl = "{{#each items}}{{this}} {{/each}}"
    result = render_prompt(tpl, {"items": ["a", "b", "c"]})
    assert result == "a b c "


def test_render_if_conditional():
    tpl = "{{#if show}}yes{{else}}no{{/if}}"
    assert render_prompt(tpl, {"show": True}) == "yes"
    assert render_prompt(tpl, {"show": False}) == "no"


def test_render_missing_variable():
    result = render_prompt("Hello {{name}}!", {})
    assert result == "Hello !"


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


# ── helpers: take & last ────────────────────────────────────


def test_take_first_n():
    tpl = "{{#take items 2}}{{this}} {{/take}}"
    result = render_prompt(tpl, {"items": ["a", "b", "c", "d"]})
    assert result == "a b "


def test_last_n():
    tpl = "{{#last items 2}}{{this}} {{/last}}"
    result = render_prompt(tpl, {"items": ["a", "b", "c", "d"]})
    assert result == "c d "


def test_last_with_objects():
    tpl = "{{#last msgs 1}}{{speaker}}: {{content}}{{/last}}"
    msgs = [{"speaker": "mara", "content": "Go away."}, {"speaker": "reader", "content": "No."}]
    assert render_prompt(tpl, {"msgs": msgs}) == "reader: No."


# ── _direction ───────────────────────────────────────────────


def test_direction_empty_payload():
    assert _direction("character_speaks", {}) == []


def test_direction_breath():
    payload = {
        "breath": {
            "type": "environmental",
            "duration": "brief",
            "channel": "sound",
            "guidance": {"suggestions": ["Let the wind carry the silence"]},
        }
    }
    notes = _direction("breath_moment", payload)
    assert notes[0] == "Breath: environmental, brief, sound focus"
    assert "Let the wind carry the silence" in notes


def test_direction_cross_talk():
    payload = {"guidance": {"speakers": ["Mara", "Tobin"], "type": "argument", "suggestions": []}}
    notes = _direction("cross_talk", payload)
    assert notes == ["Let Mara and Tobin talk between themselves (argument)"]


def test_direction_reveal_defaults_to_gradual():
    notes = _direction("reveal_thread", {"content": "The paint is still wet"})
    assert notes == ["Reveal (gradual): The paint is still wet"]


def test_direction_reveal_with_payoff():
    notes = _direction("reveal_thread", {"content": "The keeper was never alone",
                                         "style": "sudden", "payoff_tone": "wonder"})
    assert notes == ["Reveal (sudden): The keeper was never alone", "Let the reveal land with wonder"]


def test_direction_emergent_moment():
    notes = _direction("trigger_emergence", {"moment_type": "accidental_intimacy"})
    assert notes == ["Let a accidental intimacy moment emerge"]


def test_direction_callback_and_milestone():
    notes = _direction("callback_moment", {"content": "the broken lamp"})
    assert notes == ["Call back to an earlier memory: the broken lamp"]
    notes = _direction("milestone_scene", {"milestone": "first_crack", "dimension": "trust"})
    assert notes == ["Show the first_crack milestone in trust"]


# ── build_context ────────────────────────────────────────────


def test_build_context_none_becomes_empty():
    ctx = build_context({"recommended_action": None, "scene": None}, "hi")
    assert ctx["recommended_action"] == ""
    assert ctx["location"] == ""
    assert ctx["reader_input"] == "hi"
    assert ctx["direction"] == []


def test_build_context_location_alias():
    bundle = {"scene": {"scene": {"location": "the lamp room"}}}
    ctx = build_context(bundle, "")
    assert ctx["location"] == "the lamp room"


def test_build_context_passes_bundle_keys_through():
    bundle = {"tension_value": 42, "genre": "mystery"}
    ctx = build_context(bundle, "")
    assert ctx["tension_value"] == 42
    assert ctx["genre"] == "mystery"


# ── Default narrator prompt ──────────────────────────────────


def test_default_prompt_renders_real_bundle():
    session = new_session(
        "grey-point",
        genre="mystery",
        characters=[Character(id="mara", name="Mara", description="Lighthouse keeper")],
        seed=3,
    )
    result = process_turn(session, "Mara, what is in the tower room?", now=100.0)
    prompt = render_prompt(
        DEFAULT_NARRATOR_PROMPT,
        build_context(result.context_bundle, "Mara, what is in the tower room?"),
    )
    assert "interactive mystery story" in prompt
    assert "- Mara: Lighthouse keeper" in prompt
    assert "> Mara, what is in the tower room?" in prompt
    assert result.recommendation.action.value in prompt
    assert "```json" in prompt


def test_default_prompt_lists_recalled_memories():
    session = new_session("grey-point", characters=[Character(id="mara", name="Mara")], seed=3)
    bundle = process_turn(session, "The lamp?", now=100.0).context_bundle
    bundle["characters"][0]["recalled"] = ["the night the lamp failed"]
    prompt = render_prompt(DEFAULT_NARRATOR_PROMPT, build_context(bundle, "The lamp?"))
    assert "  - is reminded of: the night the lamp failed" in prompt
