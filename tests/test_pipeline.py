"""Tests for the turn pipeline: engine turn, narrator call, tag split, persistence."""

import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from backend import storage
from backend.llm import LLMError
from backend.pipeline import SessionNotFound, preview_turn, run_turn, split_generation
from backend.prompts import PromptError
from pacing_engine.models import Character, Interpretation

MARA = Character(id="mara", name="Mara", description="Lighthouse keeper")

NARRATION = (
    "Mara sets down the lamp and studies you for a long moment.\n\n"
    "```json\n"
    '{"input_type": "dialogue", "tone": "warm", "intensity": 2, "target_character": "mara"}\n'
    "```"
)


@pytest.fixture
def session_id():
    storage.update_config({"llm": {"provider_url": "http://localhost:5001"}})
    session = storage.create_session("Grey Point", genre="mystery", characters=[MARA], seed=3, now=100.0)
    return session.id


# ── split_generation ────────────────────────────────────────


def test_split_generation_with_tag():
    prose, tag = split_generation(NARRATION)
    assert prose == "Mara sets down the lamp and studies you for a long moment."
    assert tag.startswith("{") and '"tone": "warm"' in tag


def test_split_generation_without_tag():
    prose, tag = split_generation("  Rain against the glass.  \n")
    assert prose == "Rain against the glass."
    assert tag is None


def test_split_generation_plain_fence():
    prose, tag = split_generation('Quiet.\n```\n{"tone": "sad"}\n```\n')
    assert prose == "Quiet."
    assert tag == '{"tone": "sad"}'


def test_split_generation_ignores_fence_mid_text():
    text = 'Before.\n```json\n{"tone": "sad"}\n```\nAfter.'
    prose, tag = split_generation(text)
    assert tag is None
    assert prose == text


# ── run_turn ────────────────────────────────────────────────


async def test_run_turn_saves_session_and_transcript(session_id):
    with patch("backend.pipeline.llm.generate", new_callable=AsyncMock) as mock_generate:
        mock_generate.return_value = NARRATION
        result = await run_turn(session_id, "Hello, Mara.", now=200.0)

    assert result["turn"] == 1
    assert result["narration"] == "Mara sets down the lamp and studies you for a long moment."
    assert result["tag_parsed"] is True
    assert result["recommendation"]["action"]

    connection, prompt = mock_generate.call_args.args
    assert connection["provider_url"] == "http://localhost:5001"
    assert "> Hello, Mara." in prompt

    stored = storage.get_session(session_id)
    assert stored.turn == 1
    assert stored.updated_at == 200.0
    assert stored.pending_tag is not None
    assert stored.pending_tag.tone == "warm"
    contents = [e.content for e in stored.state.conversation_history]
    assert "Hello, Mara." in contents
    assert result["narration"] in contents

    messages = storage.get_messages(session_id)
    assert [m["role"] for m in messages] == ["reader", "narrator"]
    assert messages[0]["text"] == "Hello, Mara."
    assert messages[1]["action"] == result["recommendation"]["action"]
    assert all(m["turn"] == 1 for m in messages)


async def test_run_turn_without_tag(session_id):
    with patch("backend.pipeline.llm.generate", new_callable=AsyncMock) as mock_generate:
        mock_generate.return_value = "The wind answers for her."
        result = await run_turn(session_id, "Hello?", now=200.0)
    assert result["tag_parsed"] is False
    assert storage.get_session(session_id).pending_tag is None


async def test_run_turn_explicit_interpretation(session_id):
    interp = Interpretation(input_type="action", tone="angry", intensity=5)
    with patch("backend.pipeline.llm.generate", new_callable=AsyncMock) as mock_generate:
        mock_generate.return_value = "Glass shatters."
        result = await run_turn(session_id, "I smash the lens.", interp, now=200.0)
    assert result["interpretation"]["tone"] == "angry"
    assert result["interpretation"]["intensity"] == 5


async def test_consecutive_turns_accumulate(session_id):
    with patch("backend.pipeline.llm.generate", new_callable=AsyncMock) as mock_generate:
        mock_generate.return_value = NARRATION
        await run_turn(session_id, "Hello, Mara.", now=200.0)
        second = await run_turn(session_id, "What's in the tower?", now=260.0)
    assert second["turn"] == 2
    assert storage.get_session(session_id).turn == 2
    assert len(storage.get_messages(session_id)) == 4


async def test_concurrent_turns_on_one_session_are_serialized(session_id):
    async def slow_generate(connection, prompt):
        await asyncio.sleep(0.01)
        return "The lamp turns, and turns."

    with patch("backend.pipeline.llm.generate", new_callable=AsyncMock) as mock_generate:
        mock_generate.side_effect = slow_generate
        first, second = await asyncio.gather(
            run_turn(session_id, "Hello, Mara.", now=200.0),
            run_turn(session_id, "Are you there?", now=201.0),
        )

    assert sorted([first["turn"], second["turn"]]) == [1, 2]
    assert storage.get_session(session_id).turn == 2
    messages = storage.get_messages(session_id)
    assert [m["turn"] for m in messages] == [1, 1, 2, 2]


async def test_llm_error_leaves_session_untouched(session_id):
    with patch("backend.pipeline.llm.generate", new_callable=AsyncMock) as mock_generate:
        mock_generate.side_effect = LLMError("Cannot connect to LLM backend")
        with pytest.raises(LLMError):
            await run_turn(session_id, "Hello, Mara.", now=200.0)

    stored = storage.get_session(session_id)
    assert stored.turn == 0
    assert stored.updated_at == 100.0
    assert stored.state.conversation_history == []
    assert storage.get_messages(session_id) == []


async def test_missing_provider_raises_llm_error():
    session = storage.create_session("Unconfigured")
    with pytest.raises(LLMError):
        await run_turn(session.id, "Hello?")
    assert storage.get_session(session.id).turn == 0


async def test_bad_template_raises_prompt_error(session_id):
    storage.update_config({"narrator_prompt": "{{> missing_partial}}"})
    with patch("backend.pipeline.llm.generate", new_callable=AsyncMock) as mock_generate:
        with pytest.raises(PromptError):
            await run_turn(session_id, "Hello, Mara.", now=200.0)
    mock_generate.assert_not_called()
    assert storage.get_session(session_id).turn == 0


async def test_unknown_session_raises():
    with pytest.raises(SessionNotFound):
        await run_turn("nope", "Hello?")


# ── preview_turn ────────────────────────────────────────────


def test_preview_turn_does_not_save(session_id):
    result = preview_turn(session_id, "Hello, Mara.", now=200.0)
    assert result["turn"] == 1
    assert "## The Reader" in result["prompt"]
    assert "> Hello, Mara." in result["prompt"]
    assert result["context"]["session_id"] == session_id

    stored = storage.get_session(session_id)
    assert stored.turn == 0
    assert storage.get_messages(session_id) == []


def test_preview_turn_unknown_session():
    with pytest.raises(SessionNotFound):
        preview_turn("nope", "Hello?")
