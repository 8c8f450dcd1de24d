"""Tests for config storage: defaults, partial merges and engine tunables."""

from backend import storage
from backend.prompts import DEFAULT_NARRATOR_PROMPT


def test_get_config_empty():
    """Returns defaults when no config file exists."""
    config = storage.get_config()
    assert config["llm"] == {
        "provider_url": "",
        "api_key": "",
        "provider_format": "koboldcpp",
        "model": "",
    }
    assert config["default_genre"] == "fantasy"
    assert config["engine"] == {}
    assert config["narrator_prompt"] == DEFAULT_NARRATOR_PROMPT


def test_update_config_llm_merges_keys():
    """Partial llm updates keep the other connection fields."""
    storage.update_config({"llm": {"provider_url": "http://localhost:5001"}})
    storage.update_config({"llm": {"api_key": "secret"}})

    config = storage.get_config()
    assert config["llm"]["provider_url"] == "http://localhost:5001"
    assert config["llm"]["api_key"] == "secret"
    assert config["llm"]["provider_format"] == "koboldcpp"


def test_update_config_scalar():
    result = storage.update_config({"default_genre": "horror"})
    assert result["default_genre"] == "horror"
    assert storage.get_config()["default_genre"] == "horror"


def test_update_config_engine_cooldowns_merge():
    """action_cooldowns is merged one level deeper than the other engine keys."""
    storage.update_config({"engine": {"tension_drift": 10, "action_cooldowns": {"cross_talk": 5}}})
    storage.update_config({"engine": {"action_cooldowns": {"breath_moment": 2}}})

    engine = storage.get_config()["engine"]
    assert engine["tension_drift"] == 10
    assert engine["action_cooldowns"] == {"cross_talk": 5, "breath_moment": 2}


def test_empty_narrator_prompt_restores_default():
    storage.update_config({"narrator_prompt": "{{reader_input}}"})
    assert storage.get_config()["narrator_prompt"] == "{{reader_input}}"

    storage.update_config({"narrator_prompt": ""})
    assert storage.get_config()["narrator_prompt"] == DEFAULT_NARRATOR_PROMPT


def test_corrupt_config_falls_back_to_defaults():
    (storage.data_dir() / "config.json").write_text("{not json")
    config = storage.get_config()
    assert config["default_genre"] == "fantasy"
    assert config["llm"]["provider_url"] == ""


# ── engine_tunables ─────────────────────────────────────────


def test_engine_tunables_defaults():
    tunables = storage.engine_tunables()
    assert tunables.tension_drift == 20
    assert tunables.debt_release_threshold == 70


def test_engine_tunables_from_overrides():
    storage.update_config({"engine": {"debt_release_threshold": 55, "action_cooldowns": {"cross_talk": 9}}})
    tunables = storage.engine_tunables()
    assert tunables.debt_release_threshold == 55
    assert tunables.cooldown_for("cross_talk") == 9
    # other default cooldowns survive the partial override
    assert tunables.cooldown_for("breath_moment") == 4


def test_engine_tunables_invalid_values_fall_back():
    storage.update_config({"engine": {"breath_max_exchanges": -5}})
    assert storage.engine_tunables().breath_max_exchanges == 12
