"""Tests for pacing_engine.config: tunables loading."""

from pacing_engine.config import DEFAULT_ACTION_COOLDOWNS, Tunables, load_tunables


def test_defaults():
    tunables = load_tunables(None)
    assert tunables == Tunables()
    assert tunables.debt_release_threshold == 70
    assert tunables.action_cooldowns == DEFAULT_ACTION_COOLDOWNS


def test_partial_override():
    tunables = load_tunables({"tension_drift": 10, "revelation_threshold": 60})
    assert tunables.tension_drift == 10
    assert tunables.revelation_threshold == 60
    assert tunables.breath_max_exchanges == 12


def test_action_cooldowns_merge_key_by_key():
    tunables = load_tunables({"action_cooldowns": {"cross_talk": 2, "deepen_bond": 7}})
    assert tunables.cooldown_for("cross_talk") == 2
    assert tunables.cooldown_for("deepen_bond") == 7
    assert tunables.cooldown_for("reveal_thread") == 8


def test_cooldown_for_falls_back_to_default():
    tunables = Tunables(default_action_cooldown=1)
    assert tunables.cooldown_for("show_growth") == 1


def test_invalid_data_uses_defaults(caplog):
    tunables = load_tunables({"breath_max_exchanges": 0})
    assert tunables == Tunables()
    assert "Invalid engine tunables" in caplog.text


def test_defaults_not_shared_between_instances():
    a = Tunables()
    a.action_cooldowns["cross_talk"] = 99
    assert Tunables().action_cooldowns["cross_talk"] == 5
    assert DEFAULT_ACTION_COOLDOWNS["cross_talk"] == 5
