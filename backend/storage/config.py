"""Global app configuration (LLM connection, default genre, engine tunables, narrator prompt)."""

import json
import logging
from pathlib import Path
from typing import Any

from backend.prompts import DEFAULT_NARRATOR_PROMPT
from pacing_engine.config import Tunables, load_tunables

from .core import data_dir

logger = logging.getLogger(__name__)

_CONFIG_DEFAULTS: dict[str, Any] = {
    "llm": {
        "provider_url": "",
        "api_key": "",
        "provider_format": "koboldcpp",
        "model": "",
    },
    "default_genre": "fantasy",
    "engine": {},
    "narrator_prompt": DEFAULT_NARRATOR_PROMPT,
}


def _config_path() -> Path:
    return data_dir() / "config.json"


def _merge_engine(current: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Key-by-key merge; action_cooldowns is merged one level deeper."""
    merged = dict(current)
    for key, value in updates.items():
        if key == "action_cooldowns" and isinstance(value, dict):
            cooldowns = dict(merged.get("action_cooldowns") or {})
            cooldowns.update(value)
            merged["action_cooldowns"] = cooldowns
        else:
            merged[key] = value
    return merged


def get_config() -> dict[str, Any]:
    """Read config, returning defaults merged with stored values."""
    config: dict[str, Any] = {
        "llm": dict(_CONFIG_DEFAULTS["llm"]),
        "default_genre": _CONFIG_DEFAULTS["default_genre"],
        "engine": dict(_CONFIG_DEFAULTS["engine"]),
        "narrator_prompt": _CONFIG_DEFAULTS["narrator_prompt"],
    }
    path = _config_path()
    if path.is_file():
        try:
            stored = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            logger.warning("config.json is unreadable, using defaults: %s", e)
            stored = {}
        if isinstance(stored.get("llm"), dict):
            config["llm"].update(stored["llm"])
        if "default_genre" in stored:
            config["default_genre"] = stored["default_genre"]
        if isinstance(stored.get("engine"), dict):
            config["engine"] = _merge_engine(config["engine"], stored["engine"])
        if stored.get("narrator_prompt"):
            config["narrator_prompt"] = stored["narrator_prompt"]
    return config


def update_config(fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into config and persist. Returns full config.

    llm and engine are merged key by key; scalars are overwritten. An empty
    narrator_prompt restores the built-in template.
    """
    config = get_config()
    if isinstance(fields.get("llm"), dict):
        config["llm"].update(fields["llm"])
    if "default_genre" in fields:
        config["default_genre"] = fields["default_genre"]
    if isinstance(fields.get("engine"), dict):
        config["engine"] = _merge_engine(config["engine"], fields["engine"])
    if "narrator_prompt" in fields:
        config["narrator_prompt"] = fields["narrator_prompt"] or DEFAULT_NARRATOR_PROMPT
    _config_path().write_text(json.dumps(config, indent=2))
    return config


def engine_tunables() -> Tunables:
    """Tunables for new sessions, built from the stored engine overrides."""
    return load_tunables(get_config()["engine"])
