"""Engine tunables.

The numeric thresholds below came out of play-testing, not derivation, so
they are configuration rather than constants. A session carries its own
Tunables instance; the app layer builds it from the stored config.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_ACTION_COOLDOWNS: dict[str, int] = {
    "breath_moment": 4,
    "cross_talk": 5,
    "reveal_thread": 8,
    "trigger_emergence": 6,
    "callback_moment": 5,
    "milestone_scene": 10,
}


class Tunables(BaseModel):
    # character evolution
    arc_confidence_threshold: int = Field(default=40, ge=0, le=100)

    # emergent moments
    emergent_trigger_priority: int = Field(default=60, ge=0)
    emergent_global_cooldown: int = Field(default=3, ge=0)

    # threads
    revelation_threshold: int = Field(default=70, ge=0)
    unused_element_max_age: int = Field(default=20, ge=1)
    dormant_abandon_after: int = Field(default=60, ge=1)

    # memory
    memory_store_limit: int = Field(default=100, ge=1)

    # breath scheduler
    breath_min_exchanges: int = Field(default=4, ge=0)
    breath_max_exchanges: int = Field(default=12, ge=1)
    breath_recovery_threshold: int = Field(default=70, ge=0, le=100)

    # cross-talk
    crosstalk_min_exchanges: int = Field(default=4, ge=0)

    # orchestrator
    debt_release_threshold: int = Field(default=70, ge=0, le=100)
    breath_overdue_exchanges: int = Field(default=10, ge=1)
    crosstalk_due_exchanges: int = Field(default=6, ge=1)
    tension_drift: int = Field(default=20, ge=0)
    default_action_cooldown: int = Field(default=3, ge=0)
    action_cooldowns: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_ACTION_COOLDOWNS)
    )

    def cooldown_for(self, action: str) -> int:
        return self.action_cooldowns.get(action, self.default_action_cooldown)


def load_tunables(data: dict[str, Any] | None) -> Tunables:
    """Build Tunables from a (possibly partial) dict.

    action_cooldowns is merged key by key over the defaults. Invalid data is
    logged and replaced with defaults.
    """
    if not data:
        return Tunables()
    fields = dict(data)
    if "action_cooldowns" in fields and isinstance(fields["action_cooldowns"], dict):
        merged = dict(DEFAULT_ACTION_COOLDOWNS)
        merged.update(fields["action_cooldowns"])
        fields["action_cooldowns"] = merged
    try:
        return Tunables.model_validate(fields)
    except ValidationError as e:
        logger.warning("Invalid engine tunables, using defaults: %s", e)
        return Tunables()
