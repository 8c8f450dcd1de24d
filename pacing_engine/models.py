"""Shared domain models.

Every tracker in the engine reads and writes these types. Pydantic is used
for validation and serialisation at every data boundary: session blobs,
collaborator interpretation tags, reader profile summaries and API bodies.

Vocabularies that only label data are Literal aliases. Vocabularies that
drive matching logic (emergent conditions, orchestrator actions) are enums
and live next to the code that matches on them.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

EmotionalBeat = Literal[
    "wonder",
    "tension",
    "warmth",
    "melancholy",
    "triumph",
    "intimacy",
    "mystery",
    "humor",
    "dread",
    "hope",
    "reflection",
    "breath",
]

SceneType = Literal[
    "dialogue",
    "action",
    "exploration",
    "decision",
    "revelation",
    "transition",
    "breath",
]

Urgency = Literal["immediate", "soon", "when_appropriate", "gradual"]

AttachmentStyle = Literal["secure", "avoidant", "anxious"]

InputType = Literal[
    "dialogue",
    "action",
    "thought",
    "question",
    "decision",
    "emotion",
    "observation",
    "direction",
]

InputTone = Literal[
    "neutral",
    "warm",
    "cold",
    "angry",
    "sad",
    "excited",
    "fearful",
    "curious",
    "playful",
    "defiant",
    "vulnerable",
    "determined",
]

TensionPreference = Literal["high-tension", "moderate-tension", "low-tension"]


class Character(BaseModel):
    """A non-reader character present in (or known to) the story."""

    id: str
    name: str
    description: str = ""
    wound: str = ""  # backstory wound, seeds growth dimensions
    attachment_style: AttachmentStyle | None = None
    antagonist: bool = False


class ReaderProfileSummary(BaseModel):
    """Read-only digest of the external reader-preference model.

    Every field is optional in spirit: an empty summary behaves exactly like
    a missing one and the genre defaults apply.
    """

    enjoys: list[str] = Field(default_factory=list)
    avoids: list[str] = Field(default_factory=list)
    top_genres: list[str] = Field(default_factory=list)
    response_style: str | None = None
    session_length: str | None = None
    tension_preference: TensionPreference = "moderate-tension"
    exited_during_high_tension: bool = False


class Interpretation(BaseModel):
    """What a turn meant for the story.

    Produced either by the keyword interpreter for reader input, or parsed
    from the tag the generation collaborator returns alongside its text.
    """

    input_type: InputType = "dialogue"
    tone: InputTone = "neutral"
    intensity: int = Field(default=3, ge=1, le=5)
    target_character: str | None = None
    tension_event: str | None = None  # explicit event kind, overrides tone mapping
    emotional_tone: str | None = None  # explicit resonance tone
    revelation: bool = False
    new_information: bool = False
    reader_silent: bool = False
    reader_observing: bool = False
    exit_intent: bool = False
