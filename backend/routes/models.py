"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel, Field

from pacing_engine.models import Character, Interpretation, ReaderProfileSummary, SceneType


class CreateSession(BaseModel):
    title: str
    genre: str = ""
    characters: list[Character] = Field(default_factory=list)
    reader: ReaderProfileSummary | None = None
    seed: int | None = None


class TurnBody(BaseModel):
    message: str
    interpretation: Interpretation | None = None


class SceneBody(BaseModel):
    location: str | None = None
    time_of_day: str | None = None
    weather: str | None = None
    ambiance: str | None = None
    type: SceneType | None = None
    new_chapter: bool = False


class CheckConnectionBody(BaseModel):
    provider_url: str
    api_key: str = ""
    provider_format: str = "koboldcpp"


class ResolveThreadBody(BaseModel):
    resolution: str = ""


class ConnectThreadsBody(BaseModel):
    other: str
    kind: str = "related"
