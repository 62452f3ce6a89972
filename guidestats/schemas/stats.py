"""Pydantic schemas for Local Guide profile stats."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

COUNT_FIELDS = (
    "reviews",
    "ratings",
    "photos",
    "edits",
    "questions",
    "facts",
    "roads_added",
    "places_added",
    "lists_published",
)
TEXT_ONLY_FIELDS = ("level", "points")


class ScrapeMode(str, Enum):
    NORMAL = "normal"
    SLOW = "slow"


class StatsRecord(BaseModel):
    """One profile's contribution counters. Missing values are 0, never null."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str | None = Field(None, description="Display name, when one could be found")
    level: int = Field(0, ge=0, description="Local Guide level (text-derived)")
    points: int = Field(0, ge=0, description="Local Guide points (text-derived)")
    reviews: int = Field(0, ge=0)
    ratings: int = Field(0, ge=0)
    photos: int = Field(0, ge=0)
    edits: int = Field(0, ge=0)
    questions: int = Field(0, ge=0, description="Answers given")
    facts: int = Field(0, ge=0, description="max(reported incorrect, facts checked)")
    roads_added: int = Field(0, ge=0)
    places_added: int = Field(0, ge=0)
    lists_published: int = Field(0, ge=0)

    def counts(self) -> dict[str, int]:
        return {f: getattr(self, f) for f in COUNT_FIELDS}

    def is_empty(self) -> bool:
        """True when every count field is 0 (level/points are not counts)."""
        return not any(self.counts().values())


class ProfileStatsResponse(StatsRecord):
    contrib_url: str = Field(..., description="Candidate URL that produced the record")
    fetched_at: str = Field(..., description="ISO-8601 UTC timestamp of the scrape")
    mode: ScrapeMode = ScrapeMode.NORMAL


class ErrorDetail(BaseModel):
    code: str
    message: str
    reason: dict | None = None
    attempts: list[str] | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail


class DebugSampleResponse(BaseModel):
    url: str
    panel_opened: bool
    sample: str
