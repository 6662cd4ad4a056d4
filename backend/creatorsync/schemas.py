from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Scraped items
class EngagementCounters(BaseModel):
    model_config = ConfigDict(frozen=True)

    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    saves: int = 0


class AuthorStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    followers: int | None = None
    total_likes: int | None = None


class AuthorMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    avatar_url: str | None = None


class ExternalItem(BaseModel):
    """One post as reported by the scraping provider in a given run."""

    model_config = ConfigDict(frozen=True)

    external_id: str = Field(min_length=1)
    raw_text: str = ""
    published_at: datetime | None = None
    author: AuthorMeta | None = None
    author_stats: AuthorStats = Field(default_factory=AuthorStats)
    engagement: EngagementCounters = Field(default_factory=EngagementCounters)
    media_urls: tuple[str, ...] = ()
    permalink: str | None = None

    @field_validator("external_id")
    @classmethod
    def normalize_external_id(cls, value: str) -> str:
        return value.strip()

    @property
    def cover_url(self) -> str | None:
        return self.media_urls[0] if self.media_urls else None


# Sync results
class SyncResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    new_records: int = Field(default=0, alias="newRecords")
    updated_records: int = Field(default=0, alias="updatedRecords")
    skipped_records: int = Field(default=0, alias="skippedRecords")
    cancelled: bool = False
    error: str | None = None


class AutoSyncResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    synced: bool
    skipped: bool
    reason: str | None = None
    new_records: int | None = Field(default=None, alias="newRecords")
    updated_records: int | None = Field(default=None, alias="updatedRecords")


# Trend charts
class MetricPoint(BaseModel):
    day: date
    value: int

    class Config:
        from_attributes = True


class MetricHistoryRead(BaseModel):
    profile_id: int
    metric: str
    points: list[MetricPoint]
