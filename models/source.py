"""Content source models.

A Source is an operator-configured place the pipeline pulls content from.
Tier and category are not used algorithmically; they are passed to the
analyzer as authority signals and shown in reports.

An Article is the uniform record every fetch strategy produces, whatever
the underlying protocol (RSS, YouTube, Reddit, plain webpage).
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


# Video fetchers append the transcript after this line so truncation can
# cut the transcript first and keep the description.
TRANSCRIPT_MARKER = "--- VIDEO TRANSCRIPT ---"


class SourceTier(str, Enum):
    """Authority ranking of a source.

    TIER_1: Official platform announcements (e.g. Google)
    TIER_2: Recognized industry experts
    TIER_3: Community forums and blogs (supporting evidence only)
    """

    TIER_1 = "tier_1"
    TIER_2 = "tier_2"
    TIER_3 = "tier_3"

    @property
    def label(self) -> str:
        return {
            SourceTier.TIER_1: "official",
            SourceTier.TIER_2: "expert",
            SourceTier.TIER_3: "community",
        }[self]


class FetchMethod(str, Enum):
    """Protocol used to pull articles from a source."""

    RSS = "rss"
    YOUTUBE = "youtube"
    REDDIT = "reddit"
    WEBPAGE = "webpage"


class Source(BaseModel):
    """A configured content source.

    Attributes:
        id: Unique identifier
        name: Display name (unique across the registry)
        url: Feed, channel, subreddit or page URL
        tier: Authority tier
        category: Free-form topic label (e.g. "GBP", "General SEO")
        fetch_method: Strategy used by the fetcher
        fetch_config: Strategy-specific options (channelId, subreddit, ...)
        active: Inactive sources are skipped by the pipeline
        last_fetched_at: Last time a fetch of this source succeeded
    """

    id: str = ""
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    tier: SourceTier = SourceTier.TIER_3
    category: str = "general"
    fetch_method: FetchMethod = FetchMethod.RSS
    fetch_config: dict = Field(default_factory=dict)
    active: bool = True
    last_fetched_at: datetime | None = None

    @field_validator("name", "url", "category")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class Article(BaseModel):
    """Normalized content item produced by any fetch strategy."""

    url: str
    title: str
    content: str = ""
    fetched_at: datetime
    published_at: datetime | None = None

    def __str__(self) -> str:
        return f"Article('{self.title[:50]}', {self.url[:60]})"
