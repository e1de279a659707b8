"""Source registry: operator-facing management of content sources.

Wraps the sources table with validation (pydantic `Source`), a built-in
default catalogue, and a `test` operation that runs one fetch without
creating a digest.
"""

import logging
import sqlite3
from typing import Any

from config import Config
from database import Database
from fetchers import fetch_source
from models.source import FetchMethod, Source, SourceTier

logger = logging.getLogger(__name__)

PREVIEW_ARTICLES = 5
PREVIEW_CHARS = 200


class SourceNotFoundError(LookupError):
    """Raised when a source id does not exist."""


class DuplicateSourceError(ValueError):
    """Raised when a source name is already taken."""


def _src(name, url, tier, category, method, **fetch_config) -> dict[str, Any]:
    return {
        "name": name,
        "url": url,
        "tier": tier,
        "category": category,
        "fetch_method": method,
        "fetch_config": fetch_config,
    }


T1, T2, T3 = SourceTier.TIER_1, SourceTier.TIER_2, SourceTier.TIER_3
RSS, YOUTUBE, REDDIT, WEBPAGE = FetchMethod.RSS, FetchMethod.YOUTUBE, FetchMethod.REDDIT, FetchMethod.WEBPAGE

DEFAULT_SOURCES: list[dict[str, Any]] = [
    # Tier 1: Google official
    _src("Google Search Central Blog", "https://developers.google.com/search/blog/feed/atom", T1, "General SEO", RSS),
    _src("Google Ads Changelog", "https://ads.google.com/home/resources/changelog/", T1, "Meta Ads", WEBPAGE),
    _src("Google Maps Platform Blog", "https://cloud.google.com/blog/products/maps-platform/rss", T1, "Maps", RSS),
    _src("GBP Help Center", "https://support.google.com/business/answer/9292476", T1, "GBP", WEBPAGE),
    _src("Local Service Ads Help", "https://support.google.com/localservices/", T1, "LSA", WEBPAGE),
    # Tier 2: industry experts
    _src("Whitespark Blog", "https://whitespark.ca/blog/feed/", T2, "GBP", RSS),
    _src("BrightLocal Blog", "https://www.brightlocal.com/blog/feed/", T2, "GBP", RSS),
    _src("Sterling Sky Blog", "https://sterlingsky.ca/feed/", T2, "GBP", RSS),
    _src("Near Media", "https://nearmedia.co/feed/", T2, "General SEO", RSS),
    _src("Local Search Forum", "https://www.localsearchforum.com/forums/-/index.rss", T2, "GBP", RSS),
    _src("Moz Local SEO", "https://moz.com/blog/feed", T2, "General SEO", RSS),
    _src("Search Engine Journal", "https://www.searchenginejournal.com/feed/", T2, "General SEO", RSS),
    _src("Search Engine Land", "https://searchengineland.com/feed", T2, "General SEO", RSS),
    _src("Joy Hawkins YouTube", "https://www.youtube.com/c/JoyHawkins", T2, "GBP", YOUTUBE,
         channelId="UCZIMOb3JBU6VA6lsM5v7sYw"),
    _src("Darren Shaw YouTube", "https://www.youtube.com/@DarrenShaw", T2, "GBP", YOUTUBE,
         channelId="UCaLMc8Z4WKe3r0btl2EUQSA"),
    _src("LocalU", "https://localu.org/feed/", T2, "GBP", RSS),
    _src("Mike Blumenthal", "https://blumenthals.com/blog/feed/", T2, "GBP", RSS),
    # Tier 3: community / supporting evidence
    _src("Reddit r/SEO", "https://www.reddit.com/r/SEO/", T3, "General SEO", REDDIT, subreddit="SEO"),
    _src("Reddit r/LocalSEO", "https://www.reddit.com/r/LocalSEO/", T3, "GBP", REDDIT, subreddit="LocalSEO"),
    _src("Reddit r/GoogleAds", "https://www.reddit.com/r/GoogleAds/", T3, "Meta Ads", REDDIT, subreddit="GoogleAds"),
    _src("Yelp Business Blog", "https://business.yelp.com/blog/", T3, "Yelp", WEBPAGE),
    _src("Nextdoor Business Blog", "https://business.nextdoor.com/blog", T3, "Nextdoor", WEBPAGE),
    _src("Angi Pro Blog", "https://www.angi.com/pro/blog/", T3, "Angi", WEBPAGE),
    _src("Thumbtack Pro Blog", "https://www.thumbtack.com/blog/", T3, "Thumbtack", WEBPAGE),
    _src("Search Engine Roundtable", "https://www.seroundtable.com/feed", T3, "General SEO", RSS),
]


class SourceRegistry:
    """CRUD plus test and seeding for configured sources.

    Example:
        >>> registry = SourceRegistry(db, config)
        >>> source = registry.add(name="Whitespark Blog", url="https://whitespark.ca/blog/feed/",
        ...                       tier="tier_2", category="GBP", fetch_method="rss")
        >>> preview = await registry.test(source.id)
    """

    def __init__(self, db: Database, config: Config):
        self.db = db
        self.config = config

    def add(self, **fields: Any) -> Source:
        """Validate and insert a source.

        Raises:
            pydantic.ValidationError: On missing or invalid fields
            DuplicateSourceError: If the name is already used
        """
        source = Source(**fields)
        try:
            saved = self.db.add_source(source)
        except sqlite3.IntegrityError:
            raise DuplicateSourceError(f"A source named '{source.name}' already exists")
        logger.info("Source added | name=%s method=%s tier=%s", saved.name, saved.fetch_method.value, saved.tier.value)
        return saved

    def get(self, source_id: str) -> Source:
        source = self.db.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source {source_id} not found")
        return source

    def update(self, source_id: str, **changes: Any) -> Source:
        """Apply field changes to a source, re-validating the result."""
        current = self.get(source_id)
        updated = Source(**{**current.model_dump(), **changes, "id": source_id})
        try:
            self.db.update_source(updated)
        except sqlite3.IntegrityError:
            raise DuplicateSourceError(f"A source named '{updated.name}' already exists")
        logger.info("Source updated | id=%s fields=%s", source_id, ",".join(sorted(changes)))
        return updated

    def set_active(self, source_id: str, active: bool) -> Source:
        return self.update(source_id, active=active)

    def delete(self, source_id: str) -> None:
        if not self.db.delete_source(source_id):
            raise SourceNotFoundError(f"Source {source_id} not found")
        logger.info("Source deleted | id=%s", source_id)

    def list_sources(self, active_only: bool = False) -> list[Source]:
        return self.db.list_sources(active_only=active_only)

    def seed_defaults(self) -> int:
        """Insert the built-in catalogue, skipping names that already exist.

        Returns:
            Number of sources created
        """
        created = 0
        for fields in DEFAULT_SOURCES:
            if self.db.get_source_by_name(fields["name"]):
                continue
            self.db.add_source(Source(**fields))
            created += 1
        logger.info("Default sources seeded | created=%d total=%d", created, len(DEFAULT_SOURCES))
        return created

    async def test(self, source_id: str) -> dict[str, Any]:
        """Fetch one source without persisting anything and return a preview."""
        source = self.get(source_id)
        articles = await fetch_source(source, self.config)
        return {
            "source": source.name,
            "fetch_method": source.fetch_method.value,
            "count": len(articles),
            "articles": [
                {
                    "title": a.title,
                    "url": a.url,
                    "published_at": a.published_at.isoformat() if a.published_at else None,
                    "preview": a.content[:PREVIEW_CHARS],
                }
                for a in articles[:PREVIEW_ARTICLES]
            ],
        }
