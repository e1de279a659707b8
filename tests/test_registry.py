"""Tests for the source registry."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError

from models.source import Article, FetchMethod, SourceTier
from registry import DEFAULT_SOURCES, DuplicateSourceError, SourceNotFoundError, SourceRegistry


def _make_registry(db, config) -> SourceRegistry:
    return SourceRegistry(db, config)


class TestCrud:
    def test_add_validates_and_stores(self, db, config):
        registry = _make_registry(db, config)
        source = registry.add(
            name=" Whitespark Blog ",
            url="https://whitespark.ca/blog/feed/",
            tier="tier_2",
            category="GBP",
            fetch_method="rss",
        )
        assert source.name == "Whitespark Blog"
        assert registry.get(source.id).tier is SourceTier.TIER_2

    def test_add_rejects_invalid_fields(self, db, config):
        registry = _make_registry(db, config)
        with pytest.raises(ValidationError):
            registry.add(name="", url="https://example.com")
        with pytest.raises(ValidationError):
            registry.add(name="X", url="https://example.com", fetch_method="ftp")

    def test_duplicate_name(self, db, config):
        registry = _make_registry(db, config)
        registry.add(name="A", url="https://a.example.com")
        with pytest.raises(DuplicateSourceError):
            registry.add(name="A", url="https://b.example.com")

    def test_update_and_deactivate(self, db, config):
        registry = _make_registry(db, config)
        source = registry.add(name="A", url="https://a.example.com")
        registry.update(source.id, category="LSA", fetch_method="webpage")
        registry.set_active(source.id, False)
        updated = registry.get(source.id)
        assert updated.category == "LSA"
        assert updated.fetch_method is FetchMethod.WEBPAGE
        assert registry.list_sources(active_only=True) == []

    def test_delete(self, db, config):
        registry = _make_registry(db, config)
        source = registry.add(name="A", url="https://a.example.com")
        registry.delete(source.id)
        with pytest.raises(SourceNotFoundError):
            registry.get(source.id)
        with pytest.raises(SourceNotFoundError):
            registry.delete(source.id)


class TestSeedDefaults:
    def test_seed_is_rerun_safe(self, db, config):
        registry = _make_registry(db, config)
        registry.add(name=DEFAULT_SOURCES[0]["name"], url="https://custom.example.com")
        assert registry.seed_defaults() == len(DEFAULT_SOURCES) - 1
        assert registry.seed_defaults() == 0
        assert len(registry.list_sources()) == len(DEFAULT_SOURCES)

    def test_catalogue_covers_every_tier(self):
        assert {s["tier"] for s in DEFAULT_SOURCES} == set(SourceTier)


class TestSourceTest:
    def test_preview(self, db, config):
        registry = _make_registry(db, config)
        source = registry.add(name="A", url="https://a.example.com/feed")
        articles = [
            Article(url=f"https://a.example.com/{i}", title=f"Post {i}", content="x" * 500,
                    fetched_at=datetime.now(timezone.utc))
            for i in range(7)
        ]
        with patch("registry.fetch_source", AsyncMock(return_value=articles)):
            preview = asyncio.run(registry.test(source.id))
        assert preview["count"] == 7
        assert len(preview["articles"]) == 5
        assert len(preview["articles"][0]["preview"]) == 200
        assert db.list_digests() == []
