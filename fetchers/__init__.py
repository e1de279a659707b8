"""Source fetching.

`fetch_source` is the single entry point the rest of the system uses for
one source; `fetch_all_sources` fans out over many with bounded
concurrency. Both isolate failures: a source that errors, times out or
has no strategy contributes zero articles and a WARNING log line.

Items published before the lookback window are dropped here; undated
items are kept.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import aiohttp

from config import Config
from fetchers.base import FETCHERS, Fetcher
from fetchers import reddit, rss, webpage, youtube  # noqa: F401  (register strategies)
from models.source import Article, Source

logger = logging.getLogger(__name__)


@dataclass
class SourceFetch:
    """Outcome of fetching one source."""

    source: Source
    articles: list[Article] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def filter_recent(articles: list[Article], lookback_days: int, now: datetime | None = None) -> list[Article]:
    """Drop articles published before the lookback window."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=lookback_days)
    kept = []
    for article in articles:
        published = article.published_at
        if published is not None and published.tzinfo is None:
            published = published.replace(tzinfo=timezone.utc)
        if published is None or published >= cutoff:
            kept.append(article)
    return kept


def _session(config: Config) -> aiohttp.ClientSession:
    return aiohttp.ClientSession(connector=aiohttp.TCPConnector(limit=config.max_workers * 2))


async def _fetch_one(source: Source, config: Config, session: aiohttp.ClientSession) -> SourceFetch:
    fetcher_cls = FETCHERS.get(source.fetch_method)
    if fetcher_cls is None:
        logger.warning("Unknown fetch method | source=%s method=%s", source.name, source.fetch_method)
        return SourceFetch(source, error=f"unknown fetch method {source.fetch_method}")

    fetcher: Fetcher = fetcher_cls(session, config)
    try:
        articles = await asyncio.wait_for(fetcher.fetch(source), timeout=config.source_timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning("Source timed out | source=%s timeout=%ds", source.name, config.source_timeout_seconds)
        return SourceFetch(source, error="timeout")
    except Exception as e:
        logger.warning("Source fetch failed | source=%s error=%s: %s", source.name, type(e).__name__, e)
        return SourceFetch(source, error=f"{type(e).__name__}: {e}")

    recent = filter_recent(articles, config.lookback_days)
    logger.debug(
        "Source fetched | source=%s items=%d recent=%d",
        source.name, len(articles), len(recent),
    )
    return SourceFetch(source, recent)


async def fetch_source(
    source: Source,
    config: Config,
    session: aiohttp.ClientSession | None = None,
) -> list[Article]:
    """Fetch one source. Never raises; failures yield an empty list."""
    if session is not None:
        return (await _fetch_one(source, config, session)).articles
    async with _session(config) as own_session:
        return (await _fetch_one(source, config, own_session)).articles


async def fetch_all_sources(sources: list[Source], config: Config) -> list[SourceFetch]:
    """Fetch sources concurrently, at most MAX_WORKERS at a time.

    Results are returned in the order of `sources`, one per source.

    Example:
        >>> results = await fetch_all_sources(db.list_sources(active_only=True), config)
        >>> sum(len(r.articles) for r in results)
        42
    """
    semaphore = asyncio.Semaphore(config.max_workers)

    async def bounded(source: Source, session: aiohttp.ClientSession) -> SourceFetch:
        async with semaphore:
            return await _fetch_one(source, config, session)

    async with _session(config) as session:
        results = await asyncio.gather(*(bounded(s, session) for s in sources))

    failed = sum(1 for r in results if not r.ok)
    articles = sum(len(r.articles) for r in results)
    logger.info("Sources fetched | sources=%d articles=%d failed=%d", len(sources), articles, failed)
    return list(results)
