"""RSS/Atom feed strategy.

Feed bodies are fetched with aiohttp and parsed with feedparser. Entry
HTML is flattened to text so the analyzer sees prose, not markup.
"""

import logging
from datetime import datetime, timezone

import feedparser

from fetchers.base import Fetcher, register, utcnow
from fetchers.http import get_text
from fetchers.webpage import html_to_text
from models.source import Article, FetchMethod, Source

logger = logging.getLogger(__name__)


def _parse_date(entry: dict) -> datetime | None:
    """Extract publication date from feed entry.

    Tries multiple date fields in order of preference:
    1. published_parsed - Standard RSS pubDate
    2. updated_parsed - Atom updated timestamp
    3. created_parsed - Less common creation date

    Returns:
        Datetime in UTC, or None if no valid date found
    """
    for field in ("published_parsed", "updated_parsed", "created_parsed"):
        time_tuple = entry.get(field)
        if time_tuple:
            try:
                return datetime(*time_tuple[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                continue
    return None


def _entry_content(entry: dict) -> str:
    # Full content (content:encoded / Atom content) beats the summary
    for item in entry.get("content") or []:
        value = item.get("value", "")
        if value.strip():
            return html_to_text(value)
    return html_to_text(entry.get("summary", "") or entry.get("description", ""))


def parse_feed(content: str, source: Source) -> list[Article]:
    """Parse feed content into articles.

    Entries without a title are skipped. Entries without a link fall back
    to the source URL; undated entries keep `published_at=None`.
    """
    feed = feedparser.parse(content)
    fetched_at = utcnow()
    articles = []
    for entry in feed.entries:
        title = entry.get("title", "").strip()
        if not title:
            continue
        articles.append(Article(
            url=entry.get("link", "") or source.url,
            title=title,
            content=_entry_content(entry),
            fetched_at=fetched_at,
            published_at=_parse_date(entry),
        ))
    return articles


@register(FetchMethod.RSS)
class RssFetcher(Fetcher):
    async def fetch(self, source: Source) -> list[Article]:
        body = await get_text(self.session, source.url, self.timeout)
        if not body:
            return []
        articles = parse_feed(body, source)
        logger.debug("Feed parsed | source=%s entries=%d", source.name, len(articles))
        return articles
