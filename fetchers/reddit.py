"""Reddit strategy: the subreddit's public hot listing as JSON."""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from fetchers.base import Fetcher, register, utcnow
from fetchers.http import BOT_USER_AGENT, get_json
from models.source import Article, FetchMethod, Source

logger = logging.getLogger(__name__)

LISTING_URL = "https://www.reddit.com/r/{subreddit}/hot.json"
LISTING_LIMIT = 20


def subreddit_for(source: Source) -> str:
    """Subreddit from fetch_config, else parsed out of the source URL."""
    configured = (source.fetch_config or {}).get("subreddit")
    if configured:
        return str(configured)
    match = re.search(r"/r/([^/?#]+)", source.url)
    return match.group(1) if match else source.url.rstrip("/").rsplit("/", 1)[-1]


def parse_listing(data: Any) -> list[Article]:
    """Convert a listing payload to articles, skipping stickied posts.

    Self-text posts use their body as content; link posts fall back to
    the title so they still carry a signal.
    """
    children = ((data or {}).get("data") or {}).get("children") or []
    fetched_at = utcnow()
    articles = []
    for child in children:
        post = child.get("data") or {}
        if post.get("stickied") or not post.get("title"):
            continue
        created = post.get("created_utc")
        articles.append(Article(
            url=f"https://www.reddit.com{post.get('permalink', '')}",
            title=post["title"],
            content=post.get("selftext") or post["title"],
            fetched_at=fetched_at,
            published_at=datetime.fromtimestamp(created, timezone.utc) if created else None,
        ))
    return articles


@register(FetchMethod.REDDIT)
class RedditFetcher(Fetcher):
    async def fetch(self, source: Source) -> list[Article]:
        data = await get_json(
            self.session,
            LISTING_URL.format(subreddit=subreddit_for(source)),
            self.timeout,
            params={"limit": LISTING_LIMIT},
            user_agent=BOT_USER_AGENT,
        )
        return parse_listing(data)
