"""Fetch strategy interface.

Each fetch method (rss, youtube, reddit, webpage) is one `Fetcher`
subclass registered under its `FetchMethod`. Strategies raise on network
or protocol errors; isolating failures per source is the caller's job
(see `fetchers.fetch_source`).
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone

import aiohttp

from config import Config
from models.source import Article, FetchMethod, Source

FETCHERS: dict[FetchMethod, type["Fetcher"]] = {}


def register(method: FetchMethod):
    """Class decorator adding a strategy to the FETCHERS registry."""

    def decorator(cls: type["Fetcher"]) -> type["Fetcher"]:
        cls.method = method
        FETCHERS[method] = cls
        return cls

    return decorator


class Fetcher(ABC):
    """One fetch strategy bound to an HTTP session and configuration."""

    method: FetchMethod

    def __init__(self, session: aiohttp.ClientSession, config: Config):
        self.session = session
        self.config = config

    @property
    def timeout(self) -> int:
        return self.config.fetch_timeout_seconds

    @abstractmethod
    async def fetch(self, source: Source) -> list[Article]:
        """Return normalized articles for a source (may be empty)."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
