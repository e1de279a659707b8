"""YouTube strategy: latest channel uploads plus their transcripts.

Video listings come from the YouTube Data API v3 search endpoint and need
YOUTUBE_API_KEY. Transcripts come from youtube-transcript-api, which is
synchronous, so it runs in a worker thread. A missing transcript is not
an error: the article keeps just the description.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any

from youtube_transcript_api import YouTubeTranscriptApi

from fetchers.base import Fetcher, register, utcnow
from fetchers.http import get_json
from models.source import TRANSCRIPT_MARKER, Article, FetchMethod, Source

logger = logging.getLogger(__name__)

SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
MAX_RESULTS = 10


def with_transcript(description: str, transcript: str) -> str:
    """Append a transcript after the marker line the batcher looks for."""
    if not transcript:
        return description
    return f"{description}\n\n{TRANSCRIPT_MARKER}\n{transcript}"


def _fetch_transcript(video_id: str) -> str:
    snippets = YouTubeTranscriptApi().fetch(video_id)
    return " ".join(snippet.text for snippet in snippets)


def _parse_published(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_search(data: Any) -> list[tuple[str, str, str, datetime | None]]:
    """Extract (video_id, title, description, published_at) from a search payload."""
    videos = []
    for item in (data or {}).get("items") or []:
        video_id = (item.get("id") or {}).get("videoId")
        snippet = item.get("snippet") or {}
        if not video_id or not snippet.get("title"):
            continue
        videos.append((
            video_id,
            snippet["title"],
            snippet.get("description", ""),
            _parse_published(snippet.get("publishedAt")),
        ))
    return videos


@register(FetchMethod.YOUTUBE)
class YouTubeFetcher(Fetcher):
    async def fetch(self, source: Source) -> list[Article]:
        if not self.config.youtube_api_key:
            logger.warning("YOUTUBE_API_KEY not set, skipping | source=%s", source.name)
            return []
        channel_id = (source.fetch_config or {}).get("channelId")
        if not channel_id:
            logger.warning("No channelId in fetch_config | source=%s", source.name)
            return []

        data = await get_json(
            self.session,
            SEARCH_URL,
            self.timeout,
            params={
                "key": self.config.youtube_api_key,
                "channelId": channel_id,
                "part": "snippet",
                "order": "date",
                "maxResults": MAX_RESULTS,
                "type": "video",
            },
        )
        articles = []
        for video_id, title, description, published_at in parse_search(data):
            transcript = await self._transcript(video_id)
            articles.append(Article(
                url=f"https://www.youtube.com/watch?v={video_id}",
                title=title,
                content=with_transcript(description, transcript),
                fetched_at=utcnow(),
                published_at=published_at,
            ))
        return articles

    async def _transcript(self, video_id: str) -> str:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(_fetch_transcript, video_id),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.debug("Transcript unavailable | video=%s error=%s", video_id, type(e).__name__)
            return ""
