"""Tests for fetch strategies (pure parsing) and per-source failure isolation."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fetchers import SourceFetch, fetch_all_sources, fetch_source, filter_recent
from fetchers.base import FETCHERS, Fetcher
from fetchers.reddit import parse_listing, subreddit_for
from fetchers.rss import parse_feed
from fetchers.webpage import extract_page, html_to_text
from fetchers.youtube import YouTubeFetcher, parse_search, with_transcript
from models.source import TRANSCRIPT_MARKER, Article, FetchMethod, Source

RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">
<channel>
  <title>Local SEO Blog</title>
  <item>
    <title>GBP adds new service attributes</title>
    <link>https://example.com/gbp-attributes</link>
    <pubDate>Mon, 05 Oct 2026 10:00:00 GMT</pubDate>
    <description>Short summary</description>
    <content:encoded><![CDATA[<p>Full <b>article</b> body.</p><script>track()</script>]]></content:encoded>
  </item>
  <item>
    <title>Undated post</title>
    <link>https://example.com/undated</link>
    <description>&lt;p&gt;Only a summary&lt;/p&gt;</description>
  </item>
  <item>
    <description>No title, skipped</description>
  </item>
</channel>
</rss>"""


def _make_source(name: str = "Test Source", method: FetchMethod = FetchMethod.RSS, **fetch_config) -> Source:
    return Source(id=f"id-{name}", name=name, url="https://example.com/feed", fetch_method=method, fetch_config=fetch_config)


def _make_article(title: str, published_at: datetime | None = None) -> Article:
    return Article(
        url=f"https://example.com/{title}",
        title=title,
        content=title,
        fetched_at=datetime.now(timezone.utc),
        published_at=published_at,
    )


class TestRss:
    def test_parse_feed(self):
        articles = parse_feed(RSS_FEED, _make_source())
        assert [a.title for a in articles] == ["GBP adds new service attributes", "Undated post"]
        first = articles[0]
        assert first.url == "https://example.com/gbp-attributes"
        assert first.content == "Full article body."
        assert first.published_at == datetime(2026, 10, 5, 10, 0, tzinfo=timezone.utc)
        assert articles[1].published_at is None
        assert articles[1].content == "Only a summary"

    def test_garbage_feed_yields_nothing(self):
        assert parse_feed("not a feed", _make_source()) == []


class TestWebpage:
    def test_prefers_main_content(self):
        markup = (
            "<html><head><title>Changelog &amp; news</title><meta charset='utf-8'></head>"
            "<body><nav>Menu</nav><main><h1>Update</h1><p>New LSA rules.</p></main>"
            "<footer>Copyright</footer></body></html>"
        )
        [article] = extract_page(markup, _make_source())
        assert article.title == "Changelog & news"
        assert article.content == "Update\nNew LSA rules."
        assert article.url == "https://example.com/feed"

    def test_falls_back_to_body_text(self):
        [article] = extract_page("<body><div>Plain page</div><script>x()</script></body>", _make_source("Page"))
        assert article.content == "Plain page"
        assert article.title == "Page"

    def test_empty_page(self):
        assert extract_page("<html><head><title>t</title></head></html>", _make_source()) == []

    def test_html_to_text_plain_string(self):
        assert html_to_text("Fish &amp; chips") == "Fish & chips"


class TestReddit:
    def test_parse_listing(self):
        data = {"data": {"children": [
            {"data": {"title": "Rules", "stickied": True, "permalink": "/r/SEO/1"}},
            {"data": {"title": "GBP suspended", "selftext": "Help!", "permalink": "/r/SEO/2", "created_utc": 1790000000}},
            {"data": {"title": "Link post", "selftext": "", "permalink": "/r/SEO/3"}},
        ]}}
        articles = parse_listing(data)
        assert [a.title for a in articles] == ["GBP suspended", "Link post"]
        assert articles[0].content == "Help!"
        assert articles[0].url == "https://www.reddit.com/r/SEO/2"
        assert articles[0].published_at is not None
        assert articles[1].content == "Link post"

    def test_subreddit_from_config_or_url(self):
        assert subreddit_for(_make_source(method=FetchMethod.REDDIT, subreddit="LocalSEO")) == "LocalSEO"
        source = Source(name="r", url="https://www.reddit.com/r/GoogleAds/", fetch_method=FetchMethod.REDDIT)
        assert subreddit_for(source) == "GoogleAds"

    def test_malformed_payload(self):
        assert parse_listing(None) == []
        assert parse_listing({"data": {}}) == []


class TestYouTube:
    def test_parse_search(self):
        data = {"items": [
            {"id": {"videoId": "abc"}, "snippet": {"title": "LSA update", "description": "desc", "publishedAt": "2026-10-01T12:00:00Z"}},
            {"id": {}, "snippet": {"title": "Playlist"}},
        ]}
        [(video_id, title, description, published_at)] = parse_search(data)
        assert (video_id, title, description) == ("abc", "LSA update", "desc")
        assert published_at == datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

    def test_with_transcript(self):
        assert with_transcript("desc", "") == "desc"
        assert with_transcript("desc", "words") == f"desc\n\n{TRANSCRIPT_MARKER}\nwords"

    def test_missing_api_key_yields_nothing(self, config):
        source = _make_source(method=FetchMethod.YOUTUBE, channelId="UC123")
        fetcher = YouTubeFetcher(session=None, config=config)
        assert asyncio.run(fetcher.fetch(source)) == []


class TestFilterRecent:
    def test_drops_old_keeps_undated(self):
        now = datetime(2026, 10, 18, tzinfo=timezone.utc)
        articles = [
            _make_article("new", now - timedelta(days=3)),
            _make_article("old", now - timedelta(days=60)),
            _make_article("undated"),
            _make_article("naive", datetime(2026, 10, 10)),
        ]
        kept = filter_recent(articles, lookback_days=45, now=now)
        assert [a.title for a in kept] == ["new", "undated", "naive"]


class _FakeFetcher(Fetcher):
    """Behaves according to the source name."""

    async def fetch(self, source: Source) -> list[Article]:
        if source.name == "broken":
            raise ConnectionError("connection reset")
        if source.name == "slow":
            await asyncio.sleep(10)
        return [_make_article(f"{source.name}-{i}") for i in range(2)]


class TestIsolation:
    def test_one_failing_source_does_not_affect_others(self, config):
        sources = [_make_source("a"), _make_source("broken"), _make_source("c")]
        with patch.dict(FETCHERS, {FetchMethod.RSS: _FakeFetcher}):
            results = asyncio.run(fetch_all_sources(sources, config))
        assert [r.source.name for r in results] == ["a", "broken", "c"]
        assert [len(r.articles) for r in results] == [2, 0, 2]
        assert not results[1].ok
        assert "connection reset" in results[1].error

    def test_timeout_is_a_source_failure(self, config):
        config.source_timeout_seconds = 1
        with patch.dict(FETCHERS, {FetchMethod.RSS: _FakeFetcher}):
            results = asyncio.run(fetch_all_sources([_make_source("slow"), _make_source("fast")], config))
        assert results[0] == SourceFetch(results[0].source, [], "timeout")
        assert len(results[1].articles) == 2

    def test_fetch_source_never_raises(self, config):
        with patch.dict(FETCHERS, {FetchMethod.RSS: _FakeFetcher}):
            assert asyncio.run(fetch_source(_make_source("broken"), config)) == []

    def test_unknown_method(self, config):
        with patch.dict(FETCHERS, clear=True):
            [result] = asyncio.run(fetch_all_sources([_make_source()], config))
        assert result.articles == []
        assert not result.ok
