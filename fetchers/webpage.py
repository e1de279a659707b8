"""Generic webpage strategy.

Fetches one page and extracts its readable text: the <article> or <main>
region when the page has one, otherwise the whole body minus navigation
chrome. The page yields a single article (or none when no text is left).
"""

import html
import logging
import re
from html.parser import HTMLParser
from io import StringIO

from fetchers.base import Fetcher, register, utcnow
from fetchers.http import get_text
from models.source import Article, FetchMethod, Source

logger = logging.getLogger(__name__)

# Hard cap on extracted page text; the batcher truncates further per prompt
MAX_PAGE_CHARS = 50000


class _HTMLTextExtractor(HTMLParser):
    """Extract readable text from HTML, skipping non-content tags.

    Text inside <article>/<main> is also collected into a separate buffer
    so the caller can prefer the main content region.

    Usage:
        >>> parser = _HTMLTextExtractor()
        >>> parser.feed("<p>Hello <script>ignored</script> world</p>")
        >>> parser.get_text()
        '\\nHello  world\\n'
    """

    # Tags whose content should be completely ignored
    SKIP_TAGS = frozenset({
        "script", "style", "head", "noscript",
        "nav", "header", "footer", "aside", "form", "svg",
    })
    MAIN_TAGS = frozenset({"article", "main"})
    # Block-level tags get a line break so words don't run together
    BLOCK_TAGS = frozenset({"p", "div", "br", "li", "h1", "h2", "h3", "h4", "h5", "h6", "tr", "section"})

    def __init__(self):
        super().__init__()
        self._buffer = StringIO()
        self._main = StringIO()
        self._skip_depth = 0  # Nesting depth within skip tags
        self._main_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in self.SKIP_TAGS:
            self._skip_depth += 1
        elif tag in self.MAIN_TAGS:
            self._main_depth += 1
        elif tag in self.BLOCK_TAGS:
            self._write("\n")

    def handle_endtag(self, tag):
        if tag in self.SKIP_TAGS and self._skip_depth > 0:
            self._skip_depth -= 1
        elif tag in self.MAIN_TAGS and self._main_depth > 0:
            self._main_depth -= 1
        elif tag in self.BLOCK_TAGS:
            self._write("\n")

    def handle_data(self, data):
        self._write(data)

    def _write(self, data: str) -> None:
        # Only capture text when not inside a skip tag
        if self._skip_depth:
            return
        self._buffer.write(data)
        if self._main_depth:
            self._main.write(data)

    def get_text(self) -> str:
        """Return accumulated text content."""
        return self._buffer.getvalue()

    def get_main_text(self) -> str:
        return self._main.getvalue()


def _normalize(text: str) -> str:
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r"\s*\n\s*", "\n", text)
    return text.strip()


def html_to_text(markup: str) -> str:
    """Flatten an HTML fragment to text."""
    if "<" not in markup:
        return _normalize(html.unescape(markup))
    parser = _HTMLTextExtractor()
    parser.feed(markup)
    parser.close()
    return _normalize(parser.get_text())


def extract_page(markup: str, source: Source) -> list[Article]:
    """Extract the readable content of a page as a single article."""
    match = re.search(r"<title[^>]*>([^<]+)</title>", markup, re.IGNORECASE)
    title = html.unescape(match.group(1).strip()) if match else ""

    parser = _HTMLTextExtractor()
    parser.feed(markup)
    parser.close()
    content = _normalize(parser.get_main_text()) or _normalize(parser.get_text())
    if not content:
        return []
    if len(content) > MAX_PAGE_CHARS:
        content = content[:MAX_PAGE_CHARS]
    return [Article(
        url=source.url,
        title=title or source.name,
        content=content,
        fetched_at=utcnow(),
    )]


@register(FetchMethod.WEBPAGE)
class WebpageFetcher(Fetcher):
    async def fetch(self, source: Source) -> list[Article]:
        body = await get_text(self.session, source.url, self.timeout)
        if not body:
            return []
        return extract_page(body, source)
