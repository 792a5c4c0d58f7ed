"""RSS news corpus reader for the narrative job.

Feeds are read one after another; a broken feed is logged and skipped so
that one dead publisher never empties the corpus.
"""

import html
import re
import time
import xml.etree.ElementTree as ET
from email.utils import parsedate_to_datetime

from ratewatch.config import NewsSettings
from ratewatch.exceptions import DataIntegrityError, UpstreamError
from ratewatch.logging import get_logger
from ratewatch.models import NewsArticle
from ratewatch.sources.http import HttpClient

logger = get_logger(__name__)

SOURCE = "news"

_SUMMARY_LENGTH = 300
_TAG_RE = re.compile(r"<[^>]+>")


def _clean(text: str | None) -> str:
    if not text:
        return ""
    return " ".join(html.unescape(_TAG_RE.sub(" ", text)).split())


def _parse_pub_date(raw: str | None) -> float | None:
    if not raw:
        return None
    try:
        return parsedate_to_datetime(raw.strip()).timestamp()
    except (TypeError, ValueError):
        return None


def parse_feed(xml_text: str, feed_url: str) -> list[NewsArticle]:
    """Parse an RSS 2.0 document into articles (no relevance filtering).

    Raises:
        DataIntegrityError: The document is not well-formed XML or has no channel.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise DataIntegrityError(SOURCE, f"malformed feed {feed_url}") from exc

    channel = root.find("channel")
    if channel is None:
        raise DataIntegrityError(SOURCE, f"feed {feed_url} has no channel")
    feed_title = _clean(channel.findtext("title")) or "Crypto News"

    articles = []
    for item in channel.iter("item"):
        link = (item.findtext("link") or "").strip()
        published = _parse_pub_date(item.findtext("pubDate"))
        if not link or published is None:
            continue
        snippet = _clean(item.findtext("description"))
        articles.append(
            NewsArticle(
                url=link,
                title=_clean(item.findtext("title")),
                source=feed_title,
                published_at=published,
                summary=snippet[:_SUMMARY_LENGTH] + "..." if snippet else "",
            )
        )
    return articles


def is_relevant(article: NewsArticle, keywords: list[str], since: float) -> bool:
    """Recent and mentioning at least one tracked keyword."""
    if article.published_at <= since:
        return False
    content = f"{article.title} {article.summary}".lower()
    return any(keyword in content for keyword in keywords)


class NewsFeedReader:
    """Collects recent, relevant headlines from the configured RSS feeds."""

    def __init__(self, http: HttpClient, settings: NewsSettings) -> None:
        self._http = http
        self._settings = settings

    async def fetch_recent(self, now: float | None = None) -> list[NewsArticle]:
        now = now if now is not None else time.time()
        since = now - self._settings.lookback_hours * 3600
        keywords = [k.lower() for k in self._settings.keywords]

        articles: list[NewsArticle] = []
        for feed_url in self._settings.feeds:
            try:
                xml_text = await self._http.get_text(SOURCE, feed_url)
                items = parse_feed(xml_text, feed_url)
            except UpstreamError as exc:
                logger.warning("news_feed_failed", feed=feed_url, error=str(exc))
                continue
            relevant = [a for a in items if is_relevant(a, keywords, since)]
            logger.debug(
                "news_feed_fetched",
                feed=feed_url,
                items=len(items),
                relevant=len(relevant),
            )
            articles.extend(relevant)

        logger.info("news_scrape_complete", articles=len(articles))
        return articles
