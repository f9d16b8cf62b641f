"""Generic adapter for Google News sitemaps (sitemap-news.xml)."""

from __future__ import annotations

import xml.etree.ElementTree as et
from datetime import UTC, datetime

from newsdesk.adapters.base import NewsItem, SourceAdapter, html_to_text

_NS = {
    "sm": "http://www.sitemaps.org/schemas/sitemap/0.9",
    "news": "http://www.google.com/schemas/sitemap-news/0.9",
}


def _parse_time(value: str) -> datetime | None:
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


class NewsSitemapAdapter(SourceAdapter):
    sitemap_path = "/sitemap-news.xml"
    content_selector = "article"

    @property
    def sitemap_url(self) -> str:
        return f"https://{self.domain}{self.sitemap_path}"

    def parse_sitemap(self, raw: str) -> list[NewsItem]:
        try:
            root = et.fromstring(raw)
        except et.ParseError:
            return []

        items: list[NewsItem] = []
        for url in root.findall("sm:url", _NS):
            loc = (url.findtext("sm:loc", default="", namespaces=_NS) or "").strip()
            published_raw = url.findtext("news:news/news:publication_date", namespaces=_NS)
            if not published_raw:
                published_raw = url.findtext("sm:lastmod", default="", namespaces=_NS)
            published_at = _parse_time(published_raw or "")
            if not loc or published_at is None:
                continue
            title = url.findtext("news:news/news:title", default="", namespaces=_NS) or ""
            items.append(NewsItem(url=loc, title=title.strip(), published_at=published_at))

        items.sort(key=lambda i: i.published_at, reverse=True)
        return items

    def extract_content(self, html: str) -> str:
        return html_to_text(html, self.content_selector)
