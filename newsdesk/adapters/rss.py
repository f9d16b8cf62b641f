"""Generic RSS/Atom adapter for sites that expose a standard feed."""

from __future__ import annotations

from datetime import UTC, datetime

import feedparser

from newsdesk.adapters.base import NewsItem, SourceAdapter, html_to_text


class RssAdapter(SourceAdapter):
    feed_path = "/rss"
    content_selector = "article"

    @property
    def sitemap_url(self) -> str:
        return f"https://{self.domain}{self.feed_path}"

    def parse_sitemap(self, raw: str) -> list[NewsItem]:
        feed = feedparser.parse(raw)
        items: list[NewsItem] = []
        for entry in feed.entries:
            url = entry.get("link", "")
            published = entry.get("published_parsed") or entry.get("updated_parsed")
            if not url or not published:
                continue
            items.append(
                NewsItem(
                    url=url,
                    title=entry.get("title", "").strip(),
                    published_at=datetime(*published[:6], tzinfo=UTC),
                )
            )
        items.sort(key=lambda i: i.published_at, reverse=True)
        return items

    def extract_content(self, html: str) -> str:
        return html_to_text(html, self.content_selector) or html_to_text(html, "main")
