"""
Source adapter contract.

An adapter knows where a site publishes its feed, how to turn that feed into
NewsItems (newest first) and how to pull plain article text out of a page.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from bs4 import BeautifulSoup


@dataclass(frozen=True, slots=True)
class NewsItem:
    url: str
    title: str
    published_at: datetime


class SourceAdapter(ABC):
    def __init__(self, domain: str) -> None:
        self.domain = domain

    @property
    @abstractmethod
    def sitemap_url(self) -> str: ...

    @abstractmethod
    def parse_sitemap(self, raw: str) -> list[NewsItem]:
        """Canonical items ordered newest first."""

    @abstractmethod
    def extract_content(self, html: str) -> str:
        """Plain article text; empty string when nothing usable was found."""


def html_to_text(html: str, selector: str | None = None) -> str:
    """Visible text of `html` (or of the first node matching `selector`)."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    node = soup.select_one(selector) if selector else soup
    if node is None:
        return ""
    text = node.get_text(separator="\n")
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())
