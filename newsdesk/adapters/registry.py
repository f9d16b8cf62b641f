"""
Adapter registry: adapter key -> constructor.

Keys are validated against the configured sources at startup so a typo in a
source row fails the boot instead of silently skipping that source.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from newsdesk.adapters.base import SourceAdapter
from newsdesk.adapters.rss import RssAdapter
from newsdesk.adapters.sitemap import NewsSitemapAdapter
from newsdesk.core.errors import UnknownAdapterError

AdapterFactory = Callable[[str], SourceAdapter]


class AdapterRegistry:
    def __init__(self, factories: dict[str, AdapterFactory] | None = None) -> None:
        self._factories: dict[str, AdapterFactory] = dict(factories or {})

    def register(self, key: str, factory: AdapterFactory) -> None:
        self._factories[key] = factory

    def keys(self) -> list[str]:
        return sorted(self._factories)

    def create(self, key: str, domain: str) -> SourceAdapter:
        try:
            factory = self._factories[key]
        except KeyError:
            raise UnknownAdapterError(key) from None
        return factory(domain)

    def validate(self, keys: Iterable[str]) -> None:
        """Raise UnknownAdapterError for the first key without a registered adapter."""
        for key in keys:
            if key not in self._factories:
                raise UnknownAdapterError(key)


def default_registry() -> AdapterRegistry:
    return AdapterRegistry({"rss": RssAdapter, "news-sitemap": NewsSitemapAdapter})
