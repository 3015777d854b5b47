"""Category discovery from category sitemaps.

Category pages live under a ``category/`` path segment, e.g.
``https://blueprint.ng/category/news/politics/``.  The text after the marker
is the slug and its ``/`` separated segments describe the hierarchy: the
parent of ``news/politics`` is ``news``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional

from .config import WebsiteConfig
from .sitemap import SitemapEntry, SitemapSource, parse_sitemap

if TYPE_CHECKING:
    from .persistence import CategoryBatchResult, UpsertEngine

LOGGER = logging.getLogger(__name__)

CATEGORY_MARKER = "category/"
UNKNOWN_CATEGORY = ("Unknown", "unknown")


@dataclass(frozen=True, slots=True)
class CategoryRecord:
    name: str
    slug: str
    url: str
    parent_slug: Optional[str] = None

    @property
    def depth(self) -> int:
        return self.slug.count("/")


def category_slug_from_url(url: str, marker: str = CATEGORY_MARKER) -> Optional[str]:
    cleaned = (url or "").strip()
    if cleaned.endswith("/"):
        cleaned = cleaned[:-1]
    parts = cleaned.split(marker)
    if len(parts) != 2 or not parts[1]:
        return None
    return parts[1]


def category_name_from_slug(slug: str) -> str:
    return slug.replace("-", " ").title()


def extract_category_info(url: str) -> tuple[str, str]:
    """Return ``(name, slug)`` for a category page URL.

    URLs without the category marker fall back to ``("Unknown", "unknown")``.
    """

    slug = category_slug_from_url(url)
    if slug is None:
        LOGGER.warning("No '%s' segment in category URL %s; filing it as 'unknown'", CATEGORY_MARKER, url)
        return UNKNOWN_CATEGORY
    return category_name_from_slug(slug), slug


def parent_slug(slug: str) -> Optional[str]:
    segments = slug.split("/")
    if len(segments) == 1:
        return None
    return "/".join(segments[:-1])


class CategoryResolver:
    """Turns a category sitemap into category rows, parents first."""

    def __init__(
        self,
        website: WebsiteConfig,
        engine: "UpsertEngine",
        source: SitemapSource | None = None,
    ) -> None:
        self._website = website
        self._engine = engine
        self._source = source

    @property
    def hierarchical(self) -> bool:
        return self._website.category_structure == "hierarchical"

    def build_records(self, entries: Iterable[SitemapEntry]) -> list[CategoryRecord]:
        records: list[CategoryRecord] = []
        for entry in entries:
            name, slug = extract_category_info(entry.location)
            LOGGER.info("Processing category: %s (slug: %s)", name, slug)
            records.append(
                CategoryRecord(
                    name=name,
                    slug=slug,
                    url=entry.location,
                    parent_slug=parent_slug(slug) if self.hierarchical else None,
                )
            )
        # Stable sort keeps sitemap order among categories of equal depth.
        return sorted(records, key=lambda record: record.depth)

    def resolve_categories(self, sitemap_body: bytes | str) -> "CategoryBatchResult":
        return self.save_entries(parse_sitemap(sitemap_body))

    def save_entries(self, entries: list[SitemapEntry]) -> "CategoryBatchResult":
        LOGGER.info("Found %d categories in sitemap", len(entries))
        result = self._engine.save_categories(self.build_records(entries), self._website.id)
        LOGGER.info(
            "Processed categories for %s: %d saved, %d skipped",
            self._website.name,
            result.saved,
            result.skipped,
        )
        return result

    def run(self) -> "CategoryBatchResult":
        if self._source is None:
            raise RuntimeError("CategoryResolver.run requires a sitemap source")
        LOGGER.info("Starting category scraping for %s", self._website.name)
        document = self._source.load(self._website.category_sitemap_url)
        return self.save_entries(document.entries)
