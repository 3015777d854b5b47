"""Sitemap fetching and parsing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional
import xml.etree.ElementTree as ET

from .http_client import HttpFetchError, RetryingFetcher

LOGGER = logging.getLogger(__name__)


class SitemapParseError(RuntimeError):
    """Raised when a sitemap document is not a readable ``urlset``."""


@dataclass(frozen=True, slots=True)
class SitemapEntry:
    location: str
    last_modified: Optional[datetime] = None


@dataclass(slots=True)
class SitemapDocument:
    url: str
    status_code: int
    entries: list[SitemapEntry]


def _strip_namespace(tag: str) -> str:
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def parse_rfc3339(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = value.strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        LOGGER.debug("Failed to parse timestamp '%s'", text)
        return None
    if parsed.tzinfo is None:
        LOGGER.debug("Timestamp '%s' has no UTC offset", text)
        return None
    return parsed


def parse_sitemap(data: bytes | str) -> list[SitemapEntry]:
    """Return the ``<url>`` entries of a sitemap in document order."""

    return list(iter_sitemap_entries(data))


def iter_sitemap_entries(data: bytes | str) -> Iterator[SitemapEntry]:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise SitemapParseError(f"failed to parse XML: {exc}") from exc

    if _strip_namespace(root.tag) != "urlset":
        raise SitemapParseError(f"expected a urlset document, found <{_strip_namespace(root.tag)}>")

    for element in root:
        if _strip_namespace(element.tag) != "url":
            continue

        location: Optional[str] = None
        lastmod_raw: Optional[str] = None
        for child in element:
            child_tag = _strip_namespace(child.tag)
            if child_tag == "loc" and child.text:
                location = child.text.strip()
            elif child_tag == "lastmod" and child.text:
                lastmod_raw = child.text.strip()

        if not location:
            LOGGER.debug("Skipping sitemap <url> without <loc>")
            continue

        yield SitemapEntry(location=location, last_modified=parse_rfc3339(lastmod_raw))


class SitemapSource:
    """Fetches sitemap documents and turns them into entries."""

    def __init__(self, fetcher: RetryingFetcher) -> None:
        self._fetcher = fetcher

    def load(self, sitemap_url: str) -> SitemapDocument:
        LOGGER.info("Crawling sitemap %s", sitemap_url)
        result = self._fetcher.fetch(sitemap_url)
        if not result.ok:
            raise HttpFetchError(
                f"Unexpected status {result.status_code} for {sitemap_url}",
                url=sitemap_url,
            )
        entries = parse_sitemap(result.content)
        LOGGER.info("Found %d entries in %s", len(entries), sitemap_url)
        return SitemapDocument(url=sitemap_url, status_code=result.status_code, entries=entries)
