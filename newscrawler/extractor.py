"""Article page extraction driven by per-site selector rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from bs4 import BeautifulSoup, Tag

from .categories import category_slug_from_url
from .change_detector import content_hash
from .config import ExtractionRules
from .http_client import HttpFetchError, RetryingFetcher
from .sitemap import parse_rfc3339

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ArticleRecord:
    url: str
    website_id: int
    title: str = ""
    author: str = ""
    content: str = ""
    content_hash: str = ""
    publish_date: Optional[datetime] = None
    updated_date: Optional[datetime] = None
    categories: list[str] = field(default_factory=list)
    category_slugs: list[str] = field(default_factory=list)
    id: Optional[UUID] = None


class ExtractionError(RuntimeError):
    """Raised when an article page cannot be fetched or parsed."""


class ArticleExtractor:
    """Fetch an article page and pull out its metadata record."""

    def __init__(self, fetcher: RetryingFetcher, rules: ExtractionRules, website_id: int) -> None:
        self._fetcher = fetcher
        self._rules = rules
        self._website_id = website_id

    def extract(self, url: str) -> ArticleRecord:
        LOGGER.info("Scraping article: %s", url)
        result = self._fetcher.fetch_once(url)
        if not result.ok:
            raise HttpFetchError(f"Unexpected status {result.status_code} for {url}", url=url)

        article = self.parse(url, result.text)
        LOGGER.info("Found article: %s with %d categories", article.title, len(article.categories))
        return article

    def parse(self, url: str, html: str) -> ArticleRecord:
        try:
            soup = BeautifulSoup(html, "html.parser")
        except Exception as exc:  # noqa: BLE001
            raise ExtractionError(f"failed to parse HTML for {url}: {exc}") from exc

        article = ArticleRecord(url=url, website_id=self._website_id)
        article.title = self._select_text(soup, self._rules.title)
        article.author = self._select_text(soup, self._rules.author)
        article.publish_date = self._select_datetime(soup, self._rules.published)
        article.updated_date = self._select_datetime(soup, self._rules.updated)
        self._extract_categories(soup, article)
        article.content = self._extract_content(soup)
        article.content_hash = content_hash(article.content)
        return article

    @staticmethod
    def _select_text(soup: BeautifulSoup, selector: str) -> str:
        return "".join(node.get_text() for node in soup.select(selector)).strip()

    @staticmethod
    def _select_datetime(soup: BeautifulSoup, selector: str) -> Optional[datetime]:
        node = soup.select_one(selector)
        if node is None:
            return None
        raw_value = node.get("datetime")
        if not isinstance(raw_value, str):
            return None
        return parse_rfc3339(raw_value)

    def _extract_categories(self, soup: BeautifulSoup, article: ArticleRecord) -> None:
        for anchor in soup.select(self._rules.categories):
            if not isinstance(anchor, Tag):
                continue
            href = anchor.get("href")
            if not isinstance(href, str):
                continue
            slug = category_slug_from_url(href, self._rules.category_marker)
            if slug is None:
                continue
            name = anchor.get_text(strip=True)
            article.category_slugs.append(slug)
            article.categories.append(name)
            LOGGER.debug("Found category: %s (slug: %s)", name, slug)

    def _extract_content(self, soup: BeautifulSoup) -> str:
        paragraphs = [node.get_text().strip() for node in soup.select(self._rules.content)]
        return "\n\n".join(paragraphs).strip()
