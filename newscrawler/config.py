"""Configuration values shared by every crawl stage."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Iterator, Mapping, Optional
from urllib.parse import quote

DEFAULT_USER_AGENT = "news-sitemap-crawler/1.0"


@dataclass(slots=True)
class RetryConfig:
    max_attempts: int = 3
    delay: float = 5.0


@dataclass(slots=True)
class TimeoutConfig:
    request_timeout: float = 90.0


@dataclass(slots=True)
class RateLimitConfig:
    max_workers: int = 3
    batch_size: int = 100
    article_delay: float = 5.0
    progress_interval: float = 30.0


@dataclass(slots=True)
class DatabaseConfig:
    """Connection parameters for the relational store."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: Optional[str] = None
    dbname: str = "ng_news"
    driver: str = "postgresql"
    override_url: Optional[str] = None

    def url(self) -> str:
        if self.override_url:
            return self.override_url
        credentials = quote(self.user, safe="")
        if self.password:
            credentials = f"{credentials}:{quote(self.password, safe='')}"
        return f"{self.driver}://{credentials}@{self.host}:{self.port}/{self.dbname}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "DatabaseConfig":
        env = os.environ if environ is None else environ
        defaults = cls()

        port_raw = (env.get("DB_PORT") or "").strip()
        port = defaults.port
        if port_raw:
            try:
                port = int(port_raw)
            except ValueError as exc:
                raise ValueError(f"Invalid DB_PORT {port_raw!r}") from exc

        return cls(
            host=(env.get("DB_HOST") or defaults.host).strip(),
            port=port,
            user=(env.get("DB_USER") or defaults.user).strip(),
            password=env.get("DB_PASSWORD") or None,
            dbname=(env.get("DB_NAME") or defaults.dbname).strip(),
            override_url=(env.get("DATABASE_URL") or "").strip() or None,
        )


@dataclass(slots=True, frozen=True)
class ExtractionRules:
    """CSS selectors locating each article field on a site's pages."""

    title: str
    categories: str
    author: str
    published: str
    updated: str
    content: str
    category_marker: str = "/category/"


@dataclass(slots=True, frozen=True)
class WebsiteConfig:
    id: int
    name: str
    base_url: str
    sitemap_format: str
    start_index: int
    end_index: int
    category_sitemap_url: str
    rules: ExtractionRules
    category_structure: str = "hierarchical"
    first_sitemap_url: Optional[str] = None
    first_sitemap_index: int = 1

    def sitemap_urls(self) -> list[str]:
        return list(self._iter_sitemap_urls())

    def _iter_sitemap_urls(self) -> Iterator[str]:
        for index in range(self.start_index, self.end_index + 1):
            if index == self.first_sitemap_index and self.first_sitemap_url:
                yield self.first_sitemap_url
                continue
            yield self.sitemap_format.format(index=index)


@dataclass(slots=True)
class CrawlConfig:
    website: WebsiteConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    user_agent: str = DEFAULT_USER_AGENT
