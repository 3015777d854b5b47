"""Site registry for the news websites the crawler knows about."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

from .config import (
    CrawlConfig,
    DatabaseConfig,
    ExtractionRules,
    RateLimitConfig,
    RetryConfig,
    TimeoutConfig,
    WebsiteConfig,
)

_WORDPRESS_RULES = ExtractionRules(
    title="h1.entry-title",
    categories="div.cat-links a",
    author="span.author.vcard a",
    published="time.entry-date.published",
    updated="time.updated",
    content="div.entry-content > p",
)


@dataclass(slots=True)
class SiteDefinition:
    """Static crawl settings for a supported news site."""

    key: str
    website: WebsiteConfig
    user_agent: str
    retry: RetryConfig = field(default_factory=RetryConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    def build_config(self, database: DatabaseConfig | None = None) -> CrawlConfig:
        """Return a fresh crawl configuration seeded from this definition."""

        return CrawlConfig(
            website=self.website,
            database=database or DatabaseConfig(),
            retry=RetryConfig(self.retry.max_attempts, self.retry.delay),
            timeout=TimeoutConfig(self.timeout.request_timeout),
            rate_limit=RateLimitConfig(
                max_workers=self.rate_limit.max_workers,
                batch_size=self.rate_limit.batch_size,
                article_delay=self.rate_limit.article_delay,
                progress_interval=self.rate_limit.progress_interval,
            ),
            user_agent=self.user_agent,
        )


_SITE_REGISTRY: Dict[str, SiteDefinition] = {
    "blueprint": SiteDefinition(
        key="blueprint",
        website=WebsiteConfig(
            id=1,
            name="Blue Print",
            base_url="https://blueprint.ng",
            sitemap_format="https://blueprint.ng/post-sitemap{index}.xml",
            first_sitemap_url="https://blueprint.ng/post-sitemap.xml",
            start_index=1,
            end_index=221,
            category_sitemap_url="https://blueprint.ng/category-sitemap.xml",
            category_structure="hierarchical",
            rules=_WORDPRESS_RULES,
        ),
        user_agent="blueprint-crawler/1.0",
        retry=RetryConfig(max_attempts=3, delay=5.0),
        timeout=TimeoutConfig(request_timeout=90.0),
        rate_limit=RateLimitConfig(max_workers=3, batch_size=100, article_delay=5.0),
    ),
}


def get_site_definition(key: str) -> SiteDefinition:
    """Return the registered site definition for the given key."""

    try:
        return _SITE_REGISTRY[key]
    except KeyError as exc:
        raise KeyError(f"Unknown site '{key}'") from exc


def list_sites() -> list[str]:
    """Return a sorted list of supported site keys."""

    return sorted(_SITE_REGISTRY)
