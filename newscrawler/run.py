"""Command-line entrypoint for the sitemap, category and article stages."""

from __future__ import annotations

import argparse
import dataclasses
import logging
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError

from .categories import CategoryResolver
from .config import CrawlConfig, DatabaseConfig
from .db import build_engine, build_session_factory
from .extractor import ArticleExtractor, ExtractionError
from .http_client import HttpFetchError, RetryingFetcher
from .persistence import PersistenceError, UpsertEngine
from .scheduler import Scheduler
from .sitemap import SitemapParseError, SitemapSource
from .sites import SiteDefinition, get_site_definition, list_sites

LOGGER = logging.getLogger(__name__)

_EXIT_CONNECTION_FAILED = 2


def build_arg_parser() -> argparse.ArgumentParser:
    available_sites = list_sites()
    if not available_sites:
        raise RuntimeError("No sites registered for crawling")

    parser = argparse.ArgumentParser(description="Crawl news sitemaps and articles into a relational store")
    parser.add_argument(
        "command",
        choices=("sitemaps", "categories", "articles", "hash-check"),
        help="Stage to run",
    )
    parser.add_argument("url", nargs="?", help="Article URL (hash-check only)")
    parser.add_argument(
        "--site",
        choices=available_sites,
        default=available_sites[0],
        help="Key of the news site to crawl",
    )
    parser.add_argument(
        "--db-url",
        type=str,
        default=None,
        help="SQLAlchemy database URL (defaults to DATABASE_URL or DB_* environment variables)",
    )
    parser.add_argument("--max-workers", type=int, default=None, help="Number of concurrent workers")
    parser.add_argument("--batch-size", type=int, default=None, help="Sitemap batch and article queue size")
    parser.add_argument("--retries", type=int, default=None, help="Attempts per sitemap download")
    parser.add_argument("--retry-delay", type=float, default=None, help="Seconds between download attempts")
    parser.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds")
    parser.add_argument(
        "--article-delay",
        type=float,
        default=None,
        help="Seconds each article worker waits after a unit",
    )
    parser.add_argument("--start-index", type=int, default=None, help="First post sitemap index to crawl")
    parser.add_argument("--end-index", type=int, default=None, help="Last post sitemap index to crawl")
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    return parser


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_config(args: argparse.Namespace, site: SiteDefinition) -> CrawlConfig:
    database = DatabaseConfig.from_env()
    if args.db_url:
        database.override_url = args.db_url
    config = site.build_config(database)

    if args.max_workers is not None:
        if args.max_workers < 1:
            raise ValueError("--max-workers must be at least 1")
        config.rate_limit.max_workers = args.max_workers
    if args.batch_size is not None:
        if args.batch_size < 1:
            raise ValueError("--batch-size must be at least 1")
        config.rate_limit.batch_size = args.batch_size
    if args.retries is not None:
        config.retry.max_attempts = max(1, args.retries)
    if args.retry_delay is not None:
        config.retry.delay = max(0.0, args.retry_delay)
    if args.timeout is not None and args.timeout > 0:
        config.timeout.request_timeout = args.timeout
    if args.article_delay is not None:
        config.rate_limit.article_delay = max(0.0, args.article_delay)

    website = config.website
    if args.start_index is not None:
        website = dataclasses.replace(website, start_index=args.start_index)
    if args.end_index is not None:
        website = dataclasses.replace(website, end_index=args.end_index)
    if website.start_index > website.end_index:
        raise ValueError("--start-index must not exceed --end-index")
    config.website = website
    return config


def _run_sitemaps(config: CrawlConfig, fetcher: RetryingFetcher, engine: UpsertEngine) -> int:
    scheduler = Scheduler(config)
    stats = scheduler.run_sitemaps(config.website.sitemap_urls(), SitemapSource(fetcher), engine)
    return 0 if stats.failed == 0 else 1


def _run_categories(config: CrawlConfig, fetcher: RetryingFetcher, engine: UpsertEngine) -> int:
    resolver = CategoryResolver(config.website, engine, SitemapSource(fetcher))
    try:
        result = resolver.run()
    except (HttpFetchError, SitemapParseError, PersistenceError) as exc:
        LOGGER.error("Category scraping failed for %s: %s", config.website.name, exc)
        return 1
    return 0 if result.skipped == 0 else 1


def _run_articles(config: CrawlConfig, fetcher: RetryingFetcher, engine: UpsertEngine) -> int:
    website = config.website
    try:
        total = engine.count_sitemap_urls(website.id)
    except PersistenceError as exc:
        LOGGER.error("Could not read sitemap URLs for %s: %s", website.name, exc)
        return 1
    LOGGER.info("Found %d articles to process", total)

    extractor = ArticleExtractor(fetcher, website.rules, website.id)
    scheduler = Scheduler(config)
    stats = scheduler.run_articles(engine.iter_sitemap_urls(website.id), extractor, engine, total=total)
    return 0 if stats.failed == 0 else 1


def _run_hash_check(config: CrawlConfig, fetcher: RetryingFetcher, url: str) -> int:
    extractor = ArticleExtractor(fetcher, config.website.rules, config.website.id)
    try:
        first = extractor.extract(url)
        second = extractor.extract(url)
    except (HttpFetchError, ExtractionError) as exc:
        LOGGER.error("Hash check failed for %s: %s", url, exc)
        return 1

    print(f"Hash1: {first.content_hash}")
    print(f"Hash2: {second.content_hash}")
    print(f"Hashes match: {first.content_hash == second.content_hash}")
    return 0 if first.content_hash == second.content_hash else 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        site = get_site_definition(args.site)
    except KeyError as exc:
        parser.error(str(exc))

    try:
        config = build_config(args, site)
    except ValueError as exc:
        parser.error(str(exc))

    if args.command == "hash-check":
        if not args.url:
            parser.error("hash-check requires an article URL")
        with RetryingFetcher(config) as fetcher:
            return _run_hash_check(config, fetcher, args.url)

    engine = build_engine(config.database.url())
    try:
        with engine.connect():
            pass
        session_factory = build_session_factory(engine)
    except SQLAlchemyError as exc:
        LOGGER.critical("Could not connect to database: %s", exc)
        return _EXIT_CONNECTION_FAILED
    LOGGER.info("Successfully connected to database")

    upsert_engine = UpsertEngine(session_factory)
    try:
        with RetryingFetcher(config) as fetcher:
            if args.command == "sitemaps":
                return _run_sitemaps(config, fetcher, upsert_engine)
            if args.command == "categories":
                return _run_categories(config, fetcher, upsert_engine)
            return _run_articles(config, fetcher, upsert_engine)
    finally:
        engine.dispose()


__all__ = ["build_arg_parser", "build_config", "configure_logging", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
