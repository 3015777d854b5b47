"""Incremental sitemap and article crawler for news websites."""

from .categories import CategoryResolver
from .change_detector import ChangeDetector
from .extractor import ArticleExtractor, ArticleRecord
from .http_client import RetryingFetcher
from .persistence import UpsertEngine
from .scheduler import Scheduler
from .sitemap import SitemapEntry, SitemapSource

__all__ = [
    "ArticleExtractor",
    "ArticleRecord",
    "CategoryResolver",
    "ChangeDetector",
    "RetryingFetcher",
    "Scheduler",
    "SitemapEntry",
    "SitemapSource",
    "UpsertEngine",
]
