"""Transactional writes for sitemap records, categories and articles.

Every public ``save_*`` call runs in its own session and transaction.  Rows
that are independent of each other inside one call (a sitemap batch, a single
category, a single category link) are written inside a SAVEPOINT: when one of
them fails it is rolled back, logged and skipped while the surrounding
transaction still commits the rows that succeeded.  Anything else that fails
rolls the whole call back and surfaces as :class:`PersistenceError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Article, ArticleCategory, Category, SitemapRecord, generate_uuid7

from .categories import CategoryRecord
from .change_detector import ChangeDetector, content_hash
from .extractor import ArticleRecord
from .sitemap import SitemapEntry

LOGGER = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class PersistenceError(RuntimeError):
    """Raised when a transactional write fails and has been rolled back."""


@dataclass(slots=True)
class ArticleSaveResult:
    article_id: UUID
    written: bool
    created: bool
    linked_categories: int = 0


@dataclass(slots=True)
class SitemapBatchResult:
    saved: int = 0
    failed_batches: int = 0


@dataclass(slots=True)
class CategoryBatchResult:
    saved: int = 0
    skipped: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _insert_for(session: Session, model):
    dialect = session.get_bind().dialect.name
    try:
        insert_factory = _DIALECT_INSERTS[dialect]
    except KeyError as exc:
        raise PersistenceError(f"Upserts are not supported on dialect '{dialect}'") from exc
    return insert_factory(model)


def _batched(items: Sequence, size: int) -> Iterator[Sequence]:
    step = max(1, size)
    for start in range(0, len(items), step):
        yield items[start : start + step]


class UpsertEngine:
    """Sole writer for sitemap records, categories, articles and their links."""

    def __init__(
        self,
        session_factory,
        *,
        detector: ChangeDetector | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._detector = detector or ChangeDetector()
        self._clock = clock or _utcnow

    # Sitemap records -------------------------------------------------------------
    def save_sitemap_entries(
        self,
        entries: Sequence[SitemapEntry],
        website_id: int,
        status_code: int,
        *,
        batch_size: int = 100,
    ) -> SitemapBatchResult:
        """Upsert every entry of one sitemap, batch by batch, in one transaction."""

        result = SitemapBatchResult()
        try:
            with self._session_factory() as session:
                for batch in _batched(entries, batch_size):
                    try:
                        with session.begin_nested():
                            result.saved += self._upsert_sitemap_batch(session, batch, website_id, status_code)
                    except SQLAlchemyError as exc:
                        result.failed_batches += 1
                        LOGGER.error("Error inserting sitemap batch of %d URLs: %s", len(batch), exc)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to save sitemap entries: {exc}") from exc
        return result

    def _upsert_sitemap_batch(
        self,
        session: Session,
        batch: Sequence[SitemapEntry],
        website_id: int,
        status_code: int,
    ) -> int:
        checked_at = self._clock()
        # One statement may not touch the same key twice; the last sighting wins.
        unique_entries = {entry.location: entry for entry in batch}
        rows = [
            {
                "id": generate_uuid7(),
                "website_id": website_id,
                "article_url": entry.location,
                "last_mod": entry.last_modified,
                "is_valid": True,
                "status_code": status_code,
                "last_checked": checked_at,
            }
            for entry in unique_entries.values()
        ]
        if not rows:
            return 0

        statement = _insert_for(session, SitemapRecord).values(rows)
        statement = statement.on_conflict_do_update(
            index_elements=[SitemapRecord.website_id, SitemapRecord.article_url],
            set_={
                "last_checked": statement.excluded.last_checked,
                "status_code": statement.excluded.status_code,
                "is_valid": True,
            },
        )
        session.execute(statement)
        return len(rows)

    def iter_sitemap_urls(self, website_id: int) -> Iterator[str]:
        statement = (
            select(SitemapRecord.article_url)
            .where(SitemapRecord.website_id == website_id)
            .order_by(SitemapRecord.created_at, SitemapRecord.id)
        )
        try:
            with self._session_factory() as session:
                urls = list(session.execute(statement).scalars())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to read sitemap URLs: {exc}") from exc
        yield from urls

    def count_sitemap_urls(self, website_id: int) -> int:
        statement = select(func.count()).select_from(SitemapRecord).where(SitemapRecord.website_id == website_id)
        try:
            with self._session_factory() as session:
                return int(session.execute(statement).scalar_one())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to count sitemap URLs: {exc}") from exc

    # Categories ------------------------------------------------------------------
    def save_categories(self, categories: Iterable[CategoryRecord], website_id: int) -> CategoryBatchResult:
        """Upsert categories in the given order, linking each to an existing parent."""

        result = CategoryBatchResult()
        try:
            with self._session_factory() as session:
                for record in categories:
                    try:
                        with session.begin_nested():
                            self._upsert_category(session, record, website_id)
                        result.saved += 1
                    except SQLAlchemyError as exc:
                        result.skipped += 1
                        LOGGER.error("Error saving category %s: %s", record.url, exc)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to save categories: {exc}") from exc
        return result

    def _upsert_category(self, session: Session, record: CategoryRecord, website_id: int) -> UUID:
        parent_id: Optional[UUID] = None
        if record.parent_slug:
            parent_id = self.find_category_id(session, website_id, record.parent_slug)
            if parent_id is None:
                LOGGER.info("Parent '%s' of '%s' not stored yet; saving as root", record.parent_slug, record.slug)

        statement = _insert_for(session, Category).values(
            id=generate_uuid7(),
            website_id=website_id,
            name=record.name,
            slug=record.slug,
            url=record.url,
            parent_id=parent_id,
        )
        statement = statement.on_conflict_do_update(
            index_elements=[Category.website_id, Category.slug],
            set_={
                "name": statement.excluded.name,
                "url": statement.excluded.url,
                "parent_id": statement.excluded.parent_id,
            },
        ).returning(Category.id)
        return session.execute(statement).scalar_one()

    @staticmethod
    def find_category_id(session: Session, website_id: int, slug: str) -> Optional[UUID]:
        return session.execute(
            select(Category.id).where(Category.website_id == website_id, Category.slug == slug)
        ).scalar_one_or_none()

    # Articles --------------------------------------------------------------------
    def load_article(self, url: str) -> Optional[ArticleRecord]:
        try:
            with self._session_factory() as session:
                return self._load_article(session, url)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to load article {url}: {exc}") from exc

    def _load_article(self, session: Session, url: str) -> Optional[ArticleRecord]:
        stored = session.execute(select(Article).where(Article.url == url)).scalar_one_or_none()
        if stored is None:
            return None

        slugs = session.execute(
            select(Category.slug)
            .join(ArticleCategory, ArticleCategory.category_id == Category.id)
            .where(ArticleCategory.article_id == stored.id)
        ).scalars()
        return ArticleRecord(
            id=stored.id,
            url=stored.url,
            website_id=stored.website_id,
            title=stored.title or "",
            author=stored.author or "",
            content=stored.content or "",
            content_hash=stored.content_hash or "",
            publish_date=stored.publish_date,
            updated_date=stored.last_updated,
            category_slugs=list(slugs),
        )

    def save_article(self, article: ArticleRecord) -> ArticleSaveResult:
        """Write the article and its category links unless nothing changed."""

        article.content_hash = content_hash(article.content)
        try:
            with self._session_factory() as session:
                existing = self._load_article(session, article.url)
                resolved = self._resolve_categories(session, article)
                # Stored links only ever hold resolvable slugs.
                comparable = replace(article, category_slugs=list(resolved))
                if existing is not None and not self._detector.has_changed(existing, comparable):
                    article.id = existing.id
                    return ArticleSaveResult(article_id=existing.id, written=False, created=False)

                article_id = self._upsert_article(session, article)
                linked = self._replace_links(session, article_id, article, resolved)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to save article {article.url}: {exc}") from exc

        article.id = article_id
        return ArticleSaveResult(
            article_id=article_id,
            written=True,
            created=existing is None,
            linked_categories=linked,
        )

    def _upsert_article(self, session: Session, article: ArticleRecord) -> UUID:
        statement = _insert_for(session, Article).values(
            id=generate_uuid7(),
            website_id=article.website_id,
            title=article.title,
            content=article.content,
            content_hash=article.content_hash,
            author=article.author,
            publish_date=article.publish_date,
            last_updated=article.updated_date,
            url=article.url,
        )
        statement = statement.on_conflict_do_update(
            index_elements=[Article.url],
            set_={
                "title": statement.excluded.title,
                "content": statement.excluded.content,
                "content_hash": statement.excluded.content_hash,
                "author": statement.excluded.author,
                "publish_date": statement.excluded.publish_date,
                "last_updated": statement.excluded.last_updated,
            },
        ).returning(Article.id)
        return session.execute(statement).scalar_one()

    def _resolve_categories(self, session: Session, article: ArticleRecord) -> dict[str, UUID]:
        """Map each distinct slug of the article to a stored category id, in order."""

        resolved: dict[str, UUID] = {}
        names = dict(zip(article.category_slugs, article.categories))
        for slug in dict.fromkeys(article.category_slugs):
            category_id = self.find_category_id(session, article.website_id, slug)
            if category_id is None:
                LOGGER.warning(
                    "Category not found for slug '%s' (display name: '%s')",
                    slug,
                    names.get(slug, slug),
                )
                continue
            resolved[slug] = category_id
        return resolved

    def _replace_links(
        self,
        session: Session,
        article_id: UUID,
        article: ArticleRecord,
        resolved: dict[str, UUID],
    ) -> int:
        session.execute(delete(ArticleCategory).where(ArticleCategory.article_id == article_id))

        linked = 0
        for slug, category_id in resolved.items():
            statement = _insert_for(session, ArticleCategory).values(
                article_id=article_id,
                category_id=category_id,
            ).on_conflict_do_nothing()
            try:
                with session.begin_nested():
                    session.execute(statement)
                linked += 1
            except SQLAlchemyError as exc:
                LOGGER.error("Failed to link category %s to %s: %s", slug, article.url, exc)
        return linked
