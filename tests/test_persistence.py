import unittest
from datetime import datetime, timedelta, timezone
from itertools import count
from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from models import Article, ArticleCategory, Category, SitemapRecord
from newscrawler.categories import CategoryRecord
from newscrawler.db import build_engine, build_session_factory
from newscrawler.extractor import ArticleRecord
from newscrawler.persistence import PersistenceError, UpsertEngine
from newscrawler.sitemap import SitemapEntry

WEBSITE_ID = 1
ARTICLE_URL = "https://blueprint.ng/happening-now-police-arraign-portable/"


class _SteppingClock:
    def __init__(self) -> None:
        self._ticks = count()
        self._start = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self._start + timedelta(minutes=next(self._ticks))


def _article(**overrides) -> ArticleRecord:
    values = {
        "url": ARTICLE_URL,
        "website_id": WEBSITE_ID,
        "title": "Police arraign Portable",
        "author": "Ade Musa",
        "content": "The singer was arraigned.\n\nHe pleaded not guilty.",
        "publish_date": datetime(2024, 5, 14, 8, 30, tzinfo=timezone.utc),
        "categories": ["News", "Metro"],
        "category_slugs": ["news", "news/metro"],
    }
    values.update(overrides)
    return ArticleRecord(**values)


class _DatabaseTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = build_engine("sqlite://")
        self.session_factory = build_session_factory(self.db)
        self.clock = _SteppingClock()
        self.engine = UpsertEngine(self.session_factory, clock=self.clock)

    def tearDown(self) -> None:
        self.db.dispose()

    def _count(self, model) -> int:
        with self.session_factory() as session:
            return session.execute(select(func.count()).select_from(model)).scalar_one()


class SitemapPersistenceTestCase(_DatabaseTestCase):
    def _records(self) -> dict[str, SitemapRecord]:
        with self.session_factory() as session:
            rows = session.execute(select(SitemapRecord)).scalars().all()
            return {row.article_url: row for row in rows}

    def test_resighting_updates_last_checked_only(self) -> None:
        stored = SitemapEntry("https://blueprint.ng/already-stored/")
        self.engine.save_sitemap_entries([stored], WEBSITE_ID, 200)
        before = self._records()[stored.location]

        result = self.engine.save_sitemap_entries(
            [
                SitemapEntry("https://blueprint.ng/new-one/"),
                stored,
                SitemapEntry("https://blueprint.ng/new-two/"),
            ],
            WEBSITE_ID,
            200,
        )

        records = self._records()
        self.assertEqual(result.saved, 3)
        self.assertEqual(len(records), 3)
        after = records[stored.location]
        self.assertEqual(after.id, before.id)
        self.assertGreater(after.last_checked, before.last_checked)
        self.assertEqual(after.status_code, before.status_code)
        self.assertTrue(after.is_valid)

    def test_batches_and_duplicates(self) -> None:
        entries = [SitemapEntry(f"https://blueprint.ng/story-{index}/") for index in range(7)]
        entries.append(SitemapEntry("https://blueprint.ng/story-0/"))

        result = self.engine.save_sitemap_entries(entries, WEBSITE_ID, 200, batch_size=3)

        self.assertEqual(result.failed_batches, 0)
        self.assertEqual(self._count(SitemapRecord), 7)

    def test_same_url_on_two_websites_is_two_rows(self) -> None:
        entry = SitemapEntry("https://mirror.example/story/")
        self.engine.save_sitemap_entries([entry], 1, 200)
        self.engine.save_sitemap_entries([entry], 2, 200)
        self.assertEqual(self._count(SitemapRecord), 2)

    def test_failed_batch_is_skipped_and_others_commit(self) -> None:
        entries = [SitemapEntry(f"https://blueprint.ng/story-{index}/") for index in range(4)]
        original = self.engine._upsert_sitemap_batch
        calls = count()

        def flaky(session, batch, website_id, status_code):
            if next(calls) == 0:
                raise SQLAlchemyError("batch rejected")
            return original(session, batch, website_id, status_code)

        with patch.object(self.engine, "_upsert_sitemap_batch", side_effect=flaky):
            result = self.engine.save_sitemap_entries(entries, WEBSITE_ID, 200, batch_size=2)

        self.assertEqual(result.failed_batches, 1)
        self.assertEqual(result.saved, 2)
        self.assertEqual(
            sorted(self._records()),
            ["https://blueprint.ng/story-2/", "https://blueprint.ng/story-3/"],
        )

    def test_iter_sitemap_urls_filters_by_website(self) -> None:
        urls = [f"https://blueprint.ng/story-{index}/" for index in range(5)]
        self.engine.save_sitemap_entries([SitemapEntry(url) for url in urls], WEBSITE_ID, 200)
        self.engine.save_sitemap_entries([SitemapEntry("https://other.example/")], 2, 200)

        self.assertCountEqual(list(self.engine.iter_sitemap_urls(WEBSITE_ID)), urls)
        self.assertEqual(self.engine.count_sitemap_urls(WEBSITE_ID), 5)


class ArticlePersistenceTestCase(_DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.engine.save_categories(
            [
                CategoryRecord("News", "news", "https://blueprint.ng/category/news/"),
                CategoryRecord("News/Metro", "news/metro", "https://blueprint.ng/category/news/metro/", "news"),
                CategoryRecord("Sports", "sports", "https://blueprint.ng/category/sports/"),
            ],
            WEBSITE_ID,
        )

    def _linked_slugs(self) -> set[str]:
        stored = self.engine.load_article(ARTICLE_URL)
        return set(stored.category_slugs) if stored else set()

    def test_new_article_written_with_links(self) -> None:
        result = self.engine.save_article(_article())

        self.assertTrue(result.written)
        self.assertTrue(result.created)
        self.assertEqual(result.linked_categories, 2)
        self.assertEqual(self._linked_slugs(), {"news", "news/metro"})

        stored = self.engine.load_article(ARTICLE_URL)
        self.assertEqual(stored.id, result.article_id)
        self.assertEqual(stored.title, "Police arraign Portable")
        self.assertEqual(len(stored.content_hash), 64)

    def test_unchanged_article_is_not_rewritten(self) -> None:
        first = self.engine.save_article(_article())

        with patch.object(self.engine, "_replace_links") as replace_links, patch.object(
            self.engine, "_upsert_article"
        ) as upsert_article:
            second = self.engine.save_article(_article(category_slugs=["news/metro", "news"]))

        self.assertFalse(second.written)
        self.assertEqual(second.article_id, first.article_id)
        replace_links.assert_not_called()
        upsert_article.assert_not_called()
        self.assertEqual(self._count(Article), 1)
        self.assertEqual(self._count(ArticleCategory), 2)

    def test_changed_article_replaces_fields_and_links(self) -> None:
        first = self.engine.save_article(_article())

        second = self.engine.save_article(
            _article(
                content="Updated body.",
                categories=["Sports"],
                category_slugs=["sports"],
                updated_date=datetime(2024, 5, 15, tzinfo=timezone.utc),
            )
        )

        self.assertTrue(second.written)
        self.assertFalse(second.created)
        self.assertEqual(second.article_id, first.article_id)
        self.assertEqual(self._count(Article), 1)
        self.assertEqual(self._linked_slugs(), {"sports"})
        self.assertEqual(self.engine.load_article(ARTICLE_URL).content, "Updated body.")

    def test_unknown_category_slug_is_skipped(self) -> None:
        with self.assertLogs("newscrawler.persistence", level="WARNING"):
            result = self.engine.save_article(
                _article(categories=["News", "Lifestyle"], category_slugs=["news", "lifestyle"])
            )

        self.assertTrue(result.written)
        self.assertEqual(result.linked_categories, 1)
        self.assertEqual(self._linked_slugs(), {"news"})

    def test_unknown_slug_does_not_force_a_rewrite(self) -> None:
        lifestyle = _article(categories=["News", "Lifestyle"], category_slugs=["news", "lifestyle"])
        first = self.engine.save_article(lifestyle)

        with patch.object(self.engine, "_replace_links") as replace_links, patch.object(
            self.engine, "_upsert_article"
        ) as upsert_article:
            second = self.engine.save_article(
                _article(categories=["News", "Lifestyle"], category_slugs=["news", "lifestyle"])
            )

        self.assertTrue(first.written)
        self.assertFalse(second.written)
        self.assertEqual(second.article_id, first.article_id)
        replace_links.assert_not_called()
        upsert_article.assert_not_called()
        self.assertEqual(self._linked_slugs(), {"news"})

    def test_category_appearing_later_is_linked_on_next_save(self) -> None:
        self.engine.save_article(
            _article(categories=["News", "Lifestyle"], category_slugs=["news", "lifestyle"])
        )
        self.engine.save_categories(
            [CategoryRecord("Lifestyle", "lifestyle", "https://blueprint.ng/category/lifestyle/")],
            WEBSITE_ID,
        )

        result = self.engine.save_article(
            _article(categories=["News", "Lifestyle"], category_slugs=["news", "lifestyle"])
        )

        self.assertTrue(result.written)
        self.assertEqual(self._linked_slugs(), {"news", "lifestyle"})

    def test_relationships_expose_links_and_parent(self) -> None:
        self.engine.save_article(_article())

        with self.session_factory() as session:
            stored = session.execute(select(Article).where(Article.url == ARTICLE_URL)).scalar_one()
            self.assertEqual([category.slug for category in stored.categories], ["news", "news/metro"])
            metro = session.execute(select(Category).where(Category.slug == "news/metro")).scalar_one()
            self.assertEqual(metro.parent.slug, "news")
            self.assertIsNone(metro.parent.parent)

    def test_failure_rolls_back_whole_article(self) -> None:
        with patch.object(self.engine, "_replace_links", side_effect=SQLAlchemyError("link table gone")):
            with self.assertRaises(PersistenceError):
                self.engine.save_article(_article())

        self.assertIsNone(self.engine.load_article(ARTICLE_URL))
        self.assertEqual(self._count(Article), 0)

    def test_duplicate_slugs_link_once(self) -> None:
        result = self.engine.save_article(
            _article(categories=["News", "News"], category_slugs=["news", "news"])
        )
        self.assertEqual(result.linked_categories, 1)
        self.assertEqual(self._count(ArticleCategory), 1)


if __name__ == "__main__":
    unittest.main()
