import unittest

from newscrawler.change_detector import ChangeDetector, content_hash, same_categories
from newscrawler.extractor import ArticleRecord


def _article(**overrides) -> ArticleRecord:
    values = {
        "url": "https://blueprint.ng/happening-now-police-arraign-portable/",
        "website_id": 1,
        "title": "Police arraign Portable",
        "author": "Blueprint Reporter",
        "content": "First paragraph.\n\nSecond paragraph.",
        "category_slugs": ["news", "entertainment"],
    }
    values.update(overrides)
    article = ArticleRecord(**values)
    article.content_hash = content_hash(article.content)
    return article


class ContentHashTestCase(unittest.TestCase):
    def test_identical_content_hashes_equal(self) -> None:
        self.assertEqual(content_hash("same body"), content_hash("same body"))

    def test_different_content_hashes_differ(self) -> None:
        self.assertNotEqual(content_hash("body"), content_hash("body."))

    def test_hash_is_sha256_hex(self) -> None:
        self.assertEqual(
            content_hash(""),
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855",
        )


class SameCategoriesTestCase(unittest.TestCase):
    def test_order_and_duplicates_ignored(self) -> None:
        self.assertTrue(same_categories(["a", "b", "b"], ["b", "a"]))

    def test_differing_sets(self) -> None:
        self.assertFalse(same_categories(["a", "b"], ["a", "c"]))
        self.assertFalse(same_categories(["a"], ["a", "b"]))


class ChangeDetectorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.detector = ChangeDetector()

    def test_missing_existing_is_a_change(self) -> None:
        self.assertTrue(self.detector.has_changed(None, _article()))

    def test_identical_records_unchanged(self) -> None:
        self.assertFalse(self.detector.has_changed(_article(), _article()))

    def test_category_order_does_not_matter(self) -> None:
        reordered = _article(category_slugs=["entertainment", "news"])
        self.assertFalse(self.detector.has_changed(_article(), reordered))

    def test_category_set_difference_is_a_change(self) -> None:
        extra = _article(category_slugs=["news", "entertainment", "politics"])
        self.assertTrue(self.detector.has_changed(_article(), extra))

    def test_content_only_difference_is_a_change(self) -> None:
        edited = _article(content="First paragraph.\n\nSecond paragraph, corrected.")
        self.assertNotEqual(edited.content_hash, _article().content_hash)
        self.assertTrue(self.detector.has_changed(_article(), edited))

    def test_title_and_author_changes(self) -> None:
        self.assertTrue(self.detector.has_changed(_article(), _article(title="New headline")))
        self.assertTrue(self.detector.has_changed(_article(), _article(author="Someone Else")))

    def test_dates_alone_are_not_a_change(self) -> None:
        from datetime import datetime, timezone

        moved = _article(updated_date=datetime(2024, 1, 2, tzinfo=timezone.utc))
        self.assertFalse(self.detector.has_changed(_article(), moved))

    def test_fills_missing_candidate_hash(self) -> None:
        candidate = ArticleRecord(url="https://blueprint.ng/x/", website_id=1, title="T", content="body")
        self.detector.has_changed(None, candidate)
        self.assertEqual(candidate.content_hash, content_hash("body"))


if __name__ == "__main__":
    unittest.main()
