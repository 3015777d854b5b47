"""Content fingerprinting and change detection for extracted articles."""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from .extractor import ArticleRecord

LOGGER = logging.getLogger(__name__)


def content_hash(content: str) -> str:
    """Return the hex SHA-256 digest of an article body."""

    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def same_categories(first: Iterable[str], second: Iterable[str]) -> bool:
    """Compare category slugs as sets: order and repeats do not matter."""

    return set(first) == set(second)


class ChangeDetector:
    """Decides whether a freshly extracted article needs to be written."""

    def has_changed(self, existing: Optional["ArticleRecord"], candidate: "ArticleRecord") -> bool:
        if not candidate.content_hash:
            candidate.content_hash = content_hash(candidate.content)

        if existing is None:
            LOGGER.debug("No stored version of %s; treating as new", candidate.url)
            return True

        changes = {
            "title": existing.title != candidate.title,
            "content": existing.content_hash != candidate.content_hash,
            "author": existing.author != candidate.author,
            "categories": not same_categories(existing.category_slugs, candidate.category_slugs),
        }
        changed_fields = [name for name, changed in changes.items() if changed]
        if changed_fields:
            LOGGER.info(
                "Changes detected in article %s: %s",
                candidate.url,
                ", ".join(changed_fields),
            )
            return True

        LOGGER.info("No changes detected in article %s", candidate.url)
        return False
