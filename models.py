from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
import uuid_utils
import uuid


def generate_uuid7():
    """Generate UUIDv7 and convert to standard Python UUID"""
    uuid7_obj = uuid_utils.uuid7()
    return uuid.UUID(str(uuid7_obj))

Base = declarative_base()


class SitemapRecord(Base):
    __tablename__ = 'sitemaps'

    id = Column(Uuid, primary_key=True, default=generate_uuid7)
    website_id = Column(Integer, nullable=False, index=True)
    article_url = Column(String(2000), nullable=False)
    last_mod = Column(DateTime(timezone=True))
    is_valid = Column(Boolean, nullable=False, default=True)
    status_code = Column(Integer)
    last_checked = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('website_id', 'article_url', name='uq_sitemaps_website_url'),
        Index('ix_sitemaps_website_created', 'website_id', 'created_at'),
    )

    def __repr__(self):
        return (
            f"<SitemapRecord(website={self.website_id}, url='{self.article_url}', "
            f"status={self.status_code})>"
        )


class Category(Base):
    __tablename__ = 'categories'

    id = Column(Uuid, primary_key=True, default=generate_uuid7)
    website_id = Column(Integer, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(500), nullable=False)
    url = Column(String(2000))
    parent_id = Column(Uuid, ForeignKey('categories.id', ondelete='SET NULL'))
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    # Relationship
    parent = relationship("Category", remote_side=[id])

    __table_args__ = (
        UniqueConstraint('website_id', 'slug', name='uq_categories_website_slug'),
    )

    def __repr__(self):
        return f"<Category(id={self.id}, slug='{self.slug}', parent_id={self.parent_id})>"


class Article(Base):
    __tablename__ = 'articles'

    id = Column(Uuid, primary_key=True, default=generate_uuid7)
    website_id = Column(Integer, nullable=False, index=True)
    title = Column(String(500), nullable=False, index=True)
    content = Column(Text)
    content_hash = Column(String(64), index=True)
    author = Column(String(200))
    url = Column(String(2000), unique=True, nullable=False)
    publish_date = Column(DateTime(timezone=True), index=True)
    last_updated = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    # Relationships
    categories = relationship(
        "Category",
        secondary="article_categories",
        order_by="Category.slug",
        viewonly=True,
    )

    def __repr__(self):
        return (
            f"<Article(id={self.id}, website={self.website_id}, title='{(self.title or '')[:30]}...', "
            f"url='{self.url}')>"
        )


class ArticleCategory(Base):
    __tablename__ = 'article_categories'

    article_id = Column(Uuid, ForeignKey('articles.id', ondelete='CASCADE'), primary_key=True)
    category_id = Column(Uuid, ForeignKey('categories.id', ondelete='CASCADE'), primary_key=True)

    def __repr__(self):
        return f"<ArticleCategory(article_id={self.article_id}, category_id={self.category_id})>"
