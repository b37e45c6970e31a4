from datetime import datetime
import enum

from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, Integer, String, Text, JSON, Enum, DateTime, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from ..core.db import Base
from ..core.sources import Source

EMBEDDING_DIM = 768


class ArticleStatus(str, enum.Enum):
    SYNCED = "synced"          # matches upstream_hash
    DIVERGED = "diverged"      # upstream changed while local edits exist
    LOCAL_ONLY = "local_only"  # community edit applied, differs from upstream


class Article(Base):
    __tablename__ = "articles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(Enum(Source, name="wiki_source", values_callable=lambda e: [m.value for m in e]), nullable=False)
    slug = Column(String, nullable=False)
    title = Column(String, nullable=False)
    extracted_text = Column(Text, nullable=True)      # plain-text body for the FTS index
    rendered_html_key = Column(String, nullable=True)  # blob key of current HTML
    raw_content_key = Column(String, nullable=True)    # blob key of wikitext/markdown
    upstream_url = Column(String, nullable=True)
    upstream_hash = Column(String(64), nullable=True)  # sha256 of upstream HTML
    status = Column(
        Enum(ArticleStatus, name="article_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ArticleStatus.SYNCED,
    )
    license = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)
    embedding = Column(Vector(EMBEDDING_DIM), nullable=True)
    synced_at = Column(DateTime, nullable=True)
    embedded_at = Column(DateTime, nullable=True)
    cross_links_checked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    revisions = relationship(
        "Revision",
        back_populates="article",
        order_by="Revision.id",
    )

    __table_args__ = (
        UniqueConstraint("source", "slug", name="uq_articles_source_slug"),
        Index("ix_articles_source", "source"),
        Index("ix_articles_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Article {self.source.value}/{self.slug}>"
