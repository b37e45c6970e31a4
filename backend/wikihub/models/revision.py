"""
Append-only revision log.

A row is written whenever an article's rendered content changes, from a
sync or from an approved community edit. Rows are never updated or deleted;
``rendered_html_key`` keeps the superseded HTML reachable.
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime
from sqlalchemy.orm import relationship

from ..core.db import Base


class Revision(Base):
    __tablename__ = "revisions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    article_id = Column(Integer, ForeignKey("articles.id"), index=True, nullable=False)
    content_hash = Column(String(64), nullable=False)
    rendered_html_key = Column(String, nullable=True)
    raw_content_key = Column(String, nullable=True)
    upstream_revision_id = Column(String, nullable=True)
    editor = Column(String, nullable=False)   # submitter e-mail, "anonymous" or "sync:<source>"
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    article = relationship("Article", back_populates="revisions")
