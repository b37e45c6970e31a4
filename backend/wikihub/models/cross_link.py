from datetime import datetime
import enum

from sqlalchemy import Column, Integer, Float, Boolean, Enum, ForeignKey, DateTime, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship

from ..core.db import Base


class Relationship(str, enum.Enum):
    SAME_TOPIC = "same_topic"
    RELATED = "related"
    SEE_ALSO = "see_also"


class CrossLink(Base):
    __tablename__ = "cross_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_article_id = Column(Integer, ForeignKey("articles.id"), nullable=False)
    target_article_id = Column(Integer, ForeignKey("articles.id"), index=True, nullable=False)
    relationship_type = Column(
        "relationship",
        Enum(Relationship, name="cross_link_relationship", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    confidence = Column(Float, nullable=False, default=1.0)
    auto_detected = Column(Boolean, nullable=False, default=False)  # False = curated
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    source_article = relationship("Article", foreign_keys=[source_article_id])
    target_article = relationship("Article", foreign_keys=[target_article_id])

    __table_args__ = (
        UniqueConstraint("source_article_id", "target_article_id", name="uq_cross_links_pair"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_cross_links_confidence"),
    )
