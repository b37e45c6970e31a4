from datetime import datetime
import enum

from sqlalchemy import Column, Integer, String, Text, Enum, ForeignKey, DateTime, Index
from sqlalchemy.orm import relationship

from ..core.db import Base


class EditStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PendingEdit(Base):
    __tablename__ = "pending_edits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    article_id = Column(Integer, ForeignKey("articles.id"), index=True, nullable=False)
    suggested_content = Column(Text, nullable=False)  # full replacement HTML
    reason = Column(Text, nullable=True)
    submitter_email = Column(String, nullable=True)
    submitter_ip = Column(String, nullable=False)
    status = Column(
        Enum(EditStatus, name="edit_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=EditStatus.PENDING,
    )
    reviewer_note = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    article = relationship("Article")

    __table_args__ = (
        # Rate-limit lookups: pending count and trailing-window count per IP
        Index("ix_pending_edits_ip_status", "submitter_ip", "status"),
        Index("ix_pending_edits_ip_created", "submitter_ip", "created_at"),
    )
