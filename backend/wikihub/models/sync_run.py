from datetime import datetime
import enum

from sqlalchemy import Column, Integer, String, Text, JSON, Enum, DateTime, Index

from ..core.db import Base
from ..core.sources import Source


class SyncStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class SyncRun(Base):
    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(Enum(Source, name="wiki_source", values_callable=lambda e: [m.value for m in e]), nullable=False)
    strategy = Column(String, nullable=False)      # "full" | "incremental" | "changes"
    resume_from = Column(String, nullable=True)    # listing key the run started after
    checkpoint = Column(String, nullable=True)     # last processed listing key; None once exhausted
    changes_since = Column(DateTime, nullable=True)  # change-feed lower bound for "changes" runs
    page_limit = Column(Integer, nullable=True)
    pages_processed = Column(Integer, nullable=False, default=0)
    pages_created = Column(Integer, nullable=False, default=0)
    pages_updated = Column(Integer, nullable=False, default=0)
    pages_unchanged = Column(Integer, nullable=False, default=0)
    pages_diverged = Column(Integer, nullable=False, default=0)
    pages_failed = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)  # [{key, code, message}]
    status = Column(
        Enum(SyncStatus, name="sync_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SyncStatus.RUNNING,
    )
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_sync_runs_source_status", "source", "status"),
        Index("ix_sync_runs_completed_at", "completed_at"),
    )
