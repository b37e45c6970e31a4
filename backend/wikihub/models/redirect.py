from datetime import datetime

from sqlalchemy import Column, Integer, String, Enum, DateTime, UniqueConstraint

from ..core.db import Base
from ..core.sources import Source


class Redirect(Base):
    __tablename__ = "wiki_redirects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(Enum(Source, name="wiki_source", values_callable=lambda e: [m.value for m in e]), nullable=False)
    from_slug = Column(String, nullable=False)
    to_slug = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("source", "from_slug", name="uq_wiki_redirects_source_from"),
    )
