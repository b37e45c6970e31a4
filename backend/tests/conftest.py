"""
Shared fixtures: in-memory SQLite, fakeredis and a filesystem blob store
under tmp_path. Settings are read at import time, so the environment is
filled in before anything from wikihub is imported.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("ENV", "dev")

from typing import Optional  # noqa: E402

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from wikihub.core.db import Base  # noqa: E402
from wikihub.core.sources import Source  # noqa: E402
from wikihub.models import article, cross_link, pending_edit, redirect, revision, sync_run  # noqa: E402,F401
from wikihub.services.blob_store import FilesystemBlobStore  # noqa: E402
from wikihub.services.caching import ArticleCache  # noqa: E402
from wikihub.services.content import create_article  # noqa: E402
from wikihub.services.rate_limit import SlidingWindowLimiter  # noqa: E402

from tests.fixtures.wiki_fixtures import FailingBlobStore  # noqa: E402


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def blob_store(tmp_path):
    return FilesystemBlobStore(tmp_path / "blobs")


@pytest.fixture
def cache(redis_client, blob_store):
    return ArticleCache(redis_client, blob_store, ttl=60)


@pytest.fixture
def failing_cache(redis_client, tmp_path):
    return ArticleCache(redis_client, FailingBlobStore(tmp_path / "blobs"), ttl=60)


@pytest.fixture
def limiter(redis_client):
    return SlidingWindowLimiter(redis_client, "search", limit=1000, window_seconds=60)


@pytest.fixture(autouse=True)
def sent_notifications(monkeypatch):
    """Edit events are recorded instead of going to a Celery broker."""
    calls = []
    monkeypatch.setattr(
        "wikihub.services.moderation.notify_edit_event",
        lambda kind, edit_id: calls.append((kind, edit_id)),
    )
    return calls


@pytest.fixture
def make_article(db, cache):
    """Create an article through the content store."""

    def _make(
        source: Source = Source.OSRS,
        slug: str = "Abyssal_whip",
        title: Optional[str] = None,
        html: Optional[str] = None,
        **kwargs,
    ):
        title = title or slug.replace("_", " ")
        html = html or f"<p>{title} is an article.</p>"
        return create_article(db, source, slug, title, html, editor="test", cache=cache, **kwargs)

    return _make
