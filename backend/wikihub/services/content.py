"""
Content store: the only writer of articles, redirects and revisions.

Any change to an article's rendered HTML goes through ``content_mutation``
so the blob write, cache invalidation, revision row and article update
land together or not at all.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.errors import DuplicateArticleError, NotFoundError
from ..core.sources import SOURCES, Source, upstream_url
from ..models.article import Article, ArticleStatus
from ..models.pending_edit import EditStatus, PendingEdit
from ..models.redirect import Redirect
from ..models.revision import Revision
from ..models.sync_run import SyncRun, SyncStatus
from .blob_store import BlobStore, BlobStoreError, html_key, put_required, raw_key
from .caching import ArticleCache, get_article_cache
from .search import search as run_search
from .text import extract_text, hash_content

logger = logging.getLogger(__name__)

ORDER_TITLE = "title"
ORDER_RECENT = "recent"

# upsert_synced_article outcomes
CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
DIVERGED = "diverged"


# --- content mutation ---------------------------------------------------------


class ContentMutation:
    """Staged content changes; only usable inside ``content_mutation``."""

    def __init__(self, db: Session, blob_store: BlobStore, cache: ArticleCache) -> None:
        self.db = db
        self.blob_store = blob_store
        self.cache = cache
        self.written_keys: List[str] = []
        # Keys another writer put first; ours only by reference
        self.reused: List[Tuple[str, str]] = []
        self.rendered: List[Tuple[Source, str, str]] = []

    def _put(self, key: str, text: str) -> None:
        # Content-addressed: an existing key already holds these exact bytes
        if self.blob_store.exists(key):
            self.reused.append((key, text))
            return
        put_required(self.blob_store, key, text.encode("utf-8"))
        self.written_keys.append(key)

    def replace_html(
        self,
        article: Article,
        html: str,
        editor: str,
        comment: Optional[str] = None,
        raw: Optional[str] = None,
        upstream_revision_id: Optional[str] = None,
    ) -> Revision:
        content_hash = hash_content(html)
        rendered_key = html_key(article.source, article.slug, content_hash)
        self._put(rendered_key, html)

        source_key = article.raw_content_key
        if raw is not None:
            source_key = raw_key(article.source, article.slug, hash_content(raw))
            self._put(source_key, raw)

        self.cache.invalidate(article.source, article.slug)

        revision = Revision(
            article=article,
            content_hash=content_hash,
            rendered_html_key=rendered_key,
            raw_content_key=source_key,
            upstream_revision_id=upstream_revision_id,
            editor=editor,
            comment=comment,
        )
        self.db.add(revision)

        article.rendered_html_key = rendered_key
        article.raw_content_key = source_key
        article.extracted_text = extract_text(html)
        # Backfill re-embeds; the stale vector keeps serving until then
        article.embedded_at = None

        self.rendered.append((article.source, article.slug, html))
        return revision

    def _referenced(self, key: str) -> bool:
        """Whether a committed revision points at ``key``; unknown counts as yes."""
        try:
            return (
                self.db.query(Revision.id)
                .filter(or_(Revision.rendered_html_key == key, Revision.raw_content_key == key))
                .first()
                is not None
            )
        except SQLAlchemyError:
            self.db.rollback()
            return True

    def discard_written(self) -> None:
        """Delete blobs this mutation created, unless a concurrent writer committed a reference to one."""
        for key in self.written_keys:
            if self._referenced(key):
                continue
            try:
                self.blob_store.delete(key)
            except BlobStoreError:
                logger.warning("Could not remove orphaned blob %s", key)
        self.written_keys = []

    def restore_reused(self) -> None:
        # A writer that rolled back may have removed a key this commit now references
        for key, text in self.reused:
            try:
                if not self.blob_store.exists(key):
                    self.blob_store.put(key, text.encode("utf-8"))
                    logger.info("Restored blob %s", key)
            except BlobStoreError:
                logger.error("Could not restore blob %s", key, exc_info=True)
        self.reused = []


@contextmanager
def content_mutation(
    db: Session,
    blob_store: Optional[BlobStore] = None,
    cache: Optional[ArticleCache] = None,
) -> Iterator[ContentMutation]:
    """
    Single transaction boundary for content changes.

        with content_mutation(db, blob_store, cache) as m:
            m.replace_html(article, html, editor="alice@example.org")
            edit.status = EditStatus.APPROVED

    Commits once on exit. On any exception the session is rolled back, blobs
    this mutation created are deleted (unless a committed revision already
    references them) and the exception propagates. After
    commit the cache is invalidated again (a concurrent reader may have
    repopulated it from the old key) and primed with the new HTML.
    """
    cache = cache or get_article_cache()
    blob_store = blob_store or cache.blob_store
    mutation = ContentMutation(db, blob_store, cache)
    try:
        yield mutation
        db.commit()
    except Exception:
        db.rollback()
        mutation.discard_written()
        raise

    mutation.restore_reused()
    for source, slug, html in mutation.rendered:
        cache.invalidate(source, slug)
        cache.store_html(source, slug, html)


# --- reads ---------------------------------------------------------------------


def resolve_slug(db: Session, source: Source, slug: str) -> str:
    """Follow at most one redirect hop. A two-slug cycle resolves to the requested slug."""
    redirect = (
        db.query(Redirect)
        .filter(Redirect.source == source, Redirect.from_slug == slug)
        .one_or_none()
    )
    if redirect is None:
        return slug

    back = (
        db.query(Redirect)
        .filter(Redirect.source == source, Redirect.from_slug == redirect.to_slug)
        .one_or_none()
    )
    if back is not None and back.to_slug == slug:
        logger.warning(
            "Redirect cycle %s <-> %s; ignoring redirect",
            slug,
            redirect.to_slug,
            extra={"source": source.value, "slug": slug},
        )
        return slug
    return redirect.to_slug


def _find(db: Session, source: Source, slug: str) -> Optional[Article]:
    return (
        db.query(Article)
        .filter(Article.source == source, Article.slug == slug)
        .one_or_none()
    )


def find_article(db: Session, source: Source, slug: str) -> Article:
    """The article a slug resolves to (one redirect hop), without loading content."""
    article = _find(db, source, resolve_slug(db, source, slug))
    if article is None:
        raise NotFoundError(f"No article {source.value}/{slug}")
    return article


def get_article(
    db: Session,
    source: Source,
    slug: str,
    cache: Optional[ArticleCache] = None,
) -> Tuple[Article, str]:
    """Return ``(article, html)`` for a slug, following one redirect hop."""
    article = find_article(db, source, slug)
    cache = cache or get_article_cache()
    return article, cache.fetch_html(article)


def get_article_by_id(db: Session, article_id: int) -> Article:
    article = db.get(Article, article_id)
    if article is None:
        raise NotFoundError(f"No article with id {article_id}")
    return article


def fetch_raw(
    db: Session,
    source: Source,
    slug: str,
    cache: Optional[ArticleCache] = None,
) -> str:
    article = find_article(db, source, slug)
    cache = cache or get_article_cache()
    return cache.fetch_raw(article)


def _filtered(db: Session, source: Optional[Source], letter: Optional[str]):
    query = db.query(Article)
    if source is not None:
        query = query.filter(Article.source == source)
    if letter:
        first = func.upper(func.substr(Article.title, 1, 1))
        if letter == "#":
            query = query.filter(~first.between("A", "Z"))
        else:
            query = query.filter(first == letter[0].upper())
    return query


def list_articles(
    db: Session,
    source: Optional[Source] = None,
    letter: Optional[str] = None,
    order_by: str = ORDER_TITLE,
    limit: int = 50,
    offset: int = 0,
) -> List[Article]:
    """
    Page through articles.

    ``letter`` keeps titles starting with that letter; ``"#"`` keeps titles
    that start with anything other than A-Z.
    """
    query = _filtered(db, source, letter)
    if order_by == ORDER_RECENT:
        query = query.order_by(Article.updated_at.desc(), Article.id.desc())
    elif order_by == ORDER_TITLE:
        query = query.order_by(Article.title.asc(), Article.id.asc())
    else:
        raise ValueError(f"Unknown order_by: {order_by!r}")
    return query.offset(offset).limit(limit).all()


def count_articles(
    db: Session,
    source: Optional[Source] = None,
    letter: Optional[str] = None,
) -> int:
    return _filtered(db, source, letter).count()


def count_by_source(db: Session) -> Dict[Source, int]:
    rows = db.query(Article.source, func.count(Article.id)).group_by(Article.source).all()
    counts = {source: 0 for source in Source}
    counts.update({source: n for source, n in rows})
    return counts


def recent_articles(db: Session, limit: int = 10, source: Optional[Source] = None) -> List[Article]:
    return list_articles(db, source=source, order_by=ORDER_RECENT, limit=limit)


def search(db: Session, query: str, **opts: Any):
    """Public read path for search; see ``services.search.search``."""
    return run_search(db, query, **opts)


# --- redirects -------------------------------------------------------------------


def create_redirect(db: Session, source: Source, from_slug: str, to_slug: str) -> Redirect:
    """Create or repoint the redirect for ``(source, from_slug)``."""
    from_slug = from_slug.strip()
    to_slug = to_slug.strip()
    if not from_slug or not to_slug:
        raise ValueError("Redirect slugs must be non-empty")
    if from_slug == to_slug:
        raise ValueError("A redirect cannot point to itself")

    redirect = (
        db.query(Redirect)
        .filter(Redirect.source == source, Redirect.from_slug == from_slug)
        .one_or_none()
    )
    if redirect is None:
        redirect = Redirect(source=source, from_slug=from_slug, to_slug=to_slug)
        db.add(redirect)
    else:
        redirect.to_slug = to_slug
    db.commit()
    db.refresh(redirect)
    return redirect


def get_redirect(db: Session, source: Source, from_slug: str) -> Redirect:
    redirect = (
        db.query(Redirect)
        .filter(Redirect.source == source, Redirect.from_slug == from_slug)
        .one_or_none()
    )
    if redirect is None:
        raise NotFoundError(f"No redirect {source.value}/{from_slug}")
    return redirect


def list_redirects(
    db: Session,
    source: Optional[Source] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Redirect]:
    query = db.query(Redirect)
    if source is not None:
        query = query.filter(Redirect.source == source)
    return query.order_by(Redirect.from_slug.asc()).offset(offset).limit(limit).all()


def count_redirects(db: Session, source: Optional[Source] = None) -> int:
    query = db.query(Redirect)
    if source is not None:
        query = query.filter(Redirect.source == source)
    return query.count()


def delete_redirect(db: Session, source: Source, from_slug: str) -> None:
    redirect = get_redirect(db, source, from_slug)
    db.delete(redirect)
    db.commit()


# --- writes ------------------------------------------------------------------------


def create_article(
    db: Session,
    source: Source,
    slug: str,
    title: str,
    html: str,
    editor: str,
    raw: Optional[str] = None,
    status: ArticleStatus = ArticleStatus.LOCAL_ONLY,
    metadata: Optional[Dict[str, Any]] = None,
    blob_store: Optional[BlobStore] = None,
    cache: Optional[ArticleCache] = None,
) -> Article:
    """Insert a new article with its first revision. ``(source, slug)`` must be free."""
    if _find(db, source, slug) is not None:
        raise DuplicateArticleError(f"Article {source.value}/{slug} already exists")

    article = Article(
        source=source,
        slug=slug,
        title=title,
        status=status,
        upstream_url=upstream_url(source, slug),
        license=SOURCES[source].license,
        meta=dict(metadata or {}),
    )
    try:
        with content_mutation(db, blob_store, cache) as mutation:
            db.add(article)
            mutation.replace_html(article, html, editor=editor, comment="Created", raw=raw)
    except IntegrityError as exc:
        raise DuplicateArticleError(f"Article {source.value}/{slug} already exists") from exc
    return article


def upsert_synced_article(
    db: Session,
    mutation: ContentMutation,
    source: Source,
    page,
    full_sync: bool = False,
) -> str:
    """
    Apply one fetched upstream page. Returns one of CREATED, UPDATED,
    UNCHANGED or DIVERGED.

    An article carrying local edits is only overwritten by a full sync; an
    incremental sync marks it diverged and records the upstream hash it
    skipped under ``metadata["upstream_hash_pending"]``.
    """
    now = datetime.utcnow()
    content_hash = hash_content(page.html)
    editor = f"sync:{source.value}"
    article = _find(db, source, page.slug)

    if article is None:
        article = Article(
            source=source,
            slug=page.slug,
            title=page.title,
            status=ArticleStatus.SYNCED,
            upstream_url=upstream_url(source, page.slug),
            upstream_hash=content_hash,
            license=SOURCES[source].license,
            meta=dict(page.metadata or {}),
            synced_at=now,
        )
        db.add(article)
        mutation.replace_html(
            article,
            page.html,
            editor=editor,
            comment="Imported from upstream",
            raw=page.raw,
            upstream_revision_id=page.revision_id,
        )
        return CREATED

    if article.upstream_hash == content_hash:
        return UNCHANGED

    if article.status != ArticleStatus.SYNCED and not full_sync:
        meta = dict(article.meta or {})
        if meta.get("upstream_hash_pending") == content_hash and article.status == ArticleStatus.DIVERGED:
            return UNCHANGED
        meta["upstream_hash_pending"] = content_hash
        article.meta = meta
        article.status = ArticleStatus.DIVERGED
        return DIVERGED

    meta = dict(article.meta or {})
    meta.pop("upstream_hash_pending", None)
    meta.update(page.metadata or {})
    article.meta = meta
    article.title = page.title
    article.upstream_hash = content_hash
    article.status = ArticleStatus.SYNCED
    article.synced_at = now
    mutation.replace_html(
        article,
        page.html,
        editor=editor,
        comment="Synced from upstream",
        raw=page.raw,
        upstream_revision_id=page.revision_id,
    )
    return UPDATED


# --- status ------------------------------------------------------------------------


def revision_count(db: Session, article_id: int) -> int:
    return db.query(Revision).filter(Revision.article_id == article_id).count()


def list_revisions(db: Session, article_id: int, limit: int = 50) -> List[Revision]:
    return (
        db.query(Revision)
        .filter(Revision.article_id == article_id)
        .order_by(Revision.id.desc())
        .limit(limit)
        .all()
    )


def status_summary(db: Session) -> Dict[str, Any]:
    """Aggregate counts for the operator status view."""
    last_sync = dict(
        db.query(SyncRun.source, func.max(SyncRun.completed_at))
        .filter(SyncRun.status == SyncStatus.COMPLETED)
        .group_by(SyncRun.source)
        .all()
    )
    edits = dict(
        db.query(PendingEdit.status, func.count(PendingEdit.id))
        .group_by(PendingEdit.status)
        .all()
    )
    counts = count_by_source(db)

    return {
        "sources": [
            {
                "source": source.value,
                "label": SOURCES[source].label_full,
                "articles": counts[source],
                "last_synced_at": last_sync.get(source),
            }
            for source in Source
        ],
        "total_articles": sum(counts.values()),
        "embedded_articles": db.query(Article).filter(Article.embedding.isnot(None)).count(),
        "redirects": count_redirects(db),
        "pending_edits": {status.value: edits.get(status, 0) for status in EditStatus},
    }
