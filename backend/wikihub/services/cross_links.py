from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal, is_postgres
from ..core.errors import NotFoundError
from ..core.sources import Source
from ..models.article import Article
from ..models.cross_link import CrossLink, Relationship
from .text import trigram_similarity

logger = logging.getLogger(__name__)

SAME_TOPIC_THRESHOLD = 0.8
RELATED_THRESHOLD = 0.5
MAX_CANDIDATES = 10


def relationship_for(confidence: float) -> Relationship:
    if confidence >= SAME_TOPIC_THRESHOLD:
        return Relationship.SAME_TOPIC
    if confidence >= RELATED_THRESHOLD:
        return Relationship.RELATED
    return Relationship.SEE_ALSO


def find_similar(
    db: Session,
    article: Article,
    min_similarity: Optional[float] = None,
    limit: int = MAX_CANDIDATES,
) -> List[Tuple[Article, float]]:
    """Articles from other sources whose titles are at least ``min_similarity`` alike."""
    if min_similarity is None:
        min_similarity = get_settings().CROSS_LINK_MIN_SIMILARITY

    if is_postgres(db):
        similarity = func.similarity(Article.title, article.title)
        rows = (
            db.query(Article, similarity.label("similarity"))
            .filter(Article.source != article.source, similarity >= min_similarity)
            .order_by(similarity.desc(), Article.id.asc())
            .limit(limit)
            .all()
        )
        return [(other, float(score)) for other, score in rows]

    scored = [
        (other, trigram_similarity(article.title, other.title))
        for other in db.query(Article).filter(Article.source != article.source).all()
    ]
    scored = [pair for pair in scored if pair[1] >= min_similarity]
    scored.sort(key=lambda pair: (-pair[1], pair[0].id))
    return scored[:limit]


def detect_links(
    db: Session,
    article: Article,
    min_similarity: Optional[float] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Refresh the auto-detected links out of ``article``.

    Curated links are left untouched, auto links whose target no longer
    qualifies are dropped. Returns the number of links created or updated.
    """
    candidates = find_similar(db, article, min_similarity)
    existing: Dict[int, CrossLink] = {
        link.target_article_id: link
        for link in db.query(CrossLink).filter(CrossLink.source_article_id == article.id).all()
    }
    # A curated link in the opposite direction covers the pair as well
    curated_back = {
        link.source_article_id
        for link in db.query(CrossLink).filter(
            CrossLink.target_article_id == article.id,
            CrossLink.auto_detected.is_(False),
        )
    }

    written = 0
    keep = set()
    for target, score in candidates:
        confidence = round(min(max(score, 0.0), 1.0), 4)
        keep.add(target.id)
        link = existing.get(target.id)
        if (link is not None and not link.auto_detected) or target.id in curated_back:
            continue
        if link is None:
            db.add(
                CrossLink(
                    source_article_id=article.id,
                    target_article_id=target.id,
                    relationship_type=relationship_for(confidence),
                    confidence=confidence,
                    auto_detected=True,
                )
            )
        else:
            link.relationship_type = relationship_for(confidence)
            link.confidence = confidence
        written += 1

    for target_id, link in existing.items():
        if link.auto_detected and target_id not in keep:
            db.delete(link)

    article.cross_links_checked_at = now or datetime.utcnow()
    db.commit()
    return written


def _detect_batch(db: Session, articles: List[Article]) -> int:
    written = 0
    for article in articles:
        try:
            written += detect_links(db, article)
        except Exception:
            db.rollback()
            logger.exception(
                "Cross-link detection failed",
                extra={"article_id": article.id, "step": "cross_links"},
            )
            raise
    return written


def detect_pending(db: Session, limit: Optional[int] = None, now: Optional[datetime] = None) -> int:
    """Run detection for articles never checked or not checked within the recheck period."""
    settings = get_settings()
    now = now or datetime.utcnow()
    stale_before = now - timedelta(days=settings.CROSS_LINK_RECHECK_DAYS)
    articles = (
        db.query(Article)
        .filter(
            or_(
                Article.cross_links_checked_at.is_(None),
                Article.cross_links_checked_at < stale_before,
            )
        )
        .order_by(Article.cross_links_checked_at.isnot(None), Article.id.asc())
        .limit(limit or settings.CROSS_LINK_BATCH_SIZE)
        .all()
    )
    written = _detect_batch(db, articles)
    logger.info(
        "Checked %d articles, wrote %d cross-links",
        len(articles),
        written,
        extra={"step": "cross_links"},
    )
    return written


def detect_all(db: Session, source: Optional[Source] = None) -> int:
    query = db.query(Article)
    if source is not None:
        query = query.filter(Article.source == source)
    return _detect_batch(db, query.order_by(Article.id.asc()).all())


def create_curated_link(
    db: Session,
    source_article_id: int,
    target_article_id: int,
    relationship: Relationship,
    confidence: float = 1.0,
) -> CrossLink:
    """Create or take over the link for a pair; the detector never touches it afterwards."""
    if source_article_id == target_article_id:
        raise ValueError("An article cannot link to itself")
    if not 0.0 <= confidence <= 1.0:
        raise ValueError("confidence must be between 0 and 1")
    for article_id in (source_article_id, target_article_id):
        if db.get(Article, article_id) is None:
            raise NotFoundError(f"No article with id {article_id}")

    link = (
        db.query(CrossLink)
        .filter(
            CrossLink.source_article_id == source_article_id,
            CrossLink.target_article_id == target_article_id,
        )
        .one_or_none()
    )
    if link is None:
        link = CrossLink(source_article_id=source_article_id, target_article_id=target_article_id)
        db.add(link)
    link.relationship_type = relationship
    link.confidence = confidence
    link.auto_detected = False
    db.commit()
    db.refresh(link)
    return link


def delete_link(db: Session, link_id: int) -> None:
    link = db.get(CrossLink, link_id)
    if link is None:
        raise NotFoundError(f"No cross-link with id {link_id}")
    db.delete(link)
    db.commit()


def clear_auto_links(db: Session, source: Optional[Source] = None) -> int:
    query = db.query(CrossLink).filter(CrossLink.auto_detected.is_(True))
    if source is not None:
        ids = select(Article.id).where(Article.source == source)
        query = query.filter(CrossLink.source_article_id.in_(ids))
    deleted = query.delete(synchronize_session=False)
    db.commit()
    return deleted


def get_related(db: Session, article: Article, limit: int = 10) -> List[Dict[str, Any]]:
    """Linked articles in either direction, from other sources, best first."""
    links = (
        db.query(CrossLink)
        .filter(
            or_(
                CrossLink.source_article_id == article.id,
                CrossLink.target_article_id == article.id,
            )
        )
        .all()
    )

    best: Dict[int, Dict[str, Any]] = {}
    for link in links:
        other = link.target_article if link.source_article_id == article.id else link.source_article
        if other.source == article.source:
            continue
        current = best.get(other.id)
        # A curated link wins over an auto link for the same pair
        rank = (not link.auto_detected, link.confidence)
        if current is None or rank > current["_rank"]:
            best[other.id] = {
                "article": other,
                "relationship": link.relationship_type,
                "confidence": link.confidence,
                "auto_detected": link.auto_detected,
                "_rank": rank,
            }

    related = sorted(best.values(), key=lambda r: (r["_rank"], -r["article"].id), reverse=True)
    for entry in related:
        entry.pop("_rank")
    return related[:limit]


def stats(db: Session) -> Dict[str, Any]:
    rows = (
        db.query(CrossLink.relationship_type, CrossLink.auto_detected, func.count(CrossLink.id))
        .group_by(CrossLink.relationship_type, CrossLink.auto_detected)
        .all()
    )
    by_relationship = {r.value: 0 for r in Relationship}
    auto = curated = 0
    for relationship, auto_detected, n in rows:
        by_relationship[relationship.value] += n
        if auto_detected:
            auto += n
        else:
            curated += n
    return {
        "total": auto + curated,
        "auto_detected": auto,
        "curated": curated,
        "by_relationship": by_relationship,
        "articles_checked": db.query(Article).filter(Article.cross_links_checked_at.isnot(None)).count(),
    }


@celery_app.task(name="wikihub.services.cross_links.detect_pending_links")
def detect_pending_links(limit: Optional[int] = None) -> int:
    db: Session = SessionLocal()
    try:
        return detect_pending(db, limit=limit)
    finally:
        db.close()
