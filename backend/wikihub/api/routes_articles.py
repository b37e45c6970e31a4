import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..core.sources import SOURCES, Source
from ..schemas.wiki import (
    ArticleListOut,
    ArticleOut,
    ArticleSummaryOut,
    EditSubmission,
    PendingEditOut,
    RelatedArticleOut,
    RevisionOut,
)
from ..services import content, cross_links, moderation
from ..services.caching import ArticleCache
from .deps import article_cache, client_ip, optional_source, source_param

router = APIRouter(tags=["articles"])
logger = logging.getLogger(__name__)


@router.get("/sources")
def list_sources():
    return [
        {
            "source": source.value,
            "label": info.label,
            "label_full": info.label_full,
            "path_prefix": info.path_prefix,
            "upstream_base": info.upstream_base,
            "license": info.license,
        }
        for source, info in SOURCES.items()
    ]


@router.get("/articles", response_model=ArticleListOut)
def list_articles(
    source: Source | None = Depends(optional_source),
    letter: str | None = Query(default=None, max_length=1),
    order_by: Literal["title", "recent"] = "title",
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    items = content.list_articles(
        db, source=source, letter=letter, order_by=order_by, limit=limit, offset=offset
    )
    return ArticleListOut(
        items=[ArticleSummaryOut.model_validate(a) for a in items],
        total_count=content.count_articles(db, source=source, letter=letter),
    )


# Suffixed routes first: the slug itself may contain "/"


@router.get("/articles/{source}/{slug:path}/related", response_model=list[RelatedArticleOut])
def related_articles(
    slug: str,
    source: Source = Depends(source_param),
    limit: int = Query(default=10, ge=1, le=50),
    db: Session = Depends(get_db),
):
    article = content.find_article(db, source, slug)
    return [
        RelatedArticleOut(
            article=ArticleSummaryOut.model_validate(entry["article"]),
            relationship=entry["relationship"],
            confidence=entry["confidence"],
            auto_detected=entry["auto_detected"],
        )
        for entry in cross_links.get_related(db, article, limit=limit)
    ]


@router.get("/articles/{source}/{slug:path}/revisions", response_model=list[RevisionOut])
def article_revisions(
    slug: str,
    source: Source = Depends(source_param),
    db: Session = Depends(get_db),
):
    article = content.find_article(db, source, slug)
    return content.list_revisions(db, article.id)


@router.get("/articles/{source}/{slug:path}/raw")
def article_raw(
    slug: str,
    source: Source = Depends(source_param),
    db: Session = Depends(get_db),
    cache: ArticleCache = Depends(article_cache),
):
    return {"raw": content.fetch_raw(db, source, slug, cache=cache)}


@router.post("/articles/{source}/{slug:path}/edits", response_model=PendingEditOut, status_code=201)
def submit_edit(
    slug: str,
    payload: EditSubmission,
    request: Request,
    source: Source = Depends(source_param),
    db: Session = Depends(get_db),
):
    article = content.find_article(db, source, slug)
    return moderation.create_pending_edit(
        db,
        article_id=article.id,
        suggested_content=payload.suggested_content,
        submitter_ip=client_ip(request),
        reason=payload.reason,
        submitter_email=payload.submitter_email,
    )


@router.get("/articles/{source}/{slug:path}", response_model=ArticleOut)
def get_article(
    slug: str,
    source: Source = Depends(source_param),
    db: Session = Depends(get_db),
    cache: ArticleCache = Depends(article_cache),
):
    article, html = content.get_article(db, source, slug, cache=cache)
    summary = ArticleSummaryOut.model_validate(article)
    return ArticleOut(
        **summary.model_dump(),
        upstream_url=article.upstream_url,
        license=article.license,
        html=html,
    )

