import logging

import redis
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.db import get_db
from ..core.sources import Source
from ..schemas.wiki import (
    CrossLinkOut,
    CuratedLinkIn,
    RedirectIn,
    RedirectOut,
    StatusOut,
    SyncQueuedOut,
    SyncRequest,
    SyncRunOut,
)
from ..services import content, cross_links, sync
from .deps import optional_source, redis_client, source_param, verify_api_key

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(verify_api_key)])
logger = logging.getLogger(__name__)


@router.get("/status", response_model=StatusOut)
def status(db: Session = Depends(get_db)):
    return content.status_summary(db)


# --- sync ----------------------------------------------------------------------


@router.post("/sync/{source}", response_model=SyncQueuedOut, status_code=202)
def trigger_sync(
    payload: SyncRequest | None = None,
    source: Source = Depends(source_param),
    client: redis.Redis = Depends(redis_client),
):
    payload = payload or SyncRequest()
    task_id = sync.enqueue_sync(
        source,
        full_sync=payload.full_sync,
        resume_from=payload.resume_from,
        limit=payload.limit,
        redis_client=client,
    )
    return SyncQueuedOut(task_id=task_id, source=source)


@router.get("/sync/runs", response_model=list[SyncRunOut])
def sync_runs(
    source: Source | None = Depends(optional_source),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return sync.list_runs(db, source=source, limit=limit)


# --- redirects -------------------------------------------------------------------


@router.get("/redirects", response_model=list[RedirectOut])
def list_redirects(
    source: Source | None = Depends(optional_source),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return content.list_redirects(db, source=source, limit=limit, offset=offset)


@router.post("/redirects", response_model=RedirectOut, status_code=201)
def create_redirect(payload: RedirectIn, db: Session = Depends(get_db)):
    return content.create_redirect(db, payload.source, payload.from_slug, payload.to_slug)


@router.delete("/redirects/{source}/{from_slug:path}", status_code=204)
def delete_redirect(
    from_slug: str,
    source: Source = Depends(source_param),
    db: Session = Depends(get_db),
):
    content.delete_redirect(db, source, from_slug)


# --- cross-links -------------------------------------------------------------------


@router.get("/cross-links/stats")
def cross_link_stats(db: Session = Depends(get_db)):
    return cross_links.stats(db)


@router.post("/cross-links", response_model=CrossLinkOut, status_code=201)
def create_cross_link(payload: CuratedLinkIn, db: Session = Depends(get_db)):
    return cross_links.create_curated_link(
        db,
        payload.source_article_id,
        payload.target_article_id,
        payload.relationship,
        confidence=payload.confidence,
    )


@router.delete("/cross-links/{link_id}", status_code=204)
def delete_cross_link(link_id: int, db: Session = Depends(get_db)):
    cross_links.delete_link(db, link_id)


@router.post("/cross-links/detect", status_code=202)
def detect_cross_links(limit: int | None = Query(default=None, ge=1)):
    result = celery_app.send_task(
        "wikihub.services.cross_links.detect_pending_links",
        kwargs={"limit": limit},
    )
    return {"task_id": result.id}
