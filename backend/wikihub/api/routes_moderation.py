import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.pending_edit import EditStatus
from ..schemas.wiki import (
    DiffSpanOut,
    EditDiffOut,
    PendingEditDetailOut,
    PendingEditOut,
    ReviewRequest,
)
from ..services import moderation
from ..services.caching import ArticleCache
from .deps import article_cache, verify_api_key

router = APIRouter(prefix="/admin/edits", tags=["moderation"], dependencies=[Depends(verify_api_key)])
logger = logging.getLogger(__name__)


@router.get("", response_model=list[PendingEditOut])
def list_edits(
    status: EditStatus | None = EditStatus.PENDING,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return moderation.list_pending_edits(db, status=status, limit=limit, offset=offset)


@router.get("/counts")
def edit_counts(db: Session = Depends(get_db)):
    return moderation.count_pending_edits_by_status(db)


@router.get("/{edit_id}", response_model=EditDiffOut)
def show_edit(
    edit_id: int,
    db: Session = Depends(get_db),
    cache: ArticleCache = Depends(article_cache),
):
    edit = moderation.get_pending_edit(db, edit_id)
    spans = moderation.edit_diff(edit, cache=cache)
    return EditDiffOut(
        edit=PendingEditDetailOut.model_validate(edit),
        spans=[DiffSpanOut.model_validate(span) for span in spans],
    )


@router.post("/{edit_id}/approve", response_model=PendingEditOut)
def approve_edit(
    edit_id: int,
    payload: ReviewRequest | None = None,
    db: Session = Depends(get_db),
    cache: ArticleCache = Depends(article_cache),
):
    note = payload.note if payload else None
    return moderation.approve_pending_edit(db, edit_id, note=note, cache=cache)


@router.post("/{edit_id}/reject", response_model=PendingEditOut)
def reject_edit(
    edit_id: int,
    payload: ReviewRequest | None = None,
    db: Session = Depends(get_db),
):
    note = payload.note if payload else None
    return moderation.reject_pending_edit(db, edit_id, note=note)
