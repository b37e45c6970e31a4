"""
Community edit workflow: submit -> pending -> approved | rejected.

Submissions are rate limited per IP from the ``pending_edits`` table itself,
so the limit holds across API workers without extra state. Approval runs
inside one ``content_mutation``: the edit only becomes ``approved`` if the
blob, revision and article update all commit.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.errors import InvalidEditError, InvalidTransitionError, NotFoundError, RateLimitedError
from ..models.article import Article, ArticleStatus
from ..models.pending_edit import EditStatus, PendingEdit
from .blob_store import BlobStore
from .caching import ArticleCache, get_article_cache
from .content import content_mutation
from .diff import DiffSpan, diff_html
from .notifications import APPROVED, NEW_EDIT, REJECTED, notify_edit_event

logger = logging.getLogger(__name__)

MAX_REASON_CHARS = 1000
MAX_NOTE_CHARS = 2000
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def check_submission_rate(db: Session, submitter_ip: Optional[str], now: Optional[datetime] = None) -> None:
    """
    Raise RateLimitedError when ``submitter_ip`` may not submit right now.

    Both ceilings look at the trailing window only: submissions older than
    the window stop counting even if they are still awaiting review.
    A missing IP is always limited.
    """
    if not submitter_ip:
        raise RateLimitedError("Cannot accept edits without a client address")

    settings = get_settings()
    now = now or datetime.utcnow()
    window = timedelta(hours=settings.EDIT_SUBMISSION_WINDOW_HOURS)
    recent = db.query(PendingEdit).filter(
        PendingEdit.submitter_ip == submitter_ip,
        PendingEdit.created_at > now - window,
    )

    pending = recent.filter(PendingEdit.status == EditStatus.PENDING).count()
    if pending >= settings.EDIT_MAX_PENDING_PER_IP:
        raise RateLimitedError(
            f"{pending} edits from this address are already awaiting review",
        )

    submitted = recent.count()
    if submitted >= settings.EDIT_MAX_SUBMISSIONS_PER_WINDOW:
        oldest = recent.with_entities(func.min(PendingEdit.created_at)).scalar()
        retry_after = int((oldest + window - now).total_seconds()) + 1 if oldest else None
        raise RateLimitedError(
            f"{submitted} edits submitted from this address in the last "
            f"{settings.EDIT_SUBMISSION_WINDOW_HOURS} hours",
            retry_after=retry_after,
        )


def _validate(suggested_content: str, reason: Optional[str], submitter_email: Optional[str]) -> None:
    settings = get_settings()
    if not suggested_content or not suggested_content.strip():
        raise InvalidEditError("Suggested content must not be empty")
    if len(suggested_content) > settings.EDIT_MAX_CONTENT_CHARS:
        raise InvalidEditError(
            f"Suggested content exceeds {settings.EDIT_MAX_CONTENT_CHARS} characters"
        )
    if reason and len(reason) > MAX_REASON_CHARS:
        raise InvalidEditError(f"Reason exceeds {MAX_REASON_CHARS} characters")
    if submitter_email and not _EMAIL.match(submitter_email):
        raise InvalidEditError("Invalid e-mail address")


def create_pending_edit(
    db: Session,
    article_id: int,
    suggested_content: str,
    submitter_ip: Optional[str],
    reason: Optional[str] = None,
    submitter_email: Optional[str] = None,
) -> PendingEdit:
    reason = (reason or "").strip() or None
    submitter_email = (submitter_email or "").strip() or None
    _validate(suggested_content, reason, submitter_email)

    if db.get(Article, article_id) is None:
        raise NotFoundError(f"No article with id {article_id}")

    check_submission_rate(db, submitter_ip)

    edit = PendingEdit(
        article_id=article_id,
        suggested_content=suggested_content,
        reason=reason,
        submitter_email=submitter_email,
        submitter_ip=submitter_ip,
        status=EditStatus.PENDING,
    )
    db.add(edit)
    db.commit()
    db.refresh(edit)

    logger.info(
        "Pending edit submitted",
        extra={"edit_id": edit.id, "article_id": article_id, "client_ip": submitter_ip},
    )
    notify_edit_event(NEW_EDIT, edit.id)
    return edit


def get_pending_edit(db: Session, edit_id: int) -> PendingEdit:
    edit = db.get(PendingEdit, edit_id)
    if edit is None:
        raise NotFoundError(f"No pending edit with id {edit_id}")
    return edit


def _lock_pending(db: Session, edit_id: int) -> PendingEdit:
    # Row lock on PostgreSQL so two moderators cannot both act on one edit
    edit = (
        db.query(PendingEdit)
        .filter(PendingEdit.id == edit_id)
        .with_for_update()
        .one_or_none()
    )
    if edit is None:
        raise NotFoundError(f"No pending edit with id {edit_id}")
    if edit.status != EditStatus.PENDING:
        db.rollback()
        raise InvalidTransitionError(
            f"Edit {edit_id} is already {edit.status.value}"
        )
    return edit


def approve_pending_edit(
    db: Session,
    edit_id: int,
    note: Optional[str] = None,
    blob_store: Optional[BlobStore] = None,
    cache: Optional[ArticleCache] = None,
) -> PendingEdit:
    """
    Apply a pending edit to its article.

    On any failure the transaction is rolled back and the edit stays
    ``pending`` with no revision written.
    """
    edit = _lock_pending(db, edit_id)
    article = edit.article

    try:
        with content_mutation(db, blob_store, cache) as mutation:
            mutation.replace_html(
                article,
                edit.suggested_content,
                editor=edit.submitter_email or "anonymous",
                comment=edit.reason or "Community edit",
            )
            article.status = ArticleStatus.LOCAL_ONLY
            edit.status = EditStatus.APPROVED
            edit.reviewer_note = (note or "")[:MAX_NOTE_CHARS] or None
            edit.reviewed_at = datetime.utcnow()
    except Exception:
        logger.exception(
            "Approval failed; edit left pending",
            extra={"edit_id": edit_id, "step": "moderation"},
        )
        raise

    logger.info(
        "Pending edit approved",
        extra={"edit_id": edit.id, "article_id": article.id, "step": "moderation"},
    )
    notify_edit_event(APPROVED, edit.id)
    return edit


def reject_pending_edit(db: Session, edit_id: int, note: Optional[str] = None) -> PendingEdit:
    edit = _lock_pending(db, edit_id)
    edit.status = EditStatus.REJECTED
    edit.reviewer_note = (note or "")[:MAX_NOTE_CHARS] or None
    edit.reviewed_at = datetime.utcnow()
    db.commit()

    logger.info(
        "Pending edit rejected",
        extra={"edit_id": edit.id, "article_id": edit.article_id, "step": "moderation"},
    )
    notify_edit_event(REJECTED, edit.id)
    return edit


def list_pending_edits(
    db: Session,
    status: Optional[EditStatus] = EditStatus.PENDING,
    limit: int = 50,
    offset: int = 0,
) -> List[PendingEdit]:
    query = db.query(PendingEdit)
    if status is not None:
        query = query.filter(PendingEdit.status == status)
    # Oldest first for the review queue, newest first for history
    order = PendingEdit.id.asc() if status == EditStatus.PENDING else PendingEdit.id.desc()
    return query.order_by(order).offset(offset).limit(limit).all()


def count_pending_edits_by_status(db: Session) -> Dict[str, int]:
    rows = (
        db.query(PendingEdit.status, func.count(PendingEdit.id))
        .group_by(PendingEdit.status)
        .all()
    )
    counts = {status.value: 0 for status in EditStatus}
    counts.update({status.value: n for status, n in rows})
    return counts


def edit_diff(edit: PendingEdit, cache: Optional[ArticleCache] = None) -> List[DiffSpan]:
    """Diff of the article's current HTML against the suggestion; computed on demand."""
    cache = cache or get_article_cache()
    current = cache.fetch_html(edit.article)
    return diff_html(current, edit.suggested_content)
