from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..core.sources import article_path
from ..models.pending_edit import PendingEdit

logger = logging.getLogger(__name__)

NEW_EDIT = "new_edit"
APPROVED = "approved"
REJECTED = "rejected"
KINDS = (NEW_EDIT, APPROVED, REJECTED)


def build_message(kind: str, edit: PendingEdit) -> Optional[EmailMessage]:
    """The e-mail for an edit event, or None when there is nobody to tell."""
    settings = get_settings()
    article = edit.article
    submitter = edit.submitter_email or "anonymous"
    path = article_path(article.source, article.slug)

    if kind == NEW_EDIT:
        recipient = settings.MODERATOR_EMAIL
        subject = f"[Wiki] New edit suggestion: {article.title}"
        lines = [
            f"Article: {article.title} ({article.source.value})",
            f"Submitter: {submitter}",
            f"Reason: {edit.reason}" if edit.reason else "",
            f"Submitted: {edit.created_at:%Y-%m-%d %H:%M} UTC",
            f"Review: edit #{edit.id}",
        ]
    elif kind == APPROVED:
        recipient = edit.submitter_email
        subject = f"[Wiki] Your edit was approved: {article.title}"
        lines = [
            f"Your suggested edit to {article.title} is now live at {path}.",
            f"Moderator note: {edit.reviewer_note}" if edit.reviewer_note else "",
        ]
    elif kind == REJECTED:
        recipient = edit.submitter_email
        subject = f"[Wiki] Your edit was not accepted: {article.title}"
        lines = [
            f"Your suggested edit to {article.title} was not accepted.",
            f"Moderator note: {edit.reviewer_note}" if edit.reviewer_note else "",
        ]
    else:
        raise ValueError(f"Unknown notification kind: {kind!r}")

    if not recipient:
        return None

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = recipient
    msg["Subject"] = subject
    msg.set_content("\n".join(line for line in lines if line) + "\n")
    return msg


def deliver(msg: EmailMessage) -> None:
    settings = get_settings()
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as smtp:
        smtp.send_message(msg)


@celery_app.task(
    name="wikihub.services.notifications.send_edit_notification",
    autoretry_for=(smtplib.SMTPException, OSError),
    retry_backoff=True,
    max_retries=3,
)
def send_edit_notification(kind: str, edit_id: int) -> bool:
    settings = get_settings()
    db: Session = SessionLocal()
    try:
        edit = db.get(PendingEdit, edit_id)
        if edit is None:
            logger.warning("Pending edit not found for notification", extra={"edit_id": edit_id})
            return False

        msg = build_message(kind, edit)
        if msg is None:
            logger.info(
                "No recipient for %s notification; skipping",
                kind,
                extra={"edit_id": edit_id, "step": "notify"},
            )
            return False

        if not settings.SMTP_HOST:
            logger.info(
                "SMTP not configured; %s notification to %s logged only",
                kind,
                msg["To"],
                extra={"edit_id": edit_id, "step": "notify"},
            )
            return False

        deliver(msg)
        logger.info("Sent %s notification", kind, extra={"edit_id": edit_id, "step": "notify"})
        return True
    finally:
        db.close()


def notify_edit_event(kind: str, edit_id: int) -> None:
    """Queue a notification; a broker outage never fails the edit operation itself."""
    try:
        send_edit_notification.delay(kind, edit_id)
    except Exception:
        logger.exception(
            "Could not enqueue %s notification",
            kind,
            extra={"edit_id": edit_id, "step": "notify"},
        )
