"""
Typed failures shared by the content store, sync engine, moderation and search.

Public read paths (article pages, search) only ever show ``public_message``
for anything that is not ``not_found`` or ``rate_limited``; moderator and
operator paths may show ``str(exc)``.
"""
from __future__ import annotations


class WikiError(Exception):
    code = "error"
    public_message = "The wiki is temporarily unavailable."


class NotFoundError(WikiError):
    code = "not_found"
    public_message = "Not found."


class RateLimitedError(WikiError):
    code = "rate_limited"
    public_message = "Too many requests. Please wait a moment and try again."

    def __init__(self, message: str = "", retry_after: int | None = None) -> None:
        super().__init__(message or self.public_message)
        self.retry_after = retry_after


class UpstreamUnreachableError(WikiError):
    code = "upstream_unreachable"


class FetchFailedError(WikiError):
    code = "fetch_failed"


class StorageError(WikiError):
    code = "storage_error"


class EncodingError(WikiError):
    code = "encoding_error"


class InvalidTransitionError(WikiError):
    code = "invalid_transition"


class InvalidEditError(WikiError):
    code = "invalid_edit"


class DuplicateArticleError(WikiError):
    code = "duplicate_article"


class SyncAlreadyRunningError(WikiError):
    code = "sync_already_running"


class EmbeddingUnavailableError(WikiError):
    code = "embedding_unavailable"


class SyncLockLostError(WikiError):
    code = "sync_lock_lost"
