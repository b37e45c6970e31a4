from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.sources import Source
from ..models.article import ArticleStatus
from ..models.cross_link import Relationship
from ..models.pending_edit import EditStatus
from ..models.sync_run import SyncStatus

MAX_QUERY_LEN = 500
MAX_REASON_LEN = 1000
MAX_SLUG_LEN = 500


class ArticleSummaryOut(BaseModel):
    id: int
    source: Source
    slug: str
    title: str
    status: ArticleStatus
    synced_at: datetime | None = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ArticleOut(ArticleSummaryOut):
    upstream_url: str | None = None
    license: str | None = None
    html: str


class ArticleListOut(BaseModel):
    items: list[ArticleSummaryOut]
    total_count: int


class RelatedArticleOut(BaseModel):
    article: ArticleSummaryOut
    relationship: Relationship
    confidence: float
    auto_detected: bool


class RevisionOut(BaseModel):
    id: int
    content_hash: str
    editor: str
    comment: str | None = None
    upstream_revision_id: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SearchRequest(BaseModel):
    query: str
    mode: Literal["keyword", "semantic", "hybrid"] = "hybrid"
    source: Source | None = None
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        v = v.strip()
        if len(v) > MAX_QUERY_LEN:
            raise ValueError(f"query must be at most {MAX_QUERY_LEN} characters")
        return v

    @field_validator("source", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class SearchResultOut(BaseModel):
    source: Source
    slug: str
    title: str
    snippet: str
    score: float

    model_config = ConfigDict(from_attributes=True)


class SearchResponseOut(BaseModel):
    results: list[SearchResultOut]
    total_count: int

    model_config = ConfigDict(from_attributes=True)


class SuggestionOut(BaseModel):
    source: Source
    slug: str
    title: str

    model_config = ConfigDict(from_attributes=True)


class EditSubmission(BaseModel):
    suggested_content: str
    reason: str | None = None
    submitter_email: str | None = None

    @field_validator("reason", "submitter_email", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            stripped = v.strip()
            return stripped or None
        return v

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_REASON_LEN:
            raise ValueError(f"reason must be at most {MAX_REASON_LEN} characters")
        return v


class PendingEditOut(BaseModel):
    id: int
    article_id: int
    status: EditStatus
    reason: str | None = None
    submitter_email: str | None = None
    reviewer_note: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PendingEditDetailOut(PendingEditOut):
    submitter_ip: str
    suggested_content: str
    article: ArticleSummaryOut


class DiffSpanOut(BaseModel):
    kind: Literal["equal", "deleted", "inserted"]
    text: str

    model_config = ConfigDict(from_attributes=True)


class EditDiffOut(BaseModel):
    edit: PendingEditDetailOut
    spans: list[DiffSpanOut]


class ReviewRequest(BaseModel):
    note: str | None = None


class RedirectIn(BaseModel):
    source: Source
    from_slug: str = Field(min_length=1, max_length=MAX_SLUG_LEN)
    to_slug: str = Field(min_length=1, max_length=MAX_SLUG_LEN)


class RedirectOut(BaseModel):
    id: int
    source: Source
    from_slug: str
    to_slug: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CuratedLinkIn(BaseModel):
    source_article_id: int
    target_article_id: int
    relationship: Relationship
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class CrossLinkOut(BaseModel):
    id: int
    source_article_id: int
    target_article_id: int
    relationship: Relationship = Field(validation_alias="relationship_type")
    confidence: float
    auto_detected: bool

    model_config = ConfigDict(from_attributes=True)


class SyncRequest(BaseModel):
    full_sync: bool = False
    resume_from: str | None = None
    limit: int | None = Field(default=None, ge=1)


class SyncQueuedOut(BaseModel):
    task_id: str
    source: Source


class SyncRunOut(BaseModel):
    id: int
    source: Source
    strategy: str
    status: SyncStatus
    resume_from: str | None = None
    checkpoint: str | None = None
    pages_processed: int
    pages_created: int
    pages_updated: int
    pages_unchanged: int
    pages_diverged: int
    pages_failed: int
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class SourceStatusOut(BaseModel):
    source: Source
    label: str
    articles: int
    last_synced_at: datetime | None = None


class StatusOut(BaseModel):
    sources: list[SourceStatusOut]
    total_articles: int
    embedded_articles: int
    redirects: int
    pending_edits: dict[str, int]
