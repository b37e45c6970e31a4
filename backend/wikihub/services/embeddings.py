from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from threading import BoundedSemaphore
from typing import List, Optional

from openai import OpenAI, OpenAIError
from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..core.errors import EmbeddingUnavailableError
from ..core.sources import Source, parse_source
from ..models.article import Article

logger = logging.getLogger(__name__)

_embed_semaphore: BoundedSemaphore | None = None


def _get_semaphore() -> BoundedSemaphore:
    """Lazy-initialised global semaphore; Ollama serialises work on one GPU anyway."""
    global _embed_semaphore
    if _embed_semaphore is None:
        settings = get_settings()
        _embed_semaphore = BoundedSemaphore(settings.EMBEDDING_MAX_CONCURRENCY)
    return _embed_semaphore


@contextmanager
def limit_embedding_concurrency():
    sem = _get_semaphore()
    sem.acquire()
    try:
        yield
    finally:
        sem.release()


@lru_cache(maxsize=1)
def get_embedding_client() -> OpenAI:
    """
    OpenAI-compatible client pointed at Ollama's ``/v1`` endpoint.

    Ollama ignores the API key but the client requires one.
    """
    settings = get_settings()
    if not settings.OLLAMA_BASE_URL:
        raise RuntimeError("OLLAMA_BASE_URL is not configured.")
    return OpenAI(
        base_url=f"{settings.OLLAMA_BASE_URL.rstrip('/')}/v1",
        api_key="ollama",
        timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
        max_retries=1,
    )


def prepare_text(title: str, text: Optional[str], max_chars: Optional[int] = None) -> str:
    """Title, blank line, body; truncated to the model's useful context."""
    max_chars = max_chars or get_settings().EMBEDDING_MAX_CHARS
    full_text = f"{title}\n\n{(text or '').strip()}"
    return full_text[:max_chars]


class Embedder:
    def __init__(self, client: OpenAI, model: str, dimensions: int) -> None:
        self.client = client
        self.model = model
        self.dimensions = dimensions

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            with limit_embedding_concurrency():
                resp = self.client.embeddings.create(model=self.model, input=texts)
        except OpenAIError as exc:
            raise EmbeddingUnavailableError(f"Embedding request failed: {exc}") from exc

        vectors = [item.embedding for item in sorted(resp.data, key=lambda d: d.index)]
        if len(vectors) != len(texts):
            raise EmbeddingUnavailableError(
                f"Expected {len(texts)} embeddings, got {len(vectors)}"
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingUnavailableError(
                    f"Model {self.model} returned {len(vector)} dimensions, expected {self.dimensions}"
                )
        return vectors

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def health_check(self) -> bool:
        try:
            self.embed("health check")
        except EmbeddingUnavailableError:
            return False
        return True


def get_embedder() -> Optional[Embedder]:
    """The configured embedder, or None when semantic search is disabled."""
    settings = get_settings()
    if not settings.OLLAMA_BASE_URL:
        return None
    return Embedder(get_embedding_client(), settings.EMBEDDING_MODEL, settings.EMBEDDING_DIMENSIONS)


def backfill_embeddings(
    db: Session,
    embedder: Embedder,
    source: Optional[Source] = None,
    full: bool = False,
    batch_size: Optional[int] = None,
) -> int:
    """
    Embed articles whose content changed since their last embedding
    (``embedded_at`` is null), or every article when ``full``.

    Commits per batch; an embedding failure stops the backfill and
    propagates, keeping the batches already committed.
    """
    batch_size = batch_size or get_settings().EMBEDDING_BATCH_SIZE
    embedded = 0
    last_id = 0
    while True:
        query = db.query(Article).filter(Article.id > last_id)
        if source is not None:
            query = query.filter(Article.source == source)
        if not full:
            query = query.filter(Article.embedded_at.is_(None))
        batch = query.order_by(Article.id.asc()).limit(batch_size).all()
        if not batch:
            break

        vectors = embedder.embed_batch([prepare_text(a.title, a.extracted_text) for a in batch])
        now = datetime.utcnow()
        for article, vector in zip(batch, vectors):
            article.embedding = vector
            article.embedded_at = now
        db.commit()

        embedded += len(batch)
        last_id = batch[-1].id
        logger.info(
            "Embedded %d articles",
            embedded,
            extra={"source": source.value if source else None, "step": "embeddings"},
        )
    return embedded


@celery_app.task(name="wikihub.services.embeddings.embed_articles")
def embed_articles(source: Optional[str] = None, full: bool = False) -> int:
    embedder = get_embedder()
    if embedder is None:
        logger.info("Embeddings disabled; skipping backfill", extra={"step": "embeddings"})
        return 0

    db: Session = SessionLocal()
    try:
        return backfill_embeddings(
            db,
            embedder,
            source=parse_source(source) if source else None,
            full=full,
        )
    except EmbeddingUnavailableError:
        db.rollback()
        logger.warning("Embedding service unavailable; backfill stopped", extra={"step": "embeddings"})
        return 0
    finally:
        db.close()
