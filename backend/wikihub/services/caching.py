from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import redis

from ..core.config import get_settings
from ..core.sources import Source
from .blob_store import BlobStore, BlobStoreError, get_blob_store

logger = logging.getLogger(__name__)

KEY_PREFIX = "wiki"


def _get_sync_redis() -> redis.Redis:
    settings = get_settings()
    return redis.from_url(
        str(settings.REDIS_URL),
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
    )


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    """Process-wide client; redis-py pools connections internally."""
    return _get_sync_redis()


class ArticleCache:
    """
    Read-through cache of rendered HTML and raw source, keyed by (source, slug).

    Redis is an accelerator only: every Redis failure degrades to a blob
    store read, and a missing blob reads as empty content.
    """

    def __init__(
        self,
        client: redis.Redis,
        blob_store: BlobStore,
        ttl: int | None = None,
    ) -> None:
        self.client = client
        self.blob_store = blob_store
        self.ttl = ttl if ttl is not None else get_settings().CACHE_TTL_SECONDS

    @staticmethod
    def _key(kind: str, source: Source, slug: str) -> str:
        return f"{KEY_PREFIX}:{kind}:{source.value}:{slug}"

    def _read(self, kind: str, source: Source, slug: str, blob_key: Optional[str]) -> str:
        key = self._key(kind, source, slug)
        try:
            cached = self.client.get(key)
            if cached is not None:
                return cached
        except redis.RedisError:
            logger.warning(
                "Cache read failed; falling back to blob store",
                extra={"source": source.value, "slug": slug},
            )

        if not blob_key:
            return ""
        try:
            value = self.blob_store.get_text(blob_key)
        except (KeyError, BlobStoreError, UnicodeDecodeError):
            logger.warning(
                "Blob %s unavailable",
                blob_key,
                extra={"source": source.value, "slug": slug},
            )
            return ""

        self._write(key, value)
        return value

    def _write(self, key: str, value: str) -> None:
        try:
            self.client.set(key, value, ex=self.ttl)
        except redis.RedisError:
            pass

    def fetch_html(self, article) -> str:
        return self._read("html", article.source, article.slug, article.rendered_html_key)

    def fetch_raw(self, article) -> str:
        return self._read("raw", article.source, article.slug, article.raw_content_key)

    def store_html(self, source: Source, slug: str, html: str) -> None:
        self._write(self._key("html", source, slug), html)

    def invalidate(self, source: Source, slug: str) -> None:
        try:
            self.client.delete(
                self._key("html", source, slug),
                self._key("raw", source, slug),
            )
        except redis.RedisError:
            logger.warning(
                "Cache invalidate failed",
                extra={"source": source.value, "slug": slug},
            )

    def invalidate_source(self, source: Source) -> int:
        deleted = 0
        try:
            for kind in ("html", "raw"):
                pattern = f"{KEY_PREFIX}:{kind}:{source.value}:*"
                for key in self.client.scan_iter(match=pattern, count=500):
                    deleted += self.client.delete(key)
        except redis.RedisError:
            logger.warning("Cache source invalidate failed", extra={"source": source.value})
        return deleted

    def clear(self) -> int:
        deleted = 0
        try:
            for key in self.client.scan_iter(match=f"{KEY_PREFIX}:*", count=500):
                deleted += self.client.delete(key)
        except redis.RedisError:
            logger.warning("Cache clear failed")
        return deleted


def get_article_cache() -> ArticleCache:
    return ArticleCache(get_redis_client(), get_blob_store())
