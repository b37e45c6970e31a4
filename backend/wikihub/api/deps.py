from typing import Optional

import redis
from fastapi import HTTPException, Request, Security
from fastapi.security.api_key import APIKeyHeader

from ..core.config import get_settings
from ..core.sources import Source, parse_source
from ..services.caching import ArticleCache, get_article_cache, get_redis_client
from ..services.embeddings import Embedder, get_embedder
from ..services.rate_limit import SlidingWindowLimiter, get_search_limiter

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Moderator authentication via the X-API-Key header.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    expected = settings.API_AUTH_KEY

    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop when behind the proxy, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


def source_param(source: str) -> Source:
    return parse_source(source)


def optional_source(source: str | None = None) -> Source | None:
    return parse_source(source) if source else None


def article_cache() -> ArticleCache:
    return get_article_cache()


def search_limiter() -> SlidingWindowLimiter:
    return get_search_limiter()


def embedder() -> Optional[Embedder]:
    return get_embedder()


def redis_client() -> redis.Redis:
    return get_redis_client()
