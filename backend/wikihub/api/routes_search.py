from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..core.sources import Source
from ..schemas.wiki import SearchRequest, SearchResponseOut, SuggestionOut
from ..services import content
from ..services import search as search_service
from ..services.embeddings import Embedder
from ..services.rate_limit import SlidingWindowLimiter
from .deps import client_ip, embedder, optional_source, search_limiter

router = APIRouter(tags=["search"])


def _run(
    db: Session,
    payload: SearchRequest,
    request: Request,
    limiter: SlidingWindowLimiter,
    embedder: Optional[Embedder],
) -> SearchResponseOut:
    response = content.search(
        db,
        payload.query,
        mode=payload.mode,
        source=payload.source,
        limit=payload.limit,
        offset=payload.offset,
        client_id=client_ip(request),
        limiter=limiter,
        embedder=embedder,
    )
    return SearchResponseOut.model_validate(response)


@router.get("/search", response_model=SearchResponseOut)
def search_get(
    request: Request,
    q: str = Query(default="", max_length=500),
    mode: Literal["keyword", "semantic", "hybrid"] = "hybrid",
    source: Source | None = Depends(optional_source),
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    limiter: SlidingWindowLimiter = Depends(search_limiter),
    query_embedder: Optional[Embedder] = Depends(embedder),
):
    payload = SearchRequest(query=q, mode=mode, source=source, limit=limit, offset=offset)
    return _run(db, payload, request, limiter, query_embedder)


@router.post("/search", response_model=SearchResponseOut)
def search_post(
    payload: SearchRequest,
    request: Request,
    db: Session = Depends(get_db),
    limiter: SlidingWindowLimiter = Depends(search_limiter),
    query_embedder: Optional[Embedder] = Depends(embedder),
):
    return _run(db, payload, request, limiter, query_embedder)


@router.get("/suggest", response_model=list[SuggestionOut])
def suggest(
    request: Request,
    q: str = Query(default="", max_length=200),
    source: Source | None = Depends(optional_source),
    limit: int = Query(default=10, ge=1, le=25),
    db: Session = Depends(get_db),
    limiter: SlidingWindowLimiter = Depends(search_limiter),
):
    return search_service.suggest(
        db,
        q,
        limit=limit,
        source=source,
        client_id=client_ip(request),
        limiter=limiter,
    )
