"""
Hybrid article search.

Keyword rank comes from PostgreSQL full-text search over title + extracted
text; semantic rank from pgvector cosine distance to the query embedding.
Hybrid mode merges the two candidate lists with Reciprocal Rank Fusion.

Other database dialects (the test suite runs on SQLite) get portable
equivalents computed in Python over the same columns.
"""
from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import is_postgres
from ..core.errors import EmbeddingUnavailableError
from ..core.sources import Source
from ..models.article import Article
from .embeddings import Embedder, get_embedder
from .rate_limit import SlidingWindowLimiter, get_search_limiter
from .text import query_terms, to_tsquery, trigram_similarity

logger = logging.getLogger(__name__)

KEYWORD = "keyword"
SEMANTIC = "semantic"
HYBRID = "hybrid"
MODES = (KEYWORD, SEMANTIC, HYBRID)

RRF_K = 60
SNIPPET_CHARS = 160
TS_CONFIG = "english"
SUGGEST_MIN_SIMILARITY = 0.3


@dataclass
class SearchResult:
    source: Source
    slug: str
    title: str
    snippet: str
    score: float


@dataclass
class SearchResponse:
    results: List[SearchResult] = field(default_factory=list)
    total_count: int = 0


Ranked = List[Tuple[Article, float]]


# --- snippets --------------------------------------------------------------------


def make_snippet(text: Optional[str], terms: List[str], width: int = SNIPPET_CHARS) -> str:
    """
    HTML-escaped window around the first term match, matches wrapped in
    ``<mark>``. Without terms (or without a match) the leading text is used.
    """
    if not text:
        return ""
    lower = text.lower()
    positions = [lower.find(t.lower()) for t in terms]
    positions = [p for p in positions if p >= 0]

    start = 0
    if positions:
        start = max(0, min(positions) - width // 3)
    end = min(len(text), start + width)

    window = html.escape(text[start:end])
    if terms:
        pattern = re.compile("|".join(re.escape(t) for t in sorted(terms, key=len, reverse=True)), re.IGNORECASE)
        window = pattern.sub(lambda m: f"<mark>{m.group(0)}</mark>", window)

    prefix = "…" if start > 0 else ""
    suffix = "…" if end < len(text) else ""
    return f"{prefix}{window}{suffix}"


# --- keyword signal -------------------------------------------------------------------


def _ts_vector():
    return func.to_tsvector(
        TS_CONFIG,
        func.coalesce(Article.title, "") + " " + func.coalesce(Article.extracted_text, ""),
    )


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _like(term: str) -> str:
    return f"%{_escape_like(term)}%"


def _portable_matches(db: Session, terms: List[str], source: Optional[Source]):
    query = db.query(Article)
    if source is not None:
        query = query.filter(Article.source == source)
    for term in terms:
        pattern = _like(term)
        query = query.filter(
            or_(
                Article.title.ilike(pattern, escape="\\"),
                Article.extracted_text.ilike(pattern, escape="\\"),
            )
        )
    return query


def _portable_score(article: Article, terms: List[str], raw_query: str) -> float:
    title = (article.title or "").lower()
    body = (article.extracted_text or "").lower()
    score = 0.0
    if title == raw_query.strip().lower():
        score += 1.0
    for term in terms:
        t = term.lower()
        if t in title:
            score += 0.5
        score += min(body.count(t), 10) * 0.01
    return score


def _recency(article: Article) -> float:
    return article.synced_at.timestamp() if article.synced_at else 0.0


def keyword_candidates(
    db: Session,
    query: str,
    source: Optional[Source] = None,
    limit: int = 50,
) -> Tuple[Ranked, int]:
    """Top ``limit`` keyword matches with scores, plus the total match count."""
    terms = query_terms(query)
    if not terms:
        return [], 0

    if is_postgres(db):
        tsquery = func.to_tsquery(TS_CONFIG, to_tsquery(query))
        vector = _ts_vector()
        exact_title = case((func.lower(Article.title) == query.strip().lower(), 1.0), else_=0.0)
        rank = (func.ts_rank(vector, tsquery) + exact_title).label("rank")

        matches = db.query(Article).filter(vector.op("@@")(tsquery))
        if source is not None:
            matches = matches.filter(Article.source == source)
        total = matches.count()
        rows = (
            matches.add_columns(rank)
            .order_by(rank.desc(), Article.synced_at.desc().nullslast(), Article.id.asc())
            .limit(limit)
            .all()
        )
        return [(article, float(score)) for article, score in rows], total

    candidates = _portable_matches(db, terms, source).all()
    scored = [(a, _portable_score(a, terms, query)) for a in candidates]
    scored.sort(key=lambda pair: (-pair[1], -_recency(pair[0]), pair[0].id))
    return scored[:limit], len(scored)


# --- semantic signal --------------------------------------------------------------------


def semantic_candidates(
    db: Session,
    query: str,
    embedder: Optional[Embedder],
    source: Optional[Source] = None,
    limit: int = 50,
) -> Ranked:
    """Nearest articles by cosine similarity; empty when embeddings are unavailable."""
    if embedder is None or not query.strip():
        return []
    try:
        vector = embedder.embed(query)
    except EmbeddingUnavailableError:
        logger.warning("Embedding service unavailable; no semantic candidates", extra={"step": "search"})
        return []

    if is_postgres(db):
        distance = Article.embedding.cosine_distance(vector).label("distance")
        rows = db.query(Article, distance).filter(Article.embedding.isnot(None))
        if source is not None:
            rows = rows.filter(Article.source == source)
        rows = rows.order_by(distance.asc()).limit(limit).all()
        return [(article, 1.0 - float(dist)) for article, dist in rows]

    articles = db.query(Article).filter(Article.embedding.isnot(None))
    if source is not None:
        articles = articles.filter(Article.source == source)
    articles = articles.all()
    if not articles:
        return []

    q = np.asarray(vector, dtype=float)
    matrix = np.asarray([np.asarray(a.embedding, dtype=float) for a in articles])
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    norms[norms == 0] = 1.0
    similarities = matrix @ q / norms
    order = np.argsort(-similarities, kind="stable")[:limit]
    return [(articles[i], float(similarities[i])) for i in order]


# --- merge -----------------------------------------------------------------------------


def reciprocal_rank_fusion(keyword: Ranked, semantic: Ranked, k: int = RRF_K) -> Ranked:
    """
    Merge two ranked lists: score = sum of 1 / (k + rank) over the lists an
    article appears in. Ties go to the better keyword rank, then the most
    recently synced article.
    """
    scores: Dict[int, float] = {}
    articles: Dict[int, Article] = {}
    keyword_rank: Dict[int, int] = {}

    for rank, (article, _) in enumerate(keyword, start=1):
        scores[article.id] = scores.get(article.id, 0.0) + 1.0 / (k + rank)
        articles[article.id] = article
        keyword_rank[article.id] = rank
    for rank, (article, _) in enumerate(semantic, start=1):
        scores[article.id] = scores.get(article.id, 0.0) + 1.0 / (k + rank)
        articles[article.id] = article

    no_rank = len(keyword) + 1
    ordered = sorted(
        scores,
        key=lambda aid: (-scores[aid], keyword_rank.get(aid, no_rank), -_recency(articles[aid])),
    )
    return [(articles[aid], scores[aid]) for aid in ordered]


# --- entry points -------------------------------------------------------------------------


def _clamp_limit(limit: Optional[int]) -> int:
    settings = get_settings()
    if limit is None:
        return settings.SEARCH_DEFAULT_LIMIT
    return max(1, min(int(limit), settings.SEARCH_MAX_LIMIT))


def search(
    db: Session,
    query: str,
    mode: str = HYBRID,
    source: Optional[Source] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    client_id: Optional[str] = None,
    limiter: Optional[SlidingWindowLimiter] = None,
    embedder: Optional[Embedder] = None,
) -> SearchResponse:
    """
    Run a search for one client.

    The client's rate limit is checked before anything else; RateLimitedError
    propagates to the caller. Embedding failures never raise: semantic mode
    returns nothing and hybrid mode falls back to keyword ranking.
    """
    if mode not in MODES:
        raise ValueError(f"Unknown search mode: {mode!r}")

    (limiter or get_search_limiter()).check(client_id)

    query = (query or "").strip()
    if not query:
        return SearchResponse()

    limit = _clamp_limit(limit)
    offset = max(0, offset)
    fetch_limit = max(limit * 2, offset + limit)
    if mode != KEYWORD and embedder is None:
        embedder = get_embedder()

    terms = query_terms(query)
    keyword: Ranked = []
    keyword_total = 0
    semantic: Ranked = []

    if mode in (KEYWORD, HYBRID):
        keyword, keyword_total = keyword_candidates(db, query, source, fetch_limit)
    if mode in (SEMANTIC, HYBRID):
        semantic = semantic_candidates(db, query, embedder, source, fetch_limit)

    if mode == KEYWORD:
        ranked, total = keyword, keyword_total
    elif mode == SEMANTIC:
        ranked, total = semantic, len(semantic)
    else:
        ranked = reciprocal_rank_fusion(keyword, semantic)
        total = max(keyword_total, len(ranked))

    snippet_terms = [] if mode == SEMANTIC else terms
    results = [
        SearchResult(
            source=article.source,
            slug=article.slug,
            title=article.title,
            snippet=make_snippet(article.extracted_text, snippet_terms),
            score=round(score, 6),
        )
        for article, score in ranked[offset:offset + limit]
    ]

    logger.info(
        "Search %r (%s): %d results",
        query,
        mode,
        total,
        extra={"client_ip": client_id, "step": "search"},
    )
    return SearchResponse(results=results, total_count=total)


def count(db: Session, query: str, source: Optional[Source] = None) -> int:
    """Keyword match count, without the per-client rate check."""
    terms = query_terms(query)
    if not terms:
        return 0
    if is_postgres(db):
        matches = db.query(Article).filter(_ts_vector().op("@@")(func.to_tsquery(TS_CONFIG, to_tsquery(query))))
        if source is not None:
            matches = matches.filter(Article.source == source)
        return matches.count()
    return _portable_matches(db, terms, source).count()


def source_counts(db: Session, query: str) -> Dict[Source, int]:
    return {source: count(db, query, source) for source in Source}


def suggest(
    db: Session,
    prefix: str,
    limit: int = 10,
    source: Optional[Source] = None,
    client_id: Optional[str] = None,
    limiter: Optional[SlidingWindowLimiter] = None,
) -> List[Article]:
    """
    Title completions: prefix matches first, then fuzzy (trigram) matches.

    Shares the search rate limit; RateLimitedError propagates.
    """
    (limiter or get_search_limiter()).check(client_id)

    prefix = (prefix or "").strip()
    if not prefix:
        return []

    base = db.query(Article)
    if source is not None:
        base = base.filter(Article.source == source)

    found = (
        base.filter(Article.title.ilike(f"{_escape_like(prefix)}%", escape="\\"))
        .order_by(func.length(Article.title), Article.title)
        .limit(limit)
        .all()
    )
    if len(found) >= limit:
        return found

    seen = {a.id for a in found}
    remaining = limit - len(found)
    if is_postgres(db):
        similarity = func.similarity(Article.title, prefix)
        fuzzy_query = base.filter(similarity > SUGGEST_MIN_SIMILARITY)
        if seen:
            fuzzy_query = fuzzy_query.filter(~Article.id.in_(seen))
        fuzzy = (
            fuzzy_query
            .order_by(similarity.desc())
            .limit(remaining)
            .all()
        )
    else:
        scored = [
            (a, trigram_similarity(a.title, prefix))
            for a in base.all()
            if a.id not in seen
        ]
        scored = [pair for pair in scored if pair[1] > SUGGEST_MIN_SIMILARITY]
        scored.sort(key=lambda pair: -pair[1])
        fuzzy = [a for a, _ in scored[:remaining]]
    return found + fuzzy


def embedded_count(db: Session, source: Optional[Source] = None) -> int:
    query = db.query(Article).filter(Article.embedding.isnot(None))
    if source is not None:
        query = query.filter(Article.source == source)
    return query.count()
