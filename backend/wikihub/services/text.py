from __future__ import annotations

import hashlib
import re

from bs4 import BeautifulSoup

MAX_EXTRACTED_CHARS = 100_000

_WS = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w]+", re.UNICODE)

# Elements whose text is never part of the readable body
_SKIP_TAGS = ("script", "style", "noscript", "template")


def hash_content(content: str | bytes) -> str:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def extract_text(html: str, max_chars: int = MAX_EXTRACTED_CHARS) -> str:
    """Visible text of an HTML fragment with whitespace collapsed."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_SKIP_TAGS):
        tag.decompose()
    text = _WS.sub(" ", soup.get_text(" ")).strip()
    return text[:max_chars]


def humanize_slug(slug: str) -> str:
    """``Abyssal_whip`` -> ``Abyssal whip``; archive slugs keep their last segment."""
    tail = slug.split("__")[-1]
    return tail.replace("_", " ").strip()


def normalize_slug(title: str) -> str:
    """MediaWiki-style slug: spaces become underscores, first letter upper-cased."""
    slug = _WS.sub("_", title.strip())
    if slug:
        slug = slug[0].upper() + slug[1:]
    return slug


def query_terms(query: str) -> list[str]:
    """Split a free-text query into bare word terms (punctuation stripped)."""
    terms = []
    for raw in (query or "").split():
        term = _NON_WORD.sub("", raw)
        if term:
            terms.append(term)
    return terms


def to_tsquery(query: str) -> str | None:
    """AND-join of the query's terms for ``to_tsquery``, or None if nothing is left."""
    terms = query_terms(query)
    if not terms:
        return None
    return " & ".join(terms)


def trigrams(text: str) -> set[str]:
    """pg_trgm trigram set: lower-cased words padded with two leading and one trailing blank."""
    grams: set[str] = set()
    for word in re.findall(r"[^\W_]+", (text or "").lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return grams


def trigram_similarity(a: str, b: str) -> float:
    """Same result as pg_trgm ``similarity(a, b)``: shared trigrams over the union."""
    ta, tb = trigrams(a), trigrams(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)
