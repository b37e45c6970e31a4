"""
Reviewable diff between an article's current HTML and a suggested edit.

Both sides are split into tags, words and whitespace runs so a changed
word inside a paragraph shows as one small deletion/insertion instead of
the whole line.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import List

EQUAL = "equal"
DELETED = "deleted"
INSERTED = "inserted"

_TOKEN = re.compile(r"<[^>]+>|\s+|[^<\s]+|<")


@dataclass
class DiffSpan:
    kind: str
    text: str


def tokenize(html: str) -> List[str]:
    return _TOKEN.findall(html or "")


def _append(spans: List[DiffSpan], kind: str, text: str) -> None:
    if not text:
        return
    if spans and spans[-1].kind == kind:
        spans[-1].text += text
    else:
        spans.append(DiffSpan(kind, text))


def diff_html(old: str, new: str) -> List[DiffSpan]:
    """
    Longest-matching-block diff of two HTML strings.

    Concatenating the ``equal`` + ``deleted`` spans rebuilds ``old``;
    ``equal`` + ``inserted`` rebuilds ``new``.
    """
    a = tokenize(old)
    b = tokenize(new)
    matcher = SequenceMatcher(None, a, b, autojunk=False)

    spans: List[DiffSpan] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            _append(spans, EQUAL, "".join(a[i1:i2]))
        else:
            # "replace" is a deletion followed by an insertion
            _append(spans, DELETED, "".join(a[i1:i2]))
            _append(spans, INSERTED, "".join(b[j1:j2]))
    return spans


def diff_stats(spans: List[DiffSpan]) -> dict:
    return {
        "deleted_chars": sum(len(s.text) for s in spans if s.kind == DELETED),
        "inserted_chars": sum(len(s.text) for s in spans if s.kind == INSERTED),
        "unchanged": all(s.kind == EQUAL for s in spans),
    }
