"""
Test doubles and canned upstream payloads shared across the wiki tests.
"""
from typing import Dict, Iterator, List, Optional, Set

from wikihub.core.errors import FetchFailedError
from wikihub.core.sources import Source
from wikihub.services.blob_store import BlobStoreError, FilesystemBlobStore
from wikihub.services.upstream import PageRef, UpstreamClient, UpstreamPage


# ---------------------------------------------------------------------------
# Doubles
# ---------------------------------------------------------------------------

class FailingBlobStore(FilesystemBlobStore):
    """Reads work, every write fails."""

    def put(self, key: str, data: bytes) -> None:
        raise BlobStoreError(f"disk full writing {key}")


class FakeUpstream(UpstreamClient):
    """
    Scripted upstream: ``pages`` maps listing key -> UpstreamPage.

    Keys in ``failing`` raise FetchFailedError on fetch; ``listing_error``
    is raised from list_pages; ``changes`` (when set) is served by list_changes.
    """

    def __init__(
        self,
        source: Source,
        pages: Dict[str, UpstreamPage],
        failing: Optional[Set[str]] = None,
        listing_error: Optional[Exception] = None,
        changes: Optional[List[str]] = None,
    ) -> None:
        self.source = source
        self.pages = pages
        self.failing = failing or set()
        self.listing_error = listing_error
        self.changes = changes
        self.fetched: List[str] = []
        self.changes_since = None

    def list_pages(self, start_after: Optional[str] = None) -> Iterator[PageRef]:
        if self.listing_error is not None:
            raise self.listing_error
        for key in sorted(self.pages):
            if start_after and key <= start_after:
                continue
            yield PageRef(key=key, title=self.pages[key].title)

    def list_changes(self, since):
        if self.changes is None:
            return None
        self.changes_since = since
        return [PageRef(key=k, title=self.pages[k].title) for k in sorted(self.changes)]

    def fetch_page(self, ref: PageRef) -> UpstreamPage:
        self.fetched.append(ref.key)
        if ref.key in self.failing:
            raise FetchFailedError(f"timeout fetching {ref.key}")
        return self.pages[ref.key]

    def close(self) -> None:
        pass


def make_page(title: str, body: str = "", slug: Optional[str] = None) -> UpstreamPage:
    body = body or f"Article about {title}."
    return UpstreamPage(
        title=title,
        slug=slug or title.replace(" ", "_"),
        html=f"<p>{body}</p>",
        raw=f"'''{title}''' {body}",
        revision_id="1",
    )


def make_pages(titles: List[str]) -> Dict[str, UpstreamPage]:
    return {title: make_page(title) for title in titles}


# ---------------------------------------------------------------------------
# Canned upstream responses
# ---------------------------------------------------------------------------

ALLPAGES_FIRST = {
    "batchcomplete": True,
    "continue": {"apcontinue": "Bronze_dagger", "continue": "-||"},
    "query": {"allpages": [
        {"pageid": 1, "ns": 0, "title": "Abyssal whip"},
        {"pageid": 2, "ns": 0, "title": "Air rune"},
    ]},
}

ALLPAGES_SECOND = {
    "batchcomplete": True,
    "query": {"allpages": [
        {"pageid": 3, "ns": 0, "title": "Bronze dagger"},
    ]},
}

PARSE_WHIP = {
    "parse": {
        "title": "Abyssal whip",
        "pageid": 1,
        "revid": 14999,
        "text": "<div class=\"mw-parser-output\"><p>The <b>abyssal whip</b> is a one-handed weapon.</p></div>",
        "wikitext": "The '''abyssal whip''' is a one-handed weapon.",
    }
}

RECENT_CHANGES = {
    "query": {"recentchanges": [
        {"type": "edit", "title": "Air rune", "revid": 15001, "timestamp": "2026-10-18T10:00:00Z"},
        {"type": "new", "title": "Abyssal whip", "revid": 15000, "timestamp": "2026-10-18T09:00:00Z"},
        {"type": "edit", "title": "Air rune", "revid": 14990, "timestamp": "2026-10-18T08:00:00Z"},
    ]},
}

NLAB_INDEX = """
<html><body>
<div id="Content">
  <ul>
    <li><a href="/nlab/show/category">category</a></li>
    <li><a href="/nlab/show/adjoint%20functor">adjoint functor</a></li>
    <li><a href="/nlab/show/category">category</a></li>
    <li><a href="/nlab/list">All Pages</a></li>
  </ul>
</div>
</body></html>
"""

NLAB_PAGE = """
<html><body>
<h1 id="pageName">adjoint functor</h1>
<div id="revision">
  <p>An <em>adjoint functor</em> is one half of an adjunction.</p>
</div>
<div class="navigation">Edit | History</div>
</body></html>
"""

CDX_ROWS = [
    ["timestamp", "original", "statuscode", "mimetype"],
    ["20180101000000", "http://vintagemachinery.org/mfgindex/detail.aspx", "200", "text/html"],
    ["20190101000000", "http://vintagemachinery.org/pubs/12.html", "200", "text/html"],
    ["20210101000000", "https://vintagemachinery.org/pubs/12.html", "200", "text/html"],
    ["20200101000000", "http://vintagemachinery.org/images/logo.png", "200", "text/html"],
    ["20200101000000", "http://vintagemachinery.org/glossary.html?id=3", "200", "text/html"],
    ["20170101000000", "http://vintagemachinery.org/glossary.html", "200", "text/html"],
]

ARCHIVED_PAGE = """
<html><head><title>Delta Manual 12</title><script>track()</script></head>
<body>
<h1>Delta Unisaw Manual</h1>
<p>Parts list and setup instructions.</p>
<form><input name="q"></form>
</body></html>
"""
