from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from ...core.errors import EncodingError, FetchFailedError, UpstreamUnreachableError
from ...core.sources import Source
from ..text import normalize_slug
from .base import PageRef, UpstreamClient, UpstreamPage

logger = logging.getLogger(__name__)

MAIN_NAMESPACE = 0


class MediaWikiClient(UpstreamClient):
    """
    MediaWiki Action API client (OSRS Wiki, English Wikipedia).

    Listing walks ``list=allpages`` in title order; content comes from
    ``action=parse`` so the stored HTML is what the wiki itself renders.
    """

    def __init__(self, source: Source, api_url: str, batch_size: int = 500, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.source = source
        self.api_url = api_url
        self.batch_size = batch_size

    def _query(self, params: Dict[str, Any], listing: bool) -> Dict[str, Any]:
        data = self.get_json(self.api_url, {"format": "json", "formatversion": 2, **params}, listing=listing)
        if "error" in data:
            error = data["error"]
            exc = UpstreamUnreachableError if listing else FetchFailedError
            raise exc(f"{error.get('code')}: {error.get('info')}")
        return data

    def list_pages(self, start_after: Optional[str] = None) -> Iterator[PageRef]:
        params: Dict[str, Any] = {
            "action": "query",
            "list": "allpages",
            "apnamespace": MAIN_NAMESPACE,
            "apfilterredir": "nonredirects",
            "aplimit": self.batch_size,
        }
        if start_after:
            # apfrom is inclusive
            params["apfrom"] = start_after

        while True:
            data = self._query(params, listing=True)
            for page in data.get("query", {}).get("allpages", []):
                title = page["title"]
                if start_after and title <= start_after:
                    continue
                yield PageRef(key=title, title=title)

            cont = data.get("continue", {}).get("apcontinue")
            if not cont:
                return
            params["apcontinue"] = cont

    def list_changes(self, since: datetime) -> Optional[List[PageRef]]:
        params: Dict[str, Any] = {
            "action": "query",
            "list": "recentchanges",
            "rcprop": "title|ids|timestamp",
            "rctype": "edit|new",
            "rcnamespace": MAIN_NAMESPACE,
            "rclimit": self.batch_size,
            # recentchanges walks newest-first; rcend is the older bound
            "rcend": since.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        titles = set()
        while True:
            data = self._query(params, listing=True)
            for change in data.get("query", {}).get("recentchanges", []):
                titles.add(change["title"])
            cont = data.get("continue", {}).get("rccontinue")
            if not cont:
                break
            params["rccontinue"] = cont

        return [PageRef(key=title, title=title) for title in sorted(titles)]

    def fetch_page(self, ref: PageRef) -> UpstreamPage:
        data = self._query(
            {
                "action": "parse",
                "page": ref.title,
                "prop": "text|wikitext|revid",
                "redirects": 1,
                "disableeditsection": 1,
            },
            listing=False,
        )
        parsed = data.get("parse") or {}
        html = parsed.get("text")
        if not isinstance(html, str) or not html.strip():
            raise EncodingError(f"Empty parse output for {ref.title!r}")

        title = parsed.get("title") or ref.title
        revid = parsed.get("revid")
        return UpstreamPage(
            title=title,
            slug=normalize_slug(title),
            html=html,
            raw=parsed.get("wikitext"),
            revision_id=str(revid) if revid is not None else None,
            metadata={"pageid": parsed.get("pageid")},
        )
