"""
Wayback Machine mirror for sites that are gone or block crawlers.

Listing uses the CDX API (one row per unique URL, newest successful
capture); content is the raw archived page from the ``id_`` endpoint, so
no Wayback toolbar is injected.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from ...core.errors import EncodingError
from ...core.sources import Source
from ..text import humanize_slug
from .base import PageRef, UpstreamClient, UpstreamPage

CDX_API = "https://web.archive.org/cdx/search/cdx"
WAYBACK_BASE = "https://web.archive.org/web"

_SKIP_EXTENSIONS = re.compile(r"\.(jpe?g|png|gif|css|js|pdf|zip|ico|svg|xml)$", re.IGNORECASE)
_STRIP_TAGS = ("script", "style", "noscript", "iframe", "form")


class WaybackClient(UpstreamClient):
    def __init__(self, source: Source, domain: str, path_prefix: str = "", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.source = source
        self.domain = domain
        self.path_prefix = path_prefix.strip("/")

    def slug_for(self, url: str) -> Optional[str]:
        """``http://vintagemachinery.org/pubs/12.html`` -> ``pubs__12.html``."""
        parts = urlsplit(url)
        if parts.query:
            return None
        path = parts.path.strip("/")
        if self.path_prefix:
            if not path.startswith(self.path_prefix + "/"):
                return None
            path = path[len(self.path_prefix) + 1:]
        if not path or _SKIP_EXTENSIONS.search(path):
            return None
        return path.replace("/", "__")

    def _cdx_rows(self) -> List[Dict[str, str]]:
        prefix = f"{self.path_prefix}/" if self.path_prefix else ""
        data = self.get_json(
            CDX_API,
            {
                "url": f"{self.domain}/{prefix}*",
                "output": "json",
                "fl": "timestamp,original,statuscode,mimetype",
                "filter": ["statuscode:200", "mimetype:text/html"],
                "collapse": "urlkey",
            },
            listing=True,
        )
        if not data:
            return []
        header, *rows = data
        return [dict(zip(header, row)) for row in rows]

    def list_pages(self, start_after: Optional[str] = None) -> Iterator[PageRef]:
        # One ref per slug; http/https and www variants collapse together
        latest: Dict[str, Dict[str, str]] = {}
        for row in self._cdx_rows():
            slug = self.slug_for(row["original"])
            if slug is None:
                continue
            seen = latest.get(slug)
            if seen is None or row["timestamp"] > seen["timestamp"]:
                latest[slug] = row

        for slug in sorted(latest):
            if start_after and slug <= start_after:
                continue
            row = latest[slug]
            # locator carries the capture so fetch needs no second CDX lookup
            yield PageRef(
                key=slug,
                title=humanize_slug(slug),
                locator=f"{row['timestamp']} {row['original']}",
            )

    def fetch_page(self, ref: PageRef) -> UpstreamPage:
        timestamp, _, url = (ref.locator or "").partition(" ")
        html = self.get_text(f"{WAYBACK_BASE}/{timestamp}id_/{url}")
        soup = BeautifulSoup(html, "html.parser")

        for tag in soup(_STRIP_TAGS):
            tag.decompose()
        body = soup.body or soup
        if not body.get_text(strip=True):
            raise EncodingError(f"Empty archived page {url}")

        heading = soup.find("h1")
        if heading and heading.get_text(strip=True):
            title = heading.get_text(" ", strip=True)
        elif soup.title and soup.title.string:
            title = soup.title.string.strip()
        else:
            title = humanize_slug(ref.key)

        return UpstreamPage(
            title=title,
            slug=ref.key,
            html=body.decode_contents(),
            revision_id=timestamp,
            metadata={"archived_url": url, "wayback_timestamp": timestamp},
        )
