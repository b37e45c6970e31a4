from __future__ import annotations

from typing import Any, Iterator, Optional
from urllib.parse import quote, unquote

from bs4 import BeautifulSoup

from ...core.errors import EncodingError
from ...core.sources import Source
from .base import PageRef, UpstreamClient, UpstreamPage

SHOW_PREFIX = "/nlab/show/"


class NLabClient(UpstreamClient):
    """nLab (Instiki): the "All Pages" index for listing, ``/show/<name>`` for content."""

    source = Source.NLAB

    def __init__(self, base_url: str = "https://ncatlab.org", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")

    def list_pages(self, start_after: Optional[str] = None) -> Iterator[PageRef]:
        html = self.get_text(f"{self.base_url}/nlab/list", listing=True)
        soup = BeautifulSoup(html, "html.parser")

        names = set()
        for link in soup.find_all("a", href=True):
            href = link["href"]
            if href.startswith(SHOW_PREFIX):
                name = unquote(href[len(SHOW_PREFIX):]).strip()
                if name:
                    names.add(name)

        for name in sorted(names):
            if start_after and name <= start_after:
                continue
            yield PageRef(key=name, title=name)

    def fetch_page(self, ref: PageRef) -> UpstreamPage:
        html = self.get_text(f"{self.base_url}{SHOW_PREFIX}{quote(ref.key)}")
        soup = BeautifulSoup(html, "html.parser")

        body = soup.find(id="revision")
        if body is None or not body.get_text(strip=True):
            raise EncodingError(f"No page body for {ref.key!r}")

        heading = soup.find("h1", id="pageName")
        title = heading.get_text(" ", strip=True) if heading else ref.title
        # nLab page names are space-separated; slugs use underscores
        return UpstreamPage(
            title=title,
            slug=ref.key.replace(" ", "_"),
            html=body.decode_contents(),
            metadata={"name": ref.key},
        )
