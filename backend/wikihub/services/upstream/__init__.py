from __future__ import annotations

from typing import Any

from ...core.sources import Source
from .base import PageRef, Throttle, UpstreamClient, UpstreamPage
from .mediawiki import MediaWikiClient
from .nlab import NLabClient
from .wayback import WaybackClient


def get_client(source: Source, **kwargs: Any) -> UpstreamClient:
    """Build the upstream client for a source. ``kwargs`` go to the client (``http``, ``throttle``)."""
    if source == Source.OSRS:
        return MediaWikiClient(source, "https://oldschool.runescape.wiki/api.php", **kwargs)
    if source == Source.WIKIPEDIA:
        return MediaWikiClient(source, "https://en.wikipedia.org/w/api.php", **kwargs)
    if source == Source.NLAB:
        return NLabClient(**kwargs)
    if source == Source.VINTAGE_MACHINERY:
        return WaybackClient(source, "vintagemachinery.org", **kwargs)
    if source == Source.WIKIART:
        return WaybackClient(source, "www.wikiart.org", path_prefix="en", **kwargs)
    raise ValueError(f"No upstream client for {source!r}")


__all__ = [
    "MediaWikiClient",
    "NLabClient",
    "PageRef",
    "Throttle",
    "UpstreamClient",
    "UpstreamPage",
    "WaybackClient",
    "get_client",
]
