from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ...core.config import get_settings
from ...core.errors import EncodingError, FetchFailedError, UpstreamUnreachableError
from ...core.sources import Source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageRef:
    """One entry of an upstream listing. ``key`` orders the listing and is the checkpoint."""

    key: str
    title: str
    locator: Optional[str] = None  # client-specific fetch hint


@dataclass
class UpstreamPage:
    title: str
    slug: str
    html: str
    raw: Optional[str] = None
    revision_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class Throttle:
    """
    Fixed minimum interval between requests, shared by every call on one client.

    Thread-safe so a client can be reused across worker threads.
    """

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_at = 0.0

    def wait(self) -> None:
        with self._lock:
            now = self._clock()
            delay = self._next_at - now
            if delay > 0:
                self._sleep(delay)
                now = self._clock()
            self._next_at = now + self.interval


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class UpstreamClient(ABC):
    """
    Listing + fetch contract for one upstream wiki.

    ``list_pages`` yields refs in ascending ``key`` order strictly after
    ``start_after``, so a stored key is enough to resume a run.
    """

    source: Source

    def __init__(
        self,
        http: Optional[httpx.Client] = None,
        throttle: Optional[Throttle] = None,
    ) -> None:
        settings = get_settings()
        self.http = http or httpx.Client(
            timeout=settings.SYNC_HTTP_TIMEOUT_SECONDS,
            headers={"User-Agent": settings.SYNC_USER_AGENT},
            follow_redirects=True,
        )
        self.throttle = throttle or Throttle(settings.SYNC_REQUEST_DELAY_SECONDS)

    @abstractmethod
    def list_pages(self, start_after: Optional[str] = None) -> Iterator[PageRef]:
        ...

    @abstractmethod
    def fetch_page(self, ref: PageRef) -> UpstreamPage:
        ...

    def list_changes(self, since: datetime) -> Optional[List[PageRef]]:
        """Refs changed upstream since ``since``, sorted by key; None when unsupported."""
        return None

    def close(self) -> None:
        self.http.close()

    # --- HTTP helpers -----------------------------------------------------------

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=5),
        stop=stop_after_attempt(2),
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        self.throttle.wait()
        resp = self.http.get(url, params=params)
        resp.raise_for_status()
        return resp

    def _get(self, url: str, params: Optional[Dict[str, Any]], listing: bool) -> httpx.Response:
        try:
            return self._request(url, params)
        except httpx.HTTPError as exc:
            error = UpstreamUnreachableError if listing else FetchFailedError
            raise error(f"{url}: {exc}") from exc

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None, listing: bool = False) -> Any:
        resp = self._get(url, params, listing)
        try:
            return resp.json()
        except ValueError as exc:
            raise EncodingError(f"{url}: response is not JSON") from exc

    def get_text(self, url: str, params: Optional[Dict[str, Any]] = None, listing: bool = False) -> str:
        resp = self._get(url, params, listing)
        try:
            return resp.content.decode(resp.encoding or "utf-8")
        except (UnicodeDecodeError, LookupError) as exc:
            raise EncodingError(f"{url}: undecodable body") from exc
