"""Gallery consumer: infinite-scroll feed plus live-update listener (httpx).

The server's push channel carries no ordering relative to what a client has
already paged through, so a ``new-photo`` event triggers a refresh of the pages
already loaded instead of an append. Channels cannot be resumed; after a
transport error the listener waits a fixed backoff and opens a fresh one.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx

logger = logging.getLogger(__name__)

REFRESH_EVENTS = frozenset(("new-photo", "photo-deleted"))


def merge_photos(accumulated: Iterable[dict], fetched: Iterable[dict]) -> list[dict]:
    """Append ``fetched`` to ``accumulated`` skipping ids already present.

    A concurrent insert shifts page boundaries, so the same photo can show up
    at the end of one page and the start of the next.
    """
    merged: list[dict] = []
    seen: set = set()
    for photo in list(accumulated) + list(fetched):
        pid = photo.get("id")
        if pid in seen:
            continue
        seen.add(pid)
        merged.append(photo)
    return merged


def has_more(fetched_count: int, page_size: int, current_page: int, page_count: int) -> bool:
    # Either check alone is wrong under concurrent writes
    return fetched_count == page_size and current_page < page_count


@dataclass
class GalleryFeed:
    http: httpx.AsyncClient
    page_size: int = 12
    path: str = "/api/gallery"
    photos: list[dict] = field(default_factory=list)
    page: int = 0
    pages: int = 0
    total: int = 0
    more: bool = True

    async def fetch_page(self, page: int) -> dict:
        resp = await self.http.get(self.path, params={"page": page, "limit": self.page_size})
        resp.raise_for_status()
        return resp.json()

    def _apply_pagination(self, data: dict, fetched_count: int) -> None:
        pagination = data.get("pagination") or {}
        self.total = int(pagination.get("total", 0))
        self.pages = int(pagination.get("pages", 0))
        self.page = int(pagination.get("currentPage", self.page))
        self.more = has_more(fetched_count, self.page_size, self.page, self.pages)

    async def load_next(self) -> list[dict]:
        """Fetch the next page and merge it; returns the photos that were new."""
        if not self.more:
            return []
        data = await self.fetch_page(self.page + 1)
        fetched = data.get("photos") or []
        known = {p.get("id") for p in self.photos}
        self.photos = merge_photos(self.photos, fetched)
        self._apply_pagination(data, len(fetched))
        return [p for p in fetched if p.get("id") not in known]

    async def refresh(self) -> None:
        """Reload every page already shown, newest first."""
        upto = max(self.page, 1)
        photos: list[dict] = []
        data: dict = {}
        fetched: list = []
        for page in range(1, upto + 1):
            data = await self.fetch_page(page)
            fetched = data.get("photos") or []
            photos = merge_photos(photos, fetched)
            if not fetched:
                break
        self.photos = photos
        self._apply_pagination(data, len(fetched))


def parse_event(line: str) -> Optional[dict]:
    """Decode one ``data: {...}`` line; other lines yield None."""
    if not line.startswith("data:"):
        return None
    try:
        payload = json.loads(line[len("data:") :].strip())
    except ValueError:
        logger.warning("live.bad_frame", extra={"line": line[:200]})
        return None
    return payload if isinstance(payload, dict) else None


class LiveUpdateListener:
    def __init__(
        self,
        http: httpx.AsyncClient,
        on_event: Callable[[dict], Awaitable[Any]],
        backoff_seconds: float = 5.0,
        path: str = "/api/gallery/updates",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.http = http
        self.on_event = on_event
        self.backoff_seconds = backoff_seconds
        self.path = path
        self._sleep = sleep
        self._stopped = asyncio.Event()
        self.connections = 0

    def stop(self) -> None:
        self._stopped.set()

    async def _consume_once(self) -> None:
        async with self.http.stream("GET", self.path, timeout=None) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                event = parse_event(line)
                if event is not None:
                    await self.on_event(event)
                if self._stopped.is_set():
                    return

    async def run(self, max_connections: Optional[int] = None) -> None:
        """Keep a channel open until :meth:`stop`; reconnects after each drop."""
        while not self._stopped.is_set():
            self.connections += 1
            try:
                await self._consume_once()
            except httpx.HTTPError as e:
                logger.warning(
                    "live.transport_error",
                    extra={"error": str(e), "connection": self.connections},
                )
            except Exception:
                logger.warning(
                    "live.listener_error",
                    exc_info=True,
                    extra={"connection": self.connections},
                )
            if self._stopped.is_set():
                break
            if max_connections is not None and self.connections >= max_connections:
                break
            await self._sleep(self.backoff_seconds)


class GalleryFollower(LiveUpdateListener):
    """Listener that keeps ``feed`` current, one refresh in flight at a time.

    Events that arrive while a refresh is running only mark the feed dirty, so a
    burst of N changes (a batch delete) costs at most two refreshes.
    """

    def __init__(self, feed: GalleryFeed, http: httpx.AsyncClient, backoff_seconds: float = 5.0):
        super().__init__(http, self._on_event, backoff_seconds=backoff_seconds)
        self.feed = feed
        self.refreshes = 0
        self._dirty = False
        self._refresh_task: Optional[asyncio.Task] = None

    async def _on_event(self, event: dict) -> None:
        if event.get("type") in REFRESH_EVENTS:
            self.request_refresh()

    def request_refresh(self) -> None:
        self._dirty = True
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def _refresh_loop(self) -> None:
        while self._dirty:
            self._dirty = False
            self.refreshes += 1
            try:
                await self.feed.refresh()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("live.refresh_failed", extra={"error": str(e)})

    async def run(self, max_connections: Optional[int] = None) -> None:
        try:
            await super().run(max_connections)
        except BaseException:
            if self._refresh_task is not None:
                self._refresh_task.cancel()
            raise
        if self._refresh_task is not None:
            await self._refresh_task


def follow_gallery(
    feed: GalleryFeed, http: httpx.AsyncClient, backoff_seconds: float = 5.0
) -> GalleryFollower:
    """Build a listener that refreshes ``feed`` whenever the gallery changes."""
    return GalleryFollower(feed, http, backoff_seconds=backoff_seconds)
