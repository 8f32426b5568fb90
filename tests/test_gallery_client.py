import asyncio
import json

import httpx

from app.client.gallery_sync import (
    GalleryFeed,
    LiveUpdateListener,
    follow_gallery,
    has_more,
    merge_photos,
    parse_event,
)


def _photos(*ids):
    return [{"id": pid} for pid in ids]


def _page(ids, page, pages, total, limit=2):
    return {
        "photos": _photos(*ids),
        "pagination": {"total": total, "pages": pages, "currentPage": page, "limit": limit},
    }


def test_merge_drops_duplicates_across_pages():
    merged = merge_photos(_photos("e", "d"), _photos("d", "c"))
    assert [p["id"] for p in merged] == ["e", "d", "c"]


def test_has_more_requires_both_conditions():
    assert has_more(2, 2, 1, 3) is True
    assert has_more(1, 2, 1, 3) is False
    assert has_more(2, 2, 3, 3) is False


def test_parse_event():
    assert parse_event('data: {"type":"new-photo","photoId":"p1"}') == {
        "type": "new-photo",
        "photoId": "p1",
    }
    assert parse_event("") is None
    assert parse_event(": keep-alive") is None
    assert parse_event("data: {broken") is None


def test_feed_pages_until_exhausted():
    # A photo inserted between requests pushes "c" onto page 2 as well
    pages = {
        1: _page(["e", "d"], 1, 3, 5),
        2: _page(["d", "c"], 2, 3, 6),
        3: _page(["b"], 3, 3, 6),
    }

    def handler(request):
        page = int(request.url.params["page"])
        return httpx.Response(200, json=pages[page])

    async def scenario():
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://gallery.test"
        ) as http:
            feed = GalleryFeed(http, page_size=2)
            await feed.load_next()
            added = await feed.load_next()
            await feed.load_next()
            nothing = await feed.load_next()
            return feed, added, nothing

    feed, added, nothing = asyncio.run(scenario())
    assert [p["id"] for p in feed.photos] == ["e", "d", "c", "b"]
    assert [p["id"] for p in added] == ["c"]
    assert nothing == []
    assert feed.more is False


def test_new_photo_event_refreshes_loaded_pages():
    state = {"ids": ["b", "a"]}
    requests = []

    def handler(request):
        if request.url.path == "/api/gallery/updates":
            state["ids"] = ["c", "b", "a"]
            body = 'data: {"type":"connected"}\n\ndata: {"type":"new-photo","photoId":"c"}\n\n'
            return httpx.Response(
                200, content=body.encode(), headers={"content-type": "text/event-stream"}
            )
        requests.append(dict(request.url.params))
        page = int(request.url.params["page"])
        limit = int(request.url.params["limit"])
        ids = state["ids"]
        chunk = ids[(page - 1) * limit : page * limit]
        pages = -(-len(ids) // limit)
        return httpx.Response(200, json=_page(chunk, page, pages, len(ids), limit))

    async def scenario():
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://gallery.test"
        ) as http:
            feed = GalleryFeed(http, page_size=12)
            await feed.load_next()
            listener = follow_gallery(feed, http, backoff_seconds=0)
            await listener.run(max_connections=1)
            return feed

    feed = asyncio.run(scenario())
    assert [p["id"] for p in feed.photos] == ["c", "b", "a"]
    assert feed.photos[0]["id"] == "c"
    assert len(requests) == 2


def test_listener_reconnects_after_transport_error():
    attempts = {"n": 0}
    sleeps = []
    seen = []

    def handler(request):
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        frame = "data: " + json.dumps({"type": "photo-deleted", "photoId": "x"}) + "\n\n"
        return httpx.Response(200, content=frame.encode())

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    async def on_event(event):
        seen.append(event)

    async def scenario():
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://gallery.test"
        ) as http:
            listener = LiveUpdateListener(http, on_event, backoff_seconds=5.0, sleep=fake_sleep)
            await listener.run(max_connections=2)
            return listener

    listener = asyncio.run(scenario())
    assert listener.connections == 2
    assert sleeps == [5.0]
    assert seen == [{"type": "photo-deleted", "photoId": "x"}]


def test_listener_stops_on_request():
    def handler(request):
        return httpx.Response(200, content=b'data: {"type":"connected"}\n\n')

    async def scenario():
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://gallery.test"
        ) as http:
            holder = {}

            async def on_event(event):
                holder["listener"].stop()

            listener = LiveUpdateListener(http, on_event, backoff_seconds=0)
            holder["listener"] = listener
            await listener.run()
            return listener

    assert asyncio.run(scenario()).connections == 1


def test_listener_survives_handler_error():
    sleeps = []
    seen = []

    def handler(request):
        return httpx.Response(200, content=b'data: {"type":"new-photo","photoId":"p"}\n\n')

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    async def on_event(event):
        seen.append(event)
        if len(seen) == 1:
            raise RuntimeError("handler blew up")

    async def scenario():
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://gallery.test"
        ) as http:
            listener = LiveUpdateListener(http, on_event, backoff_seconds=2.0, sleep=fake_sleep)
            await listener.run(max_connections=2)
            return listener

    listener = asyncio.run(scenario())
    assert listener.connections == 2
    assert sleeps == [2.0]
    assert len(seen) == 2


def test_burst_of_deletes_coalesces_into_one_refresh():
    gallery_requests = []

    def handler(request):
        if request.url.path == "/api/gallery/updates":
            frames = "".join(
                "data: " + json.dumps({"type": "photo-deleted", "photoId": f"p{i}"}) + "\n\n"
                for i in range(5)
            )
            return httpx.Response(200, content=frames.encode())
        gallery_requests.append(dict(request.url.params))
        return httpx.Response(200, json=_page(["a"], 1, 1, 1, limit=12))

    async def scenario():
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://gallery.test"
        ) as http:
            feed = GalleryFeed(http, page_size=12)
            await feed.load_next()
            follower = follow_gallery(feed, http, backoff_seconds=0)
            await follower.run(max_connections=1)
            return follower

    follower = asyncio.run(scenario())
    assert follower.refreshes == 1
    assert len(gallery_requests) == 2


def test_refresh_failure_is_logged_not_raised():
    calls = {"n": 0}

    def handler(request):
        if request.url.path == "/api/gallery/updates":
            return httpx.Response(200, content=b'data: {"type":"new-photo","photoId":"z"}\n\n')
        calls["n"] += 1
        if calls["n"] > 1:
            return httpx.Response(503, json={"error": "busy"})
        return httpx.Response(200, json=_page(["a"], 1, 1, 1, limit=12))

    async def scenario():
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://gallery.test"
        ) as http:
            feed = GalleryFeed(http, page_size=12)
            await feed.load_next()
            follower = follow_gallery(feed, http, backoff_seconds=0)
            await follower.run(max_connections=1)
            return feed, follower

    feed, follower = asyncio.run(scenario())
    assert follower.refreshes == 1
    assert [p["id"] for p in feed.photos] == ["a"]
