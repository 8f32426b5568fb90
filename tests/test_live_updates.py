import asyncio
import json
import threading

from app.api.gallery import stream_updates
from app.services.broadcast import (
    CONNECTED_FRAME,
    NEW_PHOTO,
    GalleryUpdate,
    InProcessBroadcaster,
    RedisBroadcaster,
    deliver,
    encode_frame,
)
from app.services.connections import ChannelClosed, ChannelState, ConnectionRegistry


def _frames(channel):
    out = []
    while channel.pending():
        out.append(channel._queue.get_nowait())
    return out


def test_every_open_channel_gets_every_event_in_order(registry):
    ids = [registry.register() for _ in range(3)]
    broadcaster = InProcessBroadcaster(registry)

    async def publish_all():
        for n in range(4):
            await broadcaster.publish(GalleryUpdate(type=NEW_PHOTO, photo_id=f"p{n}"))

    asyncio.run(publish_all())

    for cid in ids:
        frames = _frames(registry.get(cid))
        assert [json.loads(f[len("data: ") :])["photoId"] for f in frames] == [
            "p0",
            "p1",
            "p2",
            "p3",
        ]


def test_broadcast_with_no_connections_is_a_noop(registry):
    assert deliver(registry, encode_frame({"type": NEW_PHOTO})) == 0
    asyncio.run(InProcessBroadcaster(registry).publish(GalleryUpdate(type=NEW_PHOTO)))


def test_frame_is_single_data_line():
    frame = encode_frame(GalleryUpdate(type=NEW_PHOTO, photo_id="abc").to_payload())
    assert frame.startswith("data: {")
    assert frame.endswith("\n\n")
    payload = json.loads(frame[len("data: ") :])
    assert payload["type"] == "new-photo"
    assert payload["photoId"] == "abc"
    assert payload["timestamp"].endswith("Z")


def test_unregister_during_fanout_skips_removed_channel(registry):
    first = registry.register()
    second = registry.register()

    def send(channel):
        if channel.id == first:
            registry.unregister(second)
        channel.send("data: {}\n\n")

    assert registry.for_each(send) == 1
    assert registry.ids() == [first]


def test_failing_channel_does_not_stop_fanout(registry):
    ids = [registry.register() for _ in range(3)]

    def send(channel):
        if channel.id == ids[1]:
            raise RuntimeError("socket gone")
        channel.send("data: {}\n\n")

    assert registry.for_each(send) == 2
    assert registry.get(ids[0]).pending() == 1
    assert registry.get(ids[2]).pending() == 1


def test_closed_channel_refuses_frames(registry):
    cid = registry.register()
    channel = registry.get(cid)
    assert channel.state is ChannelState.OPEN
    channel.send("x")
    assert channel.state is ChannelState.STREAMING
    assert registry.unregister(cid) is True
    assert channel.state is ChannelState.CLOSED
    assert registry.unregister(cid) is False
    try:
        channel.send("y")
    except ChannelClosed:
        pass
    else:
        raise AssertionError("send on closed channel should raise")


def test_stream_sends_connected_frame_then_updates_and_cleans_up():
    async def scenario():
        registry = ConnectionRegistry()
        cid = registry.register()
        gen = stream_updates(registry, cid)
        first = await gen.__anext__()
        deliver(registry, encode_frame({"type": NEW_PHOTO, "photoId": "p1"}))
        second = await gen.__anext__()
        await gen.aclose()
        return first, second, len(registry)

    first, second, remaining = asyncio.run(scenario())
    assert first == CONNECTED_FRAME
    assert json.loads(second[len("data: ") :])["photoId"] == "p1"
    assert remaining == 0


def test_stream_for_unknown_connection_ends_immediately():
    async def scenario():
        registry = ConnectionRegistry()
        return [frame async for frame in stream_updates(registry, "missing")]

    assert asyncio.run(scenario()) == []


class FakeRedis:
    def __init__(self):
        self.published = []

    async def publish(self, channel, data):
        self.published.append((channel, data))


def test_redis_broadcaster_publishes_and_relays(registry):
    cid = registry.register()
    fake = FakeRedis()
    broadcaster = RedisBroadcaster(fake, "gallery-updates", registry)

    asyncio.run(broadcaster.publish(GalleryUpdate(type=NEW_PHOTO, photo_id="p9")))
    channel_name, data = fake.published[0]
    assert channel_name == "gallery-updates"
    assert json.loads(data)["photoId"] == "p9"

    assert broadcaster.relay_message({"type": "subscribe", "data": 1}) == 0
    assert broadcaster.relay_message({"type": "message", "data": "not json"}) == 0
    assert broadcaster.relay_message({"type": "message", "data": data.encode("utf-8")}) == 1
    assert registry.get(cid).pending() == 1


def test_health_reports_connection_count(client, registry):
    registry.register()
    registry.register()
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "connections": 2}


def test_registry_tolerates_concurrent_register_and_fan_out():
    registry = ConnectionRegistry(max_queue=10_000)
    workers, rounds, keep_every = 4, 200, 10
    done = threading.Event()
    errors = []

    def churn():
        try:
            for n in range(rounds):
                cid = registry.register()
                if n % keep_every:
                    registry.unregister(cid)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=churn) for _ in range(workers)]
    for t in threads:
        t.start()

    def wait_all():
        for t in threads:
            t.join()
        done.set()

    joiner = threading.Thread(target=wait_all)
    joiner.start()
    passes = 0
    while not done.is_set() or passes == 0:
        registry.for_each(lambda channel: channel.send("data: {}\n\n"))
        passes += 1
    joiner.join()

    assert errors == []
    assert len(registry) == workers * (rounds // keep_every)
    assert all(not registry.get(cid).closed for cid in registry.ids())
