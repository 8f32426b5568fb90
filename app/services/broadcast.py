"""Gallery update fan-out to open live channels.

Two backends share one interface: an in-process broadcaster (single instance)
and a Redis pub/sub broadcaster for deployments with several instances, where
every instance relays bus messages to the channels it holds open.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis

from app.services.connections import ConnectionRegistry, LiveChannel

logger = logging.getLogger(__name__)

NEW_PHOTO = "new-photo"
PHOTO_DELETED = "photo-deleted"
CONNECTED = "connected"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class GalleryUpdate:
    type: str
    photo_id: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.photo_id is not None:
            payload["photoId"] = self.photo_id
        payload["timestamp"] = self.timestamp
        payload.update(self.extra)
        return payload


def encode_frame(payload: dict[str, Any]) -> str:
    """One event per server-sent-events frame."""
    return "data: " + json.dumps(payload, separators=(",", ":")) + "\n\n"


CONNECTED_FRAME = encode_frame({"type": CONNECTED})


def deliver(registry: ConnectionRegistry, frame: str) -> int:
    def _send(channel: LiveChannel) -> None:
        channel.send(frame)

    return registry.for_each(_send)


class Broadcaster(Protocol):
    registry: ConnectionRegistry

    async def publish(self, update: GalleryUpdate) -> None: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class InProcessBroadcaster:
    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def publish(self, update: GalleryUpdate) -> None:
        # Fire-and-forget: a broken channel must never fail the triggering write
        try:
            delivered = deliver(self.registry, encode_frame(update.to_payload()))
            logger.debug(
                "live.broadcast",
                extra={"type": update.type, "photo_id": update.photo_id, "delivered": delivered},
            )
        except Exception:
            logger.exception("live.broadcast_failed", extra={"type": update.type})


class RedisBroadcaster:
    """Publishes to a Redis channel and relays that channel to local connections."""

    RETRY_SECONDS = 1.0

    def __init__(self, redis_client: Any, channel: str, registry: ConnectionRegistry):
        self.redis = redis_client
        self.channel = channel
        self.registry = registry
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._relay_forever())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.redis.aclose()

    async def publish(self, update: GalleryUpdate) -> None:
        try:
            await self.redis.publish(self.channel, json.dumps(update.to_payload()))
        except Exception:
            logger.exception("live.broadcast_failed", extra={"type": update.type})

    def relay_message(self, message: dict) -> int:
        """Deliver one pub/sub message to local channels; non-data messages are ignored."""
        if message.get("type") != "message":
            return 0
        data = message.get("data")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            payload = json.loads(data)
        except (TypeError, ValueError):
            logger.warning("live.relay.bad_message", extra={"data": str(data)[:200]})
            return 0
        return deliver(self.registry, encode_frame(payload))

    async def _relay_forever(self) -> None:
        while True:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                async for message in pubsub.listen():
                    self.relay_message(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("live.relay_failed", extra={"channel": self.channel})
                await asyncio.sleep(self.RETRY_SECONDS)
            finally:
                try:
                    await pubsub.aclose()
                except Exception:
                    logger.debug("live.relay.close_failed", exc_info=True)


def build_broadcaster(settings, registry: ConnectionRegistry) -> Broadcaster:
    if settings.BROADCAST_BACKEND == "redis":
        client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info("Live updates use Redis channel '%s'", settings.BROADCAST_CHANNEL)
        return RedisBroadcaster(client, settings.BROADCAST_CHANNEL, registry)
    return InProcessBroadcaster(registry)
