"""Process-wide registry of open live-update channels.

One entry per open gallery view. The registry lives for the whole process and
is created lazily on first use. It is the only mutable state shared between
requests, so every access goes through a lock and fan-out iterates a snapshot.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import uuid
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_MAX = 256


class ChannelState(str, enum.Enum):
    OPEN = "open"
    STREAMING = "streaming"
    CLOSED = "closed"


class ChannelClosed(RuntimeError):
    pass


class LiveChannel:
    """Outbound frame queue for a single push connection."""

    def __init__(self, connection_id: str, max_queue: int = DEFAULT_QUEUE_MAX):
        self.id = connection_id
        self.state = ChannelState.OPEN
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_queue)
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def closed(self) -> bool:
        return self.state is ChannelState.CLOSED

    def send(self, frame: str) -> None:
        """Queue ``frame`` for the client; raises once the channel is closed."""
        if self.closed:
            raise ChannelClosed(self.id)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is None or running is self._loop:
            self._queue.put_nowait(frame)
        else:
            # asyncio.Queue is not thread-safe; hop onto the owning loop
            self._loop.call_soon_threadsafe(self._put_from_loop, frame)
        if self.state is ChannelState.OPEN:
            self.state = ChannelState.STREAMING

    def _put_from_loop(self, frame: str) -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("live.channel.overflow", extra={"connection_id": self.id})

    async def next_frame(self) -> str:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self.state = ChannelState.CLOSED


class ConnectionRegistry:
    def __init__(self, max_queue: int = DEFAULT_QUEUE_MAX):
        self.max_queue = max_queue
        self._channels: dict[str, LiveChannel] = {}
        self._lock = threading.Lock()

    def register(self) -> str:
        connection_id = str(uuid.uuid4())
        channel = LiveChannel(connection_id, max_queue=self.max_queue)
        with self._lock:
            self._channels[connection_id] = channel
        logger.debug("live.registered", extra={"connection_id": connection_id})
        return connection_id

    def get(self, connection_id: str) -> Optional[LiveChannel]:
        with self._lock:
            return self._channels.get(connection_id)

    def unregister(self, connection_id: str) -> bool:
        with self._lock:
            channel = self._channels.pop(connection_id, None)
        if channel is None:
            return False
        # Closing makes any snapshot still being iterated skip this channel
        channel.close()
        logger.debug("live.unregistered", extra={"connection_id": connection_id})
        return True

    def for_each(self, fn: Callable[[LiveChannel], None]) -> int:
        """Apply ``fn`` to every open channel; returns how many calls succeeded.

        A channel that raises is logged and skipped, never aborting the fan-out.
        """
        with self._lock:
            snapshot = list(self._channels.values())
        delivered = 0
        for channel in snapshot:
            if channel.closed:
                continue
            try:
                fn(channel)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "live.delivery_failed",
                    extra={"connection_id": channel.id, "error": str(e)},
                )
        return delivered

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._channels)

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)


_registry: Optional[ConnectionRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> ConnectionRegistry:
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                from app.core.settings import settings

                _registry = ConnectionRegistry(max_queue=settings.LIVE_QUEUE_MAX)
    return _registry
