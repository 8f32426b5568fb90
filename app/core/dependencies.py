"""Dependencies for FastAPI routes.

Collaborators are built once at startup and kept on ``app.state``; tests swap
them there.
"""

from fastapi import Request

from app.services.broadcast import Broadcaster
from app.services.connections import ConnectionRegistry
from app.services.moderation import Moderator
from app.services.storage import BlobStore


async def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


async def get_moderator(request: Request) -> Moderator:
    return request.app.state.moderator


async def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.broadcaster


async def get_connection_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.broadcaster.registry
