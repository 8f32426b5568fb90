"""Blob storage for photo objects: AWS S3, or the local filesystem when no bucket is set."""

from __future__ import annotations

import logging
import os
from typing import Any, Iterator, Optional, Protocol

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

LOCAL_CHUNK_SIZE = 64 * 1024


class BlobStore(Protocol):
    """Key-addressed object store used for photo bytes.

    ``get`` returns whatever shape the backend produces (a byte buffer, an
    iterator of chunks, or a stream with ``read()``); callers normalize it with
    :func:`app.services.stream_utils.read_body`.
    """

    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return its public URL."""

    def get(self, key: str) -> Any:
        """Return the object body for ``key``; raise if it cannot be fetched."""

    def delete(self, key: str) -> None:
        """Remove ``key``; raise on failure."""


class S3BlobStore:
    """Photo objects in an S3 bucket."""

    def __init__(
        self,
        region: str,
        bucket: str,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        client: Any = None,
    ):
        """
        Args:
            region: AWS region
            bucket: S3 bucket name
            access_key: AWS access key (optional; uses IAM role on EC2)
            secret_key: AWS secret key (optional; uses IAM role on EC2)
            client: pre-built boto3 S3 client (tests)
        """
        self.bucket = bucket
        self.region = region
        self.client = client or boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
        )
        logger.info(f"S3 storage initialized for bucket '{bucket}' in region '{region}'")

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ServerSideEncryption="AES256",
            )
        except ClientError as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise
        logger.info(f"Uploaded to S3: s3://{self.bucket}/{key}")
        return self.public_url(key)

    def get(self, key: str) -> Any:
        # botocore StreamingBody; exposes read() and iter_chunks()
        resp = self.client.get_object(Bucket=self.bucket, Key=key)
        body = resp.get("Body")
        if body is None:
            raise ValueError(f"No body in S3 response for {key}")
        return body

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            logger.error(f"S3 delete failed for {key}: {e}")
            raise
        logger.info(f"Deleted from S3: s3://{self.bucket}/{key}")


class LocalBlobStore:
    """Filesystem fallback; objects are served by the /storage static mount."""

    def __init__(self, root: str = "storage", url_prefix: str = "/storage"):
        self.root = root
        self.url_prefix = url_prefix.rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, key))
        if not path.startswith(os.path.abspath(self.root) + os.sep):
            raise ValueError(f"Key escapes storage root: {key}")
        return path

    def public_url(self, key: str) -> str:
        return f"{self.url_prefix}/{key}"

    def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as fh:
            fh.write(data)
        logger.info(f"Stored locally: {path} ({content_type}, {len(data)} bytes)")
        return self.public_url(key)

    def get(self, key: str) -> Iterator[bytes]:
        path = self._path(key)
        if not os.path.exists(path):
            raise FileNotFoundError(key)
        return self._iter_file(path)

    @staticmethod
    def _iter_file(path: str) -> Iterator[bytes]:
        with open(path, "rb") as fh:
            while True:
                chunk = fh.read(LOCAL_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    def delete(self, key: str) -> None:
        os.remove(self._path(key))
        logger.info(f"Deleted local object: {key}")


def build_blob_store(settings) -> BlobStore:
    """S3 when a bucket is configured, otherwise the local filesystem."""
    if settings.S3_BUCKET_NAME:
        return S3BlobStore(
            region=settings.AWS_REGION,
            bucket=settings.S3_BUCKET_NAME,
            access_key=settings.AWS_ACCESS_KEY_ID,
            secret_key=settings.AWS_SECRET_ACCESS_KEY,
        )
    logger.info("S3_BUCKET_NAME not configured; using local filesystem")
    return LocalBlobStore(root=settings.LOCAL_STORAGE_ROOT)
