"""
Blob Storage — raw uploaded files

References are opaque strings stored on the DocumentRecord:
    memory://<document_id>/<filename>        InMemoryBlobStorage
    s3://<bucket>/<prefix>/<document_id>/<filename>   S3BlobStorage

Key layout is constructed server-side from the generated document id and a
sanitized filename; nothing client-supplied is used as a raw key.
Backend failures surface as StoreError.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from legalease.core.errors import StoreError

logger = logging.getLogger(__name__)

MEMORY_SCHEME = "memory://"
S3_SCHEME     = "s3://"


def safe_key_component(filename: str) -> str:
    """Basename only, with characters unsafe in object keys replaced."""
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = re.sub(r"[^a-zA-Z0-9._\-]", "_", basename)
    return safe[:200] or "upload"


class BlobStorage(ABC):

    @abstractmethod
    async def put(self, document_id: str, filename: str, data: bytes, content_type: str) -> str:
        """Store data and return its reference."""

    @abstractmethod
    async def get(self, ref: str) -> bytes: ...

    @abstractmethod
    async def delete(self, ref: str) -> None: ...


class InMemoryBlobStorage(BlobStorage):

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def put(self, document_id: str, filename: str, data: bytes, content_type: str) -> str:
        ref = f"{MEMORY_SCHEME}{document_id}/{safe_key_component(filename)}"
        async with self._lock:
            self._blobs[ref] = bytes(data)
        return ref

    async def get(self, ref: str) -> bytes:
        async with self._lock:
            try:
                return self._blobs[ref]
            except KeyError:
                raise StoreError(f"Blob not found: {ref}") from None

    async def delete(self, ref: str) -> None:
        async with self._lock:
            self._blobs.pop(ref, None)

    def __contains__(self, ref: str) -> bool:
        return ref in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class S3BlobStorage(BlobStorage):
    """
    Async S3 operations through aioboto3.

    Credentials come from the standard AWS chain (task role in production,
    AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY locally).
    """

    def __init__(
        self,
        bucket:  str,
        prefix:  str = "documents",
        region:  str = "us-east-1",
        session: aioboto3.Session | None = None,
    ) -> None:
        self._bucket  = bucket
        self._prefix  = prefix.strip("/")
        self._region  = region
        self._session = session or aioboto3.Session()

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client("s3", region_name=self._region)

    def _key(self, document_id: str, filename: str) -> str:
        parts = [p for p in (self._prefix, document_id, safe_key_component(filename)) if p]
        return "/".join(parts)

    def _parse_ref(self, ref: str) -> tuple[str, str]:
        if not ref.startswith(S3_SCHEME):
            raise StoreError(f"Not an S3 reference: {ref}")
        bucket, _, key = ref[len(S3_SCHEME):].partition("/")
        return bucket, key

    async def put(self, document_id: str, filename: str, data: bytes, content_type: str) -> str:
        key = self._key(document_id, filename)
        try:
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=self._bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                    Metadata={"document_id": document_id},
                )
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 upload failed | doc=%s key=%s: %s", document_id, key, exc)
            raise StoreError("Failed to store the uploaded file.") from exc

        logger.info("S3 upload ok | doc=%s key=%s size=%d", document_id, key, len(data))
        return f"{S3_SCHEME}{self._bucket}/{key}"

    async def get(self, ref: str) -> bytes:
        bucket, key = self._parse_ref(ref)
        try:
            async with self._client() as s3:
                resp = await s3.get_object(Bucket=bucket, Key=key)
                return await resp["Body"].read()
        except ClientError as exc:
            code = exc.response["Error"]["Code"]
            if code in ("NoSuchKey", "404"):
                raise StoreError(f"Blob not found: {ref}") from exc
            logger.error("S3 download failed | key=%s code=%s", key, code)
            raise StoreError("Failed to read the stored file.") from exc
        except BotoCoreError as exc:
            logger.error("S3 download failed | key=%s: %s", key, exc)
            raise StoreError("Failed to read the stored file.") from exc

    async def delete(self, ref: str) -> None:
        if ref.startswith(MEMORY_SCHEME):
            # record created while blob storage was in-memory; nothing to remove
            return
        bucket, key = self._parse_ref(ref)
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 delete failed | key=%s: %s", key, exc)
            raise StoreError("Failed to delete the stored file.") from exc
        logger.info("S3 delete | key=%s", key)


def build_blob_storage(settings) -> BlobStorage:
    if settings.blob_backend == "s3":
        return S3BlobStorage(
            bucket=settings.s3_bucket,
            prefix=settings.s3_prefix,
            region=settings.aws_region,
        )
    return InMemoryBlobStorage()
