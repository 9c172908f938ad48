"""Content store for picture blobs.

The store knows nothing about inventory items. Bytes are kept as ordered
chunks so uploads and downloads stream through bounded memory.
"""

import asyncio
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import Settings
from core.errors import ConcurrentModification, NotFound, PayloadTooLarge, UnsupportedMediaType
from db.blob import Blob, BlobChunk
from db.database import translate_db_errors

logger = structlog.get_logger(__name__)

EXT_TO_CONTENT_TYPE = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
}

MAGIC_NUMBERS = {
    "image/jpeg": b"\xff\xd8\xff",
    "image/png": b"\x89PNG\r\n\x1a\n",
}

_SNIFF_BYTES = max(len(m) for m in MAGIC_NUMBERS.values())


@dataclass
class AssetUpload:
    """An incoming picture: metadata plus an async stream of byte chunks."""

    filename: str
    content_type: Optional[str]
    chunks: AsyncIterator[bytes]
    declared_size: Optional[int] = None

    @classmethod
    def from_bytes(cls, data: bytes, filename: str, content_type: Optional[str], chunk_size: int = 64 * 1024):
        async def _chunks():
            for start in range(0, len(data), chunk_size):
                yield data[start:start + chunk_size]

        return cls(filename=filename, content_type=content_type, chunks=_chunks(), declared_size=len(data))


@dataclass(frozen=True)
class BlobInfo:
    id: UUID
    filename: str
    mime_type: str
    size_bytes: int
    created_at: datetime

    @classmethod
    def from_model(cls, blob: Blob) -> "BlobInfo":
        return cls(**blob.to_schema)


def _sniff(head: bytes) -> Optional[str]:
    for mime_type, magic in MAGIC_NUMBERS.items():
        if head.startswith(magic):
            return mime_type
    return None


async def _rechunk(chunks: AsyncIterator[bytes], size: int) -> AsyncIterator[bytes]:
    buffer = bytearray()
    async for chunk in chunks:
        if not chunk:
            continue
        buffer.extend(chunk)
        while len(buffer) >= size:
            yield bytes(buffer[:size])
            del buffer[:size]
    if buffer:
        yield bytes(buffer)


class BlobStore:
    def __init__(self, session_maker: async_sessionmaker, settings: Settings):
        self._session_maker = session_maker
        self.max_bytes = settings.max_asset_bytes
        self.allowed_types = {t.lower() for t in settings.allowed_asset_types}
        self.chunk_size = max(_SNIFF_BYTES, settings.blob_chunk_size)
        self._upload_slots = asyncio.Semaphore(max(1, settings.max_concurrent_uploads))

    def resolve_mime_type(self, upload: AssetUpload) -> str:
        """Check the declared type and size before anything is written."""
        content_type = (upload.content_type or "").split(";")[0].strip().lower()
        ext = os.path.splitext(upload.filename or "")[1].lower().lstrip(".")

        if not content_type or content_type == "application/octet-stream":
            content_type = EXT_TO_CONTENT_TYPE.get(ext, "")
        if content_type == "image/jpg":
            content_type = "image/jpeg"
        if content_type not in self.allowed_types:
            raise UnsupportedMediaType("Only JPEG and PNG images are allowed")
        if ext and EXT_TO_CONTENT_TYPE.get(ext) not in self.allowed_types:
            raise UnsupportedMediaType("Only JPEG and PNG images are allowed")

        if upload.declared_size is not None and upload.declared_size > self.max_bytes:
            raise PayloadTooLarge(f"Image size must be at most {self.max_bytes} bytes")
        return content_type

    async def put(self, upload: AssetUpload) -> BlobInfo:
        """Stream the upload into the store; committed before returning.

        Nothing is persisted when the content turns out oversized or not to
        be the image type it claims to be.
        """
        mime_type = self.resolve_mime_type(upload)
        filename = os.path.basename(upload.filename or "") or f"image_{uuid.uuid4().hex[:8]}"

        async with self._upload_slots:
            with translate_db_errors():
                async with self._session_maker() as session:
                    blob = Blob(id=uuid.uuid4(), filename=filename[:255], mime_type=mime_type, size_bytes=0)
                    session.add(blob)
                    await session.flush()

                    size = 0
                    seq = 0
                    async for chunk in _rechunk(upload.chunks, self.chunk_size):
                        if seq == 0 and _sniff(chunk[:_SNIFF_BYTES]) != mime_type:
                            raise UnsupportedMediaType(f"Content is not a valid {mime_type} image")
                        size += len(chunk)
                        if size > self.max_bytes:
                            raise PayloadTooLarge(f"Image size must be at most {self.max_bytes} bytes")
                        part = BlobChunk(blob_id=blob.id, seq=seq, data=chunk)
                        session.add(part)
                        await session.flush()
                        session.expunge(part)
                        seq += 1

                    if seq == 0:
                        raise UnsupportedMediaType("Image file is empty")

                    blob.size_bytes = size
                    await session.commit()

        logger.info("blob_stored", blob_id=str(blob.id), mime_type=mime_type, size_bytes=size)
        return BlobInfo.from_model(blob)

    async def info(self, blob_id: UUID) -> BlobInfo:
        with translate_db_errors():
            async with self._session_maker() as session:
                blob = await session.get(Blob, blob_id)
        if blob is None:
            raise NotFound(f"Blob {blob_id} not found")
        return BlobInfo.from_model(blob)

    async def exists(self, blob_id: UUID) -> bool:
        try:
            await self.info(blob_id)
        except NotFound:
            return False
        return True

    async def get(self, blob_id: UUID) -> Tuple[BlobInfo, AsyncIterator[bytes]]:
        """Return the blob metadata and a lazy stream over its chunks."""
        info = await self.info(blob_id)
        return info, self._stream(blob_id)

    async def _stream(self, blob_id: UUID) -> AsyncIterator[bytes]:
        seq = 0
        with translate_db_errors():
            async with self._session_maker() as session:
                while True:
                    data = await session.scalar(
                        select(BlobChunk.data).where(BlobChunk.blob_id == blob_id, BlobChunk.seq == seq)
                    )
                    if data is None:
                        break
                    yield bytes(data)
                    seq += 1

    async def delete(self, blob_id: UUID) -> bool:
        """Remove a blob. False means it was already gone; infra failures raise StoreUnavailable."""
        with translate_db_errors():
            async with self._session_maker() as session:
                try:
                    await session.execute(delete(BlobChunk).where(BlobChunk.blob_id == blob_id))
                    result = await session.execute(delete(Blob).where(Blob.id == blob_id))
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise ConcurrentModification(f"Blob {blob_id} is still referenced") from e
        deleted = result.rowcount == 1
        logger.info("blob_deleted" if deleted else "blob_already_gone", blob_id=str(blob_id))
        return deleted

    async def list_ids(self, created_before: Optional[datetime] = None) -> List[UUID]:
        stmt = select(Blob.id).order_by(Blob.created_at)
        if created_before is not None:
            stmt = stmt.where(Blob.created_at < created_before)
        with translate_db_errors():
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())

    async def list_stale_ids(self, older_than_seconds: int) -> List[UUID]:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        return await self.list_ids(created_before=cutoff)
