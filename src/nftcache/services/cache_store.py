"""Two-tier media cache: media records in the database, variant blobs on disk.

The store is the only component that writes media state. Writes for one mint
are serialised with a per-mint lock; unrelated mints never wait on each other.

Ordering rules that keep the tiers consistent:
- publish: every blob is written before the record is committed as ready
- invalidate/reset: the record is committed as pending before blobs are removed
A reader therefore never sees a ready record pointing at a half-written blob.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from nftcache.models.media_record import MediaRecord, MediaStatus
from nftcache.models.token_metadata import TokenMetadata
from nftcache.services.blob_store import FileBlobStore
from nftcache.services.exceptions import StorageError
from nftcache.uow import UnitOfWork

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CachedBlob:
    """A servable cached image."""

    mint: str
    variant: str
    data: bytes
    content_type: str


class KeyedLock:
    """asyncio locks keyed by string, dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class CacheStore:
    """Durable cache of media records and variant blobs."""

    def __init__(self, uow_factory: Callable[[], Awaitable[UnitOfWork]], blobs: FileBlobStore):
        self.uow_factory = uow_factory
        self.blobs = blobs
        self._locks = KeyedLock()

    @asynccontextmanager
    async def _uow(self) -> AsyncIterator[UnitOfWork]:
        """Open a UnitOfWork, converting database failures into StorageError."""
        try:
            async with await self.uow_factory() as uow:
                yield uow
        except SQLAlchemyError as e:
            raise StorageError(f"Database error: {e}") from e

    async def lookup(self, mint: str, variant: str) -> CachedBlob | None:
        """Return the cached blob for (mint, variant), or None on a miss.

        A hit requires a ready record that lists the variant and a blob on disk.
        """
        record = await self.get_record(mint)
        if record is None or not record.has_variant(variant):
            return None

        data = await self.blobs.read(mint, variant)
        if data is None:
            # Record and blob raced with an invalidation; treat as a miss
            logger.warning("cache.blob_missing", mint=mint, variant=variant)
            return None

        return CachedBlob(
            mint=mint,
            variant=variant,
            data=data,
            content_type=record.output_content_type or self.blobs.content_type,
        )

    async def get_record(self, mint: str) -> MediaRecord | None:
        async with self._uow() as uow:
            return await uow.media_records.get(mint)

    async def exists(self, mint: str, variant: str | None = None) -> bool:
        """True if the mint is ready (and, when given, the variant blob is on disk)."""
        record = await self.get_record(mint)
        if record is None or record.status != MediaStatus.READY:
            return False
        if variant is None:
            return True
        return record.has_variant(variant) and await self.blobs.exists(mint, variant)

    async def upsert_record(self, record: MediaRecord) -> MediaRecord:
        """Write a record (last writer wins on status).

        A ready → pending transition evicts the mint's blobs in the same
        locked operation, after the pending status is committed.
        """
        async with self._locks.hold(record.mint):
            return await self._upsert_locked(record)

    async def _upsert_locked(self, record: MediaRecord) -> MediaRecord:
        async with self._uow() as uow:
            existing = await uow.media_records.get(record.mint)
            was_ready = existing is not None and existing.status == MediaStatus.READY
            stored = await uow.media_records.upsert(record)

        if was_ready and stored.status != MediaStatus.READY:
            removed = await self.blobs.delete_all(record.mint)
            logger.info("cache.blobs_evicted", mint=record.mint, removed=removed)
        return stored

    async def store_blob(self, mint: str, variant: str, data: bytes) -> None:
        """Durably publish one variant blob (write-then-rename)."""
        async with self._locks.hold(mint):
            await self.blobs.write(mint, variant, data)

    async def begin_attempt(self, mint: str) -> MediaRecord:
        """Create the record as pending, or move an existing one back to pending.

        A ready record is reset first, which evicts its blobs.
        """
        async with self._locks.hold(mint):
            async with self._uow() as uow:
                record = await uow.media_records.get(mint)
            if record is None:
                record = MediaRecord(mint=mint)
            elif record.status == MediaStatus.READY:
                record.reset()
                record = await self._upsert_locked(record)
            record.begin_attempt()
            return await self._upsert_locked(record)

    async def publish(
        self,
        mint: str,
        encoded: dict[str, bytes],
        *,
        content_uri: str,
        image_uri: str,
        image_type: str,
        content_hash: str,
    ) -> MediaRecord:
        """Store every variant blob, then mark the record ready.

        If any blob write fails the record stays pending and StorageError propagates.
        """
        async with self._locks.hold(mint):
            for variant, data in encoded.items():
                await self.blobs.write(mint, variant, data)

            async with self._uow() as uow:
                record = await uow.media_records.get(mint)
            if record is None:
                record = MediaRecord(mint=mint)
                record.begin_attempt()
            elif record.status != MediaStatus.PENDING:
                # An invalidation or failure landed while this attempt was in flight
                record.reset()
            record.mark_ready(
                content_uri=content_uri,
                image_uri=image_uri,
                image_type=image_type,
                content_hash=content_hash,
                variants=list(encoded),
                output_content_type=self.blobs.content_type,
            )
            stored = await self._upsert_locked(record)

        logger.info("cache.published", mint=mint, variants=stored.variants)
        return stored

    async def mark_failed(
        self, mint: str, error: str, content_uri: str | None = None
    ) -> MediaRecord:
        """Mark the mint failed; a failed record never claims blobs."""
        async with self._locks.hold(mint):
            async with self._uow() as uow:
                record = await uow.media_records.get(mint)
            if record is None:
                record = MediaRecord(mint=mint)
                record.begin_attempt()
            elif record.status != MediaStatus.PENDING:
                record.reset()
            record.mark_failed(error, content_uri=content_uri)
            return await self._upsert_locked(record)

    async def invalidate(self, mint: str) -> bool:
        """Reset the record to pending and remove all variant blobs.

        Returns:
            True if a record existed, False otherwise
        """
        async with self._locks.hold(mint):
            async with self._uow() as uow:
                record = await uow.media_records.get(mint)
            if record is None:
                await self.blobs.delete_all(mint)
                return False

            record.reset()
            await self._upsert_locked(record)
            # Failed/pending records have no tracked blobs, but sweep strays anyway
            await self.blobs.delete_all(mint)

        logger.info("cache.invalidated", mint=mint)
        return True

    async def evict(self, mint: str) -> bool:
        """Administrative eviction: delete the record and its blobs.

        Returns:
            True if a record was deleted, False if none existed
        """
        async with self._locks.hold(mint):
            async with self._uow() as uow:
                deleted = await uow.media_records.delete(mint)
            await self.blobs.delete_all(mint)

        logger.info("cache.evicted", mint=mint, record_deleted=deleted)
        return deleted

    async def save_metadata(self, metadata: TokenMetadata) -> TokenMetadata:
        """Store a resolved metadata snapshot as a new version if it changed."""
        async with self._locks.hold(metadata.mint):
            async with self._uow() as uow:
                return await uow.token_metadata.add_version(metadata)

    async def latest_metadata(self, mint: str) -> TokenMetadata | None:
        async with self._uow() as uow:
            return await uow.token_metadata.get_latest(mint)

    async def status_counts(self) -> dict[str, int]:
        async with self._uow() as uow:
            return await uow.media_records.count_by_status()

    async def purge_temp_files(self) -> int:
        """Remove temp files left by writes interrupted by a crash."""
        return await self.blobs.purge_temp_files()
