"""CacheStore tests: consistency between media records and blobs on disk."""

import pytest

from factories import new_mint
from nftcache.core.database import setup_db_session
from nftcache.models.media_record import MediaRecord, MediaStatus
from nftcache.models.token_metadata import TokenMetadata
from nftcache.services.cache_store import CacheStore, KeyedLock
from nftcache.services.exceptions import StorageError
from nftcache.uow import create_uow_factory

ENCODED = {"thumbnail": b"thumb-bytes", "medium": b"medium-bytes"}


async def _publish(store: CacheStore, mint: str, encoded=ENCODED):
    await store.begin_attempt(mint)
    return await store.publish(
        mint,
        encoded,
        content_uri="https://example.com/1.json",
        image_uri="https://example.com/1.png",
        image_type="image/png",
        content_hash="c" * 64,
    )


@pytest.mark.asyncio
async def test_lookup_miss_for_unknown_mint(cache_store):
    assert await cache_store.lookup(new_mint(), "thumbnail") is None
    assert await cache_store.exists(new_mint()) is False


@pytest.mark.asyncio
async def test_publish_then_lookup_hit(cache_store):
    mint = new_mint()

    record = await _publish(cache_store, mint)
    cached = await cache_store.lookup(mint, "thumbnail")

    assert record.status == MediaStatus.READY
    assert record.variants == ["medium", "thumbnail"]
    assert cached is not None
    assert cached.data == b"thumb-bytes"
    assert cached.content_type == "image/webp"
    assert await cache_store.exists(mint, "medium")
    # Variant not produced for this mint
    assert await cache_store.lookup(mint, "full") is None


@pytest.mark.asyncio
async def test_blobs_written_before_ready(cache_store, blob_store):
    mint = new_mint()

    await _publish(cache_store, mint)

    for variant in ENCODED:
        assert blob_store.path_for(mint, variant).is_file()


@pytest.mark.asyncio
async def test_missing_blob_is_a_miss(cache_store, blob_store):
    """A ready record whose blob vanished from disk is served as a miss."""
    mint = new_mint()
    await _publish(cache_store, mint)

    blob_store.path_for(mint, "thumbnail").unlink()

    assert await cache_store.lookup(mint, "thumbnail") is None
    assert await cache_store.exists(mint, "thumbnail") is False


@pytest.mark.asyncio
async def test_invalidate_resets_record_and_removes_blobs(cache_store, blob_store):
    mint = new_mint()
    await _publish(cache_store, mint)

    found = await cache_store.invalidate(mint)

    assert found is True
    record = await cache_store.get_record(mint)
    assert record.status == MediaStatus.PENDING
    assert record.variants == []
    assert await cache_store.lookup(mint, "thumbnail") is None
    assert not blob_store.path_for(mint, "thumbnail").exists()


@pytest.mark.asyncio
async def test_invalidate_unknown_mint(cache_store):
    assert await cache_store.invalidate(new_mint()) is False


@pytest.mark.asyncio
async def test_evict_removes_record_and_blobs(cache_store, blob_store):
    mint = new_mint()
    await _publish(cache_store, mint)

    assert await cache_store.evict(mint) is True
    assert await cache_store.get_record(mint) is None
    assert not blob_store.path_for(mint, "medium").exists()
    assert await cache_store.evict(mint) is False


@pytest.mark.asyncio
async def test_upsert_ready_to_pending_evicts_blobs(cache_store, blob_store):
    mint = new_mint()
    await _publish(cache_store, mint)

    await cache_store.upsert_record(MediaRecord(mint=mint, status=MediaStatus.PENDING))

    assert not blob_store.path_for(mint, "thumbnail").exists()


@pytest.mark.asyncio
async def test_begin_attempt_on_ready_record_resets_it(cache_store, blob_store):
    mint = new_mint()
    await _publish(cache_store, mint)

    record = await cache_store.begin_attempt(mint)

    assert record.status == MediaStatus.PENDING
    assert record.attempts == 2
    assert not blob_store.path_for(mint, "thumbnail").exists()


@pytest.mark.asyncio
async def test_mark_failed_keeps_content_uri(cache_store):
    mint = new_mint()
    await cache_store.begin_attempt(mint)

    record = await cache_store.mark_failed(mint, "MediaHTTPError: 404", content_uri="ar://gone")

    assert record.status == MediaStatus.FAILED
    assert record.content_uri == "ar://gone"
    assert await cache_store.status_counts() == {"failed": 1}


@pytest.mark.asyncio
async def test_publish_over_failed_record(cache_store):
    """A publish racing a failure still leaves a consistent ready record."""
    mint = new_mint()
    await cache_store.begin_attempt(mint)
    await cache_store.mark_failed(mint, "transient")

    record = await cache_store.publish(
        mint,
        ENCODED,
        content_uri="a",
        image_uri="b",
        image_type="image/png",
        content_hash="d" * 64,
    )

    assert record.status == MediaStatus.READY
    assert record.error is None


@pytest.mark.asyncio
async def test_metadata_versions(cache_store):
    mint = new_mint()

    first = await cache_store.save_metadata(
        TokenMetadata(mint=mint, name="A", content_uri="https://a", program="metaplex")
    )
    second = await cache_store.save_metadata(
        TokenMetadata(mint=mint, name="A", content_uri="https://b", program="metaplex")
    )

    assert (first.version, second.version) == (1, 2)
    latest = await cache_store.latest_metadata(mint)
    assert latest.content_uri == "https://b"


@pytest.mark.asyncio
async def test_purge_temp_files(cache_store, blob_store):
    mint = new_mint()
    await _publish(cache_store, mint)
    stray = blob_store.path_for(mint, "thumbnail").with_name(".thumbnail.webp.tmp.deadbeef")
    stray.write_bytes(b"partial")

    assert await cache_store.purge_temp_files() == 1
    assert not stray.exists()
    assert blob_store.path_for(mint, "thumbnail").is_file()


@pytest.mark.asyncio
async def test_database_errors_become_storage_errors(tmp_path, blob_store):
    """A database without tables surfaces as StorageError."""
    factory = setup_db_session(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    store = CacheStore(create_uow_factory(factory), blob_store)

    try:
        with pytest.raises(StorageError, match="Database error"):
            await store.get_record(new_mint())
    finally:
        await factory.kw["bind"].dispose()


@pytest.mark.asyncio
async def test_keyed_lock_drops_idle_keys():
    locks = KeyedLock()

    async with locks.hold("a"):
        assert len(locks) == 1

    assert len(locks) == 0
