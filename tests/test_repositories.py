"""Repository layer tests.

Tests focus on the logic beyond plain CRUD:
- MediaRecord UPSERT is idempotent and last-writer-wins
- Status counting and listing
- TokenMetadata versioning only on change
"""

import pytest

from factories import new_mint
from nftcache.models.media_record import MediaRecord, MediaStatus
from nftcache.models.token_metadata import TokenMetadata
from nftcache.repositories.media_record import MediaRecordRepository
from nftcache.repositories.token_metadata import TokenMetadataRepository


def _metadata(mint: str, **overrides) -> TokenMetadata:
    values = dict(
        mint=mint,
        name="Test NFT #1",
        symbol="TNFT",
        content_uri="https://example.com/1.json",
        decimals=0,
        program="metaplex",
    )
    values.update(overrides)
    return TokenMetadata(**values)


@pytest.mark.asyncio
async def test_media_record_upsert_is_idempotent(session):
    """Upserting the same mint twice leaves one row carrying the latest state."""
    repo = MediaRecordRepository(session)
    mint = new_mint()

    first = await repo.upsert(MediaRecord(mint=mint))
    assert first.status == MediaStatus.PENDING

    record = MediaRecord(mint=mint)
    record.begin_attempt()
    record.mark_failed("gone")
    second = await repo.upsert(record)
    await session.commit()

    assert second.status == MediaStatus.FAILED
    assert second.error == "gone"
    assert await repo.count_by_status() == {"failed": 1}


@pytest.mark.asyncio
async def test_media_record_variants_round_trip(session):
    repo = MediaRecordRepository(session)
    record = MediaRecord(mint=new_mint())
    record.begin_attempt()
    record.mark_ready(
        content_uri="ar://meta",
        image_uri="ar://image",
        image_type="image/png",
        content_hash="0" * 64,
        variants=["thumbnail", "full"],
        output_content_type="image/webp",
    )

    stored = await repo.upsert(record)

    assert stored.variants == ["full", "thumbnail"]
    assert stored.has_variant("full")


@pytest.mark.asyncio
async def test_count_and_list_by_status(session):
    repo = MediaRecordRepository(session)
    pending = [new_mint() for _ in range(3)]
    for mint in pending:
        await repo.upsert(MediaRecord(mint=mint))
    failed = MediaRecord(mint=new_mint())
    failed.begin_attempt()
    failed.mark_failed("boom")
    await repo.upsert(failed)

    assert await repo.count_by_status() == {"pending": 3, "failed": 1}
    listed = await repo.list_by_status(MediaStatus.PENDING, limit=2)
    assert len(listed) == 2
    assert all(r.status == MediaStatus.PENDING for r in listed)


@pytest.mark.asyncio
async def test_delete_is_idempotent(session):
    repo = MediaRecordRepository(session)
    mint = new_mint()
    await repo.upsert(MediaRecord(mint=mint))

    assert await repo.delete(mint) is True
    assert await repo.delete(mint) is False
    assert await repo.get(mint) is None


@pytest.mark.asyncio
async def test_token_metadata_versions_only_on_change(session):
    """Re-resolving identical metadata reuses the latest version; a change adds one."""
    repo = TokenMetadataRepository(session)
    mint = new_mint()

    v1 = await repo.add_version(_metadata(mint))
    same = await repo.add_version(_metadata(mint))
    v2 = await repo.add_version(_metadata(mint, content_uri="https://example.com/2.json"))

    assert v1.version == 1
    assert same.id == v1.id
    assert v2.version == 2
    assert [m.version for m in await repo.list_versions(mint)] == [1, 2]
    latest = await repo.get_latest(mint)
    assert latest.content_uri == "https://example.com/2.json"


@pytest.mark.asyncio
async def test_token_metadata_versions_are_per_mint(session):
    repo = TokenMetadataRepository(session)

    a = await repo.add_version(_metadata(new_mint()))
    b = await repo.add_version(_metadata(new_mint()))

    assert a.version == b.version == 1
