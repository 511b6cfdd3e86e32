"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- Multiple repository operations are atomic
"""

import pytest

from factories import new_mint
from nftcache.models.media_record import MediaRecord
from nftcache.models.token_metadata import TokenMetadata


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Changes made within the context persist after the context exits."""
    mint = new_mint()

    async with await uow_factory() as uow:
        await uow.media_records.upsert(MediaRecord(mint=mint))

    async with await uow_factory() as uow:
        found = await uow.media_records.get(mint)
        assert found is not None
        assert found.mint == mint


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """If an exception is raised the changes are rolled back and the exception propagates."""
    mint = new_mint()

    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            await uow.media_records.upsert(MediaRecord(mint=mint))
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.media_records.get(mint) is None, "Record should not exist after rollback"


@pytest.mark.asyncio
async def test_uow_multiple_operations_atomic(uow_factory):
    """Operations across repositories commit or roll back together."""
    mint = new_mint()

    with pytest.raises(RuntimeError):
        async with await uow_factory() as uow:
            await uow.media_records.upsert(MediaRecord(mint=mint))
            await uow.token_metadata.add_version(
                TokenMetadata(mint=mint, name="A", content_uri="https://a", program="metaplex")
            )
            raise RuntimeError("fail after both writes")

    async with await uow_factory() as uow:
        assert await uow.media_records.get(mint) is None
        assert await uow.token_metadata.get_latest(mint) is None
