"""TokenMetadata repository for nftcache.

Provides versioned storage for resolved on-chain metadata.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nftcache.models.token_metadata import TokenMetadata


class TokenMetadataRepository:
    """Repository for TokenMetadata snapshots.

    Rows are append-only: a changed resolution becomes a new version.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_latest(self, mint: str) -> TokenMetadata | None:
        """Retrieve the newest metadata version for a mint.

        Args:
            mint: Base58 mint address

        Returns:
            Latest TokenMetadata if any version exists, None otherwise
        """
        result = await self.session.execute(
            select(TokenMetadata)
            .where(TokenMetadata.mint == mint)  # type: ignore[arg-type]
            .order_by(TokenMetadata.version.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_versions(self, mint: str) -> list[TokenMetadata]:
        """Retrieve every metadata version for a mint, oldest first."""
        result = await self.session.execute(
            select(TokenMetadata)
            .where(TokenMetadata.mint == mint)  # type: ignore[arg-type]
            .order_by(TokenMetadata.version.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def add_version(self, metadata: TokenMetadata) -> TokenMetadata:
        """Persist a resolution as a new version unless it matches the latest one.

        Args:
            metadata: Freshly resolved metadata (unsaved)

        Returns:
            The stored version (the existing latest one when nothing changed)
        """
        latest = await self.get_latest(metadata.mint)
        if latest is not None and latest.same_content(metadata):
            return latest

        metadata.version = latest.version + 1 if latest else 1
        self.session.add(metadata)
        await self.session.flush()
        return metadata
