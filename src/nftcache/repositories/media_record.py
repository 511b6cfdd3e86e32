"""MediaRecord repository for nftcache.

Provides data access methods for MediaRecord entities with dialect-aware UPSERT.
"""

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from nftcache.core.timezone import utcnow
from nftcache.models.media_record import MediaRecord, MediaStatus

# Columns written by upsert (everything except the primary key and created_at)
_UPSERT_COLUMNS = (
    "status",
    "content_uri",
    "image_uri",
    "image_type",
    "content_hash",
    "variants",
    "output_content_type",
    "attempts",
    "error",
    "last_attempt",
    "last_success",
    "updated_at",
)


class MediaRecordRepository:
    """Repository for MediaRecord entities.

    Writes go through `upsert`, which maps to INSERT ... ON CONFLICT DO UPDATE
    on both PostgreSQL and SQLite so concurrent writers never collide on the
    primary key.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get(self, mint: str) -> MediaRecord | None:
        """Retrieve media record by mint address.

        Args:
            mint: Base58 mint address

        Returns:
            MediaRecord if found, None otherwise
        """
        result = await self.session.execute(
            select(MediaRecord).where(MediaRecord.mint == mint)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def upsert(self, record: MediaRecord) -> MediaRecord:
        """Insert or update a media record (last writer wins).

        Args:
            record: Record carrying the full desired state

        Returns:
            The freshly loaded persisted record
        """
        record.updated_at = utcnow()
        values = {column: getattr(record, column) for column in _UPSERT_COLUMNS}
        values["mint"] = record.mint
        values["created_at"] = record.created_at

        dialect = self.session.get_bind().dialect.name
        insert = sqlite.insert if dialect == "sqlite" else postgresql.insert

        stmt = insert(MediaRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["mint"],
            set_={column: values[column] for column in _UPSERT_COLUMNS},
        )
        await self.session.execute(stmt)
        await self.session.flush()

        # populate_existing overwrites any stale identity-map copy with the written row
        result = await self.session.execute(
            select(MediaRecord)
            .where(MediaRecord.mint == record.mint)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def delete(self, mint: str) -> bool:
        """Delete a media record (idempotent).

        Args:
            mint: Base58 mint address

        Returns:
            True if a record was deleted, False if none existed
        """
        result = await self.session.execute(
            delete(MediaRecord).where(MediaRecord.mint == mint)  # type: ignore[arg-type]
        )
        await self.session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def list_by_status(
        self, status: MediaStatus, limit: int = 100, offset: int = 0
    ) -> list[MediaRecord]:
        """Retrieve records in a given status, most recently updated first.

        Args:
            status: Status to filter on
            limit: Maximum number of records to return
            offset: Number of records to skip

        Returns:
            List of matching records
        """
        result = await self.session.execute(
            select(MediaRecord)
            .where(MediaRecord.status == status)  # type: ignore[arg-type]
            .order_by(MediaRecord.updated_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        """Count records per status.

        Returns:
            Mapping of status value to record count (statuses with no rows omitted)
        """
        result = await self.session.execute(
            select(MediaRecord.status, func.count()).group_by(MediaRecord.status)  # type: ignore[arg-type]
        )
        return {MediaStatus(status).value: count for status, count in result.all()}
