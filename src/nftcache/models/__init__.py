"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from nftcache.models.media_record import InvalidStateTransition, MediaRecord, MediaStatus
from nftcache.models.token_metadata import TokenMetadata

__all__ = [
    "MediaRecord",
    "MediaStatus",
    "InvalidStateTransition",
    "TokenMetadata",
]
