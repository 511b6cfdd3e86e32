"""Repository layer for nftcache.

This package contains repository classes that encapsulate data access logic
for all domain entities.
"""

from nftcache.repositories.media_record import MediaRecordRepository
from nftcache.repositories.token_metadata import TokenMetadataRepository

__all__ = [
    "MediaRecordRepository",
    "TokenMetadataRepository",
]
