"""Background workers for bulk media ingestion."""

from nftcache.workers.collection_loader import CollectionLoader, LoadSummary

__all__ = [
    "CollectionLoader",
    "LoadSummary",
]
