"""Media API endpoints.

- GET /media/{mint} - Serve the image for a mint (resolving it on a cache miss)
- GET /media/{mint}/record - Inspect the cached media record
- POST /media/{mint}/invalidate - Reset the record to pending and drop its blobs
- DELETE /media/{mint} - Administrative eviction of record and blobs
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from nftcache.api.dependencies import get_pipeline, get_store
from nftcache.models.media_record import MediaRecord
from nftcache.services.blockchain.metadata_resolver import parse_mint
from nftcache.services.cache_store import CacheStore
from nftcache.services.exceptions import InvalidMintError, StorageError, UnknownVariantError
from nftcache.services.pipeline import MediaResolutionPipeline, ResultSource

logger = structlog.get_logger()
router = APIRouter(prefix="/media", tags=["media"])

CACHE_HEADER = {
    ResultSource.CACHE: "HIT",
    ResultSource.ORIGIN: "MISS",
    ResultSource.PLACEHOLDER: "PLACEHOLDER",
}


# Response Models


class MediaRecordResponse(BaseModel):
    """Cached media state for one mint."""

    mint: str = Field(..., description="Base58 mint address")
    status: str = Field(..., description="Record status (pending, ready, failed)")
    content_uri: str | None = Field(default=None, description="On-chain metadata URI")
    image_uri: str | None = Field(default=None, description="Final image URI")
    image_type: str | None = Field(default=None, description="Source image content type")
    content_hash: str | None = Field(default=None, description="sha256 of source bytes")
    variants: list[str] = Field(default_factory=list, description="Stored variant names")
    attempts: int = Field(..., description="Resolution attempts so far")
    error: str | None = Field(default=None, description="Last terminal error")
    last_attempt: datetime | None = Field(default=None, description="Last attempt (UTC)")
    last_success: datetime | None = Field(default=None, description="Last success (UTC)")

    @classmethod
    def from_record(cls, record: MediaRecord) -> "MediaRecordResponse":
        return cls(
            mint=record.mint,
            status=record.status.value,
            content_uri=record.content_uri,
            image_uri=record.image_uri,
            image_type=record.image_type,
            content_hash=record.content_hash,
            variants=list(record.variants or []),
            attempts=record.attempts,
            error=record.error,
            last_attempt=record.last_attempt,
            last_success=record.last_success,
        )


class MediaActionResponse(BaseModel):
    """Result of an invalidate/evict request."""

    mint: str
    found: bool = Field(..., description="True if a record existed")


def _validated_mint(mint: str) -> str:
    try:
        return str(parse_mint(mint))
    except InvalidMintError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _storage_unavailable(e: StorageError, mint: str) -> HTTPException:
    logger.error("media.storage_error", mint=mint, error=str(e))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cache storage unavailable"
    )


# API Endpoints


@router.get("/{mint}")
async def get_media(
    mint: str,
    variant: str | None = Query(default=None, description="Size variant (default if omitted)"),
    refresh: bool = Query(default=False, description="Bypass the cache and re-fetch"),
    pipeline: MediaResolutionPipeline = Depends(get_pipeline),
) -> Response:
    """Serve the image for a mint.

    Returns the cached variant, resolving it first on a miss. Mints whose media
    cannot be resolved get the placeholder image.

    Headers:
        X-Cache: HIT (served from cache), MISS (resolved now), PLACEHOLDER
        X-Media-Status: pending, ready or failed

    Raises:
        HTTPException: 400 for an invalid mint or variant, 503 if storage fails
    """
    try:
        result = await pipeline.resolve(mint, variant=variant, refresh=refresh)
    except (InvalidMintError, UnknownVariantError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StorageError as e:
        raise _storage_unavailable(e, mint)

    headers = {
        "X-Cache": CACHE_HEADER[result.source],
        "X-Media-Status": result.status.value,
    }
    if result.source == ResultSource.PLACEHOLDER:
        headers["Cache-Control"] = "no-store"
    else:
        headers["Cache-Control"] = "public, max-age=86400"
    return Response(content=result.data, media_type=result.content_type, headers=headers)


@router.get("/{mint}/record", response_model=MediaRecordResponse)
async def get_media_record(
    mint: str,
    store: CacheStore = Depends(get_store),
) -> MediaRecordResponse:
    """Return the cached media record for a mint (404 if never resolved)."""
    mint = _validated_mint(mint)
    try:
        record = await store.get_record(mint)
    except StorageError as e:
        raise _storage_unavailable(e, mint)

    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media record not found")
    return MediaRecordResponse.from_record(record)


@router.post("/{mint}/invalidate", response_model=MediaActionResponse)
async def invalidate_media(
    mint: str,
    store: CacheStore = Depends(get_store),
) -> MediaActionResponse:
    """Reset the record to pending and evict its variant blobs."""
    mint = _validated_mint(mint)
    try:
        found = await store.invalidate(mint)
    except StorageError as e:
        raise _storage_unavailable(e, mint)

    logger.info("media.invalidate_requested", mint=mint, found=found)
    return MediaActionResponse(mint=mint, found=found)


@router.delete("/{mint}", response_model=MediaActionResponse)
async def evict_media(
    mint: str,
    store: CacheStore = Depends(get_store),
) -> MediaActionResponse:
    """Delete the record and every variant blob for a mint."""
    mint = _validated_mint(mint)
    try:
        found = await store.evict(mint)
    except StorageError as e:
        raise _storage_unavailable(e, mint)

    logger.info("media.evict_requested", mint=mint, found=found)
    return MediaActionResponse(mint=mint, found=found)
