"""Media resolution pipeline: mint address in, servable image out.

Flow for a cache miss:
1. begin attempt (record → pending, attempts+1)
2. resolve on-chain metadata (transient errors retried with backoff)
3. store the metadata snapshot (new version only if it changed)
4. fetch source media (transient errors retried with backoff)
5. transform into every configured variant (worker thread)
6. publish: blobs first, then record → ready

A permanent error, or a transient one that outlives its retries, marks the
record failed and the caller gets the placeholder. StorageError always
propagates.

Concurrent resolutions of one mint share a single flight. The step methods are
public so the collection loader can drive them stage by stage.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Awaitable, Callable

import structlog

from nftcache.core.timezone import utcnow
from nftcache.models.media_record import MediaRecord, MediaStatus
from nftcache.models.token_metadata import TokenMetadata
from nftcache.services.blockchain.metadata_resolver import MetadataSource, parse_mint
from nftcache.services.cache_store import CacheStore
from nftcache.services.exceptions import (
    PermanentError,
    ServiceError,
    TransientError,
    UnsupportedUriError,
)
from nftcache.services.media.fetcher import FetchedMedia, MediaSource
from nftcache.services.media.transformer import ImageTransformer
from nftcache.services.retry import RetryPolicy, retry_transient
from nftcache.services.single_flight import SingleFlight

logger = structlog.get_logger(__name__)


class JobStage(str, Enum):
    """Where a job currently is (or ended)."""

    METADATA = "metadata"
    FETCH = "fetch"
    TRANSFORM = "transform"
    PERSIST = "persist"
    DONE = "done"
    CACHED = "cached"
    FAILED = "failed"


class ResultSource(str, Enum):
    """Where the bytes of a MediaResult came from."""

    CACHE = "cache"
    ORIGIN = "origin"
    PLACEHOLDER = "placeholder"


@dataclass
class PipelineJob:
    """Per-mint work item carried through the pipeline stages."""

    mint: str
    refresh: bool = False
    metadata: TokenMetadata | None = None
    media: FetchedMedia | None = None
    encoded: dict[str, bytes] = field(default_factory=dict)
    error: ServiceError | None = None
    failure: str | None = None  # error as recorded on the media record
    stage: JobStage = JobStage.METADATA
    started_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class MediaResult:
    """Image returned to callers."""

    data: bytes
    content_type: str
    status: MediaStatus
    source: ResultSource
    variant: str
    error: str | None = None


def describe_error(error: Exception) -> str:
    return f"{type(error).__name__}: {error}"


class MediaResolutionPipeline:
    """Resolves mints to cached image variants."""

    def __init__(
        self,
        store: CacheStore,
        metadata_source: MetadataSource,
        media_source: MediaSource,
        transformer: ImageTransformer,
        placeholders: dict[str, bytes],
        *,
        default_variant: str = "medium",
        retry_policy: RetryPolicy | None = None,
        failed_retry_cooldown_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.metadata_source = metadata_source
        self.media_source = media_source
        self.transformer = transformer
        self.placeholders = placeholders
        self.default_variant = default_variant
        self.retry_policy = retry_policy or RetryPolicy()
        self.failed_retry_cooldown_seconds = failed_retry_cooldown_seconds
        self.sleep = sleep
        self.flights: SingleFlight[PipelineJob] = SingleFlight()

        # Fail fast on a misconfigured default
        self.transformer.variant(default_variant)

    async def resolve(
        self, mint: str, variant: str | None = None, refresh: bool = False
    ) -> MediaResult:
        """Return the image for a mint, resolving it on a cache miss.

        Args:
            mint: Base58 mint address
            variant: Variant name (default variant when None)
            refresh: Bypass the cache and failed-record policy, re-fetching

        Raises:
            InvalidMintError: If the mint cannot be parsed (nothing is cached)
            UnknownVariantError: If the variant is not configured
            StorageError: If the cache cannot be read or written
        """
        mint = str(parse_mint(mint))
        variant = variant or self.default_variant
        self.transformer.variant(variant)

        if not refresh:
            cached = await self.store.lookup(mint, variant)
            if cached is not None:
                logger.debug("media.cache.hit", mint=mint, variant=variant)
                return MediaResult(
                    data=cached.data,
                    content_type=cached.content_type,
                    status=MediaStatus.READY,
                    source=ResultSource.CACHE,
                    variant=variant,
                )

            record = await self.store.get_record(mint)
            if record is not None and record.status == MediaStatus.FAILED:
                if not self.retry_due(record):
                    logger.debug("media.cache.failed_record", mint=mint, error=record.error)
                    return self.placeholder(variant, record.error)

        job = await self.flights.do(mint, lambda: self._flight(mint, refresh))
        return await self._result_for(job, variant)

    async def _flight(self, mint: str, refresh: bool) -> PipelineJob:
        job = PipelineJob(mint=mint, refresh=refresh)

        # Another flight may have finished between the caller's lookup and now
        if not refresh:
            record = await self.store.get_record(mint)
            if record is not None and record.status == MediaStatus.READY:
                job.stage = JobStage.CACHED
                return job
            if (
                record is not None
                and record.status == MediaStatus.FAILED
                and not self.retry_due(record)
            ):
                job.stage = JobStage.FAILED
                job.failure = record.error
                return job

        return await self.run(job)

    async def _result_for(self, job: PipelineJob, variant: str) -> MediaResult:
        if job.stage == JobStage.DONE:
            return MediaResult(
                data=job.encoded[variant],
                content_type=self.transformer.content_type,
                status=MediaStatus.READY,
                source=ResultSource.ORIGIN,
                variant=variant,
            )

        if job.stage == JobStage.CACHED:
            cached = await self.store.lookup(job.mint, variant)
            if cached is not None:
                return MediaResult(
                    data=cached.data,
                    content_type=cached.content_type,
                    status=MediaStatus.READY,
                    source=ResultSource.CACHE,
                    variant=variant,
                )
            # Invalidated between the flight and this read
            return self.placeholder(variant, None, status=MediaStatus.PENDING)

        return self.placeholder(variant, job.failure)

    def placeholder(
        self, variant: str, error: str | None, status: MediaStatus = MediaStatus.FAILED
    ) -> MediaResult:
        return MediaResult(
            data=self.placeholders[variant],
            content_type=self.transformer.content_type,
            status=status,
            source=ResultSource.PLACEHOLDER,
            variant=variant,
            error=error,
        )

    def retry_due(self, record: MediaRecord) -> bool:
        """True if a failed record may be retried without an explicit refresh."""
        if self.failed_retry_cooldown_seconds is None:
            return False
        if record.last_attempt is None:
            return True
        return utcnow() >= record.last_attempt + timedelta(
            seconds=self.failed_retry_cooldown_seconds
        )

    async def should_process(self, mint: str, refresh: bool = False) -> bool:
        """False for mints that are ready or failed-and-not-yet-due (unless refresh)."""
        if refresh:
            return True
        record = await self.store.get_record(mint)
        if record is None or record.status == MediaStatus.PENDING:
            return True
        if record.status == MediaStatus.READY:
            return False
        return self.retry_due(record)

    async def run(self, job: PipelineJob) -> PipelineJob:
        """Drive one job through every stage."""
        await self.start(job)
        try:
            await self.resolve_metadata(job)
            await self.fetch_media(job)
            await self.transform_media(job)
        except (TransientError, PermanentError) as e:
            await self.fail(job, e)
            return job
        await self.persist(job)
        return job

    # Stage steps

    async def start(self, job: PipelineJob) -> None:
        """Record the attempt: pending, attempts+1."""
        record = await self.store.begin_attempt(job.mint)
        job.stage = JobStage.METADATA
        job.started_at = time.monotonic()
        logger.info(
            "media.resolution.started",
            mint=job.mint,
            attempt=record.attempts,
            refresh=job.refresh,
        )

    async def resolve_metadata(self, job: PipelineJob) -> None:
        """Resolve and store on-chain metadata."""
        job.stage = JobStage.METADATA
        metadata = await retry_transient(
            lambda: self.metadata_source.resolve(job.mint),
            self.retry_policy,
            event="media.resolution.metadata",
            sleep=self.sleep,
            mint=job.mint,
        )
        job.metadata = await self.store.save_metadata(metadata)
        logger.debug(
            "media.resolution.metadata_resolved",
            mint=job.mint,
            program=job.metadata.program,
            version=job.metadata.version,
            content_uri=job.metadata.content_uri,
        )

    async def fetch_media(self, job: PipelineJob) -> None:
        """Fetch source media from the metadata's content URI."""
        job.stage = JobStage.FETCH
        if job.metadata is None or not job.metadata.content_uri:
            raise UnsupportedUriError(f"Metadata for {job.mint} has no content URI")

        uri = job.metadata.content_uri
        job.media = await retry_transient(
            lambda: self.media_source.fetch(uri),
            self.retry_policy,
            event="media.resolution.fetch",
            sleep=self.sleep,
            mint=job.mint,
            uri=uri,
        )
        logger.debug(
            "media.resolution.fetched",
            mint=job.mint,
            image_uri=job.media.uri,
            content_type=job.media.content_type,
            size_bytes=len(job.media.data),
        )

    async def transform_media(self, job: PipelineJob) -> None:
        """Produce every configured variant off the event loop."""
        job.stage = JobStage.TRANSFORM
        job.encoded = await asyncio.to_thread(
            self.transformer.transform_all, job.media.data, job.media.content_type
        )

    async def persist(self, job: PipelineJob) -> None:
        """Publish variant blobs and mark the record ready."""
        job.stage = JobStage.PERSIST
        await self.store.publish(
            job.mint,
            job.encoded,
            content_uri=job.metadata.content_uri,
            image_uri=job.media.uri,
            image_type=job.media.content_type,
            content_hash=job.media.content_hash,
        )
        job.stage = JobStage.DONE
        logger.info(
            "media.resolution.succeeded",
            mint=job.mint,
            variants=sorted(job.encoded),
            duration_seconds=round(time.monotonic() - job.started_at, 3),
        )

    async def fail(self, job: PipelineJob, error: ServiceError) -> None:
        """Mark the record failed with the terminal error."""
        failed_stage = job.stage
        job.error = error
        job.failure = describe_error(error)
        job.stage = JobStage.FAILED
        await self.store.mark_failed(
            job.mint,
            job.failure,
            content_uri=job.metadata.content_uri if job.metadata else None,
        )
        logger.warning(
            "media.resolution.failed",
            mint=job.mint,
            stage=failed_stage.value,
            error_type=type(error).__name__,
            error=str(error),
            transient=isinstance(error, TransientError),
        )

    async def aclose(self) -> None:
        await self.flights.cancel_all()
