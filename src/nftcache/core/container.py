"""Service container: builds and owns every long-lived collaborator.

The HTTP app and the CLI both build one MediaStack from Settings and close it
on exit. Nothing is held in module-level globals.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from nftcache.core.config import Settings
from nftcache.core.database import create_tables, setup_db_session
from nftcache.services.blob_store import FileBlobStore
from nftcache.services.blockchain.collection import DasCollectionSource, MintSource
from nftcache.services.blockchain.metadata_resolver import MetadataResolver, MetadataSource
from nftcache.services.blockchain.rpc_client import AccountReader, SolanaRpcClient
from nftcache.services.cache_store import CacheStore
from nftcache.services.media.fetcher import MediaFetcher, MediaSource
from nftcache.services.media.transformer import ImageTransformer, render_placeholders
from nftcache.services.pipeline import MediaResolutionPipeline
from nftcache.services.retry import RetryPolicy
from nftcache.uow import create_uow_factory
from nftcache.workers.collection_loader import CollectionLoader

logger = structlog.get_logger(__name__)


@dataclass
class MediaStack:
    """Everything needed to resolve, cache and serve media."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    store: CacheStore
    pipeline: MediaResolutionPipeline
    loader: CollectionLoader
    closeables: list

    @property
    def engine(self) -> AsyncEngine:
        return self.session_factory.kw["bind"]

    async def startup(self) -> None:
        """Prepare storage: SQLite schema and leftovers from interrupted writes."""
        if self.settings.database_url.startswith("sqlite"):
            await create_tables(self.engine)
        purged = await self.store.purge_temp_files()
        logger.info("stack.started", temp_files_purged=purged)

    async def aclose(self) -> None:
        """Cancel in-flight resolutions, close network clients and the engine."""
        await self.pipeline.aclose()
        for resource in self.closeables:
            await resource.close()
        await self.engine.dispose()
        logger.info("stack.closed")


def build_media_stack(
    settings: Settings,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    account_reader: AccountReader | None = None,
    metadata_source: MetadataSource | None = None,
    media_source: MediaSource | None = None,
    mint_source: MintSource | None = None,
) -> MediaStack:
    """Wire the media stack from settings.

    Any collaborator can be supplied explicitly (tests pass fakes); the rest
    are built from configuration.
    """
    closeables = []

    if session_factory is None:
        session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    blobs = FileBlobStore(settings.cache_dir, settings.output_format)
    store = CacheStore(uow_factory, blobs)

    if metadata_source is None:
        if account_reader is None:
            account_reader = SolanaRpcClient(
                settings.solana_rpc_url,
                timeout=settings.rpc_timeout_seconds,
                requests_per_second=settings.rpc_requests_per_second,
            )
            closeables.append(account_reader)
        metadata_source = MetadataResolver(
            account_reader,
            metadata_program_id=settings.metadata_program_id,
            token_2022_program_id=settings.token_2022_program_id,
        )

    if media_source is None:
        media_source = MediaFetcher(
            timeout=settings.fetch_timeout_seconds,
            max_bytes=settings.fetch_max_bytes,
            max_redirects=settings.fetch_max_redirects,
            ipfs_gateway=settings.ipfs_gateway,
            arweave_gateway=settings.arweave_gateway,
        )
        closeables.append(media_source)

    if mint_source is None:
        mint_source = DasCollectionSource(
            settings.das_endpoint,
            page_size=settings.das_page_size,
            timeout=settings.rpc_timeout_seconds,
        )
        closeables.append(mint_source)

    transformer = ImageTransformer(settings.image_variants, settings.output_format)
    placeholders = render_placeholders(transformer, settings.placeholder_image_path or None)

    pipeline = MediaResolutionPipeline(
        store,
        metadata_source,
        media_source,
        transformer,
        placeholders,
        default_variant=settings.default_variant,
        retry_policy=RetryPolicy(
            attempts=settings.retry_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
            backoff_max_seconds=settings.retry_backoff_max_seconds,
        ),
        failed_retry_cooldown_seconds=settings.failed_retry_cooldown_seconds,
    )
    loader = CollectionLoader(
        pipeline,
        mint_source,
        metadata_workers=settings.metadata_workers,
        fetch_workers=settings.fetch_workers,
        persist_workers=settings.persist_workers,
        queue_size=settings.pipeline_queue_size,
    )

    return MediaStack(
        settings=settings,
        session_factory=session_factory,
        store=store,
        pipeline=pipeline,
        loader=loader,
        closeables=closeables,
    )
