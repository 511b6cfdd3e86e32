"""pytest fixtures for nftcache tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- settings: Settings pointing the cache and database at a temp directory
- session_factory / session: SQLite (aiosqlite) database with tables created
- uow_factory: Function-scoped UnitOfWork factory
- blob_store / cache_store: Two-tier cache over the temp directory
- make_pipeline: Builds a MediaResolutionPipeline around fake sources
"""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from nftcache.core.config import Settings
from nftcache.core.database import create_tables, setup_db_session
from nftcache.services.blob_store import FileBlobStore
from nftcache.services.cache_store import CacheStore
from nftcache.services.media.transformer import ImageTransformer, render_placeholders
from nftcache.services.pipeline import MediaResolutionPipeline
from nftcache.services.retry import RetryPolicy
from nftcache.uow import create_uow_factory


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        APP_ENV="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        CACHE_DIR=str(tmp_path / "cache"),
        RETRY_BACKOFF_SECONDS=0,
        RETRY_BACKOFF_MAX_SECONDS=0,
        METADATA_WORKERS=2,
        FETCH_WORKERS=3,
        PERSIST_WORKERS=2,
        PIPELINE_QUEUE_SIZE=2,
    )


@pytest_asyncio.fixture(scope="function")
async def session_factory(settings):
    """Provide a session factory over a fresh SQLite file with all tables."""
    factory = setup_db_session(settings.database_url)
    engine = factory.kw["bind"]
    await create_tables(engine)
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def blob_store(settings) -> FileBlobStore:
    return FileBlobStore(settings.cache_dir, settings.output_format)


@pytest.fixture
def cache_store(uow_factory, blob_store) -> CacheStore:
    return CacheStore(uow_factory, blob_store)


@pytest.fixture
def transformer(settings) -> ImageTransformer:
    return ImageTransformer(settings.image_variants, settings.output_format)


@pytest.fixture
def make_pipeline(cache_store, transformer, settings):
    """Build a pipeline over the test cache with the given sources."""

    def _make(metadata_source, media_source, **kwargs) -> MediaResolutionPipeline:
        kwargs.setdefault("retry_policy", RetryPolicy(attempts=3))
        kwargs.setdefault("sleep", _no_sleep)
        return MediaResolutionPipeline(
            cache_store,
            metadata_source,
            media_source,
            transformer,
            render_placeholders(transformer),
            default_variant=settings.default_variant,
            **kwargs,
        )

    return _make
