"""Shared setup for CLI commands."""

from argparse import ArgumentParser, Namespace
from contextlib import asynccontextmanager
from typing import AsyncIterator

from nftcache.core import timezone  # noqa: F401
from nftcache.core.config import Settings, configure_logging
from nftcache.core.container import MediaStack, build_media_stack


def add_common_arguments(parser: ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )


def load_settings(args: Namespace) -> Settings:
    """Load settings from the environment and configure logging."""
    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)
    return settings


@asynccontextmanager
async def open_stack(settings: Settings, **overrides) -> AsyncIterator[MediaStack]:
    """Build and start a MediaStack, closing it on exit."""
    stack = build_media_stack(settings, **overrides)
    try:
        await stack.startup()
        yield stack
    finally:
        await stack.aclose()
