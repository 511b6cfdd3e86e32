"""CLI commands for single-mint cache administration.

Usage:
    python -m nftcache.cli resolve MINT [--variant NAME] [--refresh] [--output FILE]
    python -m nftcache.cli invalidate MINT [MINT ...]
    python -m nftcache.cli evict MINT [MINT ...]
"""

import sys
from argparse import Namespace
from pathlib import Path

import structlog

from nftcache.cli.common import add_common_arguments, load_settings, open_stack
from nftcache.services.exceptions import InvalidMintError, StorageError, UnknownVariantError
from nftcache.services.pipeline import ResultSource

logger = structlog.get_logger()


def add_parsers(subparsers) -> None:
    resolve = subparsers.add_parser("resolve", help="Resolve one mint and print its status")
    resolve.add_argument("mint", help="Mint address")
    resolve.add_argument("--variant", help="Variant name (default variant if omitted)")
    resolve.add_argument("--refresh", action="store_true", help="Bypass the cache")
    resolve.add_argument("--output", type=Path, help="Write the image bytes to this file")
    add_common_arguments(resolve)
    resolve.set_defaults(handler=run_resolve)

    for name, help_text in (
        ("invalidate", "Reset mints to pending and drop their cached images"),
        ("evict", "Delete mints' records and cached images"),
    ):
        parser = subparsers.add_parser(name, help=help_text, description=help_text)
        parser.add_argument("mints", nargs="+", help="Mint addresses")
        add_common_arguments(parser)
        parser.set_defaults(handler=run_invalidate if name == "invalidate" else run_evict)


async def run_resolve(args: Namespace) -> int:
    """Resolve a single mint.

    Returns:
        Exit code: 0 (served from cache or origin), 1 (error), 2 (placeholder)
    """
    settings = load_settings(args)
    try:
        async with open_stack(settings) as stack:
            result = await stack.pipeline.resolve(
                args.mint, variant=args.variant, refresh=args.refresh
            )
            record = await stack.store.get_record(args.mint)
    except (InvalidMintError, UnknownVariantError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except StorageError as e:
        logger.error("cli.storage_error", error=str(e))
        print(f"Storage error: {e}", file=sys.stderr)
        return 1

    if args.output:
        args.output.write_bytes(result.data)

    print(f"Mint: {args.mint}")
    print(f"Status: {result.status.value}")
    print(f"Source: {result.source.value}")
    print(f"Variant: {result.variant} ({result.content_type}, {len(result.data)} bytes)")
    if record is not None and record.image_uri:
        print(f"Image URI: {record.image_uri}")
    if result.error:
        print(f"Error: {result.error}")

    return 2 if result.source == ResultSource.PLACEHOLDER else 0


async def run_invalidate(args: Namespace) -> int:
    return await _run_for_each(args, "invalidate")


async def run_evict(args: Namespace) -> int:
    return await _run_for_each(args, "evict")


async def _run_for_each(args: Namespace, action: str) -> int:
    settings = load_settings(args)
    exit_code = 0
    try:
        async with open_stack(settings) as stack:
            operation = stack.store.invalidate if action == "invalidate" else stack.store.evict
            for mint in args.mints:
                found = await operation(mint)
                logger.info(f"cli.{action}", mint=mint, found=found)
                print(f"{mint}: {'done' if found else 'no record'}")
    except StorageError as e:
        logger.error("cli.storage_error", error=str(e))
        print(f"Storage error: {e}", file=sys.stderr)
        exit_code = 1
    return exit_code
