"""CLI command for bulk-loading a collection's media into the cache.

Usage:
    python -m nftcache.cli load-collection COLLECTION [OPTIONS]

Examples:
    # Load every mint of a verified collection (enumerated via DAS)
    python -m nftcache.cli load-collection J1S9H3QjnRtBbbuD4HjPV6RpRhwuk4zKbxsnCHuTgh9w

    # Load an explicit list of mints (one per line)
    python -m nftcache.cli load-collection my-drop --mints-file mints.txt

    # Re-fetch mints that are already cached or failed
    python -m nftcache.cli load-collection J1S9H3Qj... --refresh

Ctrl-C stops enumeration and abandons queued work; in-flight mints stay pending.
"""

import asyncio
import signal
import sys
from argparse import Namespace
from pathlib import Path

import structlog

from nftcache.cli.common import add_common_arguments, load_settings, open_stack
from nftcache.services.blockchain.collection import StaticMintSource
from nftcache.services.exceptions import StorageError

logger = structlog.get_logger()


def add_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        "load-collection",
        help="Resolve and cache media for every mint of a collection",
        description="Resolve and cache media for every mint of a collection",
    )
    parser.add_argument("collection", help="Collection id (verified collection mint address)")
    parser.add_argument(
        "--mints-file",
        type=Path,
        help="Read mints from a file (one per line) instead of enumerating via DAS",
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Re-fetch mints that are already ready or failed",
    )
    add_common_arguments(parser)
    parser.set_defaults(handler=run)


def read_mints_file(path: Path) -> list[str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.startswith("#")]


async def run(args: Namespace) -> int:
    """Run a collection load.

    Returns:
        Exit code: 0 (success), 1 (error), 2 (partial success), 130 (interrupted)
    """
    settings = load_settings(args)

    overrides = {}
    if args.mints_file:
        try:
            overrides["mint_source"] = StaticMintSource(read_mints_file(args.mints_file))
        except OSError as e:
            print(f"Error: cannot read {args.mints_file}: {e}", file=sys.stderr)
            return 1

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    logger.info("cli.started", command="load-collection", collection=args.collection)

    try:
        async with open_stack(settings, **overrides) as stack:
            summary = await stack.loader.load_collection(
                args.collection, refresh=args.refresh, cancel_event=cancel_event
            )
    except StorageError as e:
        logger.error("cli.storage_error", error=str(e))
        print(f"\nStorage error: {e}", file=sys.stderr)
        return 1

    # Print summary
    print("\n" + "=" * 60)
    print("Collection Load Summary")
    print("=" * 60)
    print(f"Collection: {summary.collection_id}")
    print(f"Succeeded: {summary.succeeded}")
    print(f"Failed: {summary.failed}")
    print(f"Skipped (ready or failed, not due): {summary.skipped}")
    print(f"Abandoned: {summary.abandoned}")

    if summary.errors:
        print(f"\nErrors encountered: {len(summary.errors)}")
        for error in summary.errors[:5]:  # Show first 5 errors
            print(f"  - {error}")
        if len(summary.errors) > 5:
            print(f"  ... and {len(summary.errors) - 5} more errors")

    if summary.cancelled:
        print("\n[CANCELLED] Load interrupted; remaining mints left pending")
    print("=" * 60 + "\n")

    if summary.cancelled:
        return 130
    if summary.errors and summary.succeeded == 0 and summary.skipped == 0:
        return 1
    if summary.errors:
        return 2
    return 0
