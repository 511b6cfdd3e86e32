"""CLI entry point for the nftcache.cli module.

Enables execution via: python -m nftcache.cli <command> [OPTIONS]

Commands:
    load-collection  Bulk-load a collection's media into the cache
    resolve          Resolve one mint
    invalidate       Reset mints to pending and drop cached images
    evict            Delete mints' records and cached images
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

from nftcache.cli import cache_admin, load_collection


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        prog="python -m nftcache.cli",
        description="Solana NFT media cache administration",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    load_collection.add_parser(subparsers)
    cache_admin.add_parsers(subparsers)
    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    return await args.handler(args)


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
