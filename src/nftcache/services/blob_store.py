"""Filesystem blob store for transformed images.

Blobs live at `<root>/blobs/<mint[:2]>/<mint>/<variant>.<ext>`. Writes go to a
temporary sibling file that is fsynced and then renamed over the target, so a
half-written blob is never visible under its final name.
"""

import asyncio
import os
from pathlib import Path
from uuid import uuid4

import structlog

from nftcache.services.exceptions import StorageError

logger = structlog.get_logger(__name__)

TEMP_MARKER = ".tmp."

CONTENT_TYPES = {
    "WEBP": ("webp", "image/webp"),
    "PNG": ("png", "image/png"),
}


class FileBlobStore:
    """Variant blobs on the local filesystem, keyed by (mint, variant)."""

    def __init__(self, root: str | Path, output_format: str = "WEBP"):
        self.root = Path(root) / "blobs"
        self.extension, self.content_type = CONTENT_TYPES[output_format.upper()]

    def path_for(self, mint: str, variant: str) -> Path:
        return self._mint_dir(mint) / f"{variant}.{self.extension}"

    def _mint_dir(self, mint: str) -> Path:
        return self.root / mint[:2] / mint

    async def write(self, mint: str, variant: str, data: bytes) -> Path:
        """Atomically publish a blob.

        Raises:
            StorageError: If the filesystem write fails
        """
        return await asyncio.to_thread(self._write_sync, mint, variant, data)

    async def read(self, mint: str, variant: str) -> bytes | None:
        """Read a blob, returning None when it does not exist.

        Raises:
            StorageError: On any I/O error other than a missing file
        """
        return await asyncio.to_thread(self._read_sync, mint, variant)

    async def exists(self, mint: str, variant: str) -> bool:
        return await asyncio.to_thread(self.path_for(mint, variant).is_file)

    async def delete_all(self, mint: str) -> int:
        """Remove every variant blob for a mint.

        Returns:
            Number of blob files removed

        Raises:
            StorageError: If a file cannot be removed
        """
        return await asyncio.to_thread(self._delete_all_sync, mint)

    async def purge_temp_files(self) -> int:
        """Remove temporary files left behind by interrupted writes."""
        return await asyncio.to_thread(self._purge_temp_sync)

    def _write_sync(self, mint: str, variant: str, data: bytes) -> Path:
        target = self.path_for(mint, variant)
        tmp_path = target.with_name(f".{target.name}{TEMP_MARKER}{uuid4().hex}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, target)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write blob {mint}/{variant}: {e}") from e
        return target

    def _read_sync(self, mint: str, variant: str) -> bytes | None:
        try:
            return self.path_for(mint, variant).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read blob {mint}/{variant}: {e}") from e

    def _delete_all_sync(self, mint: str) -> int:
        mint_dir = self._mint_dir(mint)
        if not mint_dir.is_dir():
            return 0
        removed = 0
        try:
            for path in mint_dir.iterdir():
                if path.is_file():
                    path.unlink(missing_ok=True)
                    if TEMP_MARKER not in path.name:
                        removed += 1
            mint_dir.rmdir()
        except FileNotFoundError:
            # A concurrent delete already removed it
            pass
        except OSError as e:
            raise StorageError(f"Failed to delete blobs for {mint}: {e}") from e
        return removed

    def _purge_temp_sync(self) -> int:
        if not self.root.is_dir():
            return 0
        removed = 0
        for path in self.root.rglob(f"*{TEMP_MARKER}*"):
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("blob_store.purge_failed", path=str(path), error=str(e))
        if removed:
            logger.info("blob_store.temp_files_purged", count=removed)
        return removed
