"""
Export CLI for the rwtxt store.

Writes every non-empty file as markdown, and every upload as its original
bytes, into zip archives.

Usage:
    rwtxt-export --db <path> [--out <dir>] [--posts] [--uploads]

Archive layout:
    <unix_ns>-posts.zip
        <domain>/<slug>-<id>.md
    <unix_ns>-uploads.zip
        <id>-<name>

Invariants:
    - Export only reads; the database is never modified except for blob
      view counters bumped by fetching
    - Gzip-compressed uploads are stored decompressed
    - Staging files live in a temporary directory removed afterwards
"""

from __future__ import annotations

import argparse
import asyncio
import gzip
import logging
import sys
import tempfile
import time
import zipfile
import zlib
from pathlib import Path

from ..config import StoreSettings
from ..errors import RwtxtError, ValidationError
from ..logging_setup import setup_logging
from ..storage import TextStore

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


def maybe_gunzip(data: bytes) -> bytes:
    """Decompress gzip payloads, pass anything else through."""
    if data[:2] != GZIP_MAGIC:
        return data
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        logger.warning(f"Upload looks gzipped but isn't: {e}")
        return data


def safe_name(name: str, default: str = "upload") -> str:
    """Reduce ``name`` to a single path component."""
    name = Path(name.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return default
    return name


def staged_path(staging: str | Path, arcname: str) -> Path:
    """Resolve ``arcname`` under ``staging``.

    Raises:
        ValidationError: If the name points outside the staging directory
    """
    root = Path(staging).resolve()
    path = (root / arcname).resolve()
    if not path.is_relative_to(root):
        raise ValidationError(f"Archive name escapes staging: {arcname!r}", field_name="arcname")
    return path


class Exporter:
    """Export posts and uploads of a started TextStore.

    Args:
        store: A started store
        out_dir: Directory receiving the zip archives
    """

    def __init__(self, store: TextStore, out_dir: str | Path = ".") -> None:
        self.store = store
        self.out_dir = Path(out_dir)

    def _archive_path(self, kind: str) -> Path:
        self.out_dir.mkdir(parents=True, exist_ok=True)
        return self.out_dir / f"{time.time_ns()}-{kind}.zip"

    async def export_posts(self) -> Path:
        """Zip every non-empty file of every domain.

        Returns:
            Path of the archive
        """
        archive = self._archive_path("posts")
        count = 0
        with tempfile.TemporaryDirectory() as staging:
            staged: list[tuple[Path, str]] = []
            for domain in await self.store.domains.list_domains():
                for f in await self.store.files.get_all(domain):
                    filename = safe_name(f"{f.slug}-{f.id}.md")
                    arcname = f"{safe_name(domain, 'domain')}/{filename}"
                    path = staged_path(staging, arcname)
                    path.parent.mkdir(parents=True, exist_ok=True)
                    path.write_text(f.data, encoding="utf-8")
                    staged.append((path, arcname))

            with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for path, arcname in staged:
                    zf.write(path, arcname)
                    count += 1

        logger.info("Exported posts", extra={"archive": str(archive), "count": count})
        return archive

    async def export_uploads(self) -> Path:
        """Zip every upload, decompressed.

        Returns:
            Path of the archive
        """
        archive = self._archive_path("uploads")
        count = 0
        with tempfile.TemporaryDirectory() as staging:
            staged: list[tuple[Path, str]] = []
            for blob_id in await self.store.blobs.list_blob_ids():
                blob = await self.store.blobs.get_blob(blob_id)
                arcname = f"{safe_name(blob.id, 'blob')}-{safe_name(blob.name)}"
                path = staged_path(staging, arcname)
                path.write_bytes(maybe_gunzip(blob.data))
                staged.append((path, arcname))

            with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for path, arcname in staged:
                    zf.write(path, arcname)
                    count += 1

        logger.info("Exported uploads", extra={"archive": str(archive), "count": count})
        return archive


async def run_export(settings: StoreSettings, out_dir: str, posts: bool, uploads: bool) -> list[Path]:
    """Open the store, export, close."""
    archives: list[Path] = []
    async with TextStore(settings) as store:
        exporter = Exporter(store, out_dir)
        if posts:
            archives.append(await exporter.export_posts())
        if uploads:
            archives.append(await exporter.export_uploads())
    return archives


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the export tool."""
    parser = argparse.ArgumentParser(description="Export rwtxt posts and uploads to zip archives")
    parser.add_argument("--db", required=True, help="Path to the SQLite database")
    parser.add_argument("--out", default=".", help="Directory for the archives")
    parser.add_argument("--posts", action="store_true", help="Export posts only")
    parser.add_argument("--uploads", action="store_true", help="Export uploads only")
    parser.add_argument("--log-level", default="INFO", help="Log level")

    args = parser.parse_args(argv)

    settings = StoreSettings(db_path=args.db, log_level=args.log_level.upper())
    try:
        settings.validate_settings()
    except ValueError as e:
        parser.error(str(e))
    setup_logging(settings)

    # Neither flag means both
    posts = args.posts or not args.uploads
    uploads = args.uploads or not args.posts

    try:
        archives = asyncio.run(run_export(settings, args.out, posts, uploads))
    except (RwtxtError, OSError) as e:
        print(f"Export failed: {e}")
        sys.exit(1)

    for archive in archives:
        print(archive)
    sys.exit(0)


if __name__ == "__main__":
    main()
