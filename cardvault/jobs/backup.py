"""
Command-line backup and restore.

Usage:
    cardvault-backup export USER_ID [--output DIR]
    cardvault-backup import USER_ID FILE

Both commands print the operation summary and exit non-zero only when the
operation failed outright.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardvault.db.database import async_session_factory, init_db
from cardvault.migration.archive_builder import build_export
from cardvault.migration.archive_reader import BackupImporter
from cardvault.models.failure import MigrationError, OperationResult
from cardvault.storage.blob import BlobStore, get_blob_store

logger = logging.getLogger(__name__)


async def run_export(
    user_id: str,
    output_dir: Path,
    *,
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    blob_store: BlobStore | None = None,
) -> OperationResult:
    """
    Export an account to a zip file in ``output_dir``.

    Returns:
        OperationResult naming the written file
    """
    blob_store = blob_store or get_blob_store()

    async with session_factory() as session:
        bundle = await build_export(session, user_id, blob_store)

    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / bundle.filename
    try:
        path.write_bytes(bundle.content)
    except OSError as e:
        logger.error("Failed to write backup to %s: %s", path, e)
        return OperationResult(success=False, message=f"Could not write {path}: {e}")

    logger.info("Wrote backup for %s to %s", user_id, path)
    return OperationResult(success=True, message=f"{bundle.message()} Saved to {path}.")


async def run_import(
    user_id: str,
    path: Path,
    *,
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    blob_store: BlobStore | None = None,
) -> OperationResult:
    """
    Import a backup file into an account.

    Returns:
        OperationResult with the import summary, or the fatal error message
    """
    try:
        content = path.read_bytes()
    except OSError as e:
        logger.error("Failed to read %s: %s", path, e)
        return OperationResult(success=False, message=f"Could not read {path}: {e}")

    blob_store = blob_store or get_blob_store()

    async with session_factory() as session:
        importer = BackupImporter(session, user_id, blob_store)
        try:
            result = await importer.import_file(path.name, content)
        except MigrationError as e:
            logger.error("Import of %s failed: %s (%s)", path, e.message, e.detail)
            return e.to_result()

    return OperationResult(success=True, message=result.message())


async def _run(args: argparse.Namespace) -> OperationResult:
    await init_db()
    if args.command == "export":
        return await run_export(args.user_id, args.output)
    return await run_import(args.user_id, args.file)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Back up or restore a CardVault account")
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="Export an account to a zip bundle")
    export_parser.add_argument("user_id", help="Account to export")
    export_parser.add_argument(
        "--output",
        type=Path,
        default=Path.cwd(),
        help="Directory to write the bundle into (default: current directory)",
    )

    import_parser = subparsers.add_parser("import", help="Import a .zip bundle or .json document")
    import_parser.add_argument("user_id", help="Destination account")
    import_parser.add_argument("file", type=Path, help="Backup file to import")

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = build_parser().parse_args(argv)
    result = asyncio.run(_run(args))
    print(result.message)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
